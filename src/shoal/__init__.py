"""
shoal is a front-end asset pipeline: a small set of named tasks which copy
resources, optimize images, build sprites, render templates, compile scripts
and stylesheets, lint sources, watch, serve and archive a project.
"""
from .archive import ArchiveTask
from .core import (
    BuildSettings,
    BundleStep,
    Context,
    InputBuildSettings,
    Matcher,
    PathCalc,
    Rule,
    ShoalError,
    Step,
    StepUnavailableException,
    TaskError,
    resolve_settings,
)
from .custody import Custodian
from .dependencies import Dependency, NodeExecDependency, PipDependency, WebExecDependency
from .images import PillowOptimizeStep, SVGMinifyStep
from .jinja import JinjaRenderStep, TemplateGraph, TemplateTask
from .lint import LintError, ScriptLintStep, StyleLintStep, TemplateLintStep
from .minify import CSSMinifier, minify_js
from .paths import BuildDirPathCalc, DirPathCalc, FixedPathCalc, GlobMatcher, REMatcher
from .pipeline import build_tasks
from .scripts import IncludeError, ModernScriptStep, VendorScriptStep
from .server import ServeTask
from .simple import DirectCopyStep
from .sprites import PNGSpriteStep, SpriteError, SVGSpriteStep
from .styles import SassStep
from .tasks import BundleTask, ChangeEvent, Parallel, RuleTask, Series, Task
from .watch import WatchEntry, Watcher, WatchTask
