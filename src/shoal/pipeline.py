"""
The built-in task table for the conventional project layout.
"""
from __future__ import annotations

import re

from .archive import ArchiveTask
from .core import Rule
from .images import PillowOptimizeStep, SVGMinifyStep
from .jinja import JinjaRenderStep, TemplateTask
from .lint import ScriptLintStep, StyleLintStep, TemplateLintStep
from .minify import CSSMinifier
from .paths import BuildDirPathCalc, FixedPathCalc, GlobMatcher, REMatcher
from .scripts import ModernScriptStep, VendorScriptStep
from .server import ServeTask
from .simple import DirectCopyStep
from .sprites import PNGSpriteStep, SVGSpriteStep
from .styles import SassStep
from .tasks import BundleTask, Parallel, RuleTask, Series, Task
from .watch import WatchEntry, WatchTask


RESOURCE_PATTERNS = ['resources/**/*.*', 'resources/**/.*']
IMAGE_PATTERN = 'images/**/*.*'
PNG_SPRITE_PATTERN = 'images/sprites/png/*.png'
SVG_SPRITE_PATTERN = 'images/sprites/svg/*.svg'
SPRITE_TEMPLATE = 'scss/_sprites.scss.jinja'
SPRITE_STYLESHEET = 'scss/_sprites.scss'
TEMPLATE_PATTERNS = ['*.jinja', 'templates/**/*.jinja']
STYLE_PATTERNS = ['scss/*.scss', '!scss/_*.scss']


def script_task(name: str, entry: str, step) -> RuleTask:
    """
    A task compiling `js/<entry>` to `build/js/<entry>` and its source map.
    """
    return RuleTask(name, [
        Rule(
            GlobMatcher(f'js/{entry}'),
            [BuildDirPathCalc('js', 'js'), BuildDirPathCalc('js', 'js', ext='.js.map')],
            step
        ),
    ], root='js')


def build_tasks(host: str = 'localhost', port: int = 8080) -> dict[str, Task]:
    """
    Create the built-in tasks, keyed by name. The dev server listens on
    @host and @port.
    """
    copy = RuleTask('copy', [
        Rule(
            GlobMatcher(RESOURCE_PATTERNS, dot=True),
            BuildDirPathCalc(base='resources'),
            DirectCopyStep()
        ),
    ], root='resources', newer=True, batch=True)

    images_dest = BuildDirPathCalc('images', 'images')
    images = RuleTask('images', [
        Rule(
            GlobMatcher(IMAGE_PATTERN) & REMatcher(r'.*\.(?:png|jpe?g|gif)\Z', re.IGNORECASE, 'source_dir'),
            images_dest,
            PillowOptimizeStep()
        ),
        Rule(
            GlobMatcher(IMAGE_PATTERN) & REMatcher(r'.*\.svg\Z', re.IGNORECASE, 'source_dir'),
            images_dest,
            SVGMinifyStep()
        ),
        Rule(GlobMatcher(IMAGE_PATTERN), images_dest, DirectCopyStep()),
    ], root='images', newer=True, batch=True)

    svg_sprites = BundleTask(
        'svg_sprites',
        GlobMatcher(SVG_SPRITE_PATTERN),
        SVGSpriteStep(),
        [FixedPathCalc('build_dir', 'images/sprites.svg')],
        root='images/sprites/svg',
    )

    png_sprites = BundleTask(
        'png_sprites',
        GlobMatcher(PNG_SPRITE_PATTERN),
        PNGSpriteStep(template=SPRITE_TEMPLATE),
        [
            FixedPathCalc('build_dir', 'images/sprites.png'),
            FixedPathCalc('build_dir', 'images/sprites@2x.png'),
            FixedPathCalc('source_dir', SPRITE_STYLESHEET),
        ],
        root='images/sprites/png',
    )

    js_main = script_task('js_main', 'main.js', ModernScriptStep())
    js_vendor = script_task('js_vendor', 'vendor.js', VendorScriptStep())

    render_step = JinjaRenderStep()
    templates = TemplateTask('templates', [
        Rule(GlobMatcher('*.jinja'), BuildDirPathCalc(ext='.html'), render_step),
    ], render_step)

    styles = RuleTask('styles', [
        Rule(
            GlobMatcher(STYLE_PATTERNS),
            [BuildDirPathCalc('css', 'scss', ext='.css'), BuildDirPathCalc('css', 'scss', ext='.css.map')],
            SassStep(CSSMinifier())
        ),
    ], root='scss')

    lint_js = BundleTask('lint_js', GlobMatcher('js/**/*.js'), ScriptLintStep(), [], root='js', verb='Linting')
    lint_templates = BundleTask(
        'lint_templates', GlobMatcher(TEMPLATE_PATTERNS), TemplateLintStep(), [], verb='Linting'
    )
    lint_styles = BundleTask(
        'lint_styles',
        GlobMatcher(['scss/**/*.scss', f'!{SPRITE_STYLESHEET}']),
        StyleLintStep(),
        [],
        root='scss',
        verb='Linting',
    )

    watch = WatchTask('watch', [
        WatchEntry(RESOURCE_PATTERNS, copy, dot=True),
        WatchEntry(IMAGE_PATTERN, images),
        WatchEntry(SVG_SPRITE_PATTERN, svg_sprites),
        WatchEntry([PNG_SPRITE_PATTERN, SPRITE_TEMPLATE], png_sprites),
        WatchEntry(['js/**/*.js', '!js/vendor.js', '!js/vendor/**'], js_main),
        WatchEntry(['js/vendor.js', 'js/vendor/**/*.js'], js_vendor),
        WatchEntry(TEMPLATE_PATTERNS, templates),
        WatchEntry('scss/**/*.scss', styles),
    ])
    serve = ServeTask('serve', host, port)
    archive = ArchiveTask('zip')

    # Sprites write the stylesheet partial that styles imports.
    sprites_styles = Series('sprites+styles', png_sprites, styles)
    build = Parallel('build', copy, images, svg_sprites, sprites_styles, js_main, js_vendor, templates)
    lint = Series('lint', lint_js, lint_templates, lint_styles)
    default = Series('default', build, Parallel('watch+serve', watch, serve))

    return {task.name: task for task in [
        copy, images, svg_sprites, png_sprites, js_main, js_vendor, templates, styles,
        lint_js, lint_templates, lint_styles, watch, serve, archive, build, lint, default,
    ]}
