"""
Steps running static analysis over scripts, templates and stylesheets.
Reports go to standard output; violations raise `LintError`, which the
owning task reports or escalates according to the error policy.
"""
from __future__ import annotations

import abc
import sys
from pathlib import Path

from .core import BundleStep, TaskError
from .dependencies import NodeExecDependency, PipDependency
from .pretty_utils import print_with_style
from .simple import run_command


ESLINT = NodeExecDependency('eslint')
STYLELINT = NodeExecDependency('stylelint')
DJLINT = PipDependency('djlint')


class LintError(TaskError):
    """
    Exception raised when a linter reports violations. Holds the linter's
    report and exit status.
    """
    def __init__(self, tool: str, report: str, returncode: int):
        self.report = report
        self.returncode = returncode
        super().__init__(tool, [], f'{tool} reported violations (exit status {returncode})')


class LintStep(BundleStep):
    """
    Base class for lint Steps: runs `command()` over every matched path from
    the project directory, prints its report and raises `LintError` on a
    non-zero exit status. Lint Steps have no output paths.
    """
    tool: str

    @abc.abstractmethod
    def command(self, paths: list[str]) -> list[str]:
        ...

    def __call__(self, paths: list[Path], output_paths: list[Path]):
        project_dir = self.context['project_dir']
        names = [
            p.relative_to(project_dir).as_posix() if p.is_relative_to(project_dir) else str(p)
            for p in paths
        ]
        result = run_command(self.command(names), cwd=project_dir, check=False)
        if report := result.stdout.strip():
            print_with_style(report)
        if result.returncode:
            raise LintError(self.tool, report, result.returncode)


class ScriptLintStep(LintStep):
    """
    Lint scripts with ESLint, using the project's own ESLint configuration.
    """
    tool = 'eslint'

    @classmethod
    def get_dependencies(cls):
        return {
            ESLINT,
        }

    def command(self, paths):
        return [ESLINT.which() or 'eslint', '--format', 'stylish', *paths]


class TemplateLintStep(LintStep):
    """
    Lint Jinja templates with djLint's Jinja profile.
    """
    tool = 'djlint'

    @classmethod
    def get_dependencies(cls):
        return {
            DJLINT,
        }

    def command(self, paths):
        return [
            sys.executable, '-m', 'djlint',
            '--lint',
            '--profile', 'jinja',
            '--extension', 'jinja',
            *paths,
        ]


class StyleLintStep(LintStep):
    """
    Lint SCSS sources with stylelint through the `postcss-scss` syntax.
    """
    tool = 'stylelint'

    @classmethod
    def get_dependencies(cls):
        return {
            STYLELINT,
        }

    def command(self, paths):
        return [
            STYLELINT.which() or 'stylelint',
            '--custom-syntax', 'postcss-scss',
            '--formatter', 'string',
            *paths,
        ]
