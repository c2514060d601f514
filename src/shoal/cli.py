"""
This is the toolkit for shoal's own CLI, but offers an accessible API for
building project-specific CLIs.
"""
from __future__ import annotations

import argparse
import os
import runpy
import sys
import typing as t
from pathlib import Path

from .core import (
    BaseStep,
    Context,
    InputBuildSettings,
    ShoalError,
    StepUnavailableException,
    resolve_settings,
)
from .pipeline import build_tasks
from .pretty_utils import print_with_style
from .tasks import BundleTask, RuleTask, Task


CONFIG_FILE = 'shoalfile.py'


class BuildNamespace:
    """
    Internal used to preserve typing between InputBuildSettings, argparse, and
    BuildSettings.
    """
    project_dir: Path
    config_file: Path | None
    cache: bool | None
    production: bool | None
    throw_errors: bool | None
    html_ext: bool | None
    host: str
    port: int
    list_tasks: bool
    audit_steps: bool
    tasks: list[str]


def build_parser(**kw):
    """
    Create the argument parser for shoal's CLI. Flags default to None so that
    settings from a config file are only overridden when given.
    """
    parser = argparse.ArgumentParser(description='Build a front-end project.', **kw)
    parser.add_argument('tasks',
                        nargs='*',
                        help='names of the tasks to run, in order (default: %(default)s)',
                        metavar='task',
                        default=['default'])
    parser.add_argument('-C', '--project-dir',
                        help='project directory to run from',
                        type=Path,
                        default=Path('.'))
    parser.add_argument('-f', '--config',
                        help=f'path to a config file; defaults to {CONFIG_FILE} in the project directory',
                        type=Path,
                        dest='config_file',
                        default=None)
    parser.add_argument('--cache',
                        help='skip files whose outputs are up to date and compile templates incrementally',
                        action=argparse.BooleanOptionalAction,
                        default=None)
    parser.add_argument('--production',
                        help='strip debug statements and write compact sprites',
                        action=argparse.BooleanOptionalAction,
                        default=None)
    parser.add_argument('--throw-errors',
                        help='fail tasks on compile errors and lint violations instead of only reporting them',
                        action=argparse.BooleanOptionalAction,
                        default=None)
    parser.add_argument('--html-ext',
                        help='require the .html extension in served page URLs',
                        action=argparse.BooleanOptionalAction,
                        default=None)
    parser.add_argument('--host',
                        help='interface for the dev server to bind',
                        default='localhost')
    parser.add_argument('-p', '--port',
                        help='port for the dev server',
                        type=int,
                        default=8080)
    parser.add_argument('--list-tasks',
                        help='list the available tasks instead of running any',
                        action='store_true')
    parser.add_argument('--audit-steps',
                        help=('show information about available, unavailable, '
                              'and used steps, instead of running tasks'),
                        action='store_true')
    return parser


def load_config(path: Path | None):
    """
    Execute a config file and return its `SETTINGS` and `TASKS`, if any. A
    missing default config file is not an error.
    """
    if path is None:
        path = Path(CONFIG_FILE)
        if not path.is_file():
            return None, None
    namespace = runpy.run_path(str(path))
    settings: InputBuildSettings | None = namespace.get('SETTINGS')
    tasks: dict[str, Task] | None = namespace.get('TASKS')
    return settings, tasks


def iter_steps(task: Task) -> t.Iterator[BaseStep]:
    """
    Yield every Step used by @task and its subtasks.
    """
    if isinstance(task, RuleTask):
        yield from (r.step for r in task.rules if r.step)
    elif isinstance(task, BundleTask):
        yield task.step
    for subtask in task.subtasks():
        yield from iter_steps(subtask)


def pprint_step(step: t.Type[BaseStep]):
    """
    Prettily display dependency information for the given Step class.
    """
    missing = [
        str(d) for d in step.get_dependencies()
        if d.needed and not d.satisfied

    ]
    if missing:
        text = ', '.join(missing)
        print_with_style(f'✗ {step.__name__} (missing: {text})', style='red')
    else:
        print_with_style(f'✓ {step.__name__}', style='green')


def pprint_missing_deps(step: BaseStep):
    """
    Prettily display an error for the given Step with missing dependencies.
    """
    print_with_style(
        f'{step} is unavailable due to missing dependencies!',
        file='stderr',
        style='red'
    )
    for dep in step.get_dependencies():
        missing = False
        if not dep.needed:
            style = None
        elif dep.satisfied:
            style = 'green'
        else:
            missing = True
            style = 'red'

        text = f'✗ {dep}: {dep.install_hint}' if missing else f'✓ {dep}'
        print_with_style(text, style=style)


def pprint_tasks(tasks: dict[str, Task]):
    """
    Prettily list tasks, with the members of each group.
    """
    for name, task in tasks.items():
        members = ', '.join(sub.name for sub in task.subtasks())
        print_with_style(f'{name}: {members}' if members else name)


def audit_steps(tasks: t.Iterable[Task]):
    all_steps = set(BaseStep.get_all_steps())
    available_steps = set(BaseStep.get_available_steps())
    unavailable_steps = all_steps - available_steps
    used_steps = {step.__class__ for task in tasks for step in iter_steps(task)}

    groups = {
        'Available steps': available_steps,
        'Unavailable steps': unavailable_steps,
        'Used steps': used_steps,
    }
    for group_label, step_group in groups.items():
        print_with_style(f'{group_label} ({len(step_group)})')
        for step in sorted(step_group, key=lambda s: s.__name__):
            pprint_step(step)


def run_tasks(context: Context, tasks: dict[str, Task], names: list[str]):
    """
    Run the tasks called @names in order, stopping at the first failure.
    """
    unknown = [name for name in names if name not in tasks]
    if unknown:
        raise ShoalError(f'Unknown task(s): {", ".join(unknown)}')
    for name in names:
        tasks[name](context)


def main(arguments: list[str] | None = None):
    """
    shoal main function. Loads an optional config file, combines its settings
    with command line arguments, and runs the requested tasks.
    """
    args = build_parser().parse_args(arguments, namespace=BuildNamespace())

    config_file = args.config_file.absolute() if args.config_file else None
    # Project-local tools (node_modules/.bin) are looked up from here.
    os.chdir(args.project_dir)
    settings, config_tasks = load_config(config_file)

    tasks = build_tasks(args.host, args.port)
    if config_tasks:
        tasks.update(config_tasks)

    if args.list_tasks:
        pprint_tasks(tasks)
        return
    if args.audit_steps:
        audit_steps(tasks[name] for name in args.tasks if name in tasks)
        return

    context = Context(resolve_settings(
        settings,
        cache=args.cache,
        production=args.production,
        throw_errors=args.throw_errors,
        html_ext=args.html_ext,
    ))
    try:
        run_tasks(context, tasks, args.tasks)
    except StepUnavailableException as e:
        pprint_missing_deps(e.step)
        sys.exit(1)
    except ShoalError as e:
        print_with_style(str(e), file='stderr', style='red')
        sys.exit(1)
    except KeyboardInterrupt:
        context.stopping.set()
        print_with_style('Interrupted', file='stderr', style='yellow')
        sys.exit(130)
