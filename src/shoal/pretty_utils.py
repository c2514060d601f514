"""
Internal utilities for progress bars and pretty printing.
"""
import typing as t

import rich.console
import rich.progress


_rich_consoles = {
    'stdout': rich.console.Console(highlight=False),
    'stderr': rich.console.Console(stderr=True, highlight=False),
}


T = t.TypeVar('T')


def track_progress(iterable: t.Iterable[T], desc: str) -> t.Iterable[T]:
    """
    Progress tracker for long single-task loops. Must not be used from tasks
    running in parallel, since only one live display may be active at a time.
    """
    yield from rich.progress.track(iterable, desc, console=_rich_consoles['stdout'])


def print_with_style(*args, sep=' ', end='\n', file: str = 'stdout', style=None):
    """
    Enhanced print() function which supports rich console styles.
    """
    _rich_consoles[file].print(*args, sep=sep, end=end, style=style, markup=False, soft_wrap=True)


def print_task(name: str, message: str, style=None):
    """
    Print a status line prefixed with a task name.
    """
    print_with_style(f'[{name}] {message}', style=style)


def print_error(name: str, error: BaseException, path: t.Any = None):
    """
    Print a failure report for a task, optionally naming the offending path.
    """
    where = f' ({path})' if path else ''
    print_with_style(
        f'[{name}] {error.__class__.__name__}{where}: {error}',
        file='stderr',
        style='red'
    )
