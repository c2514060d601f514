"""
The newer-file cache: modification-time based change detection and the
per-file step log.
"""
from __future__ import annotations

import typing as t
from collections import deque
from pathlib import Path

from .pretty_utils import print_with_style

if t.TYPE_CHECKING:
    from collections.abc import Sequence
    from .core import Context


class Custodian:
    """
    Class for deciding whether outputs need rebuilding and logging steps.

    An output is current when it exists and its modification time is not
    older than that of the newest source. Contents are never hashed, so a
    touched but unchanged source still counts as changed.

    `written` and `skipped` hold the most recent @history outputs, so a long
    watch session does not grow them without bound.
    """
    context: Context

    def __init__(self, history: int = 10_000):
        self.written: deque[Path] = deque(maxlen=history)
        self.skipped: deque[Path] = deque(maxlen=history)

    def bind(self, context: Context):
        """
        Bind this `Custodian` to a `Context`.
        """
        self.context = context

    def display_path(self, path: Path):
        """
        Shorten @path for logs by making it relative to the project directory
        when possible.
        """
        project_dir = self.context['project_dir']
        if path.is_relative_to(project_dir):
            return path.relative_to(project_dir).as_posix()
        return path.as_posix()

    def refresh_needed(self, sources: Sequence[Path], outputs: Sequence[Path]):
        """
        Determines whether a refresh is needed for @outputs built from
        @sources.

        :return: Whether the step should be rerun and a message explaining why
            or why not.
        """
        if not self.context['cache']:
            return True, 'Cache disabled'

        for path in outputs:
            if not path.exists():
                return True, f'Missing output ({self.display_path(path)})'

        newest_source = max((p.stat().st_mtime for p in sources), default=0.0)
        for path in outputs:
            if path.stat().st_mtime < newest_source:
                return True, f'Stale output ({self.display_path(path)})'

        return False, 'Up to date'

    def add_step(self,
                 sources: Sequence[Path],
                 outputs: Sequence[Path],
                 stale_msg: str):
        """
        Mark a Step as run, logging accordingly.
        """
        self.written.extend(outputs)
        self.log_step(sources, outputs, stale=True, stale_msg=stale_msg)

    def skip_step(self, sources: Sequence[Path], outputs: Sequence[Path]):
        """
        Mark a Step as skipped, logging accordingly.
        """
        self.skipped.extend(outputs)
        self.log_step(sources, outputs, stale=False)

    def log_step(self,
                 sources: Sequence[Path],
                 outputs: Sequence[Path],
                 *,
                 stale: bool = True,
                 stale_msg: str = ''):
        """
        Log a step according to its staleness.
        """
        targets = ', '.join(self.display_path(p) for p in outputs) or '∅'
        if len(sources) == 1:
            msg = f'{self.display_path(sources[0])} ⇒ {targets}'
        else:
            msg = ''.join([
                '{\n\t',
                ',\n\t'.join(self.display_path(s) for s in sources),
                '\n} ⇒ ',
                targets,
            ])
        if stale:
            print_with_style(f'{stale_msg}...\n{msg}')
        else:
            print_with_style('Skipped', msg, style='yellow')
