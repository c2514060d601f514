"""
The source watcher: an explicit table from globs to the tasks a matching file
change re-runs, driven by a watchdog observer.
"""
from __future__ import annotations

import os
import threading
import typing as t
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .core import Context, ShoalError
from .paths import GlobMatcher
from .pretty_utils import print_error, print_task
from .tasks import ChangeEvent, ChangeKind, Task

if t.TYPE_CHECKING:
    from collections.abc import Sequence


class WatchEntry:
    """
    One row of a watch table: source globs and the tasks to run when a file
    matching them changes.
    """
    def __init__(self, patterns: str | Sequence[str], *tasks: Task, dot: bool = False):
        self.matcher = GlobMatcher(patterns, dot=dot)
        self.tasks = list(tasks)

    def __repr__(self):
        names = ', '.join(task.name for task in self.tasks)
        return f'{self.__class__.__name__}({self.matcher.patterns!r}, {names})'


class Watcher:
    """
    Dispatches change events to the tasks of every matching `WatchEntry`.
    Events are handled one at a time with no debounce. A failing task is
    reported and the watcher carries on.
    """
    def __init__(self, context: Context, entries: Sequence[WatchEntry]):
        self.context = context
        self.entries = list(entries)
        self._lock = threading.Lock()

    def tasks_for(self, path: Path) -> list[Task]:
        """
        Return the tasks triggered by a change to @path, each at most once, in
        table order.
        """
        tasks: list[Task] = []
        for entry in self.entries:
            if entry.matcher(self.context, path):
                tasks.extend(task for task in entry.tasks if task not in tasks)
        return tasks

    def dispatch(self, event: ChangeEvent):
        with self._lock:
            for task in self.tasks_for(event.path):
                try:
                    task(self.context, event)
                except Exception as error:  # pylint: disable=broad-except
                    print_error(task.name, error, event.path)


class WatchdogHandler(FileSystemEventHandler):
    """
    Translate watchdog file events into `ChangeEvent`s for a `Watcher`.
    Directory events are ignored, and a move is a deletion followed by a
    creation.
    """
    def __init__(self, watcher: Watcher):
        super().__init__()
        self.watcher = watcher

    def _dispatch(self, kind: ChangeKind, raw_path: str | bytes):
        self.watcher.dispatch(ChangeEvent(kind, Path(os.fsdecode(raw_path))))

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory:
            self._dispatch('created', event.src_path)

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory:
            self._dispatch('modified', event.src_path)

    def on_deleted(self, event: FileSystemEvent):
        if not event.is_directory:
            self._dispatch('deleted', event.src_path)

    def on_moved(self, event: FileSystemEvent):
        if not event.is_directory:
            self._dispatch('deleted', event.src_path)
            self._dispatch('created', event.dest_path)


class WatchTask(Task):
    """
    A task watching the source directory until the Context is asked to stop.
    """
    def __init__(self, name: str, entries: Sequence[WatchEntry]):
        super().__init__(name)
        self.entries = list(entries)

    def subtasks(self):
        tasks: list[Task] = []
        for entry in self.entries:
            tasks.extend(task for task in entry.tasks if task not in tasks)
        return tasks

    def run(self, context: Context, event: ChangeEvent | None = None):
        source_dir = context['source_dir']
        if not source_dir.is_dir():
            raise ShoalError(f'Cannot watch missing directory {source_dir}')

        observer = Observer()
        observer.schedule(WatchdogHandler(Watcher(context, self.entries)), str(source_dir), recursive=True)
        observer.start()
        print_task(self.name, f'Watching {context.custodian.display_path(source_dir)}')
        try:
            context.stopping.wait()
        finally:
            observer.stop()
            observer.join()
