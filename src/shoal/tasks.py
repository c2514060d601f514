"""
Named units of build work and the groups that compose them.
"""
from __future__ import annotations

import abc
import concurrent.futures
import dataclasses
import time
import typing as t
from pathlib import Path

from .core import BundleStep, Context, Matcher, PathCalc, Rule, TaskError
from .pretty_utils import print_error, print_task

if t.TYPE_CHECKING:
    from collections.abc import Sequence


ChangeKind = t.Literal['created', 'modified', 'deleted']


@dataclasses.dataclass(frozen=True)
class ChangeEvent:
    """
    A single file change reported by the watcher and handed explicitly to the
    tasks it triggers.
    """
    kind: ChangeKind
    path: Path


class Task(abc.ABC):
    """
    Abstract base class for tasks. Calling a task runs it with start and
    finish logging; subclasses implement `run()`.
    """
    def __init__(self, name: str):
        self.name = name

    def __repr__(self):
        return f'{self.__class__.__name__}({self.name!r})'

    def __call__(self, context: Context, event: ChangeEvent | None = None):
        print_task(self.name, 'Starting...')
        start = time.perf_counter()
        self.run(context, event)
        elapsed = time.perf_counter() - start
        print_task(self.name, f'Finished after {elapsed:.2f} s', style='green')

    @abc.abstractmethod
    def run(self, context: Context, event: ChangeEvent | None = None) -> None:
        ...

    def subtasks(self) -> Sequence[Task]:
        """
        Tasks this task is composed of, for listing and auditing.
        """
        return ()


class RuleTask(Task):
    """
    A task processing each file under `source_dir / root` with the first
    matching of its Rules.

    With @newer, files whose outputs are current according to the Context's
    Custodian are skipped. With @batch, a failing file never stops its
    siblings: failures are reported as they happen and, under the strict
    error policy, raised together once the batch is done. Otherwise each
    failure goes straight through `Context.handle_error()`.
    """
    def __init__(self,
                 name: str,
                 rules: list[Rule],
                 root: str | Path = '',
                 newer: bool = False,
                 batch: bool = False):
        super().__init__(name)
        self.rules = rules
        self.root = Path(root)
        self.newer = newer
        self.batch = batch
        self._bound: Context | None = None

    def prepare(self, context: Context):
        """
        Bind this task's Steps to @context, once per Context.
        """
        if self._bound is not context:
            for rule in self.rules:
                context.bind(rule.step)
            self._bound = context

    def find_inputs(self, context: Context) -> list[Path]:
        return list(context.find_inputs(context['source_dir'] / self.root))

    def select_inputs(self, context: Context, event: ChangeEvent | None) -> list[Path]:
        """
        Overridable hook choosing which inputs a run processes. Default
        behavior processes every input regardless of @event.
        """
        return self.find_inputs(context)

    def run(self, context: Context, event: ChangeEvent | None = None):
        self.prepare(context)
        custodian = context.custodian
        tasks = context.match_paths(self.rules, self.select_inputs(context, event))

        failures: list[tuple[Path | None, BaseException]] = []
        for step, entries in tasks.items():
            for path, output_paths in entries:
                if self.newer:
                    stale, msg = custodian.refresh_needed([path], output_paths)
                else:
                    stale, msg = True, 'Processing'
                if not stale:
                    custodian.skip_step([path], output_paths)
                    continue
                try:
                    step(path, output_paths)
                except Exception as error:  # pylint: disable=broad-except
                    if not self.batch:
                        context.handle_error(self.name, error, path)
                        continue
                    print_error(self.name, error, path)
                    failures.append((path, error))
                    continue
                custodian.add_step([path], output_paths, msg)

        if failures and context['throw_errors']:
            raise TaskError(self.name, failures)


class BundleTask(Task):
    """
    A task feeding every file under `source_dir / root` accepted by @matcher
    into one BundleStep call producing @outputs.
    """
    def __init__(self,
                 name: str,
                 matcher: Matcher,
                 step: BundleStep,
                 outputs: Sequence[PathCalc],
                 root: str | Path = '',
                 verb: str = 'Bundling'):
        super().__init__(name)
        self.matcher = matcher
        self.step = step
        self.outputs = list(outputs)
        self.root = Path(root)
        self.verb = verb
        self._bound: Context | None = None

    def find_inputs(self, context: Context) -> list[Path]:
        return [
            p for p in context.find_inputs(context['source_dir'] / self.root)
            if self.matcher(context, p)
        ]

    def run(self, context: Context, event: ChangeEvent | None = None):
        if self._bound is not context:
            context.bind(self.step)
            self._bound = context

        paths = self.find_inputs(context)
        if not paths:
            print_task(self.name, 'No inputs found', style='yellow')
            return

        output_paths = [calc(context, paths[0], None) for calc in self.outputs]
        try:
            self.step(paths, output_paths)
        except Exception as error:  # pylint: disable=broad-except
            context.handle_error(self.name, error)
            return
        context.custodian.add_step(paths, output_paths, self.verb)


class Series(Task):
    """
    A group running its tasks one after another, stopping at the first
    failure.
    """
    def __init__(self, name: str, *tasks: Task):
        super().__init__(name)
        self.tasks = list(tasks)

    def subtasks(self):
        return self.tasks

    def run(self, context: Context, event: ChangeEvent | None = None):
        for task in self.tasks:
            task(context, event)


class Parallel(Task):
    """
    A group running its tasks concurrently with no ordering guarantee.

    The first member to fail is reported at once and `Context.stopping` is
    set, so long-running siblings such as `watch` and `serve` return instead
    of hiding the failure. Once every member has returned, the first failure
    is re-raised.
    """
    def __init__(self, name: str, *tasks: Task):
        super().__init__(name)
        self.tasks = list(tasks)

    def subtasks(self):
        return self.tasks

    def run(self, context: Context, event: ChangeEvent | None = None):
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=len(self.tasks) or 1,
            thread_name_prefix=f'shoal-{self.name}',
        ) as pool:
            futures = [pool.submit(task, context, event) for task in self.tasks]
            try:
                done, _pending = concurrent.futures.wait(
                    futures, return_when=concurrent.futures.FIRST_EXCEPTION
                )
                failed = [future for future in futures if future in done and future.exception()]
                if failed:
                    error = failed[0].exception()
                    # TaskErrors were reported when the error policy raised them.
                    if not isinstance(error, TaskError):
                        print_error(self.name, error)
                    context.stopping.set()
                    concurrent.futures.wait(futures)
            except KeyboardInterrupt:
                # Long-running members (watch, serve) only return once asked.
                context.stopping.set()
                raise
        for future in futures:
            if error := future.exception():
                raise error
