"""
Core classes and types for the shoal asset pipeline.
"""
from __future__ import annotations

import abc
import threading
import typing as t
from pathlib import Path

from .custody import Custodian
from .dependencies import Dependency
from .pretty_utils import print_error

if t.TYPE_CHECKING:
    from collections.abc import Sequence, Set


T = t.TypeVar('T')
T2 = t.TypeVar('T2')
ContextDir = t.Literal['project_dir', 'source_dir', 'build_dir', 'archive_dir']
ContextFlag = t.Literal['cache', 'production', 'throw_errors', 'html_ext']
BuildSettingsKey = t.Literal[ContextDir, ContextFlag]

CONTEXT_DIR_KEYS: tuple[ContextDir, ...] = ('project_dir', 'source_dir', 'build_dir', 'archive_dir')


class InputBuildSettings(t.TypedDict, total=False):
    """
    TypedDict for defining build settings in a shoal config file. Relative
    directories are resolved against `project_dir`.
    """
    project_dir: Path
    source_dir: Path
    build_dir: Path
    archive_dir: Path
    cache: bool
    production: bool
    throw_errors: bool
    html_ext: bool


class BuildSettings(t.TypedDict):
    """
    TypedDict for processed build settings ready for passing to Context.
    """
    project_dir: Path
    source_dir: Path
    build_dir: Path
    archive_dir: Path
    cache: bool
    production: bool
    throw_errors: bool
    html_ext: bool


DEFAULT_SETTINGS = BuildSettings(
    project_dir=Path('.'),
    source_dir=Path('src'),
    build_dir=Path('build'),
    archive_dir=Path('zip'),
    cache=True,
    production=False,
    throw_errors=False,
    html_ext=True,
)


def resolve_settings(settings: InputBuildSettings | None = None, **overrides: t.Any) -> BuildSettings:
    """
    Layer @settings and then any non-None @overrides over the defaults, and
    anchor the relative directories to the project directory.
    """
    merged: dict[str, t.Any] = dict(DEFAULT_SETTINGS)
    merged.update(settings or {})
    merged.update((k, v) for k, v in overrides.items() if v is not None)

    project_dir = Path(merged['project_dir']).absolute()
    merged['project_dir'] = project_dir
    for key in CONTEXT_DIR_KEYS[1:]:
        merged[key] = project_dir / merged[key]
    return t.cast(BuildSettings, merged)


class ShoalError(Exception):
    """
    Base class for errors raised by shoal tasks and steps.
    """


class StepUnavailableException(ShoalError):
    """
    Exception raised with a step to be used is unavailable due to missing
    dependencies.
    """
    def __init__(self, step: BaseStep, *args: t.Any):
        self.step = step
        super().__init__(*args or (f'{step} is unavailable due to missing dependencies',))


class TaskError(ShoalError):
    """
    Exception raised when a task fails under the strict error policy. Holds
    every `(path, error)` failure the task collected.
    """
    def __init__(self,
                 task_name: str,
                 failures: list[tuple[Path | None, BaseException]],
                 message: str | None = None):
        self.task_name = task_name
        self.failures = failures
        if message is None:
            count = len(failures)
            summary = '; '.join(str(e) for _p, e in failures[:3])
            message = f'{task_name} failed ({count} error{"s" if count != 1 else ""}): {summary}'
        super().__init__(message)


class Context:
    """
    A context and configuration class for running shoal tasks.
    """
    def __init__(self,
                 settings: BuildSettings,
                 custodian: Custodian | None = None):
        self.settings = settings
        self.custodian = custodian or Custodian()
        self.custodian.bind(self)
        # Set to ask long-running tasks (watch, serve) to return.
        self.stopping = threading.Event()

    @t.overload
    def __getitem__(self, key: ContextDir) -> Path: ...
    @t.overload
    def __getitem__(self, key: ContextFlag) -> bool: ...
    def __getitem__(self, key):
        return self.settings[key]

    def bind(self, step: BaseStep | None):
        """
        Bind a Step to this Context, checking to ensure its availability.
        """
        if step:
            if not step.is_available():
                raise StepUnavailableException(step)
            step.bind(self)

    def find_inputs(self, path: Path):
        """
        Overridable function to get paths to process based on a given @path.
        Default behavior is to recursively search for files, dotfiles
        included, but exclude the directories themselves. Results are sorted
        so that every run sees the same order.
        """
        if not path.is_dir():
            return
        for candidate in sorted(path.iterdir()):
            if candidate.is_dir():
                yield from self.find_inputs(candidate)
            else:
                yield candidate

    def match_paths(self, rules: Sequence[Rule], input_paths: t.Iterable[Path]):
        """
        Match a set of input paths against @rules, and associate them with
        the Steps of those Rules.
        """
        # We want to handle tasks in the order they're defined!
        tasks: dict[BaseStep, list[tuple[Path, list[Path]]]]
        tasks = {r.step: [] for r in rules if r.step}

        for path in input_paths:
            for rule in rules:
                if match := rule.matcher(self, path):
                    # None can be used to halt further rule processing.
                    if not rule.step:
                        break
                    output_paths: list[Path] = []
                    for pathcalc in rule.path_calcs:
                        # None can be used to halt further rule processing in
                        # paths as well. This allows a single rule to both do
                        # processing and also halt further processing.
                        if not pathcalc:
                            break
                        output_paths.append(pathcalc(self, path, match))
                    else:
                        tasks[rule.step].append((path, output_paths))
                        # We didn't break above, avoid the break below!
                        continue
                    tasks[rule.step].append((path, output_paths))
                    # We need two breaks because we're trying to get out of the
                    # surrounding for loop.
                    break

        return tasks

    def handle_error(self, task_name: str, error: BaseException, path: Path | None = None):
        """
        Apply the global error policy to a task-level failure: report it, and
        under `throw_errors` escalate it into a `TaskError`.
        """
        print_error(task_name, error, path)
        if self['throw_errors']:
            if isinstance(error, TaskError):
                raise error
            raise TaskError(task_name, [(path, error)]) from error


class Matcher(t.Generic[T], abc.ABC):
    """
    Abstract base class for Path Matchers. Provides pre-baked ability to
    combine Matchers with | and &.
    """
    @abc.abstractmethod
    def __call__(self, context: Context, path: Path) -> T:
        ...

    def __or__(self, other: Matcher[T2]):
        return _OrMatcher(self, other)

    def __and__(self, other: Matcher[T2]):
        return _AndMatcher(self, other)


class _OrMatcher(Matcher[T | T2]):
    def __init__(self, left: Matcher[T], right: Matcher[T2]):
        self.left = left
        self.right = right

    def __call__(self, context: Context, path: Path):
        return self.left(context, path) or self.right(context, path)


class _AndMatcher(Matcher[T | T2]):
    def __init__(self, left: Matcher[T], right: Matcher[T2]):
        self.left = left
        self.right = right

    def __call__(self, context: Context, path: Path):
        return self.left(context, path) and self.right(context, path)


class PathCalc(t.Generic[T], abc.ABC):
    """
    Abstract base class for path calculators which use `Matcher` match data to
    determine output paths from input paths.
    """
    @abc.abstractmethod
    def __call__(self, context: Context, path: Path, match: T) -> Path:
        ...


class Rule(t.Generic[T]):
    """
    A single rule for file processing, with a matcher, output path
    calculators, and an optional Step to run.
    """
    def __init__(self,
                 matcher: Matcher[T],
                 path_calc: t.Sequence[PathCalc[T] | None] | PathCalc[T] | None,
                 step: BaseStep | None = None):
        self.matcher = matcher
        self.step = step
        if not isinstance(path_calc, t.Sequence):
            path_calc = [path_calc]
        self.path_calcs = list(path_calc)


class BaseStep(abc.ABC):
    """
    Shared machinery for Steps: a registry of every Step class, dependency
    declaration, and binding to a Context.
    """
    context: Context
    _step_registry: list[t.Type[BaseStep]] = []

    def __init_subclass__(cls, **kw):
        super().__init_subclass__(**kw)
        cls._step_registry.append(cls)

    @classmethod
    def get_all_steps(cls):
        """
        Return a list of all currently known Steps.
        """
        return list(cls._step_registry)

    @classmethod
    def get_available_steps(cls):
        """
        Return a list of all currently known Steps whose requirements are met.
        """
        return [s for s in cls._step_registry if s.is_available()]

    @classmethod
    def is_available(cls) -> bool:
        """
        Return whether this Step's requirements are installed, making it
        available for use.
        """
        return all(d.satisfied for d in cls.get_dependencies())

    @classmethod
    def get_dependencies(cls) -> Set[Dependency]:
        """
        Return the requirements for this Step.
        """
        return set()

    def bind(self, context: Context):
        """
        Bind this Step to a Context.
        """
        self.context = context


class Step(BaseStep):
    """
    Abstract base class for Steps, per-file processing stages which turn one
    input path into one or more output paths.
    """
    @abc.abstractmethod
    def __call__(self, path: Path, output_paths: list[Path]) -> None:
        ...


class BundleStep(BaseStep):
    """
    Abstract base class for Steps which combine every matched input into a
    fixed set of outputs, like sprite sheets or lint reports.
    """
    @abc.abstractmethod
    def __call__(self, paths: list[Path], output_paths: list[Path]) -> None:
        ...
