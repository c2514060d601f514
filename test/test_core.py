from pathlib import Path

import pytest

from shoal.core import (
    BuildSettings, Context, Matcher, PathCalc, Rule, Step, StepUnavailableException, TaskError,
    resolve_settings,
)
from shoal.dependencies import PipDependency


class DummyStep(Step):
    def __call__(self, path: Path, output_paths: list[Path]):
        pass


class MissingDependencyStep(Step):
    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('shoal-missing-package', check_name='shoal_missing_package'),
        }

    def __call__(self, path: Path, output_paths: list[Path]):
        pass


class AllMatcher(Matcher[Path]):
    def __call__(self, context: Context, path: Path):
        return path


class BMatcher(Matcher[Path]):
    def __call__(self, context: Context, path: Path):
        if path.name.startswith('b'):
            return path


class DummyPathCalc(PathCalc[Path]):
    def __call__(self, context: Context, path: Path, match: Path) -> Path:
        return context['build_dir'] / path.relative_to(context['source_dir'])


@pytest.fixture
def build_settings(tmp_path):
    return resolve_settings(project_dir=tmp_path)


def test_resolve_settings(tmp_path: Path):
    settings = resolve_settings({'build_dir': Path('out'), 'production': True}, project_dir=tmp_path, cache=None)
    assert settings == BuildSettings(
        project_dir=tmp_path,
        source_dir=tmp_path / 'src',
        build_dir=tmp_path / 'out',
        archive_dir=tmp_path / 'zip',
        cache=True,
        production=True,
        throw_errors=False,
        html_ext=True,
    )


def test_resolve_settings_overrides(tmp_path: Path):
    settings = resolve_settings({'cache': True}, project_dir=tmp_path, cache=False, throw_errors=True)
    assert settings['cache'] is False
    assert settings['throw_errors'] is True


def test_context_match_paths(build_settings: BuildSettings):
    i_a = build_settings['source_dir'] / 'a'
    i_b = build_settings['source_dir'] / 'b'
    i_c = build_settings['source_dir'] / 'c'
    o_a = build_settings['build_dir'] / 'a'
    o_b = build_settings['build_dir'] / 'b'
    o_c = build_settings['build_dir'] / 'c'

    paths = [i_a, i_b, i_c]
    b_step = DummyStep()
    all_step = DummyStep()
    context = Context(build_settings)
    tasks = context.match_paths([
        Rule(BMatcher(), DummyPathCalc(), b_step),
        Rule(AllMatcher(), DummyPathCalc(), all_step),
    ], paths)
    assert tasks == {
        b_step: [
            (i_b, [o_b]),
        ],
        all_step: [
            (i_a, [o_a]),
            (i_b, [o_b]),
            (i_c, [o_c]),
        ],
    }

def test_context_match_paths_stop_matching(build_settings: BuildSettings):
    i_a = build_settings['source_dir'] / 'a'
    i_b = build_settings['source_dir'] / 'b'
    i_c = build_settings['source_dir'] / 'c'
    o_a = build_settings['build_dir'] / 'a'
    o_b = build_settings['build_dir'] / 'b'
    o_c = build_settings['build_dir'] / 'c'

    paths = [i_a, i_b, i_c]

    b_step = DummyStep()
    all_step = DummyStep()
    context = Context(build_settings)
    tasks = context.match_paths([
        Rule(BMatcher(), [DummyPathCalc(), None], b_step),
        Rule(AllMatcher(), DummyPathCalc(), all_step),
    ], paths)
    assert tasks == {
        b_step: [
            (i_b, [o_b]),
        ],
        all_step: [
            (i_a, [o_a]),
            (i_c, [o_c]),
        ],
    }


def test_context_match_paths_ignore(build_settings: BuildSettings):
    i_a = build_settings['source_dir'] / 'a'
    i_b = build_settings['source_dir'] / 'b'
    o_a = build_settings['build_dir'] / 'a'

    all_step = DummyStep()
    context = Context(build_settings)
    tasks = context.match_paths([
        Rule(BMatcher(), None),
        Rule(AllMatcher(), DummyPathCalc(), all_step),
    ], [i_a, i_b])
    assert tasks == {
        all_step: [
            (i_a, [o_a]),
        ],
    }


def test_find_inputs_sorted_with_dotfiles(build_settings: BuildSettings):
    source_dir = build_settings['source_dir']
    (source_dir / 'sub').mkdir(parents=True)
    for name in ['b.txt', '.hidden', 'sub/a.txt']:
        (source_dir / name).write_text('x')

    context = Context(build_settings)
    assert list(context.find_inputs(source_dir)) == [
        source_dir / '.hidden',
        source_dir / 'b.txt',
        source_dir / 'sub' / 'a.txt',
    ]
    assert not list(context.find_inputs(source_dir / 'missing'))


def test_bind_unavailable_step(build_settings: BuildSettings):
    context = Context(build_settings)
    with pytest.raises(StepUnavailableException) as exc_info:
        context.bind(MissingDependencyStep())
    assert isinstance(exc_info.value.step, MissingDependencyStep)


def test_handle_error_lenient(build_settings: BuildSettings, capsys: pytest.CaptureFixture[str]):
    context = Context(build_settings)
    context.handle_error('styles', ValueError('bad input'), build_settings['source_dir'] / 'a.scss')
    assert 'bad input' in capsys.readouterr().err


def test_handle_error_strict(tmp_path: Path):
    context = Context(resolve_settings(project_dir=tmp_path, throw_errors=True))
    error = ValueError('bad input')
    with pytest.raises(TaskError) as exc_info:
        context.handle_error('styles', error)
    assert exc_info.value.task_name == 'styles'
    assert exc_info.value.failures == [(None, error)]
    assert exc_info.value.__cause__ is error
