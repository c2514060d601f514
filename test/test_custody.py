import os
from pathlib import Path

import pytest

from shoal.core import Context, resolve_settings
from shoal.custody import Custodian
from shoal.pipeline import build_tasks
from shoal.test_harness import make_context, write_tree


RESOURCES = {
    'src/resources/robots.txt': 'User-agent: *\n',
    'src/resources/.htaccess': 'Options -Indexes\n',
    'src/resources/fonts/a.woff2': 'font',
}


def set_mtime(path: Path, mtime: float):
    os.utime(path, (mtime, mtime))


@pytest.fixture
def project(tmp_path: Path):
    write_tree(tmp_path, RESOURCES)
    return tmp_path


def run_copy(context: Context):
    build_tasks()['copy'](context)


def test_copy_mirrors_resources(project: Path):
    context = make_context(project)
    run_copy(context)
    build_dir = context['build_dir']
    assert (build_dir / 'robots.txt').read_text() == 'User-agent: *\n'
    assert (build_dir / '.htaccess').read_text() == 'Options -Indexes\n'
    assert (build_dir / 'fonts' / 'a.woff2').read_text() == 'font'


def test_copy_skips_current_outputs(project: Path):
    context = make_context(project)
    run_copy(context)
    source = project / 'src' / 'resources' / 'robots.txt'
    output = context['build_dir'] / 'robots.txt'
    set_mtime(source, 1_000_000)
    set_mtime(output, 2_000_000)
    output.write_text('edited')
    set_mtime(output, 2_000_000)

    context = make_context(project)
    run_copy(context)
    assert output.read_text() == 'edited'
    assert output in context.custodian.skipped
    assert output.stat().st_mtime == 2_000_000


def test_copy_rewrites_touched_sources(project: Path):
    context = make_context(project)
    run_copy(context)
    source = project / 'src' / 'resources' / 'robots.txt'
    output = context['build_dir'] / 'robots.txt'
    output.write_text('edited')
    set_mtime(output, 1_000_000)
    set_mtime(source, 2_000_000)

    context = make_context(project)
    run_copy(context)
    assert output.read_text() == 'User-agent: *\n'
    assert output in context.custodian.written


def test_copy_without_cache_rewrites_everything(project: Path):
    run_copy(make_context(project))
    context = make_context(project, cache=False)
    run_copy(context)
    assert sorted(p.name for p in context.custodian.written) == ['.htaccess', 'a.woff2', 'robots.txt']
    assert not context.custodian.skipped


def test_refresh_needed(project: Path):
    context = make_context(project)
    source = project / 'src' / 'resources' / 'robots.txt'
    output = project / 'build' / 'robots.txt'
    stale, msg = context.custodian.refresh_needed([source], [output])
    assert stale
    assert msg.startswith('Missing output')

    output.parent.mkdir(parents=True)
    output.write_text('x')
    set_mtime(source, 2_000_000)
    set_mtime(output, 2_000_000)
    assert context.custodian.refresh_needed([source], [output]) == (False, 'Up to date')

    set_mtime(output, 1_000_000)
    stale, msg = context.custodian.refresh_needed([source], [output])
    assert stale
    assert msg.startswith('Stale output')


def test_custodian_history_is_capped(project: Path):
    context = Context(resolve_settings(project_dir=project, cache=False), Custodian(history=2))
    for _ in range(3):
        run_copy(context)
    build_dir = context['build_dir']
    assert len(context.custodian.written) == 2
    assert set(context.custodian.written) <= {
        build_dir / 'robots.txt', build_dir / '.htaccess', build_dir / 'fonts' / 'a.woff2',
    }
