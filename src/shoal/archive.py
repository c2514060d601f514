"""
The release archiver: zips the build output, the sources and the project's
metadata files into a timestamped archive.
"""
from __future__ import annotations

import datetime
import json
import re
import sys
import typing as t
import zipfile
from pathlib import Path

from .core import Context
from .paths import GlobMatcher
from .pretty_utils import print_task, track_progress
from .tasks import ChangeEvent, Task

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

if t.TYPE_CHECKING:
    from collections.abc import Callable, Sequence


METADATA_PATTERNS = [
    '.gitignore',
    '*.py',
    '*.toml',
    '*.json',
    '*.md',
    '*.yml',
    '*.yaml',
    '*.cfg',
]
TIMESTAMP_FORMAT = '%Y-%m-%d_%H-%M'
ARCHIVE_NAME_RE = re.compile(r'.+_\d{4}-\d{2}-\d{2}_\d{2}-\d{2}\.zip\Z')


def project_name(project_dir: Path) -> str:
    """
    Name a project from `pyproject.toml`'s `[project]` table, then from
    `package.json`, then after its directory.
    """
    pyproject = project_dir / 'pyproject.toml'
    if pyproject.is_file():
        with pyproject.open('rb') as file:
            if name := tomllib.load(file).get('project', {}).get('name'):
                return name

    package_json = project_dir / 'package.json'
    if package_json.is_file():
        with package_json.open(encoding='utf-8') as file:
            if name := json.load(file).get('name'):
                # Scoped npm names carry a slash.
                return name.rsplit('/', 1)[-1]

    return project_dir.name


def archive_name(name: str, now: datetime.datetime) -> str:
    return f'{name}_{now.strftime(TIMESTAMP_FORMAT)}.zip'


class ArchiveTask(Task):
    """
    A task writing `<name>_<YYYY>-<MM>-<DD>_<HH>-<mm>.zip` to the archive
    directory. Everything under the build and source directories is stored,
    along with top-level files matching @patterns; paths are stored relative
    to the project directory. The archive directory and any earlier archive
    are never included.
    """
    def __init__(self,
                 name: str,
                 patterns: Sequence[str] = tuple(METADATA_PATTERNS),
                 now: Callable[[], datetime.datetime] = datetime.datetime.now):
        super().__init__(name)
        self.patterns = list(patterns)
        self.now = now

    def find_inputs(self, context: Context, archive_path: Path) -> list[Path]:
        project_dir = context['project_dir']
        archive_dir = context['archive_dir']
        patterns = [
            *(f'{context[key].relative_to(project_dir).as_posix()}/**' for key in ('build_dir', 'source_dir')
              if context[key].is_relative_to(project_dir)),
            *self.patterns,
        ]
        matcher = GlobMatcher(patterns, parent_dir='project_dir', dot=True)
        paths: list[Path] = []
        for entry in sorted(project_dir.iterdir()):
            if entry.is_dir():
                # Only directories a pattern names are searched.
                if entry == archive_dir or not any(p.startswith(f'{entry.name}/') for p in patterns):
                    continue
                candidates = list(context.find_inputs(entry))
            else:
                candidates = [entry]
            paths.extend(
                path for path in candidates
                if matcher(context, path)
                and path != archive_path
                and not ARCHIVE_NAME_RE.match(path.name)
            )
        return paths

    def run(self, context: Context, event: ChangeEvent | None = None):
        project_dir = context['project_dir']
        archive_path = context['archive_dir'] / archive_name(project_name(project_dir), self.now())
        paths = self.find_inputs(context, archive_path)

        archive_path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED) as archive:
            for path in track_progress(paths, f'[{self.name}] Archiving'):
                archive.write(path, path.relative_to(project_dir).as_posix())

        print_task(self.name, f'Wrote {context.custodian.display_path(archive_path)} ({len(paths)} files)')
