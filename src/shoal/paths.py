"""
Practical implementations of Matchers and PathCalcs.
"""
from __future__ import annotations

import re
import typing as t
from pathlib import Path

from .core import CONTEXT_DIR_KEYS, Context, ContextDir, Matcher, PathCalc


T = t.TypeVar('T')


def glob_to_re(pattern: str, dot: bool = False) -> str:
    """
    Translate a gulp-style glob into a regular expression string matching
    POSIX relative paths. `**` spans directories, `*` and `?` stay within one
    path segment, and unless @dot is set, wildcards never match a segment
    starting with a dot.
    """
    no_dot = '' if dot else r'(?!\.)'
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        at_segment_start = i == 0 or pattern[i - 1] == '/'
        if pattern.startswith('**/', i) and at_segment_start:
            parts.append(f'(?:{no_dot}[^/]*/)*')
            i += 3
        elif pattern.startswith('**', i) and at_segment_start:
            parts.append(f'(?:{no_dot}[^/]*(?:/{no_dot}[^/]*)*)?')
            i += 2
        elif char == '*':
            parts.append((no_dot if at_segment_start else '') + '[^/]*')
            i += 1
        elif char == '?':
            parts.append((no_dot if at_segment_start else '') + '[^/]')
            i += 1
        else:
            parts.append(re.escape(char))
            i += 1
    return ''.join(parts) + r'\Z'


def _resolve_dir(context: Context, dest: Path | ContextDir):
    if dest in CONTEXT_DIR_KEYS:
        return context[t.cast(ContextDir, dest)]
    return Path(dest)


class DirPathCalc(PathCalc[T]):
    """
    PathCalc which mirrors input paths under a destination directory. Paths
    are taken relative to `source_dir / base` and placed under
    `dest / subdir`. If @ext is specified, it will replace the extension of
    input paths.
    """
    def __init__(self,
                 dest: Path | ContextDir,
                 subdir: str | Path = '',
                 base: str | Path = '',
                 ext: str | None = None,
                 transform: t.Callable[[Path], Path] | None = None):
        self.dest = dest
        self.subdir = Path(subdir)
        self.base = Path(base)
        self.ext = ext
        self.transform = transform

    def __call__(self, context: Context, path: Path, match: T) -> Path:
        rel = path.relative_to(context['source_dir'] / self.base)
        if self.transform:
            rel = self.transform(rel)
        new_path = _resolve_dir(context, self.dest) / self.subdir / rel
        if self.ext is not None:
            new_path = new_path.with_suffix(self.ext)
        return new_path


class BuildDirPathCalc(DirPathCalc[T]):
    """
    DirPathCalc which mirrors input paths under the Context's build directory.
    """
    def __init__(self,
                 subdir: str | Path = '',
                 base: str | Path = '',
                 ext: str | None = None,
                 transform: t.Callable[[Path], Path] | None = None):
        super().__init__('build_dir', subdir, base, ext, transform)


class FixedPathCalc(PathCalc[t.Any]):
    """
    PathCalc which ignores its input and always yields @name inside @dest,
    for tasks which bundle many inputs into one output.
    """
    def __init__(self, dest: Path | ContextDir, name: str | Path):
        self.dest = dest
        self.name = Path(name)

    def __call__(self, context: Context, path: Path, match: t.Any) -> Path:
        return _resolve_dir(context, self.dest) / self.name


class REMatcher(Matcher[re.Match | None]):
    """
    Path Matcher using regular expressions. @re_flags will be passed to
    `re.compile()`. @parent_dir, if specified, should be a key to a configured
    directory, not a Path, and will be used to handle matching the beginning of
    Paths; this can be used to avoid pitfalls with unexpected characters in
    project or source directories.
    """
    def __init__(self, re_string: str, re_flags: int = 0, parent_dir: ContextDir | None = None):
        self.regex = re.compile(re_string, re_flags)
        self.parent_dir: ContextDir | None = parent_dir

    def __call__(self, context: Context, path: Path):
        if self.parent_dir:
            # Handle this part of matching outside the regex.
            if not path.is_relative_to(context[self.parent_dir]):
                return None
            path = path.relative_to(context[self.parent_dir])
        return self.regex.match(path.as_posix())


class GlobMatcher(Matcher[bool]):
    """
    Path Matcher using gulp-style globs relative to a configured directory.
    Patterns starting with `!` exclude whatever they match, regardless of
    their position. @dot allows wildcards to match dotfiles.
    """
    def __init__(self,
                 patterns: str | t.Sequence[str],
                 parent_dir: ContextDir = 'source_dir',
                 dot: bool = False):
        if isinstance(patterns, str):
            patterns = [patterns]
        self.patterns = list(patterns)
        self.parent_dir: ContextDir = parent_dir
        self.include = [
            re.compile(glob_to_re(p, dot)) for p in self.patterns if not p.startswith('!')
        ]
        # Negations always see dotfiles, so `!dir/**` really excludes dir.
        self.exclude = [
            re.compile(glob_to_re(p[1:], True)) for p in self.patterns if p.startswith('!')
        ]

    def __repr__(self):
        return f'{self.__class__.__name__}({self.patterns!r}, {self.parent_dir!r})'

    def match_relative(self, rel: str) -> bool:
        """
        Match a POSIX path string already relative to the parent directory.
        """
        return (
            any(r.match(rel) for r in self.include)
            and not any(r.match(rel) for r in self.exclude)
        )

    def __call__(self, context: Context, path: Path):
        parent = context[self.parent_dir]
        if not path.is_relative_to(parent):
            return False
        return self.match_relative(path.relative_to(parent).as_posix())
