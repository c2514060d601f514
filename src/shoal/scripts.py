"""
Steps for assembling JavaScript: marker-comment includes, transpilation,
debug statement stripping, beautification and minification.
"""
from __future__ import annotations

import json
import os
import re
import typing as t
from pathlib import Path

from .core import ShoalError
from .dependencies import PipDependency
from .minify import RJSMIN, minify_js
from .simple import BaseStandardStep

if t.TYPE_CHECKING:
    from collections.abc import Sequence


Stage = t.Callable[[str], str]

INCLUDE_RE = re.compile(
    r'''^[ \t]*//[ \t]*@include\([ \t]*(?P<quote>['"])(?P<path>.+?)(?P=quote)[ \t]*\)[ \t]*;?[ \t]*$''',
    re.MULTILINE,
)
DEBUG_CALL_RE = re.compile(r'(?:window\.)?(?:console\.[A-Za-z_$][\w$]*|alert)\s*\(')
DEBUGGER_RE = re.compile(r'debugger(?![\w$])[ \t]*;?')
# Emitted text ending in one of these leaves the parser at a statement start.
STATEMENT_BOUNDARIES = {'', ';', '{', '}'}

DEFAULT_BEAUTIFY_OPTIONS = {
    'indent_with_tabs': True,
    'end_with_newline': True,
    'max_preserve_newlines': 2,
}


class IncludeError(ShoalError):
    """
    Exception raised for a missing or circular script include.
    """


def include_lines(path: Path,
                  encoding: str = 'utf-8',
                  _stack: tuple[Path, ...] = (),
                  _sources: list[Path] | None = None):
    """
    Replace every `// @include('file.js')` line in @path with the lines of
    the named file, resolved relative to the including file and itself
    resolved recursively.

    :return: Every assembled line as `(text, source, number)`, where @source
        indexes the second return value: every file the text was assembled
        from, in first-use order.
    """
    sources = [] if _sources is None else _sources
    path = path.absolute()
    if path in _stack:
        chain = ' -> '.join(p.name for p in (*_stack, path))
        raise IncludeError(f'Circular include: {chain}')
    try:
        text = path.read_text(encoding)
    except FileNotFoundError as e:
        parent = f' (included from {_stack[-1]})' if _stack else ''
        raise IncludeError(f'Missing include {path}{parent}') from e

    if path not in sources:
        sources.append(path)
    index = sources.index(path)

    lines: list[tuple[str, int, int]] = []
    for number, line in enumerate(text.split('\n')):
        match = INCLUDE_RE.fullmatch(line)
        if not match:
            lines.append((line, index, number))
            continue
        included = include_lines(path.parent / match['path'], encoding, (*_stack, path), sources)[0]
        # Trailing newlines of an included file are dropped.
        while included and not included[-1][0]:
            included.pop()
        lines.extend(included or [('', index, number)])
    return lines, sources


def resolve_includes(path: Path, encoding: str = 'utf-8'):
    """
    Assemble @path with its includes resolved, as `include_lines()` does.

    :return: The assembled text and every file it was assembled from, in
        first-use order.
    """
    lines, sources = include_lines(path, encoding)
    return '\n'.join(text for text, _source, _number in lines), sources


def _skip_string(code: str, start: int) -> int:
    quote = code[start]
    i = start + 1
    while i < len(code):
        if code[i] == '\\':
            i += 2
            continue
        if code[i] == quote:
            return i + 1
        if code[i] == '\n' and quote != '`':
            return i
        i += 1
    return len(code)


def _skip_comment(code: str, start: int) -> int:
    if code.startswith('//', start):
        end = code.find('\n', start)
        return len(code) if end == -1 else end
    end = code.find('*/', start + 2)
    return len(code) if end == -1 else end + 2


def _skip_call(code: str, start: int) -> int:
    """
    Return the index just past the `)` closing a call whose arguments begin
    at @start.
    """
    depth = 1
    i = start
    while i < len(code) and depth:
        char = code[i]
        if char in '"\'`':
            i = _skip_string(code, i)
            continue
        if code.startswith('//', i) or code.startswith('/*', i):
            i = _skip_comment(code, i)
            continue
        if char in '([{':
            depth += 1
        elif char in ')]}':
            depth -= 1
        i += 1
    return i


def _is_ident_char(char: str):
    return char.isalnum() or char in '_$'


def _last_significant(pieces: list[str]) -> str:
    for piece in reversed(pieces):
        if piece.startswith(('//', '/*')):
            continue
        if stripped := piece.rstrip():
            return stripped[-1]
    return ''


def strip_debug(code: str) -> str:
    """
    Remove `console.*()` calls, `alert()` calls and `debugger` statements.
    Calls standing as statements are dropped along with their semicolon;
    calls used as expressions become `void 0` so the surrounding code stays
    valid. Every remaining line keeps its line number.
    """
    out: list[str] = []
    i = 0
    while i < len(code):
        char = code[i]
        if char in '"\'`':
            end = _skip_string(code, i)
            out.append(code[i:end])
            i = end
            continue
        if code.startswith('//', i) or code.startswith('/*', i):
            end = _skip_comment(code, i)
            out.append(code[i:end])
            i = end
            continue
        if _is_ident_char(char) and (i == 0 or not (_is_ident_char(code[i - 1]) or code[i - 1] == '.')):
            if match := DEBUG_CALL_RE.match(code, i):
                previous = _last_significant(out)
                end = _skip_call(code, match.end())
                if previous in STATEMENT_BOUNDARIES:
                    rest = code[end:].lstrip(' \t')
                    if rest.startswith(';'):
                        end = len(code) - len(rest) + 1
                else:
                    out.append('void 0')
                # Line breaks inside a removed call are kept.
                out.append('\n' * code.count('\n', i, end))
                i = end
                continue
            if (match := DEBUGGER_RE.match(code, i)) and _last_significant(out) in STATEMENT_BOUNDARIES:
                i = match.end()
                continue
            end = i
            while end < len(code) and _is_ident_char(code[end]):
                end += 1
            out.append(code[i:end])
            i = end
            continue
        out.append(char)
        i += 1
    return ''.join(out)


BASE64_DIGITS = 'ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/'


def vlq_encode(*values: int) -> str:
    """
    Encode @values as source map Base64 VLQ digits.
    """
    digits: list[str] = []
    for value in values:
        value = (-value << 1) | 1 if value < 0 else value << 1
        while True:
            digit = value & 31
            value >>= 5
            if value:
                digit |= 32
            digits.append(BASE64_DIGITS[digit])
            if not value:
                break
    return ''.join(digits)


def significant_positions(code: str):
    """
    Find every character of @code outside whitespace and comments.

    :return: Those characters joined, and the `(line, column)` of each.
    """
    chars: list[str] = []
    positions: list[tuple[int, int]] = []
    line = line_start = 0
    i = 0
    while i < len(code):
        comment = code.startswith('//', i) or code.startswith('/*', i)
        if comment:
            end = _skip_comment(code, i)
        elif code[i] in '"\'`':
            end = _skip_string(code, i)
        else:
            end = i + 1
        for j in range(i, end):
            char = code[j]
            if char == '\n':
                line += 1
                line_start = j + 1
            elif not comment and not char.isspace():
                chars.append(char)
                positions.append((line, j - line_start))
        i = end
    return ''.join(chars), positions


Segment = tuple[int, int, int, int]


class ScriptMapping:
    """
    Positions in a script being assembled, traced back to the files it was
    assembled from. Each line of the current text holds a list of
    `(column, source, source_line, source_column)` segments.
    """
    def __init__(self, lines: list[list[Segment]]):
        self.lines = lines

    @classmethod
    def from_included(cls, lines: Sequence[tuple[str, int, int]]):
        segments: list[list[Segment]] = []
        for text, source, number in lines:
            if stripped := text.lstrip():
                column = len(text) - len(stripped)
                segments.append([(column, source, number, column)])
            else:
                segments.append([])
        return cls(segments)

    def origin(self, line: int, column: int):
        """
        Return `(source, source_line, source_column)` for a position in the
        current text, or None when it has no known origin.
        """
        segments = self.lines[line] if line < len(self.lines) else []
        if not segments:
            return None
        found = segments[0]
        for segment in segments[1:]:
            if segment[0] > column:
                break
            found = segment
        generated, source, source_line, source_column = found
        return source, source_line, max(source_column + column - generated, 0)

    def follow(self, before: str, after: str) -> ScriptMapping:
        """
        Trace positions through a stage that turned @before into @after.

        Stages that only change whitespace and comments are followed
        character by character; stages that keep every line in place are
        followed line by line. Anything else loses its positions.
        """
        old_chars, old_positions = significant_positions(before)
        new_chars, new_positions = significant_positions(after)
        if old_chars == new_chars:
            lines: list[list[Segment]] = [[] for _line in after.split('\n')]
            for (old_line, old_column), (new_line, new_column) in zip(old_positions, new_positions):
                origin = self.origin(old_line, old_column)
                if origin is None:
                    continue
                segments = lines[new_line]
                if segments and segments[-1][1:3] == origin[:2]:
                    continue
                segments.append((new_column, *origin))
            return ScriptMapping(lines)

        after_lines = after.split('\n')
        # Trailing line breaks may be dropped.
        same_lines = len(after_lines) == len(before.split('\n')) or (
            len(after.rstrip('\n').split('\n')) == len(before.rstrip('\n').split('\n'))
        )
        if not same_lines:
            return ScriptMapping([])
        lines = []
        for number, text in enumerate(after_lines):
            segments = self.lines[number] if number < len(self.lines) else []
            if not (segments and text.strip()):
                lines.append([])
                continue
            indent = len(text) - len(text.lstrip())
            rest = [s for s in segments[1:] if indent < s[0] < len(text)]
            lines.append([(indent, *segments[0][1:]), *rest])
        return ScriptMapping(lines)

    def encode(self) -> str:
        """
        Encode the segments as the `mappings` field of a version 3 source map.
        """
        groups: list[str] = []
        previous_source = previous_line = previous_column = 0
        for segments in self.lines:
            previous_generated = 0
            encoded = []
            for generated, source, source_line, source_column in segments:
                encoded.append(vlq_encode(
                    generated - previous_generated,
                    source - previous_source,
                    source_line - previous_line,
                    source_column - previous_column,
                ))
                previous_generated = generated
                previous_source, previous_line, previous_column = source, source_line, source_column
            groups.append(','.join(encoded))
        return ';'.join(groups).rstrip(';')


def sources_map(output_name: str,
                sources: Sequence[Path],
                map_dir: Path,
                encoding: str = 'utf-8',
                mappings: str = '') -> str:
    """
    Build a version 3 source map for @output_name, listing @sources with
    their contents so browser tools can show the original files.
    """
    return json.dumps({
        'version': 3,
        'file': output_name,
        'sources': [Path(os.path.relpath(s, map_dir)).as_posix() for s in sources],
        'sourcesContent': [s.read_text(encoding) for s in sources],
        'names': [],
        'mappings': mappings,
    })


class ScriptStep(BaseStandardStep):
    """
    Base class for script Steps: resolves includes, runs the text through
    `stages()` in order and writes the script and its source map, which are
    the two output paths. Positions are traced through every stage into the
    map's mappings.
    """
    def stages(self) -> list[Stage]:
        """
        Return the ordered text transformations for the current run.
        """
        return []

    def __call__(self, path: Path, output_paths: list[Path]):
        js_path, map_path = output_paths
        lines, sources = include_lines(path, self.encoding)
        code = '\n'.join(text for text, _source, _number in lines)
        mapping = ScriptMapping.from_included(lines)
        for stage in self.stages():
            staged = stage(code)
            mapping = mapping.follow(code, staged)
            code = staged

        code = code.rstrip('\n') + f'\n//# sourceMappingURL={map_path.name}\n'
        self.ensure_output_dirs(output_paths)
        self.write_text(js_path, code)
        self.write_text(map_path, sources_map(
            js_path.name, sources, map_path.parent, self.encoding, mapping.encode()
        ))


class ModernScriptStep(ScriptStep):
    """
    A Step for application scripts: transpiles with Babel (through dukpy) for
    the given @presets, strips debug statements in production mode, then
    beautifies with jsbeautifier. Pass `presets=None` to skip transpilation
    and `beautify=False` to skip beautification.
    """
    def __init__(self,
                 presets: Sequence[str] | None = ('es2015',),
                 beautify: bool = True,
                 beautify_options: dict[str, t.Any] | None = None):
        self.presets = list(presets) if presets else []
        self.beautify_enabled = beautify
        self.beautify_options = {**DEFAULT_BEAUTIFY_OPTIONS, **(beautify_options or {})}

    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('dukpy'),
            PipDependency('jsbeautifier'),
        }

    def transpile(self, code: str) -> str:
        import dukpy
        # Output keeps every statement on its input line.
        return dukpy.babel_compile(code, presets=self.presets, retainLines=True)['code']

    def beautify(self, code: str) -> str:
        import jsbeautifier
        options = jsbeautifier.default_options()
        for key, value in self.beautify_options.items():
            setattr(options, key, value)
        return jsbeautifier.beautify(code, options)

    def stages(self):
        stages: list[Stage] = []
        if self.presets:
            stages.append(self.transpile)
        if self.context['production']:
            stages.append(strip_debug)
        if self.beautify_enabled:
            stages.append(self.beautify)
        return stages


class VendorScriptStep(ScriptStep):
    """
    A Step for third-party scripts: includes are resolved and the result is
    minified with rjsmin, without transpilation.
    """
    @classmethod
    def get_dependencies(cls):
        return {
            RJSMIN,
        }

    def stages(self):
        return [minify_js]
