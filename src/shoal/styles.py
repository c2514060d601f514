"""
Steps for compiling SCSS into minified, prefixed CSS.
"""
from __future__ import annotations

from pathlib import Path

from .dependencies import PipDependency
from .minify import LIGHTNINGCSS, CSSMinifier
from .simple import BaseStandardStep


class SassStep(BaseStandardStep):
    """
    A Step compiling an SCSS file with libsass, then post-processing the CSS
    with @minifier (pass None to keep libsass output as-is).

    Output paths are the stylesheet and its source map. The map carries the
    contents of every SCSS source, and a `sourceMappingURL` comment pointing
    at it is appended to the stylesheet.
    """
    def __init__(self,
                 minifier: CSSMinifier | None = None,
                 output_style: str = 'expanded',
                 include_paths: list[Path] | None = None):
        self.minifier = minifier
        self.output_style = output_style
        self.include_paths = include_paths or []

    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('libsass', check_name='sass'),
            LIGHTNINGCSS,
        }

    def __call__(self, path: Path, output_paths: list[Path]):
        import sass

        css_path, map_path = output_paths
        css, source_map = sass.compile(
            filename=str(path),
            output_style=self.output_style,
            include_paths=[str(p) for p in self.include_paths],
            source_map_filename=str(map_path),
            source_map_contents=True,
            omit_source_map_url=True,
            output_filename_hint=str(css_path),
        )
        if self.minifier:
            css = self.minifier(css, str(path))

        css = css.rstrip('\n') + f'\n/*# sourceMappingURL={map_path.name} */\n'
        self.ensure_output_dirs(output_paths)
        self.write_text(css_path, css)
        self.write_text(map_path, source_map)
