"""
Text stages for reducing the load cost of stylesheets and scripts.
"""
from collections.abc import Sequence

from .dependencies import PipDependency


LIGHTNINGCSS = PipDependency('lightningcss')
RJSMIN = PipDependency('rjsmin')


class CSSMinifier:
    """
    A powerful CSS minification stage, using lightningcss to add vendor
    prefixes for the browsers supported, fold `calc()` expressions and strip
    comments. z-index values are never renumbered, so explicit stacking
    orders survive.
    """
    def __init__(self,
                 error_recovery: bool = False,
                 parser_flags: dict[str, bool] | None = None,
                 unused_symbols: set[str] | None = None,
                 browsers_list: Sequence[str] | None = ('> 0%',),
                 minify: bool = True):

        self.error_recovery = error_recovery
        self.parser_flags = parser_flags or {}
        self.unused_symbols = unused_symbols
        self.browsers_list = list(browsers_list) if browsers_list else None
        self.minify = minify

    def __call__(self, code: str, filename: str = '') -> str:
        import lightningcss
        return lightningcss.process_stylesheet(
            code,
            filename=filename,
            error_recovery=self.error_recovery,
            parser_flags=lightningcss.calc_parser_flags(**self.parser_flags),
            unused_symbols=self.unused_symbols,
            browsers_list=self.browsers_list,
            minify=self.minify
        )


def minify_js(code: str) -> str:
    """
    Minify JavaScript with rjsmin, keeping `/*!` license comments.
    """
    import rjsmin
    return rjsmin.jsmin(code, keep_bang_comments=True)
