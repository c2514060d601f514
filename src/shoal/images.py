"""
Steps for recompressing raster images and minifying vector images.
"""
from __future__ import annotations

import shutil
import typing as t
from pathlib import Path

from .core import Step
from .dependencies import PipDependency, WebExecDependency
from .simple import BaseStandardStep, run_command


OPTIPNG = WebExecDependency('optipng', 'http://optipng.sourceforge.net')

# Namespaces of editor bookkeeping that browsers never read.
EDITOR_NAMESPACES = {
    'http://www.inkscape.org/namespaces/inkscape',
    'http://sodipodi.sourceforge.net/DTD/sodipodi-0.dtd',
    'http://www.bohemiancoding.com/sketch/ns',
    'http://ns.adobe.com/AdobeIllustrator/10.0/',
    'http://ns.adobe.com/AdobeSVGViewerExtensions/3.0/',
    'http://ns.adobe.com/Extensibility/1.0/',
    'http://ns.adobe.com/Graphs/1.0/',
    'http://ns.adobe.com/SaveForWeb/1.0/',
    'http://ns.adobe.com/Variables/1.0/',
}
SVG_NAMESPACE = 'http://www.w3.org/2000/svg'


def parse_svg(data: bytes):
    """
    Parse SVG markup into an lxml element, dropping comments, processing
    instructions and whitespace-only text along the way.
    """
    from lxml import etree

    parser = etree.XMLParser(
        remove_blank_text=True,
        remove_comments=True,
        remove_pis=True,
        resolve_entities=False,
        no_network=True,
    )
    return etree.fromstring(data, parser)


def clean_svg(root):
    """
    Remove metadata and editor-specific elements and attributes from a parsed
    SVG in place. Element ids are kept.
    """
    from lxml import etree

    for element in list(root.iter(etree.Element)):
        qname = etree.QName(element)
        if qname.namespace in EDITOR_NAMESPACES or qname.localname == 'metadata':
            parent = element.getparent()
            if parent is not None:
                parent.remove(element)
            continue
        for attr in list(element.attrib):
            if etree.QName(attr).namespace in EDITOR_NAMESPACES:
                del element.attrib[attr]
    etree.cleanup_namespaces(root)
    return root


def minify_svg(data: bytes, pretty: bool = False) -> str:
    """
    Minify SVG markup, optionally keeping it indented for readability.
    """
    from lxml import etree

    root = clean_svg(parse_svg(data))
    return etree.tostring(root, encoding='unicode', pretty_print=pretty)


class SVGMinifyStep(BaseStandardStep):
    """
    A Step minifying SVG images with lxml. Output stays indented unless the
    Context is in production mode.
    """
    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('lxml'),
        }

    def __call__(self, path: Path, output_paths: list[Path]):
        data = minify_svg(path.read_bytes(), pretty=not self.context['production'])
        with self.ensure_outputs(output_paths):
            self.write_text(output_paths[0], data)


class PillowOptimizeStep(Step):
    """
    A Pillow Step which re-encodes GIF, JPEG and PNG images in their own
    format with size-oriented settings: GIFs interlaced, JPEGs progressive,
    PNGs optimized. PNG output is further passed through optipng at
    @optipng_level when that executable is installed.
    """
    def __init__(self,
                 interlaced: bool = True,
                 progressive: bool = True,
                 optipng_level: int | None = 3):
        self.interlaced = interlaced
        self.progressive = progressive
        self.optipng_level = optipng_level

    @classmethod
    def get_dependencies(cls):
        return super().get_dependencies() | {
            PipDependency(
                'Pillow',
                check_name='PIL'
            ),
        }

    def save_options(self, image_format: str | None) -> dict[str, t.Any]:
        """
        Return the Pillow save options for an image of @image_format.
        """
        if image_format == 'GIF':
            return {'interlace': self.interlaced, 'optimize': True}
        if image_format == 'JPEG':
            return {'progressive': self.progressive, 'optimize': True, 'quality': 'keep'}
        if image_format == 'PNG':
            return {'optimize': True}
        return {}

    def __call__(self, path: Path, output_paths: list[Path]):
        from PIL import Image

        output_paths[0].parent.mkdir(parents=True, exist_ok=True)
        with Image.open(path) as img:
            options = self.save_options(img.format)
            if getattr(img, 'is_animated', False):
                options['save_all'] = True
            img.save(output_paths[0], format=img.format, **options)

        if self.optipng_level is not None and output_paths[0].suffix.lower() == '.png':
            optimize_png(output_paths[0], self.optipng_level)

        for target_path in output_paths[1:]:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy(output_paths[0], target_path)


def optimize_png(path: Path, level: int = 3):
    """
    Losslessly recompress a PNG in place with optipng, if it is installed.
    """
    if executable := OPTIPNG.which():
        run_command([executable, '-quiet', '-o', str(level), str(path)])
