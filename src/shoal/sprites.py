"""
Steps for merging many small images into sprite sheets: PNG sheets (with a
retina variant and a generated stylesheet) and inline SVG symbol documents.
"""
from __future__ import annotations

import dataclasses
import typing as t
from pathlib import Path

from .core import BundleStep, ShoalError
from .dependencies import PipDependency
from .images import SVG_NAMESPACE, clean_svg, optimize_png, parse_svg
from .simple import StandardMixin

if t.TYPE_CHECKING:
    from collections.abc import Sequence


SpriteAlgorithm = t.Literal['top-down', 'left-right', 'binary-tree']

DEFAULT_STYLESHEET_TEMPLATE = '''\
// Generated from the PNG sprite sources; edit the template, not this file.
{% for sprite in sprites + retina_sprites %}
${{ sprite.name }}: ({{ sprite.x }}px, {{ sprite.y }}px, {{ sprite.offset_x }}px, {{ sprite.offset_y }}px, {{ sprite.width }}px, {{ sprite.height }}px, {{ sprite.total_width }}px, {{ sprite.total_height }}px, '{{ sprite.image }}', '{{ sprite.source }}');
{% endfor %}

@mixin sprite($sprite) {
	background-image: url(nth($sprite, 9));
	background-position: nth($sprite, 3) nth($sprite, 4);
	width: nth($sprite, 5);
	height: nth($sprite, 6);
}
{% if retina_groups %}

@mixin retina-sprite($sprite, $retina-sprite) {
	@include sprite($sprite);

	@media (-webkit-min-device-pixel-ratio: 2), (min-resolution: 192dpi) {
		background-image: url(nth($retina-sprite, 9));
		background-size: nth($sprite, 7) nth($sprite, 8);
	}
}
{% endif %}
'''

SVG_HEADER = (
    '<?xml version="1.0" encoding="UTF-8"?>'
    '<!DOCTYPE svg PUBLIC "-//W3C//DTD SVG 1.1//EN" '
    '"http://www.w3.org/Graphics/SVG/1.1/DTD/svg11.dtd">'
)
# Boundaries that get a line break in development builds.
SVG_BREAKS = [
    ('?><!', '?>\n<!'),
    ('><svg', '>\n<svg'),
    ('><symbol', '>\n<symbol'),
    ('></svg', '>\n</svg'),
]


class SpriteError(ShoalError):
    """
    Exception raised when sprite sources cannot be laid out, such as a retina
    image without a standard counterpart.
    """


@dataclasses.dataclass
class Placement:
    """
    Position of one image within a sprite sheet.
    """
    path: Path
    name: str
    x: int
    y: int
    width: int
    height: int


def partition_sprites(paths: Sequence[Path], retina_suffix: str = '@2x'):
    """
    Split sprite sources into standard images and a `{standard stem: retina
    path}` mapping of retina images, ordered by file name.
    """
    standard: list[Path] = []
    retina: dict[str, Path] = {}
    for path in sorted(paths, key=lambda p: p.name):
        if path.stem.endswith(retina_suffix):
            retina[path.stem[:-len(retina_suffix)]] = path
        else:
            standard.append(path)

    stems = {p.stem for p in standard}
    if orphans := sorted(set(retina) - stems):
        raise SpriteError(f'Retina sprites without a standard image: {", ".join(orphans)}')
    return standard, retina


class _Node:
    def __init__(self, x: int, y: int, w: int, h: int):
        self.x, self.y, self.w, self.h = x, y, w, h
        self.used = False
        self.right: _Node | None = None
        self.down: _Node | None = None

    def find(self, w: int, h: int) -> _Node | None:
        if self.used:
            return (self.right and self.right.find(w, h)) or (self.down and self.down.find(w, h))
        if w <= self.w and h <= self.h:
            return self
        return None

    def split(self, w: int, h: int):
        self.used = True
        self.down = _Node(self.x, self.y + h, self.w, self.h - h)
        self.right = _Node(self.x + w, self.y, self.w - w, h)
        return self


def _pack_binary_tree(sizes: list[tuple[int, int]]) -> list[tuple[int, int]]:
    # Growing packer: place big items first, extend the canvas right or down
    # whichever keeps it closer to square.
    order = sorted(range(len(sizes)), key=lambda i: (-max(sizes[i]), i))
    positions: list[tuple[int, int]] = [(0, 0)] * len(sizes)
    first_w, first_h = sizes[order[0]]
    root = _Node(0, 0, first_w, first_h)

    for i in order:
        w, h = sizes[i]
        node = root.find(w, h)
        if not node:
            can_down = w <= root.w
            can_right = h <= root.h
            grow_right = can_right and (root.h >= root.w + w or not can_down)
            if grow_right:
                new_root = _Node(0, 0, root.w + w, root.h)
                new_root.used = True
                new_root.down = root
                new_root.right = _Node(root.w, 0, w, root.h)
            elif can_down:
                new_root = _Node(0, 0, root.w, root.h + h)
                new_root.used = True
                new_root.down = _Node(0, root.h, root.w, h)
                new_root.right = root
            else:
                new_root = _Node(0, 0, max(root.w, w), root.h + h)
                new_root.used = True
                new_root.down = _Node(0, root.h, max(root.w, w), h)
                new_root.right = root
            root = new_root
            node = root.find(w, h)
            assert node is not None
        node.split(w, h)
        positions[i] = (node.x, node.y)
    return positions


def layout_sprites(sizes: list[tuple[int, int]],
                   padding: int = 2,
                   algorithm: SpriteAlgorithm = 'top-down') -> list[tuple[int, int]]:
    """
    Compute the top-left position of each of @sizes in a sheet, keeping
    @padding pixels between neighbors.
    """
    padded = [(w + padding, h + padding) for w, h in sizes]
    if not padded:
        return []
    if algorithm == 'top-down':
        positions, y = [], 0
        for _w, h in padded:
            positions.append((0, y))
            y += h
        return positions
    if algorithm == 'left-right':
        positions, x = [], 0
        for w, _h in padded:
            positions.append((x, 0))
            x += w
        return positions
    if algorithm == 'binary-tree':
        return _pack_binary_tree(padded)
    raise ValueError(f'Unknown sprite algorithm {algorithm!r}')


def sheet_size(placements: Sequence[Placement]):
    """
    Return the canvas size needed to hold @placements.
    """
    return (
        max((p.x + p.width for p in placements), default=0),
        max((p.y + p.height for p in placements), default=0),
    )


def _sprite_vars(placement: Placement, total: tuple[int, int], image: str, name: str):
    return {
        'name': name,
        'source': placement.path.name,
        'x': placement.x,
        'y': placement.y,
        'offset_x': -placement.x,
        'offset_y': -placement.y,
        'width': placement.width,
        'height': placement.height,
        'total_width': total[0],
        'total_height': total[1],
        'image': image,
        'escaped_image': image.replace(' ', '%20'),
    }


class PNGSpriteStep(StandardMixin, BundleStep):
    """
    A Pillow Step packing PNG images into a sprite sheet, plus a doubled
    resolution sheet for the retina subset (file names ending in
    @retina_suffix), and rendering a stylesheet fragment describing each
    sprite with a Jinja template.

    Output paths are the standard sheet, the retina sheet and the
    stylesheet, in that order. @template is looked up relative to the source
    directory; a built-in SCSS template is used when it does not exist.
    """
    def __init__(self,
                 template: str | None = None,
                 image_url: str = '../images/sprites.png',
                 retina_image_url: str = '../images/sprites@2x.png',
                 padding: int = 2,
                 algorithm: SpriteAlgorithm = 'top-down',
                 retina_suffix: str = '@2x'):
        self.template = template
        self.image_url = image_url
        self.retina_image_url = retina_image_url
        self.padding = padding
        self.algorithm: SpriteAlgorithm = algorithm
        self.retina_suffix = retina_suffix

    @classmethod
    def get_dependencies(cls):
        return super().get_dependencies() | {
            PipDependency('Pillow', check_name='PIL'),
            PipDependency('jinja2'),
        }

    def load_template(self):
        from jinja2 import Environment, FileSystemLoader

        env = Environment(
            loader=FileSystemLoader(self.context['source_dir']),
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        if self.template and (self.context['source_dir'] / self.template).exists():
            return env.get_template(self.template)
        return env.from_string(DEFAULT_STYLESHEET_TEMPLATE)

    def compose(self, placements: Sequence[Placement], size: tuple[int, int], target: Path):
        from PIL import Image

        with Image.new('RGBA', size, (0, 0, 0, 0)) as sheet:
            for placement in placements:
                with Image.open(placement.path) as img:
                    sheet.paste(img.convert('RGBA'), (placement.x, placement.y))
            target.parent.mkdir(parents=True, exist_ok=True)
            sheet.save(target, format='PNG', optimize=True)
        optimize_png(target)

    def __call__(self, paths: list[Path], output_paths: list[Path]):
        from PIL import Image

        sheet_path, retina_path, stylesheet_path = output_paths
        standard, retina = partition_sprites(paths, self.retina_suffix)

        sizes = []
        for path in standard:
            with Image.open(path) as img:
                sizes.append(img.size)
        positions = layout_sprites(sizes, self.padding, self.algorithm)
        placements = [
            Placement(path, path.stem, x, y, w, h)
            for path, (x, y), (w, h) in zip(standard, positions, sizes)
        ]
        total = sheet_size(placements)

        retina_placements = []
        for placement in placements:
            if r_path := retina.get(placement.name):
                with Image.open(r_path) as img:
                    r_width, r_height = img.size
                retina_placements.append(Placement(
                    r_path, placement.name, placement.x * 2, placement.y * 2, r_width, r_height
                ))
        retina_total = (total[0] * 2, total[1] * 2)

        if placements:
            self.compose(placements, total, sheet_path)
        if retina_placements:
            self.compose(retina_placements, retina_total, retina_path)
        else:
            # A sheet left from an earlier run no longer has any sources.
            retina_path.unlink(missing_ok=True)

        sprites = [_sprite_vars(p, total, self.image_url, p.name) for p in placements]
        retina_sprites = [
            _sprite_vars(p, retina_total, self.retina_image_url, f'{p.name}-2x')
            for p in retina_placements
        ]
        by_name = {s['name']: s for s in sprites}
        retina_groups = [
            {'name': r['name'][:-3], 'index': i, 'normal': by_name[r['name'][:-3]], 'retina': r}
            for i, r in enumerate(retina_sprites)
        ]
        stylesheet = self.load_template().render(
            sprites=sprites,
            retina_sprites=retina_sprites,
            retina_groups=retina_groups,
            spritesheet={'width': total[0], 'height': total[1], 'image': self.image_url},
            retina_spritesheet={
                'width': retina_total[0], 'height': retina_total[1], 'image': self.retina_image_url
            },
        )
        # Written into the source tree; an unchanged stylesheet is left alone.
        if not stylesheet_path.is_file() or stylesheet_path.read_text(self.encoding) != stylesheet:
            self.write_atomic(stylesheet_path, stylesheet)


def _adopt_namespace(root):
    from lxml import etree

    for element in root.iter(etree.Element):
        if etree.QName(element).namespace is None:
            element.tag = f'{{{SVG_NAMESPACE}}}{etree.QName(element).localname}'


class SVGSpriteStep(StandardMixin, BundleStep):
    """
    A Step merging SVG files into one document of `<symbol>` elements, one per
    source, identified by the source's file stem. Each source is cleaned as by
    `SVGMinifyStep` and its root id is replaced by the symbol id. In
    development builds, line breaks are inserted between top-level tags.
    """
    copied_attributes = ('viewBox', 'preserveAspectRatio')

    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('lxml'),
        }

    def build_document(self, paths: Sequence[Path]):
        from lxml import etree

        svg = f'{{{SVG_NAMESPACE}}}'
        root = etree.Element(f'{svg}svg', nsmap={None: SVG_NAMESPACE})
        defs = None
        for path in sorted(paths, key=lambda p: p.name):
            source = clean_svg(parse_svg(path.read_bytes()))
            _adopt_namespace(source)
            symbol = etree.SubElement(root, f'{svg}symbol', id=path.stem)
            for attr in self.copied_attributes:
                if attr in source.attrib:
                    symbol.set(attr, source.attrib[attr])
            for child in list(source):
                if child.tag == f'{svg}defs':
                    if defs is None:
                        defs = etree.Element(f'{svg}defs')
                        root.insert(0, defs)
                    defs.extend(list(child))
                else:
                    symbol.append(child)
        etree.cleanup_namespaces(root)
        return SVG_HEADER + etree.tostring(root, encoding='unicode')

    def __call__(self, paths: list[Path], output_paths: list[Path]):
        data = self.build_document(paths)
        if not self.context['production']:
            for old, new in SVG_BREAKS:
                data = data.replace(old, new)
        with self.ensure_outputs(output_paths):
            self.write_text(output_paths[0], data)
