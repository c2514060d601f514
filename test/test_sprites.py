from pathlib import Path

import pytest
from PIL import Image

from shoal.core import TaskError
from shoal.pipeline import build_tasks
from shoal.sprites import Placement, SpriteError, layout_sprites, partition_sprites, sheet_size
from shoal.test_harness import make_context, make_png, write_tree


PNG_DIR = Path('src/images/sprites/png')
SVG_DIR = Path('src/images/sprites/svg')


@pytest.fixture
def png_project(tmp_path: Path):
    make_png(tmp_path / PNG_DIR / 'icon.png', (10, 8), (255, 0, 0, 255))
    make_png(tmp_path / PNG_DIR / 'icon@2x.png', (20, 16), (0, 255, 0, 255))
    make_png(tmp_path / PNG_DIR / 'logo.png', (12, 6), (0, 0, 255, 255))
    return tmp_path


def test_partition_sprites():
    paths = [Path('b@2x.png'), Path('a.png'), Path('b.png')]
    standard, retina = partition_sprites(paths)
    assert standard == [Path('a.png'), Path('b.png')]
    assert retina == {'b': Path('b@2x.png')}


def test_partition_sprites_orphan():
    with pytest.raises(SpriteError):
        partition_sprites([Path('a.png'), Path('b@2x.png')])


@pytest.mark.parametrize('algorithm,expected', [
    ('top-down', [(0, 0), (0, 10), (0, 16)]),
    ('left-right', [(0, 0), (12, 0), (18, 0)]),
])
def test_layout_sprites(algorithm, expected):
    sizes = [(10, 8), (4, 4), (6, 2)]
    assert layout_sprites(sizes, padding=2, algorithm=algorithm) == expected


def test_layout_binary_tree_no_overlap():
    sizes = [(10, 8), (4, 4), (6, 2), (9, 9), (3, 12)]
    positions = layout_sprites(sizes, padding=2, algorithm='binary-tree')
    boxes = [(x, y, x + w + 2, y + h + 2) for (x, y), (w, h) in zip(positions, sizes)]
    for i, a in enumerate(boxes):
        for b in boxes[i + 1:]:
            assert a[2] <= b[0] or b[2] <= a[0] or a[3] <= b[1] or b[3] <= a[1]


def test_sheet_size():
    placements = [
        Placement(Path('a.png'), 'a', 0, 0, 10, 8),
        Placement(Path('b.png'), 'b', 0, 10, 12, 6),
    ]
    assert sheet_size(placements) == (12, 16)


def test_png_sprites(png_project: Path):
    context = make_context(png_project)
    build_tasks()['png_sprites'](context)

    images_dir = context['build_dir'] / 'images'
    with Image.open(images_dir / 'sprites.png') as sheet:
        assert sheet.size == (12, 16)
        assert sheet.convert('RGBA').getpixel((0, 0)) == (255, 0, 0, 255)
        assert sheet.convert('RGBA').getpixel((0, 10)) == (0, 0, 255, 255)
    with Image.open(images_dir / 'sprites@2x.png') as retina:
        assert retina.size == (24, 32)
        assert retina.convert('RGBA').getpixel((0, 0)) == (0, 255, 0, 255)
        # The retina sheet only holds retina sources.
        assert retina.convert('RGBA').getpixel((0, 20)) == (0, 0, 0, 0)

    stylesheet = (png_project / 'src' / 'scss' / '_sprites.scss').read_text()
    assert "'icon.png'" in stylesheet
    assert "'icon@2x.png'" in stylesheet
    assert '$icon: (0px, 0px, 0px, 0px, 10px, 8px, 12px, 16px' in stylesheet
    assert '$logo: (0px, 10px, 0px, -10px, 12px, 6px, 12px, 16px' in stylesheet
    assert '$icon-2x: (0px, 0px, 0px, 0px, 20px, 16px, 24px, 32px' in stylesheet
    assert '@mixin retina-sprite' in stylesheet


def test_png_sprites_drops_stale_retina_sheet(png_project: Path):
    task = build_tasks()['png_sprites']
    context = make_context(png_project)
    task(context)
    retina_sheet = context['build_dir'] / 'images' / 'sprites@2x.png'
    assert retina_sheet.exists()

    (png_project / PNG_DIR / 'icon@2x.png').unlink()
    task(context)
    assert not retina_sheet.exists()
    assert (context['build_dir'] / 'images' / 'sprites.png').exists()
    assert '-2x' not in (png_project / 'src' / 'scss' / '_sprites.scss').read_text()


def test_png_sprites_custom_template(png_project: Path):
    write_tree(png_project, {
        'src/scss/_sprites.scss.jinja': '{% for s in sprites %}{{ s.name }}={{ s.image }};{% endfor %}\n',
    })
    context = make_context(png_project)
    build_tasks()['png_sprites'](context)
    stylesheet = (png_project / 'src' / 'scss' / '_sprites.scss').read_text()
    assert stylesheet == 'icon=../images/sprites.png;logo=../images/sprites.png;'


def test_png_sprites_orphan_retina(tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    make_png(tmp_path / PNG_DIR / 'a.png', (4, 4))
    make_png(tmp_path / PNG_DIR / 'b@2x.png', (8, 8))

    build_tasks()['png_sprites'](make_context(tmp_path))
    assert 'SpriteError' in capsys.readouterr().err

    with pytest.raises(TaskError):
        build_tasks()['png_sprites'](make_context(tmp_path, throw_errors=True))


SVG_SOURCES = {
    SVG_DIR / 'home.svg': (
        '<?xml version="1.0"?>\n'
        '<svg xmlns="http://www.w3.org/2000/svg" '
        'xmlns:inkscape="http://www.inkscape.org/namespaces/inkscape" '
        'id="svg8" viewBox="0 0 24 24" inkscape:version="1.3">\n'
        '  <!-- comment -->\n'
        '  <metadata>meta</metadata>\n'
        '  <path id="roof" d="M0 0h24v24H0z"/>\n'
        '</svg>\n'
    ),
    SVG_DIR / 'search.svg': (
        '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 16 16">'
        '<defs><linearGradient id="g"/></defs>'
        '<circle cx="8" cy="8" r="4" fill="url(#g)"/>'
        '</svg>'
    ),
}


@pytest.fixture
def svg_project(tmp_path: Path):
    write_tree(tmp_path, {str(k): v for k, v in SVG_SOURCES.items()})
    return tmp_path


def test_svg_sprites_development(svg_project: Path):
    context = make_context(svg_project)
    build_tasks()['svg_sprites'](context)
    data = (context['build_dir'] / 'images' / 'sprites.svg').read_text()

    assert data.startswith('<?xml version="1.0" encoding="UTF-8"?>\n<!DOCTYPE svg')
    assert '>\n<svg' in data
    assert '>\n<symbol id="home" viewBox="0 0 24 24">' in data
    assert '>\n<symbol id="search" viewBox="0 0 16 16">' in data
    assert data.rstrip().endswith('>\n</svg>')
    assert 'svg8' not in data
    assert 'id="roof"' in data
    assert '<linearGradient id="g"/>' in data
    assert 'comment' not in data
    assert 'metadata' not in data
    assert 'inkscape' not in data


def test_svg_sprites_production(svg_project: Path):
    context = make_context(svg_project, production=True)
    build_tasks()['svg_sprites'](context)
    data = (context['build_dir'] / 'images' / 'sprites.svg').read_text()
    assert '\n' not in data
    assert '<symbol id="home" viewBox="0 0 24 24">' in data
