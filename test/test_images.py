from pathlib import Path

import pytest
from PIL import Image

from shoal.core import TaskError
from shoal.images import minify_svg
from shoal.pipeline import build_tasks
from shoal.test_harness import make_context, make_png, write_tree


LOGO = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    '<!-- Created with Inkscape -->\n'
    '<svg xmlns="http://www.w3.org/2000/svg"\n'
    '     xmlns:inkscape="http://www.inkscape.org/namespaces/inkscape"\n'
    '     xmlns:sodipodi="http://sodipodi.sourceforge.net/DTD/sodipodi-0.dtd"\n'
    '     id="logo" viewBox="0 0 10 10" inkscape:version="1.3">\n'
    '  <sodipodi:namedview id="view"/>\n'
    '  <metadata><title>logo</title></metadata>\n'
    '  <rect id="box" width="10" height="10"/>\n'
    '</svg>\n'
)


@pytest.fixture
def project(tmp_path: Path):
    images = tmp_path / 'src' / 'images'
    make_png(images / 'photo.png', (8, 8), (10, 20, 30, 255))
    Image.new('RGB', (16, 16), (200, 100, 50)).save(images / 'photo.jpg', format='JPEG', quality=90)
    Image.new('P', (4, 4)).save(images / 'anim.gif', format='GIF')
    write_tree(tmp_path, {
        'src/images/logo.svg': LOGO,
        'src/images/notes.txt': 'keep me',
    })
    return tmp_path


def test_images(project: Path):
    context = make_context(project, throw_errors=True)
    build_tasks()['images'](context)
    out = context['build_dir'] / 'images'

    with Image.open(out / 'photo.png') as png:
        assert png.format == 'PNG'
        assert png.convert('RGBA').getpixel((3, 3)) == (10, 20, 30, 255)
    with Image.open(out / 'photo.jpg') as jpeg:
        assert jpeg.format == 'JPEG'
        assert jpeg.info.get('progressive')
    with Image.open(out / 'anim.gif') as gif:
        assert gif.format == 'GIF'
        assert gif.size == (4, 4)
    assert (out / 'notes.txt').read_text() == 'keep me'

    svg = (out / 'logo.svg').read_text()
    assert 'Inkscape' not in svg
    assert 'inkscape' not in svg
    assert 'sodipodi' not in svg
    assert 'metadata' not in svg
    assert 'id="logo"' in svg
    assert 'id="box"' in svg


def test_images_production_svg(project: Path):
    context = make_context(project, production=True)
    build_tasks()['images'](context)
    svg = (context['build_dir'] / 'images' / 'logo.svg').read_text()
    assert svg == '<svg xmlns="http://www.w3.org/2000/svg" id="logo" viewBox="0 0 10 10"><rect id="box" width="10" height="10"/></svg>'


def test_minify_svg_pretty():
    assert minify_svg(LOGO.encode()).count('\n') == 0
    assert minify_svg(LOGO.encode(), pretty=True).count('\n') > 1


def test_images_batch_lenient(project: Path, capsys: pytest.CaptureFixture[str]):
    write_tree(project, {'src/images/broken.png': 'not a png'})
    context = make_context(project)
    build_tasks()['images'](context)

    assert 'broken.png' in capsys.readouterr().err
    assert (context['build_dir'] / 'images' / 'photo.png').exists()
    assert (context['build_dir'] / 'images' / 'photo.jpg').exists()


def test_images_batch_strict(project: Path):
    write_tree(project, {'src/images/broken.png': 'not a png'})
    context = make_context(project, throw_errors=True)
    with pytest.raises(TaskError) as excinfo:
        build_tasks()['images'](context)

    assert [path.name for path, _error in excinfo.value.failures] == ['broken.png']
    # Siblings after the failure were still processed.
    assert (context['build_dir'] / 'images' / 'photo.png').exists()
    assert (context['build_dir'] / 'images' / 'logo.svg').exists()
