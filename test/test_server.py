import contextlib
import pathlib
import socket
import threading
import time

import pytest
import requests

from shoal.server import LIVE_RELOAD_PATH, LIVE_RELOAD_SCRIPT, LiveReload, Handler, ThreadedHTTPServer, main
from shoal.test_harness import write_tree


SITE = {
    'index.html': '<html><body><h1>Home</h1></body></html>\n',
    'about.html': '<html><BODY>About</BODY></html>\n',
    'fragment.html': '<p>fragment</p>',
    'blog/index.html': '<html><body>Blog</body></html>\n',
    'css/main.css': 'body{color:red}',
}


def get_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(('localhost', 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@contextlib.contextmanager
def run_server(directory: pathlib.Path, port: int, html_ext: bool = True, live_reload: LiveReload | None = None):
    server = ThreadedHTTPServer(('localhost', port), Handler, directory, html_ext, live_reload)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield
    finally:
        if live_reload:
            live_reload.close()
        server.shutdown()
        server.server_close()
        thread.join()


@contextlib.contextmanager
def run_server_cli(directory: pathlib.Path, port: int):
    args = [
        '--port', str(port),
        '--directory', str(directory)
    ]
    thread = threading.Thread(target=main, args=(args,), daemon=True)
    thread.start()
    yield


def wait_for_port(port: int):
    for _ in range(50):
        with contextlib.suppress(OSError), socket.create_connection(('localhost', port), timeout=0.1):
            return
        time.sleep(0.1)


@pytest.fixture(scope='module')
def site(tmp_path_factory: pytest.TempPathFactory):
    directory = tmp_path_factory.mktemp('site')
    write_tree(directory, SITE)
    return directory


@pytest.fixture(scope='module', params=[False, True])
def server(request, site: pathlib.Path):
    port = get_port()
    runner = run_server if not request.param else run_server_cli
    with runner(site, port):
        wait_for_port(port)
        yield port


def test_server(server: int):
    response = requests.get(f'http://localhost:{server}/')
    assert response.status_code == 200
    assert response.headers['content-type'] == 'text/html'
    assert response.text == SITE['index.html']


def test_server_directory_index(server: int):
    response = requests.get(f'http://localhost:{server}/blog/')
    assert response.status_code == 200
    assert response.text == SITE['blog/index.html']


def test_server_mime_type(server: int):
    response = requests.get(f'http://localhost:{server}/css/main.css')
    assert response.status_code == 200
    assert response.headers['content-type'] == 'text/css'
    assert response.headers['content-length'] == str(len(SITE['css/main.css']))


def test_server_etag(server: int):
    response = requests.get(f'http://localhost:{server}/')
    assert response.status_code == 200
    assert response.headers['content-type'] == 'text/html'
    etag = response.headers['etag']
    new_response = requests.get(f'http://localhost:{server}/', headers={'If-None-Match': etag})
    assert new_response.status_code == 304


def test_server_stale_etag(server: int):
    response = requests.get(f'http://localhost:{server}/')
    assert response.status_code == 200
    assert response.headers['content-type'] == 'text/html'
    etag = response.headers['etag']
    new_response = requests.get(f'http://localhost:{server}/', headers={'If-None-Match': etag + '0'})
    assert new_response.status_code == 200


def test_server_404(server: int):
    response = requests.get(f'http://localhost:{server}/does_not_exist')
    assert response.status_code == 404


def test_server_requires_html_ext(server: int):
    assert requests.get(f'http://localhost:{server}/about').status_code == 404


def test_server_without_html_ext(site: pathlib.Path):
    port = get_port()
    with run_server(site, port, html_ext=False):
        response = requests.get(f'http://localhost:{port}/about')
        assert response.status_code == 200
        assert response.text == SITE['about.html']
        assert requests.get(f'http://localhost:{port}/about.html').status_code == 200
        assert requests.get(f'http://localhost:{port}/missing').status_code == 404


def test_server_live_reload_injection(site: pathlib.Path):
    port = get_port()
    with run_server(site, port, live_reload=LiveReload()):
        index = requests.get(f'http://localhost:{port}/')
        assert index.text == f'<html><body><h1>Home</h1>{LIVE_RELOAD_SCRIPT}</body></html>\n'
        assert index.headers['content-length'] == str(len(index.content))

        about = requests.get(f'http://localhost:{port}/about.html')
        assert about.text == f'<html><BODY>About{LIVE_RELOAD_SCRIPT}</BODY></html>\n'

        fragment = requests.get(f'http://localhost:{port}/fragment.html')
        assert fragment.text == f'<p>fragment</p>{LIVE_RELOAD_SCRIPT}'

        css = requests.get(f'http://localhost:{port}/css/main.css')
        assert css.text == SITE['css/main.css']


def test_server_live_reload_stream(site: pathlib.Path):
    port = get_port()
    live_reload = LiveReload()
    with run_server(site, port, live_reload=live_reload):
        with requests.get(f'http://localhost:{port}{LIVE_RELOAD_PATH}', stream=True, timeout=5) as response:
            assert response.headers['content-type'] == 'text/event-stream'
            live_reload.notify()
            lines = response.iter_lines(chunk_size=1)
            assert next(lines) == b'event: reload'
            assert next(lines) == b'data: reload'


def test_live_reload_wait():
    live_reload = LiveReload()
    assert live_reload.wait(0, timeout=0.01) == 0
    live_reload.notify()
    assert live_reload.wait(0) == 1
    live_reload.close()
    assert live_reload.wait(1) == 1
    assert live_reload.closed
