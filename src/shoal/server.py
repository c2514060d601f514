"""
The development server: serves the build directory over HTTP with ETag
caching and pushes live-reload notifications to open pages whenever the
build directory changes.
"""
from __future__ import annotations

import argparse
import hashlib
import http.server
import mimetypes
import os
import pathlib
import threading
import typing

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .pretty_utils import print_task, print_with_style
from .tasks import Task

if typing.TYPE_CHECKING:
    from socketserver import _AfInetAddress
    from .core import Context
    from .tasks import ChangeEvent


INDEX_FILE = 'index.html'
# Default used by nginx
DEFAULT_MIME_TYPE = 'application/octet-stream'
LIVE_RELOAD_PATH = '/__livereload'
LIVE_RELOAD_SCRIPT = (
    '<script>'
    f'new EventSource("{LIVE_RELOAD_PATH}")'
    '.addEventListener("reload", function () { location.reload(); });'
    '</script>'
)
# Seconds between keep-alive comments on idle live-reload streams.
KEEPALIVE_INTERVAL = 15.0


class LiveReload:
    """
    A change counter that live-reload streams block on. Each `notify()` bumps
    the version and wakes every waiting stream.
    """
    def __init__(self):
        self.version = 0
        self.closed = False
        self._condition = threading.Condition()

    def notify(self):
        with self._condition:
            self.version += 1
            self._condition.notify_all()

    def close(self):
        with self._condition:
            self.closed = True
            self._condition.notify_all()

    def wait(self, seen: int, timeout: float | None = None) -> int:
        """
        Block until the version moves past @seen, the channel closes or
        @timeout passes, then return the current version.
        """
        with self._condition:
            self._condition.wait_for(lambda: self.closed or self.version != seen, timeout)
            return self.version


class BuildChangeHandler(FileSystemEventHandler):
    """
    Notify a `LiveReload` channel of every file change under the build
    directory.
    """
    def __init__(self, live_reload: LiveReload):
        super().__init__()
        self.live_reload = live_reload

    def on_any_event(self, event: FileSystemEvent):
        if not event.is_directory and event.event_type != 'opened':
            self.live_reload.notify()


class ThreadedHTTPServer(http.server.ThreadingHTTPServer):
    """
    A simple HTTP server that handles each request in a separate thread.
    """
    RequestHandlerClass: typing.Type[http.server.SimpleHTTPRequestHandler]
    def __init__(self,
                  server_address: _AfInetAddress,
                  RequestHandlerClass: typing.Type[http.server.SimpleHTTPRequestHandler],
                  directory: str | pathlib.Path = '.',
                  html_ext: bool = True,
                  live_reload: LiveReload | None = None,
                  bind_and_activate: bool = True) -> None:
        super().__init__(server_address, RequestHandlerClass, bind_and_activate)
        self.directory = str(directory)
        self.html_ext = html_ext
        self.live_reload = live_reload

    def finish_request(self, request, client_address) -> None:
        self.RequestHandlerClass(request, client_address, self, directory=self.directory)


class Handler(http.server.SimpleHTTPRequestHandler):
    server: ThreadedHTTPServer

    def log_message(self, format, *args):  # pylint: disable=redefined-builtin
        print_task('serve', format % args)

    def get_etag(self, file_path):
        """
        Generate an etag for a file based on its path and modification time.
        """
        mtime = os.path.getmtime(file_path)
        file_size = os.path.getsize(file_path)
        live = int(self.server.live_reload is not None)
        file_info = f"{file_size}-{mtime}-{live}"
        return hashlib.md5(file_info.encode('utf-8')).hexdigest()

    def resolve_file(self) -> pathlib.Path:
        """
        Map the request path to a file, serving directory indexes and, when
        URLs go without the `.html` extension, `page.html` for `/page`.
        """
        file_path = pathlib.Path(self.translate_path(self.path))
        if file_path.is_dir():
            file_path /= INDEX_FILE
        elif not file_path.exists() and not self.server.html_ext:
            candidate = file_path.with_name(file_path.name + '.html')
            if candidate.is_file():
                file_path = candidate
        return file_path

    def stream_live_reload(self, live_reload: LiveReload):
        seen = live_reload.version
        self.send_response(200)
        self.send_header('Content-type', 'text/event-stream')
        self.send_header('Cache-Control', 'no-cache')
        self.end_headers()
        try:
            while not live_reload.closed:
                version = live_reload.wait(seen, KEEPALIVE_INTERVAL)
                if live_reload.closed:
                    break
                if version != seen:
                    seen = version
                    self.wfile.write(b'event: reload\ndata: reload\n\n')
                else:
                    self.wfile.write(b': keep-alive\n\n')
                self.wfile.flush()
        except (BrokenPipeError, ConnectionResetError):
            pass

    def do_GET(self):
        live_reload = self.server.live_reload
        if live_reload and self.path.split('?', 1)[0] == LIVE_RELOAD_PATH:
            return self.stream_live_reload(live_reload)
        try:
            # Get the etag for the file
            file_path = self.resolve_file()

            # Double-check that we haven't escaped the directory.
            # self.translate_path() should discard any suspicious path
            # components, but it's better to be safe.
            if not file_path.is_relative_to(self.directory):
                return self.send_error(403, 'Forbidden')

            etag = self.get_etag(file_path)
            # Check if the client already has the file
            if 'If-None-Match' in self.headers and self.headers['If-None-Match'] == etag:
                self.send_response(304)
                self.end_headers()
                return None

            # Get the file extension and set the MIME type accordingly
            mime_type, _enc = mimetypes.guess_type(file_path)
            if live_reload and mime_type == 'text/html':
                return self.send_html(file_path, etag)

            self.send_response(200)
            self.send_header('Content-type', mime_type or DEFAULT_MIME_TYPE)
            self.send_header('Content-Length', str(os.path.getsize(file_path)))
            self.send_header('ETag', etag)
            self.end_headers()
            # Serve the file
            with open(file_path, 'rb') as file:
                # Serve the file in chunks to avoid reading the entire file
                # into memory
                chunk_size = 8192
                while True:
                    chunk = file.read(chunk_size)
                    if not chunk:
                        break
                    self.wfile.write(chunk)
        except (FileNotFoundError, NotADirectoryError):
            self.send_error(404, f'File Not Found: {self.path}')
        return None

    def send_html(self, file_path: pathlib.Path, etag: str):
        """
        Serve an HTML page with the live-reload client injected before
        `</body>`, or appended when the page has no body end tag.
        """
        body = file_path.read_bytes()
        script = LIVE_RELOAD_SCRIPT.encode('utf-8')
        index = body.lower().rfind(b'</body>')
        if index == -1:
            body += script
        else:
            body = body[:index] + script + body[index:]
        self.send_response(200)
        self.send_header('Content-type', 'text/html')
        self.send_header('Content-Length', str(len(body)))
        self.send_header('ETag', etag)
        self.end_headers()
        self.wfile.write(body)


def serve(port: int,
          directory: str | pathlib.Path,
          host: str = 'localhost',
          html_ext: bool = True,
          live_reload: LiveReload | None = None):
    with ThreadedHTTPServer((host, port), Handler, directory, html_ext, live_reload) as httpd:
        print_with_style(f'Serving at http://{host}:{port}', style='green')
        httpd.serve_forever()


class ServeTask(Task):
    """
    A task serving the build directory with live reload until the Context is
    asked to stop.
    """
    def __init__(self, name: str, host: str = 'localhost', port: int = 8080):
        super().__init__(name)
        self.host = host
        self.port = port

    def run(self, context: Context, event: ChangeEvent | None = None):
        build_dir = context['build_dir']
        build_dir.mkdir(parents=True, exist_ok=True)

        live_reload = LiveReload()
        httpd = ThreadedHTTPServer(
            (self.host, self.port), Handler, build_dir, context['html_ext'], live_reload
        )
        observer = Observer()
        observer.schedule(BuildChangeHandler(live_reload), str(build_dir), recursive=True)
        observer.start()
        thread = threading.Thread(target=httpd.serve_forever, name=f'shoal-{self.name}', daemon=True)
        thread.start()
        print_task(self.name, f'Serving {build_dir} at http://{self.host}:{self.port}', style='green')
        try:
            context.stopping.wait()
        finally:
            live_reload.close()
            httpd.shutdown()
            httpd.server_close()
            observer.stop()
            observer.join()


def main(arguments: list[str] | None = None):
    parser = argparse.ArgumentParser(description='Serve a directory with live reload.')
    parser.add_argument('-p', '--port',
                        help='port to serve from',
                        type=int,
                        default=8080)
    parser.add_argument('-d', '--directory',
                        help='directory to serve',
                        type=pathlib.Path,
                        default='.')
    parser.add_argument('--host',
                        help='interface to bind',
                        default='localhost')
    parser.add_argument('--html-ext',
                        help='require the .html extension in page URLs',
                        action=argparse.BooleanOptionalAction,
                        default=True)
    args = parser.parse_args(arguments)
    serve(args.port, args.directory, args.host, args.html_ext)


if __name__ == '__main__':
    main()
