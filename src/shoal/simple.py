"""
Simple Steps and base classes for Steps writing text or invoking external
commandline tools.
"""
from __future__ import annotations

import contextlib
import os
import shutil
import subprocess
import tempfile
import typing as t
from pathlib import Path

from .core import Step

if t.TYPE_CHECKING:
    from _typeshed import StrOrBytesPath


class DirectCopyStep(Step):
    """
    A simple Step which only copies a file to its output paths without
    renaming or extension changes.
    """
    def __call__(self, path: Path, output_paths: list[Path]):
        for target_path in output_paths:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy(path, target_path)


class StandardMixin:
    """
    Helper behaviors for typical steps creating one file and copying it to
    others.
    """
    encoding = 'utf-8'
    newline = '\n'

    def ensure_output_dirs(self, output_paths: list[Path]):
        for o_path in output_paths:
            o_path.parent.mkdir(parents=True, exist_ok=True)

    def duplicate_output_paths(self, output_paths: list[Path]):
        for o_path in output_paths[1:]:
            shutil.copy(output_paths[0], o_path)

    @contextlib.contextmanager
    def ensure_outputs(self, output_paths: list[Path]):
        self.ensure_output_dirs(output_paths)
        yield
        self.duplicate_output_paths(output_paths)

    def write_text(self, path: Path, data: str):
        path.write_text(data, self.encoding, newline=self.newline)

    def write_atomic(self, path: Path, data: str | bytes):
        """
        Write @data to @path through a temporary sibling file so that readers
        never observe a partial file.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f'.{path.name}.')
        try:
            with os.fdopen(fd, 'wb') as file:
                file.write(data.encode(self.encoding) if isinstance(data, str) else data)
            os.replace(temp_name, path)
        except BaseException:
            os.unlink(temp_name)
            raise


class BaseStandardStep(StandardMixin, Step):
    """
    A base class providing helper behaviors for typical steps creating one file
    and copying to others.
    """


def run_command(command: StrOrBytesPath | list[StrOrBytesPath],
                cwd: Path | None = None,
                check: bool = True):
    """
    Run an external command, capturing combined output as text. With @check,
    a non-zero exit raises `subprocess.CalledProcessError`.
    """
    return subprocess.run(
        command,
        cwd=cwd,
        check=check,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
    )
