"""
Trackable requirements for Steps: Python packages and external executables.
"""
from __future__ import annotations

import abc
import importlib
import shutil
from pathlib import Path


class Dependency(abc.ABC):
    """
    A base class for trackable, evaluable dependencies.
    """

    @property
    @abc.abstractmethod
    def satisfied(self) -> bool:
        """
        A bool indicating whether this dependency is met.
        """

    @property
    def needed(self) -> bool:
        """
        A bool indicating whether this dependency is needed on the current platform.
        """
        return True

    @property
    @abc.abstractmethod
    def install_hint(self) -> str:
        """
        A string giving help on how to install this dependency.
        """

    def __repr__(self):
        return f'{self.__class__.__name__}({self}, needed={self.needed}, satisfied={self.satisfied})'


class PipDependency(Dependency):
    """
    A Dependency on a pip-installable package. @check_name is the importable
    module name when it differs from the distribution name, as with
    `libsass` (imported as `sass`).
    """
    def __init__(self,
                 name: str,
                 source: str | None = None,
                 check_name: str | None = None):
        self.name = name
        self.source = source or name
        self.check_name = check_name or name

    def __str__(self):
        return self.name

    @property
    def satisfied(self):
        try:
            importlib.import_module(self.check_name)
        except ImportError:
            return False
        return True

    @property
    def install_hint(self):
        return f'pip install {self.source}'


class WebExecDependency(Dependency):
    """
    A Dependency on a general internet-sourced executable found on PATH.
    """
    def __init__(self,
                 name: str,
                 source: str | None = None,
                 check_name: str | None = None):
        self.name = name
        self.source = source or name
        self.check_name = check_name or name

    def __str__(self):
        return self.name

    def which(self) -> str | None:
        """
        Return the full path of the executable, or None if it is missing.
        """
        return shutil.which(self.check_name)

    @property
    def satisfied(self):
        return bool(self.which())

    @property
    def install_hint(self):
        return self.source


class NodeExecDependency(WebExecDependency):
    """
    A Dependency on an npm-distributed executable. A project-local install in
    `node_modules/.bin` under @project_dir wins over one found on PATH.
    """
    def __init__(self,
                 name: str,
                 package: str | None = None,
                 check_name: str | None = None,
                 project_dir: Path | None = None):
        self.package = package or name
        super().__init__(name, f'npm install --save-dev {self.package}', check_name)
        self.project_dir = project_dir or Path('.')

    def which(self):
        local_bin = self.project_dir / 'node_modules' / '.bin'
        return shutil.which(self.check_name, path=str(local_bin)) or shutil.which(self.check_name)
