"""
Steps and tasks for rendering Jinja templates to HTML, including incremental
rebuilds driven by an explicit template dependency graph.
"""
from __future__ import annotations

import typing as t
from pathlib import Path

from .core import Context, Rule
from .dependencies import PipDependency
from .simple import BaseStandardStep
from .tasks import ChangeEvent, RuleTask

if t.TYPE_CHECKING:
    from collections.abc import Iterable
    from jinja2 import Environment


class JinjaRenderStep(BaseStandardStep):
    """
    A Step rendering a Jinja template from the source directory to HTML.
    Whitespace around block tags is trimmed so output stays readable.
    """
    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('jinja2'),
        }

    def __init__(self,
                 env: Environment | None = None,
                 extra_globals: dict[str, t.Any] | None = None):
        if env and extra_globals:
            env.globals.update(extra_globals)
        self._env = env
        self._extra_globals = extra_globals

    @property
    def env(self):
        """
        Returns the Jinja `Environment` for this Step, creating and caching it
        if necessary.
        """
        if self._env:
            return self._env

        from jinja2 import Environment, FileSystemLoader, select_autoescape
        self._env = Environment(
            loader=FileSystemLoader(self.context['source_dir']),
            autoescape=select_autoescape(['html', 'htm', 'xml', 'jinja']),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        self._env.globals['production'] = self.context['production']
        if self._extra_globals:
            self._env.globals.update(self._extra_globals)
        return self._env

    def template_name(self, path: Path):
        return path.relative_to(self.context['source_dir']).as_posix()

    def __call__(self, path: Path, output_paths: list[Path]):
        template = self.env.get_template(self.template_name(path))
        with self.ensure_outputs(output_paths):
            template.stream().dump(str(output_paths[0]), encoding=self.encoding)


class TemplateGraph:
    """
    Directed graph from each template to the templates it references through
    `extends`, `include`, `import` and `from ... import`. Seeded once with
    `scan()`, then kept current with `update()` and `remove()` as files
    change.
    """
    def __init__(self, env: Environment, root: Path, pattern: str = '*.jinja'):
        self.env = env
        self.root = root
        self.pattern = pattern
        self.edges: dict[Path, set[Path]] = {}

    def references(self, path: Path) -> set[Path]:
        """
        Parse @path and return the paths of every template it names
        literally. Dynamic references cannot be followed and are ignored.
        """
        from jinja2 import TemplateSyntaxError, meta

        try:
            ast = self.env.parse(path.read_text('utf-8'), filename=str(path))
        except TemplateSyntaxError:
            # Rendering reports the error; an unparsable template simply has
            # no known dependencies until it is fixed.
            return set()
        return {self.root / name for name in meta.find_referenced_templates(ast) if name}

    def scan(self):
        """
        Rebuild the whole graph from the templates under the root.
        """
        self.edges = {p: self.references(p) for p in sorted(self.root.rglob(self.pattern))}

    def update(self, path: Path):
        """
        Rescan a single template after it was created or edited.
        """
        if path.is_file():
            self.edges[path] = self.references(path)
        else:
            self.remove(path)

    def remove(self, path: Path):
        """
        Drop a deleted template. Edges pointing at it are kept, so templates
        still referencing it remain affected if it reappears.
        """
        self.edges.pop(path, None)

    def dependencies(self, path: Path) -> set[Path]:
        """
        Return every template @path depends on, directly or transitively.
        """
        seen: set[Path] = set()
        stack = list(self.edges.get(path, ()))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self.edges.get(current, ()))
        return seen

    def affected(self, changed: Path | None, candidates: Iterable[Path]) -> list[Path]:
        """
        Return the @candidates that must be recompiled after @changed changed:
        the ones that are it or depend on it. With no known change, every
        candidate is affected.
        """
        if changed is None:
            return list(candidates)
        return [c for c in candidates if c == changed or changed in self.dependencies(c)]


class TemplateTask(RuleTask):
    """
    A task rendering top-level templates.

    With the Context's cache disabled every top-level template renders on
    every run. With it enabled, a `TemplateGraph` is seeded on the first run
    and each change event narrows the run to the affected templates: an edit
    renders the templates depending on the edited file, while a deletion (or
    a run without an event) renders all of them.
    """
    def __init__(self,
                 name: str,
                 rules: list[Rule],
                 step: JinjaRenderStep,
                 root: str | Path = '',
                 pattern: str = '*.jinja'):
        super().__init__(name, rules, root)
        self.step = step
        self.pattern = pattern
        self.graph: TemplateGraph | None = None

    def prepare(self, context: Context):
        if self._bound is not context:
            self.graph = None
        super().prepare(context)

    def find_inputs(self, context: Context) -> list[Path]:
        # Only templates directly in the root are pages; nested ones are
        # partials.
        return sorted(p for p in (context['source_dir'] / self.root).glob(self.pattern) if p.is_file())

    def select_inputs(self, context: Context, event: ChangeEvent | None):
        inputs = super().select_inputs(context, event)
        if not context['cache']:
            return inputs

        if self.graph is None:
            self.graph = TemplateGraph(self.step.env, context['source_dir'], self.pattern)
            self.graph.scan()

        changed = None
        if event and event.kind == 'deleted':
            self.graph.remove(event.path)
        elif event:
            self.graph.update(event.path)
            changed = event.path
        return self.graph.affected(changed, inputs)
