"""Template rendering for unit files, compose manifests and env files.

Built-in templates ship inside the package under ``vlinkctl/templates``. An
override directory (``templates_dir`` in the installer settings) shadows any
built-in template with the same relative name.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
)

from .files import write_if_changed


@dataclass(slots=True)
class TemplateEngine:
    """Thin wrapper around a Jinja2 environment with strict variables."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Build an engine whose lookups prefer *override_dir* when it exists."""
        loaders = []
        if override_dir is not None and override_dir.is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(PackageLoader("vlinkctl", "templates"))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
        )
        return cls(environment=environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context* and return the text."""
        template = self.environment.get_template(template_name)
        return template.render(**dict(context))

    def render_to_path(
        self,
        template_name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render into *destination* atomically; return ``True`` when the file changed."""
        rendered = self.render_to_string(template_name, context)
        return write_if_changed(destination, rendered, mode=mode)


__all__ = ["TemplateEngine"]
