"""Jinja2 template rendering for entity scaffolding.

Provides the TemplateRenderer class which loads Jinja2 templates from the
``entitygen/scaffolder/templates/`` directory and renders them with an
entity model.  Supports single-file rendering and string-based rendering for
inline template content.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined


# ---------------------------------------------------------------------------
# Template directory discovery
# ---------------------------------------------------------------------------

_DEFAULT_TEMPLATE_DIR = Path(__file__).parent / "templates"


# ---------------------------------------------------------------------------
# TemplateRenderer
# ---------------------------------------------------------------------------


class TemplateRenderer:
    """Renders Jinja2 templates for entity scaffolding.

    Templates are looked up in *template_dir* first, so a project can
    override any single template while falling back to the bundled set for
    the rest.
    """

    def __init__(self, template_dir: str | Path | None = None) -> None:
        search_path = [str(_DEFAULT_TEMPLATE_DIR)]
        if template_dir is not None:
            search_path.insert(0, str(Path(template_dir)))
        self.template_dir = Path(search_path[0])
        self.env = Environment(
            loader=FileSystemLoader(search_path),
            autoescape=False,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=StrictUndefined,
        )
        self.env.filters["csharp_string"] = _csharp_string_filter

    # -- Rendering ---------------------------------------------------------

    def render(self, template_path: str, context: dict[str, Any]) -> str:
        """Render a single template with the provided context.

        Args:
            template_path: Path relative to the template directory (e.g.
                ``"web/Row.cs.j2"``).
            context: Dictionary of variables available inside the template.

        Returns:
            The rendered template content as a string.
        """
        template = self.env.get_template(template_path)
        return template.render(**context)

    def render_string(self, template_string: str, context: dict[str, Any]) -> str:
        """Render an inline template string with the provided context."""
        template = self.env.from_string(template_string)
        return template.render(**context)

    # -- Utility -----------------------------------------------------------

    def list_templates(self, prefix: str = "") -> list[str]:
        """Return a sorted list of all ``.j2`` template names under *prefix*."""
        return sorted(
            name for name in self.env.list_templates(extensions=["j2"])
            if name.startswith(prefix)
        )


# ---------------------------------------------------------------------------
# Jinja2 custom filters
# ---------------------------------------------------------------------------

def _csharp_string_filter(value: Any) -> str:
    """Escape a value for use inside a C# ``"..."`` literal."""
    text = "" if value is None else str(value)
    return text.replace("\\", "\\\\").replace('"', '\\"')
