from __future__ import annotations

"""Renderer contracts and template-based implementations."""

from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol
import logging
import threading

import markdown2

from core.errors import RenderError
from core.utils import render_template_string

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"
MISSING_VALUE = "_Not yet provided._"


class Renderer(Protocol):
    """Protocol for renderer implementations."""

    name: str

    def render(self, template_ref: str, context: Dict[str, Any]) -> str:
        """Render a document.

        Args:
            template_ref: Template file name from the catalog entry.
            context: ``title``, ``doc_name``, ``fields`` (field id -> value),
                ``field_labels`` (declared fields in catalog order),
                ``citations``, ``assumed_fields`` and ``missing_required``.

        Returns:
            Rendered document text.
        """
        ...


def citations_markdown(citations: List[Dict[str, Any]]) -> str:
    lines = []
    for index, citation in enumerate(citations, start=1):
        label = citation.get("label") or citation.get("url") or citation.get("id")
        url = citation.get("url")
        entry = f"{index}. [{label}]({url})" if url else f"{index}. {label}"
        if citation.get("note"):
            entry += f" - {citation['note']}"
        applies = citation.get("applies_to") or []
        if applies:
            entry += f" (supports: {', '.join(applies)})"
        lines.append(entry)
    return "\n".join(lines) if lines else "_No sources attached._"


def assumptions_markdown(context: Dict[str, Any]) -> str:
    labels = context.get("field_labels") or {}
    lines = [f"- {labels.get(f, f)} (assumed default)" for f in context.get("assumed_fields") or []]
    lines += [f"- {label} (not confirmed by the user)" for label in context.get("missing_required") or []]
    return "\n".join(lines) if lines else "_None._"


class TemplateRenderer:
    """Render markdown templates from the ``templates/`` directory.

    Templates use ``{{field_id}}`` placeholders plus the generated
    ``{{citations_markdown}}`` and ``{{assumptions_markdown}}`` blocks. When the
    template file does not exist a plain section layout is produced instead.
    """

    name = "markdown"

    def __init__(self, templates_dir: Optional[Path] = None) -> None:
        self.templates_dir = Path(templates_dir) if templates_dir else TEMPLATES_DIR
        self._cache: Dict[str, Optional[str]] = {}
        self._lock = threading.Lock()

    def _load(self, template_ref: str) -> Optional[str]:
        with self._lock:
            if template_ref in self._cache:
                return self._cache[template_ref]
            base = self.templates_dir.resolve()
            path = (base / template_ref).resolve()
            if base not in path.parents:
                raise RenderError(f"Template '{template_ref}' is outside the templates directory", template_ref)
            text: Optional[str] = None
            if path.is_file():
                try:
                    text = path.read_text(encoding="utf-8")
                except OSError as e:
                    raise RenderError(f"Unable to read template {path}: {e}", template_ref) from e
            else:
                logger.info(f"ℹ️ RENDER: No template file {template_ref}, using section layout")
            self._cache[template_ref] = text
            return text

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def _variables(self, context: Dict[str, Any]) -> Dict[str, Any]:
        fields: Dict[str, str] = context.get("fields") or {}
        variables: Dict[str, Any] = {
            f: (fields.get(f) or "").strip() or MISSING_VALUE for f in context.get("field_labels") or {}
        }
        for key, value in fields.items():
            variables.setdefault(key, value)
        variables.update(
            title=context.get("title", ""),
            doc_name=context.get("doc_name", ""),
            fields=fields,
            citations=context.get("citations") or [],
            citations_markdown=citations_markdown(context.get("citations") or []),
            assumptions_markdown=assumptions_markdown(context),
        )
        return variables

    def _section_layout(self, variables: Dict[str, Any], context: Dict[str, Any]) -> str:
        parts = [f"# {variables['title']}"]
        for field_id, label in (context.get("field_labels") or {}).items():
            parts.append(f"## {label}\n\n{variables[field_id]}")
        parts.append(f"## Assumptions and open items\n\n{variables['assumptions_markdown']}")
        parts.append(f"## Sources\n\n{variables['citations_markdown']}")
        return "\n\n".join(parts) + "\n"

    def render(self, template_ref: str, context: Dict[str, Any]) -> str:
        template = self._load(template_ref)
        variables = self._variables(context)
        if template is None:
            return self._section_layout(variables, context)
        return render_template_string(template, variables)


class HtmlRenderer:
    """Render the markdown template, then convert it to HTML with markdown2."""

    name = "html"

    def __init__(self, markdown_renderer: Optional[TemplateRenderer] = None) -> None:
        self.markdown_renderer = markdown_renderer or TemplateRenderer()

    def render(self, template_ref: str, context: Dict[str, Any]) -> str:
        text = self.markdown_renderer.render(template_ref, context)
        return markdown2.markdown(text, extras=["fenced-code-blocks", "tables", "strike"])


_RENDERERS: Dict[str, Renderer] = {
    r.name: r
    for r in [
        TemplateRenderer(),
        HtmlRenderer(),
    ]
}


def get_renderer(name: str) -> Renderer:
    """Retrieve a renderer by name."""
    try:
        return _RENDERERS[name]
    except KeyError as exc:
        raise KeyError(f"Renderer '{name}' is not registered") from exc


__all__ = [
    "Renderer",
    "get_renderer",
    "TemplateRenderer",
    "HtmlRenderer",
    "citations_markdown",
    "assumptions_markdown",
    "MISSING_VALUE",
]
