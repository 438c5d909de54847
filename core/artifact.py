from __future__ import annotations

"""Artifact trigger: hands a ready session to the renderer."""

from typing import Any, Dict, List, Optional
import logging

from doctypes import DocumentDefinition, RequirementSpec
from renderers import Renderer, get_renderer
from .config import get_renderer_name
from .errors import RenderError
from .state import Artifact, DocSessionState

logger = logging.getLogger(__name__)


def build_document_guidance(
    definition: DocumentDefinition, missing_required: Optional[List[RequirementSpec]] = None
) -> str:
    """Drafting instructions for the prose-writing layer downstream of the engine."""
    parts = [
        f"You are drafting a {definition.name} (id: {definition.id}). Write a complete, "
        "professional markdown document tailored to the user's context."
    ]

    if definition.prerequisites and definition.prerequisites.strip():
        parts.append(
            "Assume you have access to the following prerequisite materials:\n"
            f"{definition.prerequisites.strip()}"
        )

    if definition.template_markdown and definition.template_markdown.strip():
        parts.append(
            "Follow this template structure. Replace placeholders with specific, well-reasoned "
            "content. If information is unavailable, add a short note instead of leaving blanks:\n"
            f"{definition.template_markdown.strip()}"
        )
    else:
        sections = ["Required sections:\n" + "\n".join(
            f"- {f.label}: {f.description}" for f in definition.required_fields
        )]
        if definition.optional_fields:
            sections.append("Optional sections:\n" + "\n".join(
                f"- {f.label}: {f.description}" for f in definition.optional_fields
            ))
        parts.append(
            "Ensure the document includes at least the following sections with meaningful detail:\n"
            + "\n\n".join(sections)
        )

    if missing_required:
        parts.append(
            "The user asked to proceed before these required items were confirmed. State a "
            "reasonable assumption for each and label it as an assumption:\n"
            + "\n".join(f"- {f.label}" for f in missing_required)
        )

    parts.append(
        "Keep the tone formal and informative. Do not include meta commentary or describe "
        "the template itself; only output the final document."
    )
    return "\n\n".join(parts)


def build_context_summary(session: DocSessionState) -> str:
    definition = session.definition
    answers = (
        "\n".join(
            f"- {definition.field_label(field_id)}: {record.value}"
            + (" (assumed)" if record.source == "assumption" else "")
            for field_id, record in session.answers.items()
        )
        or "No structured answers were captured before drafting."
    )
    dossier = (
        "\n".join(f"- {key}: {value}" for key, value in session.dossier.items())
        or "No additional project or user metadata was provided."
    )
    if definition.question_source == "blueprint":
        confidence = f"{round(session.confidence)}%"
    else:
        confidence = f"{round(session.confidence * 100)}%"
    return "\n\n".join(
        [
            f"Context collected during planning for the {definition.name}:",
            f"<doc-answers>\n{answers}\n</doc-answers>",
            f"Additional details:\n<doc-dossier>\n{dossier}\n</doc-dossier>",
            f"Confidence estimate before drafting: {confidence}.",
        ]
    )


def build_render_context(
    session: DocSessionState, missing_required: List[RequirementSpec]
) -> Dict[str, Any]:
    """Renderer input assembled from session state."""
    definition = session.definition
    return {
        "title": session.title,
        "doc_type": definition.id,
        "doc_name": definition.name,
        "fields": dict(session.dossier),
        "field_labels": {f.id: f.label for f in definition.all_fields},
        "citations": [c.model_dump() for c in session.citations],
        "assumed_fields": list(session.assumed_field_ids),
        "missing_required": [f.label for f in missing_required],
    }


class ArtifactTrigger:
    """Render a ready session into an :class:`Artifact`.

    Any renderer failure surfaces as :class:`RenderError`; the caller keeps the
    session ready so the render can be retried.
    """

    def __init__(self, renderer: Optional[Renderer] = None) -> None:
        self.renderer = renderer or get_renderer(get_renderer_name())

    def render(self, session: DocSessionState, missing_required: List[RequirementSpec]) -> Artifact:
        definition = session.definition
        context = build_render_context(session, missing_required)
        try:
            content = self.renderer.render(definition.template, context)
        except RenderError:
            raise
        except Exception as e:
            logger.error(f"❌ RENDER: {definition.template} failed for {definition.id}: {e}")
            raise RenderError(f"Rendering {definition.template} failed: {e}", definition.template) from e

        logger.info(f"✓ Rendered {definition.id} ({len(content)} chars)")
        return Artifact(
            doc_type=definition.id,
            title=session.title,
            content=content,
            missing_required=missing_required,
            assumed_fields=list(session.assumed_field_ids),
            guidance=build_document_guidance(definition, missing_required),
            context_summary=build_context_summary(session),
        )


__all__ = [
    "ArtifactTrigger",
    "build_document_guidance",
    "build_context_summary",
    "build_render_context",
]
