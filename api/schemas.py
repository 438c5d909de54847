"""Pydantic schemas for request/response validation."""
from pydantic import BaseModel, Field
from typing import Any, Dict, List

from core.state import Citation, DocSessionState, QuestionPrompt


class MessageRequest(BaseModel):
    """Schema for one inbound conversation message."""
    content: str = Field(
        max_length=20000,
        description="Raw user message text"
    )
    message_id: str | None = Field(
        default=None,
        description="Transport message id used to deduplicate deliveries"
    )
    message_index: int | None = Field(
        default=None,
        ge=0,
        description="Position of the message in the conversation; a repeated index is a re-delivery"
    )
    doc_type: str | None = Field(
        default=None,
        description="Explicit document type id or alias; starts a new session when it differs"
    )
    config: Dict[str, Any] | None = Field(
        default=None,
        description="Optional caller config carrying doc_type / document_type / docType"
    )


class FieldRef(BaseModel):
    """Schema for a required field reference."""
    id: str
    label: str


class ArtifactResponse(BaseModel):
    """Schema for a rendered document."""
    doc_type: str
    title: str
    content: str
    missing_required: List[FieldRef] = Field(default_factory=list)
    assumed_fields: List[str] = Field(default_factory=list)
    guidance: str = ""
    context_summary: str = ""


class TurnResponse(BaseModel):
    """Schema for the result of processing a message."""
    status: str
    thread_id: str
    message: str
    doc_type: str | None = None
    confidence: float | None = None
    ready_to_generate: bool = False
    questions: List[QuestionPrompt] = Field(default_factory=list)
    missing_required: List[FieldRef] = Field(default_factory=list)
    artifact: ArtifactResponse | None = None


class SessionResponse(BaseModel):
    """Schema for session lookup (definition omitted)."""
    thread_id: str
    doc_type: str
    phase: str
    active: bool
    title: str
    confidence: float
    ready_to_generate: bool
    dossier: Dict[str, str]
    pending_questions: List[str]
    assumed_fields: List[str]
    citations: List[Citation]
    processed_messages: int


class CitationsRequest(BaseModel):
    """Schema for attaching research citations."""
    citations: List[Citation] = Field(min_length=1)


class DocTypeResponse(BaseModel):
    """Schema for one catalog listing entry."""
    id: str
    name: str
    description: str
    stage_hint: str | None = None


def session_response(thread_id: str, session: DocSessionState) -> SessionResponse:
    pending = [q.id for q in session.pending_questions]
    pending += [q.id for q in session.clarifying_questions.values() if q.status == "pending"]
    return SessionResponse(
        thread_id=thread_id,
        doc_type=session.doc_type,
        phase=session.phase,
        active=session.active,
        title=session.title,
        confidence=session.confidence,
        ready_to_generate=session.ready_to_generate,
        dossier=session.dossier,
        pending_questions=pending,
        assumed_fields=session.assumed_field_ids,
        citations=session.citations,
        processed_messages=len(session.processed_message_ids),
    )
