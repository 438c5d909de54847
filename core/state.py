from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from doctypes import DocumentDefinition, RequirementSpec


AnswerSource = Literal["user", "research", "assumption"]
SessionPhase = Literal["uninitialized", "collecting", "ready", "drafted"]
QuestionStatus = Literal["pending", "answered", "assumed"]
InputValue = Union[str, List[str]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Citation(BaseModel):
    """Evidence attached to one or more fields."""
    id: str
    label: str = ""
    url: str = ""
    note: str = ""
    applies_to: List[str] = Field(default_factory=list)


class AnswerRecord(BaseModel):
    """Latest value for a field plus the history of when it was set."""
    field_id: str
    value: str
    source: AnswerSource = "user"
    confidence: float = Field(default=1.0, ge=0, le=1)
    timestamps: List[datetime] = Field(default_factory=list)


class QuestionPlanItem(BaseModel):
    id: str
    text: str
    targets: List[str]
    priority: float


class ResearchPlanItem(BaseModel):
    id: str
    query: str
    applies_to: List[str] = Field(default_factory=list)


class ClarifyingQuestion(BaseModel):
    """Tracked blueprint question, one per field."""
    id: str
    field: str
    question: str
    rationale: str = ""
    required: bool = False
    status: QuestionStatus = "pending"
    times_asked: int = 0
    last_asked_at: Optional[datetime] = None
    assumption_suggestion: Optional[str] = None


class DocSessionState(BaseModel):
    """Aggregate root for one conversation thread's drafting session.

    ``definition`` is the catalog's shared instance; sessions never copy or
    mutate it.
    """
    active: bool = True
    phase: SessionPhase = "collecting"
    doc_type: str
    definition: DocumentDefinition
    answers: Dict[str, AnswerRecord] = Field(default_factory=dict)
    dossier: Dict[str, str] = Field(default_factory=dict)
    pending_questions: List[QuestionPlanItem] = Field(default_factory=list)
    research_plan: List[ResearchPlanItem] = Field(default_factory=list)
    citations: List[Citation] = Field(default_factory=list)
    confidence: float = 0.0
    ready_to_generate: bool = False
    template: str
    title: str
    processed_message_ids: List[str] = Field(default_factory=list)
    last_asked_question_id: Optional[str] = None

    # Blueprint question source
    inputs: Dict[str, InputValue] = Field(default_factory=dict)
    clarifying_questions: Dict[str, ClarifyingQuestion] = Field(default_factory=dict)
    assumed_field_ids: List[str] = Field(default_factory=list)


# Turn contracts ------------------------------------------------------------

class InboundMessage(BaseModel):
    """A user message delivered to the engine."""
    content: str = ""
    id: Optional[str] = None
    index: Optional[int] = Field(default=None, ge=0)


class ExtractedAnswer(BaseModel):
    field_id: str
    value: str
    confidence: float = Field(default=1.0, ge=0, le=1)


class ExtractionResult(BaseModel):
    """Output contract of an answer extractor. Empty ``answers`` means no new information."""
    answers: List[ExtractedAnswer] = Field(default_factory=list)
    title: Optional[str] = None


class QuestionPrompt(BaseModel):
    id: str
    text: str
    targets: List[str] = Field(default_factory=list)
    rationale: Optional[str] = None
    assumption_suggestion: Optional[str] = None


class Artifact(BaseModel):
    """Rendered document plus the context the drafting layer needs."""
    doc_type: str
    title: str
    content: str
    missing_required: List[RequirementSpec] = Field(default_factory=list)
    assumed_fields: List[str] = Field(default_factory=list)
    guidance: str = ""
    context_summary: str = ""


class TurnOutcome(BaseModel):
    """Result of processing one inbound message."""
    status: Literal["uninitialized", "duplicate", "collecting", "drafted", "render_failed"]
    session: Optional[DocSessionState] = None
    questions: List[QuestionPrompt] = Field(default_factory=list)
    message: str = ""
    missing_required: List[RequirementSpec] = Field(default_factory=list)
    artifact: Optional[Artifact] = None
    error: Optional[str] = None


__all__ = [
    "AnswerSource",
    "SessionPhase",
    "InputValue",
    "utcnow",
    "Citation",
    "AnswerRecord",
    "QuestionPlanItem",
    "ResearchPlanItem",
    "ClarifyingQuestion",
    "DocSessionState",
    "InboundMessage",
    "ExtractedAnswer",
    "ExtractionResult",
    "QuestionPrompt",
    "Artifact",
    "TurnOutcome",
]
