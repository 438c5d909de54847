from __future__ import annotations

"""Question sources: the per-doc-type strategy behind a session's Q&A loop.

``CatalogQuestionSource`` asks the catalog's diagnostic questions in priority
order and gates readiness on the composite confidence score.
``BlueprintQuestionSource`` drives a hand-authored clarification blueprint
with assumption injection and gates readiness on required-field coverage.
"""

from datetime import datetime
from typing import Dict, List, Optional, Protocol, Set
import logging

from pydantic import BaseModel, Field

from doctypes import DocumentDefinition, RequirementSpec
from .blueprint import (
    Blueprint,
    apply_assumptions,
    build_clarifying_prompt,
    flatten_inputs,
    get_blueprint,
    merge_inputs,
    outstanding_required,
    refresh_clarifying_questions,
    select_clarifying_questions,
)
from .config import ScoringPolicy
from .intent import detect_assumption_request
from .planner import materialize_question_plan, materialize_research_plan, sort_by_priority
from .scoring import compute_confidence, coverage_confidence, is_blank, progress_summary
from .state import (
    AnswerRecord,
    AnswerSource,
    ClarifyingQuestion,
    DocSessionState,
    ExtractionResult,
    InputValue,
    QuestionPrompt,
)

logger = logging.getLogger(__name__)

# Confidence recorded when a raw reply is attached to the question it answers.
QUESTION_CONTEXT_CONFIDENCE = 0.7
ASSUMPTION_CONFIDENCE = 0.5


class Evaluation(BaseModel):
    """Readiness decision for one turn plus what to ask if not ready."""
    confidence: float
    ready: bool
    missing_required: List[RequirementSpec] = Field(default_factory=list)
    questions: List[QuestionPrompt] = Field(default_factory=list)
    message: str = ""
    clarifying_questions: Dict[str, ClarifyingQuestion] = Field(default_factory=dict)
    selected: List[ClarifyingQuestion] = Field(default_factory=list)


def record_answer(
    answers: Dict[str, AnswerRecord],
    field_id: str,
    value: str,
    *,
    source: AnswerSource,
    confidence: float,
    now: datetime,
) -> Dict[str, AnswerRecord]:
    """Return a new answers map with ``value`` as the latest value for ``field_id``."""
    previous = answers.get(field_id)
    history = list(previous.timestamps) if previous else []
    updated = dict(answers)
    updated[field_id] = AnswerRecord(
        field_id=field_id,
        value=value,
        source=source,
        confidence=max(0.0, min(1.0, confidence)),
        timestamps=[*history, now],
    )
    return updated


class QuestionSource(Protocol):
    name: str

    def start(self, session: DocSessionState) -> DocSessionState: ...

    def merge(
        self,
        session: DocSessionState,
        extraction: ExtractionResult,
        text: str,
        *,
        asked_question_id: Optional[str],
        ready_requested: bool,
        now: datetime,
    ) -> DocSessionState: ...

    def evaluate(
        self,
        session: DocSessionState,
        *,
        asked_question_id: Optional[str],
        ready_requested: bool,
        policy: ScoringPolicy,
    ) -> Evaluation: ...

    def commit_questions(self, session: DocSessionState, evaluation: Evaluation) -> DocSessionState: ...

    def settle(self, session: DocSessionState, evaluation: Evaluation) -> DocSessionState: ...


# Catalog ---------------------------------------------------------------------

class CatalogQuestionSource:
    """Diagnostic questions from the catalog, scored with the composite confidence."""

    name = "catalog"

    def start(self, session: DocSessionState) -> DocSessionState:
        definition = session.definition
        return session.model_copy(
            update={
                "pending_questions": sort_by_priority(materialize_question_plan(definition)),
                "research_plan": materialize_research_plan(definition),
            }
        )

    def merge(
        self,
        session: DocSessionState,
        extraction: ExtractionResult,
        text: str,
        *,
        asked_question_id: Optional[str],
        ready_requested: bool,
        now: datetime,
    ) -> DocSessionState:
        declared = set(session.definition.field_ids)
        answers = dict(session.answers)
        dossier = dict(session.dossier)
        supplied: Set[str] = set()

        for answer in extraction.answers:
            value = answer.value.strip()
            if answer.field_id not in declared or not value:
                continue
            answers = record_answer(
                answers, answer.field_id, value, source="user", confidence=answer.confidence, now=now
            )
            dossier[answer.field_id] = value
            supplied.add(answer.field_id)

        raw = text.strip()
        answered_id: Optional[str] = None
        if asked_question_id and not ready_requested and raw:
            asked = next((q for q in session.pending_questions if q.id == asked_question_id), None)
            if asked is not None:
                answered_id = asked.id
                for target in asked.targets:
                    # Earlier answers and this turn's extraction win over the raw reply.
                    if target in supplied or not is_blank(dossier.get(target)):
                        continue
                    answers = record_answer(
                        answers,
                        target,
                        raw,
                        source="user",
                        confidence=QUESTION_CONTEXT_CONFIDENCE,
                        now=now,
                    )
                    dossier[target] = raw
                logger.debug(f"CATALOG: Attached reply to question {asked.id} ({', '.join(asked.targets)})")

        pending = [
            q
            for q in session.pending_questions
            if q.id != answered_id and any(is_blank(dossier.get(t)) for t in q.targets)
        ]

        return session.model_copy(
            update={
                "answers": answers,
                "dossier": dossier,
                "pending_questions": sort_by_priority(pending),
            }
        )

    def evaluate(
        self,
        session: DocSessionState,
        *,
        asked_question_id: Optional[str],
        ready_requested: bool,
        policy: ScoringPolicy,
    ) -> Evaluation:
        definition = session.definition
        report = compute_confidence(definition, session.dossier, session.citations, policy)
        threshold_met = report.overall >= policy.readiness_threshold and not report.missing_required
        ready = (
            session.ready_to_generate
            or threshold_met
            or ready_requested
            or not session.pending_questions
        )

        evaluation = Evaluation(
            confidence=report.overall,
            ready=ready,
            missing_required=report.missing_required,
        )
        if ready:
            return evaluation

        progress = (
            f"Progress: {progress_summary(definition, session.dossier)}. "
            f"Confidence {round(report.overall * 100)}%"
        )
        missing = "\n".join(f"- {f.label}" for f in report.missing_required)
        reminder = f"Remaining critical items:\n{missing}\n" if missing else ""

        next_question = next(
            (q for q in session.pending_questions if q.id != asked_question_id), None
        )
        if next_question is None:
            evaluation.message = (
                f"{progress}\n{reminder}"
                "Share whatever you know about these items, or say you're ready to generate the document."
            )
            return evaluation

        evaluation.questions = [
            QuestionPrompt(id=next_question.id, text=next_question.text, targets=next_question.targets)
        ]
        evaluation.message = f"{progress}\n{reminder}{next_question.text}"
        return evaluation

    def commit_questions(self, session: DocSessionState, evaluation: Evaluation) -> DocSessionState:
        asked = evaluation.questions[0].id if evaluation.questions else None
        return session.model_copy(update={"last_asked_question_id": asked})

    def settle(self, session: DocSessionState, evaluation: Evaluation) -> DocSessionState:
        return session


# Blueprint -------------------------------------------------------------------

class BlueprintQuestionSource:
    """Hand-authored clarifying questions with assumption injection."""

    name = "blueprint"

    def __init__(self, blueprint: Blueprint) -> None:
        self.blueprint = blueprint

    def start(self, session: DocSessionState) -> DocSessionState:
        return session.model_copy(
            update={"research_plan": materialize_research_plan(session.definition)}
        )

    def _coerced_updates(self, extraction: ExtractionResult, declared: Set[str]) -> Dict[str, InputValue]:
        updates: Dict[str, InputValue] = {}
        for answer in extraction.answers:
            value = answer.value.strip()
            if not value or (answer.field_id not in declared and not self.blueprint.get(answer.field_id)):
                continue
            coerced = self.blueprint.coerce(answer.field_id, value)
            previous = updates.get(answer.field_id)
            if isinstance(previous, list) and isinstance(coerced, list):
                coerced = [*previous, *coerced]
            updates[answer.field_id] = coerced
        return updates

    def merge(
        self,
        session: DocSessionState,
        extraction: ExtractionResult,
        text: str,
        *,
        asked_question_id: Optional[str],
        ready_requested: bool,
        now: datetime,
    ) -> DocSessionState:
        declared = set(session.definition.field_ids)
        updates = self._coerced_updates(extraction, declared)
        confidences = {a.field_id: a.confidence for a in extraction.answers}

        assume_requested = detect_assumption_request(text)
        raw = text.strip()
        if asked_question_id and not (ready_requested or assume_requested) and raw:
            asked = next(
                (q for q in session.clarifying_questions.values() if q.id == asked_question_id), None
            )
            if asked is not None and asked.field not in updates:
                updates[asked.field] = self.blueprint.coerce(asked.field, raw)
                confidences[asked.field] = QUESTION_CONTEXT_CONFIDENCE
                logger.debug(f"BLUEPRINT: Attached reply to question on {asked.field}")

        inputs = merge_inputs(self.blueprint, session.inputs, updates)

        answers = dict(session.answers)
        flat = flatten_inputs(inputs)
        for field_id in updates:
            if field_id in flat and flat[field_id]:
                answers = record_answer(
                    answers,
                    field_id,
                    flat[field_id],
                    source="user",
                    confidence=confidences.get(field_id, 1.0),
                    now=now,
                )

        assumed_ids = list(session.assumed_field_ids)
        if assume_requested:
            inputs, assumed = apply_assumptions(self.blueprint, inputs)
            flat = flatten_inputs(inputs)
            for field_id in self.blueprint.fields():
                if field_id not in assumed:
                    continue
                answers = record_answer(
                    answers,
                    field_id,
                    flat[field_id],
                    source="assumption",
                    confidence=ASSUMPTION_CONFIDENCE,
                    now=now,
                )
                if field_id not in assumed_ids:
                    assumed_ids.append(field_id)

        # Fields the user supplies after an assumption are no longer assumed.
        assumed_ids = [
            f for f in assumed_ids if f not in updates or answers[f].source == "assumption"
        ]

        dossier = dict(session.dossier)
        dossier.update(flat)

        return session.model_copy(
            update={
                "inputs": inputs,
                "answers": answers,
                "dossier": dossier,
                "assumed_field_ids": assumed_ids,
            }
        )

    def _missing_required(self, session: DocSessionState) -> List[RequirementSpec]:
        missing = []
        for field_id in outstanding_required(self.blueprint, session.inputs):
            requirement = session.definition.get_field(field_id)
            missing.append(requirement or RequirementSpec(id=field_id, label=field_id, required=True))
        return missing

    def evaluate(
        self,
        session: DocSessionState,
        *,
        asked_question_id: Optional[str],
        ready_requested: bool,
        policy: ScoringPolicy,
    ) -> Evaluation:
        required = self.blueprint.required_fields()
        outstanding = set(outstanding_required(self.blueprint, session.inputs))
        satisfied = {f for f in required if f not in outstanding}
        confidence = float(coverage_confidence(required, satisfied))

        questions = refresh_clarifying_questions(
            self.blueprint,
            session.clarifying_questions,
            session.inputs,
            set(session.assumed_field_ids),
        )
        to_ask = select_clarifying_questions(self.blueprint, questions)

        threshold_met = confidence / 100 >= policy.readiness_threshold and not outstanding
        ready = session.ready_to_generate or threshold_met or ready_requested or not to_ask

        evaluation = Evaluation(
            confidence=confidence,
            ready=ready,
            missing_required=self._missing_required(session),
            clarifying_questions=questions,
        )
        if ready:
            return evaluation

        evaluation.selected = to_ask

        evaluation.questions = [
            QuestionPrompt(
                id=q.id,
                text=q.question,
                targets=[q.field],
                rationale=q.rationale,
                assumption_suggestion=q.assumption_suggestion,
            )
            for q in to_ask
        ]
        evaluation.message = (
            f"Progress: {progress_summary(session.definition, session.dossier)}. "
            f"Confidence {round(confidence)}%\n\n"
            + build_clarifying_prompt(self.blueprint, session.inputs, to_ask)
        )
        return evaluation

    def commit_questions(self, session: DocSessionState, evaluation: Evaluation) -> DocSessionState:
        questions = dict(evaluation.clarifying_questions)
        for question in evaluation.selected:
            questions[question.field] = question
        asked = evaluation.selected[0].id if evaluation.selected else None
        return session.model_copy(
            update={"clarifying_questions": questions, "last_asked_question_id": asked}
        )

    def settle(self, session: DocSessionState, evaluation: Evaluation) -> DocSessionState:
        return session.model_copy(update={"clarifying_questions": evaluation.clarifying_questions})


def resolve_question_source(definition: DocumentDefinition) -> QuestionSource:
    if definition.question_source == "blueprint":
        return BlueprintQuestionSource(get_blueprint(definition.blueprint or ""))
    return CatalogQuestionSource()


__all__ = [
    "Evaluation",
    "QuestionSource",
    "CatalogQuestionSource",
    "BlueprintQuestionSource",
    "resolve_question_source",
    "record_answer",
    "QUESTION_CONTEXT_CONFIDENCE",
]
