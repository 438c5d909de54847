from __future__ import annotations

from langgraph.graph import StateGraph, END

from datetime import datetime
from typing import List, Optional, TypedDict
import logging

from doctypes import RequirementSpec
from .artifact import ArtifactTrigger
from .config import ScoringPolicy, get_scoring_policy
from .debug_log import dbg
from .errors import ExtractionFailure, RenderError
from .intent import extract_project_user_details, project_user_updates
from .sources import Evaluation, resolve_question_source
from .state import DocSessionState, ExtractionResult, TurnOutcome, utcnow
from extractors import AnswerExtractor


logger = logging.getLogger(__name__)


class TurnState(TypedDict, total=False):
    """Values threaded through one turn of the session pipeline."""

    thread_id: str
    session: DocSessionState
    text: str
    message_id: Optional[str]
    ready_requested: bool
    asked_question_id: Optional[str]
    now: datetime
    extraction: ExtractionResult
    evaluation: Evaluation
    outcome: TurnOutcome


def _merge_metadata(session: DocSessionState, text: str) -> DocSessionState:
    updates = project_user_updates(extract_project_user_details(text))
    changed = {k: v for k, v in updates.items() if session.dossier.get(k) != v}
    if not changed:
        return session
    logger.info(f"📎 SESSION: Merged {', '.join(sorted(changed))} into dossier")
    return session.model_copy(update={"dossier": {**session.dossier, **changed}})


def build_turn_graph(
    extractor: AnswerExtractor,
    trigger: ArtifactTrigger,
    policy: Optional[ScoringPolicy] = None,
):
    """Construct the per-message workflow: extract -> merge -> score -> ask | draft."""

    def extract(state: TurnState) -> TurnState:
        session = state["session"]
        text = state.get("text", "")
        try:
            result = extractor.extract(session.definition, session.dossier, text)
            dbg.extraction(state["thread_id"], extractor.name, count=len(result.answers))
        except ExtractionFailure as e:
            logger.warning(f"⚠️ SESSION: Extraction failed, continuing without new answers: {e}")
            dbg.extraction(state["thread_id"], extractor.name, count=0, error=str(e))
            result = ExtractionResult()
        except Exception as e:
            logger.warning(f"⚠️ SESSION: Extractor '{extractor.name}' raised {type(e).__name__}: {e}")
            dbg.extraction(state["thread_id"], extractor.name, count=0, error=str(e))
            result = ExtractionResult()
        return {"extraction": result}

    def merge(state: TurnState) -> TurnState:
        session = state["session"]
        text = state.get("text", "")
        source = resolve_question_source(session.definition)

        metadata_only = extract_project_user_details(text) is not None
        session = _merge_metadata(session, text)
        session = source.merge(
            session,
            state["extraction"],
            "" if metadata_only else text,
            asked_question_id=state.get("asked_question_id"),
            ready_requested=state.get("ready_requested", False),
            now=state.get("now") or utcnow(),
        )

        update = {"last_asked_question_id": None}
        title = state["extraction"].title
        if title:
            update["title"] = title
        elif session.inputs.get("title") and isinstance(session.inputs["title"], str):
            update["title"] = session.inputs["title"]
        message_id = state.get("message_id")
        if message_id:
            update["processed_message_ids"] = [*session.processed_message_ids, message_id]
        return {"session": session.model_copy(update=update)}

    def score(state: TurnState) -> TurnState:
        session = state["session"]
        source = resolve_question_source(session.definition)
        evaluation = source.evaluate(
            session,
            asked_question_id=state.get("asked_question_id"),
            ready_requested=state.get("ready_requested", False),
            policy=policy or get_scoring_policy(),
        )
        session = session.model_copy(
            update={
                "confidence": evaluation.confidence,
                "ready_to_generate": evaluation.ready,
                "phase": "ready" if evaluation.ready else "collecting",
            }
        )
        return {"session": session, "evaluation": evaluation}

    def route(state: TurnState) -> str:
        return "draft" if state["evaluation"].ready else "ask"

    def ask(state: TurnState) -> TurnState:
        session = state["session"]
        evaluation = state["evaluation"]
        session = resolve_question_source(session.definition).commit_questions(session, evaluation)
        dbg.questions(state["thread_id"], [q.id for q in evaluation.questions])
        return {
            "session": session,
            "outcome": TurnOutcome(
                status="collecting",
                session=session,
                questions=evaluation.questions,
                message=evaluation.message,
                missing_required=evaluation.missing_required,
            ),
        }

    def draft(state: TurnState) -> TurnState:
        session = state["session"]
        evaluation = state["evaluation"]
        session = resolve_question_source(session.definition).settle(session, evaluation)
        outcome = render_session(state["thread_id"], session, evaluation.missing_required, trigger)
        return {"session": outcome.session, "outcome": outcome}

    builder = StateGraph(TurnState)
    builder.add_node("extract", extract)
    builder.add_node("merge", merge)
    builder.add_node("score", score)
    builder.add_node("ask", ask)
    builder.add_node("draft", draft)

    builder.set_entry_point("extract")
    builder.add_edge("extract", "merge")
    builder.add_edge("merge", "score")
    builder.add_conditional_edges("score", route, {"ask": "ask", "draft": "draft"})
    builder.add_edge("ask", END)
    builder.add_edge("draft", END)

    return builder.compile()


def render_session(
    thread_id: str,
    session: DocSessionState,
    missing_required: List[RequirementSpec],
    trigger: ArtifactTrigger,
) -> TurnOutcome:
    """Render a ready session. The returned outcome carries the next session value."""
    try:
        artifact = trigger.render(session, missing_required)
    except RenderError as e:
        logger.error(f"❌ SESSION: Render failed for {session.doc_type}, session stays ready: {e}")
        dbg.draft(thread_id, session.doc_type, ok=False, missing=[f.id for f in missing_required])
        return TurnOutcome(
            status="render_failed",
            session=session,
            message="The document could not be rendered. The session is still ready; retry the draft.",
            missing_required=missing_required,
            error=str(e),
        )

    drafted = session.model_copy(update={"active": False, "phase": "drafted"})
    dbg.draft(thread_id, session.doc_type, ok=True, missing=[f.id for f in missing_required])
    message = f"✅ {session.definition.name} drafted: {artifact.title}"
    if missing_required:
        message += (
            "\nUnconfirmed required items were noted as assumptions: "
            + ", ".join(f.label for f in missing_required)
        )
    return TurnOutcome(
        status="drafted",
        session=drafted,
        message=message,
        missing_required=missing_required,
        artifact=artifact,
    )


__all__ = ["TurnState", "build_turn_graph", "render_session"]
