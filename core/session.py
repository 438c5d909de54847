from __future__ import annotations

"""Session state machine: one document session per conversation thread."""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
import logging
import threading

from doctypes import DocumentCatalog, DocumentDefinition, get_catalog
from extractors import AnswerExtractor, resolve_extractor
from .artifact import ArtifactTrigger
from .config import ScoringPolicy, get_engine_setting, get_scoring_policy
from .debug_log import dbg
from .errors import RenderError, SessionNotFoundError, SessionNotReadyError
from .graph import TurnState, build_turn_graph, render_session
from .intent import (
    detect_ready_intent,
    doc_type_from_config,
    message_identity,
    normalize_doc_type_candidate,
    resolve_document_definition,
)
from .langfuse_tracing import observe, turn_span
from .sources import resolve_question_source
from .state import Artifact, Citation, DocSessionState, InboundMessage, TurnOutcome, utcnow

logger = logging.getLogger(__name__)


class SessionStore:
    """In-memory session store with one lock per thread.

    Turns for one thread hold that thread's lock for their whole duration;
    different threads never contend.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, DocSessionState] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def lock(self, thread_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(thread_id)
            if lock is None:
                lock = self._locks[thread_id] = threading.RLock()
            return lock

    def get(self, thread_id: str) -> Optional[DocSessionState]:
        return self._sessions.get(thread_id)

    def save(self, thread_id: str, session: DocSessionState) -> None:
        self._sessions[thread_id] = session

    def discard(self, thread_id: str) -> Optional[DocSessionState]:
        return self._sessions.pop(thread_id, None)


def create_session(definition: DocumentDefinition) -> DocSessionState:
    """Fresh session for ``definition`` with its question plan materialised."""
    session = DocSessionState(
        doc_type=definition.id,
        definition=definition,
        template=definition.template,
        title=definition.default_title,
    )
    return resolve_question_source(definition).start(session)


class SessionStateMachine:
    """Drive document sessions turn by turn.

    Each inbound message is processed exactly once per thread (by explicit
    message id, or its conversation position plus trailing content) through
    the turn graph.
    """

    def __init__(
        self,
        *,
        catalog: Optional[DocumentCatalog] = None,
        extractor: Optional[AnswerExtractor] = None,
        trigger: Optional[ArtifactTrigger] = None,
        store: Optional[SessionStore] = None,
        policy: Optional[ScoringPolicy] = None,
        fallback_to_default: Optional[bool] = None,
    ) -> None:
        self.catalog = catalog or get_catalog()
        self.extractor = extractor or resolve_extractor()
        self.trigger = trigger or ArtifactTrigger()
        self.store = store or SessionStore()
        self.policy = policy
        if fallback_to_default is None:
            fallback_to_default = bool(get_engine_setting("fallback_to_default_doc_type", False))
        self.fallback_to_default = fallback_to_default
        self.graph = build_turn_graph(self.extractor, self.trigger, policy)

    # Turns -------------------------------------------------------------------

    def _start_or_resume(
        self,
        thread_id: str,
        text: str,
        doc_type: Optional[str],
        config: Optional[Mapping[str, Any]],
    ) -> Optional[DocSessionState]:
        session = self.store.get(thread_id)
        if session is not None and session.active:
            if doc_type:
                requested = normalize_doc_type_candidate(doc_type, self.catalog)
            else:
                requested = doc_type_from_config(config, self.catalog)
            if not requested or requested == session.doc_type:
                return session
            logger.info(f"🔀 SESSION: Thread {thread_id} switching {session.doc_type} -> {requested}")

        definition = resolve_document_definition(
            requested=doc_type,
            config=config,
            text=text,
            fallback_to_default=self.fallback_to_default,
            catalog=self.catalog,
        )
        if definition is None:
            return None
        logger.info(f"📄 SESSION: Started {definition.id} session for thread {thread_id}")
        return create_session(definition)

    @observe(name="doc-session-turn")
    def process_message(
        self,
        thread_id: str,
        message: Union[InboundMessage, str],
        *,
        doc_type: Optional[str] = None,
        config: Optional[Mapping[str, Any]] = None,
    ) -> TurnOutcome:
        """Process one inbound message for ``thread_id``.

        Raises:
            UnknownDocTypeError: An explicitly requested doc type is not in the catalog.
            RenderError: The session became ready but rendering failed. The
                session is saved as ready so :meth:`draft` can retry.
        """
        if isinstance(message, str):
            message = InboundMessage(content=message)
        text = message.content or ""

        with self.store.lock(thread_id):
            session = self._start_or_resume(thread_id, text, doc_type, config)
            if session is None:
                dbg.turn(thread_id, status="uninitialized", message_id=message.id)
                return TurnOutcome(
                    status="uninitialized",
                    message="Tell me which document you want to build. Available: "
                    + ", ".join(self.catalog.ids()),
                )

            position = message.index if message.index is not None else len(session.processed_message_ids)
            message_id = message_identity(message.id, text, position)
            if message_id and message_id in session.processed_message_ids:
                logger.debug(f"SESSION: Skipping already processed message {message_id}")
                dbg.turn(thread_id, status="duplicate", message_id=message_id)
                return TurnOutcome(status="duplicate", session=session, message="Message already processed.")

            state: TurnState = {
                "thread_id": thread_id,
                "session": session,
                "text": text,
                "message_id": message_id,
                "ready_requested": detect_ready_intent(text),
                "asked_question_id": session.last_asked_question_id,
                "now": utcnow(),
            }
            with turn_span(
                f"Doc session: {session.doc_type}",
                {"message": text[:500]},
                session_id=thread_id,
                tags=[session.doc_type],
            ) as span:
                result = self.graph.invoke(state)
                outcome: TurnOutcome = result["outcome"]
                span.set_output({"status": outcome.status, "confidence": result["session"].confidence})

            self.store.save(thread_id, result["session"])
            dbg.turn(
                thread_id,
                status=outcome.status,
                message_id=message_id,
                confidence=result["session"].confidence,
                ready=result["session"].ready_to_generate,
            )
            logger.info(
                f"✓ SESSION: {thread_id} {outcome.status} "
                f"(confidence {result['session'].confidence}, ready={result['session'].ready_to_generate})"
            )

        if outcome.status == "render_failed":
            raise RenderError(outcome.error or "Render failed", session.template)
        return outcome

    # Lookup and control ----------------------------------------------------------

    def get_session(self, thread_id: str) -> Optional[DocSessionState]:
        return self.store.get(thread_id)

    def reset_session(self, thread_id: str) -> bool:
        """Deactivate and discard the thread's session. Returns False if none existed."""
        with self.store.lock(thread_id):
            session = self.store.discard(thread_id)
        if session is None:
            return False
        logger.info(f"🧹 SESSION: Reset {session.doc_type} session for thread {thread_id}")
        return True

    def attach_citations(self, thread_id: str, citations: Iterable[Citation]) -> DocSessionState:
        """Add or replace citations (by id) and re-score. Readiness never reverts."""
        with self.store.lock(thread_id):
            session = self.store.get(thread_id)
            if session is None or not session.active:
                raise SessionNotFoundError(thread_id)

            merged = {c.id: c for c in session.citations}
            for citation in citations:
                merged[citation.id] = citation
            session = session.model_copy(update={"citations": list(merged.values())})

            evaluation = resolve_question_source(session.definition).evaluate(
                session,
                asked_question_id=None,
                ready_requested=False,
                policy=self.policy or get_scoring_policy(),
            )
            ready = session.ready_to_generate or evaluation.ready
            session = session.model_copy(
                update={
                    "confidence": evaluation.confidence,
                    "ready_to_generate": ready,
                    "phase": "ready" if ready else session.phase,
                }
            )
            self.store.save(thread_id, session)
        logger.info(f"📚 SESSION: {thread_id} now has {len(session.citations)} citation(s)")
        return session

    def draft(self, thread_id: str) -> Artifact:
        """Render a ready session, e.g. to retry after a :class:`RenderError`."""
        with self.store.lock(thread_id):
            session = self.store.get(thread_id)
            if session is None or not session.active:
                raise SessionNotFoundError(thread_id)
            if not session.ready_to_generate:
                raise SessionNotReadyError(
                    f"Session for thread {thread_id} is not ready to generate "
                    f"(confidence {session.confidence})"
                )
            evaluation = resolve_question_source(session.definition).evaluate(
                session,
                asked_question_id=None,
                ready_requested=False,
                policy=self.policy or get_scoring_policy(),
            )
            outcome = render_session(thread_id, session, evaluation.missing_required, self.trigger)
            if outcome.status == "render_failed":
                raise RenderError(outcome.error or "Render failed", session.template)
            self.store.save(thread_id, outcome.session)
        return outcome.artifact


__all__ = ["SessionStateMachine", "SessionStore", "create_session"]
