"""Doc Assembly API - guided document sessions over HTTP."""
from fastapi import FastAPI, HTTPException, Depends, Header
from datetime import datetime, timezone
from typing import List, Optional
import os
import logging
import sys
import secrets
from contextlib import asynccontextmanager

from api import schemas
from core.errors import (
    CatalogLoadError,
    RenderError,
    SessionNotFoundError,
    SessionNotReadyError,
    UnknownDocTypeError,
)
from core.debug_log import dbg
from core.langfuse_tracing import flush_traces
from core.session import SessionStateMachine
from core.state import Artifact, InboundMessage, TurnOutcome
from doctypes import RequirementSpec, get_catalog
from extractors import register_default_extractors

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stdout
)
logger = logging.getLogger(__name__)

_ENGINE: Optional[SessionStateMachine] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle."""
    global _ENGINE
    logger.info("=" * 60)
    logger.info("🚀 Starting Doc Assembly API")
    logger.info("=" * 60)

    try:
        logger.info("📚 Loading doc type catalog...")
        catalog = get_catalog()
        definitions = catalog.load()
        logger.info(f"✅ Loaded {len(definitions)} doc types: {', '.join(definitions)}")
    except CatalogLoadError as e:
        logger.error("=" * 60)
        logger.error(f"❌ FATAL: {e}")
        logger.error("=" * 60)
        raise

    register_default_extractors(silent=True)
    dbg.maybe_enable_from_env()
    if _ENGINE is None:
        _ENGINE = SessionStateMachine(catalog=catalog)
    logger.info(f"✅ Extractor: {_ENGINE.extractor.name} - Ready to serve requests")

    yield  # Application runs

    logger.info("👋 Shutting down Doc Assembly API...")
    flush_traces()


app = FastAPI(
    title="Doc Assembly API",
    description="Guide users through structured document intake and drafting",
    version="1.0.0",
    lifespan=lifespan
)


# --- Authentication ---

async def verify_api_key(x_api_key: str | None = Header(default=None)):
    """Verify API key from header when API_SECRET_KEY is configured."""
    expected = os.getenv("API_SECRET_KEY")
    if not expected:
        return None
    if not x_api_key or not secrets.compare_digest(x_api_key, expected):
        raise HTTPException(status_code=401, detail="Invalid API key")
    return x_api_key


def get_engine() -> SessionStateMachine:
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = SessionStateMachine()
    return _ENGINE


# --- Helpers ---

def _field_refs(fields: List[RequirementSpec]) -> List[schemas.FieldRef]:
    return [schemas.FieldRef(id=f.id, label=f.label) for f in fields]


def _artifact_response(artifact: Artifact) -> schemas.ArtifactResponse:
    return schemas.ArtifactResponse(
        doc_type=artifact.doc_type,
        title=artifact.title,
        content=artifact.content,
        missing_required=_field_refs(artifact.missing_required),
        assumed_fields=artifact.assumed_fields,
        guidance=artifact.guidance,
        context_summary=artifact.context_summary,
    )


def _turn_response(thread_id: str, outcome: TurnOutcome) -> schemas.TurnResponse:
    session = outcome.session
    return schemas.TurnResponse(
        status=outcome.status,
        thread_id=thread_id,
        message=outcome.message,
        doc_type=session.doc_type if session else None,
        confidence=session.confidence if session else None,
        ready_to_generate=session.ready_to_generate if session else False,
        questions=outcome.questions,
        missing_required=_field_refs(outcome.missing_required),
        artifact=_artifact_response(outcome.artifact) if outcome.artifact else None,
    )


# --- Health Check ---

@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "doc-assembly-api"
    }


# --- Catalog ---

@app.get(
    "/doc-types",
    response_model=list[schemas.DocTypeResponse],
    dependencies=[Depends(verify_api_key)],
    summary="List document types"
)
async def list_doc_types(engine: SessionStateMachine = Depends(get_engine)):
    """Read-only projection of the doc type catalog."""
    return [schemas.DocTypeResponse(**option.model_dump()) for option in engine.catalog.list()]


# --- Sessions ---

@app.post(
    "/sessions/{thread_id}/messages",
    response_model=schemas.TurnResponse,
    dependencies=[Depends(verify_api_key)],
    summary="Process a conversation message"
)
def post_message(
    thread_id: str,
    request: schemas.MessageRequest,
    engine: SessionStateMachine = Depends(get_engine)
):
    """Process one message for a thread.

    Returns the next clarifying questions, or the drafted artifact once the
    session is ready.

    Raises:
        HTTPException: 404 for an unknown doc type, 502 if rendering failed
    """
    logger.info(f"📥 Message for thread {thread_id} ({len(request.content)} chars)")
    try:
        outcome = engine.process_message(
            thread_id,
            InboundMessage(content=request.content, id=request.message_id, index=request.message_index),
            doc_type=request.doc_type,
            config=request.config,
        )
    except UnknownDocTypeError as e:
        raise HTTPException(
            status_code=404,
            detail={"error": str(e), "available": e.available}
        )
    except RenderError as e:
        logger.error(f"❌ Render failed for thread {thread_id}: {e}")
        raise HTTPException(
            status_code=502,
            detail=f"Document rendering failed; the session is still ready, retry the draft: {e}"
        )
    return _turn_response(thread_id, outcome)


@app.get(
    "/sessions/{thread_id}",
    response_model=schemas.SessionResponse,
    dependencies=[Depends(verify_api_key)],
    summary="Get session state"
)
async def get_session(thread_id: str, engine: SessionStateMachine = Depends(get_engine)):
    session = engine.get_session(thread_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return schemas.session_response(thread_id, session)


@app.delete(
    "/sessions/{thread_id}",
    dependencies=[Depends(verify_api_key)],
    summary="Reset session"
)
async def reset_session(thread_id: str, engine: SessionStateMachine = Depends(get_engine)):
    """Discard the thread's session, e.g. when the user switches documents."""
    if not engine.reset_session(thread_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"reset": True, "thread_id": thread_id}


@app.post(
    "/sessions/{thread_id}/citations",
    response_model=schemas.SessionResponse,
    dependencies=[Depends(verify_api_key)],
    summary="Attach research citations"
)
def attach_citations(
    thread_id: str,
    request: schemas.CitationsRequest,
    engine: SessionStateMachine = Depends(get_engine)
):
    try:
        session = engine.attach_citations(thread_id, request.citations)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")
    return schemas.session_response(thread_id, session)


@app.post(
    "/sessions/{thread_id}/draft",
    response_model=schemas.ArtifactResponse,
    dependencies=[Depends(verify_api_key)],
    summary="Render a ready session"
)
def draft(thread_id: str, engine: SessionStateMachine = Depends(get_engine)):
    """Render the document for a ready session (also used to retry a failed render).

    Raises:
        HTTPException: 404 if no active session, 409 if not ready, 502 on render failure
    """
    try:
        artifact = engine.draft(thread_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")
    except SessionNotReadyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except RenderError as e:
        raise HTTPException(status_code=502, detail=f"Document rendering failed: {e}")
    return _artifact_response(artifact)
