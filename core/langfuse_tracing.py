"""Langfuse tracing helpers for the document engine.

Wraps the Langfuse v3 SDK so session turns and model-backed extraction can be
traced without scattering credential checks. Without credentials the client
helpers return ``None`` and ``turn_span`` yields a no-op context.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Generator, Iterable, Optional
import os

from langfuse import get_client as _get_client
from langfuse import observe


_CLIENT = None


def _credentials_present() -> bool:
    required = ("LANGFUSE_PUBLIC_KEY", "LANGFUSE_SECRET_KEY", "LANGFUSE_HOST")
    return all(os.getenv(var) for var in required)


def is_enabled() -> bool:
    """Return True when Langfuse credentials are configured."""

    return _credentials_present()


def get_langfuse_client():
    """Return singleton Langfuse client or ``None`` when disabled."""

    global _CLIENT
    if not is_enabled():
        return None
    if _CLIENT is None:
        _CLIENT = _get_client()
    return _CLIENT


@dataclass
class TurnContext:
    """Span state for one processed message."""

    span: Any
    client: Any

    def set_output(self, output: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None) -> None:
        if not self.span:
            return
        payload: Dict[str, Any] = {"output": output}
        if metadata:
            payload["metadata"] = metadata
        self.span.update_trace(**payload)


@contextmanager
def turn_span(
    name: str,
    trace_input: Optional[Dict[str, Any]] = None,
    *,
    session_id: Optional[str] = None,
    tags: Optional[Iterable[str]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Generator[TurnContext, None, None]:
    """Context manager yielding a :class:`TurnContext`.

    ``session_id`` is the conversation thread, so all turns of one document
    session group together in Langfuse.
    """

    client = get_langfuse_client()

    if client and hasattr(client, "start_as_current_span"):
        with client.start_as_current_span(name=name) as span:
            span.update_trace(
                input=trace_input,
                session_id=session_id,
                tags=list(tags or []),
                metadata=metadata,
            )
            yield TurnContext(span=span, client=client)
    else:
        yield TurnContext(span=None, client=None)


def flush_traces() -> None:
    client = get_langfuse_client()
    if client and hasattr(client, "flush"):
        client.flush()


__all__ = [
    "TurnContext",
    "turn_span",
    "flush_traces",
    "get_langfuse_client",
    "observe",
    "is_enabled",
]
