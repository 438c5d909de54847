"""Error taxonomy for the document assembly engine."""

from __future__ import annotations

from typing import Iterable, List, Optional


class DocEngineError(Exception):
    """Base class for all engine errors."""


class CatalogLoadError(DocEngineError):
    """The document-type catalog is unreadable or malformed.

    Fatal at startup: the engine cannot serve any session without a catalog.
    """


class UnknownDocTypeError(DocEngineError):
    """A document type was requested that the catalog does not define."""

    def __init__(self, doc_type: str, available: Iterable[str]) -> None:
        self.doc_type = doc_type
        self.available: List[str] = list(available)
        super().__init__(
            f"Unknown doc type: {doc_type}. Available: {', '.join(self.available)}"
        )


class ExtractionFailure(DocEngineError):
    """The answer extractor could not structure a message.

    Recovered locally by the session: the turn proceeds with no new answers.
    """


class RenderError(DocEngineError):
    """The document renderer failed; the session stays ready for a retry."""

    def __init__(self, message: str, template: Optional[str] = None) -> None:
        self.template = template
        super().__init__(message)


class SessionNotFoundError(DocEngineError):
    """No session exists for the requested conversation thread."""

    def __init__(self, thread_id: str) -> None:
        self.thread_id = thread_id
        super().__init__(f"No document session for thread {thread_id}")


class SessionNotReadyError(DocEngineError):
    """A draft was requested for a session that is not ready to generate."""


__all__ = [
    "DocEngineError",
    "CatalogLoadError",
    "UnknownDocTypeError",
    "ExtractionFailure",
    "RenderError",
    "SessionNotFoundError",
    "SessionNotReadyError",
]
