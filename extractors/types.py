from __future__ import annotations

"""Common types for answer extractors."""

from typing import Mapping, Protocol

from core.state import ExtractionResult
from doctypes import DocumentDefinition


class AnswerExtractor(Protocol):
    """Protocol for an answer extractor."""

    name: str

    def extract(
        self, definition: DocumentDefinition, dossier: Mapping[str, str], text: str
    ) -> ExtractionResult:
        """Propose field values found in ``text``. An empty result means nothing new."""
        ...
