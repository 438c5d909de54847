"""Answer extractor registry and built-in extractors."""

from __future__ import annotations

import logging

from core.config import get_extractor_name
from .registry import register_extractor, get_extractor, is_registered, registered_extractors
from .types import AnswerExtractor
from .rules import RuleBasedExtractor
from .llm import LLMExtractor

logger = logging.getLogger(__name__)


def register_default_extractors(silent: bool = True) -> None:
    """Register the built-in extractors. A missing OpenAI key is ignored if silent."""
    if not is_registered("rules"):
        register_extractor(RuleBasedExtractor())
    if not is_registered("llm"):
        try:
            register_extractor(LLMExtractor())
        except Exception:
            if not silent:
                raise


def resolve_extractor(name: str | None = None) -> AnswerExtractor:
    """Return the named (or configured) extractor, falling back to the rule-based one."""
    register_default_extractors(silent=True)
    wanted = name or get_extractor_name()
    try:
        return get_extractor(wanted)
    except KeyError:
        logger.warning(f"⚠️ EXTRACTOR: '{wanted}' unavailable, using rule-based extraction")
        return get_extractor("rules")


__all__ = [
    "AnswerExtractor",
    "register_extractor",
    "get_extractor",
    "is_registered",
    "registered_extractors",
    "RuleBasedExtractor",
    "LLMExtractor",
    "register_default_extractors",
    "resolve_extractor",
]
