from __future__ import annotations

"""Simple registry for answer extractors."""

from typing import Dict, List

from .types import AnswerExtractor


_extractor_registry: Dict[str, AnswerExtractor] = {}


def register_extractor(extractor: AnswerExtractor) -> None:
    """Register an extractor by its name, replacing any previous one."""
    _extractor_registry[extractor.name] = extractor


def get_extractor(name: str) -> AnswerExtractor:
    """Retrieve a registered extractor by name.

    Raises:
        KeyError: If the extractor is not registered.
    """
    try:
        return _extractor_registry[name]
    except KeyError as exc:
        raise KeyError(f"Extractor '{name}' is not registered") from exc


def is_registered(name: str) -> bool:
    return name in _extractor_registry


def registered_extractors() -> List[str]:
    return sorted(_extractor_registry)
