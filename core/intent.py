from __future__ import annotations

"""Lexical intent detection: document type, readiness, assumption authorisation."""

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional

from doctypes import DocumentCatalog, DocumentDefinition, get_catalog
from .config import get_engine_setting
from .errors import UnknownDocTypeError

logger = logging.getLogger(__name__)


DOC_CONFIG_KEYS = ("documentType", "document_type", "docType", "doc_type")

READY_PATTERNS = [
    re.compile(r"ready to (?:start|generate|draft)", re.IGNORECASE),
    re.compile(r"go ahead and (?:start|generate|draft)", re.IGNORECASE),
    re.compile(r"generate (?:the )?(?:doc|document|draft)", re.IGNORECASE),
    re.compile(r"we['’]?re ready", re.IGNORECASE),
]

EXPLICIT_ASSUMPTION_PHRASES = ("you can assume", "feel free to assume")
PROCEED_PATTERN = re.compile(r"(proceed|go ahead|continue|carry on|keep going)")
ASSUMPTION_PATTERN = re.compile(r"(assume|assumption|decide|estimate|use your judgment|make a call)")

MESSAGE_ID_SUFFIX_CHARS = 64


# Readiness and assumptions --------------------------------------------------

def detect_ready_intent(text: str) -> bool:
    if not text or not text.strip():
        return False
    return any(pattern.search(text) for pattern in READY_PATTERNS)


def detect_assumption_request(text: str) -> bool:
    normalized = (text or "").lower()
    if not normalized:
        return False
    explicit = any(phrase in normalized for phrase in EXPLICIT_ASSUMPTION_PHRASES)
    proceed = bool(PROCEED_PATTERN.search(normalized) and ASSUMPTION_PATTERN.search(normalized))
    return explicit or proceed


def message_identity(message_id: Optional[str], content: str, position: int = 0) -> Optional[str]:
    """Explicit id when present, else a key from the message position and trailing content.

    ``position`` is the message's place in the conversation, so the same text
    sent again later is a new message while a re-delivery at the same position
    is not.
    """
    if message_id and message_id.strip():
        return message_id.strip()
    trimmed = (content or "").strip()
    if trimmed:
        return f"message-{position}:{trimmed[-MESSAGE_ID_SUFFIX_CHARS:]}"
    return None


# Document type resolution ---------------------------------------------------

def _phrases(definition: DocumentDefinition) -> List[str]:
    return [*definition.aliases, definition.id, definition.id.replace("_", " ")]


def normalize_doc_type_candidate(
    candidate: Optional[str], catalog: Optional[DocumentCatalog] = None
) -> Optional[str]:
    """Map a requested doc type (id or alias phrase) to a catalog id.

    Unmatched candidates are returned trimmed so the lookup can report them.
    """
    if not candidate or not candidate.strip():
        return None
    trimmed = candidate.strip()
    lower = trimmed.lower()
    definitions = (catalog or get_catalog()).load()
    if lower in definitions:
        return lower
    for definition in definitions.values():
        if any(_contains_phrase(lower, phrase) for phrase in definition.aliases):
            return definition.id
    return trimmed


def doc_type_from_config(
    config: Optional[Mapping[str, Any]], catalog: Optional[DocumentCatalog] = None
) -> Optional[str]:
    if not config:
        return None
    for key in DOC_CONFIG_KEYS:
        value = config.get(key)
        if isinstance(value, str) and value.strip():
            return normalize_doc_type_candidate(value, catalog)
    return None


def detect_doc_type(text: Optional[str], catalog: Optional[DocumentCatalog] = None) -> Optional[str]:
    """Return the first catalog doc type whose id or alias phrase appears in ``text``."""
    if not text:
        return None
    normalized = text.lower()
    for definition in (catalog or get_catalog()).load().values():
        if any(_contains_phrase(normalized, phrase) for phrase in _phrases(definition)):
            return definition.id
    return None


def _contains_phrase(text: str, phrase: str) -> bool:
    # Short aliases such as "adr" or "prd" must match whole words.
    if len(phrase) <= 4:
        return re.search(rf"\b{re.escape(phrase)}\b", text) is not None
    return phrase in text


def resolve_document_definition(
    *,
    requested: Optional[str] = None,
    config: Optional[Mapping[str, Any]] = None,
    text: Optional[str] = None,
    fallback_to_default: bool = False,
    catalog: Optional[DocumentCatalog] = None,
) -> Optional[DocumentDefinition]:
    """Resolve which document is being built.

    An explicit request (argument or config key) that does not name a catalog
    entry raises :class:`UnknownDocTypeError`. Otherwise the message text is
    scanned, then the configured default is used when allowed.
    """
    catalog = catalog or get_catalog()

    explicit = normalize_doc_type_candidate(requested, catalog) if requested else None
    explicit = explicit or doc_type_from_config(config, catalog)
    if explicit:
        return catalog.get(explicit)

    detected = detect_doc_type(text, catalog)
    if detected:
        return catalog.get(detected)

    if not fallback_to_default:
        return None

    default_type = get_engine_setting("default_doc_type")
    try:
        return catalog.get(default_type)
    except UnknownDocTypeError as e:
        logger.warning(f"⚠️ INTENT: Default doc type unavailable: {e}")
        return None


# Structured metadata --------------------------------------------------------

def _json_segments(raw: str) -> Iterable[str]:
    depth = 0
    start = -1
    for index, char in enumerate(raw):
        if char == "{":
            if depth == 0:
                start = index
            depth += 1
        elif char == "}" and depth:
            depth -= 1
            if depth == 0 and start != -1:
                yield raw[start:index + 1]
                start = -1


def _is_project_user_details(value: Any) -> bool:
    return isinstance(value, dict) and ("project" in value or "user" in value)


def extract_project_user_details(raw: str) -> Optional[Dict[str, Any]]:
    """Find a JSON object with ``project`` and/or ``user`` keys in a message."""
    trimmed = (raw or "").strip()
    if not trimmed:
        return None
    for candidate in (trimmed, *_json_segments(trimmed)):
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if _is_project_user_details(parsed):
            return parsed
    return None


def _pretty(value: Any) -> str:
    if isinstance(value, str):
        return value.strip() or value
    return json.dumps(value, indent=2, ensure_ascii=False)


def project_user_updates(details: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    if not details:
        return {}
    updates: Dict[str, str] = {}
    if details.get("project") is not None:
        updates["project_details"] = _pretty(details["project"])
    if details.get("user") is not None:
        updates["user_details"] = _pretty(details["user"])
    return updates


__all__ = [
    "DOC_CONFIG_KEYS",
    "READY_PATTERNS",
    "detect_ready_intent",
    "detect_assumption_request",
    "message_identity",
    "normalize_doc_type_candidate",
    "doc_type_from_config",
    "detect_doc_type",
    "resolve_document_definition",
    "extract_project_user_details",
    "project_user_updates",
]
