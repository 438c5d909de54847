from __future__ import annotations

"""Rule-based answer extractor.

Recognises ``<field id or label>: value`` lines for any catalog field, plus a
set of intake heuristics (title, description, audience, budget, timeline,
scope and the list-valued intake fields) for definitions that declare those
field ids.
"""

from typing import Callable, Dict, List, Mapping, Optional, Union
import logging
import re

from core.blueprint import is_generic_title, parse_bullet_block, split_inline_list
from core.state import ExtractedAnswer, ExtractionResult
from doctypes import DocumentDefinition

logger = logging.getLogger(__name__)

LABEL_CONFIDENCE = 0.9
HEURISTIC_CONFIDENCE = 0.6

_LABEL_LINE = re.compile(r"^\s*(?:[-*•]\s+)?([A-Za-z][\w /&-]{0,60}?)\s*:\s*(.*)$")
_BULLET_LINE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+\S")
_DIRECTIVE_WORDS = re.compile(
    r"\b(assume|assumption|proceed|go ahead|continue|ready|generate|draft)\b", re.IGNORECASE
)


def _normalize_key(value: str) -> str:
    return re.sub(r"[\s_\-/]+", " ", value.strip().lower())


def _bullets(items: List[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


# Labelled lines ---------------------------------------------------------------

def _field_keys(definition: DocumentDefinition) -> Dict[str, str]:
    keys: Dict[str, str] = {}
    for f in definition.all_fields:
        keys.setdefault(_normalize_key(f.id), f.id)
        keys.setdefault(_normalize_key(f.label), f.id)
    return keys


def extract_labelled_lines(definition: DocumentDefinition, text: str) -> Dict[str, str]:
    """Values from ``key: value`` lines; an empty value collects the bullets below it."""
    keys = _field_keys(definition)
    lines = text.splitlines()
    found: Dict[str, str] = {}
    index = 0
    while index < len(lines):
        match = _LABEL_LINE.match(lines[index])
        index += 1
        if not match:
            continue
        field_id = keys.get(_normalize_key(match.group(1)))
        if field_id is None or field_id in found:
            continue
        value = match.group(2).strip()
        if not value:
            block: List[str] = []
            while index < len(lines) and _BULLET_LINE.match(lines[index]):
                block.append(lines[index])
                index += 1
            value = _bullets(parse_bullet_block("\n".join(block))) if block else ""
        if value:
            found[field_id] = value
    return found


# Intake heuristics --------------------------------------------------------------

def _first_group(content: str, patterns: List[re.Pattern[str]]) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(content)
        if match:
            return (match.group(1) if match.groups() and match.group(1) else match.group(0)).strip()
    return None


def _list_from_patterns(
    content: str,
    block_patterns: List[re.Pattern[str]],
    enumerated: re.Pattern[str],
    inline_patterns: List[re.Pattern[str]],
) -> List[str]:
    for pattern in block_patterns:
        match = pattern.search(content)
        if match and match.group(1):
            return parse_bullet_block(match.group(1))
    items = [m.group(1).strip() for m in enumerated.finditer(content) if m.group(1).strip()]
    if items:
        return items
    for pattern in inline_patterns:
        match = pattern.search(content)
        if match and match.group(1):
            return split_inline_list(match.group(1))
    return []


def _list_extractor(keywords: str, enumerated: str) -> Callable[[str], List[str]]:
    block = re.compile(rf"(?:{keywords}):\s*\n?((?:\s*[-*•]\s*.+\n?)+)", re.IGNORECASE)
    inline = re.compile(rf"(?:{keywords}):\s*(.+?)(?:\n|$)", re.IGNORECASE)
    # Only the keyword is case-insensitive, so "Metrics:" is not read as "Metric S:".
    numbered = re.compile(rf"(?i:{enumerated})\s*(?:\d+|[A-Z])[:)\-]\s*(.+)")

    def extract(content: str) -> List[str]:
        return _list_from_patterns(content, [block], numbered, [inline])

    return extract


_TITLE_PATTERNS = [
    re.compile(r"(?:title|project|name):\s*(.+?)(?:\n|$)", re.IGNORECASE),
    re.compile(
        r"(?:create|build|make)\s+(?:a\s+)?(?:concept\s+note\s+)?(?:about|for|on)\s+(.+?)(?:\n|\.)",
        re.IGNORECASE,
    ),
]


def extract_title(content: str) -> Optional[str]:
    candidates = []
    for pattern in _TITLE_PATTERNS:
        match = pattern.search(content)
        if match:
            candidates.append(match.group(1).strip())
    lines = [line.strip() for line in content.strip().splitlines() if line.strip()]
    if len(lines) > 1 and not _DIRECTIVE_WORDS.search(lines[0]):
        candidates.append(lines[0])

    for candidate in candidates:
        lowered = candidate.lower()
        if lowered.startswith("generate"):
            continue
        if "concept note" in lowered and len(candidate.split()) <= 4:
            continue
        if len(candidate) > 3 and not is_generic_title(candidate):
            return candidate
    return None


_DESCRIPTION_PATTERNS = [
    re.compile(r"(?:description|about|details?):\s*(.+?)(?:\n\n|$)", re.IGNORECASE | re.DOTALL),
    re.compile(r"(?:project|initiative)\s+(?:is\s+)?(?:about|involves?)\s+(.+?)(?:\n|\.)", re.IGNORECASE),
]


def extract_description(content: str) -> Optional[str]:
    for pattern in _DESCRIPTION_PATTERNS:
        match = pattern.search(content)
        if match and len(match.group(1).strip()) > 40:
            return match.group(1).strip()
    stripped = content.strip()
    if len(stripped) > 120 and not stripped.lower().startswith("generate a concept note"):
        return stripped
    return None


_AUDIENCE_PATTERNS = [
    re.compile(r"(?:target\s+audience|audience|stakeholders?):\s*(.+?)(?:\n|$)", re.IGNORECASE),
    re.compile(
        r"\b(?:for|to)\s+(investors|donors|management|government|community|stakeholders|customers|students)\b",
        re.IGNORECASE,
    ),
]
_BUDGET_PATTERNS = [
    re.compile(r"(?:budget|cost|funding):\s*(.+?)(?:\n|$)", re.IGNORECASE),
    re.compile(r"\$[\d,]+(?:\.\d{2})?"),
    re.compile(r"\d+(?:,\d{3})*(?:\.\d{2})?\s*(?:dollars?|usd|eur|gbp)\b", re.IGNORECASE),
]
_TIMELINE_PATTERNS = [
    re.compile(r"(?:timeline|duration|timeframe):\s*(.+?)(?:\n|$)", re.IGNORECASE),
    re.compile(r"\b(?:over|within|in)\s+(\d+\s+(?:days?|weeks?|months?|years?))", re.IGNORECASE),
    re.compile(r"(\d+\s*-\s*\d+\s+(?:months?|years?))", re.IGNORECASE),
]
_SCOPE_PATTERNS = [
    re.compile(r"(?:scope|location|geography):\s*(.+?)(?:\n|$)", re.IGNORECASE),
    re.compile(r"\b(?:in|across|throughout)\s+(local|regional|national|international|global)\b", re.IGNORECASE),
    re.compile(r"\b(city|country|region|worldwide|nationwide)\b", re.IGNORECASE),
]

Heuristic = Callable[[str], Union[Optional[str], List[str]]]

INTAKE_HEURISTICS: Dict[str, Heuristic] = {
    "title": extract_title,
    "description": extract_description,
    "target_audience": lambda c: _first_group(c, _AUDIENCE_PATTERNS),
    "budget": lambda c: _first_group(c, _BUDGET_PATTERNS),
    "timeline": lambda c: _first_group(c, _TIMELINE_PATTERNS),
    "scope": lambda c: _first_group(c, _SCOPE_PATTERNS),
    "objectives": _list_extractor(r"objectives?|goals?", r"objective"),
    "key_activities": _list_extractor(r"activities|workstreams|phases|deliverables", r"activity|phase"),
    "key_challenges": _list_extractor(r"challenges|risks|constraints|pain\s*points", r"risk|constraint"),
    "success_metrics": _list_extractor(
        r"success\s+metrics|kpis?|key\s+results|impact\s+metrics", r"kpi|metric"
    ),
    "key_partners": _list_extractor(
        r"partners|departments|teams|collaborators|champions", r"partner|department|team"
    ),
}


class RuleBasedExtractor:
    """Deterministic extractor backed by labelled lines and intake heuristics."""

    name = "rules"

    def extract(
        self, definition: DocumentDefinition, dossier: Mapping[str, str], text: str
    ) -> ExtractionResult:
        content = text or ""
        if not content.strip():
            return ExtractionResult()

        answers: Dict[str, ExtractedAnswer] = {}
        for field_id, value in extract_labelled_lines(definition, content).items():
            answers[field_id] = ExtractedAnswer(field_id=field_id, value=value, confidence=LABEL_CONFIDENCE)

        declared = set(definition.field_ids)
        for field_id, heuristic in INTAKE_HEURISTICS.items():
            if field_id not in declared or field_id in answers:
                continue
            found = heuristic(content)
            if not found:
                continue
            value = _bullets(found) if isinstance(found, list) else found
            answers[field_id] = ExtractedAnswer(field_id=field_id, value=value, confidence=HEURISTIC_CONFIDENCE)

        title = None
        if "title" not in declared:
            title = _first_group(content, [re.compile(r"^\s*title:\s*(.+?)\s*$", re.IGNORECASE | re.MULTILINE)])

        logger.debug(f"RULES: {len(answers)} answer(s) for {definition.id}")
        return ExtractionResult(answers=list(answers.values()), title=title)


__all__ = ["RuleBasedExtractor", "extract_labelled_lines", "extract_title", "extract_description"]
