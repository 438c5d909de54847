from __future__ import annotations

"""Clarification blueprints: hand-authored, priority-ordered intake questions.

A blueprint drives document types whose intake needs richer prompts than the
catalog's diagnostic questions. Each entry knows when its field still needs a
follow-up, how to merge new values, and which default to inject when the user
authorises assumptions.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Literal, Optional, Set, Tuple
import logging
import re
import uuid

from .config import get_engine_setting, MAX_QUESTIONS_PER_PROMPT, MIN_DESCRIPTION_LENGTH
from .errors import CatalogLoadError
from .state import ClarifyingQuestion, InputValue, utcnow

logger = logging.getLogger(__name__)

FieldKind = Literal["scalar", "list"]
Inputs = Dict[str, InputValue]

GENERIC_TITLES = (
    "concept note",
    "project concept",
    "project proposal",
    "concept paper",
    "proposal",
)

SUMMARY_TRUNCATE = 220


# Helpers ---------------------------------------------------------------------

def _is_empty(value: Optional[InputValue]) -> bool:
    if value is None:
        return True
    if isinstance(value, list):
        return len(value) == 0
    return not value.strip()


def _as_list(value: Optional[InputValue]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return list(value)
    return [value]


def _as_text(value: Optional[InputValue]) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return "; ".join(value)
    return value


def is_generic_title(title: Optional[str]) -> bool:
    if not title:
        return True
    normalized = title.strip().lower()
    if len(normalized) <= 6:
        return True
    return normalized in GENERIC_TITLES


def _min_description_length() -> int:
    return int(get_engine_setting("min_description_length", MIN_DESCRIPTION_LENGTH))


def truncate(value: str, max_length: int) -> str:
    if len(value) <= max_length:
        return value
    return f"{value[:max_length - 3]}..."


def parse_bullet_block(block: str) -> List[str]:
    items = []
    for line in block.splitlines():
        cleaned = re.sub(r"^[\-*•\d.)\s]+", "", line.strip()).strip()
        if cleaned:
            items.append(cleaned)
    return items


def split_inline_list(value: str) -> List[str]:
    normalized = re.sub(r"\sand\s", ", ", value, flags=re.IGNORECASE)
    return [item.strip() for item in re.split(r"[,;|]", normalized) if item.strip()]


def coerce_list(value: str) -> List[str]:
    """Turn free text into list items: bullet lines when multi-line, else an inline list."""
    if "\n" in value.strip():
        return parse_bullet_block(value)
    return split_inline_list(value)


def merge_string_lists(existing: Iterable[str], incoming: Iterable[str]) -> List[str]:
    """Union of two lists, trimmed and deduplicated in first-seen order."""
    seen: Dict[str, None] = {}
    for item in [*existing, *incoming]:
        cleaned = item.strip()
        if cleaned and cleaned not in seen:
            seen[cleaned] = None
    return list(seen)


# Assumption defaults -----------------------------------------------------------

def suggest_working_title(inputs: Inputs) -> str:
    title = _as_text(inputs.get("title"))
    if title and not is_generic_title(title):
        return title

    description = _as_text(inputs.get("description")).strip()
    if description:
        words = [
            w.capitalize()
            for w in re.sub(r"[^a-zA-Z0-9\s]", " ", description).split()
            if len(w) > 3
        ][:4]
        if len(words) >= 2:
            return f"{' '.join(words[:3])} Initiative"

    audience = _as_text(inputs.get("target_audience"))
    if audience:
        return f"{audience} Concept Initiative"

    return "Strategic Concept Note Initiative"


def suggest_description(inputs: Inputs) -> str:
    existing = _as_text(inputs.get("description")).strip()
    if existing:
        return (
            f"{existing.rstrip('.')}. Further detail on the problem and intended change "
            "is assumed and will be refined with stakeholders."
        )
    title = _as_text(inputs.get("title")) or "This initiative"
    return (
        f"{title} addresses a challenge that stakeholders have not yet fully described "
        "(assumed). The concept note frames the intended change at a high level and "
        "will be refined once the problem statement is confirmed."
    )


def suggest_objectives(inputs: Inputs) -> List[str]:
    audience = _as_text(inputs.get("target_audience")) or "key stakeholders"
    return [
        "Validate the solution approach through a structured pilot and stakeholder feedback.",
        f"Deliver measurable improvements for {audience} within the initial implementation cycle.",
        "Establish governance, success metrics, and a roadmap that enable sustainable scale.",
    ]


def _constant(value: InputValue) -> Callable[[Inputs], InputValue]:
    def factory(inputs: Inputs) -> InputValue:
        return list(value) if isinstance(value, list) else value
    return factory


# Blueprint model ----------------------------------------------------------------

@dataclass(frozen=True)
class BlueprintEntry:
    field: str
    label: str
    question: str
    rationale: str
    priority: int
    kind: FieldKind = "scalar"
    required: bool = False
    assumption_suggestion: Optional[str] = None
    needs_follow_up: Optional[Callable[[Inputs], bool]] = None
    default: Optional[Callable[[Inputs], InputValue]] = None

    def follow_up_needed(self, inputs: Inputs) -> bool:
        if self.needs_follow_up is not None:
            return self.needs_follow_up(inputs)
        return _is_empty(inputs.get(self.field))


class Blueprint:
    """Priority-ordered set of blueprint entries, keyed by field."""

    def __init__(self, name: str, entries: Iterable[BlueprintEntry]) -> None:
        self.name = name
        self.entries: List[BlueprintEntry] = sorted(entries, key=lambda e: e.priority)
        self._lookup = {e.field: e for e in self.entries}

    def get(self, field: str) -> Optional[BlueprintEntry]:
        return self._lookup.get(field)

    def fields(self) -> List[str]:
        return [e.field for e in self.entries]

    def required_fields(self) -> List[str]:
        return [e.field for e in self.entries if e.required]

    def priority_of(self, field: str) -> int:
        entry = self._lookup.get(field)
        return entry.priority if entry else 10**9

    def coerce(self, field: str, value: str) -> InputValue:
        entry = self._lookup.get(field)
        if entry is not None and entry.kind == "list":
            return coerce_list(value)
        return value.strip()


def _title_needs_follow_up(inputs: Inputs) -> bool:
    return is_generic_title(_as_text(inputs.get("title")))


def _description_needs_follow_up(inputs: Inputs) -> bool:
    return len(_as_text(inputs.get("description")).strip()) < _min_description_length()


CONCEPT_NOTE_BLUEPRINT = Blueprint(
    "concept_note",
    [
        BlueprintEntry(
            field="title",
            label="Title",
            question="What working title should we use for this project or initiative?",
            rationale="A clear title helps stakeholders quickly understand the concept note.",
            required=True,
            assumption_suggestion="I can suggest a working title if you'd like me to propose one.",
            priority=1,
            needs_follow_up=_title_needs_follow_up,
            default=suggest_working_title,
        ),
        BlueprintEntry(
            field="description",
            label="Description",
            question="What challenge are we addressing and what change do you want to see?",
            rationale="The description anchors every other section of the concept note.",
            required=True,
            assumption_suggestion="If it's easier, share a few bullet points and I'll shape the narrative.",
            priority=2,
            needs_follow_up=_description_needs_follow_up,
            default=suggest_description,
        ),
        BlueprintEntry(
            field="objectives",
            label="Objectives",
            kind="list",
            question="What are the top 2–3 objectives or outcomes you want from the project?",
            rationale="Objectives steer scope, success metrics, and stakeholder expectations.",
            assumption_suggestion="I can draft provisional objectives based on the problem we define.",
            priority=3,
            default=suggest_objectives,
        ),
        BlueprintEntry(
            field="target_audience",
            label="Audience",
            question="Who are the primary stakeholders or beneficiaries we should plan this for?",
            rationale="Audience definitions tailor messaging, tone, and success criteria.",
            assumption_suggestion="We can assume a general stakeholder audience if unspecified.",
            priority=4,
            default=_constant("General stakeholders (assumed)"),
        ),
        BlueprintEntry(
            field="timeline",
            label="Timeline",
            question="What timeline or key milestones are you targeting?",
            rationale="Schedule expectations influence the phasing and resourcing story.",
            assumption_suggestion="I can assume a 6–12 month rollout if you don't have a timeline yet.",
            priority=5,
            default=_constant("Approximately 6–12 months (assumed)"),
        ),
        BlueprintEntry(
            field="budget",
            label="Budget",
            question="Do you have a working budget or funding envelope in mind?",
            rationale="Budget guidance helps shape scope and the investment narrative.",
            assumption_suggestion="We can note that budget will be confirmed during planning.",
            priority=6,
            default=_constant("Budget to be confirmed during planning (assumed)"),
        ),
        BlueprintEntry(
            field="scope",
            label="Scope",
            question="Is there a geographic or organizational scope we should design around?",
            rationale="Scope decisions influence compliance, partnerships, and delivery model.",
            assumption_suggestion="I'll assume a local or regional scope if nothing specific is set.",
            priority=7,
            default=_constant("Local or regional focus (assumed)"),
        ),
        BlueprintEntry(
            field="key_activities",
            label="Key Activities",
            kind="list",
            question="What major activities or workstreams have you considered so far?",
            rationale="Activities help size the effort and align expectations.",
            assumption_suggestion="I can outline a typical phased delivery plan if needed.",
            priority=8,
            default=_constant([
                "Discovery and requirements workshops",
                "Pilot implementation of the core solution",
                "Evaluation and scale-up planning",
            ]),
        ),
        BlueprintEntry(
            field="key_challenges",
            label="Risks / Constraints",
            kind="list",
            question="Any known risks, constraints, or sensitivities we should factor in?",
            rationale="Calling out risks early lets us plan mitigations in the concept note.",
            assumption_suggestion="I'll highlight standard change management and resourcing risks.",
            priority=9,
            default=_constant([
                "Stakeholder alignment and change management",
                "Resource availability and budget approvals",
                "Data, compliance, or policy considerations",
            ]),
        ),
        BlueprintEntry(
            field="success_metrics",
            label="Success Metrics",
            kind="list",
            question="How will you know this project worked? Any KPIs or signals of success?",
            rationale="Success metrics tie objectives to measurable outcomes.",
            assumption_suggestion="I can draft provisional KPIs aligned to the objectives.",
            priority=10,
            default=_constant([
                "Achievement of the primary project objectives",
                "Stakeholder satisfaction beating target thresholds",
                "On-time delivery of critical milestones",
            ]),
        ),
        BlueprintEntry(
            field="key_partners",
            label="Partners",
            kind="list",
            question="Are there partners, departments, or champions we should call out?",
            rationale="Listing partners strengthens the delivery plan and governance model.",
            assumption_suggestion="I can list typical internal sponsors and external collaborators.",
            priority=11,
            default=_constant([
                "Executive sponsor or leadership champion",
                "Core delivery team or PMO",
                "Key external collaborators or vendors",
            ]),
        ),
    ],
)


_BLUEPRINTS: Dict[str, Blueprint] = {CONCEPT_NOTE_BLUEPRINT.name: CONCEPT_NOTE_BLUEPRINT}


def get_blueprint(name: str) -> Blueprint:
    blueprint = _BLUEPRINTS.get(name)
    if blueprint is None:
        raise CatalogLoadError(
            f"Unknown clarification blueprint '{name}'. Available: {', '.join(_BLUEPRINTS)}"
        )
    return blueprint


def register_blueprint(blueprint: Blueprint) -> None:
    _BLUEPRINTS[blueprint.name] = blueprint
    logger.debug(f"Registered blueprint: {blueprint.name}")


# Turn operations ---------------------------------------------------------------

def merge_inputs(blueprint: Blueprint, existing: Inputs, updates: Inputs) -> Inputs:
    """Return a new inputs map: scalar fields overwrite, list fields union."""
    merged: Inputs = dict(existing)
    for field, value in updates.items():
        if _is_empty(value):
            continue
        entry = blueprint.get(field)
        if entry is not None and entry.kind == "list":
            incoming = value if isinstance(value, list) else coerce_list(value)
            combined = merge_string_lists(_as_list(existing.get(field)), incoming)
            if combined:
                merged[field] = combined
        else:
            merged[field] = _as_text(value).strip()
    return merged


def apply_assumptions(blueprint: Blueprint, inputs: Inputs) -> Tuple[Inputs, Set[str]]:
    """Fill every entry still needing follow-up with its documented default.

    Entries are visited in priority order so later defaults can build on
    earlier ones (the objectives mention the assumed audience, and so on).
    """
    updated: Inputs = dict(inputs)
    assumed: Set[str] = set()
    for entry in blueprint.entries:
        if entry.default is None or not entry.follow_up_needed(updated):
            continue
        value = entry.default(updated)
        if _is_empty(value):
            continue
        updated[entry.field] = value
        assumed.add(entry.field)
    if assumed:
        logger.info(f"🧩 BLUEPRINT: Assumed {len(assumed)} field(s): {', '.join(sorted(assumed))}")
    return updated, assumed


def refresh_clarifying_questions(
    blueprint: Blueprint,
    existing: Dict[str, ClarifyingQuestion],
    inputs: Inputs,
    assumed: Set[str],
) -> Dict[str, ClarifyingQuestion]:
    """Re-mark every tracked question pending, answered or assumed. One entry per field."""
    questions: Dict[str, ClarifyingQuestion] = dict(existing)

    for entry in blueprint.entries:
        current = questions.get(entry.field)
        if entry.follow_up_needed(inputs):
            if current is None:
                questions[entry.field] = ClarifyingQuestion(
                    id=f"clarify-{entry.field}-{uuid.uuid4().hex[:8]}",
                    field=entry.field,
                    question=entry.question,
                    rationale=entry.rationale,
                    required=entry.required,
                    assumption_suggestion=entry.assumption_suggestion,
                )
            elif current.status != "pending":
                questions[entry.field] = current.model_copy(update={"status": "pending"})
        elif current is not None:
            status = "assumed" if entry.field in assumed else "answered"
            questions[entry.field] = current.model_copy(update={"status": status})
    return questions


def select_clarifying_questions(
    blueprint: Blueprint,
    questions: Dict[str, ClarifyingQuestion],
    *,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[ClarifyingQuestion]:
    """Pick pending questions to surface, by blueprint priority then fewest asks.

    Optional questions are surfaced once; required ones keep coming back until
    answered. Returned copies have ``times_asked`` incremented and
    ``last_asked_at`` set.
    """
    limit = limit or int(get_engine_setting("max_questions_per_prompt", MAX_QUESTIONS_PER_PROMPT))
    now = now or utcnow()
    pending = sorted(
        (q for q in questions.values() if q.status == "pending"),
        key=lambda q: (blueprint.priority_of(q.field), q.times_asked),
    )

    to_ask: List[ClarifyingQuestion] = []
    for question in pending:
        entry = blueprint.get(question.field)
        if entry is None:
            continue
        if question.times_asked == 0 or entry.required:
            to_ask.append(
                question.model_copy(
                    update={"times_asked": question.times_asked + 1, "last_asked_at": now}
                )
            )
            if len(to_ask) >= limit:
                break
    return to_ask


def outstanding_required(blueprint: Blueprint, inputs: Inputs) -> List[str]:
    return [e.field for e in blueprint.entries if e.required and e.follow_up_needed(inputs)]


def flatten_inputs(inputs: Inputs) -> Dict[str, str]:
    """Project blueprint inputs onto dossier strings (lists become bullet lines)."""
    flat: Dict[str, str] = {}
    for field, value in inputs.items():
        if isinstance(value, list):
            flat[field] = "\n".join(f"- {item}" for item in value)
        else:
            flat[field] = value
    return flat


# Prompts ---------------------------------------------------------------------

def format_intake_summary(blueprint: Blueprint, inputs: Inputs) -> str:
    lines = []
    for entry in blueprint.entries:
        value = inputs.get(entry.field)
        if _is_empty(value):
            continue
        if isinstance(value, list):
            text = "; ".join(value[:3])
        elif entry.field == "description":
            text = truncate(value, SUMMARY_TRUNCATE)
        else:
            text = value
        lines.append(f"• **{entry.label}**: {text}")
    if not lines:
        return "• I do not yet have specific project details confirmed."
    return "\n".join(lines)


def build_clarifying_prompt(
    blueprint: Blueprint, inputs: Inputs, questions: List[ClarifyingQuestion]
) -> str:
    question_lines = []
    for index, question in enumerate(questions, start=1):
        entry = blueprint.get(question.field)
        parts = [f"{index}. {question.question}"]
        if entry and entry.rationale:
            parts.append(f"   Why: {entry.rationale}")
        if entry and entry.assumption_suggestion:
            parts.append(f"   If unknown: {entry.assumption_suggestion}")
        question_lines.append("\n".join(parts))

    return (
        "To shape this document well, I want to confirm a few essentials.\n\n"
        "Here's the working brief I have so far:\n"
        f"{format_intake_summary(blueprint, inputs)}\n\n"
        "Could you clarify the following?\n"
        + "\n".join(question_lines)
        + "\n\nIf anything is unavailable, let me know and I can suggest assumptions "
        "or proceed with reasonable defaults."
    )


__all__ = [
    "BlueprintEntry",
    "Blueprint",
    "CONCEPT_NOTE_BLUEPRINT",
    "get_blueprint",
    "register_blueprint",
    "is_generic_title",
    "merge_string_lists",
    "merge_inputs",
    "coerce_list",
    "parse_bullet_block",
    "split_inline_list",
    "suggest_working_title",
    "apply_assumptions",
    "refresh_clarifying_questions",
    "select_clarifying_questions",
    "outstanding_required",
    "flatten_inputs",
    "format_intake_summary",
    "build_clarifying_prompt",
]
