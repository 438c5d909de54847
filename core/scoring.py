from __future__ import annotations

"""Composite readiness scoring for a dossier against a document definition."""

from typing import Dict, List, Mapping, Optional, Sequence, Set

from pydantic import BaseModel, Field

from doctypes import DocumentDefinition, RequirementSpec
from .config import ScoringPolicy, get_scoring_policy
from .state import Citation


class ConfidenceReport(BaseModel):
    completeness: float
    evidence: float
    clarity: float
    overall: float
    missing_required: List[RequirementSpec] = Field(default_factory=list)


def is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def is_placeholder(value: str, terms: Sequence[str]) -> bool:
    lowered = value.lower()
    return any(term.lower() in lowered for term in terms)


def missing_required_fields(
    definition: DocumentDefinition, dossier: Mapping[str, str]
) -> List[RequirementSpec]:
    """Required fields with no non-blank value, in catalog order."""
    return [f for f in definition.required_fields if is_blank(dossier.get(f.id))]


def compute_confidence(
    definition: DocumentDefinition,
    dossier: Mapping[str, str],
    citations: Sequence[Citation],
    policy: Optional[ScoringPolicy] = None,
) -> ConfidenceReport:
    """Score completeness, evidence and clarity. Pure function of its inputs."""
    policy = policy or get_scoring_policy()

    required = definition.required_fields
    total_weight = sum(f.coverage_weight for f in required)
    missing = missing_required_fields(definition, dossier)
    missing_ids = {f.id for f in missing}
    covered_weight = sum(f.coverage_weight for f in required if f.id not in missing_ids)
    completeness = covered_weight / total_weight if total_weight > 0 else 0.0

    cited: Set[str] = set()
    for citation in citations:
        cited.update(citation.applies_to)
    valued = [f.id for f in definition.all_fields if not is_blank(dossier.get(f.id))]
    evidence = (
        sum(1 for field_id in valued if field_id in cited) / len(valued) if valued else 0.0
    )

    unclear = sum(
        1
        for value in dossier.values()
        if is_blank(value) or is_placeholder(value, policy.placeholder_terms)
    )
    clarity = 1 - unclear / max(len(dossier), 1)

    overall = round(
        policy.completeness_weight * completeness
        + policy.evidence_weight * evidence
        + policy.clarity_weight * clarity,
        3,
    )

    return ConfidenceReport(
        completeness=completeness,
        evidence=evidence,
        clarity=clarity,
        overall=overall,
        missing_required=missing,
    )


def coverage_confidence(required_ids: Sequence[str], satisfied: Set[str]) -> int:
    """Required-field coverage as a 0-100 percentage (blueprint sessions)."""
    if not required_ids:
        return 0
    answered = sum(1 for field_id in required_ids if field_id in satisfied)
    return round(answered / len(required_ids) * 100)


def progress_summary(definition: DocumentDefinition, dossier: Dict[str, str]) -> str:
    total = len(definition.required_fields)
    filled = total - len(missing_required_fields(definition, dossier))
    return f"{filled}/{total or 1} required fields captured"


__all__ = [
    "ConfidenceReport",
    "compute_confidence",
    "coverage_confidence",
    "missing_required_fields",
    "progress_summary",
    "is_blank",
    "is_placeholder",
]
