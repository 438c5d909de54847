from __future__ import annotations

"""Question planning from catalog-declared diagnostic questions."""

from typing import List

from doctypes import DocumentDefinition
from .state import QuestionPlanItem, ResearchPlanItem

# Weight for a target id that no field declares. The catalog rejects such
# targets, so this only applies to hand-built definitions.
UNKNOWN_TARGET_WEIGHT = 0.5


def materialize_question_plan(definition: DocumentDefinition) -> List[QuestionPlanItem]:
    """Return one plan item per diagnostic question, in catalog order.

    priority = sum of targeted field weights + 1 / (1 + index). The index
    term keeps catalog order among otherwise equal questions. The result is
    not sorted; see :func:`sort_by_priority`.
    """
    weights = {f.id: f.planning_weight for f in definition.all_fields}

    plan: List[QuestionPlanItem] = []
    for index, question in enumerate(definition.questions):
        coverage = sum(weights.get(target, UNKNOWN_TARGET_WEIGHT) for target in question.targets)
        plan.append(
            QuestionPlanItem(
                id=question.id,
                text=question.text,
                targets=list(question.targets),
                priority=coverage + 1 / (1 + index),
            )
        )
    return plan


def sort_by_priority(items: List[QuestionPlanItem]) -> List[QuestionPlanItem]:
    return sorted(items, key=lambda item: item.priority, reverse=True)


def materialize_research_plan(definition: DocumentDefinition) -> List[ResearchPlanItem]:
    return [
        ResearchPlanItem(
            id=f"{definition.id}:research:{index}",
            query=prompt.query,
            applies_to=list(prompt.applies_to),
        )
        for index, prompt in enumerate(definition.research_prompts)
    ]


__all__ = ["materialize_question_plan", "materialize_research_plan", "sort_by_priority"]
