from datetime import datetime, timezone

import pytest

import core.blueprint as blueprint_module
from core.blueprint import (
    CONCEPT_NOTE_BLUEPRINT,
    Blueprint,
    BlueprintEntry,
    apply_assumptions,
    build_clarifying_prompt,
    coerce_list,
    flatten_inputs,
    get_blueprint,
    is_generic_title,
    merge_inputs,
    outstanding_required,
    refresh_clarifying_questions,
    register_blueprint,
    select_clarifying_questions,
    suggest_working_title,
)
from core.errors import CatalogLoadError

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)
LONG_DESCRIPTION = (
    "Rural clinics lose patient records when paper files are damaged; we want a simple "
    "offline-first digital record system that syncs when connectivity returns."
)


def test_scenario_d_assumptions_fill_every_open_field():
    inputs, assumed = apply_assumptions(CONCEPT_NOTE_BLUEPRINT, {})

    assert assumed == set(CONCEPT_NOTE_BLUEPRINT.fields())
    assert not any(e.follow_up_needed(inputs) for e in CONCEPT_NOTE_BLUEPRINT.entries)
    assert inputs["target_audience"] == "General stakeholders (assumed)"
    assert len(inputs["objectives"]) == 3

    questions = refresh_clarifying_questions(CONCEPT_NOTE_BLUEPRINT, {}, inputs, assumed)
    assert select_clarifying_questions(CONCEPT_NOTE_BLUEPRINT, questions, now=NOW) == []


def test_assumptions_keep_user_supplied_fields():
    existing = {"title": "Clinic Records Modernisation", "timeline": "18 months"}
    inputs, assumed = apply_assumptions(CONCEPT_NOTE_BLUEPRINT, existing)
    assert inputs["title"] == "Clinic Records Modernisation"
    assert inputs["timeline"] == "18 months"
    assert "title" not in assumed
    assert "timeline" not in assumed
    assert "description" in assumed
    assert inputs["description"].startswith("Clinic Records Modernisation addresses")


def test_assumed_objectives_mention_known_audience():
    inputs, _ = apply_assumptions(CONCEPT_NOTE_BLUEPRINT, {"target_audience": "district health officers"})
    assert any("district health officers" in o for o in inputs["objectives"])


def test_short_description_is_extended_not_replaced():
    inputs, assumed = apply_assumptions(CONCEPT_NOTE_BLUEPRINT, {"description": "Digitise clinic records"})
    assert "description" in assumed
    assert inputs["description"].startswith("Digitise clinic records.")
    assert len(inputs["description"]) >= 80


def test_merge_scalar_overwrites_and_list_unions():
    merged = merge_inputs(
        CONCEPT_NOTE_BLUEPRINT,
        {"budget": "$10k", "objectives": ["a", "b"]},
        {"budget": "$20k", "objectives": ["b", "c"]},
    )
    assert merged["budget"] == "$20k"
    assert merged["objectives"] == ["a", "b", "c"]


def test_merge_list_commutative_as_sets():
    first = merge_inputs(
        CONCEPT_NOTE_BLUEPRINT,
        merge_inputs(CONCEPT_NOTE_BLUEPRINT, {}, {"key_partners": ["a", "b"]}),
        {"key_partners": ["b", "c"]},
    )
    second = merge_inputs(
        CONCEPT_NOTE_BLUEPRINT,
        merge_inputs(CONCEPT_NOTE_BLUEPRINT, {}, {"key_partners": ["b", "c"]}),
        {"key_partners": ["a", "b"]},
    )
    assert set(first["key_partners"]) == set(second["key_partners"]) == {"a", "b", "c"}
    assert len(first["key_partners"]) == len(second["key_partners"]) == 3


def test_merge_ignores_empty_updates():
    merged = merge_inputs(CONCEPT_NOTE_BLUEPRINT, {"budget": "$10k"}, {"budget": "  ", "objectives": []})
    assert merged == {"budget": "$10k"}


def test_merge_coerces_text_for_list_fields():
    merged = merge_inputs(CONCEPT_NOTE_BLUEPRINT, {}, {"key_activities": "training, rollout and evaluation"})
    assert merged["key_activities"] == ["training", "rollout", "evaluation"]


def test_coerce_list_from_bullets():
    assert coerce_list("- first\n- second\n3. third") == ["first", "second", "third"]


def test_generic_titles_need_follow_up():
    assert is_generic_title("Concept Note")
    assert is_generic_title("Pilot")
    assert not is_generic_title("Clinic Records Modernisation")
    assert outstanding_required(CONCEPT_NOTE_BLUEPRINT, {"title": "proposal"}) == ["title", "description"]


def test_working_title_from_description():
    assert suggest_working_title({"description": LONG_DESCRIPTION}) == "Rural Clinics Lose Initiative"


def test_selection_caps_at_four_in_priority_order():
    questions = refresh_clarifying_questions(CONCEPT_NOTE_BLUEPRINT, {}, {}, set())
    selected = select_clarifying_questions(CONCEPT_NOTE_BLUEPRINT, questions, now=NOW)
    assert [q.field for q in selected] == ["title", "description", "objectives", "target_audience"]
    assert all(q.times_asked == 1 and q.last_asked_at == NOW for q in selected)


def test_selection_respects_configured_limit():
    questions = refresh_clarifying_questions(CONCEPT_NOTE_BLUEPRINT, {}, {}, set())
    assert len(select_clarifying_questions(CONCEPT_NOTE_BLUEPRINT, questions, limit=2)) == 2


def _ask(existing, inputs):
    questions = refresh_clarifying_questions(CONCEPT_NOTE_BLUEPRINT, existing, inputs, set())
    asked = select_clarifying_questions(CONCEPT_NOTE_BLUEPRINT, questions, now=NOW)
    for question in asked:
        questions[question.field] = question
    return questions, asked


def test_optional_questions_are_not_asked_twice():
    questions, asked = _ask({}, {})
    assert len(asked) == 4

    inputs = {"title": "Clinic Records Modernisation"}
    questions, asked = _ask(questions, inputs)
    fields = [q.field for q in asked]
    # Required description re-asked, unasked optional fields follow, asked optional fields skipped.
    assert fields == ["description", "timeline", "budget", "scope"]
    assert questions["title"].status == "answered"
    assert questions["description"].times_asked == 2
    assert questions["objectives"].times_asked == 1


def test_tracked_questions_converge_to_one_per_field():
    first = refresh_clarifying_questions(CONCEPT_NOTE_BLUEPRINT, {}, {}, set())
    second = refresh_clarifying_questions(CONCEPT_NOTE_BLUEPRINT, first, {}, set())
    assert set(second) == set(CONCEPT_NOTE_BLUEPRINT.fields())
    assert all(second[f].id == first[f].id for f in second)


def test_assumed_status_after_defaults():
    inputs, assumed = apply_assumptions(CONCEPT_NOTE_BLUEPRINT, {"title": "Clinic Records Modernisation"})
    existing = refresh_clarifying_questions(CONCEPT_NOTE_BLUEPRINT, {}, {}, set())
    refreshed = refresh_clarifying_questions(CONCEPT_NOTE_BLUEPRINT, existing, inputs, assumed)
    assert refreshed["title"].status == "answered"
    assert refreshed["budget"].status == "assumed"

    reopened = refresh_clarifying_questions(CONCEPT_NOTE_BLUEPRINT, refreshed, {}, set())
    assert reopened["budget"].status == "pending"


def test_flatten_inputs_renders_lists_as_bullets():
    flat = flatten_inputs({"title": "X", "objectives": ["a", "b"]})
    assert flat == {"title": "X", "objectives": "- a\n- b"}


def test_clarifying_prompt_lists_rationale_and_hint():
    questions = refresh_clarifying_questions(CONCEPT_NOTE_BLUEPRINT, {}, {}, set())
    selected = select_clarifying_questions(CONCEPT_NOTE_BLUEPRINT, questions, limit=1)
    prompt = build_clarifying_prompt(CONCEPT_NOTE_BLUEPRINT, {}, selected)
    assert "1. What working title should we use" in prompt
    assert "   Why: A clear title" in prompt
    assert "   If unknown: I can suggest a working title" in prompt
    assert "I do not yet have specific project details confirmed." in prompt


def test_custom_blueprint_orders_by_priority(monkeypatch):
    monkeypatch.setattr(blueprint_module, "_BLUEPRINTS", {})
    blueprint = Blueprint(
        "tiny",
        [
            BlueprintEntry(field="b", label="B", question="B?", rationale="", priority=2),
            BlueprintEntry(field="a", label="A", question="A?", rationale="", priority=1, required=True),
        ],
    )
    assert blueprint.fields() == ["a", "b"]
    assert blueprint.required_fields() == ["a"]

    register_blueprint(blueprint)
    assert get_blueprint("tiny") is blueprint


def test_unknown_blueprint_name():
    assert get_blueprint("concept_note") is CONCEPT_NOTE_BLUEPRINT
    with pytest.raises(CatalogLoadError):
        get_blueprint("grant_intake")
