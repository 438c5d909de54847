import threading

import pytest
import yaml

from core.artifact import ArtifactTrigger
from core.errors import (
    RenderError,
    SessionNotFoundError,
    SessionNotReadyError,
    UnknownDocTypeError,
)
from core.session import SessionStateMachine, create_session
from core.state import Citation, ExtractionResult, InboundMessage
from doctypes import DocumentCatalog
from extractors import RuleBasedExtractor

BRIEF = {
    "id": "brief",
    "name": "Project Brief",
    "description": "Short project brief.",
    "template": "brief.md",
    "aliases": ["project brief"],
    "required_fields": [
        {"id": "goal", "label": "Goal", "description": "What the project achieves."},
        {"id": "owner", "label": "Owner", "description": "Accountable person."},
    ],
    "optional_fields": [
        {"id": "notes", "label": "Notes", "description": "Anything else."},
    ],
    "diagnostic_questions": [
        {"id": "q_goal", "text": "What is the goal?", "targets": ["goal"]},
        {"id": "q_owner", "text": "Who owns it?", "targets": ["owner"]},
        {"id": "q_notes", "text": "Anything else we should note?", "targets": ["notes"]},
    ],
    "research_prompts": [{"query": "Similar projects", "applies_to": ["goal"]}],
}


class FlakyRenderer:
    name = "flaky"

    def __init__(self, failures=0):
        self.failures = failures
        self.calls = []

    def render(self, template_ref, context):
        self.calls.append(context)
        if self.failures:
            self.failures -= 1
            raise RuntimeError("renderer offline")
        return f"# {context['title']}\n" + "\n".join(f"{k}={v}" for k, v in context["fields"].items())


class FailingExtractor:
    name = "failing"

    def extract(self, definition, dossier, text):
        raise RuntimeError("model timeout")


@pytest.fixture
def catalog(tmp_path):
    path = tmp_path / "doc_types.yaml"
    path.write_text(yaml.safe_dump({"doc_types": [BRIEF]}))
    return DocumentCatalog(path)


@pytest.fixture
def renderer():
    return FlakyRenderer()


@pytest.fixture
def engine(catalog, renderer):
    return SessionStateMachine(
        catalog=catalog,
        extractor=RuleBasedExtractor(),
        trigger=ArtifactTrigger(renderer),
    )


def test_uninitialized_without_doc_type(engine):
    outcome = engine.process_message("t1", "hello there")
    assert outcome.status == "uninitialized"
    assert "brief" in outcome.message
    assert engine.get_session("t1") is None


def test_unknown_explicit_doc_type_raises(engine):
    with pytest.raises(UnknownDocTypeError) as exc:
        engine.process_message("t1", "hello", doc_type="grant_proposal")
    assert exc.value.available == ["brief"]
    assert engine.get_session("t1") is None


def test_create_session_materializes_plan(catalog):
    session = create_session(catalog.get("brief"))
    assert session.phase == "collecting"
    assert session.title == "Project Brief Draft"
    assert session.template == "brief.md"
    assert [q.id for q in session.pending_questions] == ["q_goal", "q_owner", "q_notes"]
    assert session.research_plan[0].id == "brief:research:0"
    assert session.definition is catalog.get("brief")


def test_first_turn_asks_highest_priority_question(engine):
    outcome = engine.process_message("t1", "Let's write a project brief")
    assert outcome.status == "collecting"
    assert [q.id for q in outcome.questions] == ["q_goal"]
    assert "Progress: 0/2 required fields captured. Confidence 20%" in outcome.message
    assert "Remaining critical items:\n- Goal\n- Owner" in outcome.message
    assert outcome.message.endswith("What is the goal?")
    assert engine.get_session("t1").last_asked_question_id == "q_goal"


def test_raw_reply_is_attached_to_asked_question(engine):
    engine.process_message("t1", "Let's write a project brief")
    outcome = engine.process_message("t1", "Ship the new onboarding flow")

    session = engine.get_session("t1")
    assert session.dossier["goal"] == "Ship the new onboarding flow"
    assert session.answers["goal"].confidence == 0.7
    assert session.answers["goal"].source == "user"
    assert [q.id for q in outcome.questions] == ["q_owner"]
    assert session.last_asked_question_id == "q_owner"


def test_scenario_a_half_filled_stays_collecting(engine):
    engine.process_message("t1", "Project brief\nGoal: Ship the new onboarding flow")
    session = engine.get_session("t1")
    assert session.dossier["goal"] == "Ship the new onboarding flow"
    assert session.confidence == pytest.approx(0.45)
    assert not session.ready_to_generate
    assert session.phase == "collecting"


def test_scenario_b_complete_without_citations_keeps_asking(engine):
    outcome = engine.process_message("t1", "Project brief\nGoal: Ship onboarding\nOwner: Ana")
    session = engine.get_session("t1")
    assert session.confidence == pytest.approx(0.7)
    assert not session.ready_to_generate
    assert outcome.status == "collecting"
    assert [q.id for q in outcome.questions] == ["q_notes"]
    assert "Remaining critical items" not in outcome.message

    outcome = engine.process_message("t1", "we're ready")
    assert outcome.status == "drafted"
    assert outcome.artifact.content.startswith("# Project Brief Draft")
    assert outcome.missing_required == []


def test_scenario_c_readiness_utterance_overrides(engine, renderer):
    outcome = engine.process_message("t1", "Please generate the document", doc_type="brief")
    assert outcome.status == "drafted"
    assert [f.id for f in outcome.missing_required] == ["goal", "owner"]
    assert [f.id for f in outcome.artifact.missing_required] == ["goal", "owner"]
    assert "label it as an assumption" in outcome.artifact.guidance
    assert renderer.calls[0]["missing_required"] == ["Goal", "Owner"]

    session = engine.get_session("t1")
    assert not session.active
    assert session.phase == "drafted"


def test_duplicate_message_id_is_ignored(engine):
    engine.process_message("t1", "Let's write a project brief")
    first = engine.process_message("t1", InboundMessage(content="Goal: Ship onboarding", id="m-2"))
    before = engine.get_session("t1")

    second = engine.process_message("t1", InboundMessage(content="Goal: Something else", id="m-2"))
    after = engine.get_session("t1")

    assert first.status == "collecting"
    assert second.status == "duplicate"
    assert after.answers == before.answers
    assert after.dossier == before.dossier
    assert after.pending_questions == before.pending_questions


def test_same_text_at_a_new_position_is_a_new_message(engine):
    engine.process_message("t1", "Let's write a project brief")
    engine.process_message("t1", "yes")
    outcome = engine.process_message("t1", "yes")

    assert outcome.status == "collecting"
    session = engine.get_session("t1")
    assert session.dossier["goal"] == "yes"
    assert session.dossier["owner"] == "yes"
    assert len(session.processed_message_ids) == 3


def test_redelivery_at_the_same_position_is_ignored(engine):
    engine.process_message("t1", InboundMessage(content="Let's write a project brief", index=0))
    engine.process_message("t1", InboundMessage(content="Goal: Ship onboarding", index=1))
    outcome = engine.process_message("t1", InboundMessage(content="Goal: Ship onboarding", index=1))

    assert outcome.status == "duplicate"
    assert len(engine.get_session("t1").answers["goal"].timestamps) == 1


def test_raw_reply_does_not_overwrite_captured_targets():
    engine = SessionStateMachine(extractor=RuleBasedExtractor(), trigger=ArtifactTrigger(FlakyRenderer()))
    engine.process_message("t1", "Let's write a PRD\nTarget users: Backend developers")
    assert engine.get_session("t1").last_asked_question_id == "prd_problem"

    engine.process_message("t1", "Onboarding is too slow for new hires.")

    session = engine.get_session("t1")
    assert session.dossier["target_users"] == "Backend developers"
    assert session.dossier["problem_statement"] == "Onboarding is too slow for new hires."
    assert len(session.answers["target_users"].timestamps) == 1


def test_config_doc_type_switches_active_session():
    engine = SessionStateMachine(extractor=RuleBasedExtractor(), trigger=ArtifactTrigger(FlakyRenderer()))
    engine.process_message("t1", "Let's write a PRD\nTarget users: Backend developers")

    engine.process_message("t1", "Goals: faster onboarding", config={"docType": "prd"})
    session = engine.get_session("t1")
    assert session.doc_type == "prd"
    assert session.dossier["target_users"] == "Backend developers"

    engine.process_message("t1", "Switching over", config={"docType": "adr"})
    session = engine.get_session("t1")
    assert session.doc_type == "adr"
    assert "target_users" not in session.dossier


def test_fallback_to_default_doc_type():
    engine = SessionStateMachine(
        extractor=RuleBasedExtractor(),
        trigger=ArtifactTrigger(FlakyRenderer()),
        fallback_to_default=True,
    )
    outcome = engine.process_message("t1", "hello there")

    assert outcome.status == "collecting"
    assert engine.get_session("t1").doc_type == "project_concept_note"


def test_answer_history_appends_timestamps(engine):
    engine.process_message("t1", "Project brief\nGoal: v1")
    engine.process_message("t1", "Goal: v2")
    record = engine.get_session("t1").answers["goal"]
    assert record.value == "v2"
    assert len(record.timestamps) == 2


def test_answers_survive_messages_without_values(engine):
    engine.process_message("t1", "Project brief\nGoal: Ship onboarding")
    engine.process_message("t1", "Owner: Ana")
    session = engine.get_session("t1")
    assert session.dossier["goal"] == "Ship onboarding"
    assert session.dossier["owner"] == "Ana"


def test_extraction_failure_is_not_fatal(catalog, renderer):
    engine = SessionStateMachine(catalog=catalog, extractor=FailingExtractor(), trigger=ArtifactTrigger(renderer))
    engine.process_message("t1", "Let's write a project brief")
    outcome = engine.process_message("t1", "Ship the new onboarding flow")
    assert outcome.status == "collecting"
    # The literal reply is still kept for the pending question.
    assert engine.get_session("t1").dossier["goal"] == "Ship the new onboarding flow"


def test_render_failure_keeps_session_ready_and_draft_retries(catalog):
    renderer = FlakyRenderer(failures=2)
    engine = SessionStateMachine(catalog=catalog, extractor=RuleBasedExtractor(), trigger=ArtifactTrigger(renderer))

    with pytest.raises(RenderError):
        engine.process_message("t1", "Project brief. We're ready")
    session = engine.get_session("t1")
    assert session.active
    assert session.ready_to_generate
    assert session.phase == "ready"

    # Readiness is monotonic: a later turn does not un-ready the session.
    with pytest.raises(RenderError):
        engine.process_message("t1", "Actually, one more thing")
    assert engine.get_session("t1").ready_to_generate

    artifact = engine.draft("t1")
    assert artifact.content.startswith("# Project Brief Draft")
    session = engine.get_session("t1")
    assert not session.active
    assert session.phase == "drafted"


def test_draft_requires_ready_session(engine):
    with pytest.raises(SessionNotFoundError):
        engine.draft("t1")
    engine.process_message("t1", "Let's write a project brief")
    with pytest.raises(SessionNotReadyError):
        engine.draft("t1")


def test_citations_raise_confidence_and_readiness(engine):
    engine.process_message("t1", "Project brief\nGoal: Ship onboarding\nOwner: Ana")
    session = engine.attach_citations(
        "t1",
        [Citation(id="c1", label="Survey", url="https://example.com/s", applies_to=["goal", "owner"])],
    )
    assert session.confidence == pytest.approx(1.0)
    assert session.ready_to_generate
    assert session.active

    # Replacing a citation by id does not duplicate it.
    session = engine.attach_citations("t1", [Citation(id="c1", label="Survey v2", applies_to=["goal"])])
    assert [c.label for c in session.citations] == ["Survey v2"]
    assert session.ready_to_generate

    artifact = engine.draft("t1")
    assert artifact.content.startswith("# Project Brief Draft")


def test_citations_need_active_session(engine):
    with pytest.raises(SessionNotFoundError):
        engine.attach_citations("nobody", [Citation(id="c1")])


def test_reset_discards_session(engine):
    engine.process_message("t1", "Let's write a project brief")
    assert engine.reset_session("t1")
    assert engine.get_session("t1") is None
    assert not engine.reset_session("t1")


def test_drafted_session_is_replaced_on_new_request(engine):
    engine.process_message("t1", "Please generate the document", doc_type="brief")
    outcome = engine.process_message("t1", "Start another project brief")
    assert outcome.status == "collecting"
    session = engine.get_session("t1")
    assert session.active
    assert session.answers == {}


def test_json_metadata_is_merged_into_dossier(engine):
    engine.process_message("t1", "Let's write a project brief")
    engine.process_message("t1", '{"project": {"name": "Onboarding"}, "user": "Ana"}')
    session = engine.get_session("t1")
    assert session.dossier["user_details"] == "Ana"
    assert '"name": "Onboarding"' in session.dossier["project_details"]
    # Metadata is not taken as the answer to the pending question.
    assert "goal" not in session.dossier


def test_scenario_d_blueprint_assumptions_draft_without_questions():
    renderer = FlakyRenderer()
    engine = SessionStateMachine(extractor=RuleBasedExtractor(), trigger=ArtifactTrigger(renderer))

    outcome = engine.process_message("t1", "I need a concept note. You can assume the rest and proceed.")

    assert outcome.status == "drafted"
    assert outcome.questions == []
    session = engine.get_session("t1")
    assert session.doc_type == "project_concept_note"
    assert set(session.assumed_field_ids) == {
        "title", "description", "objectives", "target_audience", "timeline", "budget",
        "scope", "key_activities", "key_challenges", "success_metrics", "key_partners",
    }
    assert session.confidence == 100
    assert session.answers["budget"].source == "assumption"
    assert session.title == "Strategic Concept Note Initiative"
    assert not any(q.status == "pending" for q in session.clarifying_questions.values())
    assert outcome.artifact.content.startswith("# Strategic Concept Note Initiative")


def test_blueprint_session_asks_up_to_four_questions():
    engine = SessionStateMachine(extractor=RuleBasedExtractor(), trigger=ArtifactTrigger(FlakyRenderer()))
    outcome = engine.process_message("t1", "Help me with a concept note")

    assert outcome.status == "collecting"
    assert [q.targets[0] for q in outcome.questions] == ["title", "description", "objectives", "target_audience"]
    assert "Why:" in outcome.message
    assert "Confidence 0%" in outcome.message
    session = engine.get_session("t1")
    assert session.clarifying_questions["title"].times_asked == 1
    assert session.last_asked_question_id == session.clarifying_questions["title"].id


def test_blueprint_reply_fills_asked_field():
    engine = SessionStateMachine(extractor=RuleBasedExtractor(), trigger=ArtifactTrigger(FlakyRenderer()))
    engine.process_message("t1", "Help me with a concept note")
    outcome = engine.process_message("t1", "Clinic Records Modernisation")

    session = engine.get_session("t1")
    assert session.inputs["title"] == "Clinic Records Modernisation"
    assert session.title == "Clinic Records Modernisation"
    assert session.confidence == 50
    # Required description re-asked; optional questions already asked are not.
    assert [q.targets[0] for q in outcome.questions] == ["description", "timeline", "budget", "scope"]


def test_blueprint_reply_fills_asked_field_alongside_extraction():
    engine = SessionStateMachine(extractor=RuleBasedExtractor(), trigger=ArtifactTrigger(FlakyRenderer()))
    engine.process_message("t1", "Help me with a concept note")
    engine.process_message("t1", "Smart city parking")

    session = engine.get_session("t1")
    assert session.inputs["scope"] == "city"
    assert session.inputs["title"] == "Smart city parking"
    assert session.title == "Smart city parking"


def test_threads_are_independent(engine):
    errors = []

    def run(thread_id):
        try:
            engine.process_message(thread_id, "Project brief\nGoal: Ship onboarding")
            engine.process_message(thread_id, "Owner: Ana")
        except Exception as e:  # pragma: no cover
            errors.append(e)

    threads = [threading.Thread(target=run, args=(f"t{i}",)) for i in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    for i in range(6):
        session = engine.get_session(f"t{i}")
        assert session.dossier == {"goal": "Ship onboarding", "owner": "Ana"}


def test_extraction_result_contract_is_empty_by_default():
    assert ExtractionResult().answers == []
