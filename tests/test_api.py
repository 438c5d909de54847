import httpx
import pytest
from fastapi.testclient import TestClient

from api.main import app, get_engine
from core.artifact import ArtifactTrigger
from core.session import SessionStateMachine
from extractors import RuleBasedExtractor
from renderers import TemplateRenderer


class FlakyRenderer:
    name = "flaky"

    def __init__(self, failures):
        self.failures = failures
        self.inner = TemplateRenderer()

    def render(self, template_ref, context):
        if self.failures:
            self.failures -= 1
            raise RuntimeError("renderer offline")
        return self.inner.render(template_ref, context)


def _engine(renderer=None):
    return SessionStateMachine(
        extractor=RuleBasedExtractor(),
        trigger=ArtifactTrigger(renderer or TemplateRenderer()),
    )


@pytest.fixture
def engine():
    return _engine()


@pytest.fixture
def client(monkeypatch, engine):
    monkeypatch.delenv("API_SECRET_KEY", raising=False)
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_list_doc_types(client):
    response = client.get("/doc-types")
    assert response.status_code == 200
    ids = [item["id"] for item in response.json()]
    assert ids == ["project_concept_note", "prd", "tech_design", "adr", "feasibility_study"]
    assert set(response.json()[0]) == {"id", "name", "description", "stage_hint"}


def test_message_flow_and_session_lookup(client):
    response = client.post("/sessions/th-1/messages", json={"content": "We need a PRD for checkout", "message_id": "m1"})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "collecting"
    assert body["doc_type"] == "prd"
    assert body["questions"][0]["id"] == "prd_problem"
    assert [f["id"] for f in body["missing_required"]] == ["problem_statement", "target_users", "goals", "scope"]

    duplicate = client.post("/sessions/th-1/messages", json={"content": "anything", "message_id": "m1"})
    assert duplicate.json()["status"] == "duplicate"

    session = client.get("/sessions/th-1").json()
    assert session["doc_type"] == "prd"
    assert session["phase"] == "collecting"
    assert session["processed_messages"] == 1
    assert "prd_problem" in session["pending_questions"]


def test_message_index_deduplicates_redelivery(client):
    client.post("/sessions/th-9/messages", json={"content": "Let's write an ADR", "message_index": 0})
    first = client.post("/sessions/th-9/messages", json={"content": "yes", "message_index": 1})
    assert first.json()["status"] == "collecting"

    again = client.post("/sessions/th-9/messages", json={"content": "yes", "message_index": 1})
    assert again.json()["status"] == "duplicate"

    later = client.post("/sessions/th-9/messages", json={"content": "yes", "message_index": 2})
    assert later.json()["status"] == "collecting"
    assert client.get("/sessions/th-9").json()["processed_messages"] == 3


def test_uninitialized_message(client):
    response = client.post("/sessions/th-2/messages", json={"content": "hello"})
    assert response.status_code == 200
    assert response.json()["status"] == "uninitialized"
    assert client.get("/sessions/th-2").status_code == 404


def test_unknown_doc_type_is_404(client):
    response = client.post("/sessions/th-3/messages", json={"content": "hi", "doc_type": "grant_proposal"})
    assert response.status_code == 404
    detail = response.json()["detail"]
    assert "prd" in detail["available"]


def test_concept_note_with_assumptions_drafts(client):
    response = client.post(
        "/sessions/th-4/messages",
        json={"content": "Draft a concept note, you can assume the rest and proceed."},
    )
    body = response.json()
    assert body["status"] == "drafted"
    assert body["questions"] == []
    assert body["artifact"]["content"].startswith("# Strategic Concept Note Initiative")
    assert "(assumed default)" in body["artifact"]["content"]
    assert body["ready_to_generate"] is True


def test_reset_session(client):
    client.post("/sessions/th-5/messages", json={"content": "tech design please", "config": {"docType": "adr"}})
    assert client.get("/sessions/th-5").json()["doc_type"] == "adr"
    assert client.delete("/sessions/th-5").json() == {"reset": True, "thread_id": "th-5"}
    assert client.delete("/sessions/th-5").status_code == 404


def test_citations_and_draft(client):
    assert client.post("/sessions/th-6/citations", json={"citations": [{"id": "c1"}]}).status_code == 404
    assert client.post("/sessions/th-6/draft").status_code == 404

    client.post(
        "/sessions/th-6/messages",
        json={"content": "ADR\nContext: reads overload the primary\nDecision: add replicas\nConsequences: more ops work"},
    )
    session = client.get("/sessions/th-6").json()
    assert session["ready_to_generate"] is False
    assert client.post("/sessions/th-6/draft").status_code == 409

    response = client.post(
        "/sessions/th-6/citations",
        json={"citations": [{"id": "c1", "label": "Load test", "applies_to": ["context", "decision", "consequences"]}]},
    )
    assert response.status_code == 200
    assert response.json()["ready_to_generate"] is True

    artifact = client.post("/sessions/th-6/draft").json()
    assert artifact["doc_type"] == "adr"
    assert "add replicas" in artifact["content"]
    assert "1. Load test (supports: context, decision, consequences)" in artifact["content"]


def test_render_failure_is_502_and_retryable(monkeypatch):
    monkeypatch.delenv("API_SECRET_KEY", raising=False)
    engine = _engine(FlakyRenderer(failures=1))
    app.dependency_overrides[get_engine] = lambda: engine
    try:
        with TestClient(app) as client:
            response = client.post(
                "/sessions/th-7/messages",
                json={"content": "Please generate the document", "doc_type": "prd"},
            )
            assert response.status_code == 502
            assert client.get("/sessions/th-7").json()["ready_to_generate"] is True

            retry = client.post("/sessions/th-7/draft")
            assert retry.status_code == 200
            assert retry.json()["title"] == "Product Requirements Document Draft"
            assert client.get("/sessions/th-7").json()["active"] is False
    finally:
        app.dependency_overrides.clear()


def test_api_key_enforced_when_configured(client, monkeypatch):
    monkeypatch.setenv("API_SECRET_KEY", "s3cret")
    assert client.get("/doc-types").status_code == 401
    assert client.get("/doc-types", headers={"X-API-Key": "wrong"}).status_code == 401
    assert client.get("/doc-types", headers={"X-API-Key": "s3cret"}).status_code == 200
    assert client.get("/health").status_code == 200


@pytest.mark.anyio(backends=["asyncio"])
async def test_async_client_round_trip(engine, monkeypatch):
    monkeypatch.delenv("API_SECRET_KEY", raising=False)
    app.dependency_overrides[get_engine] = lambda: engine
    try:
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post(
                "/sessions/th-8/messages",
                json={"content": "Let's start a feasibility study"},
            )
            assert response.status_code == 200
            assert response.json()["questions"][0]["id"] == "fs_financial"
    finally:
        app.dependency_overrides.clear()
