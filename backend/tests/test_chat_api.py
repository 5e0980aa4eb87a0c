from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

pytest.importorskip("sqlalchemy")
pytest.importorskip("pydantic_settings")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient

from app.api.rate_limit import FixedWindowRateLimiter
from app.core.config import settings
from app.core.exceptions import RecorderError
from app.main import create_app
from app.prompts.system_prompts import FALLBACK_MESSAGE
from app.services.chat.orchestrator import ChatOrchestrator
from app.services.context_assembler import ContextAssembler
from app.services.embedding_service import EmbeddingService
from app.services.llm_service import LLMService
from app.services.retrieval_service import RetrievalService
from app.services.trace_sink import TraceSink

from conftest import (
    FakeChatStream,
    FakeCityService,
    FakeCompletions,
    FakeDocumentStore,
    FakeRecorder,
    fake_openai_client,
    make_city,
    make_doc,
)


def _client(documents=None, *, chat_limit: int = 20, events_limit: int = 60, recorder=None):
    city_service = FakeCityService({"PLOCE": make_city("PLOCE")})
    recorder = recorder or FakeRecorder()
    openai_client = fake_openai_client(completions=FakeCompletions(FakeChatStream(["Dobar", " dan"])))
    orchestrator = ChatOrchestrator(
        city_service=city_service,
        retrieval_service=RetrievalService(
            EmbeddingService(openai_client, dimensions=8, cache_max_items=0),
            FakeDocumentStore([documents or []]),
            top_k=5,
            similarity_threshold=0.5,
            demo_mode=False,
        ),
        context_assembler=ContextAssembler(max_doc_chars=2000, max_total_chars=8000),
        llm_service=LLMService(openai_client, model="llama-3.1-8b-instant"),
        recorder=recorder,
        trace_sink=TraceSink(write_file=False),
    )
    container = SimpleNamespace(
        session_factory=None,
        city_service=city_service,
        recorder=recorder,
        orchestrator=orchestrator,
        chat_rate_limiter=FixedWindowRateLimiter(chat_limit, 60, name="chat", clock=lambda: 1000.0),
        events_rate_limiter=FixedWindowRateLimiter(events_limit, 60, name="events", clock=lambda: 1000.0),
    )
    return TestClient(create_app(container=container)), recorder


def test_preflight_is_answered_without_pipeline() -> None:
    client, recorder = _client()
    with client:
        response = client.options("/grad/nepostojeci/chat")

    assert response.status_code == 204
    assert response.content == b""
    assert recorder.calls == []


def test_missing_message_is_400_json() -> None:
    client, _ = _client()
    with client:
        response = client.post("/grad/ploce/chat", json={"conversationId": "conv_1"})

    assert response.status_code == 400
    assert response.headers["content-type"].startswith("application/json")
    assert response.json() == {"detail": "Missing or invalid message field"}


def test_unknown_city_is_404_json() -> None:
    client, _ = _client()
    with client:
        response = client.post("/grad/atlantida/chat", json={"message": "Pozdrav"})

    assert response.status_code == 404
    assert response.json() == {"detail": "unknown_city"}


def test_generation_streams_sse_frames() -> None:
    client, _ = _client(documents=[make_doc(0.81), make_doc(0.73), make_doc(0.55)])
    with client:
        response = client.post("/grad/ploce/chat", json={"message": "Gdje se nalazi gradska uprava?"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    assert response.headers["x-accel-buffering"] == "no"

    body = response.text
    assert body.startswith("data: Dobar\n\ndata:  dan\n\ndata: [DONE]\n\nevent: meta\ndata: ")
    meta = json.loads(body.split("event: meta\ndata: ", 1)[1].strip())
    assert meta["retrieved_docs_count"] == 3
    assert len(meta["retrieved_docs_top3"]) == 3
    assert meta["used_fallback"] is False


def test_fallback_stream_and_background_recording() -> None:
    client, recorder = _client(documents=[])
    with client:
        response = client.post(
            "/grad/ploce/chat",
            json={"message": "asdkjasdlk", "conversationId": "conv_9", "messageId": "m9"},
        )

    assert response.status_code == 200
    assert FALLBACK_MESSAGE.split()[0] in response.text
    assert '"used_fallback": true' in response.text
    assert "mark_fallback" in recorder.names()


def test_rate_limit_returns_429_with_retry_after() -> None:
    client, _ = _client(chat_limit=2)
    with client:
        for _ in range(2):
            assert client.post("/grad/ploce/chat", json={"message": "Pozdrav"}).status_code == 200
        response = client.post("/grad/ploce/chat", json={"message": "Pozdrav"})
        preflight = client.options("/grad/ploce/chat")

    assert response.status_code == 429
    detail = response.json()["detail"]
    assert detail["error"] == "Too many requests"
    assert detail["retryAfter"] == 20
    assert int(response.headers["retry-after"]) == detail["retryAfter"]
    assert preflight.status_code == 204


def test_events_records_message() -> None:
    client, recorder = _client()
    with client:
        response = client.post(
            "/grad/ploce/events",
            json={"type": "message", "conversationId": "conv_1", "role": "user", "content": "Kvar rasvjete"},
        )

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    event = recorder.calls[0][2]
    assert event.type == "message"
    assert event.conversation_id == "conv_1"


def test_events_requires_type() -> None:
    client, recorder = _client()
    with client:
        response = client.post("/grad/ploce/events", json={"conversationId": "conv_1"})

    assert response.status_code == 400
    assert recorder.calls == []


def test_events_unknown_city() -> None:
    client, _ = _client()
    with client:
        response = client.post("/grad/atlantida/events", json={"type": "message"})

    assert response.status_code == 404


def test_events_recorder_failure_is_500() -> None:
    client, _ = _client(recorder=FakeRecorder(error=RecorderError("db down")))
    with client:
        response = client.post("/grad/ploce/events", json={"type": "fallback", "conversationId": "conv_1"})

    assert response.status_code == 500


def test_health() -> None:
    client, _ = _client()
    with client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


BROWSER_PREFLIGHT = {
    "Origin": "https://www.ploce.hr",
    "Access-Control-Request-Method": "POST",
    "Access-Control-Request-Headers": "content-type",
}


@pytest.mark.parametrize("allowed_origins", ["*", "https://admin.example"])
def test_browser_preflight_from_city_site_is_empty_204(monkeypatch, allowed_origins) -> None:
    monkeypatch.setattr(settings, "ALLOWED_ORIGINS", allowed_origins)
    client, recorder = _client()
    with client:
        chat = client.options("/grad/ploce/chat", headers=BROWSER_PREFLIGHT)
        events = client.options("/grad/ploce/events", headers=BROWSER_PREFLIGHT)

    for response in (chat, events):
        assert response.status_code == 204
        assert response.content == b""
        assert response.headers["access-control-allow-origin"] == "*"
        assert "POST" in response.headers["access-control-allow-methods"]
    assert recorder.calls == []


def test_widget_stream_is_readable_from_any_origin(monkeypatch) -> None:
    monkeypatch.setattr(settings, "ALLOWED_ORIGINS", "https://admin.example")
    client, _ = _client(documents=[make_doc(0.81)])
    with client:
        response = client.post(
            "/grad/ploce/chat",
            json={"message": "Gdje se nalazi gradska uprava?"},
            headers={"Origin": "https://www.ploce.hr"},
        )
        rejected = client.post("/grad/atlantida/chat", json={"message": "Pozdrav"}, headers={"Origin": "https://www.ploce.hr"})

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert "data: [DONE]" in response.text
    assert rejected.status_code == 404
    assert rejected.headers["access-control-allow-origin"] == "*"


def test_other_paths_keep_configured_origins(monkeypatch) -> None:
    monkeypatch.setattr(settings, "ALLOWED_ORIGINS", "https://admin.example")
    client, _ = _client()
    with client:
        allowed = client.get("/health", headers={"Origin": "https://admin.example"})
        foreign = client.get("/health", headers={"Origin": "https://www.ploce.hr"})

    assert allowed.headers["access-control-allow-origin"] == "https://admin.example"
    assert "access-control-allow-origin" not in foreign.headers


def test_events_returns_ticket_ref_when_a_ticket_was_touched() -> None:
    recorder = FakeRecorder()
    recorder.ticket_ref = "PLOCE-2026-000001"
    client, _ = _client(recorder=recorder)
    with client:
        response = client.post(
            "/grad/ploce/events",
            json={"type": "contact_submit", "conversationId": "conv_1", "ticket": {"status": "open"}},
        )

    assert response.status_code == 200
    assert response.json() == {"ok": True, "ticket_ref": "PLOCE-2026-000001"}


def test_flat_intake_form_is_accepted() -> None:
    client, recorder = _client()
    with client:
        response = client.post(
            "/grad/ploce/events",
            json={
                "type": "ticket_intake_submitted",
                "conversationId": "conv_1",
                "name": "Ana Anić",
                "email": "ana@example.hr",
                "description": "Ne radi rasvjeta u Ulici kralja Tomislava",
                "consent_given": True,
            },
        )

    assert response.status_code == 200
    intake = recorder.calls[0][2].intake
    assert intake.name == "Ana Anić"
    assert intake.note_text == "Ne radi rasvjeta u Ulici kralja Tomislava"


@pytest.mark.parametrize(
    "intake,detail",
    [
        ({"email": "ana@example.hr", "description": "Kvar", "consent_given": True}, "Missing required intake fields"),
        ({"name": "Ana", "description": "Kvar", "consent_given": False, "phone": "091"}, "Missing required intake fields"),
        ({"name": "Ana", "description": "Kvar", "consent_given": True}, "Phone or email is required"),
        (
            {"name": "Ana", "description": "Kvar", "contact_note": "  ", "consent_given": True, "phone": "091"},
            "Molimo unesite opis problema.",
        ),
    ],
)
def test_incomplete_intake_form_is_400(intake, detail) -> None:
    client, recorder = _client()
    with client:
        response = client.post(
            "/grad/ploce/events",
            json={"type": "ticket_intake_submitted", "conversationId": "conv_1", "intake": intake},
        )

    assert response.status_code == 400
    assert response.json() == {"detail": detail}
    assert recorder.calls == []
