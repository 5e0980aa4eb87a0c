from __future__ import annotations

import json

import pytest

pytest.importorskip("pydantic_settings")

from app.schemas.chat import ConversationTrace
from app.services.trace_sink import TraceSink

from conftest import make_doc


def _trace() -> ConversationTrace:
    docs = [make_doc(0.55, title="C"), make_doc(0.81, title="A"), make_doc(0.73, title="B"), make_doc(0.6, title="D")]
    return ConversationTrace(
        model="llama-3.1-8b-instant",
        latency_ms=420,
        retrieved_docs_count=len(docs),
        retrieved_docs_top3=ConversationTrace.summarize(docs),
        used_fallback=False,
    )


def test_summary_keeps_three_best_scores() -> None:
    assert [d.title for d in _trace().retrieved_docs_top3] == ["A", "B", "D"]


def test_trace_is_appended_as_ndjson(tmp_path) -> None:
    path = tmp_path / "logs" / "traces.log"
    sink = TraceSink(write_file=True, path=path)

    sink.emit(_trace(), city_code="PLOCE")
    sink.emit(_trace(), city_code="PLOCE")

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    record = json.loads(lines[0])
    assert record["city"] == "PLOCE"
    assert record["latency_ms"] == 420
    assert "ts" in record


def test_file_output_is_off_unless_enabled(tmp_path) -> None:
    path = tmp_path / "traces.log"

    TraceSink(write_file=False, path=path).emit(_trace())

    assert not path.exists()
