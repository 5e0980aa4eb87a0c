from __future__ import annotations

import uuid
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

from app.schemas.chat import RetrievedDocument


class FakeEmbeddings:
    def __init__(self, dimensions: int = 8, error: Optional[Exception] = None):
        self.dimensions = dimensions
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(data=[SimpleNamespace(embedding=[0.1] * self.dimensions)])


class FakeChatStream:
    def __init__(self, fragments: List[Optional[str]], error_after: Optional[int] = None):
        self.fragments = fragments
        self.error_after = error_after
        self.closed = False

    async def __aiter__(self):
        for index, fragment in enumerate(self.fragments):
            if self.error_after is not None and index == self.error_after:
                raise RuntimeError("upstream connection reset")
            yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=fragment))])

    async def close(self) -> None:
        self.closed = True


class FakeCompletions:
    def __init__(self, stream: Optional[FakeChatStream] = None, error: Optional[Exception] = None):
        self.stream = stream
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.stream


def fake_openai_client(
    *,
    embeddings: Optional[FakeEmbeddings] = None,
    completions: Optional[FakeCompletions] = None,
) -> SimpleNamespace:
    return SimpleNamespace(
        embeddings=embeddings or FakeEmbeddings(),
        chat=SimpleNamespace(completions=completions or FakeCompletions(FakeChatStream([]))),
    )


def make_doc(score: float, title: str = "Doc", content: str = "Sadržaj dokumenta.") -> RetrievedDocument:
    return RetrievedDocument(
        id=uuid.uuid4(),
        title=title,
        source_url=f"https://grad.example/{title.lower().replace(' ', '-')}",
        content=content,
        similarity=score,
    )


class FakeDocumentStore:
    def __init__(self, results: Optional[List[List[RetrievedDocument]]] = None, error: Optional[Exception] = None):
        # One result list per call; the last one repeats.
        self.results = results or [[]]
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def match_documents(self, query_embedding, *, match_threshold, match_count, city_id=None):
        self.calls.append(
            {"threshold": match_threshold, "count": match_count, "city_id": city_id, "dims": len(query_embedding)}
        )
        if self.error is not None:
            raise self.error
        index = min(len(self.calls) - 1, len(self.results) - 1)
        return list(self.results[index])


class FakeCityService:
    def __init__(self, cities: Optional[Dict[str, SimpleNamespace]] = None):
        self.cities = cities or {}
        self.lookups: List[str] = []

    async def resolve(self, identifier: str):
        self.lookups.append(identifier)
        return self.cities.get(identifier) or self.cities.get(identifier.upper())


class FakeRecorder:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls: List[tuple] = []
        self.conversation_id = uuid.uuid4()
        self.ticket_ref: Optional[str] = None

    async def find_or_create_conversation(self, city_id, external_id, **kwargs):
        self.calls.append(("find_or_create_conversation", city_id, external_id))
        if self.error is not None:
            raise self.error
        return self.conversation_id

    async def record_message(self, conversation_id, role, content, external_message_id=None, **kwargs):
        self.calls.append(("record_message", role, content, external_message_id, kwargs.get("metadata")))
        return True

    async def mark_fallback(self, city_id, external_id):
        self.calls.append(("mark_fallback", city_id, external_id))

    async def record_event(self, city, event):
        self.calls.append(("record_event", city.id, event))
        if self.error is not None:
            raise self.error
        return SimpleNamespace(conversation_id=self.conversation_id, ticket_ref=self.ticket_ref)

    def names(self) -> List[str]:
        return [call[0] for call in self.calls]


def make_city(code: str = "PLOCE", slug: Optional[str] = None) -> SimpleNamespace:
    return SimpleNamespace(id=uuid.uuid4(), code=code, slug=slug, name=code.title())
