from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Literal, Optional
import uuid


class ChatRequest(BaseModel):
    """Body of POST /grad/{cityId}/chat.

    `message` is validated by the route rather than by pydantic so a missing
    message yields the documented 400 body instead of a 422.
    """

    model_config = ConfigDict(populate_by_name=True)

    message: Optional[Any] = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    message_id: Optional[str] = Field(default=None, alias="messageId")


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class RetrievedDocument(BaseModel):
    id: uuid.UUID
    title: Optional[str] = None
    source_url: Optional[str] = None
    content: Optional[str] = None
    similarity: float


class RetrievedDocSummary(BaseModel):
    title: Optional[str] = None
    source: Optional[str] = None
    score: float


class ConversationTrace(BaseModel):
    """Emitted once per request as the `meta` SSE event."""

    model: str
    latency_ms: int
    retrieved_docs_count: int
    retrieved_docs_top3: List[RetrievedDocSummary] = []
    used_fallback: bool

    @classmethod
    def summarize(cls, documents: List[RetrievedDocument]) -> List[RetrievedDocSummary]:
        top = sorted(documents, key=lambda doc: doc.similarity, reverse=True)[:3]
        return [
            RetrievedDocSummary(title=doc.title, source=doc.source_url, score=doc.similarity)
            for doc in top
        ]

    def to_log_payload(self) -> Dict[str, Any]:
        return self.model_dump()
