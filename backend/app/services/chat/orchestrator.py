"""Per-request control loop for the city chat endpoint.

A request goes through two phases. `prepare` runs before any bytes are sent
and may raise HTTP errors (bad message, unknown city). `stream` runs after
the response is committed and reports every failure in-band as an SSE frame.
Conversation bookkeeping happens in `finalize`, after the stream has closed.
"""

import re
import time
import uuid
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional
from uuid import UUID

from app.core.exceptions import (
    CityNotFoundException,
    GenerationError,
    InvalidChatRequestException,
    RecorderError,
)
from app.core.logging import get_logger
from app.models.chat import MessageRole
from app.prompts.system_prompts import FALLBACK_MESSAGE, GENERIC_ERROR_MESSAGE
from app.schemas.chat import ChatMessage, ChatRequest, ConversationTrace, RetrievedDocument
from app.services.chat.sse import DONE_FRAME, data_frame, error_frame, meta_frame
from app.services.city_service import CityService
from app.services.context_assembler import ContextAssembler
from app.services.conversation_recorder import ConversationRecorder
from app.services.llm_service import CancelCheck, LLMService
from app.services.retrieval_service import RetrievalService
from app.services.trace_sink import TraceSink

logger = get_logger(__name__)

TITLE_MAX_CHARS = 60


def split_words(text: str) -> List[str]:
    """Split into word-sized increments that keep their trailing whitespace."""
    return re.findall(r"\S+\s*", text)


@dataclass
class ChatTurn:
    """State of one chat request, owned by that request only."""

    city_id: UUID
    city_code: str
    message: str
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    started_at: float = field(default_factory=time.perf_counter)
    answer: str = ""
    used_fallback: bool = False
    completed: bool = False
    trace: Optional[ConversationTrace] = None


class ChatOrchestrator:
    def __init__(
        self,
        *,
        city_service: CityService,
        retrieval_service: RetrievalService,
        context_assembler: ContextAssembler,
        llm_service: LLMService,
        recorder: Optional[ConversationRecorder],
        trace_sink: TraceSink,
    ):
        self.city_service = city_service
        self.retrieval_service = retrieval_service
        self.context_assembler = context_assembler
        self.llm_service = llm_service
        self.recorder = recorder
        self.trace_sink = trace_sink

    async def prepare(self, city_identifier: str, request: ChatRequest) -> ChatTurn:
        """Validate the request and resolve the city. Raises 400 or 404."""
        message = request.message
        if not isinstance(message, str) or not message.strip():
            raise InvalidChatRequestException()
        if not city_identifier or not city_identifier.strip():
            raise InvalidChatRequestException("Missing city identifier")

        city = await self.city_service.resolve(city_identifier.strip())
        if city is None:
            raise CityNotFoundException()

        return ChatTurn(
            city_id=city.id,
            city_code=city.code,
            message=message,
            conversation_id=request.conversation_id,
            message_id=request.message_id,
        )

    async def stream(
        self, turn: ChatTurn, *, is_disconnected: Optional[CancelCheck] = None
    ) -> AsyncIterator[str]:
        """
        Yield SSE frames for one turn.

        Success and fallback end with `[DONE]` followed by one `meta` frame.
        A generation failure ends with a single `[ERROR]` frame and no meta.
        Nothing more is yielded once the client has disconnected.
        """
        if await _disconnected(is_disconnected):
            logger.info(f"Client gone before retrieval (city={turn.city_code})")
            return

        documents = await self.retrieval_service.retrieve(turn.message, city_id=turn.city_id)

        if await _disconnected(is_disconnected):
            logger.info(f"Client gone after retrieval (city={turn.city_code})")
            return

        if not documents:
            turn.used_fallback = True
            for piece in split_words(FALLBACK_MESSAGE):
                turn.answer += piece
                yield data_frame(piece)
            yield DONE_FRAME
            yield meta_frame(self._finish(turn, documents).model_dump())
            return

        context = self.context_assembler.build_context(documents)
        prompt = [ChatMessage(role=MessageRole.USER.value, content=turn.message)]
        tokens = self.llm_service.stream_chat(prompt, context, is_cancelled=is_disconnected)
        try:
            async for token in tokens:
                turn.answer += token
                yield data_frame(token)
        except GenerationError as e:
            logger.error(f"Generation failed mid-stream (city={turn.city_code}, conversation={turn.conversation_id}): {e}")
            yield error_frame(str(e))
            return
        except Exception as e:
            logger.exception(f"Unexpected error while streaming (city={turn.city_code}): {e}")
            yield error_frame(GENERIC_ERROR_MESSAGE)
            return
        finally:
            await tokens.aclose()

        if await _disconnected(is_disconnected):
            logger.info(f"Client gone during generation (city={turn.city_code})")
            return

        yield DONE_FRAME
        yield meta_frame(self._finish(turn, documents).model_dump())

    def _finish(self, turn: ChatTurn, documents: List[RetrievedDocument]) -> ConversationTrace:
        turn.completed = True
        turn.trace = ConversationTrace(
            model=self.llm_service.model,
            latency_ms=int((time.perf_counter() - turn.started_at) * 1000),
            retrieved_docs_count=len(documents),
            retrieved_docs_top3=ConversationTrace.summarize(documents),
            used_fallback=turn.used_fallback,
        )
        self.trace_sink.emit(turn.trace, city_code=turn.city_code)
        return turn.trace

    async def finalize(self, turn: ChatTurn) -> None:
        """Record the exchange after the stream closed. Failures are only logged."""
        if self.recorder is None:
            return

        external_id = turn.conversation_id or f"conv_{uuid.uuid4()}"
        message_key = turn.message_id or str(uuid.uuid4())
        try:
            conversation_id = await self.recorder.find_or_create_conversation(
                turn.city_id, external_id, title=turn.message.strip()[:TITLE_MAX_CHARS]
            )
            await self.recorder.record_message(
                conversation_id, MessageRole.USER.value, turn.message, f"user:{message_key}"
            )
            if turn.completed and turn.trace is not None:
                await self.recorder.record_message(
                    conversation_id,
                    MessageRole.ASSISTANT.value,
                    turn.answer,
                    f"assistant:{message_key}",
                    metadata={
                        "latency_ms": turn.trace.latency_ms,
                        "retrieved_sources_count": turn.trace.retrieved_docs_count,
                        "used_fallback": turn.used_fallback,
                    },
                )
            if turn.used_fallback and turn.completed:
                await self.recorder.mark_fallback(turn.city_id, external_id)
        except RecorderError as e:
            logger.error(f"Failed to record chat turn (city={turn.city_code}, conversation={external_id}): {e}")


async def _disconnected(is_disconnected: Optional[CancelCheck]) -> bool:
    return is_disconnected is not None and await is_disconnected()
