from dataclasses import dataclass

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.rate_limit import FixedWindowRateLimiter
from app.core.config import settings
from app.db.session import AsyncSessionLocal
from app.services.chat.orchestrator import ChatOrchestrator
from app.services.city_service import CityService
from app.services.context_assembler import ContextAssembler
from app.services.conversation_recorder import ConversationRecorder
from app.services.document_store import PgVectorDocumentStore
from app.services.embedding_service import EmbeddingService
from app.services.llm_service import LLMService
from app.services.retrieval_service import RetrievalService
from app.services.trace_sink import TraceSink


@dataclass
class ServiceContainer:
    """Pipeline components, built once per process in the app lifespan."""

    session_factory: async_sessionmaker[AsyncSession]
    city_service: CityService
    recorder: ConversationRecorder
    orchestrator: ChatOrchestrator
    chat_rate_limiter: FixedWindowRateLimiter
    events_rate_limiter: FixedWindowRateLimiter

    @classmethod
    def from_settings(
        cls, session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal
    ) -> "ServiceContainer":
        city_service = CityService(session_factory)
        recorder = ConversationRecorder(session_factory)
        retrieval_service = RetrievalService(
            EmbeddingService.from_settings(),
            PgVectorDocumentStore(session_factory, dimensions=settings.VECTOR_DIMENSIONS),
        )
        orchestrator = ChatOrchestrator(
            city_service=city_service,
            retrieval_service=retrieval_service,
            context_assembler=ContextAssembler(),
            llm_service=LLMService.from_settings(),
            recorder=recorder,
            trace_sink=TraceSink(),
        )
        return cls(
            session_factory=session_factory,
            city_service=city_service,
            recorder=recorder,
            orchestrator=orchestrator,
            chat_rate_limiter=FixedWindowRateLimiter(
                settings.RATE_LIMIT_CHAT_MAX, settings.RATE_LIMIT_CHAT_WINDOW_SECONDS, name="chat"
            ),
            events_rate_limiter=FixedWindowRateLimiter(
                settings.RATE_LIMIT_EVENTS_MAX, settings.RATE_LIMIT_EVENTS_WINDOW_SECONDS, name="events"
            ),
        )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_chat_orchestrator(container: ServiceContainer = Depends(get_container)) -> ChatOrchestrator:
    return container.orchestrator


def get_city_service(container: ServiceContainer = Depends(get_container)) -> CityService:
    return container.city_service


def get_recorder(container: ServiceContainer = Depends(get_container)) -> ConversationRecorder:
    return container.recorder


def enforce_chat_rate_limit(request: Request, container: ServiceContainer = Depends(get_container)) -> None:
    container.chat_rate_limiter.check(request)


def enforce_events_rate_limit(request: Request, container: ServiceContainer = Depends(get_container)) -> None:
    container.events_rate_limiter.check(request)
