from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence

from openai import AsyncOpenAI

from app.core.config import settings
from app.core.exceptions import GenerationError
from app.core.logging import get_logger
from app.prompts.system_prompts import EMPTY_RESPONSE_MESSAGE, build_system_prompt
from app.schemas.chat import ChatMessage

logger = get_logger(__name__)

CancelCheck = Callable[[], Awaitable[bool]]


class LLMService:
    """Streaming chat completions grounded in the assembled context."""

    def __init__(
        self,
        client: Any,
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ):
        self.client = client
        self.model = model or settings.LLM_MODEL
        self.temperature = settings.LLM_TEMPERATURE if temperature is None else temperature

    @classmethod
    def from_settings(cls) -> "LLMService":
        client = AsyncOpenAI(api_key=settings.LLM_API_KEY, base_url=settings.LLM_BASE_URL)
        return cls(client)

    def build_messages(self, messages: Sequence[ChatMessage], context: str = "") -> List[Dict[str, str]]:
        system_prompt = build_system_prompt(context)
        if settings.DEMO_MODE:
            logger.info(
                f"Context length: {len(context)} chars, system prompt length: {len(system_prompt)} chars"
            )
        return [{"role": "system", "content": system_prompt}] + [
            {"role": message.role, "content": message.content} for message in messages
        ]

    async def stream_chat(
        self,
        messages: Sequence[ChatMessage],
        context: str = "",
        *,
        is_cancelled: Optional[CancelCheck] = None,
    ) -> AsyncIterator[str]:
        """
        Yield non-empty text fragments as they arrive from the model.

        Single pass and not restartable. If the model finishes without any
        text, one fallback sentence is yielded instead. Transport and API
        errors surface as `GenerationError`. When `is_cancelled` reports True
        the upstream stream is closed and iteration ends.
        """
        try:
            stream = await self.client.chat.completions.create(
                model=self.model,
                messages=self.build_messages(messages, context),
                temperature=self.temperature,
                stream=True,
            )
        except Exception as e:
            logger.error(f"Error starting chat completion stream: {e}")
            raise GenerationError(str(e)) from e

        yielded = 0
        try:
            async for chunk in stream:
                if is_cancelled is not None and await is_cancelled():
                    logger.info("Client disconnected, stopping generation")
                    return
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yielded += 1
                    yield content
        except Exception as e:
            logger.error(f"Error while streaming chat completion: {e}")
            raise GenerationError(str(e)) from e
        finally:
            await _close_stream(stream)

        if yielded == 0:
            logger.warning("Model stream produced no text, using fallback sentence")
            yield EMPTY_RESPONSE_MESSAGE


async def _close_stream(stream: Any) -> None:
    close = getattr(stream, "close", None)
    if close is None:
        return
    try:
        await close()
    except Exception as e:
        logger.warning(f"Failed to close completion stream: {e}")
