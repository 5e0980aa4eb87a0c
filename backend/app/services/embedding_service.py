import hashlib
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from openai import AsyncOpenAI

from app.core.config import settings
from app.core.exceptions import EmbeddingError
from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class _CachedVector:
    vector: Tuple[float, ...]
    expires_at: Optional[float]


class QueryEmbeddingCache:
    """Bounded LRU of query vectors. Entries older than `ttl_seconds` are dropped on read.

    `max_items <= 0` turns the cache off; `ttl_seconds <= 0` keeps entries until evicted.
    """

    def __init__(self, *, max_items: int, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_items = int(max_items)
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._entries: "OrderedDict[str, _CachedVector]" = OrderedDict()

    @property
    def enabled(self) -> bool:
        return self.max_items > 0

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, key: str) -> Optional[List[float]]:
        if not self.enabled:
            return None
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return list(entry.vector)

    def store(self, key: str, vector: List[float]) -> None:
        if not self.enabled:
            return
        expires_at = self._clock() + self.ttl_seconds if self.ttl_seconds > 0 else None
        self._entries[key] = _CachedVector(tuple(vector), expires_at)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_items:
            self._entries.popitem(last=False)


class EmbeddingService:
    """Turns text into a fixed-dimension vector via the embedding API.

    Oversized input is truncated, never rejected. Any failure, including a
    vector of the wrong dimension, raises `EmbeddingError`; there is no
    zero-vector fallback.
    """

    def __init__(
        self,
        client: Any,
        *,
        model: Optional[str] = None,
        dimensions: Optional[int] = None,
        max_chars: Optional[int] = None,
        cache_max_items: Optional[int] = None,
        cache_ttl_seconds: Optional[float] = None,
    ):
        self.client = client
        self.model = model or settings.EMBEDDING_MODEL
        self.dimensions = int(dimensions or settings.VECTOR_DIMENSIONS)
        self.max_chars = int(max_chars or settings.MAX_EMBED_CHARS)
        self.cache = QueryEmbeddingCache(
            max_items=settings.EMBEDDING_CACHE_MAX_ITEMS if cache_max_items is None else cache_max_items,
            ttl_seconds=settings.EMBEDDING_CACHE_TTL_SECONDS if cache_ttl_seconds is None else cache_ttl_seconds,
        )

    @classmethod
    def from_settings(cls) -> "EmbeddingService":
        client = AsyncOpenAI(
            api_key=settings.EMBEDDING_API_KEY,
            base_url=settings.EMBEDDING_BASE_URL,
        )
        return cls(client)

    def _cache_key(self, text: str) -> str:
        payload = f"{self.model}:{self.dimensions}:{text}"
        digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
        return f"{self.model}:{digest}"

    def truncate(self, text: str) -> str:
        if len(text) > self.max_chars:
            return text[: self.max_chars]
        return text

    async def embed(self, text: str) -> List[float]:
        """Embed one text, truncated to `max_chars`."""
        truncated = self.truncate(text or "")
        cache_key = self._cache_key(truncated)
        cached = self.cache.lookup(cache_key)
        if cached is not None:
            return cached

        try:
            response = await self.client.embeddings.create(
                model=self.model,
                input=truncated,
                dimensions=self.dimensions,
            )
            embedding = [float(value) for value in response.data[0].embedding]
        except Exception as e:
            logger.exception(f"Error generating embedding: {e}")
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        if len(embedding) != self.dimensions:
            message = f"Expected embedding dimension {self.dimensions}, got {len(embedding)}"
            logger.error(message)
            raise EmbeddingError(message)

        self.cache.store(cache_key, embedding)
        return embedding
