from typing import List, Optional, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.exceptions import DocumentStoreError
from app.core.logging import get_logger
from app.models.document import Document
from app.schemas.chat import RetrievedDocument

logger = get_logger(__name__)


class DocumentStore(Protocol):
    async def match_documents(
        self,
        query_embedding: List[float],
        *,
        match_threshold: float,
        match_count: int,
        city_id: Optional[UUID] = None,
    ) -> List[RetrievedDocument]:
        """Return up to `match_count` documents with similarity >= threshold, best first."""


class PgVectorDocumentStore:
    """Cosine-similarity search over the `documents` table (pgvector)."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        dimensions: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self.dimensions = int(dimensions or settings.VECTOR_DIMENSIONS)

    async def match_documents(
        self,
        query_embedding: List[float],
        *,
        match_threshold: float,
        match_count: int,
        city_id: Optional[UUID] = None,
    ) -> List[RetrievedDocument]:
        if len(query_embedding) != self.dimensions:
            raise DocumentStoreError(
                f"Query embedding has {len(query_embedding)} dimensions, "
                f"index expects {self.dimensions}"
            )

        distance = Document.embedding.cosine_distance(query_embedding)
        stmt = (
            select(Document, distance.label("distance"))
            .where(Document.embedding.is_not(None))
            .where(1 - distance >= match_threshold)
            .order_by(distance)
            .limit(match_count)
        )
        if city_id is not None:
            stmt = stmt.where(Document.city_id == city_id)

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.all()
        except Exception as e:
            raise DocumentStoreError(f"Database retrieval failed: {e}") from e

        documents = []
        for document, row_distance in rows:
            documents.append(
                RetrievedDocument(
                    id=document.id,
                    title=document.title,
                    source_url=document.source_url,
                    content=document.content,
                    similarity=1 - float(row_distance),
                )
            )
        return documents
