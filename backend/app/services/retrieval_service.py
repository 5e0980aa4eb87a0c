from typing import List, Optional
from uuid import UUID

from app.core.config import settings
from app.core.logging import get_logger
from app.schemas.chat import RetrievedDocument
from app.services.document_store import DocumentStore
from app.services.embedding_service import EmbeddingService

logger = get_logger(__name__)


class RetrievalService:
    """Embeds the query and pulls the closest documents for a city.

    Fail-open: any embedding or store failure is logged and yields an empty
    list, which the chat pipeline treats exactly like "nothing relevant".
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        document_store: DocumentStore,
        *,
        top_k: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
        second_pass_threshold: Optional[float] = None,
        demo_mode: Optional[bool] = None,
    ):
        self.embedding_service = embedding_service
        self.document_store = document_store
        self.top_k = top_k or settings.RAG_TOP_K
        self.similarity_threshold = (
            settings.RAG_SIMILARITY_THRESHOLD if similarity_threshold is None else similarity_threshold
        )
        self.second_pass_threshold = (
            settings.RAG_SECOND_PASS_THRESHOLD if second_pass_threshold is None else second_pass_threshold
        )
        self.demo_mode = settings.DEMO_MODE if demo_mode is None else demo_mode

    async def retrieve(self, query: str, city_id: Optional[UUID] = None) -> List[RetrievedDocument]:
        try:
            return await self._retrieve(query, city_id)
        except Exception as e:
            logger.error(
                f"Retrieval failed, continuing without documents "
                f"(city_id={city_id}, query={query[:80]!r}): {e}"
            )
            return []

    async def _retrieve(self, query: str, city_id: Optional[UUID]) -> List[RetrievedDocument]:
        query_embedding = await self.embedding_service.embed(query)

        threshold = self.similarity_threshold
        documents = await self.document_store.match_documents(
            query_embedding,
            match_threshold=threshold,
            match_count=self.top_k,
            city_id=city_id,
        )

        if not documents and self.second_pass_threshold is not None:
            threshold = self.second_pass_threshold
            documents = await self.document_store.match_documents(
                query_embedding,
                match_threshold=threshold,
                match_count=self.top_k,
                city_id=city_id,
            )

        # sorted() is stable, so equal scores keep store order.
        filtered = sorted(
            (doc for doc in documents if doc.similarity >= threshold),
            key=lambda doc: doc.similarity,
            reverse=True,
        )[: self.top_k]

        if self.demo_mode:
            logger.info(
                f"Retrieval for city_id={city_id}: threshold={threshold} "
                f"top_k={self.top_k} retrieved={len(filtered)}"
            )
            for idx, doc in enumerate(filtered[:3], 1):
                logger.info(
                    f"  {idx}. {doc.title or 'Untitled'!r} "
                    f"(source: {doc.source_url or 'N/A'}, score: {doc.similarity:.3f})"
                )

        return filtered
