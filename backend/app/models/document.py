from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Uuid
from sqlalchemy.sql import func
from pgvector.sqlalchemy import Vector
import uuid

from app.db.base import Base
from app.core.config import settings

class Document(Base):
    """Indexed document chunk. Written by the ingestion job, read-only here."""

    __tablename__ = "documents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    city_id = Column(Uuid, ForeignKey("cities.id"), nullable=True, index=True)  # NULL = global

    title = Column(String(512), nullable=True)
    source_url = Column(String(1024), nullable=True)
    content = Column(Text, nullable=True)
    content_hash = Column(String(128), nullable=True, index=True)
    embedding = Column(Vector(settings.VECTOR_DIMENSIONS), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
