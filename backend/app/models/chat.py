from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
import uuid

from app.db.base import Base

class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"

class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    city_id = Column(Uuid, ForeignKey("cities.id"), nullable=False, index=True)
    external_id = Column(String(255), nullable=True, index=True)  # widget-side conversation id

    status = Column(String(50), default="open")  # open, closed
    category = Column(String(64), nullable=True)
    category_rules_version = Column(String(32), nullable=True)  # RULES_VERSION that set `category`
    needs_human = Column(Boolean, default=False)
    fallback_count = Column(Integer, default=0)
    title = Column(Text, nullable=True)
    summary = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)  # ticket intake form sent

    # Relationships
    city = relationship("City", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan")
    ticket = relationship("Ticket", back_populates="conversation", uselist=False)

class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index(
            "messages_conversation_external_id_uq",
            "conversation_id",
            "external_id",
            unique=True,
            postgresql_where=text("external_id IS NOT NULL"),
            sqlite_where=text("external_id IS NOT NULL"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False, index=True)
    external_id = Column(String(255), nullable=True)  # e.g. "assistant_1712345"

    role = Column(String(20), nullable=False)  # user, assistant, system
    content_redacted = Column(Text, nullable=True)
    message_metadata = Column("metadata", JSON().with_variant(JSONB(), "postgresql"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")
