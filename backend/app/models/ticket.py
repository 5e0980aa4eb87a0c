from sqlalchemy import Boolean, Column, String, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.db.base import Base

class Ticket(Base):
    """One ticket per conversation, upserted from the widget's contact/handoff flow."""

    __tablename__ = "tickets"

    conversation_id = Column(Uuid, ForeignKey("conversations.id"), primary_key=True)
    city_id = Column(Uuid, ForeignKey("cities.id"), nullable=False, index=True)

    status = Column(String(50), nullable=True)  # open, in_progress, resolved, closed
    department = Column(String(255), nullable=True)
    urgent = Column(Boolean, default=False)

    contact_name = Column(String(255), nullable=True)
    contact_phone = Column(String(64), nullable=True)
    contact_email = Column(String(255), nullable=True)
    contact_location = Column(String(512), nullable=True)
    contact_note = Column(Text, nullable=True)
    consent_at = Column(DateTime(timezone=True), nullable=True)
    ticket_ref = Column(String(64), nullable=True, unique=True)  # e.g. "PLOCE-2026-000042"

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    conversation = relationship("Conversation", back_populates="ticket")
