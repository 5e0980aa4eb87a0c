from sqlalchemy import Column, String, DateTime, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from app.db.base import Base

class City(Base):
    __tablename__ = "cities"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    slug = Column(String(255), unique=True, nullable=True, index=True)  # e.g. "ploce"
    code = Column(String(64), unique=True, nullable=False)  # e.g. "PLOCE"
    name = Column(String(255), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    conversations = relationship("Conversation", back_populates="city")
