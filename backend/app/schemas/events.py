from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Any, Dict, Optional

INTAKE_EVENT = "ticket_intake_submitted"


class TicketContact(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    location: Optional[str] = None
    note: Optional[str] = None
    consent_at: Optional[datetime] = Field(default=None, alias="consentAt")


class TicketFields(BaseModel):
    """Ticket state sent with `ticket_update` / `contact_submit` events.

    The ticket reference is assigned by the server and never taken from here.
    """

    model_config = ConfigDict(populate_by_name=True)

    status: Optional[str] = None
    department: Optional[str] = None
    urgent: bool = False
    contact: Optional[TicketContact] = None


class TicketIntake(BaseModel):
    """Contact form the widget sends when the user asks for a human."""

    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    description: Optional[str] = None
    contact_note: Optional[str] = None
    note: Optional[str] = None
    napomena: Optional[str] = None
    message: Optional[str] = None
    consent_given: bool = False
    consent_text: Optional[str] = None
    consent_timestamp: Optional[datetime] = None

    @property
    def note_text(self) -> Optional[str]:
        for value in (self.contact_note, self.note, self.napomena, self.message, self.description):
            if value is not None:
                return value
        return None

    def validation_error(self) -> Optional[str]:
        """Return the message to reject the form with, or None when it is complete."""
        if not self.name or not self.description or not self.consent_given:
            return "Missing required intake fields"
        if not self.phone and not self.email:
            return "Phone or email is required"
        if not (self.note_text or "").strip():
            return "Molimo unesite opis problema."
        return None


class EventRequest(BaseModel):
    """Analytics/event payload pushed by the widget."""

    model_config = ConfigDict(populate_by_name=True)

    type: Optional[str] = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    role: Optional[str] = None
    content: Optional[str] = None
    message_id: Optional[str] = Field(default=None, alias="messageId")
    metadata: Optional[Dict[str, Any]] = None
    needs_human: Optional[bool] = Field(default=None, alias="needsHuman")
    timestamp: Optional[datetime] = None
    ticket: Optional[TicketFields] = None
    intake: Optional[TicketIntake] = None

    @model_validator(mode="before")
    @classmethod
    def _flat_intake(cls, data: Any) -> Any:
        # Older widgets send the intake form fields at the top level.
        if isinstance(data, dict) and data.get("type") == INTAKE_EVENT and data.get("intake") is None:
            return {**data, "intake": data}
        return data


class EventResponse(BaseModel):
    ok: bool = True
    ticket_ref: Optional[str] = None
