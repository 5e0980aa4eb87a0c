import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import RecorderError
from app.core.logging import get_logger
from app.models.chat import Conversation, Message, MessageRole
from app.models.ticket import Ticket
from app.schemas.events import INTAKE_EVENT, EventRequest, TicketFields, TicketIntake
from app.utils.classification import RULES_VERSION, classify_message, detect_needs_human

logger = get_logger(__name__)

DEFAULT_TICKET_PREFIX = "PL"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RecordedEvent:
    conversation_id: UUID
    ticket_ref: Optional[str] = None


class ConversationRecorder:
    """Writes conversation, message and ticket rows for the admin inbox.

    Every public method opens its own session and raises `RecorderError` on
    failure. Callers on the chat stream treat these writes as best-effort.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _get_conversation(
        self, db: AsyncSession, city_id: UUID, external_id: str
    ) -> Optional[Conversation]:
        stmt = (
            select(Conversation)
            .where(Conversation.city_id == city_id)
            .where(Conversation.external_id == external_id)
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_or_create_conversation(
        self,
        city_id: UUID,
        external_conversation_id: str,
        *,
        category: Optional[str] = None,
        needs_human: bool = False,
        fallback_count: int = 0,
        title: Optional[str] = None,
    ) -> UUID:
        """Return the conversation id for (city, external id), creating the row if needed."""
        try:
            async with self._session_factory() as db:
                conversation = await self._get_conversation(db, city_id, external_conversation_id)
                if conversation is not None:
                    return conversation.id

                conversation = Conversation(
                    id=uuid.uuid4(),
                    city_id=city_id,
                    external_id=external_conversation_id,
                    status="open",
                    category=category,
                    needs_human=needs_human,
                    fallback_count=fallback_count,
                    title=title,
                )
                db.add(conversation)
                await db.commit()
                logger.info(f"Created conversation {conversation.id} ({external_conversation_id})")
                return conversation.id
        except Exception as e:
            raise RecorderError(f"Failed to find or create conversation: {e}") from e

    async def record_message(
        self,
        conversation_id: UUID,
        role: str,
        content: str,
        external_message_id: Optional[str] = None,
        *,
        metadata: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ) -> bool:
        """
        Insert a message row. Returns False when a row with the same
        `external_message_id` already exists for the conversation.
        """
        try:
            async with self._session_factory() as db:
                if external_message_id:
                    stmt = (
                        select(Message.id)
                        .where(Message.conversation_id == conversation_id)
                        .where(Message.external_id == external_message_id)
                        .limit(1)
                    )
                    existing = (await db.execute(stmt)).scalar_one_or_none()
                    if existing is not None:
                        logger.info(f"Message {external_message_id} already recorded, skipping")
                        return False

                message = Message(
                    id=uuid.uuid4(),
                    conversation_id=conversation_id,
                    external_id=external_message_id,
                    role=role,
                    content_redacted=content,
                    message_metadata=metadata if role == MessageRole.ASSISTANT.value else None,
                    created_at=created_at or _utcnow(),
                )
                db.add(message)

                conversation = await db.get(Conversation, conversation_id)
                if conversation is not None:
                    conversation.last_message_at = message.created_at

                try:
                    await db.commit()
                except IntegrityError:
                    # Concurrent insert of the same external id won the race.
                    await db.rollback()
                    logger.info(f"Message {external_message_id} inserted concurrently, skipping")
                    return False
                return True
        except Exception as e:
            raise RecorderError(f"Failed to record message: {e}") from e

    async def mark_fallback(self, city_id: UUID, external_conversation_id: str) -> None:
        """Increment the fallback counter and flag the conversation for a human."""
        try:
            async with self._session_factory() as db:
                conversation = await self._get_conversation(db, city_id, external_conversation_id)
                if conversation is None:
                    db.add(
                        Conversation(
                            id=uuid.uuid4(),
                            city_id=city_id,
                            external_id=external_conversation_id,
                            status="open",
                            needs_human=True,
                            fallback_count=1,
                        )
                    )
                else:
                    conversation.fallback_count = (conversation.fallback_count or 0) + 1
                    conversation.needs_human = True
                    conversation.updated_at = _utcnow()
                await db.commit()
        except Exception as e:
            raise RecorderError(f"Failed to mark fallback: {e}") from e

    async def _next_ticket_ref(self, db: AsyncSession, city: Any) -> str:
        """Next `{CODE}-{YEAR}-{NNNNNN}` reference for the city, counting from 1 each year."""
        prefix = f"{(city.code or DEFAULT_TICKET_PREFIX).upper()}-{_utcnow().year}-"
        stmt = (
            select(func.max(Ticket.ticket_ref))
            .where(Ticket.city_id == city.id)
            .where(Ticket.ticket_ref.like(f"{prefix}%"))
        )
        last = (await db.execute(stmt)).scalar_one_or_none()
        sequence = int(last[len(prefix):]) + 1 if last else 1
        return f"{prefix}{sequence:06d}"

    async def _ticket_for(self, db: AsyncSession, conversation_id: UUID, city: Any) -> Ticket:
        ticket = await db.get(Ticket, conversation_id)
        if ticket is None:
            ticket_ref = await self._next_ticket_ref(db, city)
            ticket = Ticket(conversation_id=conversation_id, city_id=city.id, ticket_ref=ticket_ref)
            db.add(ticket)
        elif not ticket.ticket_ref:
            ticket.ticket_ref = await self._next_ticket_ref(db, city)
        return ticket

    async def upsert_ticket(self, conversation_id: UUID, city: Any, fields: TicketFields) -> str:
        """
        Create or update the single ticket of a conversation.

        Keeps `created_at` and an existing reference; a new ticket gets the next
        reference for its city. Returns the ticket reference.
        """
        try:
            async with self._session_factory() as db:
                ticket = await self._ticket_for(db, conversation_id, city)
                ticket.status = fields.status
                ticket.department = fields.department
                ticket.urgent = fields.urgent
                if fields.contact is not None:
                    ticket.contact_name = fields.contact.name
                    ticket.contact_phone = fields.contact.phone
                    ticket.contact_email = fields.contact.email
                    ticket.contact_location = fields.contact.location
                    ticket.contact_note = fields.contact.note
                    if fields.contact.consent_at is not None:
                        ticket.consent_at = fields.contact.consent_at
                ticket.updated_at = _utcnow()
                await db.commit()
                return ticket.ticket_ref
        except Exception as e:
            raise RecorderError(f"Failed to upsert ticket: {e}") from e

    async def submit_intake(self, conversation_id: UUID, city: Any, intake: TicketIntake) -> str:
        """Store a completed contact form as the conversation's ticket and hand it to a human."""
        now = _utcnow()
        try:
            async with self._session_factory() as db:
                ticket = await self._ticket_for(db, conversation_id, city)
                ticket.status = "open"
                ticket.contact_name = intake.name
                ticket.contact_phone = intake.phone
                ticket.contact_email = intake.email
                ticket.contact_location = intake.address
                ticket.contact_note = intake.note_text
                if intake.consent_given and intake.consent_timestamp is not None:
                    ticket.consent_at = intake.consent_timestamp
                ticket.updated_at = now

                conversation = await db.get(Conversation, conversation_id)
                if conversation is not None:
                    conversation.needs_human = True
                    conversation.status = "open"
                    conversation.submitted_at = now
                    conversation.updated_at = now
                await db.commit()
                logger.info(f"Ticket intake {ticket.ticket_ref} submitted for conversation {conversation_id}")
                return ticket.ticket_ref
        except Exception as e:
            raise RecorderError(f"Failed to submit ticket intake: {e}") from e

    async def record_event(self, city: Any, event: EventRequest) -> RecordedEvent:
        """Apply a widget event: conversation state, message row, ticket."""
        external_id = event.conversation_id or f"conv_{uuid.uuid4()}"
        is_fallback = event.type == "fallback"
        user_text = event.content if event.type == "message" and event.role == MessageRole.USER.value else None
        needs_human = (
            bool(event.needs_human)
            or event.type in ("contact_submit", INTAKE_EVENT)
            or (bool(user_text) and detect_needs_human([user_text]))
        )

        try:
            async with self._session_factory() as db:
                conversation = await self._get_conversation(db, city.id, external_id)
                if conversation is None:
                    category = classify_message(user_text) if user_text else None
                    conversation = Conversation(
                        id=uuid.uuid4(),
                        city_id=city.id,
                        external_id=external_id,
                        status="open",
                        category=category,
                        category_rules_version=RULES_VERSION if category else None,
                        needs_human=needs_human,
                        fallback_count=1 if is_fallback else 0,
                    )
                    db.add(conversation)
                    logger.info(f"Created conversation {conversation.id} ({external_id})")
                else:
                    conversation.updated_at = _utcnow()
                    conversation.needs_human = needs_human
                    if is_fallback:
                        conversation.fallback_count = (conversation.fallback_count or 0) + 1
                    if (
                        user_text
                        and conversation.category is None
                        and conversation.status in (None, "open")
                        and await self._count_user_messages(db, conversation.id) == 0
                    ):
                        category = classify_message(user_text)
                        if category:
                            conversation.category = category
                            conversation.category_rules_version = RULES_VERSION
                            logger.info(f"Auto-classified conversation {conversation.id} as {category}")
                await db.commit()
                conversation_id = conversation.id
        except Exception as e:
            raise RecorderError(f"Failed to update conversation: {e}") from e

        if event.type == "message" and event.role and event.content:
            await self.record_message(
                conversation_id,
                event.role,
                event.content,
                event.message_id,
                metadata=event.metadata,
                created_at=event.timestamp,
            )

        ticket_ref = None
        if event.ticket is not None:
            ticket_ref = await self.upsert_ticket(conversation_id, city, event.ticket)
        if event.type == INTAKE_EVENT and event.intake is not None:
            ticket_ref = await self.submit_intake(conversation_id, city, event.intake)

        return RecordedEvent(conversation_id=conversation_id, ticket_ref=ticket_ref)

    async def _count_user_messages(self, db: AsyncSession, conversation_id: UUID) -> int:
        stmt = (
            select(func.count(Message.id))
            .where(Message.conversation_id == conversation_id)
            .where(Message.role == MessageRole.USER.value)
        )
        return int((await db.execute(stmt)).scalar_one())
