"""
Message Deduplicator / Ingestor

Inserts an inbound Lodgify message exactly once per
(conversation, lodgify_message_id) and updates the conversation rollups
in the same transaction. The unique constraint is the source of truth;
the pre-check only saves a round trip on obvious redeliveries.
"""

import uuid
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import update, func
from sqlalchemy.orm import Session

from ..models.conversation import Conversation
from ..models.message import Message, MessageDirection, MessageStatus
from ..schemas.lodgify import GuestMessageEvent
from ..utils.db_helpers import insert_ignore

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    message: Optional[Message]
    was_duplicate: bool


class MessageIngestor:
    def __init__(self, db: Session):
        self.db = db

    def find_existing(self, conversation_id: str, lodgify_message_id: Optional[str]) -> Optional[Message]:
        if not lodgify_message_id:
            return None
        return self.db.query(Message).filter(
            Message.conversation_id == conversation_id,
            Message.lodgify_message_id == lodgify_message_id
        ).first()

    def ingest(self, conversation_id: str, event: GuestMessageEvent) -> IngestResult:
        upstream_id = event.message_id

        existing = self.find_existing(conversation_id, upstream_id)
        if existing is not None:
            logger.info(f"Message {upstream_id} already ingested in conversation {conversation_id}")
            return IngestResult(existing, was_duplicate=True)

        now = datetime.utcnow()
        message_id = str(uuid.uuid4())

        inserted = insert_ignore(
            self.db,
            Message,
            {
                "id": message_id,
                "conversation_id": conversation_id,
                "content": event.message or "",
                "type": "text",
                "direction": MessageDirection.INBOUND.value,
                "status": MessageStatus.DELIVERED.value,
                "lodgify_message_id": upstream_id,
                "created_at": now,
            },
            conflict_columns=["conversation_id", "lodgify_message_id"]
        )

        if not inserted:
            # A concurrent delivery of the same message won the insert
            logger.info(f"Message {upstream_id} inserted concurrently in conversation {conversation_id}")
            return IngestResult(self.find_existing(conversation_id, upstream_id), was_duplicate=True)

        self._update_rollups(conversation_id, event.message or "", now, event.thread_uid)

        message = self.db.get(Message, message_id)
        logger.info(f"Ingested message {upstream_id} into conversation {conversation_id}")
        return IngestResult(message, was_duplicate=False)

    def _update_rollups(
        self,
        conversation_id: str,
        content: str,
        at: datetime,
        thread_uid: Optional[str]
    ) -> None:
        """Single UPDATE so concurrent ingests cannot lose an unread increment."""
        values = {
            "last_message": content,
            "last_message_at": at,
            "unread_count": func.coalesce(Conversation.unread_count, 0) + 1,
            "updated_at": at,
        }
        if thread_uid:
            values["lodgify_thread_uid"] = func.coalesce(Conversation.lodgify_thread_uid, thread_uid)

        stmt = (
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)

        conversation = self.db.get(Conversation, conversation_id)
        if conversation is not None:
            self.db.expire(conversation, ["last_message", "last_message_at", "unread_count", "lodgify_thread_uid"])

    def add_booking_confirmation(self, conversation: Conversation, content: str) -> Message:
        """
        Synthetic outbound "reservation confirmed" message.

        Only called right after the conversation was created, so it is
        written once per booking without going through dedup.
        """
        message = Message(
            conversation_id=conversation.id,
            content=content,
            type="text",
            direction=MessageDirection.OUTBOUND.value,
            status=MessageStatus.DELIVERED.value,
        )
        self.db.add(message)
        self.db.flush()
        return message
