# file: marketchat/services/messages_service.py

import logging
import time

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from marketchat.core.errors import ContentTooLong, EmptyContent, StoreUnavailable
from marketchat.core.settings import settings
from marketchat.models.conversations import Conversation
from marketchat.models.messages import Message
from marketchat.schemas.messages import MessageWithSender
from marketchat.services.conversations_service import get_for_participant
from marketchat.services.directory_service import resolve_entries
from marketchat.utils.clock import utcnow
from marketchat.utils.retry import run_with_retry

logger = logging.getLogger("messages_service")


def normalize_content(content: str | None) -> str:
    text = (content or "").strip()
    if not text:
        raise EmptyContent("message content is empty")
    if len(text) > settings.MESSAGE_MAX_LENGTH:
        raise ContentTooLong(f"message content exceeds {settings.MESSAGE_MAX_LENGTH} characters")
    return text


def get_by_client_id(db: Session, conversation_id: str, sender_id: str, client_message_id: str) -> Message | None:
    return (
        db.query(Message)
        .filter(
            Message.conversation_id == conversation_id,
            Message.sender_id == sender_id,
            Message.client_message_id == client_message_id,
        )
        .first()
    )


# ============================================================
# Send
# ============================================================

def _append(db: Session, conversation_id: str, sender_id: str, text: str, client_message_id: str | None) -> Message:
    """
    Inserts the message and advances the conversation's last_message_at
    in the same transaction.
    """
    ts = utcnow()
    msg = Message(
        conversation_id=conversation_id,
        sender_id=sender_id,
        content=text,
        is_read=False,
        client_message_id=client_message_id,
        created_at=ts,
    )
    db.add(msg)
    db.flush()

    # only ever moves forward, so reapplying it is harmless
    db.execute(
        update(Conversation)
        .where(
            Conversation.id == conversation_id,
            or_(Conversation.last_message_at.is_(None), Conversation.last_message_at < ts),
        )
        .values(last_message_at=ts)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return msg


def _find_draft(db: Session, conversation_id: str, sender_id: str, client_message_id: str) -> Message | None:
    return run_with_retry(
        db,
        lambda: get_by_client_id(db, conversation_id, sender_id, client_message_id),
        label="draft lookup",
    )


def send_message(
    db: Session,
    conversation_id: str,
    sender_id: str,
    content: str,
    client_message_id: str | None = None,
) -> Message:
    conv = get_for_participant(db, conversation_id, sender_id)
    text = normalize_content(content)

    if client_message_id:
        existing = _find_draft(db, conv.id, sender_id, client_message_id)
        if existing:
            logger.info(f"[Message] duplicate send ignored: message_id={existing.id} client_message_id={client_message_id}")
            return existing

    # a non-idempotent insert is retried once, and only with a draft id
    attempts = 2 if client_message_id else 1
    delay = settings.STORE_RETRY_BACKOFF_SECONDS

    for attempt in range(1, attempts + 1):
        try:
            msg = _append(db, conv.id, sender_id, text, client_message_id)
            logger.info(f"[Message] sent: message_id={msg.id} conversation_id={conv.id} sender_id={sender_id}")
            return msg

        except IntegrityError:
            db.rollback()
            if client_message_id:
                existing = _find_draft(db, conv.id, sender_id, client_message_id)
                if existing:
                    logger.info(f"[Message] concurrent duplicate send: message_id={existing.id} client_message_id={client_message_id}")
                    return existing
            raise

        except OperationalError as e:
            db.rollback()
            if attempt >= attempts:
                logger.error(f"[Message] send failed: conversation_id={conv.id} sender_id={sender_id}: {e}")
                raise StoreUnavailable("store unavailable while sending message") from e

            logger.warning(f"[Message] send attempt {attempt} failed, retrying in {delay:.2f}s: {e}")
            time.sleep(delay)

            # the first attempt may have committed before the error surfaced
            existing = _find_draft(db, conv.id, sender_id, client_message_id)
            if existing:
                return existing


# ============================================================
# Read side
# ============================================================

def list_messages(
    db: Session,
    conversation_id: str,
    viewer_id: str,
    limit: int | None = None,
    offset: int = 0,
) -> list[Message]:
    """
    Messages oldest first, ties broken by id. Restartable: the same
    limit/offset always addresses the same slice of a stable order.
    """
    conv = get_for_participant(db, conversation_id, viewer_id)

    def load():
        query = (
            db.query(Message)
            .filter(Message.conversation_id == conv.id)
            .order_by(Message.created_at.asc(), Message.id.asc())
            # read flags may have changed under a bulk UPDATE
            .populate_existing()
        )
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    return run_with_retry(db, load, label="message list")


def mark_read_ids(db: Session, conversation_id: str, viewer_id: str) -> list[str]:
    """
    Marks every message the viewer did not send as read and returns the ids
    it flipped. The filter runs in the UPDATE itself, so a message committed
    after this call stays unread and is not in the returned ids.
    """
    conv = get_for_participant(db, conversation_id, viewer_id)

    def apply():
        result = db.execute(
            update(Message)
            .where(
                Message.conversation_id == conv.id,
                Message.sender_id != viewer_id,
                Message.is_read == False,  # noqa: E712
            )
            .values(is_read=True)
            .returning(Message.id)
            .execution_options(synchronize_session=False)
        )
        ids = list(result.scalars())
        db.commit()
        return ids

    marked = run_with_retry(db, apply, label="mark read")
    if marked:
        logger.info(f"[Message] marked read: conversation_id={conv.id} viewer_id={viewer_id} count={len(marked)}")
    return marked


def mark_read(db: Session, conversation_id: str, viewer_id: str) -> int:
    return len(mark_read_ids(db, conversation_id, viewer_id))


def open_conversation(
    db: Session,
    conversation_id: str,
    viewer_id: str,
    limit: int | None = None,
    offset: int = 0,
    mark: bool = True,
) -> tuple[list[Message], list[str]]:
    """
    Marks then lists, so the page carries the current read state. Returns
    the page and the ids of the messages this call marked read.
    """
    marked = mark_read_ids(db, conversation_id, viewer_id) if mark else []
    messages = list_messages(db, conversation_id, viewer_id, limit=limit, offset=offset)
    return messages, marked


def with_senders(directory, messages: list[Message], tolerate_errors: bool = False) -> list[MessageWithSender]:
    senders = resolve_entries(directory, (m.sender_id for m in messages), tolerate_errors=tolerate_errors)
    return [
        MessageWithSender(
            id=m.id,
            conversation_id=m.conversation_id,
            sender_id=m.sender_id,
            content=m.content,
            is_read=m.is_read,
            client_message_id=m.client_message_id,
            created_at=m.created_at,
            sender=senders[m.sender_id],
        )
        for m in messages
    ]
