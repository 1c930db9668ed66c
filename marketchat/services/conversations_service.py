# file: marketchat/services/conversations_service.py

import logging

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from marketchat.core.errors import (
    ConflictError,
    ConversationNotFound,
    InvalidParticipants,
    NotAParticipant,
    StoreUnavailable,
)
from marketchat.core.settings import settings
from marketchat.models.conversations import Conversation
from marketchat.models.messages import Message
from marketchat.schemas.conversations import ConversationSummary, LastMessage
from marketchat.services.directory_service import resolve_entries
from marketchat.utils.profiler import Stopwatch
from marketchat.utils.retry import run_with_retry

logger = logging.getLogger("conversations_service")


def pair_key(user_a: str, user_b: str) -> tuple[str, str]:
    low, high = sorted((user_a, user_b))
    return low, high


def activity_column():
    return func.coalesce(Conversation.last_message_at, Conversation.created_at)


# ============================================================
# Lookups
# ============================================================

def get_by_pair(db: Session, user_a: str, user_b: str) -> Conversation | None:
    low, high = pair_key(user_a, user_b)
    return (
        db.query(Conversation)
        .filter(
            Conversation.participant_low == low,
            Conversation.participant_high == high,
        )
        .first()
    )


def get_conversation(db: Session, conversation_id: str) -> Conversation:
    conv = run_with_retry(
        db,
        lambda: db.get(Conversation, conversation_id),
        label="conversation get",
    )
    if conv is None:
        raise ConversationNotFound(f"conversation {conversation_id} not found")
    return conv


def require_participant(conv: Conversation, user_id: str) -> None:
    if not conv.has_participant(user_id):
        logger.info(f"[Conversation] access denied: conversation_id={conv.id} user_id={user_id}")
        raise NotAParticipant(f"user {user_id} is not a participant of conversation {conv.id}")


def get_for_participant(db: Session, conversation_id: str, user_id: str) -> Conversation:
    conv = get_conversation(db, conversation_id)
    require_participant(conv, user_id)
    return conv


# ============================================================
# Find or create
# ============================================================

def resolve_roles(directory, user_a: str, user_b: str) -> tuple[str, str]:
    """
    Returns (customer_id, seller_id) for two user ids given in any order.
    """
    if not user_a or not user_b or user_a == user_b:
        raise InvalidParticipants("a conversation needs two distinct users")

    entries = directory.get_users([user_a, user_b])
    missing = [uid for uid in (user_a, user_b) if uid not in entries]
    if missing:
        raise InvalidParticipants(f"unknown users: {', '.join(missing)}")

    roles = {uid: entries[uid].role for uid in (user_a, user_b)}
    if roles[user_a] == "customer" and roles[user_b] == "seller":
        return user_a, user_b
    if roles[user_a] == "seller" and roles[user_b] == "customer":
        return user_b, user_a

    raise InvalidParticipants(
        f"a conversation needs one customer and one seller, got {roles[user_a]}/{roles[user_b]}"
    )


def _insert_conversation(db: Session, customer_id: str, seller_id: str) -> Conversation:
    low, high = pair_key(customer_id, seller_id)
    conv = Conversation(
        customer_id=customer_id,
        seller_id=seller_id,
        participant_low=low,
        participant_high=high,
    )
    db.add(conv)

    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(f"conversation {low}/{high} already exists") from e
    except OperationalError as e:
        db.rollback()
        raise StoreUnavailable("store unavailable during conversation insert") from e

    db.refresh(conv)
    return conv


def find_or_create_conversation(db: Session, directory, customer_id: str, seller_id: str) -> tuple[Conversation, bool]:
    """
    Returns (conversation, created). Concurrent calls for the same pair
    converge on a single row: the unique pair constraint picks the
    winner and losers re-fetch it.
    """
    customer_id, seller_id = resolve_roles(directory, customer_id, seller_id)

    existing = run_with_retry(
        db,
        lambda: get_by_pair(db, customer_id, seller_id),
        label="conversation lookup",
    )
    if existing:
        return existing, False

    try:
        conv = _insert_conversation(db, customer_id, seller_id)
    except ConflictError:
        logger.info(f"[Conversation] create race lost, re-fetching: customer_id={customer_id} seller_id={seller_id}")
        winner = run_with_retry(
            db,
            lambda: get_by_pair(db, customer_id, seller_id),
            label="conversation re-fetch",
        )
        if winner is None:
            raise StoreUnavailable("conversation vanished after insert conflict")
        return winner, False

    logger.info(f"[Conversation] created: conversation_id={conv.id} customer_id={customer_id} seller_id={seller_id}")
    return conv, True


# ============================================================
# Read / unread accounting (batched per viewer)
# ============================================================

def unread_counts(db: Session, conversation_ids: list[str], viewer_id: str) -> dict[str, int]:
    if not conversation_ids:
        return {}

    stmt = (
        select(Message.conversation_id, func.count(Message.id))
        .where(
            Message.conversation_id.in_(conversation_ids),
            Message.is_read == False,  # noqa: E712
            Message.sender_id != viewer_id,
        )
        .group_by(Message.conversation_id)
    )
    return {conv_id: count for conv_id, count in db.execute(stmt).all()}


def last_messages(db: Session, conversation_ids: list[str]) -> dict[str, Message]:
    if not conversation_ids:
        return {}

    ranked = (
        select(
            Message.id.label("message_id"),
            func.row_number()
            .over(
                partition_by=Message.conversation_id,
                order_by=(Message.created_at.desc(), Message.id.desc()),
            )
            .label("rn"),
        )
        .where(Message.conversation_id.in_(conversation_ids))
        .subquery()
    )
    stmt = select(Message).join(
        ranked, and_(ranked.c.message_id == Message.id, ranked.c.rn == 1)
    )
    return {m.conversation_id: m for m in db.scalars(stmt).all()}


def query_conversations_for(db: Session, viewer_id: str, since=None) -> list[Conversation]:
    query = db.query(Conversation).filter(
        or_(Conversation.customer_id == viewer_id, Conversation.seller_id == viewer_id)
    )
    if since is not None:
        query = query.filter(activity_column() > since)

    return query.order_by(activity_column().desc(), Conversation.id.desc()).all()


def build_summaries(db: Session, directory, viewer_id: str, conversations: list[Conversation]) -> list[ConversationSummary]:
    ids = [c.id for c in conversations]

    def load():
        return unread_counts(db, ids, viewer_id), last_messages(db, ids)

    counts, lasts = run_with_retry(db, load, label="conversation aggregates")
    others = resolve_entries(directory, (c.other_participant(viewer_id) for c in conversations))

    summaries = []
    for conv in conversations:
        last = lasts.get(conv.id)
        summaries.append(
            ConversationSummary(
                id=conv.id,
                customer_id=conv.customer_id,
                seller_id=conv.seller_id,
                last_message_at=conv.last_message_at,
                created_at=conv.created_at,
                other_participant=others[conv.other_participant(viewer_id)],
                last_message=LastMessage(
                    content=last.content[: settings.PREVIEW_LENGTH],
                    sender_id=last.sender_id,
                    created_at=last.created_at,
                    from_viewer=last.sender_id == viewer_id,
                ) if last else None,
                unread_count=counts.get(conv.id, 0),
            )
        )
    return summaries


def list_conversations_for(db: Session, directory, viewer_id: str) -> list[ConversationSummary]:
    """
    All conversations of the viewer, most recent activity first, each with
    the other participant, last message preview and unread count.
    """
    watch = Stopwatch(f"inbox viewer={viewer_id}")
    conversations = run_with_retry(
        db,
        lambda: query_conversations_for(db, viewer_id),
        label="conversation list",
    )
    watch.lap(f"list conversations n={len(conversations)}")

    summaries = build_summaries(db, directory, viewer_id, conversations)
    watch.lap("build summaries")
    return summaries
