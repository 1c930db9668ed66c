# file: marketchat/services/inbox_service.py
"""
Per-viewer projection of conversations: role scoping, search, polling and
a client-side message timeline that tolerates replayed push events.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from marketchat.core.settings import settings
from marketchat.models.conversations import Conversation
from marketchat.schemas.conversations import ConversationChanges, ConversationSummary
from marketchat.schemas.messages import MessageRead, MessageWithSender
from marketchat.services.conversations_service import (
    build_summaries,
    list_conversations_for,
    query_conversations_for,
)
from marketchat.utils.clock import utcnow
from marketchat.utils.retry import run_with_retry

logger = logging.getLogger("inbox_service")

VIEW_ROLES = ("customer", "seller")


def in_role(conv: Conversation | ConversationSummary, viewer_id: str, role: str | None) -> bool:
    if role is None:
        return True
    if role not in VIEW_ROLES:
        raise ValueError(f"unknown view role: {role}")
    side = conv.customer_id if role == "customer" else conv.seller_id
    return side == viewer_id


def matches_search(summary: ConversationSummary, search: str | None) -> bool:
    term = (search or "").strip().lower()
    if not term:
        return True
    return term in summary.other_participant.display_name.lower()


def build_inbox(
    db: Session,
    directory,
    viewer_id: str,
    role: str | None = None,
    search: str | None = None,
) -> list[ConversationSummary]:
    summaries = list_conversations_for(db, directory, viewer_id)
    items = [s for s in summaries if in_role(s, viewer_id, role) and matches_search(s, search)]

    logger.debug(f"[Inbox] viewer_id={viewer_id} role={role} search={search!r} -> {len(items)}/{len(summaries)}")
    return items


def changes_since(
    db: Session,
    directory,
    viewer_id: str,
    since: datetime,
    role: str | None = None,
) -> list[ConversationSummary]:
    """
    Conversations with activity after `since`, for pull-on-focus refresh.
    """
    conversations = run_with_retry(
        db,
        lambda: query_conversations_for(db, viewer_id, since=since),
        label="conversation changes",
    )
    conversations = [c for c in conversations if in_role(c, viewer_id, role)]
    return build_summaries(db, directory, viewer_id, conversations)


def poll_changes(
    db: Session,
    directory,
    viewer_id: str,
    since: datetime,
    role: str | None = None,
) -> ConversationChanges:
    """
    One poll round. A send stamps its time before committing, so the next
    cursor reaches back POLL_OVERLAP_SECONDS behind server_time and a send
    that commits late still shows up. Items may repeat across polls;
    clients replace summaries by conversation id.
    """
    server_time = utcnow()
    items = changes_since(db, directory, viewer_id, since, role=role)
    next_since = max(since, server_time - timedelta(seconds=settings.POLL_OVERLAP_SECONDS))

    logger.debug(f"[Inbox] poll viewer_id={viewer_id} since={since} -> {len(items)} changed")
    return ConversationChanges(since=since, server_time=server_time, next_since=next_since, items=items)


# ============================================================
# Client-side timeline
# ============================================================

class MessageTimeline:
    """
    Messages of one conversation as a client holds them. Loaded pages and
    pushed events are merged by message id, so replaying an event never
    duplicates a message.
    """

    def __init__(self, conversation_id: str, messages=()):
        self.conversation_id = conversation_id
        self._by_id: dict[str, MessageRead] = {}
        self.merge(messages)

    def __len__(self):
        return len(self._by_id)

    def merge(self, messages) -> int:
        added = 0
        for m in messages:
            if m.conversation_id != self.conversation_id:
                continue
            current = self._by_id.get(m.id)
            if current is None:
                added += 1
            elif current.is_read and not m.is_read:
                # a stale copy never un-reads a message
                m = m.model_copy(update={"is_read": True})
            self._by_id[m.id] = m
        return added

    def apply_event(self, event: dict) -> bool:
        """
        Applies a change event; returns True when the timeline changed.
        """
        if event.get("conversation_id") != self.conversation_id:
            return False

        kind = event.get("type")
        if kind == "message.created":
            message = MessageWithSender.model_validate(event["message"])
            before = self._by_id.get(message.id)
            self.merge([message])
            return before is None

        if kind == "messages.read":
            # only the ids the reader's UPDATE flipped; newer messages stay unread
            reader_id = event.get("reader_id")
            changed = False
            for mid in event.get("message_ids") or ():
                m = self._by_id.get(mid)
                if m is not None and m.sender_id != reader_id and not m.is_read:
                    self._by_id[mid] = m.model_copy(update={"is_read": True})
                    changed = True
            return changed

        return False

    def messages(self) -> list[MessageRead]:
        return sorted(self._by_id.values(), key=lambda m: (m.created_at, m.id))

    def unread_for(self, viewer_id: str) -> int:
        return sum(1 for m in self._by_id.values() if not m.is_read and m.sender_id != viewer_id)
