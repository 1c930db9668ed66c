# file: marketchat/api/v1/conversations.py

import logging
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketchat.api.v1.deps import get_current_user_id, get_directory, get_event_publisher
from marketchat.core.errors import ChatError, StoreUnavailable
from marketchat.db.session import get_db
from marketchat.schemas.conversations import (
    ConversationChanges,
    ConversationRead,
    ConversationStart,
    ConversationSummary,
)
from marketchat.schemas.messages import (
    MarkReadResponse,
    MessageCreate,
    MessageWithSender,
    OpenConversationResponse,
)
from marketchat.services import conversations_service, inbox_service, messages_service, realtime_service
from marketchat.utils.clock import to_naive_utc

router = APIRouter()
logger = logging.getLogger("conversations_api")

# Endpoints are plain `def`: the services block on the store (and sleep
# between retries), so they run in the threadpool. Events go out as
# background tasks after the response.


@router.post("", response_model=ConversationRead)
def start_conversation(
    payload: ConversationStart,
    background: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    directory=Depends(get_directory),
    publisher=Depends(get_event_publisher),
):
    logger.info(f"[Conversation] start requested: user_id={user_id} counterpart_id={payload.counterpart_id}")

    conv, created = conversations_service.find_or_create_conversation(
        db, directory, user_id, payload.counterpart_id
    )
    if created:
        background.add_task(realtime_service.notify_conversation_created, publisher, conv)

    return conv


@router.get("", response_model=list[ConversationSummary])
def list_conversations(
    role: Literal["customer", "seller"] | None = Query(None),
    search: str | None = Query(None, max_length=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    directory=Depends(get_directory),
):
    return inbox_service.build_inbox(db, directory, user_id, role=role, search=search)


@router.get("/changes", response_model=ConversationChanges)
def poll_changes(
    since: datetime = Query(..., description="next_since of the previous poll"),
    role: Literal["customer", "seller"] | None = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    directory=Depends(get_directory),
):
    return inbox_service.poll_changes(db, directory, user_id, to_naive_utc(since), role=role)


@router.get("/{conversation_id}/messages", response_model=OpenConversationResponse)
def open_conversation(
    conversation_id: str,
    background: BackgroundTasks,
    limit: int | None = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
    mark_read: bool = Query(True),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    directory=Depends(get_directory),
    publisher=Depends(get_event_publisher),
):
    messages, marked = messages_service.open_conversation(
        db, conversation_id, user_id, limit=limit, offset=offset, mark=mark_read
    )
    if marked:
        conv = conversations_service.get_conversation(db, conversation_id)
        background.add_task(realtime_service.notify_messages_read, publisher, conv, user_id, marked)

    return OpenConversationResponse(
        conversation_id=conversation_id,
        messages=messages_service.with_senders(directory, messages),
        marked_read=len(marked),
    )


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageWithSender,
    status_code=status.HTTP_201_CREATED,
)
def send_message(
    conversation_id: str,
    payload: MessageCreate,
    background: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    directory=Depends(get_directory),
    publisher=Depends(get_event_publisher),
):
    try:
        msg = messages_service.send_message(
            db, conversation_id, user_id, payload.content, payload.client_message_id
        )
    except StoreUnavailable as e:
        # hand the draft back so the client can resubmit it
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "error": type(e).__name__,
                "detail": str(e),
                "draft": payload.content,
                "client_message_id": payload.client_message_id,
            },
        )

    # the message is stored from here on: nothing below may fail the request
    message = messages_service.with_senders(directory, [msg], tolerate_errors=True)[0]
    try:
        conv = conversations_service.get_conversation(db, conversation_id)
    except (ChatError, SQLAlchemyError) as e:
        logger.warning(f"[Message] sent but not announced: message_id={msg.id}: {e}")
    else:
        background.add_task(realtime_service.notify_message_created, publisher, conv, message)

    return message


@router.post("/{conversation_id}/read", response_model=MarkReadResponse)
def mark_read(
    conversation_id: str,
    background: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    publisher=Depends(get_event_publisher),
):
    marked = messages_service.mark_read_ids(db, conversation_id, user_id)
    if marked:
        conv = conversations_service.get_conversation(db, conversation_id)
        background.add_task(realtime_service.notify_messages_read, publisher, conv, user_id, marked)

    return MarkReadResponse(conversation_id=conversation_id, marked_read=len(marked))
