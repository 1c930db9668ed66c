from datetime import datetime
from pydantic import BaseModel, ConfigDict

from marketchat.schemas.users import DirectoryEntry


class ConversationStart(BaseModel):
    counterpart_id: str


class ConversationRead(BaseModel):
    id: str
    customer_id: str
    seller_id: str
    last_message_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LastMessage(BaseModel):
    content: str
    sender_id: str
    created_at: datetime
    from_viewer: bool = False


class ConversationSummary(ConversationRead):
    other_participant: DirectoryEntry
    last_message: LastMessage | None = None
    unread_count: int = 0


class ConversationChanges(BaseModel):
    since: datetime
    server_time: datetime
    # cursor for the next poll, overlaps the window of in-flight sends
    next_since: datetime
    items: list[ConversationSummary]
