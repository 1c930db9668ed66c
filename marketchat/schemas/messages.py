from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

from marketchat.schemas.users import DirectoryEntry


class MessageCreate(BaseModel):
    content: str
    # client-generated draft id, makes a resend idempotent
    client_message_id: str | None = Field(default=None, max_length=64)


class MessageRead(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    content: str
    is_read: bool
    client_message_id: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageWithSender(MessageRead):
    sender: DirectoryEntry


class OpenConversationResponse(BaseModel):
    conversation_id: str
    messages: list[MessageWithSender]
    marked_read: int = 0


class MarkReadResponse(BaseModel):
    conversation_id: str
    marked_read: int
