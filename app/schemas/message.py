from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime
import uuid

from app.utils.timestamps import ensure_utc


class MessageCreate(BaseModel):
    # Length and blank checks live in ConversationChannel so every caller gets InvalidMessage
    content: str


class MessageRead(BaseModel):
    id: uuid.UUID
    match_id: uuid.UUID
    sender_id: uuid.UUID
    content: str
    created_at: datetime
    read_at: Optional[datetime] = None

    @field_validator("created_at", "read_at")
    @classmethod
    def as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    class Config:
        from_attributes = True


class MessageHistoryResponse(BaseModel):
    """Ordered messages of a conversation, oldest first"""
    items: List[MessageRead]
    has_more: bool
    next_after: Optional[datetime] = None

    @field_validator("next_after")
    @classmethod
    def as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class MarkMessagesReadRequest(BaseModel):
    message_ids: List[uuid.UUID] = Field(..., min_length=1, max_length=500)


class ReadReceipt(BaseModel):
    message_id: uuid.UUID
    match_id: uuid.UUID
    reader_id: uuid.UUID
    read_at: datetime

    @field_validator("read_at")
    @classmethod
    def as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)
