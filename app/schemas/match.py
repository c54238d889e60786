from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime
import uuid


class MatchRead(BaseModel):
    id: uuid.UUID
    user_a: uuid.UUID
    user_b: uuid.UUID
    is_active: bool
    created_at: datetime
    deactivated_at: Optional[datetime] = None
    deactivation_reason: Optional[str] = None

    class Config:
        from_attributes = True


class MatchSummary(BaseModel):
    """A match as seen by one of its participants"""
    id: uuid.UUID
    other_user_id: uuid.UUID
    created_at: datetime
    unread_count: int = 0
    other_user_online: bool = False


class MatchListResponse(BaseModel):
    items: List[MatchSummary]
    total: int
