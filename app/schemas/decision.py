from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
import uuid

from app.models.decision import DecisionKind
from app.schemas.match import MatchRead


class DecisionCreate(BaseModel):
    subject_id: uuid.UUID
    kind: DecisionKind


class DecisionRead(BaseModel):
    id: uuid.UUID
    actor_id: uuid.UUID
    subject_id: uuid.UUID
    kind: DecisionKind
    created_at: datetime

    class Config:
        from_attributes = True


class SwipeOutcome(BaseModel):
    """Result of one swipe: the recorded decision and the match it formed, if any"""
    decision: DecisionRead
    match: Optional[MatchRead] = None
    match_created: bool = False
    rewinds_remaining: Optional[int] = None  # None means unlimited


class RewindResponse(BaseModel):
    """Result of a successful rewind"""
    decision: DecisionRead
    restored_subject_id: uuid.UUID
    match_deactivated: bool
    match_id: Optional[uuid.UUID] = None
    rewinds_remaining: Optional[int] = None


class RewindStatus(BaseModel):
    available: bool
    depth: int
    rewinds_used: int
    rewinds_remaining: Optional[int] = None
    is_premium: bool


class CandidateFilterRequest(BaseModel):
    candidate_ids: List[uuid.UUID] = Field(default_factory=list, max_length=500)


class CandidateFilterResponse(BaseModel):
    candidate_ids: List[uuid.UUID]
    next_candidate_id: Optional[uuid.UUID] = None


class IncomingLike(BaseModel):
    """Someone who liked the current user and is still waiting for an answer"""
    decision_id: uuid.UUID
    actor_id: uuid.UUID
    kind: DecisionKind
    created_at: datetime
