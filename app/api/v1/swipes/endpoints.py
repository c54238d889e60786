"""
API endpoints for swiping.

This module provides endpoints for users to:
- Swipe on a candidate (pass, like, super like)
- Rewind their last swipe
- Start a swipe session and queue candidates
- See who liked them
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from app.core.database import get_db
from app.api.deps import get_current_user, limit_swipes
from app.models.user import User
from app.services.swipe_service import SwipeService
from app.schemas.decision import (
    DecisionCreate,
    SwipeOutcome,
    RewindResponse,
    RewindStatus,
    CandidateFilterRequest,
    CandidateFilterResponse,
    IncomingLike,
)

router = APIRouter()


@router.post("", response_model=SwipeOutcome, status_code=status.HTTP_201_CREATED)
async def create_swipe(
    swipe_data: DecisionCreate,
    current_user: User = Depends(limit_swipes),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a swipe on a candidate.

    A like or super like on someone who already liked the current user
    forms a match; ``match_created`` is true only for the swipe that formed it.
    Swiping twice on the same candidate returns 409.
    """
    service = SwipeService()
    result = await service.swipe(db, current_user, swipe_data.subject_id, swipe_data.kind)

    return {
        "decision": result.decision,
        "match": result.match,
        "match_created": result.match_created,
        "rewinds_remaining": result.rewinds_remaining,
    }


@router.post("/rewind", response_model=RewindResponse)
async def rewind_last_swipe(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Undo the most recent swipe of the current session.

    Returns 409 when there is nothing to rewind or the session's rewinds are used up.
    """
    service = SwipeService()
    result = await service.rewind(db, current_user)

    return {
        "decision": result.decision,
        "restored_subject_id": result.restored_subject_id,
        "match_deactivated": result.match_deactivated,
        "match_id": result.match_id,
        "rewinds_remaining": result.remaining,
    }


@router.get("/rewind", response_model=RewindStatus)
async def get_rewind_status(current_user: User = Depends(get_current_user)):
    """Whether a rewind is possible right now, and how many are left."""
    return SwipeService().rewind_status(current_user)


@router.post("/session", response_model=CandidateFilterResponse)
async def start_swipe_session(
    request: CandidateFilterRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Start a new swipe session with a first batch of candidates.

    Resets the rewind stack and budget. Candidates already decided on are dropped.
    """
    service = SwipeService()
    service.start_session(current_user)
    candidate_ids = await service.load_candidates(db, current_user, request.candidate_ids)

    return {
        "candidate_ids": candidate_ids,
        "next_candidate_id": service.next_candidate(current_user),
    }


@router.post("/candidates", response_model=CandidateFilterResponse)
async def queue_candidates(
    request: CandidateFilterRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Filter a batch from the profile source and append it to the session queue."""
    service = SwipeService()
    candidate_ids = await service.load_candidates(db, current_user, request.candidate_ids)

    return {
        "candidate_ids": candidate_ids,
        "next_candidate_id": service.next_candidate(current_user),
    }


@router.get("/likes", response_model=List[IncomingLike])
async def get_incoming_likes(
    limit: int = Query(50, ge=1, le=100, description="Maximum number of likes"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """People who liked the current user and are still waiting for an answer."""
    service = SwipeService()
    likes = await service.incoming_likes(db, current_user, limit=limit)

    return [
        {
            "decision_id": like.id,
            "actor_id": like.actor_id,
            "kind": like.kind,
            "created_at": like.created_at,
        }
        for like in likes
    ]
