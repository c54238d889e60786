"""
API endpoints for matches and their conversations.

This module provides endpoints for matched users to:
- List their active matches with unread counts and online state
- Unmatch
- Send messages and page through history after a cursor
- Mark messages read
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime
from typing import Optional
import uuid

from app.core.config import settings
from app.core.database import get_db
from app.api.deps import get_current_user, limit_messages
from app.models.user import User
from app.services.conversation_service import ConversationChannel
from app.services.match_service import MatchDetector
from app.services.presence_service import PresenceTracker
from app.schemas.match import MatchRead, MatchListResponse
from app.schemas.message import (
    MessageCreate,
    MessageRead,
    MessageHistoryResponse,
    MarkMessagesReadRequest,
)
from app.schemas.notification import MarkReadResponse

router = APIRouter()


@router.get("", response_model=MatchListResponse)
async def list_matches(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Active matches of the current user, newest first.

    Each item carries the other user's id, the number of unread messages and
    whether the other user is online.
    """
    matches, total = await MatchDetector().list_active(db, current_user.id, skip=skip, limit=limit)

    others = {match.id: match.other_user(current_user.id) for match in matches}
    unread = await ConversationChannel().unread_counts(db, others.keys(), current_user.id)
    online = await PresenceTracker().online_map(db, others.values())

    return {
        "items": [
            {
                "id": match.id,
                "other_user_id": others[match.id],
                "created_at": match.created_at,
                "unread_count": unread.get(match.id, 0),
                "other_user_online": online.get(others[match.id], False),
            }
            for match in matches
        ],
        "total": total,
    }


@router.get("/{match_id}", response_model=MatchRead)
async def get_match(
    match_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get one match of the current user, active or not."""
    return await MatchDetector().get_for_participant(db, match_id, current_user.id)


@router.delete("/{match_id}", response_model=MatchRead)
async def unmatch(
    match_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    End a match. The conversation becomes unreachable for both users.

    Unmatching an already inactive match returns it unchanged.
    """
    return await MatchDetector().unmatch(db, match_id, current_user.id)


@router.post("/{match_id}/messages", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def send_message(
    match_id: uuid.UUID,
    message_data: MessageCreate,
    current_user: User = Depends(limit_messages),
    db: AsyncSession = Depends(get_db)
):
    """
    Send a message to the other participant.

    Returns 410 if the match was unmatched or rewound.
    """
    return await ConversationChannel().send(db, match_id, current_user.id, message_data.content)


@router.get("/{match_id}/messages", response_model=MessageHistoryResponse)
async def get_messages(
    match_id: uuid.UUID,
    after: Optional[datetime] = Query(None, description="Only messages created strictly after this time"),
    limit: int = Query(50, ge=1, le=settings.message_history_limit),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Conversation history, oldest first.

    Clients reconnecting pass the ``created_at`` of the last message they
    have as ``after`` and keep following ``next_after`` while ``has_more``.
    """
    messages = await ConversationChannel().history(db, match_id, current_user.id, after=after, limit=limit + 1)
    has_more = len(messages) > limit
    items = messages[:limit]

    return {
        "items": items,
        "has_more": has_more,
        "next_after": items[-1].created_at if items else after,
    }


@router.post("/{match_id}/messages/read", response_model=MarkReadResponse)
async def mark_messages_read(
    match_id: uuid.UUID,
    request: MarkMessagesReadRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Mark messages of this conversation read.

    Messages the current user sent, and messages already read, are left alone.
    """
    channel = ConversationChannel()
    await channel.require_active_match(db, match_id, current_user.id)
    count = await channel.mark_read(db, request.message_ids, current_user.id, match_id=match_id)

    return {"updated_count": count, "success": True}


@router.post("/{match_id}/viewed", response_model=MarkReadResponse)
async def conversation_viewed(
    match_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """The current user opened the conversation: read everything and record activity."""
    count = await PresenceTracker().conversation_viewed(db, match_id, current_user.id)

    return {"updated_count": count, "success": True}
