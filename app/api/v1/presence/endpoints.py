from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import uuid

from app.core.database import get_db
from app.api.deps import get_current_user
from app.models.user import User
from app.services.presence_service import PresenceTracker
from app.schemas.presence import PresenceResponse

router = APIRouter()


@router.post("/touch", response_model=PresenceResponse)
async def touch(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Record that the current user is active"""
    tracker = PresenceTracker()
    await tracker.touch(db, current_user.id)
    return await tracker.get_presence(db, current_user.id)


@router.get("/{user_id}", response_model=PresenceResponse)
async def get_presence(
    user_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Online state and last-seen label of a user"""
    return await PresenceTracker().get_presence(db, user_id)
