from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.core.config import settings
from app.core.database import get_db
from app.core.security import verify_token
from app.models.user import User
from app.services.rate_limit_service import rate_limit_service
import uuid

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Get the user identified by the bearer token"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    user_id = verify_token(credentials.credentials, "access")
    if user_id is None:
        raise credentials_exception

    try:
        user_uuid = uuid.UUID(user_id)
    except ValueError:
        raise credentials_exception

    result = await db.execute(select(User).where(User.id == user_uuid))
    user = result.scalar_one_or_none()
    if user is None:
        raise credentials_exception

    return user


async def limit_swipes(current_user: User = Depends(get_current_user)) -> User:
    """Sliding-window limit on swipes per user"""
    await rate_limit_service.enforce(
        f"swipe:user:{current_user.id}",
        settings.swipe_rate_limit,
        settings.swipe_rate_window_seconds,
    )
    return current_user


async def limit_messages(current_user: User = Depends(get_current_user)) -> User:
    """Sliding-window limit on message sends per user"""
    await rate_limit_service.enforce(
        f"message:user:{current_user.id}",
        settings.message_rate_limit,
        settings.message_rate_window_seconds,
    )
    return current_user
