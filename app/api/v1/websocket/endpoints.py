"""
WebSocket API endpoint for real-time delivery.

This module provides the WebSocket endpoint that streams a user's inbox
(notifications, match formed / ended) and the messages of the conversations
the client subscribes to.
"""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from datetime import datetime
import logging
import json
from typing import Optional
from uuid import UUID
import asyncio

from app.core.config import settings
from app.core.database import AsyncSessionLocal
from app.core.exceptions import SwipeMatchError
from app.core.security import verify_token
from app.models.user import User
from app.services.conversation_service import ConversationChannel, MessageSubscription
from app.services.notification_service import NotificationDispatcher
from app.services.presence_service import PresenceTracker

logger = logging.getLogger(__name__)

router = APIRouter()


class SubscribeRequest(BaseModel):
    match_id: UUID
    # created_at of the last message the client already has
    after: Optional[datetime] = None


class UnsubscribeRequest(BaseModel):
    match_id: UUID


async def authenticate_websocket(token: str, db: AsyncSession) -> Optional[UUID]:
    """
    Authenticate a WebSocket connection using JWT token.

    Args:
        token: JWT token string
        db: Database session (should be short-lived)

    Returns:
        The user's id if the token is valid and the user exists, None otherwise

    Example:
        async with AsyncSessionLocal() as db:
            user_id = await authenticate_websocket(token, db)
    """
    subject = verify_token(token, "access")
    if subject is None:
        logger.debug("WebSocket auth failed: Invalid token")
        return None

    try:
        user_uuid = UUID(subject)
    except (ValueError, TypeError):
        logger.debug(f"WebSocket auth failed: Invalid UUID format: {subject}")
        return None

    result = await db.execute(select(User.id).where(User.id == user_uuid))
    if result.scalar_one_or_none() is None:
        logger.debug(f"WebSocket auth failed: User not found: {user_uuid}")
        return None

    return user_uuid


class ClientConnection:
    """
    One authenticated socket.

    Every producer (inbox, conversation subscriptions, heartbeat) puts
    payloads on ``outbox``; a single writer task sends them, so frames never
    interleave.
    """

    def __init__(self, websocket: WebSocket, user_id: UUID):
        self.websocket = websocket
        self.user_id = user_id
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.inbox = NotificationDispatcher().subscribe(user_id)
        self.subscriptions: dict[UUID, MessageSubscription] = {}
        self.tasks: dict[str, asyncio.Task] = {}

    def send(self, payload: dict) -> None:
        self.outbox.put_nowait(payload)

    def start(self) -> None:
        self.tasks["writer"] = asyncio.create_task(self._write())
        self.tasks["inbox"] = asyncio.create_task(self._pump_inbox())
        self.tasks["heartbeat"] = asyncio.create_task(self._heartbeat())

    async def _write(self) -> None:
        while True:
            payload = await self.outbox.get()
            await self.websocket.send_json(jsonable_encoder(payload))

    async def _pump_inbox(self) -> None:
        while True:
            self.send(await self.inbox.get())

    async def _pump_conversation(self, subscription: MessageSubscription) -> None:
        async for message in subscription:
            self.send({"type": "message.created", "message": message})

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(settings.ws_heartbeat_seconds)
            self.send({"type": "ping"})

    async def subscribe(self, request: SubscribeRequest) -> None:
        """Replay a conversation after ``request.after`` and follow it live."""
        self.unsubscribe(request.match_id)

        async with AsyncSessionLocal() as db:
            subscription = await ConversationChannel().subscribe(
                db,
                request.match_id,
                self.user_id,
                after=request.after,
                on_receipt=lambda receipt: self.send({"type": "message.read", "receipt": receipt}),
            )

        self.subscriptions[request.match_id] = subscription
        self.tasks[f"match:{request.match_id}"] = asyncio.create_task(self._pump_conversation(subscription))
        self.send({"type": "subscribed", "match_id": request.match_id})

    def unsubscribe(self, match_id: UUID) -> None:
        subscription = self.subscriptions.pop(match_id, None)
        if subscription is not None:
            subscription.unsubscribe()
        task = self.tasks.pop(f"match:{match_id}", None)
        if task is not None:
            task.cancel()

    async def touch(self) -> None:
        async with AsyncSessionLocal() as db:
            await PresenceTracker().touch(db, self.user_id)

    async def close(self) -> None:
        for match_id in list(self.subscriptions):
            self.unsubscribe(match_id)
        self.inbox.close()

        tasks = list(self.tasks.values())
        self.tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def _error(message: str, code: str) -> dict:
    return {"type": "error", "code": code, "message": message}


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time delivery.

    Protocol:
    1. Client connects
    2. Client sends {"type": "authenticate", "token": "<jwt>"}
    3. Server responds with authenticated message or error
    4. Server streams inbox events (notification.created, match.formed, match.deactivated)
    5. Client sends {"type": "subscribe", "match_id": ..., "after": ...} to follow
       a conversation; missed messages after ``after`` are replayed first
    6. Client sends {"type": "unsubscribe", "match_id": ...} to stop
    7. Server sends periodic ping messages; client responds with pong

    Note:
    This endpoint does NOT use Depends(get_db) because that would keep
    a database connection open for the entire WebSocket lifetime. Each step
    that needs the database opens its own short-lived session.
    """
    connection: Optional[ClientConnection] = None

    try:
        await websocket.accept()

        # Wait for authentication message (with timeout)
        try:
            auth_message = await asyncio.wait_for(
                websocket.receive_json(),
                timeout=settings.ws_auth_timeout_seconds
            )
        except asyncio.TimeoutError:
            await websocket.send_json(_error("Authentication timeout", "AUTH_TIMEOUT"))
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        if auth_message.get("type") != "authenticate" or not auth_message.get("token"):
            await websocket.send_json(_error("First message must be authentication with a token", "AUTH_REQUIRED"))
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        async with AsyncSessionLocal() as db:
            user_id = await authenticate_websocket(auth_message["token"], db)

        if user_id is None:
            await websocket.send_json(_error("Invalid or expired token", "AUTH_FAILED"))
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        connection = ClientConnection(websocket, user_id)
        await websocket.send_json({
            "type": "authenticated",
            "user_id": str(user_id),
            "message": "Successfully authenticated"
        })
        connection.start()
        await connection.touch()

        logger.info(f"WebSocket authenticated: user={user_id}")

        # Listen for messages
        while True:
            try:
                message = await websocket.receive_json()
                kind = message.get("type")

                if kind == "pong":
                    await connection.touch()
                elif kind == "subscribe":
                    await connection.subscribe(SubscribeRequest.model_validate(message))
                elif kind == "unsubscribe":
                    request = UnsubscribeRequest.model_validate(message)
                    connection.unsubscribe(request.match_id)
                    connection.send({"type": "unsubscribed", "match_id": request.match_id})
                else:
                    connection.send(_error(f"Unknown message type: {kind}", "UNKNOWN_MESSAGE_TYPE"))

            except WebSocketDisconnect:
                logger.info(f"WebSocket disconnected: user={user_id}")
                break
            except json.JSONDecodeError:
                connection.send(_error("Message must be valid JSON", "INVALID_MESSAGE_FORMAT"))
            except ValidationError as e:
                connection.send(_error(str(e), "INVALID_MESSAGE_FORMAT"))
            except SwipeMatchError as e:
                connection.send(_error(e.message, e.code))

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected before authentication")
    except Exception as e:
        logger.error(f"WebSocket error: {e}", exc_info=True)

    finally:
        if connection is not None:
            await connection.close()
