"""
Conversation channel for matched users.

Messages get their ``created_at`` from the server, strictly increasing per
match, under a per-match lock that is held until the row is committed and
published. A live ``MessageSubscription`` keeps the ``created_at`` of the
last message it delivered and replays everything after it whenever it
(re)attaches, so a subscriber sees every message once and in order across
transient disconnects.
"""

from __future__ import annotations
from collections import deque
from typing import Callable, Iterable, Optional
from uuid import UUID
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
import asyncio
import logging
import weakref

from app.core.change_feed import (
    ChangeFeed,
    FeedSubscription,
    change_feed,
    commit_and_publish,
    inbox_topic,
    match_topic,
    rollback_and_discard,
    stage,
)
from app.core.config import settings
from app.core.exceptions import (
    InactiveMatch,
    InvalidMessage,
    MatchNotFound,
    NotMatchParticipant,
    SwipeMatchError,
    TransientBackendError,
)
from app.models.match import Match
from app.models.message import Message
from app.models.notification import NotificationType
from app.repositories.match_repository import MatchRepository
from app.repositories.message_repository import MessageRepository
from app.schemas.message import MessageRead, ReadReceipt
from app.services.notification_service import NotificationDispatcher, message_preview
from app.utils.timestamps import ensure_utc, next_after

logger = logging.getLogger(__name__)

# match_id -> lock; entries disappear once no coroutine holds the lock
_conversation_locks: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = weakref.WeakValueDictionary()


def _conversation_lock(match_id: UUID) -> asyncio.Lock:
    lock = _conversation_locks.get(match_id)
    if lock is None:
        lock = asyncio.Lock()
        _conversation_locks[match_id] = lock
    return lock


class ConversationChannel:
    """
    Service for sending, reading and streaming messages of a match.

    This service coordinates conversation operations including:
    - Sending messages with server-ordered timestamps
    - Replaying history after a cursor
    - Marking messages read and publishing read receipts
    - Live, resumable subscriptions
    """

    def __init__(
        self,
        message_repo: Optional[MessageRepository] = None,
        match_repo: Optional[MatchRepository] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        feed: Optional[ChangeFeed] = None,
        max_length: Optional[int] = None
    ):
        """
        Initialize service with repositories.

        Args:
            message_repo: MessageRepository instance
            match_repo: MatchRepository instance
            dispatcher: NotificationDispatcher used for MESSAGE_RECEIVED
            feed: Change feed to publish on (defaults to the process-wide feed)
            max_length: Maximum message length (defaults to settings)
        """
        self.message_repo = message_repo or MessageRepository()
        self.match_repo = match_repo or MatchRepository()
        self.feed = feed or change_feed
        self.dispatcher = dispatcher or NotificationDispatcher(feed=self.feed)
        self.max_length = max_length or settings.message_max_length

    # ── Lifecycle hooks called by the match detector ──────────────────────────

    def initialize(self, db: AsyncSession, event) -> None:
        """Announce a newly formed match on both participants' inbox feeds."""
        for user_id, other_user_id in ((event.user_a, event.user_b), (event.user_b, event.user_a)):
            stage(
                db,
                inbox_topic(user_id),
                {
                    "type": "match.formed",
                    "match_id": event.match_id,
                    "other_user_id": other_user_id,
                    "created_at": event.created_at,
                },
            )

    def close(self, db: AsyncSession, match: Match) -> None:
        """Tell live subscribers and both inboxes that the conversation ended."""
        event = {
            "type": "match.deactivated",
            "match_id": match.id,
            "reason": match.deactivation_reason,
        }
        stage(db, match_topic(match.id), event)
        for user_id in (match.user_a, match.user_b):
            stage(db, inbox_topic(user_id), event)

    # ── Messages ──────────────────────────────────────────────────────────────

    def _validate_content(self, content: Optional[str]) -> str:
        content = (content or "").strip()
        if not content:
            raise InvalidMessage("Message cannot be empty")
        if len(content) > self.max_length:
            raise InvalidMessage(f"Message cannot be longer than {self.max_length} characters")
        return content

    async def require_active_match(self, db: AsyncSession, match_id: UUID, user_id: UUID) -> Match:
        try:
            match = await self.match_repo.get(db, match_id)
        except SQLAlchemyError as e:
            raise TransientBackendError() from e

        if match is None:
            raise MatchNotFound(match_id)
        if not match.involves(user_id):
            raise NotMatchParticipant()
        if not match.is_active:
            raise InactiveMatch(match_id)
        return match

    async def send(
        self,
        db: AsyncSession,
        match_id: UUID,
        sender_id: UUID,
        content: str
    ) -> Message:
        """
        Append a message to an active match and notify the other participant.

        Commits the message before publishing it, while still holding the
        match's lock, so live subscribers receive messages in ``created_at``
        order.

        Raises:
            InvalidMessage: Empty or too long content
            MatchNotFound: Unknown match
            NotMatchParticipant: Sender is not part of the match
            InactiveMatch: The match was unmatched or rewound
            TransientBackendError: The database failed; safe to retry

        Example:
            message = await channel.send(db, match_id, user.id, "Hi!")
        """
        content = self._validate_content(content)
        match = await self.require_active_match(db, match_id, sender_id)

        async with _conversation_lock(match_id):
            try:
                # Unmatch or rewind may have committed since the check above
                current = await self.match_repo.get(db, match_id, for_update=True)
                if current is None or not current.is_active:
                    raise InactiveMatch(match_id)

                last_created_at = await self.message_repo.get_last_created_at(db, match_id)
                message = await self.message_repo.append(
                    db, match_id, sender_id, content, next_after(last_created_at)
                )
                await self.dispatcher.emit(
                    db,
                    match.other_user(sender_id),
                    NotificationType.MESSAGE_RECEIVED,
                    message.id,
                    message=message_preview(content),
                )
                stage(
                    db,
                    match_topic(match_id),
                    {"type": "message.created", "message": MessageRead.model_validate(message)},
                )
                await commit_and_publish(db, self.feed)
            except InactiveMatch:
                await rollback_and_discard(db)
                logger.info(f"Match {match_id} ended before message from {sender_id} was stored")
                raise
            except TransientBackendError:
                await rollback_and_discard(db)
                raise
            except SQLAlchemyError as e:
                await rollback_and_discard(db)
                logger.error(f"Error sending message in match {match_id}: {e}")
                raise TransientBackendError() from e

        logger.info(f"Message {message.id} sent in match {match_id} by {sender_id}")
        return message

    async def history(
        self,
        db: AsyncSession,
        match_id: UUID,
        user_id: UUID,
        after: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> list[Message]:
        """
        Messages of an active match created strictly after ``after``, oldest first.

        Raises:
            MatchNotFound, NotMatchParticipant, InactiveMatch

        Example:
            missed = await channel.history(db, match_id, user.id, after=last_seen_at)
        """
        await self.require_active_match(db, match_id, user_id)
        try:
            return await self.message_repo.list_after(
                db, match_id, after=ensure_utc(after), limit=limit or settings.message_history_limit
            )
        except SQLAlchemyError as e:
            raise TransientBackendError() from e

    async def mark_read(
        self,
        db: AsyncSession,
        message_ids: Iterable[UUID],
        reader_id: UUID,
        commit: bool = True,
        match_id: Optional[UUID] = None
    ) -> int:
        """
        Mark messages read by their recipient.

        Only messages the reader did not author and that are still unread
        change; unknown ids and messages of inactive matches are ignored, so
        calling this twice has the same effect as calling it once.

        Args:
            db: Active database session
            message_ids: Messages to mark
            reader_id: The reading user
            commit: Commit and publish receipts (False when the caller owns the unit of work)
            match_id: Only consider messages of this match

        Returns:
            Number of messages that changed

        Raises:
            NotMatchParticipant: A message belongs to a match the reader is not part of
        """
        try:
            messages = await self.message_repo.get_many(db, message_ids)
            if match_id is not None:
                messages = [m for m in messages if m.match_id == match_id]
            readable_matches = set()
            for message_match_id in {m.match_id for m in messages}:
                match = await self.match_repo.get(db, message_match_id)
                if not match.involves(reader_id):
                    raise NotMatchParticipant()
                if match.is_active:
                    readable_matches.add(message_match_id)

            pending = [
                m for m in messages
                if m.match_id in readable_matches and m.sender_id != reader_id and m.read_at is None
            ]
            if not pending:
                return 0

            read_at = next_after(max(ensure_utc(m.created_at) for m in pending))
            updated = set(await self.message_repo.mark_read(db, [m.id for m in pending], reader_id, read_at))

            for message in pending:
                if message.id in updated:
                    receipt = ReadReceipt(
                        message_id=message.id,
                        match_id=message.match_id,
                        reader_id=reader_id,
                        read_at=read_at,
                    )
                    stage(db, match_topic(message.match_id), {"type": "message.read", "receipt": receipt})

            if commit:
                await commit_and_publish(db, self.feed)

        except SwipeMatchError:
            raise
        except SQLAlchemyError as e:
            await rollback_and_discard(db)
            logger.error(f"Error marking messages read for user {reader_id}: {e}")
            raise TransientBackendError() from e

        logger.debug(f"User {reader_id} read {len(updated)} messages")
        return len(updated)

    async def unread_count(self, db: AsyncSession, match_id: UUID, reader_id: UUID) -> int:
        counts = await self.unread_counts(db, [match_id], reader_id)
        return counts.get(match_id, 0)

    async def unread_counts(self, db: AsyncSession, match_ids: Iterable[UUID], reader_id: UUID) -> dict[UUID, int]:
        """Unread incoming messages per match; matches without any are absent."""
        try:
            return await self.message_repo.count_unread_by_match(db, match_ids, reader_id)
        except SQLAlchemyError as e:
            raise TransientBackendError() from e

    async def subscribe(
        self,
        db: AsyncSession,
        match_id: UUID,
        subscriber_id: UUID,
        after: Optional[datetime] = None,
        on_receipt: Optional[Callable[[ReadReceipt], None]] = None
    ) -> "MessageSubscription":
        """
        Open a live subscription on a conversation.

        Messages after ``after`` (all messages when None) are replayed first,
        then live messages follow.

        Example:
            subscription = await channel.subscribe(db, match_id, user.id)
            async for message in subscription:
                ...
        """
        await self.require_active_match(db, match_id, subscriber_id)
        subscription = MessageSubscription(self, match_id, subscriber_id, after=after, on_receipt=on_receipt)
        await subscription.open(db)
        return subscription


class MessageSubscription:
    """
    Cancellable, resumable stream of one conversation's messages.

    ``drop()`` detaches from the live feed without losing the cursor;
    ``resume(db)`` re-attaches and replays every message created after the
    last one delivered. Messages at or before the cursor are dropped as
    duplicates, so ``created_at`` of delivered messages is strictly
    increasing.
    """

    def __init__(
        self,
        channel: ConversationChannel,
        match_id: UUID,
        subscriber_id: UUID,
        after: Optional[datetime] = None,
        on_receipt: Optional[Callable[[ReadReceipt], None]] = None
    ):
        self.channel = channel
        self.match_id = match_id
        self.subscriber_id = subscriber_id
        self.cursor: Optional[datetime] = ensure_utc(after)
        self.on_receipt = on_receipt
        self.read_receipts: dict[UUID, datetime] = {}
        self.match_active = True
        self.closed = False
        self.duplicates_dropped = 0
        self._live: Optional[FeedSubscription] = None
        self._backlog: deque[MessageRead] = deque()

    @property
    def connected(self) -> bool:
        return self._live is not None

    async def open(self, db: AsyncSession) -> int:
        """
        Attach to the live feed, then replay from the cursor.

        Attaching first means a message committed during the replay shows up
        in both places; the cursor drops the second copy.

        Returns:
            Number of messages replayed
        """
        if self.closed:
            raise RuntimeError(f"Subscription to match {self.match_id} was cancelled")

        if self._live is None:
            self._live = FeedSubscription(self.channel.feed, match_topic(self.match_id))

        self._backlog.clear()
        after = self.cursor
        page_size = settings.message_history_limit
        replayed = 0
        while True:
            page = await self.channel.history(db, self.match_id, self.subscriber_id, after=after, limit=page_size)
            self._backlog.extend(MessageRead.model_validate(m) for m in page)
            replayed += len(page)
            if len(page) < page_size:
                break
            after = page[-1].created_at

        if replayed:
            logger.info(f"Replayed {replayed} messages of match {self.match_id} for {self.subscriber_id}")
        return replayed

    async def resume(self, db: AsyncSession) -> int:
        """Re-attach after a disconnect and replay what was missed."""
        return await self.open(db)

    def drop(self) -> None:
        """Transient disconnect: stop receiving live events, keep the cursor."""
        if self._live is not None:
            self._live.close()
            self._live = None

    def unsubscribe(self) -> None:
        self.drop()
        self._backlog.clear()
        self.closed = True

    def _is_duplicate(self, message: MessageRead) -> bool:
        return self.cursor is not None and ensure_utc(message.created_at) <= self.cursor

    def _handle(self, event: dict) -> Optional[MessageRead]:
        kind = event.get("type")
        if kind == "message.created":
            return event["message"]
        if kind == "message.read":
            receipt: ReadReceipt = event["receipt"]
            self.read_receipts[receipt.message_id] = receipt.read_at
            if self.on_receipt is not None:
                self.on_receipt(receipt)
        elif kind == "match.deactivated":
            self.match_active = False
        return None

    async def next(self, timeout: Optional[float] = None) -> MessageRead:
        """
        Next message in ``created_at`` order.

        Raises:
            asyncio.TimeoutError: Nothing arrived within ``timeout`` seconds
            RuntimeError: The subscription is dropped or cancelled
        """
        while True:
            if self.closed:
                raise RuntimeError(f"Subscription to match {self.match_id} was cancelled")

            if self._backlog:
                message = self._backlog.popleft()
            else:
                if self._live is None:
                    raise RuntimeError(f"Subscription to match {self.match_id} is disconnected, resume it first")
                message = self._handle(await self._live.get(timeout))
                if message is None:
                    continue

            if self._is_duplicate(message):
                self.duplicates_dropped += 1
                continue

            self.cursor = ensure_utc(message.created_at)
            return message

    def __aiter__(self) -> "MessageSubscription":
        return self

    async def __anext__(self) -> MessageRead:
        if self.closed:
            raise StopAsyncIteration
        return await self.next()
