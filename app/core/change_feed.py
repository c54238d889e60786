"""
In-process change feed for real-time delivery.

Rows written by the services are published here as small event dicts on a
topic; every live subscriber of that topic owns an ``asyncio.Queue`` and
receives its own copy. Topics mirror the row filters a managed backend's
change feed would use:

- ``match:<match_id>``   message inserts and read receipts for one conversation
- ``inbox:<user_id>``    notification inserts for one recipient

Delivery is best effort: a subscriber that is not attached when an event is
published never sees it. Gap recovery is the job of the subscriber
(``MessageSubscription.resume`` replays from the database).
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional, Set, Tuple
from uuid import UUID
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def match_topic(match_id: UUID) -> str:
    return f"match:{match_id}"


def inbox_topic(user_id: UUID) -> str:
    return f"inbox:{user_id}"


class ChangeFeed:
    """
    Topic → subscriber queues registry.

    Publishing never blocks: queues are unbounded, and a queue that is
    detached while an event is in flight simply drops it.
    """

    def __init__(self):
        # topic → Set[asyncio.Queue]
        self.topics: Dict[str, Set[asyncio.Queue]] = {}

    def subscribe(self, topic: str) -> asyncio.Queue:
        """
        Attach a new subscriber queue to a topic.

        Args:
            topic: Topic name (see ``match_topic`` / ``inbox_topic``)

        Returns:
            The queue that will receive every event published from now on
        """
        queue: asyncio.Queue = asyncio.Queue()
        self.topics.setdefault(topic, set()).add(queue)
        logger.debug(f"[ChangeFeed] Subscribed to {topic} - subscribers: {len(self.topics[topic])}")
        return queue

    def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        """Detach a subscriber queue. Unknown queues are ignored."""
        subscribers = self.topics.get(topic)
        if not subscribers:
            return

        subscribers.discard(queue)
        if not subscribers:
            del self.topics[topic]
            logger.debug(f"[ChangeFeed] Removed topic {topic} (no more subscribers)")

    def publish(self, topic: str, event: Dict[str, Any]) -> int:
        """
        Publish an event to every subscriber currently attached to a topic.

        Args:
            topic: Topic name
            event: Event payload; shared between subscribers, treat as read-only

        Returns:
            Number of subscribers the event was handed to
        """
        subscribers = self.topics.get(topic)
        if not subscribers:
            logger.debug(f"[ChangeFeed] No subscribers for {topic}, event {event.get('type')} not delivered live")
            return 0

        for queue in list(subscribers):
            queue.put_nowait(event)

        return len(subscribers)

    def subscriber_count(self, topic: str) -> int:
        return len(self.topics.get(topic, ()))

    def get_stats(self) -> dict:
        """Get statistics about active subscriptions."""
        return {
            "topics": len(self.topics),
            "subscriptions": sum(len(queues) for queues in self.topics.values()),
        }


# Global singleton instance
change_feed = ChangeFeed()


class FeedSubscription:
    """
    Cancellable handle on one topic.

    Example:
        sub = FeedSubscription(change_feed, inbox_topic(user_id))
        event = await sub.get(timeout=30)
        sub.close()
    """

    def __init__(self, feed: ChangeFeed, topic: str):
        self.feed = feed
        self.topic = topic
        self.queue: Optional[asyncio.Queue] = feed.subscribe(topic)

    @property
    def closed(self) -> bool:
        return self.queue is None

    async def get(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Wait for the next event.

        Raises:
            asyncio.TimeoutError: If nothing arrives within ``timeout`` seconds
            RuntimeError: If the subscription was closed
        """
        if self.queue is None:
            raise RuntimeError(f"Subscription to {self.topic} is closed")
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)

    def get_nowait(self) -> Optional[Dict[str, Any]]:
        """Next queued event, or None if nothing is pending."""
        if self.queue is None:
            return None
        try:
            return self.queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def close(self) -> None:
        if self.queue is not None:
            self.feed.unsubscribe(self.topic, self.queue)
            self.queue = None


# ── Post-commit publishing ────────────────────────────────────────────────────
#
# Services stage events on the session while they write rows; the owner of the
# unit of work publishes them only once the transaction has committed, so a
# subscriber never sees a row that could still be rolled back.

_PENDING_KEY = "pending_feed_events"


def stage(db: AsyncSession, topic: str, event: Dict[str, Any]) -> None:
    """Queue an event to be published after the session commits."""
    db.info.setdefault(_PENDING_KEY, []).append((topic, event))


def pending_events(db: AsyncSession) -> List[Tuple[str, Dict[str, Any]]]:
    return list(db.info.get(_PENDING_KEY, []))


async def commit_and_publish(db: AsyncSession, feed: Optional[ChangeFeed] = None) -> int:
    """
    Commit the session, then publish everything staged on it.

    Returns:
        Number of events published
    """
    feed = feed or change_feed
    await db.commit()
    events = db.info.pop(_PENDING_KEY, [])
    for topic, event in events:
        feed.publish(topic, event)
    return len(events)


async def rollback_and_discard(db: AsyncSession) -> None:
    """Roll the session back and drop its staged events."""
    db.info.pop(_PENDING_KEY, None)
    await db.rollback()
