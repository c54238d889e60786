"""
Integration tests for live delivery on top of the test database.

Covers conversation subscriptions across a disconnect, read receipts,
match deactivation and the inbox feed.
"""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.change_feed import change_feed, match_topic
from app.core.exceptions import InactiveMatch
from app.models.decision import DecisionKind
from app.models.match import Match
from app.models.user import User
from app.schemas.message import MessageRead
from app.services.conversation_service import ConversationChannel
from app.services.match_service import MatchDetector
from app.services.notification_service import NotificationDispatcher
from app.services.swipe_service import SwipeService


def _drain(subscription) -> list[dict]:
    events = []
    while (event := subscription.get_nowait()) is not None:
        events.append(event)
    return events


class TestConversationSubscription:
    async def test_every_message_once_in_order_across_reconnect(
        self,
        db_session: AsyncSession,
        alice: User,
        bob: User,
        active_match: Match,
    ):
        channel = ConversationChannel()
        subscription = await channel.subscribe(db_session, active_match.id, bob.id)

        first = await channel.send(db_session, active_match.id, alice.id, "one")
        assert (await subscription.next(timeout=1)).id == first.id

        subscription.drop()
        missed = [await channel.send(db_session, active_match.id, alice.id, text) for text in ("two", "three")]
        await subscription.resume(db_session)

        # A late copy of a replayed message is ignored
        change_feed.publish(
            match_topic(active_match.id),
            {"type": "message.created", "message": MessageRead.model_validate(missed[0])},
        )
        last = await channel.send(db_session, active_match.id, alice.id, "four")

        received = [(await subscription.next(timeout=1)).id for _ in range(3)]
        assert received == [m.id for m in missed] + [last.id]
        assert subscription.duplicates_dropped == 1

    async def test_subscribe_after_cursor_replays_only_newer(
        self,
        db_session: AsyncSession,
        alice: User,
        bob: User,
        active_match: Match,
    ):
        channel = ConversationChannel()
        seen = await channel.send(db_session, active_match.id, alice.id, "seen")
        unseen = await channel.send(db_session, active_match.id, bob.id, "unseen")

        subscription = await channel.subscribe(db_session, active_match.id, alice.id, after=seen.created_at)

        assert (await subscription.next(timeout=1)).id == unseen.id
        with pytest.raises(asyncio.TimeoutError):
            await subscription.next(timeout=0.05)

    async def test_sender_sees_read_receipts(
        self,
        db_session: AsyncSession,
        alice: User,
        bob: User,
        active_match: Match,
    ):
        channel = ConversationChannel()
        receipts = []
        subscription = await channel.subscribe(db_session, active_match.id, alice.id, on_receipt=receipts.append)
        message = await channel.send(db_session, active_match.id, alice.id, "did you get this?")
        await subscription.next(timeout=1)

        await channel.mark_read(db_session, [message.id], bob.id)
        with pytest.raises(asyncio.TimeoutError):
            await subscription.next(timeout=0.05)

        assert [r.message_id for r in receipts] == [message.id]
        assert receipts[0].reader_id == bob.id
        assert message.id in subscription.read_receipts

    async def test_unmatch_ends_the_conversation_for_subscribers(
        self,
        db_session: AsyncSession,
        alice: User,
        bob: User,
        active_match: Match,
    ):
        channel = ConversationChannel()
        subscription = await channel.subscribe(db_session, active_match.id, bob.id)

        await MatchDetector().unmatch(db_session, active_match.id, alice.id)

        with pytest.raises(asyncio.TimeoutError):
            await subscription.next(timeout=0.05)
        assert subscription.match_active is False
        with pytest.raises(InactiveMatch):
            await channel.send(db_session, active_match.id, bob.id, "wait")
        with pytest.raises(InactiveMatch):
            await subscription.resume(db_session)


class TestInboxFeed:
    async def test_match_reaches_both_inboxes_once(
        self,
        db_session: AsyncSession,
        alice: User,
        bob: User,
    ):
        dispatcher = NotificationDispatcher()
        alice_inbox = dispatcher.subscribe(alice.id)
        bob_inbox = dispatcher.subscribe(bob.id)
        service = SwipeService()

        await service.swipe(db_session, alice, bob.id, DecisionKind.LIKE)
        assert _drain(alice_inbox) == []
        assert [e["notification"].kind.value for e in _drain(bob_inbox)] == ["LIKE_RECEIVED"]

        result = await service.swipe(db_session, bob, alice.id, DecisionKind.LIKE)

        for inbox, other in ((alice_inbox, bob), (bob_inbox, alice)):
            events = _drain(inbox)
            formed = [e for e in events if e["type"] == "match.formed"]
            assert len(formed) == 1
            assert formed[0]["match_id"] == result.match.id
            assert formed[0]["other_user_id"] == other.id
            kinds = [e["notification"].kind.value for e in events if e["type"] == "notification.created"]
            assert kinds.count("MATCH_FORMED") == 1

        alice_inbox.close()
        bob_inbox.close()

    async def test_rewind_announces_deactivation(
        self,
        db_session: AsyncSession,
        alice: User,
        bob: User,
    ):
        service = SwipeService()
        await service.swipe(db_session, alice, bob.id, DecisionKind.LIKE)
        result = await service.swipe(db_session, bob, alice.id, DecisionKind.LIKE)
        alice_inbox = NotificationDispatcher().subscribe(alice.id)

        rewind = await service.rewind(db_session, bob)

        assert rewind.match_deactivated is True
        events = _drain(alice_inbox)
        assert [e["type"] for e in events] == ["match.deactivated"]
        assert events[0]["match_id"] == result.match.id
        assert events[0]["reason"] == "rewind"
        alice_inbox.close()
