"""
Integration tests for notification API endpoints.

Covers:
  GET   /api/v1/notifications
  PATCH /api/v1/notifications/read-all
  PATCH /api/v1/notifications/{notification_id}/read
"""

from __future__ import annotations

import uuid

from httpx import AsyncClient

from app.models.match import Match

NOTIFICATIONS = "/api/v1/notifications"


class TestListNotifications:
    async def test_match_notifies_both_users_once(
        self,
        async_client: AsyncClient,
        active_match: Match,
        alice_headers: dict,
        bob_headers: dict,
    ):
        for headers in (alice_headers, bob_headers):
            data = (await async_client.get(NOTIFICATIONS, headers=headers)).json()

            assert data["total"] == 2
            assert data["unread_count"] == 2
            assert sorted(n["kind"] for n in data["items"]) == ["LIKE_RECEIVED", "MATCH_FORMED"]
            match_formed = [n for n in data["items"] if n["kind"] == "MATCH_FORMED"]
            assert match_formed[0]["payload_ref"] == str(active_match.id)

    async def test_filter_by_kind(
        self,
        async_client: AsyncClient,
        active_match: Match,
        alice_headers: dict,
    ):
        response = await async_client.get(NOTIFICATIONS, params={"kind": "LIKE_RECEIVED"}, headers=alice_headers)

        items = response.json()["items"]
        assert len(items) == 1
        assert items[0]["title"] == "Someone likes you"

    async def test_pagination(
        self,
        async_client: AsyncClient,
        active_match: Match,
        alice_headers: dict,
    ):
        data = (await async_client.get(NOTIFICATIONS, params={"limit": 1, "page": 2}, headers=alice_headers)).json()

        assert len(data["items"]) == 1
        assert data["page"] == 2
        assert data["pages"] == 2

    async def test_empty_inbox(self, async_client: AsyncClient, carol_headers: dict):
        data = (await async_client.get(NOTIFICATIONS, headers=carol_headers)).json()

        assert data == {"items": [], "total": 0, "page": 1, "pages": 0, "unread_count": 0}


class TestMarkRead:
    async def test_mark_one_read(
        self,
        async_client: AsyncClient,
        active_match: Match,
        alice_headers: dict,
    ):
        notification_id = (await async_client.get(NOTIFICATIONS, headers=alice_headers)).json()["items"][0]["id"]

        response = await async_client.patch(f"{NOTIFICATIONS}/{notification_id}/read", headers=alice_headers)
        again = await async_client.patch(f"{NOTIFICATIONS}/{notification_id}/read", headers=alice_headers)

        assert response.status_code == 200
        assert response.json()["is_read"] is True
        assert response.json()["read_at"] is not None
        assert again.status_code == 200
        assert (await async_client.get(NOTIFICATIONS, headers=alice_headers)).json()["unread_count"] == 1

    async def test_cannot_mark_someone_elses_notification(
        self,
        async_client: AsyncClient,
        active_match: Match,
        alice_headers: dict,
        bob_headers: dict,
    ):
        notification_id = (await async_client.get(NOTIFICATIONS, headers=alice_headers)).json()["items"][0]["id"]

        response = await async_client.patch(f"{NOTIFICATIONS}/{notification_id}/read", headers=bob_headers)

        assert response.status_code == 403

    async def test_unknown_notification_returns_404(self, async_client: AsyncClient, alice_headers: dict):
        response = await async_client.patch(f"{NOTIFICATIONS}/{uuid.uuid4()}/read", headers=alice_headers)

        assert response.status_code == 404
        assert response.json()["code"] == "notification_not_found"

    async def test_mark_all_read(
        self,
        async_client: AsyncClient,
        active_match: Match,
        alice_headers: dict,
        bob_headers: dict,
    ):
        response = await async_client.patch(f"{NOTIFICATIONS}/read-all", headers=alice_headers)
        again = await async_client.patch(f"{NOTIFICATIONS}/read-all", headers=alice_headers)

        assert response.json() == {"updated_count": 2, "success": True}
        assert again.json()["updated_count"] == 0
        unread = (await async_client.get(NOTIFICATIONS, params={"unread_only": True}, headers=alice_headers)).json()
        assert unread["items"] == []
        # Other recipients are untouched
        assert (await async_client.get(NOTIFICATIONS, headers=bob_headers)).json()["unread_count"] == 2
