"""
Tests for the GET /messages endpoint and the health probes.

Tests cover:
- Default listing with both sent and received messages
- Ordering by timestamp, then message_id
- Filtering by type and sender, pagination
- Query validation
"""

import pytest

from conftest import TEST_PHONE_NUMBER_ID, notification, text_message


@pytest.fixture
def seeded_client(client):
    """Three received messages from two senders plus one sent message."""
    payload = notification(
        text_message("wamid.c", body="third", sender="111", timestamp="1700000300"),
        text_message("wamid.a", body="first", sender="111", timestamp="1700000100"),
        text_message("wamid.b", body="second", sender="222", timestamp="1700000100"),
    )
    assert client.post("/webhook", json=payload).status_code == 200
    assert client.post("/send", json={"to": "111", "message": "reply"}).status_code == 200
    return client


class TestListMessages:

    def test_empty(self, client):
        response = client.get("/messages")

        assert response.status_code == 200
        assert response.json() == {"data": [], "total": 0, "limit": 50, "offset": 0}

    def test_lists_all_in_order(self, seeded_client):
        data = seeded_client.get("/messages").json()

        assert data["total"] == 4
        received = [m["message_id"] for m in data["data"] if m["type"] == "received"]
        assert received == ["wamid.a", "wamid.b", "wamid.c"]
        # Sent "now", after every received timestamp
        assert data["data"][-1]["message_id"] == "wamid.abc"

    def test_filter_by_type(self, seeded_client):
        sent = seeded_client.get("/messages", params={"type": "sent"}).json()

        assert sent["total"] == 1
        assert sent["data"][0]["from_phone"] == TEST_PHONE_NUMBER_ID
        assert sent["data"][0]["body"] == "reply"

    def test_filter_by_sender(self, seeded_client):
        data = seeded_client.get("/messages", params={"from": "111"}).json()

        assert data["total"] == 2
        assert [m["body"] for m in data["data"]] == ["first", "third"]

    def test_pagination(self, seeded_client):
        data = seeded_client.get("/messages", params={"limit": 2, "offset": 1}).json()

        assert data["total"] == 4
        assert data["limit"] == 2
        assert data["offset"] == 1
        assert [m["message_id"] for m in data["data"]] == ["wamid.b", "wamid.c"]

    @pytest.mark.parametrize("params", [
        {"limit": 0},
        {"limit": 101},
        {"offset": -1},
        {"type": "deleted"},
    ])
    def test_invalid_query(self, client, params):
        assert client.get("/messages", params=params).status_code == 422


class TestHealth:

    def test_live(self, client):
        assert client.get("/health/live").json() == {"status": "ok", "reason": None}

    def test_ready(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_metrics_exposed(self, client):
        client.get("/webhook", params={"hub.mode": "subscribe", "hub.verify_token": "nope"})

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "webhook_verifications_total" in response.text
