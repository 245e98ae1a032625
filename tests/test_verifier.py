"""
Tests for the webhook subscription handshake.

Tests cover:
- Every presence/absence combination of mode, token and challenge
- GET /webhook status codes and echoed challenge
"""

import itertools

import pytest

from app.errors import BadRequest, Forbidden
from app.verifier import verify_subscription
from conftest import TEST_VERIFY_TOKEN


MODES = [None, "subscribe", "unsubscribe", ""]
TOKENS = [None, TEST_VERIFY_TOKEN, "wrong-token", ""]
CHALLENGES = [None, "1158201444", ""]


class TestVerifySubscription:
    """Pure decision function."""

    @pytest.mark.parametrize("mode,token,challenge", itertools.product(MODES, TOKENS, CHALLENGES))
    def test_all_combinations(self, mode, token, challenge):
        if mode is None or token is None:
            with pytest.raises(BadRequest):
                verify_subscription(mode, token, challenge, TEST_VERIFY_TOKEN)
        elif mode == "subscribe" and token == TEST_VERIFY_TOKEN:
            assert verify_subscription(mode, token, challenge, TEST_VERIFY_TOKEN) == (challenge or "")
        else:
            with pytest.raises(Forbidden):
                verify_subscription(mode, token, challenge, TEST_VERIFY_TOKEN)

    def test_challenge_returned_verbatim(self):
        challenge = "  abc 123 éü "
        assert verify_subscription("subscribe", TEST_VERIFY_TOKEN, challenge, TEST_VERIFY_TOKEN) == challenge

    def test_deterministic(self):
        results = {
            verify_subscription("subscribe", TEST_VERIFY_TOKEN, "42", TEST_VERIFY_TOKEN)
            for _ in range(5)
        }
        assert results == {"42"}


class TestWebhookVerifyRoute:
    """GET /webhook."""

    def test_verified_echoes_challenge(self, client):
        response = client.get(
            "/webhook",
            params={
                "hub.mode": "subscribe",
                "hub.verify_token": TEST_VERIFY_TOKEN,
                "hub.challenge": "1158201444",
            },
        )

        assert response.status_code == 200
        assert response.text == "1158201444"

    def test_verified_without_challenge_returns_empty_body(self, client):
        response = client.get(
            "/webhook",
            params={"hub.mode": "subscribe", "hub.verify_token": TEST_VERIFY_TOKEN},
        )

        assert response.status_code == 200
        assert response.text == ""

    def test_wrong_token_forbidden(self, client):
        response = client.get(
            "/webhook",
            params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "1"},
        )

        assert response.status_code == 403

    def test_wrong_mode_forbidden(self, client):
        response = client.get(
            "/webhook",
            params={"hub.mode": "unsubscribe", "hub.verify_token": TEST_VERIFY_TOKEN, "hub.challenge": "1"},
        )

        assert response.status_code == 403

    def test_missing_mode_bad_request(self, client):
        response = client.get(
            "/webhook",
            params={"hub.verify_token": TEST_VERIFY_TOKEN, "hub.challenge": "1"},
        )

        assert response.status_code == 400

    def test_missing_token_bad_request(self, client):
        response = client.get("/webhook", params={"hub.mode": "subscribe", "hub.challenge": "1"})

        assert response.status_code == 400

    def test_no_params_bad_request(self, client):
        response = client.get("/webhook")

        assert response.status_code == 400
