"""
Webhook subscription handshake.

The platform calls GET /webhook with hub.mode, hub.verify_token and
hub.challenge; the endpoint proves ownership by echoing the challenge.
"""

import hmac
import logging
from typing import Optional

from app.errors import BadRequest, Forbidden

logger = logging.getLogger(__name__)

SUBSCRIBE_MODE = "subscribe"


def verify_subscription(
    mode: Optional[str],
    token: Optional[str],
    challenge: Optional[str],
    expected_token: str,
) -> str:
    """
    Decide a subscription handshake.

    Args:
        mode: hub.mode query parameter
        token: hub.verify_token query parameter
        challenge: hub.challenge query parameter
        expected_token: configured VERIFY_TOKEN

    Returns:
        The challenge to echo back ("" when none was sent)

    Raises:
        BadRequest: mode or token missing
        Forbidden: mode is not "subscribe" or the token does not match
    """
    if mode is None or token is None:
        logger.warning("Webhook verification missing mode or token")
        raise BadRequest("hub.mode and hub.verify_token are required")

    token_ok = hmac.compare_digest(token.encode("utf-8"), expected_token.encode("utf-8"))
    if mode == SUBSCRIBE_MODE and token_ok:
        logger.info("Webhook verified")
        return challenge if challenge is not None else ""

    logger.warning("Webhook verification rejected", extra={"mode": mode})
    raise Forbidden("verification failed")
