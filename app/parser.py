"""
Normalization of WhatsApp Business webhook notifications.

A notification looks like:

    {"object": "whatsapp_business_account",
     "entry": [{"changes": [{"field": "messages",
                             "value": {"metadata": {"display_phone_number": ...},
                                       "messages": [{"from", "id", "timestamp",
                                                     "type": "text",
                                                     "text": {"body"}}]}}]}]}

Every level is optional. Nothing here raises on a malformed payload: a bad
message is skipped on its own and the rest of the batch is kept. Only text
messages are supported; media, interactive and other types are skipped.
"""

import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

from app.errors import ParseSkip
from app.schemas import InboundMessage

logger = logging.getLogger(__name__)

BUSINESS_ACCOUNT_OBJECT = "whatsapp_business_account"
MESSAGES_FIELD = "messages"
TEXT_TYPE = "text"


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _as_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


def _as_unix_seconds(value: Any) -> Optional[int]:
    """
    Epoch seconds from a decimal string (what the platform sends) or an int.

    None unless the value also converts to a storable UTC datetime.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        # isdigit alone accepts Unicode digits such as "²" that int() rejects
        if not (value.isascii() and value.isdigit()):
            return None
        try:
            value = int(value)
        except ValueError:
            # Longer than the interpreter's int string limit
            return None
    if not isinstance(value, int):
        return None
    try:
        datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, ValueError, OSError):
        return None
    return value


def normalize_message(raw: Any, to_phone: Optional[str]) -> InboundMessage:
    """
    Turn one entry of value.messages into an InboundMessage.

    Raises:
        ParseSkip: the message is not text or a required field is missing
    """
    raw = _as_dict(raw)
    message_id = _as_str(raw.get("id"))

    message_type = raw.get("type")
    if message_type != TEXT_TYPE:
        raise ParseSkip(f"unsupported message type: {message_type!r}", message_id)

    from_phone = _as_str(raw.get("from"))
    timestamp = _as_unix_seconds(raw.get("timestamp"))
    body = _as_str(_as_dict(raw.get("text")).get("body"))

    missing = [
        name for name, value in (
            ("id", message_id),
            ("from", from_phone),
            ("timestamp", timestamp),
            ("text.body", body),
            ("metadata.display_phone_number", to_phone),
        )
        if value is None
    ]
    if missing:
        raise ParseSkip(f"missing or invalid: {', '.join(missing)}", message_id)

    return InboundMessage(
        message_id=message_id,
        from_phone=from_phone,
        to_phone=to_phone,
        body=body,
        timestamp=timestamp,
    )


def parse_notification(
    payload: Any,
    skipped: Optional[List[ParseSkip]] = None,
) -> List[InboundMessage]:
    """
    Extract every supported inbound message from a notification.

    Args:
        payload: decoded JSON body of POST /webhook, of any shape
        skipped: if given, each skipped message's ParseSkip is appended

    Returns:
        InboundMessages in payload order (entry, then change, then message)
    """
    payload = _as_dict(payload)
    kind = payload.get("object")
    if kind != BUSINESS_ACCOUNT_OBJECT:
        logger.warning("Ignoring notification of unexpected kind", extra={"object": repr(kind)})
        return []

    messages: List[InboundMessage] = []
    for entry in _as_list(payload.get("entry")):
        for change in _as_list(_as_dict(entry).get("changes")):
            change = _as_dict(change)
            if change.get("field") != MESSAGES_FIELD:
                continue

            value = _as_dict(change.get("value"))
            to_phone = _as_str(_as_dict(value.get("metadata")).get("display_phone_number"))

            for raw in _as_list(value.get("messages")):
                try:
                    messages.append(normalize_message(raw, to_phone))
                except ParseSkip as skip:
                    logger.warning(
                        "Skipping inbound message",
                        extra={"reason": skip.reason, "message_id": skip.message_id},
                    )
                    if skipped is not None:
                        skipped.append(skip)

    logger.debug(f"Parsed {len(messages)} inbound messages")
    return messages
