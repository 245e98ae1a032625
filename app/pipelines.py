"""
Request orchestration for the webhook bridge.

IngestionPipeline handles GET/POST /webhook, SendPipeline handles
POST /send. Both return HTTP-style outcomes and leave rendering to the
routes in main.py. They run in FastAPI's worker threads, so a write that
has started completes even if the client disconnects.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from fastapi import status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from app.errors import BadRequest, DuplicateKey, Forbidden, ParseSkip, StoreUnavailable
from app.metrics import record_message_outcome, record_send_outcome, record_verification_outcome
from app.parser import parse_notification
from app.platform_client import PlatformClient
from app.schemas import MessageType, SendRequest, SendResponse, StoredMessage
from app.storage import MessageStore
from app.verifier import verify_subscription

logger = logging.getLogger(__name__)


class IngestSummary(BaseModel):
    """Per-delivery outcome counts, logged with the request."""
    received: int = 0
    stored: int = 0
    duplicates: int = 0
    skipped: int = 0
    failed: int = 0


class IngestionPipeline:

    def __init__(self, store: MessageStore, verify_token: str):
        self.store = store
        self.verify_token = verify_token

    def verify_challenge(
        self,
        mode: Optional[str],
        token: Optional[str],
        challenge: Optional[str],
    ) -> Tuple[int, str]:
        """Returns (status code, response body) for GET /webhook."""
        try:
            body = verify_subscription(mode, token, challenge, self.verify_token)
        except BadRequest as e:
            record_verification_outcome("bad_request")
            return status.HTTP_400_BAD_REQUEST, str(e)
        except Forbidden as e:
            record_verification_outcome("forbidden")
            return status.HTTP_403_FORBIDDEN, str(e)

        record_verification_outcome("verified")
        return status.HTTP_200_OK, body

    def ingest(self, raw_body: bytes) -> IngestSummary:
        """
        Archive, parse and persist one webhook delivery.

        Never raises for per-message problems; the caller always
        acknowledges with 200 so the platform does not redeliver.
        """
        self._archive(raw_body)

        payload = self._decode(raw_body)
        skipped: List[ParseSkip] = []
        messages = parse_notification(payload, skipped=skipped)

        summary = IngestSummary(received=len(messages) + len(skipped), skipped=len(skipped))
        for message in messages:
            try:
                self.store.insert(message.to_stored())
                summary.stored += 1
            except DuplicateKey:
                summary.duplicates += 1
            except (StoreUnavailable, SQLAlchemyError) as e:
                logger.error(
                    "Failed to store inbound message",
                    extra={"message_id": message.message_id, "error": str(e)},
                )
                summary.failed += 1
            except Exception:
                # Contained per message; the delivery is still acknowledged
                logger.exception(
                    "Unexpected error storing inbound message",
                    extra={"message_id": message.message_id},
                )
                summary.failed += 1

        record_message_outcome("stored", summary.stored)
        record_message_outcome("duplicate", summary.duplicates)
        record_message_outcome("skipped", summary.skipped)
        record_message_outcome("failed", summary.failed)
        logger.info("Webhook delivery processed", extra=summary.model_dump())
        return summary

    def _archive(self, raw_body: bytes) -> None:
        try:
            self.store.archive_delivery(raw_body.decode("utf-8", errors="replace"))
        except (StoreUnavailable, SQLAlchemyError) as e:
            logger.error(f"Failed to archive webhook delivery: {e}")

    @staticmethod
    def _decode(raw_body: bytes) -> Any:
        try:
            return json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning(f"Webhook body is not valid JSON: {e}")
            return None


class SendPipeline:

    def __init__(self, store: MessageStore, client: PlatformClient):
        self.store = store
        self.client = client

    def handle_send(self, request: SendRequest) -> Tuple[int, SendResponse]:
        """
        Send a text message and record it in the log.

        Returns:
            (status code, SendResponse). Nothing is stored unless the
            platform accepted the message.
        """
        if not request.to or not request.message:
            record_send_outcome("bad_request")
            return status.HTTP_400_BAD_REQUEST, SendResponse(
                success=False, error="'to' and 'message' are required"
            )

        message_id, error = self.client.send_text(request.to, request.message)
        if error is not None:
            record_send_outcome("send_failed")
            return status.HTTP_502_BAD_GATEWAY, SendResponse(success=False, error=str(error))

        record = StoredMessage(
            message_id=message_id,
            from_phone=self.client.phone_number_id,
            to_phone=request.to,
            body=request.message,
            type=MessageType.SENT,
            timestamp=datetime.now(timezone.utc),
        )
        try:
            self.store.insert(record)
        except (DuplicateKey, StoreUnavailable, SQLAlchemyError) as e:
            # The platform accepted the message, so the caller still gets success
            logger.error(
                "Sent message could not be recorded",
                extra={"message_id": message_id, "error": str(e)},
            )
            record_send_outcome("store_failed")
            return status.HTTP_200_OK, SendResponse(success=True, message_id=message_id)

        record_send_outcome("sent")
        return status.HTTP_200_OK, SendResponse(success=True, message_id=message_id)
