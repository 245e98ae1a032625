import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from app.errors import SendFailed

logger = logging.getLogger(__name__)


class PlatformClient:
    """
    Minimal client for the WhatsApp Cloud API (Meta Graph) send endpoint.

    send_text never raises: it returns (message_id, None) on success and
    (None, SendFailed) otherwise. The bearer token is never logged.
    """

    def __init__(
        self,
        *,
        access_token: str,
        phone_number_id: str,
        api_version: str = "v22.0",
        host: str = "graph.facebook.com",
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.phone_number_id = phone_number_id
        self.url = f"https://{host}/{api_version}/{phone_number_id}/messages"
        self._client = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
        )

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.BaseTransport] = None) -> "PlatformClient":
        return cls(
            access_token=settings.WHATSAPP_TOKEN,
            phone_number_id=settings.PHONE_NUMBER_ID,
            api_version=settings.API_VERSION,
            host=settings.GRAPH_API_HOST,
            timeout=settings.SEND_TIMEOUT_SECONDS,
            transport=transport,
        )

    @staticmethod
    def text_payload(to: str, body: str) -> Dict[str, Any]:
        return {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"preview_url": False, "body": body},
        }

    def send_text(self, to: str, body: str) -> Tuple[Optional[str], Optional[SendFailed]]:
        """
        POST /{phone_number_id}/messages with a text message.

        Returns:
            (message_id, None) when the platform accepted the message,
            (None, SendFailed) on transport error, non-2xx status or a
            response without messages[0].id
        """
        logger.info("Sending text message", extra={"to": to})
        try:
            response = self._client.post(self.url, json=self.text_payload(to, body))
        except httpx.HTTPError as e:
            logger.error(f"Send transport error: {e!r}")
            return None, SendFailed(f"transport error: {e}")

        if not response.is_success:
            logger.error(
                "Send rejected by platform",
                extra={"status": response.status_code, "response": response.text[:500]},
            )
            return None, SendFailed(
                f"platform returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            message_id = response.json()["messages"][0]["id"]
        except (ValueError, KeyError, IndexError, TypeError):
            logger.error("Send response missing messages[0].id", extra={"response": response.text[:500]})
            return None, SendFailed("platform response missing message id", status_code=response.status_code)

        if not isinstance(message_id, str) or not message_id:
            return None, SendFailed("platform response missing message id", status_code=response.status_code)

        logger.info("Text message sent", extra={"message_id": message_id})
        return message_id, None

    def close(self) -> None:
        self._client.close()
