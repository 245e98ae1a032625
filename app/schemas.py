"""
Pydantic schemas for request/response validation.

This module contains:
- Normalized message records passed between parser, pipelines and store
- Request models for incoming data validation
- Response models for API responses
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class MessageType(str, Enum):
    SENT = "sent"
    RECEIVED = "received"


# =============================================================================
# Message Records
# =============================================================================

class StoredMessage(BaseModel):
    """A row of the message log, as handed to MessageStore.insert."""
    message_id: str = Field(..., min_length=1)
    from_phone: str
    to_phone: str
    body: str
    type: MessageType
    timestamp: datetime

    model_config = ConfigDict(frozen=True, from_attributes=True)


class InboundMessage(BaseModel):
    """
    A text message normalized out of a webhook notification.

    timestamp is the Unix-seconds value supplied by the platform.
    """
    message_id: str
    from_phone: str
    to_phone: str
    body: str
    timestamp: int
    type: MessageType = MessageType.RECEIVED

    model_config = ConfigDict(frozen=True)

    def to_stored(self) -> StoredMessage:
        return StoredMessage(
            message_id=self.message_id,
            from_phone=self.from_phone,
            to_phone=self.to_phone,
            body=self.body,
            type=self.type,
            timestamp=datetime.fromtimestamp(self.timestamp, tz=timezone.utc),
        )


# =============================================================================
# Pydantic Request Models
# =============================================================================

class SendRequest(BaseModel):
    """
    Body of POST /send.

    Both fields are optional at the schema level so that a missing or empty
    value is reported as 400 {success: false} rather than a 422.
    """
    to: Optional[str] = Field(None, description="Recipient phone number")
    message: Optional[str] = Field(None, description="Text to send")

    model_config = {
        "json_schema_extra": {
            "examples": [{"to": "15551234567", "message": "hello"}]
        }
    }


# =============================================================================
# Pydantic Response Models
# =============================================================================

class WebhookResponse(BaseModel):
    """Acknowledgment for a webhook delivery."""
    status: str = Field(default="ok", description="Operation status")


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error description")


class SendResponse(BaseModel):
    """Result of POST /send."""
    success: bool
    message_id: Optional[str] = Field(
        None,
        serialization_alias="messageId",
        description="Platform-assigned message id"
    )
    error: Optional[str] = Field(None, description="Failure description")

    def to_body(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class MessageResponse(BaseModel):
    """
    A single entry of GET /messages.
    Maps database fields to API response format.
    """
    message_id: str
    from_phone: str
    to_phone: str
    body: str
    type: MessageType
    timestamp: datetime

    model_config = {"from_attributes": True}


class MessagesListResponse(BaseModel):
    """GET /messages page with the total count matching the filters."""
    data: list[MessageResponse] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1, le=100)
    offset: int = Field(..., ge=0)


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
