"""
Pydantic schemas for transport event envelopes and API responses.

This module contains:
- Envelope models for the two transport event streams
- Response models for the HTTP surface
"""

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Transport Event Envelopes
# =============================================================================

class TransportKey(BaseModel):
    """Message key carried by every transport event."""
    id: str = Field(..., min_length=1, description="Transport-assigned message id")
    remote_jid: Optional[str] = Field(
        None,
        alias="remoteJid",
        description="Transport address of the chat the message belongs to"
    )

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("id")
    @classmethod
    def strip_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("key.id must not be blank")
        return v


class StatusPayload(BaseModel):
    status: Union[int, str] = Field(..., description="Transport status code")

    model_config = ConfigDict(extra="ignore")


class StatusUpdateEvent(BaseModel):
    """
    Entry of the status-update stream.

    Example:
        {"key": {"id": "WA123", "remoteJid": "1000@s.whatsapp.net"}, "update": {"status": 3}}
    """
    key: TransportKey
    update: StatusPayload

    model_config = ConfigDict(extra="ignore")


class ReceiptPayload(BaseModel):
    type: str = Field(..., min_length=1, description="Receipt kind: read or delivered")

    model_config = ConfigDict(extra="ignore")


class ReceiptUpdateEvent(BaseModel):
    """
    Entry of the receipt-update stream.

    Example:
        {"key": {"id": "WA999"}, "receipt": {"type": "read"}}
    """
    key: TransportKey
    receipt: ReceiptPayload

    model_config = ConfigDict(extra="ignore")


# =============================================================================
# Response Models
# =============================================================================

class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error description")


class EventsAcceptedResponse(BaseModel):
    """Response for an event batch queued for reconciliation."""
    status: str = Field(default="accepted")
    queued: int = Field(..., ge=0, description="Number of events queued")


class TimelineEntryResponse(BaseModel):
    recipient: str
    initiated_at: Optional[str] = None
    sent_at: Optional[str] = None
    delivered_at: Optional[str] = None
    read_at: Optional[str] = None
    failed_at: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class MessageTimelineResponse(BaseModel):
    """
    Latest status of a send plus one timeline row per recipient.

    `status` is last-write-wins and can lag or lead the timeline when the
    transport reorders events; the timeline columns are write-once.
    """
    instance_id: str
    external_id: str
    message_id: Optional[int] = None
    status: Optional[str] = None
    created_at: Optional[str] = None
    timeline: List[TimelineEntryResponse] = Field(default_factory=list)
