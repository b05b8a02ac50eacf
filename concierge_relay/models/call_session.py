"""
Data models for call sessions tracked by the session registry.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CallStatus(str, Enum):
    """Lifecycle state of a call."""

    INITIATED = "initiated"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CallStatus.COMPLETED, CallStatus.FAILED)


class TranscriptEntry(BaseModel):
    """One utterance in a call transcript."""

    role: str = Field(..., description="'user' for the caller, 'assistant' for the model")
    content: str
    timestamp: datetime = Field(default_factory=utc_now)


class CallSession(BaseModel):
    """Metadata for a single call, held in memory for status queries."""

    call_id: str = Field(..., description="Unique call identifier")
    tenant_id: Optional[str] = None
    phone_number: Optional[str] = None
    stream_sid: Optional[str] = None
    direction: Literal["inbound", "outbound"] = "inbound"
    status: CallStatus = CallStatus.INITIATED
    started_at: datetime = Field(default_factory=utc_now)
    ended_at: Optional[datetime] = None
    duration: Optional[int] = Field(None, description="Call length in seconds")
    booking_id: Optional[str] = None
    client_id: Optional[str] = None
    transcript: List[TranscriptEntry] = Field(default_factory=list)

    def to_status(self, source: str) -> Dict[str, Any]:
        """Render the record as a status response tagged with its source."""
        data = self.model_dump(mode="json", exclude={"transcript"})
        data["source"] = source
        return data


class OutboundCallRequest(BaseModel):
    """Body of ``POST /api/voice/outbound``."""

    phone_number: str = Field(..., min_length=1, description="Number to dial")
