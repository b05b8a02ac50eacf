"""
Pydantic models for the carrier media stream protocol.

The carrier sends JSON text frames tagged by an ``event`` field. Known kinds
are ``start``, ``media`` and ``stop``; anything else parses into
``UnknownFrame`` so newer carrier events are tolerated rather than rejected.
Audio payloads are opaque base64 strings and are never decoded here.
"""

import json
from typing import Any, Dict, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from concierge_relay.config.constants import (
    CARRIER_EVENT_MEDIA,
    CARRIER_EVENT_START,
    CARRIER_EVENT_STOP,
)
from concierge_relay.errors import FrameParseError


class StartPayload(BaseModel):
    """Body of a ``start`` frame."""

    model_config = ConfigDict(populate_by_name=True)

    streamSid: str = Field(..., description="Identifier of the media stream")
    callSid: Optional[str] = Field(None, description="Carrier call identifier")
    from_: Optional[str] = Field(None, alias="from", description="Caller number")
    customParameters: Dict[str, Any] = Field(
        default_factory=dict,
        description="Parameters attached to the stream by the voice webhook",
    )

    @property
    def tenant_id(self) -> Optional[str]:
        return self.customParameters.get("tenantId") or None

    @property
    def caller(self) -> Optional[str]:
        return self.customParameters.get("From") or self.from_

    @property
    def call_id(self) -> Optional[str]:
        return self.callSid or self.customParameters.get("CallSid")


class MediaPayload(BaseModel):
    """Body of a ``media`` frame."""

    payload: str = Field(..., description="Base64 encoded audio, passed through")
    track: Optional[str] = None


class StopPayload(BaseModel):
    """Body of a ``stop`` frame."""

    streamSid: Optional[str] = None
    callSid: Optional[str] = None


class CarrierFrame(BaseModel):
    """Base model for all carrier frames."""

    event: str = Field(..., description="Event kind tag")
    streamSid: Optional[str] = None


class StartFrame(CarrierFrame):
    event: Literal["start"]
    start: StartPayload


class MediaFrame(CarrierFrame):
    event: Literal["media"]
    media: MediaPayload


class StopFrame(CarrierFrame):
    event: Literal["stop"]
    stop: StopPayload = Field(default_factory=StopPayload)


class UnknownFrame(CarrierFrame):
    """Any event kind this relay does not act on (``connected``, ``mark``, ...)."""


class OutboundMediaFrame(BaseModel):
    """Audio sent back to the carrier."""

    event: Literal["media"] = "media"
    streamSid: str
    media: MediaPayload

    @classmethod
    def from_delta(cls, stream_sid: str, delta: str) -> "OutboundMediaFrame":
        return cls(streamSid=stream_sid, media=MediaPayload(payload=delta))

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


IncomingCarrierFrame = Union[StartFrame, MediaFrame, StopFrame, UnknownFrame]

CARRIER_FRAME_TYPES: Dict[str, Type[CarrierFrame]] = {
    CARRIER_EVENT_START: StartFrame,
    CARRIER_EVENT_MEDIA: MediaFrame,
    CARRIER_EVENT_STOP: StopFrame,
}


def parse_carrier_frame(raw: Union[str, bytes]) -> IncomingCarrierFrame:
    """
    Parse a raw carrier websocket frame into its typed model.

    Args:
        raw: The JSON text received from the carrier

    Returns:
        IncomingCarrierFrame: A StartFrame, MediaFrame, StopFrame or UnknownFrame

    Raises:
        FrameParseError: If the frame is not a JSON object with an ``event`` tag,
            or a known event kind is missing required fields
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise FrameParseError(f"Invalid JSON in carrier frame: {e}") from e

    if not isinstance(data, dict):
        raise FrameParseError("Carrier frame is not a JSON object")
    event = data.get("event")
    if not isinstance(event, str):
        raise FrameParseError("Carrier frame has no event tag")

    model = CARRIER_FRAME_TYPES.get(event, UnknownFrame)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise FrameParseError(f"Invalid {event} frame: {e}") from e
