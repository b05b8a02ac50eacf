"""
Pydantic models for the realtime speech-model socket protocol.

Outgoing frames (``session.update``, ``input_audio_buffer.append`` and the
tool result frames) are built from models so their shape is checked in one
place. Incoming frames are tagged by ``type`` and parse into a closed set of
models with ``UnknownRealtimeFrame`` as the catch-all.
"""

import json
from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from concierge_relay.config.constants import (
    AUDIO_FORMAT_G711_ULAW,
    DEFAULT_INSTRUCTIONS,
    DEFAULT_MODALITIES,
    DEFAULT_TEMPERATURE,
    DEFAULT_VOICE,
    REALTIME_AUDIO_DELTA,
    REALTIME_AUDIO_TRANSCRIPT_DONE,
    REALTIME_ERROR,
    REALTIME_FUNCTION_CALL_DONE,
    REALTIME_INPUT_TRANSCRIPTION_COMPLETED,
    REALTIME_RESPONSE_DONE,
)
from concierge_relay.errors import FrameParseError


# Outgoing
class TurnDetection(BaseModel):
    type: str = "server_vad"


class ToolDefinition(BaseModel):
    """A function the model may call, declared with a JSON schema."""

    type: Literal["function"] = "function"
    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


class SessionConfig(BaseModel):
    """The ``session`` body of a ``session.update`` frame.

    Fields left as None are omitted on the wire, which is how the tenant
    refinement frame stays narrower than the generic one.
    """

    turn_detection: Optional[TurnDetection] = None
    input_audio_format: Optional[str] = None
    output_audio_format: Optional[str] = None
    voice: Optional[str] = None
    instructions: Optional[str] = None
    modalities: Optional[List[str]] = None
    temperature: Optional[float] = None
    tools: Optional[List[ToolDefinition]] = None
    tool_choice: Optional[str] = None


class SessionUpdate(BaseModel):
    type: Literal["session.update"] = "session.update"
    session: SessionConfig

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class InputAudioAppend(BaseModel):
    type: Literal["input_audio_buffer.append"] = "input_audio_buffer.append"
    audio: str = Field(..., description="Base64 encoded audio, passed through")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump()


class FunctionCallOutputItem(BaseModel):
    type: Literal["function_call_output"] = "function_call_output"
    call_id: str
    output: str


class ConversationItemCreate(BaseModel):
    type: Literal["conversation.item.create"] = "conversation.item.create"
    item: FunctionCallOutputItem

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump()


class ResponseCreate(BaseModel):
    type: Literal["response.create"] = "response.create"

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump()


def build_session_update(
    voice: str = DEFAULT_VOICE,
    instructions: str = DEFAULT_INSTRUCTIONS,
    temperature: float = DEFAULT_TEMPERATURE,
    tools: Optional[List[ToolDefinition]] = None,
) -> SessionUpdate:
    """
    Build the generic session configuration sent once the upstream socket opens.

    Args:
        voice: Voice persona
        instructions: Default system instructions
        temperature: Sampling temperature
        tools: Built-in tools offered to the model, if any

    Returns:
        SessionUpdate: The full configuration frame
    """
    config = SessionConfig(
        turn_detection=TurnDetection(),
        input_audio_format=AUDIO_FORMAT_G711_ULAW,
        output_audio_format=AUDIO_FORMAT_G711_ULAW,
        voice=voice,
        instructions=instructions,
        modalities=list(DEFAULT_MODALITIES),
        temperature=temperature,
    )
    if tools:
        config.tools = tools
        config.tool_choice = "auto"
    return SessionUpdate(session=config)


def build_tenant_session_update(
    instructions: str,
    voice: str,
    tools: Optional[List[ToolDefinition]] = None,
) -> SessionUpdate:
    """Build the narrower, tenant-specific refinement frame."""
    config = SessionConfig(instructions=instructions, voice=voice)
    if tools:
        config.tools = tools
        config.tool_choice = "auto"
    return SessionUpdate(session=config)


def build_tool_result_frames(call_id: str, result: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Frames that hand a tool result back and ask the model to continue."""
    item = FunctionCallOutputItem(call_id=call_id, output=json.dumps(result))
    return [
        ConversationItemCreate(item=item).to_wire(),
        ResponseCreate().to_wire(),
    ]


# Incoming
class RealtimeFrame(BaseModel):
    """Base model for frames received from the speech model."""

    model_config = ConfigDict(extra="allow")

    type: str


class AudioDelta(RealtimeFrame):
    type: Literal["response.audio.delta"]
    delta: str
    response_id: Optional[str] = None
    item_id: Optional[str] = None


class ResponseDone(RealtimeFrame):
    type: Literal["response.done"]
    response: Optional[Dict[str, Any]] = None


class AudioTranscriptDone(RealtimeFrame):
    type: Literal["response.audio_transcript.done"]
    transcript: str = ""


class InputTranscriptionCompleted(RealtimeFrame):
    type: Literal["conversation.item.input_audio_transcription.completed"]
    transcript: str = ""


class FunctionCallArgumentsDone(RealtimeFrame):
    type: Literal["response.function_call_arguments.done"]
    name: str
    call_id: str
    arguments: str = "{}"

    def parsed_arguments(self) -> Dict[str, Any]:
        """Decode the JSON argument string, falling back to an empty object."""
        try:
            args = json.loads(self.arguments or "{}")
        except ValueError:
            return {}
        return args if isinstance(args, dict) else {}


class RealtimeErrorFrame(RealtimeFrame):
    type: Literal["error"]
    error: Dict[str, Any] = Field(default_factory=dict)


class UnknownRealtimeFrame(RealtimeFrame):
    """Any frame type the relay only logs (``session.created``, ``rate_limits.updated``, ...)."""


IncomingRealtimeFrame = Union[
    AudioDelta,
    ResponseDone,
    AudioTranscriptDone,
    InputTranscriptionCompleted,
    FunctionCallArgumentsDone,
    RealtimeErrorFrame,
    UnknownRealtimeFrame,
]

REALTIME_FRAME_TYPES: Dict[str, Type[RealtimeFrame]] = {
    REALTIME_AUDIO_DELTA: AudioDelta,
    REALTIME_RESPONSE_DONE: ResponseDone,
    REALTIME_AUDIO_TRANSCRIPT_DONE: AudioTranscriptDone,
    REALTIME_INPUT_TRANSCRIPTION_COMPLETED: InputTranscriptionCompleted,
    REALTIME_FUNCTION_CALL_DONE: FunctionCallArgumentsDone,
    REALTIME_ERROR: RealtimeErrorFrame,
}


def parse_realtime_frame(raw: Union[str, bytes]) -> IncomingRealtimeFrame:
    """
    Parse a raw speech-model frame into its typed model.

    Raises:
        FrameParseError: If the frame is not a JSON object with a ``type`` tag,
            or a known frame type is missing required fields
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise FrameParseError(f"Invalid JSON in realtime frame: {e}") from e

    if not isinstance(data, dict):
        raise FrameParseError("Realtime frame is not a JSON object")
    frame_type = data.get("type")
    if not isinstance(frame_type, str):
        raise FrameParseError("Realtime frame has no type tag")

    model = REALTIME_FRAME_TYPES.get(frame_type, UnknownRealtimeFrame)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise FrameParseError(f"Invalid {frame_type} frame: {e}") from e
