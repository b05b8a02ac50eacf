"""
Handles frames arriving from the speech model.

Only audio deltas travel back to the carrier. Transcripts are kept on the call
record, function calls are executed through the tool executor and answered on
the same socket, and everything else is logged.
"""

import logging

from concierge_relay.config.constants import LOGGER_NAME
from concierge_relay.models.carrier_schemas import OutboundMediaFrame
from concierge_relay.models.realtime_schemas import (
    AudioDelta,
    AudioTranscriptDone,
    FunctionCallArgumentsDone,
    InputTranscriptionCompleted,
    RealtimeErrorFrame,
    ResponseDone,
    UnknownRealtimeFrame,
    build_tool_result_frames,
)

logger = logging.getLogger(LOGGER_NAME)


async def handle_audio_delta(frame: AudioDelta, bridge) -> None:
    """Wrap a generated audio chunk in the carrier media envelope and send it down."""
    if not bridge.stream_sid:
        logger.debug("Dropping audio delta received before the stream started")
        return
    outbound = OutboundMediaFrame.from_delta(bridge.stream_sid, frame.delta)
    await bridge.send_downstream(outbound.to_wire())


async def handle_response_done(frame: ResponseDone, bridge) -> None:
    logger.debug(f"Response completed on stream {bridge.stream_sid}")


async def handle_assistant_transcript(frame: AudioTranscriptDone, bridge) -> None:
    logger.info(f"AI: {frame.transcript}")
    bridge.append_transcript("assistant", frame.transcript)


async def handle_caller_transcript(frame: InputTranscriptionCompleted, bridge) -> None:
    logger.info(f"Caller: {frame.transcript}")
    bridge.append_transcript("user", frame.transcript)


async def handle_function_call(frame: FunctionCallArgumentsDone, bridge) -> None:
    """
    Execute a tool the model asked for and hand the result back.

    The result goes upstream as a ``function_call_output`` item followed by
    ``response.create`` so the model continues speaking. The upstream reader
    waits for this, so at most one tool runs per call at a time.

    Args:
        frame: The completed function call
        bridge: The RelayBridge serving this call
    """
    if bridge.tool_executor is None:
        logger.warning(f"No tool executor configured; ignoring call to {frame.name}")
        return

    logger.info(f"Function call: {frame.name}")
    context = {
        "tenantId": bridge.tenant_id,
        "callerPhone": bridge.caller_phone,
        "callSessionId": bridge.call_id,
    }
    result = await bridge.tool_executor.execute(frame.name, frame.parsed_arguments(), context)
    bridge.link_call(result)

    for message in build_tool_result_frames(frame.call_id, result):
        await bridge.send_upstream(message)


async def handle_error(frame: RealtimeErrorFrame, bridge) -> None:
    logger.error(f"Received error from speech model: {frame.error}")


async def handle_unknown(frame: UnknownRealtimeFrame, bridge) -> None:
    logger.debug(f"Received message of type: {frame.type}")


REALTIME_HANDLERS = {
    AudioDelta: handle_audio_delta,
    ResponseDone: handle_response_done,
    AudioTranscriptDone: handle_assistant_transcript,
    InputTranscriptionCompleted: handle_caller_transcript,
    FunctionCallArgumentsDone: handle_function_call,
    RealtimeErrorFrame: handle_error,
    UnknownRealtimeFrame: handle_unknown,
}
