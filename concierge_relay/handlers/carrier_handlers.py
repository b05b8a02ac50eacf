"""
Handles frames arriving from the carrier media stream.

Each handler takes the parsed frame and the relay bridge serving the call.
The ``start`` handler records the call and sends the tenant refinement of the
session configuration; it runs before the next carrier frame is read, so the
refinement always reaches the speech model ahead of any further audio.
"""

import logging

from concierge_relay.config.constants import LOGGER_NAME
from concierge_relay.errors import DuplicateCallError
from concierge_relay.models.call_session import CallStatus
from concierge_relay.models.carrier_schemas import (
    MediaFrame,
    StartFrame,
    StopFrame,
    UnknownFrame,
)
from concierge_relay.models.realtime_schemas import (
    InputAudioAppend,
    build_tenant_session_update,
)

logger = logging.getLogger(LOGGER_NAME)


async def handle_start(frame: StartFrame, bridge) -> None:
    """
    Handle the ``start`` frame that opens a media stream.

    Remembers the stream id, records the call in the session registry and,
    when the call carries a known tenant id, sends one narrower
    ``session.update`` with the tenant's instructions, voice and tools.
    Calls for an unknown tenant keep the generic configuration.

    Args:
        frame: The parsed start frame
        bridge: The RelayBridge serving this call
    """
    start = frame.start
    bridge.stream_sid = start.streamSid
    bridge.tenant_id = start.tenant_id
    bridge.caller_phone = start.caller
    logger.info(f"Stream started: {bridge.stream_sid} (tenant {bridge.tenant_id})")

    call_id = start.call_id
    try:
        bridge.call_id = bridge.registry.record_call(
            bridge.tenant_id,
            bridge.caller_phone,
            call_id=call_id,
            stream_sid=bridge.stream_sid,
        )
    except DuplicateCallError:
        logger.warning(f"Call {call_id} already recorded, reusing the existing record")
        bridge.call_id = call_id
    session = bridge.registry.get_session(bridge.call_id)
    # Outbound calls are recorded when placed, before their stream exists
    if session.stream_sid is None:
        session.stream_sid = bridge.stream_sid
    if not session.status.is_terminal:
        bridge.registry.update_status(bridge.call_id, CallStatus.IN_PROGRESS)

    if not bridge.tenant_id:
        return

    profile = await bridge.tenant_directory.resolve_session_profile(
        bridge.tenant_id, bridge.caller_phone
    )
    if profile is None:
        logger.warning(
            f"Unknown tenant {bridge.tenant_id}; continuing with the generic configuration"
        )
        return

    tenant = profile["tenant"]
    tools = None
    if bridge.tool_executor is not None and tenant.active_tools:
        tools = bridge.tool_executor.tool_definitions(tenant)
    update = build_tenant_session_update(
        instructions=profile["instructions"],
        voice=profile["voice"],
        tools=tools,
    )
    await bridge.send_upstream(update.to_wire())
    logger.info(f"Sent tenant configuration for {tenant.id} on stream {bridge.stream_sid}")


async def handle_media(frame: MediaFrame, bridge) -> None:
    """Forward one audio payload upstream, unchanged."""
    await bridge.send_upstream(InputAudioAppend(audio=frame.media.payload).to_wire())


async def handle_stop(frame: StopFrame, bridge) -> None:
    """
    Handle the ``stop`` frame that ends the call.

    Marks the call completed and closes the speech-model socket; the bridge
    then closes the carrier side as the paired socket.
    """
    logger.info(f"Stream stopped: {frame.stop.streamSid or bridge.stream_sid}")
    bridge.stopped = True
    bridge.mark_call(CallStatus.COMPLETED)
    await bridge.close_upstream()


async def handle_unknown(frame: UnknownFrame, bridge) -> None:
    logger.debug(f"Ignoring carrier event: {frame.event}")


CARRIER_HANDLERS = {
    StartFrame: handle_start,
    MediaFrame: handle_media,
    StopFrame: handle_stop,
    UnknownFrame: handle_unknown,
}
