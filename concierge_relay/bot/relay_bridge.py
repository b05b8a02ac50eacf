"""
Relay bridge between a carrier media stream and a speech-model session.

One ``RelayBridge`` serves one phone call. It owns exactly one upstream
(speech-model) socket for its downstream (carrier) socket, and the two
co-terminate: when either side closes, or the call sits idle for too long,
both are closed and the call record is closed out.
"""

import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, Optional

from concierge_relay.bot.realtime_api import RealtimeClient
from concierge_relay.config.constants import (
    DEFAULT_IDLE_TIMEOUT,
    DEFAULT_INSTRUCTIONS,
    DEFAULT_TEMPERATURE,
    DEFAULT_VOICE,
    LOGGER_NAME,
)
from concierge_relay.errors import FrameParseError, UpstreamUnavailableError
from concierge_relay.handlers.carrier_handlers import CARRIER_HANDLERS
from concierge_relay.handlers.realtime_handlers import REALTIME_HANDLERS
from concierge_relay.models.call_session import CallStatus
from concierge_relay.models.carrier_schemas import parse_carrier_frame
from concierge_relay.models.realtime_schemas import build_session_update, parse_realtime_frame
from concierge_relay.services.agent_tools import ToolExecutor
from concierge_relay.services.session_registry import SessionRegistry
from concierge_relay.services.tenant_directory import TenantDirectory

logger = logging.getLogger(LOGGER_NAME)

SIDE_DOWNSTREAM = "downstream"
SIDE_UPSTREAM = "upstream"
SIDE_WATCHDOG = "watchdog"


class RelayBridge:
    """
    Relays one call's audio between the carrier and the speech model.

    Args:
        downstream: The carrier websocket (FastAPI WebSocket or compatible)
        upstream_factory: Callable returning an unconnected RealtimeClient
        registry: Session registry receiving the call record
        tenant_directory: Tenant profiles for the configuration refinement
        tool_executor: Executes function calls requested by the model
        voice: Default voice persona
        instructions: Default system instructions
        temperature: Sampling temperature
        idle_timeout: Seconds without traffic before both sockets are closed;
            zero or less disables the watchdog
    """

    def __init__(
        self,
        downstream,
        upstream_factory: Callable[[], RealtimeClient],
        registry: SessionRegistry,
        tenant_directory: TenantDirectory,
        tool_executor: Optional[ToolExecutor] = None,
        voice: str = DEFAULT_VOICE,
        instructions: str = DEFAULT_INSTRUCTIONS,
        temperature: float = DEFAULT_TEMPERATURE,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
    ):
        self.downstream = downstream
        self.upstream_factory = upstream_factory
        self.registry = registry
        self.tenant_directory = tenant_directory
        self.tool_executor = tool_executor
        self.voice = voice
        self.instructions = instructions
        self.temperature = temperature
        self.idle_timeout = idle_timeout

        self.upstream: Optional[RealtimeClient] = None
        self.stream_sid: Optional[str] = None
        self.tenant_id: Optional[str] = None
        self.caller_phone: Optional[str] = None
        self.call_id: Optional[str] = None
        self.stopped = False
        self.timed_out = False
        self.last_activity = time.monotonic()

        self._configured = False
        self._downstream_closed = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    async def run(self) -> None:
        """
        Serve the call until either socket closes or the watchdog fires.

        The downstream reader, the upstream reader and the idle watchdog run as
        separate tasks; whichever finishes first decides which side closed,
        the others are cancelled and ``on_close`` closes out the call.
        """
        if not await self.on_downstream_open():
            return

        tasks = {
            asyncio.create_task(self._read_downstream()): SIDE_DOWNSTREAM,
            asyncio.create_task(self._read_upstream()): SIDE_UPSTREAM,
        }
        if self.idle_timeout and self.idle_timeout > 0:
            tasks[asyncio.create_task(self._watchdog())] = SIDE_WATCHDOG

        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.on_close(SIDE_DOWNSTREAM)
            raise

        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        side = tasks[next(iter(done))]
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.error(f"Relay task for {tasks[task]} failed: {task.exception()}")
        await self.on_close(side)

    async def on_downstream_open(self) -> bool:
        """
        Accept the carrier socket and open the speech-model socket.

        If the upstream socket cannot be created or connected, the carrier
        socket is closed at once and no audio is played.

        Returns:
            bool: True if both sockets are ready
        """
        await self.downstream.accept()
        logger.info("Carrier media stream connected")

        try:
            self.upstream = self.upstream_factory()
            if not await self.upstream.connect():
                raise UpstreamUnavailableError("Speech model connection failed")
        except Exception as e:
            logger.error(f"Upstream unavailable, closing carrier stream: {e}")
            self._closed = True
            if self.upstream is not None:
                await self.upstream.close()
            await self.close_downstream()
            return False

        await self.on_upstream_open()
        return True

    async def on_upstream_open(self) -> None:
        """Send the generic session configuration, once per call."""
        if self._configured:
            return
        self._configured = True
        tools = self.tool_executor.tool_definitions() if self.tool_executor else None
        update = build_session_update(
            voice=self.voice,
            instructions=self.instructions,
            temperature=self.temperature,
            tools=tools,
        )
        await self.send_upstream(update.to_wire())
        logger.info("Sent generic session configuration")

    async def on_downstream_message(self, raw: Any) -> None:
        """
        Parse and dispatch one carrier frame.

        Malformed frames and handler errors are logged and dropped; the call
        carries on.
        """
        try:
            frame = parse_carrier_frame(raw)
        except FrameParseError as e:
            logger.warning(f"Dropping malformed carrier frame: {e}")
            return

        handler = CARRIER_HANDLERS[type(frame)]
        try:
            await handler(frame, self)
        except Exception as e:
            logger.error(f"Error handling carrier {frame.event} frame: {e}", exc_info=True)

    async def on_upstream_message(self, raw: Any) -> None:
        """
        Parse and dispatch one speech-model frame.

        Malformed frames and handler errors are logged and dropped; the call
        carries on.
        """
        try:
            frame = parse_realtime_frame(raw)
        except FrameParseError as e:
            logger.warning(f"Dropping malformed speech-model frame: {e}")
            return

        handler = REALTIME_HANDLERS[type(frame)]
        try:
            await handler(frame, self)
        except Exception as e:
            logger.error(f"Error handling speech-model {frame.type} frame: {e}", exc_info=True)

    async def on_close(self, side: str) -> None:
        """
        Close out the call after one side has gone away.

        Closes the other socket if it is still open (no retry, no reconnect)
        and records the outcome: ``completed`` after a ``stop`` or a carrier
        hang-up, ``failed`` when the speech model dropped or the call went
        idle first. Calling it again is a no-op.

        Args:
            side: "downstream", "upstream" or "watchdog"
        """
        if self._closed:
            return
        self._closed = True

        if side == SIDE_WATCHDOG:
            self.timed_out = True
            logger.warning(
                f"Stream {self.stream_sid} idle for {self.idle_timeout}s, closing both sockets"
            )
        else:
            logger.info(f"Stream {self.stream_sid} closed by {side}")

        if self.stopped or side == SIDE_DOWNSTREAM:
            self.mark_call(CallStatus.COMPLETED)
        else:
            self.mark_call(CallStatus.FAILED)

        await self.close_upstream()
        await self.close_downstream()

    async def _read_downstream(self) -> None:
        while True:
            try:
                message = await self.downstream.receive()
            except RuntimeError as e:
                # Starlette raises once the socket is no longer connected
                logger.debug(f"Carrier socket unusable: {e}")
                self._downstream_closed = True
                return
            if message["type"] == "websocket.disconnect":
                logger.info("Carrier disconnected")
                self._downstream_closed = True
                return
            self.touch()
            raw = message.get("text")
            if raw is None:
                logger.warning("Dropping binary carrier frame")
                continue
            await self.on_downstream_message(raw)

    async def _read_upstream(self) -> None:
        async for raw in self.upstream.messages():
            self.touch()
            await self.on_upstream_message(raw)

    async def _watchdog(self) -> None:
        interval = min(1.0, self.idle_timeout / 4)
        while True:
            await asyncio.sleep(interval)
            if time.monotonic() - self.last_activity >= self.idle_timeout:
                return

    async def send_upstream(self, message: Dict[str, Any]) -> bool:
        if self.upstream is None or self.upstream.closed:
            logger.debug(f"Upstream closed; dropping {message.get('type')}")
            return False
        sent = await self.upstream.send_json(message)
        if sent:
            self.touch()
        return sent

    async def send_downstream(self, message: Dict[str, Any]) -> bool:
        if self._downstream_closed:
            return False
        try:
            await self.downstream.send_text(json.dumps(message))
        except Exception as e:
            logger.warning(f"Failed to send to carrier: {e}")
            return False
        self.touch()
        return True

    async def close_upstream(self) -> None:
        if self.upstream is not None:
            await self.upstream.close()

    async def close_downstream(self) -> None:
        if self._downstream_closed:
            return
        self._downstream_closed = True
        try:
            await self.downstream.close()
        except Exception as e:
            logger.debug(f"Carrier socket already closed: {e}")

    def mark_call(self, status: CallStatus) -> None:
        """Move the call record to a terminal status unless it already has one."""
        if self.call_id is None:
            return
        session = self.registry.get_session(self.call_id)
        if session is None or session.status.is_terminal:
            return
        self.registry.update_status(self.call_id, status)

    def append_transcript(self, role: str, content: str) -> None:
        if self.call_id is None or not content:
            return
        if self.registry.get_session(self.call_id) is not None:
            self.registry.append_transcript(self.call_id, role, content)

    def link_call(self, result: Dict[str, Any]) -> None:
        """Attach a booking or client id returned by a tool to the call record."""
        if self.call_id is None or self.registry.get_session(self.call_id) is None:
            return
        booking_id = result.get("bookingId")
        client = result.get("client")
        client_id = result.get("clientId") or (client.get("id") if isinstance(client, dict) else None)
        if booking_id or client_id:
            self.registry.link(self.call_id, booking_id=booking_id, client_id=client_id)
