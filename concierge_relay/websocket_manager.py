"""
Carrier media stream connection manager.

This module accepts carrier websocket connections and gives each one its own
relay bridge:
- Builds a RelayBridge wired to the shared registry, tenant directory and
  tool executor
- Keeps track of the bridges currently serving calls
- Removes a bridge once its call is over, however it ended

The MediaStreamManager is the only component that knows how to construct a
speech-model client from the application settings.
"""

import logging
import socket
from typing import Callable, Dict, Optional

from fastapi import WebSocket

from concierge_relay.bot.realtime_api import RealtimeClient
from concierge_relay.bot.relay_bridge import RelayBridge
from concierge_relay.config.constants import LOGGER_NAME
from concierge_relay.config.settings import Settings
from concierge_relay.services.agent_tools import ToolExecutor
from concierge_relay.services.session_registry import SessionRegistry
from concierge_relay.services.tenant_directory import TenantDirectory

logger = logging.getLogger(LOGGER_NAME)


class MediaStreamManager:
    """Serves carrier media streams, one RelayBridge per connection.

    Args:
        settings: Application settings (speech-model endpoint, voice, timeouts)
        registry: Session registry shared by all calls
        tenant_directory: Tenant profiles shared by all calls
        tool_executor: Tool executor shared by all calls
        upstream_factory: Override for building the speech-model client
    """

    def __init__(
        self,
        settings: Settings,
        registry: SessionRegistry,
        tenant_directory: TenantDirectory,
        tool_executor: Optional[ToolExecutor] = None,
        upstream_factory: Optional[Callable[[], RealtimeClient]] = None,
    ):
        self.settings = settings
        self.registry = registry
        self.tenant_directory = tenant_directory
        self.tool_executor = tool_executor
        self.upstream_factory = upstream_factory or self._create_upstream
        self.active_bridges: Dict[int, RelayBridge] = {}

    def _create_upstream(self) -> RealtimeClient:
        return RealtimeClient(
            api_key=self.settings.openai_api_key,
            model=self.settings.realtime_model,
            url=self.settings.realtime_url,
        )

    def _optimize_socket(self, websocket: WebSocket) -> None:
        """Disable Nagle's algorithm on the carrier socket when it is reachable."""
        try:
            client = websocket.client
            if hasattr(client, "sock") and client.sock is not None:
                client.sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
                logger.debug("Carrier socket: TCP_NODELAY enabled")
        except Exception as e:
            logger.warning(f"Could not optimize socket: {e}")

    def create_bridge(self, websocket: WebSocket) -> RelayBridge:
        return RelayBridge(
            downstream=websocket,
            upstream_factory=self.upstream_factory,
            registry=self.registry,
            tenant_directory=self.tenant_directory,
            tool_executor=self.tool_executor,
            voice=self.settings.voice,
            instructions=self.settings.default_instructions,
            temperature=self.settings.temperature,
            idle_timeout=self.settings.idle_timeout_seconds,
        )

    @property
    def active_count(self) -> int:
        return len(self.active_bridges)

    async def handle_websocket(self, websocket: WebSocket) -> None:
        """Handle a carrier media stream throughout its lifecycle.

        Args:
            websocket (WebSocket): The carrier's websocket connection

        The bridge accepts the socket, opens the speech-model session and
        relays until either side closes. Errors inside one call are logged
        here and never reach other calls.
        """
        self._optimize_socket(websocket)
        bridge = self.create_bridge(websocket)
        key = id(bridge)
        self.active_bridges[key] = bridge
        logger.info(f"Media stream opened ({self.active_count} active)")
        try:
            await bridge.run()
        except Exception as e:
            logger.error(f"Error in media stream: {e}", exc_info=True)
            await bridge.on_close("downstream")
        finally:
            self.active_bridges.pop(key, None)
            logger.info(f"Media stream closed ({self.active_count} active)")
