import asyncio
import json
import logging
import time
import traceback
from typing import Any, AsyncIterator, Dict, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, ConnectionClosedOK

from concierge_relay.config.constants import (
    DEFAULT_REALTIME_MODEL,
    DEFAULT_REALTIME_URL,
    LOGGER_NAME,
    UPSTREAM_CONNECT_TIMEOUT,
)

logger = logging.getLogger(LOGGER_NAME)

# WebSocket configuration for low latency
WS_MAX_SIZE = 16 * 1024 * 1024  # 16MB - large enough for audio chunks
WS_MAX_QUEUE = 32
WS_PING_INTERVAL = 5
WS_PING_TIMEOUT = 10
SEND_TIMEOUT = 5.0


class RealtimeClient:
    """
    Client for one speech-model session over the realtime websocket.

    One instance carries exactly one call. There is no reconnect: if the socket
    drops, the call ends and the relay bridge closes the carrier side too.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_REALTIME_MODEL,
        url: str = DEFAULT_REALTIME_URL,
        connect_timeout: float = UPSTREAM_CONNECT_TIMEOUT,
    ):
        self.api_key = api_key
        self.model = model
        self.url = url
        self.connect_timeout = connect_timeout
        self.ws = None
        self._closed = False
        self.last_activity = 0.0
        logger.info(f"RealtimeClient initialized with model: {model}")

    @property
    def closed(self) -> bool:
        return self._closed or self.ws is None

    async def connect(self) -> bool:
        """
        Connect to the realtime websocket endpoint.

        Returns:
            bool: True if the connection was established, False otherwise
        """
        if self._closed:
            logger.warning("Cannot connect - client is closed")
            return False
        if not self.api_key:
            logger.error("Cannot connect to the speech model: OPENAI_API_KEY is not set")
            return False

        url = f"{self.url}?model={self.model}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "OpenAI-Beta": "realtime=v1",
        }

        try:
            logger.info(f"Connecting to realtime API with model: {self.model}")
            logger.debug(f"WebSocket URL: {url}")
            connection_start = time.time()
            self.ws = await asyncio.wait_for(
                websockets.connect(
                    url,
                    max_size=WS_MAX_SIZE,
                    max_queue=WS_MAX_QUEUE,
                    ping_interval=WS_PING_INTERVAL,
                    ping_timeout=WS_PING_TIMEOUT,
                    compression=None,
                    additional_headers=headers,
                ),
                timeout=self.connect_timeout,
            )
            connection_time = time.time() - connection_start
            logger.debug(f"WebSocket connection established in {connection_time:.2f} seconds")
            self.last_activity = time.time()
            logger.info("Successfully connected to realtime API")
            return True
        except asyncio.TimeoutError:
            logger.error(f"Timeout while connecting to realtime API (after {self.connect_timeout}s)")
            self.ws = None
            return False
        except Exception as e:
            logger.error(f"Failed to connect to realtime API: {e}")
            logger.debug(f"Connection error details: {traceback.format_exc()}")
            self.ws = None
            return False

    async def send_json(self, message: Dict[str, Any]) -> bool:
        """
        Send one JSON frame upstream.

        Args:
            message: The frame to serialize and send

        Returns:
            bool: True if the frame was sent, False if the socket is unusable
        """
        if self.closed:
            logger.warning(f"Cannot send {message.get('type')} - connection not active")
            return False

        try:
            await asyncio.wait_for(self.ws.send(json.dumps(message)), timeout=SEND_TIMEOUT)
            self.last_activity = time.time()
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Timeout while sending {message.get('type')}")
            return False
        except ConnectionClosedOK:
            logger.info("Connection closed normally while sending")
            self._closed = True
            return False
        except ConnectionClosedError as e:
            logger.warning(f"Connection closed while sending: {e}")
            self._closed = True
            return False
        except Exception as e:
            logger.error(f"Error sending frame: {e}")
            logger.debug(f"Send error details: {traceback.format_exc()}")
            return False

    async def messages(self) -> AsyncIterator[Union[str, bytes]]:
        """
        Yield raw frames from the speech model until the socket closes.

        A normal or abnormal close simply ends the iteration.
        """
        if self.ws is None:
            logger.error("WebSocket not initialized for receive loop")
            return

        try:
            async for message in self.ws:
                self.last_activity = time.time()
                yield message
        except ConnectionClosedOK:
            logger.info("Realtime connection closed normally")
        except ConnectionClosed as e:
            logger.warning(f"Realtime connection closed unexpectedly: {e}")
        finally:
            self._closed = True
            logger.info("Receive loop exited, connection marked as inactive")

    async def close(self) -> None:
        """Close the websocket. Closing an already-closed client is a no-op."""
        if self._closed and self.ws is None:
            return
        self._closed = True
        ws, self.ws = self.ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error while closing realtime websocket: {e}")
            logger.info("Realtime client closed")
