"""
Notification fan-out hub for dashboard websocket clients.

Each dashboard socket is tracked as a ``HubConnection``. A socket that presents
a valid token joins its user room (``user:{userId}``) and, when the token
names a tenant, the tenant room (``tenant:{tenantId}``). Sockets without a
valid token stay connected but anonymous and receive no targeted events.

The hub is an explicit instance created at startup and handed to whatever
needs to publish. Room membership is only changed from the event loop thread
and none of the membership updates await, so no locking is needed.
"""

import logging
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket

from concierge_relay.config.constants import (
    LOGGER_NAME,
    NOTIFICATION_EVENT,
    TENANT_ROOM_PREFIX,
    USER_ROOM_PREFIX,
)
from concierge_relay.errors import AuthenticationError, HubNotInitializedError
from concierge_relay.models.notification import Notification, NotificationType
from concierge_relay.services.auth import TokenClaims, verify_token

logger = logging.getLogger(LOGGER_NAME)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"
    JOINED_ROOMS = "joined-rooms"
    DISCONNECTED = "disconnected"


def user_room(user_id: str) -> str:
    return f"{USER_ROOM_PREFIX}{user_id}"


def tenant_room(tenant_id: str) -> str:
    return f"{TENANT_ROOM_PREFIX}{tenant_id}"


class HubConnection:
    """A dashboard socket and its room membership."""

    def __init__(self, websocket):
        self.id = str(uuid.uuid4())
        self.websocket = websocket
        self.state = ConnectionState.CONNECTING
        self.claims: Optional[TokenClaims] = None
        self.rooms: Set[str] = set()

    @property
    def is_anonymous(self) -> bool:
        return self.claims is None


class NotificationHub:
    """
    Room-scoped publish/subscribe over dashboard websockets.

    Args:
        jwt_secret: Secret used to verify dashboard tokens
        algorithms: Accepted JWT algorithms
    """

    def __init__(self, jwt_secret: Optional[str], algorithms: Optional[List[str]] = None):
        self.jwt_secret = jwt_secret
        self.algorithms = algorithms or ["HS256"]
        self.connections: Dict[str, HubConnection] = {}
        self.rooms: Dict[str, Set[HubConnection]] = {}
        self._started = False

    @property
    def is_started(self) -> bool:
        return self._started

    def start(self) -> None:
        self._started = True
        logger.info("Notification hub started")

    async def shutdown(self) -> None:
        """Close every dashboard socket and stop accepting publishes."""
        self._started = False
        for connection in list(self.connections.values()):
            try:
                await connection.websocket.close()
            except Exception as e:
                logger.debug(f"Error closing hub connection {connection.id}: {e}")
            self.disconnect(connection)
        logger.info("Notification hub shut down")

    def connect(self, websocket) -> HubConnection:
        connection = HubConnection(websocket)
        self.connections[connection.id] = connection
        logger.info(f"Hub connection opened: {connection.id}")
        return connection

    def authenticate(self, connection: HubConnection, token: Optional[str]) -> ConnectionState:
        """
        Verify a connection's token and join its rooms.

        A missing or invalid token leaves the connection anonymous; it is not
        rejected.

        Returns:
            ConnectionState: JOINED_ROOMS on success, ANONYMOUS otherwise
        """
        if not token or not self.jwt_secret:
            connection.state = ConnectionState.ANONYMOUS
            return connection.state

        try:
            claims = verify_token(token, self.jwt_secret, self.algorithms)
        except AuthenticationError as e:
            logger.warning(f"Hub connection {connection.id} stays anonymous: {e}")
            connection.state = ConnectionState.ANONYMOUS
            return connection.state

        connection.claims = claims
        connection.state = ConnectionState.AUTHENTICATED
        self._join(connection, user_room(claims.user_id))
        if claims.tenant_id:
            self._join(connection, tenant_room(claims.tenant_id))
        connection.state = ConnectionState.JOINED_ROOMS
        logger.info(f"Hub connection {connection.id} joined rooms: {sorted(connection.rooms)}")
        return connection.state

    def _join(self, connection: HubConnection, room: str) -> None:
        self.rooms.setdefault(room, set()).add(connection)
        connection.rooms.add(room)

    def disconnect(self, connection: HubConnection) -> None:
        """Remove a connection from all rooms. Safe to call more than once."""
        for room in connection.rooms:
            members = self.rooms.get(room)
            if members is not None:
                members.discard(connection)
                if not members:
                    del self.rooms[room]
        connection.rooms.clear()
        connection.state = ConnectionState.DISCONNECTED
        if self.connections.pop(connection.id, None) is not None:
            logger.info(f"Hub connection closed: {connection.id}")

    def room_size(self, room: str) -> int:
        return len(self.rooms.get(room, ()))

    async def handle_websocket(self, websocket: WebSocket, token: Optional[str]) -> None:
        """
        Serve one dashboard socket until it disconnects.

        Args:
            websocket: The accepted-to-be dashboard websocket
            token: Bearer token from the handshake, if any
        """
        await websocket.accept()
        connection = self.connect(websocket)
        self.authenticate(connection, token)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    logger.debug(f"Dashboard socket {connection.id} disconnected")
                    break
                # Dashboards do not send anything the hub acts on
                text = message.get("text")
                if text is not None:
                    logger.debug(f"Ignoring message from hub connection {connection.id}: {text[:100]}")
        finally:
            self.disconnect(connection)

    async def publish_to_user(self, user_id: str, event: str, payload: Dict[str, Any]) -> int:
        """Send an event to every socket in a user's room. Returns the number reached."""
        return await self._publish(user_room(user_id), event, payload)

    async def publish_to_tenant(self, tenant_id: str, event: str, payload: Dict[str, Any]) -> int:
        """Send an event to every socket in a tenant's room. Returns the number reached."""
        return await self._publish(tenant_room(tenant_id), event, payload)

    async def _publish(self, room: str, event: str, payload: Dict[str, Any]) -> int:
        if not self._started:
            raise HubNotInitializedError("Notification hub not initialized")

        message = {"event": event, "data": payload}
        delivered = 0
        failed = []
        for connection in list(self.rooms.get(room, ())):
            try:
                await connection.websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping hub connection {connection.id} after send failure: {e}")
                failed.append(connection)
        for connection in failed:
            self.disconnect(connection)

        logger.debug(f"Published {event} to {room}: {delivered} socket(s)")
        return delivered


class NotificationService:
    """Creates notifications and pushes them through the hub."""

    def __init__(self, hub: NotificationHub):
        self.hub = hub

    async def create_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        link: Optional[str] = None,
        tenant_id: Optional[str] = None,
        broadcast_to_tenant: bool = False,
    ) -> Notification:
        """
        Build a notification and deliver it to the user's connected sockets.

        With ``broadcast_to_tenant`` the notification also goes to the tenant
        room. Offline recipients simply miss it.

        Raises:
            HubNotInitializedError: If the hub has not been started
        """
        notification = Notification(
            user_id=user_id,
            tenant_id=tenant_id,
            title=title,
            message=message,
            type=type,
            link=link,
        )
        payload = notification.to_payload()
        await self.hub.publish_to_user(user_id, NOTIFICATION_EVENT, payload)
        if broadcast_to_tenant and tenant_id:
            await self.hub.publish_to_tenant(tenant_id, NOTIFICATION_EVENT, payload)
        logger.info(f"Notification {notification.id} created for user {user_id}")
        return notification

    async def send_notification_tool(
        self, args: Dict[str, Any], context: Dict[str, Any]
    ) -> Dict[str, Any]:
        """In-process handler for the ``send_notification`` custom tool."""
        user_id = args.get("userId")
        if not user_id:
            return {"success": False, "error": "userId is required"}
        tenant_id = context.get("tenantId")
        notification = await self.create_notification(
            user_id=str(user_id),
            title=str(args.get("title") or "Voice agent"),
            message=str(args.get("message") or ""),
            tenant_id=tenant_id,
            broadcast_to_tenant=bool(args.get("broadcastToTenant")),
        )
        return {"success": True, "message": "Notification sent", "notificationId": notification.id}
