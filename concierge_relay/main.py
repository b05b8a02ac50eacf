"""
FastAPI server for the concierge relay.

This module builds the application that carriers and dashboards connect to:
- the carrier media stream endpoint, one relay bridge per call
- the TwiML webhooks that point inbound and outbound calls at that stream,
  and the carrier status callback
- outbound calls placed for a tenant
- tenant-scoped call log and call status queries
- the dashboard notification socket and the endpoint business events use to
  publish notifications

All shared components (registry, tenant directory, tool executor, hub) are
created once in ``create_app`` and kept on ``app.state``.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
from urllib.parse import quote
from xml.sax.saxutils import escape, quoteattr

import httpx
from fastapi import Depends, FastAPI, Request, Response, WebSocket, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from concierge_relay.config.constants import LOGGER_NAME
from concierge_relay.config.logging_config import configure_logging
from concierge_relay.config.settings import Settings, get_settings, validate_settings
from concierge_relay.errors import CallNotFoundError, HubNotInitializedError
from concierge_relay.models.call_session import CallStatus, OutboundCallRequest
from concierge_relay.models.notification import NotificationRequest
from concierge_relay.services.agent_tools import ToolExecutor
from concierge_relay.services.auth import TokenClaims, get_current_claims
from concierge_relay.services.notification_hub import NotificationHub, NotificationService
from concierge_relay.services.outbound_calls import OutboundCallService
from concierge_relay.services.session_registry import SessionRegistry
from concierge_relay.services.tenant_directory import TenantDirectory
from concierge_relay.services.twilio_calls import TwilioCalls
from concierge_relay.websocket_manager import MediaStreamManager

logger = logging.getLogger(LOGGER_NAME)

APP_NAME = "Concierge Relay"
APP_DESCRIPTION = (
    "Real-time media relay between a telephony carrier and a realtime speech "
    "model, with call tracking and dashboard notifications"
)
APP_VERSION = "1.0.0"
MEDIA_STREAM_PATH = "/api/voice/stream"

# Carrier call states -> registry status
CARRIER_STATUS_MAP: Dict[str, CallStatus] = {
    "queued": CallStatus.INITIATED,
    "initiated": CallStatus.INITIATED,
    "ringing": CallStatus.INITIATED,
    "in-progress": CallStatus.IN_PROGRESS,
    "completed": CallStatus.COMPLETED,
    "busy": CallStatus.FAILED,
    "failed": CallStatus.FAILED,
    "no-answer": CallStatus.FAILED,
    "canceled": CallStatus.FAILED,
}


def handle_loop_exception(loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
    """Last-resort logging for exceptions no task handled."""
    exception = context.get("exception")
    message = context.get("message", "Unhandled exception in event loop")
    if exception is not None:
        logger.critical(f"{message}: {exception}", exc_info=exception)
    else:
        logger.critical(message)


def build_stream_url(request: Request, settings: Settings) -> str:
    """Websocket URL of the media stream endpoint as the carrier should dial it."""
    if settings.public_base_url:
        base = settings.public_base_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}{MEDIA_STREAM_PATH}"
    host = request.headers.get("host", "localhost:8000")
    return f"wss://{host}{MEDIA_STREAM_PATH}"


def build_public_url(request: Request, settings: Settings, path: str) -> str:
    """HTTP URL of one of our routes as the carrier should call it."""
    base = settings.public_base_url or str(request.base_url)
    return f"{base.rstrip('/')}{path}"


def twiml_connect_stream(
    stream_url: str, tenant_id: Optional[str] = None, caller: Optional[str] = None
) -> str:
    """TwiML that connects the call to the media stream, tagging it with the tenant."""
    parameters = ""
    if tenant_id:
        parameters += f"<Parameter name=\"tenantId\" value={quoteattr(tenant_id)} />"
    if caller:
        parameters += f"<Parameter name=\"From\" value={quoteattr(caller)} />"
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Connect>"
        f"<Stream url=\"{escape(stream_url)}\">{parameters}</Stream>"
        "</Connect>"
        "</Response>"
    )


def extract_token(websocket: WebSocket) -> Optional[str]:
    """Bearer token from the Authorization header or the ``token`` query parameter."""
    authorization = websocket.headers.get("authorization")
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return websocket.query_params.get("token") or None


def create_app(
    settings: Optional[Settings] = None,
    upstream_factory=None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
    tenant_directory: Optional[TenantDirectory] = None,
) -> FastAPI:
    """
    Build the application and its shared components.

    Args:
        settings: Settings to use instead of the environment
        upstream_factory: Override for building speech-model clients
        http_transport: httpx transport for outbound HTTP (Twilio REST, tools)
        tenant_directory: Tenant directory to use instead of TENANT_CONFIG_PATH

    Returns:
        FastAPI: The configured application

    Raises:
        ConfigurationError: If required production settings are missing
    """
    settings = validate_settings(settings or get_settings())

    if tenant_directory is None:
        if settings.tenant_config_path is not None:
            tenant_directory = TenantDirectory.from_file(settings.tenant_config_path)
        else:
            tenant_directory = TenantDirectory()

    twilio = TwilioCalls(
        settings.twilio_account_sid,
        settings.twilio_auth_token,
        base_url=settings.twilio_api_base_url,
        transport=http_transport,
    )
    registry = SessionRegistry(remote_lookup=twilio)
    outbound_calls = OutboundCallService(twilio, registry, tenant_directory)
    hub = NotificationHub(settings.jwt_secret, settings.jwt_algorithms)
    notifications = NotificationService(hub)
    tool_executor = ToolExecutor(
        tenant_directory,
        internal_handlers={"send_notification": notifications.send_notification_tool},
        transport=http_transport,
        default_timeout=settings.tool_timeout_seconds,
    )
    media_manager = MediaStreamManager(
        settings,
        registry,
        tenant_directory,
        tool_executor,
        upstream_factory=upstream_factory,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        asyncio.get_running_loop().set_exception_handler(handle_loop_exception)
        hub.start()
        logger.info(f"{APP_NAME} started ({settings.environment})")
        try:
            yield
        finally:
            await hub.shutdown()
            logger.info(f"{APP_NAME} stopped")

    app = FastAPI(
        title=APP_NAME,
        description=APP_DESCRIPTION,
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.outbound_calls = outbound_calls
    app.state.tenant_directory = tenant_directory
    app.state.tool_executor = tool_executor
    app.state.hub = hub
    app.state.notifications = notifications
    app.state.media_manager = media_manager

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "error": "Invalid request",
                "details": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(HubNotInitializedError)
    async def hub_exception_handler(request: Request, exc: HubNotInitializedError):
        logger.error(f"Notification hub used before start: {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"success": False, "error": str(exc)},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
        error = "Internal server error" if settings.is_production else str(exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": error},
        )

    @app.websocket(MEDIA_STREAM_PATH)
    async def media_stream_endpoint(websocket: WebSocket):
        """Carrier media stream: one relayed call per connection."""
        await media_manager.handle_websocket(websocket)

    @app.api_route(MEDIA_STREAM_PATH, methods=["GET", "POST", "PUT", "DELETE"])
    async def media_stream_http():
        """Plain HTTP on the stream path is refused."""
        return Response(
            content="Upgrade Required: Use WebSocket connection",
            status_code=status.HTTP_426_UPGRADE_REQUIRED,
            media_type="text/plain",
        )

    @app.post("/api/twilio/webhook/voice")
    async def twilio_voice_webhook(request: Request):
        """Answer an inbound call with TwiML connecting it to the media stream."""
        form = await request.form()
        to_number = str(form.get("To") or "")
        logger.info(
            f"Inbound call from {form.get('From')} to {to_number} (Sid: {form.get('CallSid')})"
        )
        tenant = await tenant_directory.find_by_phone_number(to_number)
        if tenant is None:
            logger.warning(f"No tenant owns {to_number}; stream will use the generic configuration")
        xml = twiml_connect_stream(
            build_stream_url(request, settings), tenant.id if tenant else None
        )
        return Response(content=xml, media_type="application/xml")

    @app.post("/api/twilio/webhook/status")
    async def twilio_status_webhook(request: Request):
        """Carrier status callback; updates the call record when the call is known."""
        form = await request.form()
        call_sid = str(form.get("CallSid") or "")
        carrier_status = str(form.get("CallStatus") or "").lower()
        logger.info(f"Call status {call_sid}: {carrier_status} ({form.get('CallDuration')}s)")

        new_status = CARRIER_STATUS_MAP.get(carrier_status)
        session = registry.get_session(call_sid) if call_sid else None
        if new_status is not None and session is not None and not session.status.is_terminal:
            try:
                registry.update_status(call_sid, new_status)
            except CallNotFoundError:
                logger.warning(f"Status callback for unknown call {call_sid}")
        return Response(status_code=status.HTTP_200_OK)

    @app.post("/api/twilio/webhook/outbound")
    async def twilio_outbound_webhook(request: Request, tenantId: Optional[str] = None):
        """Connect an answered outbound call to the media stream."""
        form = await request.form()
        dialled = str(form.get("To") or "") or None
        logger.info(f"Outbound call answered by {dialled} (Sid: {form.get('CallSid')})")
        xml = twiml_connect_stream(build_stream_url(request, settings), tenantId, caller=dialled)
        return Response(content=xml, media_type="application/xml")

    @app.post("/api/voice/outbound")
    async def voice_outbound(
        body: OutboundCallRequest,
        request: Request,
        claims: TokenClaims = Depends(get_current_claims),
    ):
        """Place an outbound call for the caller's tenant."""
        if not claims.tenant_id:
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={"success": False, "error": "Token has no tenant"},
            )
        twiml_url = build_public_url(
            request, settings, f"/api/twilio/webhook/outbound?tenantId={quote(claims.tenant_id)}"
        )
        result = await outbound_calls.initiate(
            claims.tenant_id,
            body.phone_number,
            twiml_url,
            build_public_url(request, settings, "/api/twilio/webhook/status"),
        )
        if not result["success"]:
            return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=result)
        return result

    @app.get("/api/voice/logs")
    async def voice_logs(claims: TokenClaims = Depends(get_current_claims)):
        """Call records for the caller's tenant."""
        if not claims.tenant_id:
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={"success": False, "error": "Token has no tenant"},
            )
        logs = [
            session.model_dump(mode="json")
            for session in registry.get_logs(claims.tenant_id)
        ]
        return {"success": True, "logs": logs, "total": len(logs)}

    @app.get("/api/voice/status/{call_id}")
    async def voice_status(call_id: str, claims: TokenClaims = Depends(get_current_claims)):
        """Status of one call, from the registry or the carrier."""
        call_status = await registry.get_status(call_id, claims.tenant_id)
        if call_status is None:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={"success": False, "error": "Call not found"},
            )
        return {"success": True, **call_status}

    @app.websocket("/ws/notifications")
    async def notifications_endpoint(websocket: WebSocket):
        """Dashboard notification socket; a missing or bad token means anonymous."""
        await hub.handle_websocket(websocket, extract_token(websocket))

    @app.post("/api/notifications", status_code=status.HTTP_201_CREATED)
    async def create_notification(
        body: NotificationRequest,
        claims: TokenClaims = Depends(get_current_claims),
    ):
        """Publish a notification to a user (and optionally their tenant)."""
        notification = await notifications.create_notification(
            user_id=body.user_id,
            title=body.title,
            message=body.message,
            type=body.type,
            link=body.link,
            tenant_id=claims.tenant_id,
            broadcast_to_tenant=body.broadcast_to_tenant,
        )
        return {"success": True, "notification": notification.to_payload()}

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring system status.

        Returns:
            dict: Service status with call and dashboard connection counts
        """
        return {
            "status": "healthy",
            "environment": settings.environment,
            "openai_api_key_configured": bool(settings.openai_api_key),
            "twilio_mock_mode": settings.twilio_mock_mode,
            "active_streams": media_manager.active_count,
            "active_calls": registry.active_count(),
            "recorded_calls": len(registry),
            "hub_started": hub.is_started,
            "hub_connections": len(hub.connections),
        }

    @app.get("/")
    async def root():
        """Root endpoint to display basic information about the API."""
        return {
            "name": APP_NAME,
            "description": APP_DESCRIPTION,
            "version": APP_VERSION,
            "endpoints": {
                MEDIA_STREAM_PATH: "WebSocket endpoint for the carrier media stream",
                "/api/twilio/webhook/voice": "TwiML webhook for inbound calls",
                "/api/twilio/webhook/status": "Carrier call status callback",
                "/api/twilio/webhook/outbound": "TwiML webhook for answered outbound calls",
                "/api/voice/outbound": "Place an outbound call for the authenticated tenant",
                "/api/voice/logs": "Call records for the authenticated tenant",
                "/api/voice/status/{call_id}": "Status of a single call",
                "/ws/notifications": "WebSocket endpoint for dashboard notifications",
                "/api/notifications": "Publish a notification",
                "/health": "Health check endpoint",
            },
        }

    return app


_settings = get_settings()
configure_logging(_settings.log_level, _settings.log_format, _settings.log_dir)

app = create_app(_settings)
