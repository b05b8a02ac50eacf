import asyncio
import json
import logging

import pytest

from concierge_relay.config.settings import Settings
from concierge_relay.services.session_registry import SessionRegistry
from concierge_relay.services.tenant_directory import (
    FAQ,
    CustomTool,
    TenantDirectory,
    TenantProfile,
)

TEST_JWT_SECRET = "test-secret-that-is-at-least-32-characters-long"

_DISCONNECT = object()
_CLOSED = object()


# Environment variables Settings reads, cleared so the host environment cannot leak in
SETTINGS_ENV_VARS = [name.upper() for name in Settings.model_fields] + [
    "OPENAI_REALTIME_URL",
    "OPENAI_REALTIME_MODEL",
    "REALTIME_VOICE",
    "REALTIME_TEMPERATURE",
]


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    for name in SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration before each test"""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    logging.basicConfig(level=logging.NOTSET)
    yield


class FakeDownstream:
    """Carrier websocket stand-in fed from a queue, speaking ASGI receive messages."""

    def __init__(self):
        self.incoming = asyncio.Queue()
        self.sent = []
        self.accepted = False
        self.closed = False
        self.close_count = 0

    def feed(self, *frames):
        for frame in frames:
            if not isinstance(frame, (str, bytes)):
                frame = json.dumps(frame)
            self.incoming.put_nowait(frame)

    def disconnect(self):
        self.incoming.put_nowait(_DISCONNECT)

    async def accept(self):
        self.accepted = True

    async def receive(self):
        item = await self.incoming.get()
        if item is _DISCONNECT:
            return {"type": "websocket.disconnect", "code": 1000}
        if isinstance(item, bytes):
            return {"type": "websocket.receive", "bytes": item}
        return {"type": "websocket.receive", "text": item}

    async def send_text(self, text):
        if self.closed:
            raise RuntimeError("Cannot send once the socket is closed")
        self.sent.append(json.loads(text))

    async def close(self, code=1000):
        self.closed = True
        self.close_count += 1
        self.incoming.put_nowait(_DISCONNECT)


class FakeUpstream:
    """Speech-model client stand-in with the RealtimeClient interface."""

    def __init__(self, connect_result=True):
        self.connect_result = connect_result
        self.incoming = asyncio.Queue()
        self.sent = []
        self.connected = False
        self.close_count = 0
        self._closed = False

    @property
    def closed(self):
        return self._closed or not self.connected

    def feed(self, *frames):
        for frame in frames:
            self.incoming.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self):
        """Simulate the speech model closing the socket."""
        self._closed = True
        self.incoming.put_nowait(_CLOSED)

    async def connect(self):
        self.connected = self.connect_result
        return self.connect_result

    async def send_json(self, message):
        if self.closed:
            return False
        self.sent.append(message)
        return True

    async def messages(self):
        while True:
            item = await self.incoming.get()
            if item is _CLOSED:
                return
            yield item

    async def close(self):
        if self._closed:
            return
        self._closed = True
        self.close_count += 1
        self.incoming.put_nowait(_CLOSED)


def start_frame(stream_sid="MZ100", call_sid="CA100", tenant_id=None, caller="+15551230000"):
    custom = {"From": caller}
    if tenant_id:
        custom["tenantId"] = tenant_id
    return {
        "event": "start",
        "streamSid": stream_sid,
        "start": {"streamSid": stream_sid, "callSid": call_sid, "customParameters": custom},
    }


def media_frame(payload, stream_sid="MZ100"):
    return {"event": "media", "streamSid": stream_sid, "media": {"payload": payload}}


def stop_frame(stream_sid="MZ100"):
    return {"event": "stop", "streamSid": stream_sid, "stop": {"streamSid": stream_sid}}


@pytest.fixture
def settings():
    return Settings(_env_file=None, environment="test", jwt_secret=TEST_JWT_SECRET, log_dir="logs")


@pytest.fixture
def tenant():
    return TenantProfile(
        id="t1",
        name="Bright Smiles Dental",
        phone_number="+1 (555) 010-2000",
        location="12 Main Street",
        system_prompt="You are the receptionist for Bright Smiles Dental.",
        voice="shimmer",
        faqs=[
            FAQ(
                question="What are your opening hours?",
                answer="We are open 9am to 5pm, Monday to Friday.",
                keywords=["hours", "open"],
            )
        ],
        known_callers={"+15551230000": "Jane Doe"},
    )


@pytest.fixture
def tenant_with_tools(tenant):
    return tenant.model_copy(
        update={
            "custom_tools": [
                CustomTool(
                    name="book_appointment",
                    description="Book an appointment",
                    handler_type="webhook",
                    webhook_url="https://hooks.example.com/book",
                ),
                CustomTool(name="retired_tool", is_active=False),
            ]
        }
    )


@pytest.fixture
def tenant_directory(tenant):
    return TenantDirectory([tenant])


@pytest.fixture
def registry():
    return SessionRegistry()
