from urllib.parse import parse_qs

import httpx
import pytest

from concierge_relay.errors import CarrierNotConfiguredError
from concierge_relay.services.twilio_calls import TwilioCalls


def make_transport(status_code=200, body=None, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=body if body is not None else {})

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_mock_mode_without_credentials():
    lookup = TwilioCalls(None, None, transport=make_transport())

    assert lookup.mock_mode is True
    assert await lookup.fetch("t1", "CA1") is None


@pytest.mark.asyncio
async def test_fetch_maps_call_resource():
    seen = []
    body = {
        "sid": "CA1",
        "status": "completed",
        "from": "+15551230000",
        "to": "+15550102000",
        "start_time": "Tue, 30 Apr 2024 10:00:00 +0000",
        "end_time": "Tue, 30 Apr 2024 10:03:00 +0000",
        "duration": "180",
        "direction": "inbound",
    }
    lookup = TwilioCalls("AC123", "token", transport=make_transport(body=body, seen=seen))

    status = await lookup.fetch("t1", "CA1")

    assert status == {
        "callSid": "CA1",
        "status": "completed",
        "from": "+15551230000",
        "to": "+15550102000",
        "startTime": "Tue, 30 Apr 2024 10:00:00 +0000",
        "endTime": "Tue, 30 Apr 2024 10:03:00 +0000",
        "duration": "180",
        "direction": "inbound",
    }
    request = seen[0]
    assert request.url.path == "/2010-04-01/Accounts/AC123/Calls/CA1.json"
    assert request.headers["authorization"].startswith("Basic ")


@pytest.mark.asyncio
async def test_fetch_unknown_call_returns_none():
    lookup = TwilioCalls("AC123", "token", transport=make_transport(status_code=404))

    assert await lookup.fetch("t1", "CA404") is None


@pytest.mark.asyncio
async def test_fetch_error_status_raises():
    lookup = TwilioCalls("AC123", "token", transport=make_transport(status_code=500))

    with pytest.raises(httpx.HTTPStatusError):
        await lookup.fetch("t1", "CA1")


@pytest.mark.asyncio
async def test_create_call_posts_form():
    seen = []
    transport = make_transport(status_code=201, body={"sid": "CA777", "status": "queued"}, seen=seen)
    lookup = TwilioCalls("AC123", "token", transport=transport)

    call = await lookup.create_call(
        "+15551230000",
        "+15550102000",
        "https://relay.example.com/api/twilio/webhook/outbound?tenantId=t1",
        "https://relay.example.com/api/twilio/webhook/status",
    )

    assert call == {"callSid": "CA777", "status": "queued"}
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/2010-04-01/Accounts/AC123/Calls.json"
    form = parse_qs(request.content.decode())
    assert form["To"] == ["+15551230000"]
    assert form["From"] == ["+15550102000"]
    assert form["Url"] == ["https://relay.example.com/api/twilio/webhook/outbound?tenantId=t1"]
    assert form["StatusCallback"] == ["https://relay.example.com/api/twilio/webhook/status"]
    assert form["StatusCallbackEvent"] == ["initiated", "ringing", "answered", "completed"]


@pytest.mark.asyncio
async def test_create_call_refused_in_mock_mode():
    seen = []
    lookup = TwilioCalls(None, None, transport=make_transport(seen=seen))

    with pytest.raises(CarrierNotConfiguredError):
        await lookup.create_call("+15551230000", "+15550102000", "https://relay.example.com/twiml")

    assert seen == []


@pytest.mark.asyncio
async def test_create_call_error_status_raises():
    lookup = TwilioCalls("AC123", "token", transport=make_transport(status_code=400))

    with pytest.raises(httpx.HTTPStatusError):
        await lookup.create_call("+15551230000", "+15550102000", "https://relay.example.com/twiml")
