import pytest
from unittest.mock import AsyncMock, MagicMock

from concierge_relay.errors import CallNotFoundError, DuplicateCallError
from concierge_relay.models.call_session import CallStatus
from concierge_relay.services.session_registry import SessionRegistry


def test_record_call_generates_id(registry):
    call_id = registry.record_call("t1", "+15551230000")

    session = registry.get_session(call_id)
    assert session is not None
    assert session.status == CallStatus.INITIATED
    assert session.tenant_id == "t1"
    assert len(registry) == 1


def test_record_call_rejects_duplicate_id(registry):
    registry.record_call("t1", "+15551230000", call_id="CA1")

    with pytest.raises(DuplicateCallError):
        registry.record_call("t1", "+15551230000", call_id="CA1")


def test_terminal_status_stamps_end_time(registry):
    registry.record_call("t1", None, call_id="CA1")
    registry.update_status("CA1", CallStatus.IN_PROGRESS)
    assert registry.get_session("CA1").ended_at is None
    assert registry.active_count() == 1

    session = registry.update_status("CA1", "completed")

    assert session.status == CallStatus.COMPLETED
    assert session.ended_at is not None
    assert session.duration >= 0
    assert registry.active_count() == 0


def test_update_unknown_call_raises(registry):
    with pytest.raises(CallNotFoundError):
        registry.update_status("missing", CallStatus.FAILED)


def test_link_and_transcript(registry):
    registry.record_call("t1", None, call_id="CA1")

    registry.link("CA1", booking_id="bk_1")
    registry.link("CA1", client_id="cl_1")
    registry.append_transcript("CA1", "user", "Hello")

    session = registry.get_session("CA1")
    assert (session.booking_id, session.client_id) == ("bk_1", "cl_1")
    assert session.transcript[0].content == "Hello"


def test_get_logs_filters_by_tenant(registry):
    registry.record_call("t1", None, call_id="CA1")
    registry.record_call("t2", None, call_id="CA2")
    registry.record_call("t1", None, call_id="CA3")

    assert [s.call_id for s in registry.get_logs("t1")] == ["CA1", "CA3"]
    assert len(registry.get_logs()) == 3


@pytest.mark.asyncio
async def test_get_status_prefers_local_record():
    lookup = MagicMock()
    lookup.fetch = AsyncMock()
    registry = SessionRegistry(remote_lookup=lookup)
    registry.record_call("t1", "+15551230000", call_id="CA1")

    status = await registry.get_status("CA1", "t1")

    assert status["source"] == "local_log"
    assert status["call_id"] == "CA1"
    assert status["status"] == "initiated"
    assert "transcript" not in status
    lookup.fetch.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_status_falls_back_to_remote():
    lookup = MagicMock()
    lookup.fetch = AsyncMock(return_value={"callSid": "CA9", "status": "completed"})
    registry = SessionRegistry(remote_lookup=lookup)

    status = await registry.get_status("CA9", "t1")

    assert status == {"callSid": "CA9", "status": "completed", "source": "twilio_api"}
    lookup.fetch.assert_awaited_once_with("t1", "CA9")


@pytest.mark.asyncio
async def test_get_status_hides_other_tenants_calls():
    lookup = MagicMock()
    lookup.fetch = AsyncMock(return_value=None)
    registry = SessionRegistry(remote_lookup=lookup)
    registry.record_call("t2", None, call_id="CA1")

    assert await registry.get_status("CA1", "t1") is None


@pytest.mark.asyncio
async def test_get_status_remote_failure_is_not_found():
    lookup = MagicMock()
    lookup.fetch = AsyncMock(side_effect=RuntimeError("carrier down"))
    registry = SessionRegistry(remote_lookup=lookup)

    assert await registry.get_status("CA1", "t1") is None


@pytest.mark.asyncio
async def test_get_status_without_remote_lookup(registry):
    assert await registry.get_status("CA1") is None
