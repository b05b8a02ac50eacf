"""
In-memory registry of call sessions.

The registry is the leaf component the relay bridge writes to and the status
endpoints read from. It is only touched from the event loop thread and none of
its mutating methods await, so no locking is needed. Records are kept for the
lifetime of the process.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from concierge_relay.config.constants import (
    LOGGER_NAME,
    STATUS_SOURCE_LOCAL,
    STATUS_SOURCE_REMOTE,
)
from concierge_relay.errors import CallNotFoundError, DuplicateCallError
from concierge_relay.models.call_session import (
    CallSession,
    CallStatus,
    TranscriptEntry,
    utc_now,
)

logger = logging.getLogger(LOGGER_NAME)


class SessionRegistry:
    """
    Tracks call metadata keyed by call id.

    Args:
        remote_lookup: Optional object with an async ``fetch(tenant_id, call_id)``
            used by get_status when a call is not known locally
    """

    def __init__(self, remote_lookup=None):
        self._sessions: Dict[str, CallSession] = {}
        self.remote_lookup = remote_lookup
        logger.info("SessionRegistry initialized")

    def record_call(
        self,
        tenant_id: Optional[str],
        phone_number: Optional[str],
        call_id: Optional[str] = None,
        stream_sid: Optional[str] = None,
        direction: str = "inbound",
    ) -> str:
        """
        Record a new call in the ``initiated`` state.

        Args:
            tenant_id: Tenant the call belongs to, if known
            phone_number: Caller phone number, if known
            call_id: Carrier call id; a UUID is generated when omitted
            stream_sid: Media stream the call is carried on
            direction: "inbound" or "outbound"

        Returns:
            str: The call id

        Raises:
            DuplicateCallError: If the call id was already recorded
        """
        if call_id is None:
            call_id = str(uuid.uuid4())
        elif call_id in self._sessions:
            raise DuplicateCallError(call_id)

        self._sessions[call_id] = CallSession(
            call_id=call_id,
            tenant_id=tenant_id,
            phone_number=phone_number,
            stream_sid=stream_sid,
            direction=direction,
        )
        logger.info(f"Recorded call {call_id} for tenant {tenant_id}")
        return call_id

    def get_session(self, call_id: str) -> Optional[CallSession]:
        return self._sessions.get(call_id)

    def _require(self, call_id: str) -> CallSession:
        session = self._sessions.get(call_id)
        if session is None:
            raise CallNotFoundError(call_id)
        return session

    def update_status(self, call_id: str, status: CallStatus) -> CallSession:
        """
        Move a call to a new status.

        Terminal statuses stamp ``ended_at`` and the call duration.

        Raises:
            CallNotFoundError: If the call id is unknown
        """
        session = self._require(call_id)
        status = CallStatus(status)
        session.status = status
        if status.is_terminal and session.ended_at is None:
            session.ended_at = utc_now()
            session.duration = int((session.ended_at - session.started_at).total_seconds())
        logger.info(f"Call {call_id} status -> {status.value}")
        return session

    def append_transcript(self, call_id: str, role: str, content: str) -> None:
        session = self._require(call_id)
        session.transcript.append(TranscriptEntry(role=role, content=content))

    def link(
        self,
        call_id: str,
        booking_id: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> None:
        """Attach a booking or client created during the call."""
        session = self._require(call_id)
        if booking_id is not None:
            session.booking_id = booking_id
        if client_id is not None:
            session.client_id = client_id

    def get_logs(self, tenant_id: Optional[str] = None) -> List[CallSession]:
        """
        Return recorded calls in the order they were recorded.

        Args:
            tenant_id: Only return calls for this tenant when given
        """
        if tenant_id is None:
            return list(self._sessions.values())
        return [s for s in self._sessions.values() if s.tenant_id == tenant_id]

    async def get_status(
        self, call_id: str, tenant_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Look up a call's status, locally first and remotely second.

        Args:
            call_id: The call to look up
            tenant_id: When given, a local record for another tenant is not returned

        Returns:
            Optional[Dict[str, Any]]: The status tagged with its ``source``, or
            None when neither the registry nor the remote lookup knows the call
        """
        session = self._sessions.get(call_id)
        if session is not None and (tenant_id is None or session.tenant_id == tenant_id):
            return session.to_status(STATUS_SOURCE_LOCAL)

        if self.remote_lookup is None:
            return None

        try:
            remote = await self.remote_lookup.fetch(tenant_id, call_id)
        except Exception as e:
            logger.error(f"Remote status lookup failed for call {call_id}: {e}")
            return None

        if remote is None:
            return None
        return {**remote, "source": STATUS_SOURCE_REMOTE}

    def active_count(self) -> int:
        return sum(1 for s in self._sessions.values() if not s.status.is_terminal)

    def __len__(self) -> int:
        return len(self._sessions)
