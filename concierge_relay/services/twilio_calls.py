"""
Twilio REST call resource: status lookups and outbound call creation.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from concierge_relay.config.constants import LOGGER_NAME
from concierge_relay.errors import CarrierNotConfiguredError

logger = logging.getLogger(LOGGER_NAME)

API_VERSION = "2010-04-01"
DEFAULT_LOOKUP_TIMEOUT = 10.0
STATUS_CALLBACK_EVENTS = ("initiated", "ringing", "answered", "completed")


class TwilioCalls:
    """
    Client for the Twilio REST call resource.

    Without credentials the client runs in mock mode: lookups report every
    call as unknown and no call is ever placed.

    Attributes:
        account_sid: Twilio Account SID
        auth_token: Twilio Auth Token
        base_url: API host, overridable for tests and regional edges
    """

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        base_url: str = "https://api.twilio.com",
        timeout: float = DEFAULT_LOOKUP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def mock_mode(self) -> bool:
        return not (self.account_sid and self.auth_token)

    async def fetch(self, tenant_id: Optional[str], call_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch the status of a call.

        Args:
            tenant_id: Tenant requesting the lookup (used for logging only)
            call_id: The carrier call SID

        Returns:
            Optional[Dict[str, Any]]: Call status fields, or None in mock mode or
            when the carrier does not know the call

        Raises:
            httpx.HTTPError: If the request fails or the API returns an error
        """
        if self.mock_mode:
            logger.debug(f"Status lookup for {call_id} skipped (mock mode)")
            return None

        url = f"{self.base_url}/{API_VERSION}/Accounts/{self.account_sid}/Calls/{call_id}.json"
        logger.debug(f"Fetching remote status for call {call_id} (tenant {tenant_id})")

        async with httpx.AsyncClient(
            auth=httpx.BasicAuth(self.account_sid, self.auth_token),
            timeout=self.timeout,
            headers={"Accept": "application/json"},
            transport=self._transport,
        ) as client:
            response = await client.get(url)

        if response.status_code == 404:
            logger.info(f"Call {call_id} not found at carrier")
            return None
        response.raise_for_status()

        call = response.json()
        return {
            "callSid": call.get("sid"),
            "status": call.get("status"),
            "from": call.get("from"),
            "to": call.get("to"),
            "startTime": call.get("start_time"),
            "endTime": call.get("end_time"),
            "duration": call.get("duration"),
            "direction": call.get("direction"),
        }

    async def create_call(
        self,
        to: str,
        from_: str,
        twiml_url: str,
        status_callback_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Place an outbound call that fetches its TwiML from ``twiml_url``.

        Args:
            to: Number to dial
            from_: Caller id, a number owned by the account
            twiml_url: URL Twilio POSTs to once the call is answered
            status_callback_url: URL receiving call progress callbacks

        Returns:
            Dict[str, Any]: ``callSid`` and ``status`` of the created call

        Raises:
            CarrierNotConfiguredError: In mock mode
            httpx.HTTPError: If the request fails or the API returns an error
        """
        if self.mock_mode:
            raise CarrierNotConfiguredError("Twilio credentials are not configured")

        url = f"{self.base_url}/{API_VERSION}/Accounts/{self.account_sid}/Calls.json"
        data: Dict[str, Any] = {"To": to, "From": from_, "Url": twiml_url, "Method": "POST"}
        if status_callback_url:
            data["StatusCallback"] = status_callback_url
            data["StatusCallbackMethod"] = "POST"
            data["StatusCallbackEvent"] = list(STATUS_CALLBACK_EVENTS)

        async with httpx.AsyncClient(
            auth=httpx.BasicAuth(self.account_sid, self.auth_token),
            timeout=self.timeout,
            headers={"Accept": "application/json"},
            transport=self._transport,
        ) as client:
            response = await client.post(url, data=data)
        response.raise_for_status()

        call = response.json()
        logger.info(f"Outbound call {call.get('sid')} created to {to}")
        return {"callSid": call.get("sid"), "status": call.get("status")}
