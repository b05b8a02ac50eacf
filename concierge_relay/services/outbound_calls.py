"""
Outbound calls placed on behalf of a tenant.

The call is created through the Twilio REST API with the tenant's own number
as caller id. Once answered, Twilio fetches TwiML that connects it to the
media stream, so the relay serves it like any inbound call. The call is
recorded in the session registry as soon as Twilio returns its SID.
"""

import logging
import re
from typing import Any, Dict, Optional

import httpx

from concierge_relay.config.constants import LOGGER_NAME
from concierge_relay.services.session_registry import SessionRegistry
from concierge_relay.services.tenant_directory import TenantDirectory
from concierge_relay.services.twilio_calls import TwilioCalls

logger = logging.getLogger(LOGGER_NAME)

DIAL_FORMATTING = re.compile(r"[\s()\-]")


def clean_phone_number(number: str) -> str:
    """Drop spaces, dashes and parentheses; keep a leading ``+``."""
    return DIAL_FORMATTING.sub("", number)


class OutboundCallService:
    """
    Places outbound calls and records them.

    Args:
        twilio: Twilio REST client
        registry: Session registry receiving the call record
        tenant_directory: Source of the tenant's caller id
    """

    def __init__(
        self,
        twilio: TwilioCalls,
        registry: SessionRegistry,
        tenant_directory: TenantDirectory,
    ):
        self.twilio = twilio
        self.registry = registry
        self.tenant_directory = tenant_directory

    async def initiate(
        self,
        tenant_id: str,
        phone_number: str,
        twiml_url: str,
        status_callback_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Dial ``phone_number`` for a tenant.

        Never raises for expected failures; they come back as
        ``{"success": False, "error": ...}``.

        Args:
            tenant_id: Tenant placing the call
            phone_number: Number to dial, formatting allowed
            twiml_url: URL serving the TwiML that connects the media stream
            status_callback_url: URL receiving call progress callbacks

        Returns:
            Dict[str, Any]: ``success`` with ``callId`` and ``status``, or an error
        """
        to = clean_phone_number(phone_number)
        if not to:
            return {"success": False, "error": "Phone number is required"}

        tenant = await self.tenant_directory.get_tenant(tenant_id)
        if tenant is None or not tenant.phone_number:
            logger.warning(f"Tenant {tenant_id} has no phone number for outbound calls")
            return {"success": False, "error": "No phone number configured for this tenant"}

        if self.twilio.mock_mode:
            logger.warning("Outbound call refused: Twilio credentials are not configured")
            return {"success": False, "error": "Twilio is not configured"}

        logger.info(f"Initiating outbound call to {to} for tenant {tenant_id}")
        try:
            call = await self.twilio.create_call(
                to,
                clean_phone_number(tenant.phone_number),
                twiml_url,
                status_callback_url,
            )
        except httpx.HTTPError as e:
            logger.error(f"Outbound call to {to} failed: {e}")
            return {"success": False, "error": "Failed to initiate call"}

        call_id = self.registry.record_call(
            tenant_id, to, call_id=call["callSid"], direction="outbound"
        )
        return {
            "success": True,
            "callId": call_id,
            "status": call["status"],
            "message": "Call initiated successfully",
        }
