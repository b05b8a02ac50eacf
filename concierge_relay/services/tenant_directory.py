"""
Tenant profiles used to tailor a call's speech-model session.

The directory is an in-memory store, optionally seeded from a JSON file. Its
lookups are coroutines so a database-backed directory can replace it without
touching the relay bridge.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from concierge_relay.config.constants import DEFAULT_TOOL_TIMEOUT, DEFAULT_VOICE, LOGGER_NAME
from concierge_relay.models.realtime_schemas import ToolDefinition

logger = logging.getLogger(LOGGER_NAME)

PHONE_MATCH_DIGITS = 10


class FAQ(BaseModel):
    question: str
    answer: str
    keywords: List[str] = Field(default_factory=list)


class ApiConfig(BaseModel):
    """Outbound request settings for an ``api`` custom tool."""

    endpoint: Optional[str] = None
    method: str = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    body_template: Optional[Any] = Field(
        None,
        description="JSON string with {{key}} placeholders, or a literal JSON body",
    )


class CustomTool(BaseModel):
    """A tenant-defined function the speech model may call."""

    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    handler_type: Literal["webhook", "api", "internal"] = "webhook"
    webhook_url: Optional[str] = None
    api_config: Optional[ApiConfig] = None
    internal_handler: Optional[str] = None
    timeout: float = Field(DEFAULT_TOOL_TIMEOUT, gt=0, description="Seconds")
    is_active: bool = True

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name, description=self.description, parameters=self.parameters
        )


class TenantProfile(BaseModel):
    """Configuration for one tenant's voice concierge."""

    id: str
    name: str
    phone_number: Optional[str] = None
    location: Optional[str] = None
    system_prompt: Optional[str] = None
    voice: Optional[str] = None
    faqs: List[FAQ] = Field(default_factory=list)
    known_callers: Dict[str, str] = Field(
        default_factory=dict, description="Caller phone number -> client name"
    )
    custom_tools: List[CustomTool] = Field(default_factory=list)

    @property
    def active_tools(self) -> List[CustomTool]:
        return [tool for tool in self.custom_tools if tool.is_active]

    def find_tool(self, name: str) -> Optional[CustomTool]:
        for tool in self.active_tools:
            if tool.name == name:
                return tool
        return None


def normalize_phone(number: Optional[str]) -> str:
    """Strip formatting and keep the trailing digits used for matching."""
    if not number:
        return ""
    digits = re.sub(r"\D", "", number)
    return digits[-PHONE_MATCH_DIGITS:]


def build_instructions(tenant: TenantProfile, caller_name: Optional[str] = None) -> str:
    """
    Compose the tenant-specific system instructions.

    Args:
        tenant: The tenant profile
        caller_name: Name of a returning caller, if recognised

    Returns:
        str: The tenant prompt (or a generated default) followed by caller
        context and an FAQ knowledge base when available
    """
    instructions = tenant.system_prompt or (
        f"You are the AI assistant for {tenant.name}. "
        "Be helpful, professional, and concise."
    )
    if caller_name:
        instructions += f"\n\nThe caller is {caller_name}, a returning customer."
    if tenant.faqs:
        knowledge = "\n".join(f"- {faq.question}: {faq.answer}" for faq in tenant.faqs)
        instructions += f"\n\nKnowledge Base:\n{knowledge}"
    return instructions


class TenantDirectory:
    """In-memory tenant store keyed by tenant id."""

    def __init__(self, tenants: Optional[List[TenantProfile]] = None):
        self._tenants: Dict[str, TenantProfile] = {}
        for tenant in tenants or []:
            self.add(tenant)

    @classmethod
    def from_file(cls, path: Path) -> "TenantDirectory":
        """
        Load tenants from a JSON file holding a list of tenant objects.

        Raises:
            OSError: If the file cannot be read
            ValueError: If the content is not a list of valid tenant profiles
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"Tenant file {path} must contain a JSON list")
        directory = cls([TenantProfile.model_validate(item) for item in data])
        logger.info(f"Loaded {len(directory)} tenants from {path}")
        return directory

    def add(self, tenant: TenantProfile) -> None:
        self._tenants[tenant.id] = tenant

    def __len__(self) -> int:
        return len(self._tenants)

    async def get_tenant(self, tenant_id: Optional[str]) -> Optional[TenantProfile]:
        if not tenant_id:
            return None
        return self._tenants.get(tenant_id)

    async def find_by_phone_number(self, number: Optional[str]) -> Optional[TenantProfile]:
        """Find the tenant that owns a dialled number."""
        wanted = normalize_phone(number)
        if not wanted:
            return None
        for tenant in self._tenants.values():
            if normalize_phone(tenant.phone_number) == wanted:
                return tenant
        return None

    async def lookup_caller_name(
        self, tenant_id: Optional[str], phone: Optional[str]
    ) -> Optional[str]:
        """Return the client name for a returning caller, matched on the last ten digits."""
        tenant = await self.get_tenant(tenant_id)
        wanted = normalize_phone(phone)
        if tenant is None or not wanted:
            return None
        for known, name in tenant.known_callers.items():
            if normalize_phone(known) == wanted:
                return name
        return None

    async def resolve_session_profile(
        self, tenant_id: Optional[str], caller_phone: Optional[str]
    ) -> Optional[Dict[str, Any]]:
        """
        Resolve the instructions and voice for a tenant's call.

        Returns:
            Optional[Dict[str, Any]]: The ``tenant`` with its resolved
            ``instructions`` and ``voice``, or None when the tenant is unknown
        """
        tenant = await self.get_tenant(tenant_id)
        if tenant is None:
            return None
        caller_name = await self.lookup_caller_name(tenant_id, caller_phone)
        return {
            "tenant": tenant,
            "instructions": build_instructions(tenant, caller_name),
            "voice": tenant.voice or DEFAULT_VOICE,
        }
