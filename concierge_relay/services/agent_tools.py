"""
Tool execution for function calls requested by the speech model mid-call.

Built-in tools answer from the tenant profile and never leave the process.
Tenant custom tools are backed by an outbound webhook, a generic API request
or an in-process handler; every outbound request is bounded by the tool's
timeout. ``ToolExecutor.execute`` always returns a JSON-able dict and turns
every failure into ``{"success": False, "error": ...}`` so the conversation
can carry on.
"""

import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from concierge_relay.config.constants import DEFAULT_TOOL_TIMEOUT, LOGGER_NAME
from concierge_relay.models.realtime_schemas import ToolDefinition
from concierge_relay.services.tenant_directory import (
    CustomTool,
    TenantDirectory,
    TenantProfile,
)

logger = logging.getLogger(LOGGER_NAME)

InternalHandler = Callable[[Dict[str, Any], Dict[str, Any]], Awaitable[Dict[str, Any]]]

TRANSFER_MESSAGE = (
    "I'll connect you with one of our team members. Please hold for just a moment."
)
PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")

BUILTIN_TOOL_DEFINITIONS: List[ToolDefinition] = [
    ToolDefinition(
        name="get_business_info",
        description=(
            "Get information about the business such as services, pricing, "
            "hours, or location."
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": (
                        "What information the caller is asking about "
                        '(e.g., "services", "pricing", "hours", "location")'
                    ),
                }
            },
            "required": ["query"],
        },
    ),
    ToolDefinition(
        name="transfer_to_human",
        description=(
            "Transfer the call to a human agent when the AI cannot help or "
            "the caller requests it."
        ),
        parameters={
            "type": "object",
            "properties": {
                "reason": {
                    "type": "string",
                    "description": "The reason for the transfer",
                }
            },
            "required": ["reason"],
        },
    ),
]


class ToolTimeoutError(Exception):
    """An outbound tool request did not complete within its timeout."""


def detect_query_type(query: str) -> str:
    """Bucket a free-form business question into a coarse category."""
    query = query.lower()
    if any(word in query for word in ("price", "cost", "fee")):
        return "pricing"
    if any(word in query for word in ("hour", "open", "close")):
        return "hours"
    if any(word in query for word in ("location", "address", "where")):
        return "location"
    if any(word in query for word in ("service", "offer")):
        return "services"
    return "general"


def render_body_template(template: Any, args: Dict[str, Any]) -> Any:
    """
    Build a request body from an ``api`` tool's body template.

    String templates have ``{{key}}`` placeholders replaced by argument values
    and are then parsed as JSON; any other template is used as-is, and no
    template at all means the raw arguments are sent.
    """
    if template is None:
        return args
    if not isinstance(template, str):
        return template

    def substitute(match: "re.Match[str]") -> str:
        value = args.get(match.group(1))
        return "" if value is None else str(value)

    return json.loads(PLACEHOLDER_PATTERN.sub(substitute, template))


async def check_inventory(args: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
    return {"success": False, "error": "Inventory checking is not available"}


async def send_notification(args: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
    return {"success": True, "message": "Notification sent"}


DEFAULT_INTERNAL_HANDLERS: Dict[str, InternalHandler] = {
    "check_inventory": check_inventory,
    "send_notification": send_notification,
}


class ToolExecutor:
    """
    Executes built-in and tenant custom tools.

    Args:
        directory: Tenant directory used for FAQ answers and custom tool lookup
        internal_handlers: Overrides/additions to the in-process handler registry
        transport: httpx transport for outbound requests (tests use MockTransport)
        default_timeout: Timeout in seconds for tools that do not set their own
    """

    def __init__(
        self,
        directory: TenantDirectory,
        internal_handlers: Optional[Dict[str, InternalHandler]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        default_timeout: float = DEFAULT_TOOL_TIMEOUT,
    ):
        self.directory = directory
        self.internal_handlers: Dict[str, InternalHandler] = dict(DEFAULT_INTERNAL_HANDLERS)
        if internal_handlers:
            self.internal_handlers.update(internal_handlers)
        self._transport = transport
        self.default_timeout = default_timeout

        self._builtins: Dict[str, Callable[..., Awaitable[Dict[str, Any]]]] = {
            "get_business_info": self._get_business_info,
            "transfer_to_human": self._transfer_to_human,
        }

    def register_internal_handler(self, name: str, handler: InternalHandler) -> None:
        self.internal_handlers[name] = handler

    def tool_definitions(self, tenant: Optional[TenantProfile] = None) -> List[ToolDefinition]:
        """Built-in tools plus the tenant's active custom tools."""
        tools = list(BUILTIN_TOOL_DEFINITIONS)
        if tenant is not None:
            tools.extend(tool.to_definition() for tool in tenant.active_tools)
        return tools

    async def execute(
        self, name: str, args: Dict[str, Any], context: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Execute a tool and return its JSON result.

        Args:
            name: Tool name requested by the model
            args: Decoded tool arguments
            context: ``tenantId``, ``callerPhone`` and ``callSessionId`` of the call

        Returns:
            Dict[str, Any]: The tool result; failures carry ``success: False``
            and an ``error`` message
        """
        logger.info(f"Executing tool: {name} with args: {args}")
        try:
            builtin = self._builtins.get(name)
            if builtin is not None:
                return await builtin(args, context)

            tenant = await self.directory.get_tenant(context.get("tenantId"))
            tool = tenant.find_tool(name) if tenant is not None else None
            if tool is None:
                return {"success": False, "error": f"Unknown tool: {name}"}
            return await self._execute_custom_tool(tool, args, context)
        except Exception as e:
            logger.error(f"Error executing tool {name}: {e}", exc_info=True)
            return {"success": False, "error": f"Failed to execute {name}: {e}"}

    async def _get_business_info(
        self, args: Dict[str, Any], context: Dict[str, Any]
    ) -> Dict[str, Any]:
        tenant = await self.directory.get_tenant(context.get("tenantId"))
        if tenant is None:
            return {"success": False, "error": "Tenant not found"}

        query = str(args.get("query", ""))
        lower_query = query.lower()
        for faq in tenant.faqs:
            keyword_hit = any(kw.lower() in lower_query for kw in faq.keywords)
            if keyword_hit or (lower_query and lower_query in faq.question.lower()):
                return {"success": True, "answer": faq.answer, "source": "faq"}

        return {
            "success": True,
            "queryType": detect_query_type(lower_query),
            "businessName": tenant.name,
            "location": tenant.location,
            "message": (
                f"For detailed information about {query}, I'd recommend speaking "
                "with one of our team members. Would you like me to have someone "
                "call you back?"
            ),
        }

    async def _transfer_to_human(
        self, args: Dict[str, Any], context: Dict[str, Any]
    ) -> Dict[str, Any]:
        reason = args.get("reason")
        logger.info(f"Transfer requested for call {context.get('callSessionId')}: {reason}")
        return {
            "success": True,
            "action": "transfer",
            "message": TRANSFER_MESSAGE,
            "reason": reason,
        }

    async def _execute_custom_tool(
        self, tool: CustomTool, args: Dict[str, Any], context: Dict[str, Any]
    ) -> Dict[str, Any]:
        logger.info(f"Executing custom tool: {tool.name} ({tool.handler_type})")
        handlers = {
            "webhook": self._execute_webhook,
            "api": self._execute_api,
            "internal": self._execute_internal,
        }
        handler = handlers.get(tool.handler_type)
        if handler is None:
            return {"success": False, "error": f"Unknown handler type: {tool.handler_type}"}
        try:
            return await handler(tool, args, context)
        except ToolTimeoutError as e:
            logger.warning(f"Custom tool {tool.name} timed out")
            return {"success": False, "error": str(e)}
        except Exception as e:
            logger.error(f"Custom tool error ({tool.name}): {e}")
            return {"success": False, "error": str(e) or "Custom tool execution failed"}

    async def _request(
        self, timeout: float, label: str, method: str, url: str, **kwargs
    ) -> Dict[str, Any]:
        """Send one outbound request, cancelling it once the timeout elapses."""

        async def send() -> httpx.Response:
            async with httpx.AsyncClient(transport=self._transport) as client:
                return await client.request(method, url, **kwargs)

        try:
            response = await asyncio.wait_for(send(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ToolTimeoutError(f"{label} timeout") from e

        if response.is_error:
            raise RuntimeError(f"{label} returned {response.status_code}")

        result = response.json() if response.content else {}
        if isinstance(result, dict):
            return {"success": True, **result}
        return {"success": True, "result": result}

    async def _execute_webhook(
        self, tool: CustomTool, args: Dict[str, Any], context: Dict[str, Any]
    ) -> Dict[str, Any]:
        if not tool.webhook_url:
            return {"success": False, "error": "No webhook URL configured"}

        body = {
            "args": args,
            "context": {
                "tenantId": context.get("tenantId"),
                "callerPhone": context.get("callerPhone"),
                "callSessionId": context.get("callSessionId"),
            },
        }
        headers = {
            "Content-Type": "application/json",
            "X-Tenant-Id": str(context.get("tenantId") or ""),
            "X-Tool-Name": tool.name,
        }
        return await self._request(
            tool.timeout or self.default_timeout,
            "Webhook",
            "POST",
            tool.webhook_url,
            json=body,
            headers=headers,
        )

    async def _execute_api(
        self, tool: CustomTool, args: Dict[str, Any], context: Dict[str, Any]
    ) -> Dict[str, Any]:
        config = tool.api_config
        if config is None or not config.endpoint:
            return {"success": False, "error": "No API endpoint configured"}

        body = render_body_template(config.body_template, args)
        headers = {"Content-Type": "application/json", **config.headers}
        return await self._request(
            tool.timeout or self.default_timeout,
            "API",
            config.method.upper(),
            config.endpoint,
            json=body,
            headers=headers,
        )

    async def _execute_internal(
        self, tool: CustomTool, args: Dict[str, Any], context: Dict[str, Any]
    ) -> Dict[str, Any]:
        handler = self.internal_handlers.get(tool.internal_handler or "")
        if handler is None:
            return {
                "success": False,
                "error": f"Unknown internal handler: {tool.internal_handler}",
            }
        return await handler(args, context)
