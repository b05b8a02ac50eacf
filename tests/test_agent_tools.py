import asyncio
import json

import httpx
import pytest
from unittest.mock import AsyncMock

from concierge_relay.services.agent_tools import (
    TRANSFER_MESSAGE,
    ToolExecutor,
    detect_query_type,
    render_body_template,
)
from concierge_relay.services.tenant_directory import ApiConfig, CustomTool, TenantDirectory

CONTEXT = {"tenantId": "t1", "callerPhone": "+15551230000", "callSessionId": "CA100"}


def executor_for(tenant, *tools, handler=None, **kwargs):
    tenant = tenant.model_copy(update={"custom_tools": list(tools)})
    transport = httpx.MockTransport(handler) if handler else None
    return ToolExecutor(TenantDirectory([tenant]), transport=transport, **kwargs)


@pytest.mark.parametrize(
    "query,expected",
    [
        ("How much does a cleaning cost?", "pricing"),
        ("When are you open?", "hours"),
        ("What's your address", "location"),
        ("Which services do you offer", "services"),
        ("Can I bring my dog", "general"),
    ],
)
def test_detect_query_type(query, expected):
    assert detect_query_type(query) == expected


def test_render_body_template():
    template = '{"name": "{{name}}", "date": "{{date}}", "note": "{{missing}}"}'

    body = render_body_template(template, {"name": "Jane", "date": "2024-05-01"})

    assert body == {"name": "Jane", "date": "2024-05-01", "note": ""}
    assert render_body_template(None, {"a": 1}) == {"a": 1}
    assert render_body_template({"fixed": True}, {"a": 1}) == {"fixed": True}


@pytest.mark.asyncio
async def test_business_info_answers_from_faq(tenant_directory):
    executor = ToolExecutor(tenant_directory)

    result = await executor.execute("get_business_info", {"query": "opening hours"}, CONTEXT)

    assert result == {
        "success": True,
        "answer": "We are open 9am to 5pm, Monday to Friday.",
        "source": "faq",
    }


@pytest.mark.asyncio
async def test_business_info_without_faq_match(tenant_directory):
    executor = ToolExecutor(tenant_directory)

    result = await executor.execute("get_business_info", {"query": "pricing"}, CONTEXT)

    assert result["success"] is True
    assert result["queryType"] == "pricing"
    assert result["businessName"] == "Bright Smiles Dental"
    assert result["location"] == "12 Main Street"
    assert "pricing" in result["message"]


@pytest.mark.asyncio
async def test_business_info_unknown_tenant(tenant_directory):
    executor = ToolExecutor(tenant_directory)

    result = await executor.execute("get_business_info", {"query": "hours"}, {"tenantId": "nope"})

    assert result == {"success": False, "error": "Tenant not found"}


@pytest.mark.asyncio
async def test_transfer_to_human(tenant_directory):
    executor = ToolExecutor(tenant_directory)

    result = await executor.execute("transfer_to_human", {"reason": "billing dispute"}, CONTEXT)

    assert result == {
        "success": True,
        "action": "transfer",
        "message": TRANSFER_MESSAGE,
        "reason": "billing dispute",
    }


@pytest.mark.asyncio
async def test_unknown_tool(tenant_directory):
    executor = ToolExecutor(tenant_directory)

    result = await executor.execute("launch_rocket", {}, CONTEXT)

    assert result == {"success": False, "error": "Unknown tool: launch_rocket"}


@pytest.mark.asyncio
async def test_webhook_tool_posts_args_and_context(tenant):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"bookingId": "bk_1"})

    tool = CustomTool(name="book", handler_type="webhook", webhook_url="https://hooks.example.com/book")
    executor = executor_for(tenant, tool, handler=handler)

    result = await executor.execute("book", {"date": "2024-05-01"}, CONTEXT)

    assert result == {"success": True, "bookingId": "bk_1"}
    request = seen[0]
    assert request.method == "POST"
    assert request.headers["X-Tenant-Id"] == "t1"
    assert request.headers["X-Tool-Name"] == "book"
    assert json.loads(request.content) == {"args": {"date": "2024-05-01"}, "context": CONTEXT}


@pytest.mark.asyncio
async def test_webhook_tool_error_status(tenant):
    tool = CustomTool(name="book", handler_type="webhook", webhook_url="https://hooks.example.com/book")
    executor = executor_for(tenant, tool, handler=lambda request: httpx.Response(502))

    result = await executor.execute("book", {}, CONTEXT)

    assert result == {"success": False, "error": "Webhook returned 502"}


@pytest.mark.asyncio
async def test_webhook_tool_without_url(tenant):
    executor = executor_for(tenant, CustomTool(name="book", handler_type="webhook"))

    result = await executor.execute("book", {}, CONTEXT)

    assert result == {"success": False, "error": "No webhook URL configured"}


@pytest.mark.asyncio
async def test_webhook_tool_timeout(tenant, monkeypatch):
    tool = CustomTool(
        name="slow",
        handler_type="webhook",
        webhook_url="https://hooks.example.com/slow",
        timeout=0.05,
    )
    executor = executor_for(tenant, tool)

    async def never_returns(*args, **kwargs):
        await asyncio.sleep(10)

    monkeypatch.setattr(httpx.AsyncClient, "request", never_returns)
    result = await executor.execute("slow", {}, CONTEXT)

    assert result == {"success": False, "error": "Webhook timeout"}


@pytest.mark.asyncio
async def test_api_tool_renders_template(tenant):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[{"slot": "10:00"}])

    tool = CustomTool(
        name="slots",
        handler_type="api",
        api_config=ApiConfig(
            endpoint="https://api.example.com/slots",
            method="put",
            headers={"X-Api-Key": "k"},
            body_template='{"day": "{{day}}"}',
        ),
    )
    executor = executor_for(tenant, tool, handler=handler)

    result = await executor.execute("slots", {"day": "monday"}, CONTEXT)

    assert result == {"success": True, "result": [{"slot": "10:00"}]}
    request = seen[0]
    assert request.method == "PUT"
    assert request.headers["X-Api-Key"] == "k"
    assert json.loads(request.content) == {"day": "monday"}


@pytest.mark.asyncio
async def test_api_tool_without_endpoint(tenant):
    executor = executor_for(tenant, CustomTool(name="slots", handler_type="api"))

    result = await executor.execute("slots", {}, CONTEXT)

    assert result == {"success": False, "error": "No API endpoint configured"}


@pytest.mark.asyncio
async def test_internal_tool(tenant):
    tool = CustomTool(name="stock", handler_type="internal", internal_handler="check_inventory")
    executor = executor_for(tenant, tool)

    result = await executor.execute("stock", {"item": "floss"}, CONTEXT)

    assert result == {"success": False, "error": "Inventory checking is not available"}


@pytest.mark.asyncio
async def test_registered_internal_handler_receives_context(tenant):
    handler = AsyncMock(return_value={"success": True, "clientId": "cl_1"})
    tool = CustomTool(name="lookup", handler_type="internal", internal_handler="find_client")
    executor = executor_for(tenant, tool)
    executor.register_internal_handler("find_client", handler)

    result = await executor.execute("lookup", {"name": "Jane"}, CONTEXT)

    assert result == {"success": True, "clientId": "cl_1"}
    handler.assert_awaited_once_with({"name": "Jane"}, CONTEXT)


@pytest.mark.asyncio
async def test_unknown_internal_handler(tenant):
    tool = CustomTool(name="stock", handler_type="internal", internal_handler="nope")
    executor = executor_for(tenant, tool)

    result = await executor.execute("stock", {}, CONTEXT)

    assert result == {"success": False, "error": "Unknown internal handler: nope"}


@pytest.mark.asyncio
async def test_inactive_tool_is_unknown(tenant):
    tool = CustomTool(name="old", handler_type="internal", internal_handler="check_inventory", is_active=False)
    executor = executor_for(tenant, tool)

    result = await executor.execute("old", {}, CONTEXT)

    assert result == {"success": False, "error": "Unknown tool: old"}


def test_tool_definitions(tenant_with_tools, tenant_directory):
    executor = ToolExecutor(tenant_directory)

    assert [t.name for t in executor.tool_definitions()] == ["get_business_info", "transfer_to_human"]
    assert [t.name for t in executor.tool_definitions(tenant_with_tools)][-1] == "book_appointment"
