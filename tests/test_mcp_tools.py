import json

import httpx
import pytest

from auth.token_store import MemoryCredentialStore, save_token_set
from flok.context import FlokContext
from flok.env import FlokConfig
from flok.mcp_app import call_graph_api, describe_auth_status, register_tools, tool_result
from tests.helpers import make_token_set


def _config(tmp_path, **overrides) -> FlokConfig:
    values = {
        "client_id": "client-1",
        "token_store_path": tmp_path / "tokens.json",
        "default_account_path": tmp_path / "current-account",
    }
    values.update(overrides)
    return FlokConfig(**values)


async def _signed_in_context(tmp_path, handler, **overrides) -> FlokContext:
    store = MemoryCredentialStore()
    await save_token_set(store, "alice", make_token_set(expires_in=10**9))
    return FlokContext(
        _config(tmp_path, **overrides),
        store=store,
        graph_transport=httpx.MockTransport(handler),
    )


def test_tool_result_shapes() -> None:
    assert tool_result("{}") == {"success": True, "data": "{}"}
    assert tool_result(error="boom") == {"success": False, "error": "boom"}


@pytest.mark.asyncio
async def test_graph_api_returns_body(tmp_path) -> None:
    requests: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"displayName": "Alice"})

    async with await _signed_in_context(tmp_path, handler) as context:
        result = await call_graph_api(context, "get", "me", {"$select": "displayName"})

    assert result["success"] is True
    assert json.loads(result["data"]) == {"displayName": "Alice"}
    assert requests[0].headers["Authorization"] == "Bearer access-1"


@pytest.mark.asyncio
async def test_graph_api_reports_graph_errors(tmp_path) -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": {"code": "ItemNotFound", "message": "gone"}})

    async with await _signed_in_context(tmp_path, handler) as context:
        result = await call_graph_api(context, "GET", "me/messages/missing")

    assert result == {"success": False, "error": "Resource not found."}


@pytest.mark.asyncio
async def test_graph_api_refuses_writes_in_read_only_mode(tmp_path) -> None:
    requests: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(202)

    async with await _signed_in_context(tmp_path, handler, read_only=True) as context:
        result = await call_graph_api(context, "POST", "me/sendMail", body="{}")

    assert result["success"] is False
    assert "Read-only" in result["error"]
    assert requests == []


@pytest.mark.asyncio
async def test_graph_api_without_account(tmp_path) -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    context = FlokContext(
        _config(tmp_path),
        store=MemoryCredentialStore(),
        graph_transport=httpx.MockTransport(handler),
    )
    async with context:
        result = await call_graph_api(context, "GET", "me")

    assert result["success"] is False
    assert "flok auth login" in result["error"]


@pytest.mark.asyncio
async def test_auth_status(tmp_path) -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={})

    async with await _signed_in_context(tmp_path, handler) as context:
        result = await describe_auth_status(context)

    assert json.loads(result["data"]) == {"account": "alice", "authenticated": True}


@pytest.mark.asyncio
async def test_tools_are_registered_with_annotations(tmp_path) -> None:
    from fastmcp import Client, FastMCP

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={})

    async with await _signed_in_context(tmp_path, handler, read_only=True) as context:
        mcp = FastMCP(name="Flok")
        register_tools(mcp, context)

        async with Client(mcp) as client:
            tools = {tool.name: tool for tool in await client.list_tools()}

    assert set(tools) == {"graph_api", "auth_status", "list_accounts"}
    assert tools["auth_status"].annotations.readOnlyHint is True
    assert tools["graph_api"].annotations.destructiveHint is False
