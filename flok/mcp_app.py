from __future__ import annotations

import json
from typing import TYPE_CHECKING

from mcp.types import ToolAnnotations

from .constants import APP_VERSION, LOGGER, WRITE_METHODS
from .errors import FlokError

if TYPE_CHECKING:
    from fastmcp import FastMCP

    from .context import FlokContext


def tool_result(data: str | None = None, *, error: str | None = None) -> dict:
    if error is not None:
        return {"success": False, "error": error}
    return {"success": True, "data": data}


def _decode_body(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


async def call_graph_api(
    context: "FlokContext",
    method: str,
    path: str,
    query: dict[str, str] | None = None,
    body: str | None = None,
    account: str | None = None,
) -> dict:
    method = method.upper()
    if context.config.read_only and method.lower() in WRITE_METHODS:
        return tool_result(error=f"Read-only mode: {method} is disabled.")

    try:
        account_id = await context.resolve_account(account)
        client = context.graph_client(account_id)
        data = await client.raw(method, path, query=query, body=body)
    except (FlokError, ValueError) as error:
        LOGGER.warning("graph_api %s %s failed: %s", method, path, error)
        return tool_result(error=str(error))
    return tool_result(_decode_body(data))


async def describe_auth_status(context: "FlokContext", account: str | None = None) -> dict:
    try:
        account_id = await context.resolve_account(account)
    except FlokError as error:
        return tool_result(error=str(error))
    authenticated = await context.token_manager.is_authenticated(account_id)
    return tool_result(json.dumps({"account": account_id, "authenticated": authenticated}))


def register_tools(mcp: "FastMCP", context: "FlokContext") -> None:
    @mcp.tool(
        name="graph_api",
        description=(
            "Call any Microsoft Graph endpoint. `path` is relative to the API "
            "version (for example /me/messages) or an absolute @odata.nextLink."
        ),
        annotations=ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=not context.config.read_only,
            openWorldHint=True,
        ),
    )
    async def graph_api(
        method: str,
        path: str,
        query: dict[str, str] | None = None,
        body: str | None = None,
        account: str | None = None,
    ) -> dict:
        return await call_graph_api(context, method, path, query, body, account)

    @mcp.tool(
        name="auth_status",
        description="Report whether the resolved account has usable credentials.",
        annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False, openWorldHint=False),
    )
    async def auth_status(account: str | None = None) -> dict:
        return await describe_auth_status(context, account)

    @mcp.tool(
        name="list_accounts",
        description="List the account ids that have stored credentials.",
        annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False, openWorldHint=False),
    )
    async def list_accounts() -> dict:
        account_ids = sorted(await context.store.list_account_ids())
        return tool_result(json.dumps(account_ids))


def mount_health_route(mcp: "FastMCP", context: "FlokContext") -> None:
    from starlette.requests import Request
    from starlette.responses import JSONResponse, Response

    @mcp.custom_route("/health", methods=["GET"])
    async def health_route(request: Request) -> Response:
        del request
        return JSONResponse(
            {
                "status": "ok",
                "version": APP_VERSION,
                "read_only": context.config.read_only,
            }
        )
