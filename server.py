from __future__ import annotations

import os
from typing import TYPE_CHECKING

from flok.constants import LOGGER
from flok.context import FlokContext
from flok.env import FlokConfig, load_config, load_env, setup_logging
from flok.mcp_app import mount_health_route, register_tools

if TYPE_CHECKING:
    from fastmcp import FastMCP


def create_mcp(config: FlokConfig | None = None) -> "FastMCP":
    from fastmcp import FastMCP

    load_env()
    setup_logging()
    config = config or load_config()
    context = FlokContext(config)

    mcp = FastMCP(name="Flok")
    register_tools(mcp, context)
    mount_health_route(mcp, context)
    setattr(mcp, "_flok_context", context)
    LOGGER.info(
        "Flok MCP ready tenant=%s read_only=%s api_version=%s",
        config.tenant_id,
        config.read_only,
        config.api_version,
    )
    return mcp


def main(config: FlokConfig | None = None) -> None:
    transport = os.getenv("MCP_TRANSPORT", "stdio").strip() or "stdio"
    mcp = create_mcp(config)
    if transport == "stdio":
        mcp.run(transport="stdio")
        return
    host = os.getenv("MCP_HOST", "127.0.0.1")
    port = int(os.getenv("MCP_PORT", "8000"))
    mcp.run(transport=transport, host=host, port=port)


if __name__ == "__main__":
    main()
