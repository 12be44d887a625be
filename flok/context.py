from __future__ import annotations

import os

import httpx

from auth.accounts import read_default_account, resolve_account
from auth.device_code import DeviceCodeFlow
from auth.token_manager import TokenManager
from auth.token_store import CredentialStore, FileCredentialStore

from .env import FlokConfig
from .http import GraphClient


class FlokContext:
    """Shared wiring used by the CLI and the MCP server."""

    def __init__(
        self,
        config: FlokConfig,
        *,
        store: CredentialStore | None = None,
        graph_transport: httpx.AsyncBaseTransport | None = None,
        auth_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.store = store or FileCredentialStore(config.token_store_path)
        self._auth_client = httpx.AsyncClient(timeout=config.timeout, transport=auth_transport)
        self.flow = DeviceCodeFlow(
            config.client_id,
            config.tenant_id,
            config.scopes,
            client=self._auth_client,
        )
        self.token_manager = TokenManager(self.store, self.flow)
        self._graph_transport = graph_transport
        self._graph_clients: dict[str, GraphClient] = {}

    async def resolve_account(self, explicit: str | None = None) -> str:
        return resolve_account(
            explicit or self.config.account,
            environ=os.environ,
            default_account=read_default_account(self.config.default_account_path),
            account_ids=await self.store.list_account_ids(),
        )

    def graph_client(self, account_id: str) -> GraphClient:
        client = self._graph_clients.get(account_id)
        if client is None:
            client = GraphClient(
                self.token_manager.token_provider(account_id),
                api_version=self.config.api_version,
                timeout=self.config.timeout,
                max_attempts=self.config.max_attempts,
                read_only=self.config.read_only,
                transport=self._graph_transport,
            )
            self._graph_clients[account_id] = client
        return client

    async def aclose(self) -> None:
        for client in self._graph_clients.values():
            await client.aclose()
        self._graph_clients.clear()
        await self._auth_client.aclose()

    async def __aenter__(self) -> "FlokContext":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
