from __future__ import annotations

import asyncio
import inspect
import logging
import time

from auth.models import TokenSet
from auth.token_store import (
    REFRESH_TOKEN,
    CredentialStore,
    delete_token_set,
    load_token_set,
    save_token_set,
)
from flok.constants import AUTH_LOGGER, DEFAULT_ACCOUNT
from flok.errors import NotAuthenticated, RefreshFailure

REFRESH_BUFFER_SECONDS = 300


class TokenManager:
    """Caches one TokenSet per account and renews it through the refresh grant.

    Every read-check-refresh-write sequence for an account runs under that
    account's lock, and the cache is checked again once the lock is held, so
    callers that queue behind an in-flight refresh reuse its result instead of
    refreshing a second time.
    """

    def __init__(
        self,
        store: CredentialStore,
        flow,
        *,
        refresh_buffer_seconds: float = REFRESH_BUFFER_SECONDS,
        clock=time.time,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._flow = flow
        self._buffer = refresh_buffer_seconds
        self._clock = clock
        self._logger = logger or AUTH_LOGGER
        self._cache: dict[str, TokenSet] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def store(self) -> CredentialStore:
        return self._store

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    def _usable(self, token_set: TokenSet | None, buffer_seconds: float) -> bool:
        if token_set is None:
            return False
        return token_set.is_fresh(buffer_seconds, now=self._clock())

    async def get_access_token(self, account_id: str = DEFAULT_ACCOUNT) -> str:
        cached = self._cache.get(account_id)
        if self._usable(cached, self._buffer):
            return cached.access_token

        async with self._lock_for(account_id):
            cached = self._cache.get(account_id)
            if self._usable(cached, self._buffer):
                self._logger.debug("Token for %s renewed while waiting", account_id)
                return cached.access_token

            stored = await load_token_set(self._store, account_id)
            if self._usable(stored, self._buffer):
                self._cache[account_id] = stored
                return stored.access_token

            refresh_token = await self._store.load(REFRESH_TOKEN, account_id)
            if not refresh_token and cached is not None:
                refresh_token = cached.refresh_token

            if refresh_token:
                try:
                    refreshed = await self._flow.refresh(refresh_token)
                except RefreshFailure as error:
                    self._logger.warning(
                        "Token refresh for %s failed (retryable=%s): %s",
                        account_id,
                        error.retryable,
                        error,
                    )
                    fallback = self._unexpired(cached, stored)
                    if fallback is not None:
                        return fallback.access_token
                    if error.retryable:
                        raise
                    raise NotAuthenticated(account_id) from error

                token_set = refreshed.with_refresh_token(refresh_token)
                await save_token_set(self._store, account_id, token_set)
                self._cache[account_id] = token_set
                self._logger.info("Refreshed access token for %s", account_id)
                return token_set.access_token

            # Without a refresh path a token is still good until it actually expires.
            fallback = self._unexpired(cached, stored)
            if fallback is not None:
                self._cache[account_id] = fallback
                return fallback.access_token

        raise NotAuthenticated(account_id)

    def _unexpired(self, *candidates: TokenSet | None) -> TokenSet | None:
        for token_set in candidates:
            if self._usable(token_set, 0):
                return token_set
        return None

    async def login(self, on_challenge, account_id: str = DEFAULT_ACCOUNT) -> str:
        """Run the device-code flow and store the resulting tokens.

        ``on_challenge`` receives the DeviceCodeChallenge once, before polling
        starts, so the caller can show ``user_code`` and ``verification_uri``.
        It may be a plain function or a coroutine function.
        """
        challenge = await self._flow.request_challenge()
        result = on_challenge(challenge)
        if inspect.isawaitable(result):
            await result

        token_set = await self._flow.poll_for_token(challenge)
        async with self._lock_for(account_id):
            await save_token_set(self._store, account_id, token_set)
            self._cache[account_id] = token_set
        self._logger.info("Signed in account %s", account_id)
        return account_id

    async def logout(self, account_id: str = DEFAULT_ACCOUNT) -> None:
        async with self._lock_for(account_id):
            self._cache.pop(account_id, None)
            await delete_token_set(self._store, account_id)
        self._logger.info("Signed out account %s", account_id)

    async def is_authenticated(self, account_id: str = DEFAULT_ACCOUNT) -> bool:
        if await self._store.load(REFRESH_TOKEN, account_id):
            return True
        stored = await load_token_set(self._store, account_id)
        return self._usable(stored, 0)

    async def list_account_ids(self) -> set[str]:
        return await self._store.list_account_ids()

    def token_provider(self, account_id: str = DEFAULT_ACCOUNT):
        async def provide() -> str:
            return await self.get_access_token(account_id)

        return provide
