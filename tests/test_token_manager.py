import asyncio

import pytest

from auth.token_manager import TokenManager
from auth.token_store import (
    REFRESH_TOKEN,
    MemoryCredentialStore,
    load_token_set,
    save_token_set,
)
from flok.errors import NotAuthenticated, RefreshFailure
from tests.helpers import NOW, CountingStore, FakeClock, FakeFlow, make_token_set


def _manager(store, flow) -> TokenManager:
    return TokenManager(store, flow, clock=FakeClock())


@pytest.mark.asyncio
async def test_fresh_cached_token_needs_no_io() -> None:
    store = CountingStore()
    await save_token_set(store, "default", make_token_set(expires_in=3600))
    flow = FakeFlow()
    manager = _manager(store, flow)

    assert await manager.get_access_token("default") == "access-1"
    store.loads = 0

    assert await manager.get_access_token("default") == "access-1"
    assert store.loads == 0
    assert flow.refresh_calls == []


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh() -> None:
    store = MemoryCredentialStore()
    await save_token_set(store, "default", make_token_set(expires_in=120))
    flow = FakeFlow(refreshed=make_token_set("access-2", refresh_token="refresh-2"))
    manager = _manager(store, flow)

    tokens = await asyncio.gather(*(manager.get_access_token("default") for _ in range(8)))

    assert tokens == ["access-2"] * 8
    assert flow.refresh_calls == ["refresh-1"]
    stored = await load_token_set(store, "default")
    assert stored.access_token == "access-2"
    assert stored.refresh_token == "refresh-2"


@pytest.mark.asyncio
async def test_accounts_refresh_independently() -> None:
    store = MemoryCredentialStore()
    await save_token_set(store, "alice", make_token_set(expires_in=0))
    await save_token_set(store, "bob", make_token_set(expires_in=0))
    flow = FakeFlow(refreshed=make_token_set("access-2"))
    manager = _manager(store, flow)

    await asyncio.gather(manager.get_access_token("alice"), manager.get_access_token("bob"))

    assert len(flow.refresh_calls) == 2


@pytest.mark.asyncio
async def test_refresh_keeps_previous_refresh_token_when_omitted() -> None:
    store = MemoryCredentialStore()
    await save_token_set(store, "default", make_token_set(expires_in=0))
    flow = FakeFlow(refreshed=make_token_set("access-2", refresh_token=None))
    manager = _manager(store, flow)

    assert await manager.get_access_token("default") == "access-2"
    assert await store.load(REFRESH_TOKEN, "default") == "refresh-1"


@pytest.mark.asyncio
async def test_no_credentials_is_not_authenticated() -> None:
    manager = _manager(MemoryCredentialStore(), FakeFlow())

    with pytest.raises(NotAuthenticated):
        await manager.get_access_token("default")


@pytest.mark.asyncio
async def test_rejected_refresh_falls_through_to_not_authenticated() -> None:
    store = MemoryCredentialStore()
    await save_token_set(store, "default", make_token_set(expires_in=-10))
    rejection = RefreshFailure("invalid_grant", code="invalid_grant")
    manager = _manager(store, FakeFlow(refresh_error=rejection))

    with pytest.raises(NotAuthenticated) as excinfo:
        await manager.get_access_token("default")

    assert excinfo.value.__cause__ is rejection


@pytest.mark.asyncio
async def test_unreachable_provider_surfaces_retryable_failure() -> None:
    store = MemoryCredentialStore()
    await save_token_set(store, "default", make_token_set(expires_in=-10))
    outage = RefreshFailure("offline", retryable=True)
    manager = _manager(store, FakeFlow(refresh_error=outage))

    with pytest.raises(RefreshFailure) as excinfo:
        await manager.get_access_token("default")

    assert excinfo.value.retryable is True
    assert await store.load(REFRESH_TOKEN, "default") == "refresh-1"


@pytest.mark.asyncio
async def test_token_without_refresh_path_serves_until_expiry() -> None:
    store = MemoryCredentialStore()
    await save_token_set(store, "default", make_token_set(expires_in=120, refresh_token=None))
    flow = FakeFlow()
    manager = _manager(store, flow)

    assert await manager.get_access_token("default") == "access-1"
    assert flow.refresh_calls == []


@pytest.mark.asyncio
async def test_login_shows_challenge_before_polling() -> None:
    store = MemoryCredentialStore()
    flow = FakeFlow(granted=make_token_set("access-login", refresh_token="refresh-login"))
    manager = _manager(store, flow)
    seen = []

    def on_challenge(challenge) -> None:
        seen.append(challenge.user_code)
        flow.events.append("shown")

    account_id = await manager.login(on_challenge, "alice")

    assert account_id == "alice"
    assert seen == ["ABCD-EFGH"]
    assert flow.events == ["challenge", "shown", "poll:device-code-1"]
    assert await manager.get_access_token("alice") == "access-login"
    assert (await load_token_set(store, "alice")).refresh_token == "refresh-login"


@pytest.mark.asyncio
async def test_login_accepts_async_callback() -> None:
    flow = FakeFlow(granted=make_token_set())
    manager = _manager(MemoryCredentialStore(), flow)
    seen = []

    async def on_challenge(challenge) -> None:
        seen.append(challenge.verification_uri)

    await manager.login(on_challenge)

    assert seen == ["https://microsoft.com/devicelogin"]


@pytest.mark.asyncio
async def test_logout_is_idempotent() -> None:
    store = MemoryCredentialStore()
    await save_token_set(store, "default", make_token_set())
    manager = _manager(store, FakeFlow())
    await manager.get_access_token("default")

    await manager.logout("default")
    await manager.logout("default")

    assert await store.list_account_ids() == set()
    with pytest.raises(NotAuthenticated):
        await manager.get_access_token("default")


@pytest.mark.asyncio
async def test_is_authenticated() -> None:
    store = MemoryCredentialStore()
    manager = _manager(store, FakeFlow())

    assert await manager.is_authenticated("default") is False

    await save_token_set(store, "default", make_token_set(expires_in=-10, now=NOW))

    assert await manager.is_authenticated("default") is True


@pytest.mark.asyncio
async def test_token_provider_binds_account() -> None:
    store = MemoryCredentialStore()
    await save_token_set(store, "bob", make_token_set("access-bob"))
    manager = _manager(store, FakeFlow())

    provide = manager.token_provider("bob")

    assert await provide() == "access-bob"
