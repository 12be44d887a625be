import asyncio

from auth.models import DeviceCodeChallenge, TokenSet
from auth.token_store import MemoryCredentialStore

NOW = 1_700_000_000.0


class FakeClock:
    def __init__(self, start: float = NOW) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    def __init__(self, clock: FakeClock | None = None) -> None:
        self.calls: list[float] = []
        self._clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)


class CountingStore(MemoryCredentialStore):
    def __init__(self) -> None:
        super().__init__()
        self.loads = 0

    async def load(self, key: str, account_id: str) -> str | None:
        self.loads += 1
        return await super().load(key, account_id)


class FakeFlow:
    def __init__(
        self,
        *,
        refreshed: TokenSet | None = None,
        refresh_error: Exception | None = None,
        granted: TokenSet | None = None,
        refresh_delay: float = 0.01,
    ) -> None:
        self.refreshed = refreshed
        self.refresh_error = refresh_error
        self.granted = granted
        self.refresh_delay = refresh_delay
        self.refresh_calls: list[str] = []
        self.events: list[str] = []

    async def refresh(self, refresh_token: str) -> TokenSet:
        self.refresh_calls.append(refresh_token)
        await asyncio.sleep(self.refresh_delay)
        if self.refresh_error is not None:
            raise self.refresh_error
        return self.refreshed

    async def request_challenge(self) -> DeviceCodeChallenge:
        self.events.append("challenge")
        return make_challenge()

    async def poll_for_token(self, challenge: DeviceCodeChallenge) -> TokenSet:
        self.events.append(f"poll:{challenge.device_code}")
        return self.granted


def make_challenge(*, expires_in: int = 900, interval: int = 5) -> DeviceCodeChallenge:
    return DeviceCodeChallenge(
        device_code="device-code-1",
        user_code="ABCD-EFGH",
        verification_uri="https://microsoft.com/devicelogin",
        expires_in=expires_in,
        interval=interval,
        message="To sign in, open https://microsoft.com/devicelogin and enter ABCD-EFGH.",
    )


def make_token_set(
    access_token: str = "access-1",
    *,
    expires_in: float = 3600,
    refresh_token: str | None = "refresh-1",
    now: float = NOW,
) -> TokenSet:
    return TokenSet(
        access_token=access_token,
        expires_at=now + expires_in,
        refresh_token=refresh_token,
        scope="Mail.ReadWrite User.Read",
    )
