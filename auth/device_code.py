from __future__ import annotations

import asyncio
import logging
import time

import httpx

from auth.models import DeviceCodeChallenge, OAuthErrorPayload, TokenSet
from flok.constants import AUTH_LOGGER, DEFAULT_SCOPES
from flok.errors import (
    DECLINED,
    EXPIRED,
    MISSING_CLIENT_ID,
    PROVIDER_ERROR,
    AuthFailure,
    RefreshFailure,
)

AUTHORITY_URL = "https://login.microsoftonline.com"
DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"
MIN_POLL_INTERVAL = 5
SLOW_DOWN_INCREMENT = 5


def device_code_url(tenant: str) -> str:
    return f"{AUTHORITY_URL}/{tenant}/oauth2/v2.0/devicecode"


def token_url(tenant: str) -> str:
    return f"{AUTHORITY_URL}/{tenant}/oauth2/v2.0/token"


def _decode_json(response: httpx.Response) -> object | None:
    try:
        return response.json()
    except ValueError:
        return None


def _provider_failure(response: httpx.Response, payload: object | None) -> AuthFailure:
    oauth_error = OAuthErrorPayload.from_payload(payload)
    if oauth_error is None:
        return AuthFailure(
            PROVIDER_ERROR,
            code=str(response.status_code),
            description=response.text[:200] or None,
        )
    return AuthFailure(
        PROVIDER_ERROR,
        code=oauth_error.error,
        description=oauth_error.error_description,
    )


class DeviceCodeFlow:
    """OAuth2 device authorization grant against the Microsoft identity platform.

    ``sleep`` and ``clock`` are injectable so polling can be driven without
    waiting on a real timer.
    """

    def __init__(
        self,
        client_id: str,
        tenant: str = "common",
        scopes: list[str] | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        sleep=asyncio.sleep,
        clock=time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client_id = client_id
        self.tenant = tenant
        self.scopes = list(scopes or DEFAULT_SCOPES)
        self._client = client
        self._timeout = timeout
        self._sleep = sleep
        self._clock = clock
        self._logger = logger or AUTH_LOGGER

    async def _post_form(self, url: str, data: dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, data=data)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(url, data=data)

    def _require_client_id(self) -> None:
        if not self.client_id:
            raise AuthFailure(MISSING_CLIENT_ID)

    async def request_challenge(self) -> DeviceCodeChallenge:
        self._require_client_id()
        try:
            response = await self._post_form(
                device_code_url(self.tenant),
                {"client_id": self.client_id, "scope": " ".join(self.scopes)},
            )
        except httpx.TransportError as error:
            raise AuthFailure(
                PROVIDER_ERROR,
                code="network_error",
                description=str(error),
            ) from error

        payload = _decode_json(response)
        if not response.is_success:
            raise _provider_failure(response, payload)

        try:
            challenge = DeviceCodeChallenge.from_payload(payload if isinstance(payload, dict) else {})
        except ValueError as error:
            raise AuthFailure(
                PROVIDER_ERROR,
                code="invalid_response",
                description=str(error),
            ) from error

        self._logger.info(
            "Device code issued tenant=%s expires_in=%ss interval=%ss",
            self.tenant,
            challenge.expires_in,
            challenge.interval,
        )
        return challenge

    async def poll_for_token(self, challenge: DeviceCodeChallenge) -> TokenSet:
        """Poll the token endpoint until the user finishes signing in.

        Raises ``AuthFailure`` with reason ``declined`` or ``expired`` when the
        user refuses or the code runs out, and ``provider_error`` for any other
        error code. Polling never outlives ``challenge.expires_in``.
        """
        interval = max(challenge.interval, MIN_POLL_INTERVAL)
        deadline = self._clock() + challenge.expires_in
        form = {
            "grant_type": DEVICE_CODE_GRANT_TYPE,
            "client_id": self.client_id,
            "device_code": challenge.device_code,
        }
        attempts = 0

        while True:
            await self._sleep(min(interval, max(0, deadline - self._clock())))
            if self._clock() >= deadline:
                self._logger.warning("Device code expired after %s attempts", attempts)
                raise AuthFailure(EXPIRED)

            attempts += 1
            try:
                response = await self._post_form(token_url(self.tenant), form)
            except httpx.TransportError as error:
                self._logger.warning("Device code poll attempt %s failed: %s", attempts, error)
                continue

            payload = _decode_json(response)
            if response.is_success:
                return self._token_set(payload)

            oauth_error = OAuthErrorPayload.from_payload(payload)
            if oauth_error is None:
                raise _provider_failure(response, payload)

            code = oauth_error.error
            if code == "authorization_pending":
                continue
            if code == "slow_down":
                interval += SLOW_DOWN_INCREMENT
                self._logger.warning("Provider asked to slow down; polling every %ss", interval)
                continue
            if code in {"authorization_declined", "access_denied"}:
                raise AuthFailure(DECLINED)
            if code == "expired_token":
                raise AuthFailure(EXPIRED)
            raise AuthFailure(
                PROVIDER_ERROR,
                code=code,
                description=oauth_error.error_description,
            )

    async def refresh(self, refresh_token: str) -> TokenSet:
        self._require_client_id()
        try:
            response = await self._post_form(
                token_url(self.tenant),
                {
                    "grant_type": "refresh_token",
                    "client_id": self.client_id,
                    "refresh_token": refresh_token,
                    "scope": " ".join(self.scopes),
                },
            )
        except httpx.TransportError as error:
            raise RefreshFailure(
                f"Could not reach the identity provider: {error}",
                retryable=True,
            ) from error

        payload = _decode_json(response)
        if not response.is_success:
            oauth_error = OAuthErrorPayload.from_payload(payload)
            code = oauth_error.error if oauth_error else str(response.status_code)
            description = oauth_error.error_description if oauth_error else None
            raise RefreshFailure(
                f"Token refresh failed with status {response.status_code}: {code}",
                code=code,
                description=description,
                retryable=response.status_code >= 500,
            )

        try:
            return TokenSet.from_payload(payload if isinstance(payload, dict) else {})
        except ValueError as error:
            raise RefreshFailure(str(error), code="invalid_response") from error

    def _token_set(self, payload: object | None) -> TokenSet:
        try:
            return TokenSet.from_payload(payload if isinstance(payload, dict) else {})
        except ValueError as error:
            raise AuthFailure(
                PROVIDER_ERROR,
                code="invalid_response",
                description=str(error),
            ) from error
