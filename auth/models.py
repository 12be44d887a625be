from __future__ import annotations

import time
from dataclasses import dataclass, replace


@dataclass(frozen=True)
class DeviceCodeChallenge:
    device_code: str
    user_code: str
    verification_uri: str
    expires_in: int
    interval: int
    message: str

    @classmethod
    def from_payload(cls, payload: dict) -> "DeviceCodeChallenge":
        fields = {}
        for key in ("device_code", "user_code", "verification_uri"):
            value = payload.get(key)
            if not isinstance(value, str) or not value:
                raise ValueError(f"Device code response missing {key}.")
            fields[key] = value

        expires_in = payload.get("expires_in")
        if not isinstance(expires_in, int):
            raise ValueError("Device code response missing expires_in.")

        interval = payload.get("interval", 5)
        if not isinstance(interval, int):
            raise ValueError("Device code response interval must be an integer.")

        message = payload.get("message")
        if not isinstance(message, str) or not message:
            message = f"To sign in, open {fields['verification_uri']} and enter the code {fields['user_code']}."

        return cls(expires_in=expires_in, interval=interval, message=message, **fields)


@dataclass(frozen=True)
class TokenSet:
    access_token: str
    expires_at: float
    refresh_token: str | None = None
    scope: str = ""
    token_type: str = "Bearer"

    def is_fresh(self, buffer_seconds: float = 0, *, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current + buffer_seconds < self.expires_at

    def with_refresh_token(self, refresh_token: str | None) -> "TokenSet":
        if self.refresh_token or not refresh_token:
            return self
        return replace(self, refresh_token=refresh_token)

    @classmethod
    def from_payload(cls, payload: dict, *, now: float | None = None) -> "TokenSet":
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        expires_in = payload.get("expires_in")
        scope = payload.get("scope", "")
        token_type = payload.get("token_type", "Bearer")

        if not isinstance(access_token, str) or not access_token:
            raise ValueError("Token response missing access_token.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise ValueError("Token response refresh_token must be a string.")
        # Some tenants send expires_in as a numeric string.
        if isinstance(expires_in, str) and expires_in.isdigit():
            expires_in = int(expires_in)
        if not isinstance(expires_in, int):
            raise ValueError("Token response missing expires_in.")
        if not isinstance(scope, str):
            raise ValueError("Token response scope must be a string.")

        current = time.time() if now is None else now
        return cls(
            access_token=access_token,
            refresh_token=refresh_token or None,
            expires_at=current + expires_in,
            scope=scope,
            token_type=token_type if isinstance(token_type, str) else "Bearer",
        )


@dataclass(frozen=True)
class OAuthErrorPayload:
    error: str
    error_description: str | None = None

    @classmethod
    def from_payload(cls, payload: object) -> "OAuthErrorPayload | None":
        if not isinstance(payload, dict):
            return None
        error = payload.get("error")
        if not isinstance(error, str) or not error:
            return None
        description = payload.get("error_description")
        if not isinstance(description, str):
            description = None
        return cls(error=error, error_description=description)
