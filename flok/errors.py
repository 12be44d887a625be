from __future__ import annotations

# Reasons carried by AuthFailure.
PENDING = "pending"
DECLINED = "declined"
EXPIRED = "expired"
MISSING_CLIENT_ID = "missing_client_id"
NO_ACCOUNT = "no_account"
MULTIPLE_ACCOUNTS = "multiple_accounts"
NO_REFRESH_TOKEN = "no_refresh_token"
NOT_AUTHENTICATED = "not_authenticated"
PROVIDER_ERROR = "provider_error"

_AUTH_MESSAGES = {
    PENDING: "Authorization is still pending.",
    DECLINED: "Authentication was declined by the user.",
    EXPIRED: "The device code expired. Run `flok auth login` again.",
    MISSING_CLIENT_ID: "No client id configured. Set FLOK_CLIENT_ID.",
    NO_ACCOUNT: "No account is signed in. Run `flok auth login`.",
    MULTIPLE_ACCOUNTS: "Several accounts are signed in. Set FLOK_ACCOUNT or run `flok accounts switch`.",
    NO_REFRESH_TOKEN: "No refresh token available. Run `flok auth login` again.",
    NOT_AUTHENTICATED: "Not authenticated. Run `flok auth login`.",
}


class FlokError(RuntimeError):
    """Base class for every error raised by the transport core."""


class AuthFailure(FlokError):
    def __init__(
        self,
        reason: str,
        message: str | None = None,
        *,
        code: str | None = None,
        description: str | None = None,
    ) -> None:
        self.reason = reason
        self.code = code
        self.description = description
        if message is None:
            if reason == PROVIDER_ERROR:
                message = f"OAuth error ({code}): {description or 'no description'}"
            else:
                message = _AUTH_MESSAGES.get(reason, f"Authentication failed ({reason}).")
        super().__init__(message)


class NotAuthenticated(AuthFailure):
    def __init__(self, account_id: str | None = None) -> None:
        message = _AUTH_MESSAGES[NOT_AUTHENTICATED]
        if account_id:
            message = f"Account {account_id!r} is not authenticated. Run `flok auth login`."
        super().__init__(NOT_AUTHENTICATED, message)
        self.account_id = account_id


class RefreshFailure(AuthFailure):
    """Refresh-token exchange failed.

    ``retryable`` is true when the identity provider could not be reached, in
    which case the stored refresh token is still believed to be valid.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        description: str | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(PROVIDER_ERROR, message, code=code, description=description)
        self.retryable = retryable


class TransportError(FlokError):
    """Base class for failures of a Graph API call."""


class Unauthorized(TransportError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized. The token was rejected; run `flok auth login`.") -> None:
        super().__init__(message)


class Forbidden(TransportError):
    status_code = 403

    def __init__(self, message: str = "Forbidden. The account is missing a required permission.") -> None:
        super().__init__(message)


class NotFound(TransportError):
    status_code = 404

    def __init__(self, message: str = "Resource not found.") -> None:
        super().__init__(message)


class RateLimited(TransportError):
    status_code = 429

    def __init__(self, retry_after: int | None = None) -> None:
        self.retry_after = retry_after
        wait = 0 if retry_after is None else retry_after
        super().__init__(f"Rate limited by Graph API. Please wait {wait} seconds.")


class ServerError(TransportError):
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(f"Graph API server error ({status_code}). Please try again later.")


class NetworkError(TransportError):
    def __init__(self, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"Network error talking to Graph API: {cause}")


class DecodingError(TransportError):
    def __init__(self, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"Could not decode Graph API response: {cause}")


class HttpError(TransportError):
    def __init__(self, status_code: int, body: str, message: str | None = None) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code}: {message or body}")


class ReadOnlyMode(TransportError):
    def __init__(self, method: str) -> None:
        self.method = method.upper()
        super().__init__(f"Read-only mode: {self.method} requests are disabled.")
