from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime

import httpx

from .constants import DEFAULT_API_VERSION, GRAPH_BASE_URL, HTTP_METHODS, LOGGER, WRITE_METHODS
from .errors import (
    DecodingError,
    Forbidden,
    HttpError,
    NetworkError,
    NotFound,
    RateLimited,
    ReadOnlyMode,
    ServerError,
    Unauthorized,
)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_AFTER = 5
MAX_RETRY_AFTER = 60
NEXT_LINK_KEY = "@odata.nextLink"

RETRYABLE_NETWORK_ERRORS = (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)


def parse_retry_after(header: str | None, *, now: float | None = None) -> int:
    if header is None or not header.strip():
        return DEFAULT_RETRY_AFTER
    try:
        seconds = int(header.strip())
    except ValueError:
        try:
            retry_at = parsedate_to_datetime(header)
        except (TypeError, ValueError):
            return DEFAULT_RETRY_AFTER
        current = time.time() if now is None else now
        seconds = int(retry_at.timestamp() - current)
    return min(max(0, seconds), MAX_RETRY_AFTER)


class RetryTransport(httpx.AsyncBaseTransport):
    """Replays a request on 429, 5xx and network failures.

    At most ``max_attempts`` requests are sent. A 429 waits for
    ``Retry-After``; 5xx responses and network failures back off ``2**retry``
    seconds. The last response is returned as-is once the budget is spent.
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        jitter: float = 0.0,
        sleep=asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._max_attempts = max(1, max_attempts)
        self._jitter = max(0.0, jitter)
        self._sleep = sleep
        self._logger = logger or LOGGER

    def _backoff(self, retries: int) -> float:
        seconds = 2**retries
        if self._jitter:
            return seconds + random.uniform(0, self._jitter)
        return seconds

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        body = request.content
        attempt = 0

        while True:
            attempt += 1
            next_request = httpx.Request(
                method=request.method,
                url=request.url,
                headers=request.headers,
                content=body,
                extensions=request.extensions,
            )
            try:
                response = await self._transport.handle_async_request(next_request)
            except RETRYABLE_NETWORK_ERRORS as error:
                if attempt >= self._max_attempts:
                    raise
                backoff_seconds = self._backoff(attempt - 1)
                self._logger.warning(
                    "Retrying %s after %ss (%s %s)",
                    type(error).__name__,
                    backoff_seconds,
                    request.method,
                    request.url,
                )
                await self._sleep(backoff_seconds)
                continue

            if attempt >= self._max_attempts:
                return response

            if response.status_code == 429:
                wait_seconds = parse_retry_after(response.headers.get("retry-after"))
                self._logger.warning(
                    "Retrying 429 after %ss (%s %s)",
                    wait_seconds,
                    request.method,
                    request.url,
                )
                await response.aclose()
                await self._sleep(wait_seconds)
                continue

            if 500 <= response.status_code < 600:
                backoff_seconds = self._backoff(attempt - 1)
                self._logger.warning(
                    "Retrying %s after %ss (%s %s)",
                    response.status_code,
                    backoff_seconds,
                    request.method,
                    request.url,
                )
                await response.aclose()
                await self._sleep(backoff_seconds)
                continue

            return response

    async def aclose(self) -> None:
        await self._transport.aclose()


def _graph_error_message(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if not isinstance(error, dict):
        return None
    code = error.get("code")
    message = error.get("message")
    if isinstance(code, str) and isinstance(message, str):
        return f"{code}: {message}"
    if isinstance(message, str):
        return message
    return None


def raise_for_graph_status(response: httpx.Response) -> None:
    status = response.status_code
    if 200 <= status < 300:
        return
    if status == 401:
        raise Unauthorized()
    if status == 403:
        raise Forbidden()
    if status == 404:
        raise NotFound()
    if status == 429:
        raise RateLimited(parse_retry_after(response.headers.get("retry-after")))
    if status >= 500:
        raise ServerError(status)
    raise HttpError(status, response.text, _graph_error_message(response))


@dataclass(frozen=True)
class Page:
    items: list = field(default_factory=list)
    next_cursor: str | None = None

    @classmethod
    def from_payload(cls, payload: object) -> "Page":
        if not isinstance(payload, dict):
            raise ValueError("Page payload must be a JSON object.")
        items = payload.get("value", [])
        if not isinstance(items, list):
            raise ValueError("Page payload 'value' must be a list.")
        next_cursor = payload.get(NEXT_LINK_KEY)
        if next_cursor is not None and not isinstance(next_cursor, str):
            raise ValueError(f"Page payload {NEXT_LINK_KEY!r} must be a string.")
        return cls(items=items, next_cursor=next_cursor or None)


def _encode_body(body) -> bytes:
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    return json.dumps(body).encode("utf-8")


class GraphClient:
    """Bearer-authenticated client for the Graph resource API.

    ``token_provider`` is an async zero-argument callable returning an access
    token; it is awaited once per logical request, before the first attempt.
    """

    def __init__(
        self,
        token_provider,
        *,
        api_version: str = DEFAULT_API_VERSION,
        base_url: str = GRAPH_BASE_URL,
        timeout: float = 30.0,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        read_only: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep=asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._token_provider = token_provider
        self._logger = logger or LOGGER
        self.read_only = read_only
        self.base_url = f"{base_url.rstrip('/')}/{api_version}/"

        retry_transport = RetryTransport(
            transport or httpx.AsyncHTTPTransport(),
            max_attempts=max_attempts,
            sleep=sleep,
            logger=self._logger,
        )
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=retry_transport,
            event_hooks={
                "request": [self._sign_request, self._log_request],
                "response": [self._log_response],
            },
        )

    async def _sign_request(self, request: httpx.Request) -> None:
        token = await self._token_provider()
        request.headers["Authorization"] = f"Bearer {token}"

    async def _log_request(self, request: httpx.Request) -> None:
        self._logger.debug("Graph request %s %s", request.method, request.url)

    async def _log_response(self, response: httpx.Response) -> None:
        self._logger.debug(
            "Graph response %s %s -> %s",
            response.request.method,
            response.request.url,
            response.status_code,
        )
        if response.status_code >= 400:
            request_id = response.headers.get("request-id")
            if request_id:
                self._logger.warning("Graph request-id: %s", request_id)
            body = await response.aread()
            text = body.decode("utf-8", errors="replace")
            if len(text) > 1000:
                text = text[:1000] + "...<truncated>"
            self._logger.warning("Graph error body: %s", text)

    async def get(self, path: str, query: dict[str, str] | None = None) -> bytes:
        return await self.raw("GET", path, query=query)

    async def post(self, path: str, body=None, query: dict[str, str] | None = None) -> bytes:
        return await self.raw("POST", path, query=query, body=body)

    async def patch(self, path: str, body, query: dict[str, str] | None = None) -> bytes:
        return await self.raw("PATCH", path, query=query, body=body)

    async def put(self, path: str, body, query: dict[str, str] | None = None) -> bytes:
        return await self.raw("PUT", path, query=query, body=body)

    async def delete(self, path: str, query: dict[str, str] | None = None) -> bytes:
        return await self.raw("DELETE", path, query=query)

    async def raw(
        self,
        method: str,
        path: str,
        query: dict[str, str] | None = None,
        body=None,
        headers: dict[str, str] | None = None,
        *,
        timeout: float | None = None,
    ) -> bytes:
        """Send any request. ``path`` may be relative to the API version or absolute."""
        method = method.upper()
        if method.lower() not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")
        if self.read_only and method.lower() in WRITE_METHODS:
            raise ReadOnlyMode(method)

        request_headers = httpx.Headers(headers or {})
        content = None
        if body is not None:
            content = _encode_body(body)
            if "content-type" not in request_headers:
                request_headers["Content-Type"] = "application/json"

        options = {}
        if timeout is not None:
            options["timeout"] = timeout

        try:
            response = await self._client.request(
                method,
                path,
                params=query or None,
                content=content,
                headers=request_headers,
                **options,
            )
        except httpx.TransportError as error:
            raise NetworkError(error) from error

        raise_for_graph_status(response)
        return response.content

    async def get_page(self, target: str, query: dict[str, str] | None = None) -> Page:
        data = await self.get(target, query=query)
        try:
            return Page.from_payload(json.loads(data))
        except ValueError as error:
            raise DecodingError(error) from error

    async def paginate(
        self,
        path: str,
        query: dict[str, str] | None = None,
        *,
        max_pages: int = 10,
        decode=None,
    ):
        """Yield items across pages, following ``@odata.nextLink`` verbatim.

        Stops after the first page without a next link or after
        ``max_pages`` pages. ``decode`` is applied to each raw item.
        """
        target: str | None = path
        params = query
        pages = 0

        while target is not None and pages < max_pages:
            page = await self.get_page(target, query=params)
            pages += 1
            for item in page.items:
                if decode is None:
                    value = item
                else:
                    try:
                        value = decode(item)
                    except (KeyError, TypeError, ValueError) as error:
                        raise DecodingError(error) from error
                yield value

            # The continuation link already carries every query parameter.
            target = page.next_cursor
            params = None

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GraphClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
