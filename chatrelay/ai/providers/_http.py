"""Shared aiohttp plumbing for the HTTP-backed drivers.

Each driver owns exactly one lazily created :class:`aiohttp.ClientSession`
(connection pool).  Upstream failures are mapped onto the ``ChatbotError``
taxonomy by :func:`classify_status` so callers never see raw transport errors.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import aiohttp

from chatrelay.core.exceptions import (
    ChatbotError,
    InvalidRequestError,
    MalformedResponseError,
    RequestTimeoutError,
    UnauthorizedError,
    UpstreamRateLimitedError,
    UpstreamUnavailableError,
)

_log = logging.getLogger(__name__)

_MAX_ERROR_TEXT = 300


def classify_status(status: int, message: str, *, provider: str | None = None) -> ChatbotError:
    """Map an upstream HTTP status to the matching ``ChatbotError`` subclass."""
    text = f"{provider or 'upstream'} returned {status}"
    if message:
        text = f"{text}: {message}"
    if status in (401, 403):
        return UnauthorizedError(text, provider=provider)
    if status == 408:
        return RequestTimeoutError("upstream", provider=provider)
    if status == 429:
        return UpstreamRateLimitedError(text, provider=provider)
    if 400 <= status < 500:
        return InvalidRequestError(text, provider=provider)
    return UpstreamUnavailableError(text, provider=provider)


def error_message(body: str) -> str:
    """Pull the provider's own error message out of an error body."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, ValueError):
        return body.strip()[:_MAX_ERROR_TEXT]
    if isinstance(data, list) and data:
        data = data[0]
    if isinstance(data, dict):
        err = data.get("error", data)
        if isinstance(err, dict):
            msg = err.get("message") or err.get("type")
            if msg:
                return str(msg)
        elif isinstance(err, str):
            return err
    return body.strip()[:_MAX_ERROR_TEXT]


def decode_json(text: str, *, provider: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError) as exc:
        raise MalformedResponseError(
            f"{provider} returned invalid JSON: {exc}", provider=provider
        ) from exc


class HTTPProvider:
    """Base class for drivers that talk JSON over HTTP."""

    provider: str = "http"

    def __init__(
        self,
        *,
        model: str,
        endpoint: str,
        api_key: str | None = None,
        request_timeout: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.name = model
        self.model = model
        self.endpoint = endpoint
        self.api_key = api_key
        self.request_timeout = request_timeout
        self._session = session
        self._owns_session = session is None

    # ------------------------------------------------------------------
    # internal helpers
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=100, limit_per_host=20),
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            )
            self._owns_session = True
        return self._session

    async def _raise_for_status(self, resp: aiohttp.ClientResponse) -> None:
        if resp.status < 400:
            return
        body = await resp.text(errors="replace")
        _log.warning("%s upstream error %s: %s", self.provider, resp.status, body[:_MAX_ERROR_TEXT])
        raise classify_status(resp.status, error_message(body), provider=self.provider)

    async def _request_json(
        self, method: str, url: str, payload: dict[str, Any] | None = None
    ) -> Any:
        """Perform one buffered request and return the decoded JSON body."""
        session = self._get_session()
        try:
            async with session.request(
                method, url, json=payload, headers=self._headers()
            ) as resp:
                await self._raise_for_status(resp)
                text = await resp.text(errors="replace")
        except ChatbotError:
            raise
        except (asyncio.TimeoutError, TimeoutError) as exc:
            raise RequestTimeoutError("upstream", provider=self.provider) from exc
        except aiohttp.ClientError as exc:
            raise UpstreamUnavailableError(
                f"{self.provider} request failed: {exc}", provider=self.provider
            ) from exc
        return decode_json(text, provider=self.provider)

    async def _post_json(self, url: str, payload: dict[str, Any]) -> Any:
        return await self._request_json("POST", url, payload)

    @contextlib.asynccontextmanager
    async def _open_stream(
        self, url: str, payload: dict[str, Any]
    ) -> AsyncIterator[aiohttp.StreamReader]:
        """POST *payload* and yield the response body reader for incremental parsing."""
        session = self._get_session()
        # Stream lifetime is bounded by the caller deadline; only idle reads time out here.
        timeout = aiohttp.ClientTimeout(total=None, sock_read=self.request_timeout)
        try:
            async with session.post(
                url, json=payload, headers=self._headers(), timeout=timeout
            ) as resp:
                await self._raise_for_status(resp)
                yield resp.content
        except ChatbotError:
            raise
        except (asyncio.TimeoutError, TimeoutError) as exc:
            raise RequestTimeoutError("upstream stream", provider=self.provider) from exc
        except aiohttp.ClientError as exc:
            raise UpstreamUnavailableError(
                f"{self.provider} stream failed: {exc}", provider=self.provider
            ) from exc

    # ------------------------------------------------------------------
    # lifetime
    # ------------------------------------------------------------------

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} provider={self.provider} model={self.name}>"


__all__ = ["HTTPProvider", "classify_status", "error_message", "decode_json"]
