"""Chatbot orchestrator: guard pipeline -> neutral request -> driver.

One :class:`Chatbot` is built per process and shared by every request task.
It owns one driver (and through it one HTTP connection pool) plus the guard
pipeline; none of its methods hold a lock across network I/O.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from typing import Any

from chatrelay.ai import providers
from chatrelay.ai.contracts import (
    HealthChecker,
    LLMProvider,
    NeutralRequest,
    StreamingProvider,
    build_request,
)
from chatrelay.core.exceptions import (
    ChatbotError,
    InvalidInputError,
    RequestTimeoutError,
    StreamingUnsupportedError,
)
from chatrelay.core.options import AskOption, apply_options
from chatrelay.core.prompting import compose_system_prompt
from chatrelay.core.settings import Settings
from chatrelay.guard.content_filter import ContentFilter
from chatrelay.guard.pipeline import GuardPipeline
from chatrelay.guard.rate_limiter import RateLimiter
from chatrelay.streaming.bridge import bridge_stream
from chatrelay.streaming.events import SINGLE_CHUNK_ID
from chatrelay.streaming.sink import TERMINAL_GRACE, SSEStreamWriter

_log = logging.getLogger(__name__)

GENERIC_FAILURE = "Failed to process request"


class Chatbot:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        provider: LLMProvider | None = None,
        guard: GuardPipeline | None = None,
        content_filter: ContentFilter | None = None,
        rate_limiter: RateLimiter | None = None,
        timeout: float | None = None,
        stream_fallback: bool | None = None,
    ) -> None:
        self.settings = settings or Settings()
        if provider is None:
            self.settings.validate_config()
            provider = providers.create(self.settings)
        self.provider = provider
        if guard is None:
            guard = GuardPipeline(
                rate_limiter or RateLimiter(self.settings.rate_limit),
                content_filter or ContentFilter(self.settings.content_filter),
            )
        self.guard = guard
        self.timeout = timeout if timeout is not None else self.settings.chatbot_timeout
        if self.timeout <= 0:
            raise ValueError("timeout must be greater than 0")
        self.stream_fallback = (
            self.settings.chatbot_stream_fallback if stream_fallback is None else stream_fallback
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> Chatbot:
        return cls(settings)

    # ------------------------------------------------------------------
    # accessors
    # ------------------------------------------------------------------

    @property
    def supports_streaming(self) -> bool:
        return isinstance(self.provider, StreamingProvider)

    @property
    def limiter(self) -> RateLimiter:
        return self.guard.limiter

    # ------------------------------------------------------------------
    # internal helpers
    # ------------------------------------------------------------------

    def _effective_deadline(self, deadline: float | None) -> float:
        own = asyncio.get_running_loop().time() + self.timeout
        return own if deadline is None else min(deadline, own)

    @staticmethod
    def _check_message(message: str) -> None:
        if not message or not message.strip():
            raise InvalidInputError("message cannot be empty")

    async def _prepare(
        self, message: str, options: tuple[AskOption, ...], deadline: float
    ) -> NeutralRequest:
        opts = apply_options(options)
        generation, system, history, attributes = opts.split()

        filtered = await self.guard.check(message, attributes, deadline=deadline)
        attributes.update(filtered.context)

        params: dict[str, Any] = {
            "temperature": self.settings.chatbot_temperature,
            "max_tokens": self.settings.chatbot_max_tokens,
        }
        params.update(generation)
        return build_request(
            model=self.provider.name,
            messages=[*history, {"role": "user", "content": filtered.message}],
            system_prompt=compose_system_prompt(self.settings, filtered.context, system),
            generation=params,
            attributes=attributes,
            deadline=deadline,
        )

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    async def ask(self, message: str, *options: AskOption, deadline: float | None = None) -> str:
        """Return the assistant reply for *message* or raise a classified ``ChatbotError``."""
        self._check_message(message)
        deadline = self._effective_deadline(deadline)
        try:
            async with asyncio.timeout_at(deadline):
                request = await self._prepare(message, options, deadline)
                return await self.provider.ask(request)
        except TimeoutError as exc:
            raise RequestTimeoutError("ask", provider=self.provider.provider) from exc

    async def ask_stream(
        self,
        sink: object,
        message: str,
        *options: AskOption,
        deadline: float | None = None,
    ) -> str | None:
        """Stream the reply for *message* into *sink* as SSE records.

        Returns the full reply once a ``done`` record was delivered, else ``None``.

        Raises before writing anything when *sink* is not flushable, the message
        is empty, or the driver cannot stream and fallback is disabled.  Every
        later failure is written as one terminal error record.
        """
        writer = SSEStreamWriter(sink)
        self._check_message(message)
        if not self.supports_streaming and not self.stream_fallback:
            raise StreamingUnsupportedError(
                f"{self.provider.provider} does not support streaming",
                provider=self.provider.provider,
            )

        deadline = self._effective_deadline(deadline)
        writer.deadline = deadline
        stream_id = uuid.uuid4().hex if self.supports_streaming else SINGLE_CHUNK_ID
        try:
            try:
                async with asyncio.timeout_at(deadline):
                    request = await self._prepare(message, options, deadline)
            except TimeoutError:
                await writer.write_error(stream_id, "Request timeout")
                return None
            except ChatbotError as exc:
                await writer.write_error(stream_id, exc.message)
                return None

            if self.supports_streaming:
                return await self._stream_upstream(writer, request, stream_id, deadline)
            return await self._stream_fallback(writer, request, deadline)
        except asyncio.CancelledError:
            if not writer.closed:
                # The sink may already be gone or stuck; the cancellation still wins.
                with contextlib.suppress(Exception):
                    async with asyncio.timeout(TERMINAL_GRACE):
                        await writer.write_error(stream_id, "Request cancelled")
            raise

    async def _stream_upstream(
        self, writer: SSEStreamWriter, request: NeutralRequest, stream_id: str, deadline: float
    ) -> str | None:
        assert isinstance(self.provider, StreamingProvider)
        events = bridge_stream(
            self.provider.ask_stream(request),
            stream_id=stream_id,
            deadline=deadline,
            capacity=self.settings.chatbot_stream_buffer,
        )
        parts: list[str] = []
        async with contextlib.aclosing(events) as stream:
            async for event in stream:
                await writer.write_event(event)
                if writer.stalled:
                    return None
                if event.kind == "done":
                    return "".join(parts)
                if event.is_terminal:
                    return None
                parts.append(event.content)
        return None

    async def _stream_fallback(
        self, writer: SSEStreamWriter, request: NeutralRequest, deadline: float
    ) -> str | None:
        try:
            async with asyncio.timeout_at(deadline):
                text = await self.provider.ask(request)
        except TimeoutError:
            await writer.write_error(SINGLE_CHUNK_ID, "Request timeout")
        except ChatbotError as exc:
            await writer.write_error(SINGLE_CHUNK_ID, exc.message)
        except Exception:
            _log.exception("buffered fallback failed")
            await writer.write_error(SINGLE_CHUNK_ID, GENERIC_FAILURE)
        else:
            await writer.write_chunk(SINGLE_CHUNK_ID, text)
            await writer.write_done(SINGLE_CHUNK_ID)
            if not writer.stalled:
                return text
        return None

    async def health(self, deadline: float | None = None) -> None:
        """Raise when the driver's upstream is not usable."""
        if not isinstance(self.provider, HealthChecker):
            return
        deadline = self._effective_deadline(deadline)
        try:
            async with asyncio.timeout_at(deadline):
                await self.provider.health(deadline)
        except TimeoutError as exc:
            raise RequestTimeoutError("health", provider=self.provider.provider) from exc

    async def close(self) -> None:
        await self.provider.close()


__all__ = ["Chatbot"]
