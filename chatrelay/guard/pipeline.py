"""Guard pipeline: rate limit first, then content filter."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from chatrelay.core.settings import Settings
from chatrelay.guard.content_filter import ContentFilter, FilteredMessage
from chatrelay.guard.rate_limiter import RateLimiter

_log = logging.getLogger(__name__)

DEFAULT_CLIENT = "default"


def resolve_client_id(attributes: Mapping[str, Any]) -> str:
    """``client_ip`` attribute, else ``user_id``, else the shared ``default`` bucket."""
    for key in ("client_ip", "user_id"):
        value = attributes.get(key)
        if value:
            return str(value)
    return DEFAULT_CLIENT


class GuardPipeline:
    def __init__(self, limiter: RateLimiter, content_filter: ContentFilter) -> None:
        self.limiter = limiter
        self.filter = content_filter

    @classmethod
    def from_settings(cls, settings: Settings) -> GuardPipeline:
        return cls(RateLimiter(settings.rate_limit), ContentFilter(settings.content_filter))

    async def check(
        self,
        message: str,
        attributes: Mapping[str, Any] | None = None,
        *,
        deadline: float | None = None,
    ) -> FilteredMessage:
        """Admit and filter *message*; raises ``RateLimitedError`` before the filter runs."""
        client_id = resolve_client_id(attributes or {})
        await self.limiter.allow(client_id, deadline)
        filtered = self.filter.handle(message)
        if filtered.context.get("aggression_detected"):
            _log.info("aggressive message from %s", client_id)
        return filtered


__all__ = ["GuardPipeline", "resolve_client_id", "DEFAULT_CLIENT"]
