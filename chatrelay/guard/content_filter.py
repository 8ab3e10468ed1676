"""Pre-dispatch content filter.

Patterns are compiled into an immutable :class:`_Patterns` snapshot.
``update_config`` builds a new snapshot and swaps the reference under a lock;
``handle`` reads whichever snapshot is current without taking the lock.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from chatrelay.core.settings import FilterConfig

_log = logging.getLogger(__name__)

PROFANITY_REPLACEMENT = "***"
LINK_REPLACEMENT = "[link removed]"


@dataclass(frozen=True)
class FilteredMessage:
    message: str
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class _Patterns:
    config: FilterConfig
    profanity: re.Pattern[str] | None
    aggression: re.Pattern[str] | None
    link: re.Pattern[str] | None


def _word_alternation(words: list[str]) -> re.Pattern[str] | None:
    words = [w for w in words if w]
    if not words:
        return None
    return re.compile(r"\b(?:" + "|".join(re.escape(w) for w in words) + r")\b", re.IGNORECASE)


def _compile(config: FilterConfig) -> _Patterns:
    link = re.compile(config.link_pattern) if config.link_pattern else None
    return _Patterns(
        config=config,
        profanity=_word_alternation(config.profanities),
        aggression=_word_alternation(config.aggression_patterns),
        link=link,
    )


class ContentFilter:
    def __init__(self, config: FilterConfig | None = None) -> None:
        self._patterns = _compile(config or FilterConfig())
        self._write_lock = asyncio.Lock()

    @property
    def config(self) -> FilterConfig:
        return self._patterns.config

    async def update_config(self, config: FilterConfig) -> None:
        """Recompile patterns from *config*; an invalid link regex leaves the old snapshot."""
        snapshot = _compile(config)
        async with self._write_lock:
            self._patterns = snapshot
        _log.info("content filter reconfigured (enabled=%s)", config.enabled)

    def handle(self, message: str) -> FilteredMessage:
        p = self._patterns
        if not p.config.enabled:
            return FilteredMessage(message=message)

        context: dict[str, Any] = {}
        text = message
        if p.profanity is not None:
            text = p.profanity.sub(PROFANITY_REPLACEMENT, text)
        if p.aggression is not None and p.aggression.search(text):
            context["aggression_detected"] = True
        if p.link is not None and p.link.search(text):
            text = p.link.sub(LINK_REPLACEMENT, text)
            context["links_filtered"] = True
        if p.config.instructions:
            context["system_instructions"] = list(p.config.instructions)
        return FilteredMessage(message=text, context=context)


__all__ = ["ContentFilter", "FilteredMessage"]
