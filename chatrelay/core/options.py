"""Per-request options for :meth:`Chatbot.ask` / :meth:`Chatbot.ask_stream`.

Options are small callables that write into an :class:`AskOptions` bag::

    await bot.ask("hi", with_temperature(0.2), with_context("user_id", "u-1"))

Keys listed in :data:`GENERATION_KEYS` become typed generation parameters,
``system`` and ``history`` shape the message list; every other key is passed
to the driver untouched as a request attribute.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from chatrelay.core.exceptions import InvalidInputError

GENERATION_KEYS = frozenset({"temperature", "max_tokens", "top_p", "top_k", "stop", "seed"})


@dataclass
class AskOptions:
    context: dict[str, Any] = field(default_factory=dict)

    def split(self) -> tuple[dict[str, Any], str | None, list[Any], dict[str, Any]]:
        """Return (generation overrides, system prompt, history, remaining attributes).

        Raises :class:`InvalidInputError` when ``system`` or ``history`` has the wrong type.
        """
        generation = {k: v for k, v in self.context.items() if k in GENERATION_KEYS}
        system = self.context.get("system")
        if system is not None and not isinstance(system, str):
            raise InvalidInputError("system must be a string")
        history = self.context.get("history") or []
        if not isinstance(history, list):
            raise InvalidInputError("history must be a list of messages")
        attributes = {
            k: v
            for k, v in self.context.items()
            if k not in GENERATION_KEYS and k not in ("system", "history")
        }
        return generation, system, history, attributes


AskOption = Callable[[AskOptions], None]


def apply_options(options: Iterable[AskOption]) -> AskOptions:
    opts = AskOptions()
    for option in options:
        option(opts)
    return opts


def with_context(key: str, value: Any) -> AskOption:
    """Add an arbitrary key/value pair to the request."""

    def _apply(opts: AskOptions) -> None:
        opts.context[key] = value

    return _apply


def with_context_map(values: Mapping[str, Any]) -> AskOption:
    def _apply(opts: AskOptions) -> None:
        opts.context.update(values)

    return _apply


def with_system_prompt(prompt: str) -> AskOption:
    return with_context("system", prompt)


def with_temperature(value: float) -> AskOption:
    return with_context("temperature", value)


def with_max_tokens(value: int) -> AskOption:
    return with_context("max_tokens", value)


def with_history(messages: Iterable[Mapping[str, str]]) -> AskOption:
    """Prior turns as ``{"role": ..., "content": ...}`` mappings, oldest first."""
    return with_context("history", [dict(m) for m in messages])


def with_client_ip(ip: str) -> AskOption:
    return with_context("client_ip", ip)


def with_user_id(user_id: str) -> AskOption:
    return with_context("user_id", user_id)


__all__ = [
    "AskOptions",
    "AskOption",
    "apply_options",
    "with_context",
    "with_context_map",
    "with_system_prompt",
    "with_temperature",
    "with_max_tokens",
    "with_history",
    "with_client_ip",
    "with_user_id",
    "GENERATION_KEYS",
]
