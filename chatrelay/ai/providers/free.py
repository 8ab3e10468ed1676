"""Deterministic local fallback: keyword rules, no network, always healthy."""

from __future__ import annotations

import asyncio
import random

from chatrelay.ai.contracts import NeutralRequest
from chatrelay.core.settings import Settings

KEYS = ("free",)

# Checked in order; the first rule whose keywords appear in the message wins.
_RULES: list[tuple[tuple[str, ...], str]] = [
    (("hello", "hi"), "Hello! Nice to meet you. How can I help you today?"),
    (("how are you",), "I'm doing well, thank you for asking! How are you?"),
    (("thank",), "You're welcome! I'm happy to help."),
    (("bye", "goodbye"), "Goodbye! Have a great day!"),
    (("help",), "I'm here to help! Feel free to ask me any questions."),
    (("name",), "I'm a simple AI chatbot. You can call me Bot!"),
    (("?",), "That's an interesting question! While I'm a basic model, I'll do my best to help."),
]

_CANNED = [
    "That's interesting! Tell me more.",
    "I see what you mean.",
    "Thanks for sharing that with me.",
    "That's a good point.",
    "I understand.",
    "Could you elaborate on that?",
    "Interesting perspective!",
    "I'm listening, please go on.",
]


class FreeProvider:
    """In-process responder used when no upstream is configured."""

    name = "free-model"
    provider = "local"

    def __init__(self, *, latency: float = 0.1, rng: random.Random | None = None) -> None:
        self.latency = latency
        self._rng = rng or random.Random()

    def reply(self, message: str) -> str:
        text = message.lower()
        for keywords, response in _RULES:
            if any(k in text for k in keywords):
                return response
        return self._rng.choice(_CANNED)

    async def ask(self, request: NeutralRequest) -> str:
        # Cancellation from the caller's deadline interrupts the simulated latency.
        await asyncio.sleep(self.latency)
        return self.reply(request.prompt)

    async def health(self, deadline: float | None = None) -> None:
        return None

    async def close(self) -> None:
        return None


def build(settings: Settings) -> FreeProvider:
    return FreeProvider()
