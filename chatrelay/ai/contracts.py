"""Formal structural contract for LLM back-ends.

Every driver consumes the same provider-neutral :class:`NeutralRequest` and
satisfies :class:`LLMProvider`.  Streaming and health probing are optional
capabilities expressed as separate protocols so callers can test for them with
``isinstance`` instead of switching on provider type.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field, ValidationError, field_validator

from chatrelay.core.exceptions import InvalidInputError

Role = Literal["system", "user", "assistant"]


class Message(BaseModel):
    role: Role
    content: str

    model_config = {"frozen": True}

    @field_validator("content")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message content cannot be empty")
        return v


class GenerationParams(BaseModel):
    """Sampling knobs; drivers drop the ones their API does not know."""

    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=256, gt=0)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    top_k: int | None = Field(default=None, gt=0)
    stop: list[str] = []
    seed: int | None = None

    model_config = {"extra": "ignore", "frozen": True}


class NeutralRequest(BaseModel):
    """Provider-agnostic description of a single chat completion call."""

    model: str
    messages: list[Message] = Field(min_length=1)
    system_prompt: str | None = None
    generation: GenerationParams = GenerationParams()
    attributes: dict[str, Any] = {}
    # Absolute event-loop time (``loop.time()``) after which the call is abandoned.
    deadline: float | None = None

    @property
    def prompt(self) -> str:
        """Content of the current (last) user turn."""
        return self.messages[-1].content

    def system_text(self) -> str | None:
        """System prompt plus any system-role history entries, joined."""
        parts = [self.system_prompt] if self.system_prompt else []
        parts.extend(m.content for m in self.messages if m.role == "system")
        return "\n\n".join(parts) if parts else None

    def chat_messages(self) -> list[Message]:
        """Messages with the system prompt materialized as a leading system turn."""
        if not self.system_prompt:
            return list(self.messages)
        return [Message(role="system", content=self.system_prompt), *self.messages]


def build_request(**fields: Any) -> NeutralRequest:
    """Construct a :class:`NeutralRequest`, mapping validation failures to ``InvalidInputError``."""
    try:
        return NeutralRequest(**fields)
    except ValidationError as exc:
        first = exc.errors()[0]
        loc = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidInputError(f"{loc}: {first.get('msg', 'invalid value')}") from exc


@runtime_checkable
class LLMProvider(Protocol):
    """Structural interface every concrete driver must implement."""

    # Model name reported by health checks (e.g. "gpt-4o", "free-model").
    name: str
    # Provider key (e.g. "openai", "local").
    provider: str

    async def ask(self, request: NeutralRequest) -> str:
        """Return the complete response text or raise a classified ``ChatbotError``."""

    async def close(self) -> None:
        """Release pooled connections."""


@runtime_checkable
class StreamingProvider(Protocol):
    def ask_stream(self, request: NeutralRequest) -> AsyncIterator[str]:
        """Yield text fragments; raise a classified ``ChatbotError`` on upstream failure."""


@runtime_checkable
class HealthChecker(Protocol):
    async def health(self, deadline: float | None = None) -> None:
        """Return normally when the upstream is reachable, raise otherwise."""


__all__ = [
    "Message",
    "GenerationParams",
    "NeutralRequest",
    "build_request",
    "LLMProvider",
    "StreamingProvider",
    "HealthChecker",
]
