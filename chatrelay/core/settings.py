"""
Settings for the chat relay. Every field maps to an environment variable of the
same (upper-cased) name; nested configs use ``__`` (e.g. ``REDIS__URL``).

Provider-, limiter- and filter-specific views are exposed as small read-only
models (``provider_config()``, ``rate_limit``, ``content_filter``) so the rest
of the package never reaches into the flat field list directly.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Annotated, Any

from pydantic import BaseModel, BeforeValidator, field_validator
from pydantic_settings import BaseSettings, NoDecode

from chatrelay.core.exceptions import (
    InvalidMaxTokensError,
    InvalidModelError,
    InvalidTemperatureError,
    InvalidTimeoutError,
    MissingAPIKeyError,
    MissingEndpointError,
    UnsupportedModelError,
)

# ---------------------------------------------------------------------------+
#  Durations                                                                 +
# ---------------------------------------------------------------------------+

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|us|µs|ns|h|m|s)")
_UNIT_SECONDS = {
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 1e-3,
    "us": 1e-6,
    "µs": 1e-6,
    "ns": 1e-9,
}


def parse_duration(value: Any) -> float:
    """Return *value* in seconds.

    Accepts numbers (seconds) and duration strings such as ``500ms``, ``30s``,
    ``1m30s`` or ``1h``.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")

    text = value.strip()
    if not text:
        raise ValueError("invalid duration: empty string")
    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    try:
        return sign * float(text)
    except ValueError:
        pass

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text) or pos == 0:
        raise ValueError(f"invalid duration: {value!r}")
    return sign * total


Duration = Annotated[float, BeforeValidator(parse_duration)]
CsvList = Annotated[list[str], NoDecode]


def _split_csv(v: Any) -> list[str]:
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    if isinstance(v, (list, tuple)):
        return [str(item) for item in v]
    return []


# ---------------------------------------------------------------------------+
#  Nested / derived configs                                                  +
# ---------------------------------------------------------------------------+

DEFAULT_PROMPT = "You are a helpful, friendly chatbot."

DEFAULT_INSTRUCTIONS = [
    "Avoid sharing external links.",
    "Refrain from quoting controversial sources.",
    "Use appropriate language.",
    "Reject harmful or dangerous requests.",
    "De-escalate potential conflicts and calm aggressive or rude users.",
]

DEFAULT_AGGRESSION_PATTERNS = ["hate", "kill", "stupid", "idiot"]

DEFAULT_LINK_PATTERN = r"https?://[\w\.-]+"

# Selection keys accepted by CHATBOT_MODEL.
SUPPORTED_MODELS = ("openai", "anthropic", "gemini", "xai", "meta", "ollama", "free")


class RedisConfig(BaseModel):
    enabled: bool = False
    url: str | None = None

    model_config = {"extra": "ignore"}


class ProviderConfig(BaseModel):
    """Credentials and addressing for one upstream provider."""

    api_key: str | None = None
    model: str
    endpoint: str

    model_config = {"extra": "ignore", "frozen": True}


class RateLimitConfig(BaseModel):
    requests_per_minute: int = 10
    burst_size: int = 5  # accepted for compatibility; admission ignores it
    window: float = 60.0

    model_config = {"extra": "ignore", "frozen": True}


class FilterConfig(BaseModel):
    enabled: bool = True
    instructions: list[str] = DEFAULT_INSTRUCTIONS
    profanities: list[str] = []
    aggression_patterns: list[str] = DEFAULT_AGGRESSION_PATTERNS
    link_pattern: str = DEFAULT_LINK_PATTERN

    model_config = {"extra": "ignore", "frozen": True}


class Settings(BaseSettings):
    if TYPE_CHECKING:  # pragma: no cover

        def __init__(self, **data: Any) -> None: ...

    """
    Settings for the chat relay.

    Behaviour:
        chatbot_model (env: CHATBOT_MODEL) selects the provider driver
        chatbot_timeout (env: CHATBOT_TIMEOUT) accepts ``30s`` style durations
    Guard config lives in the ``RATE_LIMIT_*`` and ``FILTER_*`` variables.
    """

    # --- Behaviour ---
    chatbot_model: str = "free"
    chatbot_prompt: str = DEFAULT_PROMPT
    chatbot_language: str = "en"
    chatbot_tone: str = "neutral"
    chatbot_timeout: Duration = 30.0
    chatbot_max_tokens: int = 256
    chatbot_temperature: float = 0.7
    chatbot_emojis: bool = True
    chatbot_deescalate: bool = True
    chatbot_funny: bool = False

    # --- Providers ---
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o"
    openai_endpoint: str = "https://api.openai.com/v1/chat/completions"

    anthropic_api_key: str | None = None
    anthropic_model: str = "claude-3-sonnet-20240229"
    anthropic_endpoint: str = "https://api.anthropic.com/v1/messages"

    gemini_api_key: str | None = None
    gemini_model: str = "gemini-1.5-pro"
    gemini_endpoint: str = "https://generativelanguage.googleapis.com/v1beta/models"

    xai_api_key: str | None = None
    xai_model: str = "grok-1"
    xai_endpoint: str = "https://api.x.ai/v1/chat/completions"

    meta_api_key: str | None = None
    meta_model: str = "llama-3-70b"
    meta_endpoint: str = "https://api.meta.ai/v1/chat/completions"

    ollama_endpoint: str = "http://localhost:11434/api/chat"
    ollama_model: str = "llama2"

    # Per-driver HTTP timeouts, distinct from the caller deadline.
    provider_request_timeout: Duration = 30.0
    ollama_request_timeout: Duration = 60.0

    # --- Guard ---
    rate_limit_requests: int = 10
    rate_limit_burst: int = 5
    rate_limit_window: Duration = 60.0

    filter_enabled: bool = True
    filter_instructions: CsvList = DEFAULT_INSTRUCTIONS
    filter_profanities: CsvList = []
    filter_aggression_patterns: CsvList = DEFAULT_AGGRESSION_PATTERNS
    filter_link_pattern: str = DEFAULT_LINK_PATTERN

    # --- HTTP surface ---
    chatbot_host: str = "0.0.0.0"
    chatbot_port: int = 8080
    chatbot_route_prefix: str = "/chat"
    chatbot_stream_fallback: bool = True  # False -> 501 for non-streaming drivers
    chatbot_stream_buffer: int = 16

    # --- Conversation history ---
    redis: RedisConfig = RedisConfig()
    history_max_messages: int = 50

    # --- observability ---
    metrics_port: int = 0  # Prometheus exporter port (0 = disabled)

    @field_validator(
        "filter_instructions",
        "filter_profanities",
        "filter_aggression_patterns",
        mode="before",
    )
    @classmethod
    def _csv(cls, v: Any) -> list[str]:  # noqa: D401
        """
        Allow simple comma-separated strings in .env:

            FILTER_PROFANITIES=darn,heck
        """
        return _split_csv(v)

    @field_validator("chatbot_model", mode="before")
    @classmethod
    def _normalise_model(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
        "env_nested_delimiter": "__",  # Enable nested env vars like REDIS__URL
    }

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def provider_config(self, key: str | None = None) -> ProviderConfig:
        """Return credentials/model/endpoint for provider *key* (default: selected)."""
        key = (key or self.chatbot_model).lower()
        if key == "ollama":
            return ProviderConfig(model=self.ollama_model, endpoint=self.ollama_endpoint)
        if key == "free":
            return ProviderConfig(model="free-model", endpoint="")
        if key not in SUPPORTED_MODELS:
            raise UnsupportedModelError(key)
        return ProviderConfig(
            api_key=getattr(self, f"{key}_api_key"),
            model=getattr(self, f"{key}_model"),
            endpoint=getattr(self, f"{key}_endpoint"),
        )

    @property
    def rate_limit(self) -> RateLimitConfig:
        return RateLimitConfig(
            requests_per_minute=self.rate_limit_requests,
            burst_size=self.rate_limit_burst,
            window=self.rate_limit_window,
        )

    @property
    def content_filter(self) -> FilterConfig:
        return FilterConfig(
            enabled=self.filter_enabled,
            instructions=list(self.filter_instructions),
            profanities=list(self.filter_profanities),
            aggression_patterns=list(self.filter_aggression_patterns),
            link_pattern=self.filter_link_pattern,
        )

    def validate_config(self) -> None:
        """Raise the matching :class:`ConfigError` subclass for unusable settings."""
        if not self.chatbot_model:
            raise InvalidModelError()
        if self.chatbot_timeout <= 0:
            raise InvalidTimeoutError()
        if self.chatbot_max_tokens <= 0:
            raise InvalidMaxTokensError()
        if not 0 <= self.chatbot_temperature <= 2:
            raise InvalidTemperatureError()
        if self.chatbot_model not in SUPPORTED_MODELS:
            raise UnsupportedModelError(self.chatbot_model)

        if self.chatbot_model == "free":
            return
        if self.chatbot_model == "ollama":
            if not self.ollama_endpoint:
                raise MissingEndpointError(self.chatbot_model)
            return
        cfg = self.provider_config()
        if not cfg.api_key:
            raise MissingAPIKeyError(self.chatbot_model)
        if not cfg.endpoint:
            raise MissingEndpointError(self.chatbot_model)


__all__ = [
    "Settings",
    "RedisConfig",
    "ProviderConfig",
    "RateLimitConfig",
    "FilterConfig",
    "SUPPORTED_MODELS",
    "parse_duration",
]
