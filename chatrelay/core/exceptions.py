"""
core/exceptions.py - Central module for custom exception classes.

Every failure the chat pipeline can surface is a :class:`ChatbotError` carrying
an :class:`ErrorKind` plus the HTTP status the web layer maps it to.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    CONFIG_INVALID = "config_invalid"
    RATE_LIMITED = "rate_limited"
    FILTER_BLOCKED = "filter_blocked"
    TIMEOUT = "timeout"
    UNAUTHORIZED = "unauthorized"
    INVALID_REQUEST = "invalid_request"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    MALFORMED_RESPONSE = "malformed_response"
    NO_CONTENT = "no_content"
    NOT_STREAMABLE = "not_streamable"
    STREAMING_UNSUPPORTED = "streaming_unsupported"


class DomainError(Exception):
    """
    Base class for domain-specific exceptions with a unified error message format.
    """

    def __init__(self, message: str):
        super().__init__(f"[DomainError] {message}")
        self.message = message


class ChatbotError(DomainError):
    """Classified failure raised anywhere between the guard and the provider."""

    kind: ErrorKind = ErrorKind.UPSTREAM_UNAVAILABLE
    status: int = 500

    def __init__(self, message: str, *, provider: str | None = None):
        super().__init__(message)
        self.provider = provider


class InvalidInputError(ChatbotError):
    """Raised when the caller's message or generation parameters are unusable."""

    kind = ErrorKind.INVALID_INPUT
    status = 400


class FilterBlockedError(ChatbotError):
    """Reserved for filters that reject a message outright."""

    kind = ErrorKind.FILTER_BLOCKED
    status = 400


class RateLimitedError(ChatbotError):
    """Raised when a client exhausted its sliding window."""

    kind = ErrorKind.RATE_LIMITED
    status = 429

    def __init__(self, limit: int, count: int, window: float):
        super().__init__(f"Rate limit exceeded. Limit: {limit}, Count: {count}, Window: {window:g}s")
        self.limit = limit
        self.count = count
        self.window = window


class UpstreamRateLimitedError(ChatbotError):
    """Raised when the provider itself answered 429."""

    kind = ErrorKind.RATE_LIMITED
    status = 429


class RequestTimeoutError(ChatbotError):
    """Raised when a call overruns its deadline."""

    kind = ErrorKind.TIMEOUT
    status = 408

    def __init__(self, operation: str = "request", *, provider: str | None = None):
        super().__init__("Request timeout", provider=provider)
        self.operation = operation


class UnauthorizedError(ChatbotError):
    kind = ErrorKind.UNAUTHORIZED
    status = 401


class InvalidRequestError(ChatbotError):
    kind = ErrorKind.INVALID_REQUEST
    status = 400


class UpstreamUnavailableError(ChatbotError):
    kind = ErrorKind.UPSTREAM_UNAVAILABLE
    status = 502


class MalformedResponseError(ChatbotError):
    kind = ErrorKind.MALFORMED_RESPONSE
    status = 500


class NoContentError(ChatbotError):
    kind = ErrorKind.NO_CONTENT
    status = 500


class NotStreamableError(ChatbotError):
    """Raised when the response sink cannot be flushed incrementally."""

    kind = ErrorKind.NOT_STREAMABLE
    status = 500

    def __init__(self, message: str = "streaming unsupported: sink is not flushable"):
        super().__init__(message)


class StreamingUnsupportedError(ChatbotError):
    """Raised when the provider cannot stream and one-chunk fallback is disabled."""

    kind = ErrorKind.STREAMING_UNSUPPORTED
    status = 501


# ---------------------------------------------------------------------------+
#  Configuration errors (fatal at startup)                                   +
# ---------------------------------------------------------------------------+


class ConfigError(ChatbotError):
    """Base exception for invalid settings detected by ``validate_config``."""

    kind = ErrorKind.CONFIG_INVALID
    config_kind: str = "config_invalid"


class InvalidModelError(ConfigError):
    config_kind = "invalid_model"

    def __init__(self) -> None:
        super().__init__("invalid model specified")


class InvalidTimeoutError(ConfigError):
    config_kind = "invalid_timeout"

    def __init__(self) -> None:
        super().__init__("timeout must be greater than 0")


class InvalidMaxTokensError(ConfigError):
    config_kind = "invalid_max_tokens"

    def __init__(self) -> None:
        super().__init__("max_tokens must be greater than 0")


class InvalidTemperatureError(ConfigError):
    config_kind = "invalid_temperature"

    def __init__(self) -> None:
        super().__init__("temperature must be between 0 and 2")


class UnsupportedModelError(ConfigError):
    config_kind = "unsupported_model"

    def __init__(self, model: str):
        super().__init__(f"unsupported model: {model}")
        self.model = model


class MissingAPIKeyError(ConfigError):
    config_kind = "missing_api_key"

    def __init__(self, model: str):
        super().__init__(f"API key is required for this model: {model}")
        self.model = model


class MissingEndpointError(ConfigError):
    config_kind = "missing_endpoint"

    def __init__(self, model: str):
        super().__init__(f"endpoint is required for this model: {model}")
        self.model = model
