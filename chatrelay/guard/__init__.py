"""Pre-dispatch guards."""

from chatrelay.guard.content_filter import ContentFilter, FilteredMessage
from chatrelay.guard.pipeline import GuardPipeline, resolve_client_id
from chatrelay.guard.rate_limiter import RateLimiter

__all__ = ["ContentFilter", "FilteredMessage", "GuardPipeline", "RateLimiter", "resolve_client_id"]
