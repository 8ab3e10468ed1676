"""
Test Fakes Module
=================

Provides fake implementations of external dependencies for testing.
These fakes simulate real behavior without requiring actual infrastructure,
enabling fast, reliable, and isolated unit tests.
"""

from .fake_redis import FakeRedisClient
from .fake_upstream import FakeUpstream, sse
from .recording_sink import RecordingSink

__all__ = [
    # Redis fakes
    "FakeRedisClient",
    # LLM upstream fakes
    "FakeUpstream",
    "sse",
    # SSE sink fakes
    "RecordingSink",
]
