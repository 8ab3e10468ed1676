"""
chatrelay – framework-agnostic AI chat with an aiohttp HTTP surface.

One :class:`~chatrelay.core.chatbot.Chatbot` multiplexes a single chat
abstraction over OpenAI, Anthropic, Gemini, xAI, Meta, Ollama and a local
fallback, guarded by a per-client rate limiter and a content filter.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
