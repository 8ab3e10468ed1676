from __future__ import annotations

from dependency_injector import containers, providers

from chatrelay.ai import providers as _ai_providers
from chatrelay.core.chatbot import Chatbot
from chatrelay.core.settings import FilterConfig, RateLimitConfig, Settings
from chatrelay.guard.content_filter import ContentFilter
from chatrelay.guard.pipeline import GuardPipeline
from chatrelay.guard.rate_limiter import RateLimiter
from chatrelay.history.backends import ConversationStore
from chatrelay.history.factory import choose as conversation_store_factory


def _rate_limit(settings: Settings) -> RateLimitConfig:
    return settings.rate_limit


def _content_filter(settings: Settings) -> FilterConfig:
    return settings.content_filter


def _validated(settings: Settings) -> Settings:
    settings.validate_config()
    return settings


class Container(containers.DeclarativeContainer):
    """Dependency Injection Container for the chat relay.

    Every service is a singleton so one driver (and one connection pool),
    one rate limiter and one filter are shared by all request tasks.
    """

    # Environment-driven settings, validated once on first access.
    config = providers.Singleton(Settings)
    settings = providers.Singleton(_validated, config)

    # LLM driver selected by CHATBOT_MODEL from the dynamic registry.
    llm_provider = providers.Singleton(_ai_providers.create, settings)

    rate_limiter = providers.Singleton(RateLimiter, providers.Callable(_rate_limit, settings))
    content_filter = providers.Singleton(
        ContentFilter, providers.Callable(_content_filter, settings)
    )
    guard = providers.Singleton(GuardPipeline, rate_limiter, content_filter)

    chatbot = providers.Singleton(
        Chatbot,
        settings,
        provider=llm_provider,
        guard=guard,
    )

    # Conversation history backend – pluggable
    conversation_store: providers.Singleton[ConversationStore] = providers.Singleton(
        conversation_store_factory, settings
    )
