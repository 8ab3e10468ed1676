from __future__ import annotations

import re

import pytest

from chatrelay.core.settings import DEFAULT_INSTRUCTIONS, FilterConfig
from chatrelay.guard.content_filter import ContentFilter


@pytest.fixture
def content_filter() -> ContentFilter:
    return ContentFilter(FilterConfig(profanities=["darn", "heck"]))


def test_profanity_replaced_whole_word_case_insensitive(content_filter: ContentFilter) -> None:
    result = content_filter.handle("Darn it, what the HECK. Darned heckler.")
    assert result.message == "*** it, what the ***. Darned heckler."


def test_links_removed_and_flagged(content_filter: ContentFilter) -> None:
    result = content_filter.handle("see https://example.com/page and http://a.b")
    assert result.message == "see [link removed]/page and [link removed]"
    assert result.context["links_filtered"] is True


def test_aggression_detected_without_rewriting(content_filter: ContentFilter) -> None:
    result = content_filter.handle("you are STUPID")
    assert result.message == "you are STUPID"
    assert result.context["aggression_detected"] is True


def test_clean_message_carries_instructions_only(content_filter: ContentFilter) -> None:
    result = content_filter.handle("Hello")
    assert result.message == "Hello"
    assert result.context == {"system_instructions": DEFAULT_INSTRUCTIONS}


def test_disabled_filter_is_identity() -> None:
    f = ContentFilter(FilterConfig(enabled=False, profanities=["darn"]))
    result = f.handle("darn https://x.y idiot")
    assert result.message == "darn https://x.y idiot"
    assert result.context == {}


def test_filtering_is_idempotent(content_filter: ContentFilter) -> None:
    once = content_filter.handle("heck, visit https://spam.example now, idiot")
    twice = content_filter.handle(once.message)
    assert twice.message == once.message


def test_empty_instruction_list_omits_key() -> None:
    f = ContentFilter(FilterConfig(instructions=[]))
    assert "system_instructions" not in f.handle("hi").context


async def test_update_config_swaps_patterns(content_filter: ContentFilter) -> None:
    await content_filter.update_config(FilterConfig(profanities=["gosh"], link_pattern=""))

    result = content_filter.handle("gosh darn https://example.com")
    assert result.message == "*** darn https://example.com"
    assert content_filter.config.profanities == ["gosh"]


async def test_update_config_rejects_bad_regex(content_filter: ContentFilter) -> None:
    with pytest.raises(re.error):
        await content_filter.update_config(FilterConfig(link_pattern="(unclosed"))
    assert content_filter.handle("darn").message == "***"
