"""System prompt composition from behaviour settings and filter output."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from chatrelay.core.settings import Settings

AGGRESSION_HINT = (
    "The user's last message reads as hostile. Stay calm, do not mirror the tone "
    "and steer the conversation back to something constructive."
)


def compose_system_prompt(
    settings: Settings,
    filter_context: Mapping[str, Any] | None = None,
    override: str | None = None,
) -> str:
    filter_context = filter_context or {}
    lines = [override or settings.chatbot_prompt]

    if settings.chatbot_language and settings.chatbot_language.lower() != "en":
        lines.append(f"Always answer in the language with code '{settings.chatbot_language}'.")
    if settings.chatbot_tone and settings.chatbot_tone.lower() != "neutral":
        lines.append(f"Use a {settings.chatbot_tone} tone.")
    lines.append(
        "Emojis are welcome where they fit." if settings.chatbot_emojis else "Do not use emojis."
    )
    if settings.chatbot_funny:
        lines.append("Feel free to be light-hearted and add a little humour.")
    if settings.chatbot_deescalate:
        lines.append("If the conversation gets heated, de-escalate politely.")

    instructions = filter_context.get("system_instructions") or []
    if instructions:
        lines.append("Guidelines:")
        lines.extend(f"- {item}" for item in instructions)
    if filter_context.get("aggression_detected"):
        lines.append(AGGRESSION_HINT)
    if filter_context.get("links_filtered"):
        lines.append("Links in the user's message were removed before it reached you.")
    return "\n".join(lines)


__all__ = ["compose_system_prompt"]
