"""
Transcript serialization for critic consumption and export.

Responsibilities:
- Render a finished transcript as speaker-labelled plain text (critic prompt).
- Render a transcript as JSON-ready dicts (call records, UI export).

Non-responsibilities:
- No prompt wording (adapters/llm/prompts.py)
- No storage
"""

from __future__ import annotations

from typing import Any, Iterable

from context.transcript import Role, TranscriptMessage

SPEAKER_LABELS: dict[Role, str] = {
    Role.CALLER: "CALLER",
    Role.OPERATOR: "OPERATOR",
}


def format_transcript_for_critic(messages: Iterable[TranscriptMessage]) -> str:
    """
    Output format:

        CALLER: my roof is gone

        OPERATOR: I'm so sorry. Are you in a safe location right now?
    """
    return "\n\n".join(
        f"{SPEAKER_LABELS[message.role]}: {message.text}" for message in messages
    )


def serialize_messages(messages: Iterable[TranscriptMessage]) -> list[dict[str, Any]]:
    return [message.to_dict() for message in messages]


def deserialize_messages(items: Iterable[dict[str, Any]]) -> tuple[TranscriptMessage, ...]:
    return tuple(TranscriptMessage.from_dict(item) for item in items)
