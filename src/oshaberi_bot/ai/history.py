"""Serialization and trimming of client-held turn histories."""

from __future__ import annotations

from pydantic import TypeAdapter, ValidationError

from oshaberi_bot.ai.models import Turn
from oshaberi_bot.log import get_logger

logger = get_logger(__name__)

MAX_TURNS_AFTER_RESET = 5

_turns_adapter = TypeAdapter(list[Turn])


def dump_history(turns: list[Turn]) -> str:
    return _turns_adapter.dump_json(turns, exclude_none=True).decode()


def sanitize(turns: list[Turn]) -> list[Turn]:
    """Drop inline binary parts; re-reading images every turn would bloat the input."""
    return [
        turn.model_copy(update={"parts": [p for p in turn.parts if p.inline_data is None]})
        for turn in turns
    ]


def parse_history(raw: str) -> list[Turn]:
    """Deserialize and sanitize a stored history.

    Malformed JSON or an unexpected shape yields an empty history.
    """
    try:
        turns = _turns_adapter.validate_json(raw)
    except ValidationError as e:
        logger.warning("history_parse_failed", error=str(e), length=len(raw))
        return []
    return sanitize(turns)


def trim_history(turns: list[Turn], max_length: int = MAX_TURNS_AFTER_RESET) -> list[Turn]:
    """Keep the newest *max_length* turns, then drop leading turns until one is from the user."""
    result = turns[-max_length:] if max_length > 0 else []
    while result and result[0].role != "user":
        result = result[1:]
    return result
