from __future__ import annotations

import re

from .models import PLAYER_SLOTS


class InvalidValueError(ValueError):
    """Base exception for validation failures."""


class InvalidScoreError(InvalidValueError):
    """Raised when a reported game score cannot be accepted."""


_SCORE_PATTERN = re.compile(r"^\s*(\d{1,2})\s*-\s*(\d{1,2})\s*$")
_SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]*$")
MAX_GAME_COUNT = 99


def parse_score(raw: str) -> tuple[int, int]:
    """Parse a ``"W-L"`` score from the winner's point of view."""
    match = _SCORE_PATTERN.match(raw or "")
    if not match:
        raise InvalidScoreError(f"Invalid score format: {raw!r} (expected e.g. 2-1)")
    wins, losses = int(match.group(1)), int(match.group(2))
    if wins > MAX_GAME_COUNT or losses > MAX_GAME_COUNT:
        raise InvalidScoreError(f"Scores must be between 0 and {MAX_GAME_COUNT}")
    if wins < losses:
        raise InvalidScoreError("The winner's score cannot be lower than the loser's")
    return wins, losses


def validate_player_slot(raw: str | int) -> int:
    try:
        slot = int(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidValueError(f"Invalid player slot: {raw!r}") from exc
    if slot not in PLAYER_SLOTS:
        raise InvalidValueError(f"Invalid player slot: {slot}")
    return slot


def normalize_tournament_slug(raw: str) -> str:
    """Accept a bare slug, ``tournament/<slug>`` or a full start.gg URL."""
    value = raw.strip().lower().rstrip("/")
    if not value:
        raise InvalidValueError("Tournament slug cannot be empty")
    if "tournament/" in value:
        value = value.split("tournament/", 1)[1].split("/", 1)[0]
    if not _SLUG_PATTERN.match(value):
        raise InvalidValueError(f"Invalid tournament slug: {raw}")
    return value


__all__ = [
    "InvalidScoreError",
    "InvalidValueError",
    "MAX_GAME_COUNT",
    "normalize_tournament_slug",
    "parse_score",
    "validate_player_slot",
]
