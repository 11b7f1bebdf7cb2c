"""Notification channel contract and the prompts the match lifecycle posts."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Final, Literal

from .models import (
    CALLED,
    CHECKED_IN,
    COMPLETED,
    DQ,
    PENDING_CONFIRMATION,
    Match,
    parse_iso,
)

CONVERSATION_TITLE_LIMIT: Final = 100
INTERACTION_SEPARATOR: Final = ":"

PREFIX_CHECK_IN: Final = "checkin"
PREFIX_REPORT: Final = "report"
PREFIX_CONFIRM: Final = "confirm"
PREFIX_DISPUTE: Final = "dispute"

COLOR_BLURPLE: Final = 0x5865F2
COLOR_SUCCESS: Final = 0x57F287
COLOR_WARNING: Final = 0xFEE75C
COLOR_ERROR: Final = 0xED4245

ButtonStyle = Literal["primary", "success", "danger", "secondary"]


def interaction_id(prefix: str, *parts: str | int) -> str:
    return INTERACTION_SEPARATOR.join([prefix, *(str(part) for part in parts)])


def parse_interaction_id(custom_id: str) -> tuple[str, list[str]]:
    prefix, *parts = custom_id.split(INTERACTION_SEPARATOR)
    return prefix, parts


def format_conversation_title(
    round_label: str, identifier: str, player_one: str, player_two: str
) -> str:
    """Return ``"{round} ({identifier}): {p1} vs {p2}"`` within the title limit."""
    title = f"{round_label} ({identifier}): {player_one} vs {player_two}"
    if len(title) <= CONVERSATION_TITLE_LIMIT:
        return title
    prefix = f"{round_label} ({identifier}): "
    separator = " vs "
    available = CONVERSATION_TITLE_LIMIT - len(prefix) - len(separator)
    max_name = available // 2 - 2

    def shorten(name: str) -> str:
        if len(name) > max_name:
            return name[: max(max_name, 0)] + ".."
        return name

    return f"{prefix}{shorten(player_one)}{separator}{shorten(player_two)}"


@dataclass(frozen=True, slots=True)
class PromptButton:
    custom_id: str
    label: str
    style: ButtonStyle = "primary"


@dataclass(frozen=True, slots=True)
class PromptField:
    name: str
    value: str
    inline: bool = True


@dataclass(frozen=True, slots=True)
class Prompt:
    title: str
    description: str
    color: int
    fields: tuple[PromptField, ...] = ()
    buttons: tuple[PromptButton, ...] = ()
    footer: str | None = None


class NotificationChannel:
    """Contract the core uses to talk to players.

    Implementations create one conversation per match under a parent channel.
    ``create_conversation`` failures propagate; the remaining operations are
    best-effort and should log rather than raise.
    """

    async def create_conversation(self, parent_channel_id: int, title: str) -> str:
        raise NotImplementedError

    async def post_prompt(self, conversation_id: str, prompt: Prompt) -> None:
        raise NotImplementedError

    async def post_message(self, conversation_id: str, content: str) -> None:
        raise NotImplementedError

    async def add_participant(self, conversation_id: str, participant_id: int) -> bool:
        raise NotImplementedError

    async def archive(self, conversation_id: str) -> None:
        raise NotImplementedError

    async def delete_conversation(self, conversation_id: str) -> None:
        raise NotImplementedError


def _versus(match: Match, *, mark_checked_in: bool = False) -> str:
    names: list[str] = []
    for player in match.players:
        label = player.display()
        if mark_checked_in and player.checked_in:
            label = f"✅ {label}"
        names.append(label)
    return " vs ".join(names)


def _base_fields(match: Match) -> list[PromptField]:
    return [PromptField(name="Match ID", value=match.identifier or match.match_id)]


def check_in_prompt(match: Match, deadline: datetime | None = None) -> Prompt:
    fields = _base_fields(match)
    fields.append(PromptField(name="Status", value="Waiting for check-in"))
    if deadline is None and match.check_in_deadline:
        deadline = parse_iso(match.check_in_deadline)
    if deadline is not None:
        fields.append(
            PromptField(name="Deadline", value=f"<t:{int(deadline.timestamp())}:R>")
        )
    buttons = tuple(
        PromptButton(
            custom_id=interaction_id(PREFIX_CHECK_IN, match.match_id, player.slot),
            label=f"Check In ({player.player_name})",
        )
        for player in match.players
    )
    return Prompt(
        title=match.round_label,
        description=_versus(match, mark_checked_in=True),
        color=COLOR_BLURPLE,
        fields=tuple(fields),
        buttons=buttons,
    )


def report_prompt(match: Match, *, status: str = "\U0001f3ae Match Live") -> Prompt:
    fields = _base_fields(match)
    fields.append(PromptField(name="Status", value=status))
    buttons = tuple(
        PromptButton(
            custom_id=interaction_id(PREFIX_REPORT, match.match_id, player.slot),
            label=f"{player.player_name} Won",
            style="success",
        )
        for player in match.players
    )
    return Prompt(
        title=match.round_label,
        description=_versus(match),
        color=COLOR_SUCCESS,
        fields=tuple(fields),
        buttons=buttons,
    )


def confirmation_prompt(match: Match) -> Prompt:
    winner = match.winner()
    loser = match.opponent_of(winner.slot) if winner else None
    fields = _base_fields(match)
    fields.append(PromptField(name="Status", value="⏳ Pending Confirmation"))
    if winner is not None:
        fields.append(PromptField(name="Reported Winner", value=winner.player_name))
    footer = (
        f"Waiting for {loser.player_name} to confirm or dispute"
        if loser is not None
        else None
    )
    return Prompt(
        title=match.round_label,
        description=_versus(match),
        color=COLOR_WARNING,
        fields=tuple(fields),
        buttons=(
            PromptButton(
                custom_id=interaction_id(PREFIX_CONFIRM, match.match_id),
                label="Confirm Result",
                style="success",
            ),
            PromptButton(
                custom_id=interaction_id(PREFIX_DISPUTE, match.match_id),
                label="Dispute",
                style="danger",
            ),
        ),
        footer=footer,
    )


def disputed_prompt(match: Match) -> Prompt:
    prompt = report_prompt(match, status="⚠️ Result Disputed")
    return Prompt(
        title=prompt.title,
        description=prompt.description,
        color=COLOR_ERROR,
        fields=prompt.fields,
        buttons=prompt.buttons,
        footer="Please report the correct result or contact a TO",
    )


def completed_prompt(match: Match) -> Prompt:
    winner = match.winner()
    fields = _base_fields(match)
    fields.append(PromptField(name="Status", value="✅ Complete"))
    fields.append(
        PromptField(
            name="Winner",
            value=f"\U0001f3c6 {winner.player_name if winner else 'Unknown'}",
        )
    )
    return Prompt(
        title=match.round_label,
        description=_versus(match),
        color=COLOR_SUCCESS,
        fields=tuple(fields),
    )


def prompt_for_state(match: Match) -> Prompt:
    if match.state == CALLED:
        return check_in_prompt(match)
    if match.state == PENDING_CONFIRMATION:
        return confirmation_prompt(match)
    if match.state in (COMPLETED, DQ):
        return completed_prompt(match)
    if match.state == CHECKED_IN:
        return report_prompt(match)
    fields = _base_fields(match)
    fields.append(PromptField(name="Status", value=match.state.replace("_", " ").title()))
    return Prompt(
        title=match.round_label,
        description=_versus(match),
        color=COLOR_BLURPLE,
        fields=tuple(fields),
    )


__all__ = [
    "COLOR_BLURPLE",
    "COLOR_ERROR",
    "COLOR_SUCCESS",
    "COLOR_WARNING",
    "CONVERSATION_TITLE_LIMIT",
    "NotificationChannel",
    "PREFIX_CHECK_IN",
    "PREFIX_CONFIRM",
    "PREFIX_DISPUTE",
    "PREFIX_REPORT",
    "Prompt",
    "PromptButton",
    "PromptField",
    "check_in_prompt",
    "completed_prompt",
    "confirmation_prompt",
    "disputed_prompt",
    "format_conversation_title",
    "interaction_id",
    "parse_interaction_id",
    "prompt_for_state",
    "report_prompt",
]
