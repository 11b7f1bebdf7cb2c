from __future__ import annotations

from datetime import UTC, datetime

import pytest

from fakes import make_match
from fightrise.models import (
    CALLED,
    CHECKED_IN,
    COMPLETED,
    DISPUTED,
    DQ,
    NOT_STARTED,
    PENDING_CONFIRMATION,
)
from fightrise.notifications import (
    COLOR_ERROR,
    CONVERSATION_TITLE_LIMIT,
    check_in_prompt,
    confirmation_prompt,
    disputed_prompt,
    format_conversation_title,
    interaction_id,
    parse_interaction_id,
    prompt_for_state,
)


def test_conversation_title_format():
    assert (
        format_conversation_title("Winners Round 1", "A", "Alice", "Bob")
        == "Winners Round 1 (A): Alice vs Bob"
    )


def test_long_names_are_shortened_to_fit():
    title = format_conversation_title("Losers Semi-Final", "AB", "x" * 80, "y" * 80)

    assert len(title) <= CONVERSATION_TITLE_LIMIT
    assert title.startswith("Losers Semi-Final (AB): ")
    assert " vs " in title
    assert title.endswith("..")


def test_interaction_ids_round_trip():
    custom_id = interaction_id("report", "m1", 2)
    assert custom_id == "report:m1:2"
    assert parse_interaction_id(custom_id) == ("report", ["m1", "2"])


def test_check_in_prompt_marks_checked_in_players():
    match = make_match(state=CALLED, checked_in=(False, True))
    deadline = datetime(2024, 1, 1, 12, 10, tzinfo=UTC)

    prompt = check_in_prompt(match, deadline)

    assert prompt.description == "<@101> vs ✅ <@202>"
    fields = {field.name: field.value for field in prompt.fields}
    assert fields["Deadline"] == "<t:1704111000:R>"
    assert [button.label for button in prompt.buttons] == [
        "Check In (Alice)",
        "Check In (Bob)",
    ]


def test_check_in_prompt_reads_stored_deadline():
    match = make_match(state=CALLED, check_in_deadline="2024-01-01T12:10:00.000000Z")

    fields = {field.name: field.value for field in check_in_prompt(match).fields}

    assert fields["Deadline"] == "<t:1704111000:R>"


def test_confirmation_prompt_names_reporter_and_confirmer():
    match = make_match(state=PENDING_CONFIRMATION, reported_by_slot=1, winner_slot=1)

    prompt = confirmation_prompt(match)

    fields = {field.name: field.value for field in prompt.fields}
    assert fields["Reported Winner"] == "Alice"
    assert prompt.footer == "Waiting for Bob to confirm or dispute"
    assert [button.style for button in prompt.buttons] == ["success", "danger"]


def test_disputed_prompt_offers_reporting_again():
    match = make_match(state=CHECKED_IN)

    prompt = disputed_prompt(match)

    assert prompt.color == COLOR_ERROR
    assert prompt.buttons[0].custom_id == f"report:{match.match_id}:1"


@pytest.mark.parametrize(
    ("state", "first_button"),
    [
        (CALLED, "checkin"),
        (CHECKED_IN, "report"),
        (PENDING_CONFIRMATION, "confirm"),
        (COMPLETED, None),
        (DQ, None),
        (DISPUTED, None),
        (NOT_STARTED, None),
    ],
)
def test_prompt_for_state(state, first_button):
    match = make_match(state=state, winner_slot=1, reported_by_slot=1)

    prompt = prompt_for_state(match)

    if first_button is None:
        assert prompt.buttons == ()
    else:
        assert prompt.buttons[0].custom_id.startswith(f"{first_button}:")


def test_completed_prompt_shows_winner():
    match = make_match(state=COMPLETED, winner_slot=2)

    fields = {field.name: field.value for field in prompt_for_state(match).fields}

    assert fields["Winner"] == "\U0001f3c6 Bob"
    assert fields["Status"] == "✅ Complete"
