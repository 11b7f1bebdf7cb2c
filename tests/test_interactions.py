from __future__ import annotations

import discord
import pytest

from bots.interactions import INVALID_BUTTON_MESSAGE, InteractionRouter
from fakes import make_match, make_tournament
from fightrise.models import CALLED, CHECKED_IN, COMPLETED, PENDING_CONFIRMATION


class FakeMessage:
    def __init__(self) -> None:
        self.edits: list[dict[str, object]] = []

    async def edit(self, **kwargs) -> None:
        self.edits.append(kwargs)


class FakeResponse:
    def __init__(self) -> None:
        self.messages: list[dict[str, object]] = []

    async def send_message(self, message: str | None = None, *, ephemeral: bool) -> None:
        self.messages.append({"content": message, "ephemeral": ephemeral})


class FakeUser:
    def __init__(self, user_id: int) -> None:
        self.id = user_id
        self.mention = f"<@{user_id}>"


class FakeInteraction:
    def __init__(
        self,
        custom_id: str,
        user_id: int,
        *,
        interaction_type=discord.InteractionType.component,
    ) -> None:
        self.type = interaction_type
        self.data = {"custom_id": custom_id}
        self.user = FakeUser(user_id)
        self.response = FakeResponse()
        self.message = FakeMessage()


@pytest.fixture
def router(lifecycle, notifier) -> InteractionRouter:
    return InteractionRouter(lifecycle, notifier)


def _store(storage, **kwargs):
    storage.save_tournament(make_tournament())
    match = make_match(conversation_id="thread-9", **kwargs)
    storage.create_match(match)
    return match


def _button_ids(edit: dict[str, object]) -> list[str]:
    view = edit["view"]
    return [item.custom_id for item in view.children]


def test_handles_only_match_buttons():
    assert InteractionRouter.handles("checkin:abc:1") is True
    assert InteractionRouter.handles("confirm:abc") is True
    assert InteractionRouter.handles("vote:abc") is False
    assert InteractionRouter.handles(None) is False


@pytest.mark.asyncio
async def test_route_rejects_malformed_ids(router):
    assert await router.route("checkin:", 101) is None
    assert await router.route("report:abc", 101) is None
    bad_slot = await router.route("report:abc:9", 101)
    assert bad_slot.success is False
    assert bad_slot.message == "Invalid winner slot."


@pytest.mark.asyncio
async def test_check_in_buttons_update_prompt(router, storage, notifier):
    match = _store(storage, state=CALLED, check_in_deadline="2024-01-01T12:10:00.000000Z")

    first = FakeInteraction(f"checkin:{match.match_id}:1", 101)
    assert await router.dispatch(first) is True
    assert first.response.messages == [
        {"content": "Checked in! Waiting for your opponent.", "ephemeral": True}
    ]
    embed = first.message.edits[0]["embed"]
    assert embed.description == "✅ <@101> vs <@202>"
    assert notifier.messages == []

    second = FakeInteraction(f"checkin:{match.match_id}:2", 202)
    await router.dispatch(second)

    assert storage.get_match(match.match_id).state == CHECKED_IN
    assert _button_ids(second.message.edits[0]) == [
        f"report:{match.match_id}:1",
        f"report:{match.match_id}:2",
    ]
    assert notifier.messages == [("thread-9", "Both players are checked in. Good luck!")]


@pytest.mark.asyncio
async def test_self_report_pings_opponent(router, storage, notifier):
    match = _store(storage, state=CHECKED_IN, checked_in=(True, True))

    interaction = FakeInteraction(f"report:{match.match_id}:1", 101)
    await router.dispatch(interaction)

    assert storage.get_match(match.match_id).state == PENDING_CONFIRMATION
    assert _button_ids(interaction.message.edits[0]) == [
        f"confirm:{match.match_id}",
        f"dispute:{match.match_id}",
    ]
    assert notifier.messages == [
        ("thread-9", "<@202> please confirm or dispute the reported result.")
    ]


@pytest.mark.asyncio
async def test_confirmation_announces_winner_and_archives(router, storage, notifier):
    match = _store(
        storage,
        state=PENDING_CONFIRMATION,
        checked_in=(True, True),
        reported_by_slot=1,
        winner_slot=1,
    )

    interaction = FakeInteraction(f"confirm:{match.match_id}", 202)
    await router.dispatch(interaction)

    assert storage.get_match(match.match_id).state == COMPLETED
    assert interaction.message.edits[0]["view"] is None
    assert notifier.messages == [("thread-9", "\U0001f3c6 <@101> wins!")]
    assert notifier.archived == ["thread-9"]


@pytest.mark.asyncio
async def test_dispute_shows_disputed_prompt(router, storage, notifier):
    match = _store(
        storage,
        state=PENDING_CONFIRMATION,
        checked_in=(True, True),
        reported_by_slot=1,
        winner_slot=1,
    )

    interaction = FakeInteraction(f"dispute:{match.match_id}", 202)
    await router.dispatch(interaction)

    assert storage.get_match(match.match_id).state == CHECKED_IN
    embed = interaction.message.edits[0]["embed"]
    assert embed.footer.text == "Please report the correct result or contact a TO"
    assert notifier.archived == []


@pytest.mark.asyncio
async def test_failed_action_only_replies(router, storage, notifier):
    match = _store(storage, state=CALLED)

    interaction = FakeInteraction(f"checkin:{match.match_id}:1", 999)
    await router.dispatch(interaction)

    assert interaction.response.messages == [
        {"content": "You are not a participant in this match.", "ephemeral": True}
    ]
    assert interaction.message.edits == []
    assert notifier.messages == []


@pytest.mark.asyncio
async def test_malformed_button_gets_generic_reply(router):
    interaction = FakeInteraction("report:abc", 101)

    assert await router.dispatch(interaction) is True
    assert interaction.response.messages[0]["content"] == INVALID_BUTTON_MESSAGE


@pytest.mark.asyncio
async def test_foreign_interactions_are_ignored(router):
    slash = FakeInteraction(
        "checkin:abc:1", 101, interaction_type=discord.InteractionType.application_command
    )
    foreign = FakeInteraction("vote:enter", 101)

    assert await router.dispatch(slash) is False
    assert await router.dispatch(foreign) is False
    assert slash.response.messages == []
    assert foreign.response.messages == []
