"""Route match-thread button clicks to the lifecycle state machine."""

from __future__ import annotations

import logging
from typing import Final

import discord

from bots.discord_channel import build_embed, build_view
from fightrise.lifecycle import ActionResult, MatchLifecycle, Outcome
from fightrise.models import CHECKED_IN, COMPLETED, DQ, PENDING_CONFIRMATION
from fightrise.notifications import (
    PREFIX_CHECK_IN,
    PREFIX_CONFIRM,
    PREFIX_DISPUTE,
    PREFIX_REPORT,
    NotificationChannel,
    disputed_prompt,
    parse_interaction_id,
    prompt_for_state,
)
from fightrise.validation import InvalidValueError, validate_player_slot

log = logging.getLogger("fightrise.interactions")

MATCH_PREFIXES: Final = frozenset(
    {PREFIX_CHECK_IN, PREFIX_REPORT, PREFIX_CONFIRM, PREFIX_DISPUTE}
)
INVALID_BUTTON_MESSAGE: Final = "This button is no longer valid."


class InteractionRouter:
    def __init__(
        self,
        lifecycle: MatchLifecycle,
        notifier: NotificationChannel | None = None,
    ) -> None:
        self._lifecycle = lifecycle
        self._notifier = notifier

    @staticmethod
    def handles(custom_id: str | None) -> bool:
        if not custom_id:
            return False
        prefix, _ = parse_interaction_id(custom_id)
        return prefix in MATCH_PREFIXES

    async def route(self, custom_id: str, actor_id: int) -> ActionResult | None:
        """Run the lifecycle action encoded in ``custom_id``.

        Returns ``None`` for malformed ids.
        """
        prefix, parts = parse_interaction_id(custom_id)
        if not parts or not parts[0]:
            return None
        match_id = parts[0]
        if prefix == PREFIX_CHECK_IN:
            return await self._lifecycle.check_in_player(match_id, actor_id)
        if prefix == PREFIX_REPORT:
            if len(parts) < 2:
                return None
            try:
                winner_slot = validate_player_slot(parts[1])
            except InvalidValueError:
                return ActionResult.fail(Outcome.INVALID_SLOT, "Invalid winner slot.")
            score = parts[2] if len(parts) > 2 and parts[2] else None
            return await self._lifecycle.report_score(
                match_id, actor_id, winner_slot, score
            )
        if prefix == PREFIX_CONFIRM:
            return await self._lifecycle.confirm_result(match_id, actor_id, True)
        if prefix == PREFIX_DISPUTE:
            return await self._lifecycle.confirm_result(match_id, actor_id, False)
        return None

    async def dispatch(self, interaction: discord.Interaction) -> bool:
        """Handle a component interaction; return ``False`` if it is not ours."""
        if interaction.type != discord.InteractionType.component:
            return False
        data = interaction.data or {}
        custom_id = data.get("custom_id")
        if not isinstance(custom_id, str) or not self.handles(custom_id):
            return False

        result = await self.route(custom_id, interaction.user.id)
        if result is None:
            await interaction.response.send_message(INVALID_BUTTON_MESSAGE, ephemeral=True)
            return True

        await interaction.response.send_message(result.message, ephemeral=True)
        if result.success and result.match is not None:
            prefix, _ = parse_interaction_id(custom_id)
            await self._refresh_prompt(interaction.message, result, prefix)
            await self._announce(result)
        return True

    async def _refresh_prompt(
        self, message: discord.Message | None, result: ActionResult, prefix: str
    ) -> None:
        if message is None or result.match is None:
            return
        match = result.match
        if prefix == PREFIX_DISPUTE and match.state == CHECKED_IN:
            prompt = disputed_prompt(match)
        else:
            prompt = prompt_for_state(match)
        try:
            await message.edit(embed=build_embed(prompt), view=build_view(prompt))
        except discord.HTTPException as exc:
            log.warning("Failed to update prompt for match %s: %s", match.match_id, exc)

    async def _announce(self, result: ActionResult) -> None:
        match = result.match
        if self._notifier is None or match is None or not match.conversation_id:
            return
        conversation_id = match.conversation_id
        if match.state == PENDING_CONFIRMATION and match.reported_by_slot is not None:
            opponent = match.opponent_of(match.reported_by_slot)
            if opponent is not None:
                await self._notifier.post_message(
                    conversation_id,
                    f"{opponent.display()} please confirm or dispute the reported result.",
                )
        elif result.both_checked_in:
            await self._notifier.post_message(
                conversation_id, "Both players are checked in. Good luck!"
            )
        elif match.state in (COMPLETED, DQ):
            winner = match.winner()
            if winner is not None:
                await self._notifier.post_message(
                    conversation_id, f"\U0001f3c6 {winner.display()} wins!"
                )
            await self._notifier.archive(conversation_id)


__all__ = ["INVALID_BUTTON_MESSAGE", "InteractionRouter", "MATCH_PREFIXES"]
