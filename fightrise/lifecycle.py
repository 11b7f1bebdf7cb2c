"""Match lifecycle state machine.

Every transition is a conditional write against the match's prior state, so
two callers racing on the same match can never both win: the loser sees a
``STATE_CHANGED`` (or a more specific) outcome and the stored row is left
exactly as the winner wrote it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Final

from .models import (
    CALLED,
    CHECKED_IN,
    COMPLETED,
    DISPUTED,
    DQ,
    NOT_STARTED,
    OPEN_MATCH_STATES,
    PENDING_CONFIRMATION,
    PLAYER_SLOTS,
    EntrantLink,
    Match,
    isoformat_utc,
    parse_iso,
)
from .notifications import (
    NotificationChannel,
    check_in_prompt,
    format_conversation_title,
    report_prompt,
)
from .remote import RemoteSet
from .storage import TournamentStorage
from .validation import InvalidScoreError, parse_score

log = logging.getLogger(__name__)


class Outcome:
    OK: Final = "ok"
    NOT_FOUND: Final = "not_found"
    INVALID_STATE: Final = "invalid_state"
    NOT_PARTICIPANT: Final = "not_participant"
    ALREADY_CHECKED_IN: Final = "already_checked_in"
    DEADLINE_PASSED: Final = "deadline_passed"
    ALREADY_COMPLETED: Final = "already_completed"
    ALREADY_PENDING: Final = "already_pending"
    INVALID_SLOT: Final = "invalid_slot"
    INVALID_SCORE: Final = "invalid_score"
    SELF_CONFIRMATION: Final = "self_confirmation"
    STATE_CHANGED: Final = "state_changed"


STATE_CHANGED_MESSAGE: Final = "Match state changed. Please try again."


@dataclass(slots=True)
class ActionResult:
    success: bool
    outcome: str
    message: str
    match: Match | None = None
    both_checked_in: bool = False
    auto_completed: bool = False

    @classmethod
    def ok(cls, message: str, match: Match | None, **flags: bool) -> ActionResult:
        return cls(success=True, outcome=Outcome.OK, message=message, match=match, **flags)

    @classmethod
    def fail(cls, outcome: str, message: str, match: Match | None = None) -> ActionResult:
        return cls(success=False, outcome=outcome, message=message, match=match)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class MatchLifecycle:
    """Player and admin actions on a single match."""

    def __init__(
        self,
        storage: TournamentStorage,
        remote=None,
        notifier: NotificationChannel | None = None,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._storage = storage
        self._remote = remote
        self._notifier = notifier
        self._clock = clock

    async def _load(self, match_id: str) -> Match | None:
        return await asyncio.to_thread(self._storage.get_match, match_id)

    # ----- Calling a match -----
    async def call_match(self, match_id: str) -> str | None:
        """Open the match conversation and move the match to CALLED.

        Returns the conversation id, or ``None`` when the match could not be
        called. Calling an already-called match returns its existing
        conversation.
        """
        match = await self._load(match_id)
        if match is None:
            log.error("Cannot call match %s: not found", match_id)
            return None
        if match.conversation_id:
            return match.conversation_id
        if self._notifier is None:
            log.debug("No notification channel configured; match %s not called", match_id)
            return None
        if match.state != NOT_STARTED:
            log.info("Match %s is %s; not calling it", match_id, match.state)
            return None

        tournament = await asyncio.to_thread(
            self._storage.get_tournament, match.tournament_id
        )
        if tournament is None or tournament.channel_id is None:
            log.error(
                "Tournament %s has no channel configured; match %s not called",
                match.tournament_id,
                match_id,
            )
            return None

        deadline: datetime | None = None
        new_state = CHECKED_IN
        if tournament.require_check_in:
            deadline = self._clock() + timedelta(
                minutes=tournament.check_in_window_minutes
            )
            new_state = CALLED

        names = [player.player_name for player in match.players]
        while len(names) < 2:
            names.append("TBD")
        title = format_conversation_title(
            match.round_label, match.identifier, names[0], names[1]
        )
        conversation_id = await self._notifier.create_conversation(
            tournament.channel_id, title
        )

        try:
            updated = await asyncio.to_thread(
                self._storage.bind_conversation,
                match_id,
                conversation_id,
                new_state=new_state,
                check_in_deadline=isoformat_utc(deadline) if deadline else None,
            )
        except Exception:
            await self._discard_conversation(match_id, conversation_id)
            raise
        if updated is None:
            log.warning(
                "Match %s changed while opening its conversation; discarding %s",
                match_id,
                conversation_id,
            )
            await self._discard_conversation(match_id, conversation_id)
            current = await self._load(match_id)
            return current.conversation_id if current else None

        for player in updated.players:
            if player.discord_id is not None:
                await self._add_participant(updated, conversation_id, player.discord_id)

        prompt = (
            check_in_prompt(updated, deadline)
            if updated.state == CALLED
            else report_prompt(updated)
        )
        try:
            await self._notifier.post_prompt(conversation_id, prompt)
        except Exception:  # pylint: disable=broad-except
            log.exception("Failed to post prompt for match %s", match_id)

        log.info("Called match %s (%s) in %s", match_id, updated.state, conversation_id)
        return conversation_id

    async def _discard_conversation(self, match_id: str, conversation_id: str) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.delete_conversation(conversation_id)
        except Exception:  # pylint: disable=broad-except
            log.exception(
                "Failed to delete orphaned conversation %s for match %s",
                conversation_id,
                match_id,
            )

    async def _add_participant(
        self, match: Match, conversation_id: str, discord_id: int
    ) -> None:
        if self._notifier is None:
            return
        try:
            added = await self._notifier.add_participant(conversation_id, discord_id)
        except Exception:  # pylint: disable=broad-except
            log.exception(
                "Failed to add %s to conversation for match %s",
                discord_id,
                match.match_id,
            )
            return
        if not added:
            log.warning(
                "Could not add %s to conversation for match %s",
                discord_id,
                match.match_id,
            )

    # ----- Entrant linking -----
    async def link_entrant(self, link: EntrantLink) -> list[Match]:
        """Store ``link`` and apply it to the entrant's open matches.

        Matches created before the link existed get the Discord id written
        into the entrant's slot, and the player is added to the match
        conversation. Returns the matches that were updated.
        """
        await asyncio.to_thread(self._storage.link_entrant, link)
        events = await asyncio.to_thread(self._storage.list_events, link.tournament_id)
        linked: list[Match] = []
        for event in events:
            matches = await asyncio.to_thread(
                self._storage.list_event_matches, event.event_id
            )
            for match in matches:
                if match.is_terminal or match.tournament_id != link.tournament_id:
                    continue
                for player in match.players:
                    if player.remote_entrant_id != link.entrant_id:
                        continue
                    if player.discord_id == link.discord_id:
                        continue
                    updated = await asyncio.to_thread(
                        self._storage.link_match_player,
                        match.match_id,
                        player.slot,
                        link.entrant_id,
                        link.discord_id,
                    )
                    if updated is None:
                        log.info(
                            "Match %s closed before entrant %s could be linked",
                            match.match_id,
                            link.entrant_id,
                        )
                        continue
                    linked.append(updated)
                    if updated.conversation_id:
                        await self._add_participant(
                            updated, updated.conversation_id, link.discord_id
                        )
        if linked:
            log.info(
                "Linked entrant %s to %s in %s open match(es)",
                link.entrant_id,
                link.discord_id,
                len(linked),
            )
        return linked

    # ----- Check-in -----
    async def check_in_player(self, match_id: str, actor_id: int) -> ActionResult:
        match = await self._load(match_id)
        if match is None:
            return ActionResult.fail(Outcome.NOT_FOUND, "Match not found.")
        if match.state != CALLED:
            return ActionResult.fail(
                Outcome.INVALID_STATE, "Match is not in check-in phase.", match
            )
        slot = match.slot_for(actor_id)
        if slot is None:
            return ActionResult.fail(
                Outcome.NOT_PARTICIPANT, "You are not a participant in this match.", match
            )
        player = match.player(slot)
        if player is not None and player.checked_in:
            return ActionResult.fail(
                Outcome.ALREADY_CHECKED_IN, "You have already checked in.", match
            )
        now = self._clock()
        if match.check_in_deadline and now > parse_iso(match.check_in_deadline):
            return ActionResult.fail(
                Outcome.DEADLINE_PASSED, "Check-in deadline has passed.", match
            )

        updated = await asyncio.to_thread(
            self._storage.mark_player_checked_in, match_id, slot, isoformat_utc(now)
        )
        if updated is None:
            current = await self._load(match_id)
            current_player = current.player(slot) if current else None
            if current_player is not None and current_player.checked_in:
                return ActionResult.fail(
                    Outcome.ALREADY_CHECKED_IN, "You have already checked in.", current
                )
            return ActionResult.fail(Outcome.STATE_CHANGED, STATE_CHANGED_MESSAGE, current)

        if not updated.both_checked_in:
            return ActionResult.ok(
                "Checked in! Waiting for your opponent.", updated, both_checked_in=False
            )

        promoted = await asyncio.to_thread(
            self._storage.transition_match,
            match_id,
            expected=CALLED,
            new_state=CHECKED_IN,
            require={"players.1.checked_in": True, "players.2.checked_in": True},
        )
        if promoted is None:
            # Another writer got there first; only a promotion to CHECKED_IN
            # means the match is live.
            promoted = await self._load(match_id)
            if promoted is None or promoted.state != CHECKED_IN:
                return ActionResult.fail(
                    Outcome.STATE_CHANGED, STATE_CHANGED_MESSAGE, promoted
                )
        log.info("Both players checked in for match %s", match_id)
        return ActionResult.ok(
            "Checked in! Both players are ready. Match is live!",
            promoted,
            both_checked_in=True,
        )

    # ----- Reporting -----
    async def report_score(
        self,
        match_id: str,
        actor_id: int,
        winner_slot: int,
        score: str | None = None,
    ) -> ActionResult:
        match = await self._load(match_id)
        if match is None:
            return ActionResult.fail(Outcome.NOT_FOUND, "Match not found.")
        actor_slot = match.slot_for(actor_id)
        if actor_slot is None:
            return ActionResult.fail(
                Outcome.NOT_PARTICIPANT, "Only match participants can report scores.", match
            )
        if match.state == COMPLETED:
            return ActionResult.fail(
                Outcome.ALREADY_COMPLETED, "This match has already been completed.", match
            )
        if match.state == PENDING_CONFIRMATION:
            return ActionResult.fail(
                Outcome.ALREADY_PENDING,
                "A score has already been reported and is awaiting confirmation.",
                match,
            )
        if match.state != CHECKED_IN:
            return ActionResult.fail(
                Outcome.INVALID_STATE, "Match is not ready for score reporting.", match
            )
        if winner_slot not in PLAYER_SLOTS or match.player(winner_slot) is None:
            return ActionResult.fail(Outcome.INVALID_SLOT, "Invalid winner slot.", match)

        loser_slot = next(slot for slot in PLAYER_SLOTS if slot != winner_slot)
        changes: dict[str, object] = {
            f"players.{winner_slot}.is_winner": True,
            f"players.{loser_slot}.is_winner": False,
            "reported_by_slot": actor_slot,
        }
        if score:
            try:
                wins, losses = parse_score(score)
            except InvalidScoreError as exc:
                return ActionResult.fail(Outcome.INVALID_SCORE, str(exc), match)
            changes[f"players.{winner_slot}.reported_score"] = wins
            changes[f"players.{loser_slot}.reported_score"] = losses

        if winner_slot == actor_slot:
            updated = await asyncio.to_thread(
                self._storage.transition_match,
                match_id,
                expected=CHECKED_IN,
                new_state=PENDING_CONFIRMATION,
                changes=changes,
            )
            if updated is None:
                return ActionResult.fail(
                    Outcome.STATE_CHANGED, STATE_CHANGED_MESSAGE, await self._load(match_id)
                )
            log.info(
                "Match %s: slot %s reported a win, awaiting confirmation",
                match_id,
                actor_slot,
            )
            return ActionResult.ok(
                "Score reported! Waiting for your opponent to confirm.",
                updated,
                auto_completed=False,
            )

        # Reporting your own loss needs no confirmation.
        updated = await asyncio.to_thread(
            self._storage.transition_match,
            match_id,
            expected=CHECKED_IN,
            new_state=COMPLETED,
            changes=changes,
        )
        if updated is None:
            return ActionResult.fail(
                Outcome.STATE_CHANGED, STATE_CHANGED_MESSAGE, await self._load(match_id)
            )
        log.info("Match %s completed by loser report from slot %s", match_id, actor_slot)
        updated = await self._submit_result(updated)
        return ActionResult.ok("Match completed!", updated, auto_completed=True)

    async def confirm_result(
        self, match_id: str, actor_id: int, confirmed: bool
    ) -> ActionResult:
        match = await self._load(match_id)
        if match is None:
            return ActionResult.fail(Outcome.NOT_FOUND, "Match not found.")
        if match.state == COMPLETED:
            return ActionResult.fail(
                Outcome.ALREADY_COMPLETED, "This match has already been completed.", match
            )
        if match.state != PENDING_CONFIRMATION:
            return ActionResult.fail(
                Outcome.INVALID_STATE, "No pending result to confirm.", match
            )
        actor_slot = match.slot_for(actor_id)
        if actor_slot is None:
            return ActionResult.fail(
                Outcome.NOT_PARTICIPANT,
                "Only match participants can confirm or dispute results.",
                match,
            )
        if actor_slot == match.reported_by_slot:
            return ActionResult.fail(
                Outcome.SELF_CONFIRMATION,
                "You cannot confirm or dispute your own report.",
                match,
            )

        # The reporter guard stops a stale click from acting on a newer report.
        require = {"reported_by_slot": match.reported_by_slot}
        if confirmed:
            updated = await asyncio.to_thread(
                self._storage.transition_match,
                match_id,
                expected=PENDING_CONFIRMATION,
                new_state=COMPLETED,
                require=require,
            )
            if updated is None:
                return ActionResult.fail(
                    Outcome.STATE_CHANGED, STATE_CHANGED_MESSAGE, await self._load(match_id)
                )
            log.info("Match %s result confirmed by slot %s", match_id, actor_slot)
            updated = await self._submit_result(updated)
            return ActionResult.ok("Result confirmed! Match completed.", updated)

        changes: dict[str, object] = {"reported_by_slot": None}
        for slot in PLAYER_SLOTS:
            changes[f"players.{slot}.is_winner"] = None
            changes[f"players.{slot}.reported_score"] = None
        updated = await asyncio.to_thread(
            self._storage.transition_match,
            match_id,
            expected=PENDING_CONFIRMATION,
            new_state=CHECKED_IN,
            changes=changes,
            require=require,
        )
        if updated is None:
            return ActionResult.fail(
                Outcome.STATE_CHANGED, STATE_CHANGED_MESSAGE, await self._load(match_id)
            )
        log.info("Match %s result disputed by slot %s", match_id, actor_slot)
        return ActionResult.ok(
            "Result disputed. Please report the correct result.", updated
        )

    # ----- Administrative actions -----
    async def disqualify_player(
        self, match_id: str, slot: int, reason: str = "", admin_id: int | None = None
    ) -> ActionResult:
        match = await self._load(match_id)
        if match is None:
            return ActionResult.fail(Outcome.NOT_FOUND, "Match not found.")
        if match.is_terminal:
            return ActionResult.fail(
                Outcome.ALREADY_COMPLETED, "Match is already completed.", match
            )
        player = match.player(slot)
        opponent = match.opponent_of(slot)
        if player is None or opponent is None:
            return ActionResult.fail(
                Outcome.INVALID_SLOT, "Player not found in match.", match
            )

        updated = await asyncio.to_thread(
            self._storage.transition_match,
            match_id,
            expected=OPEN_MATCH_STATES,
            new_state=DQ,
            changes={
                f"players.{player.slot}.is_winner": False,
                f"players.{opponent.slot}.is_winner": True,
            },
        )
        if updated is None:
            return ActionResult.fail(
                Outcome.STATE_CHANGED,
                "Match has already been completed or DQ'd.",
                await self._load(match_id),
            )
        log.info(
            "Player %s DQ'd from match %s by %s: %s",
            player.player_name,
            match_id,
            admin_id,
            reason or "no reason given",
        )
        updated = await self._submit_result(updated)
        return ActionResult.ok(
            f"{player.player_name} has been disqualified. "
            f"{opponent.player_name} advances.",
            updated,
        )

    async def escalate_dispute(
        self, match_id: str, reason: str = "", admin_id: int | None = None
    ) -> ActionResult:
        match = await self._load(match_id)
        if match is None:
            return ActionResult.fail(Outcome.NOT_FOUND, "Match not found.")
        if match.is_terminal:
            return ActionResult.fail(
                Outcome.ALREADY_COMPLETED, "Match is already completed.", match
            )
        if match.state == DISPUTED:
            return ActionResult.fail(
                Outcome.INVALID_STATE, "Match is already disputed.", match
            )
        updated = await asyncio.to_thread(
            self._storage.transition_match,
            match_id,
            expected=OPEN_MATCH_STATES - {DISPUTED},
            new_state=DISPUTED,
        )
        if updated is None:
            return ActionResult.fail(
                Outcome.STATE_CHANGED, STATE_CHANGED_MESSAGE, await self._load(match_id)
            )
        log.warning(
            "Match %s escalated to dispute by %s: %s",
            match_id,
            admin_id,
            reason or "no reason given",
        )
        return ActionResult.ok("Match flagged for organizer review.", updated)

    # ----- Remote completion -----
    async def apply_remote_completion(
        self, match: Match, remote_set: RemoteSet
    ) -> Match | None:
        """Mark ``match`` completed because the remote set finished.

        Scores are copied only when both are numeric and at least one is
        positive; otherwise the match is completed without a winner. Returns
        ``None`` when the match was already terminal.
        """
        changes: dict[str, object] = {"result_submitted": True}
        first, second = remote_set.slots
        if (
            first.score is not None
            and second.score is not None
            and (first.score > 0 or second.score > 0)
        ):
            for index, remote_slot in enumerate(remote_set.slots):
                other = remote_set.slots[1 - index]
                local = self._local_slot_for(match, remote_slot, index)
                changes[f"players.{local}.reported_score"] = remote_slot.score
                changes[f"players.{local}.is_winner"] = remote_slot.score > other.score
        else:
            log.info(
                "Remote set %s completed without usable scores; leaving winner unset",
                remote_set.set_id,
            )

        updated = await asyncio.to_thread(
            self._storage.transition_match,
            match.match_id,
            expected=OPEN_MATCH_STATES,
            new_state=COMPLETED,
            changes=changes,
        )
        if updated is None:
            return None
        await self._archive(updated)
        return updated

    @staticmethod
    def _local_slot_for(match: Match, remote_slot, index: int) -> int:
        if remote_slot.entrant is not None:
            for player in match.players:
                if player.remote_entrant_id == remote_slot.entrant.entrant_id:
                    return player.slot
        return PLAYER_SLOTS[index]

    # ----- Side effects -----
    async def _submit_result(self, match: Match) -> Match:
        """Report a locally decided result to the remote source (best-effort)."""
        if self._remote is None:
            return match
        winner = match.winner()
        if winner is None or winner.remote_entrant_id is None:
            log.warning("Match %s has no remote winner to submit", match.match_id)
            return match
        try:
            acknowledged = await self._remote.report_result(
                match.remote_set_id, winner.remote_entrant_id
            )
        except Exception:  # pylint: disable=broad-except
            log.exception("Failed to submit result for match %s", match.match_id)
            return match
        if not acknowledged:
            return match
        updated = await asyncio.to_thread(
            self._storage.update_match_fields,
            match.match_id,
            {"result_submitted": True},
        )
        return updated or match

    async def _archive(self, match: Match) -> None:
        if self._notifier is None or not match.conversation_id:
            return
        try:
            await self._notifier.archive(match.conversation_id)
        except Exception:  # pylint: disable=broad-except
            log.exception(
                "Failed to archive conversation %s for match %s",
                match.conversation_id,
                match.match_id,
            )


__all__ = ["ActionResult", "MatchLifecycle", "Outcome", "STATE_CHANGED_MESSAGE"]
