"""Reconcile remote start.gg sets into local match records."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Final, Literal

from .lifecycle import MatchLifecycle
from .models import (
    NOT_STARTED,
    PHASE_COMPLETED,
    PHASE_CREATED,
    PHASE_IN_PROGRESS,
    PHASE_REGISTRATION_CLOSED,
    PHASE_REGISTRATION_OPEN,
    Event,
    Match,
    MatchPlayer,
    ReconcileSummary,
    Tournament,
    match_id_for_set,
    utc_now_iso,
)
from .remote import (
    TOURNAMENT_STATE_ACTIVE,
    TOURNAMENT_STATE_COMPLETED,
    RemoteAuthError,
    RemoteEntrant,
    RemoteSet,
    RemoteSourceError,
    RemoteTournament,
)
from .storage import DuplicateMatchError, TournamentStorage

log = logging.getLogger(__name__)

PAGE_SIZE: Final = 50
MAX_SET_PAGES: Final = 100
MAX_ENTRANT_PAGES: Final = 20
REGISTRATION_PHASES: Final = frozenset(
    {PHASE_CREATED, PHASE_REGISTRATION_OPEN, PHASE_REGISTRATION_CLOSED}
)

SetOutcome = Literal["created", "updated"]


@dataclass(slots=True)
class EventSyncResult:
    event_id: str
    created: int = 0
    updated: int = 0


class ReconciliationError(Exception):
    """One or more events of a tournament failed to reconcile."""

    def __init__(self, tournament_id: str, failures: dict[str, Exception]) -> None:
        super().__init__(
            f"{len(failures)} event(s) failed for tournament {tournament_id}: "
            + ", ".join(sorted(failures))
        )
        self.tournament_id = tournament_id
        self.failures = failures


class MatchReconciler:
    def __init__(
        self,
        storage: TournamentStorage,
        remote,
        lifecycle: MatchLifecycle,
        *,
        page_size: int = PAGE_SIZE,
        max_pages: int = MAX_SET_PAGES,
        entrant_max_pages: int = MAX_ENTRANT_PAGES,
    ) -> None:
        self._storage = storage
        self._remote = remote
        self._lifecycle = lifecycle
        self._page_size = page_size
        self._max_pages = max_pages
        self._entrant_max_pages = entrant_max_pages

    async def reconcile_tournament(self, tournament_id: str) -> ReconcileSummary | None:
        """Run one poll of ``tournament_id``.

        Events are reconciled concurrently and independently. Failed events
        do not stop their siblings; once every event has finished, an auth
        failure is re-raised as-is and any other failure is reported as a
        :class:`ReconciliationError` so the caller can retry the poll.
        """
        tournament = await asyncio.to_thread(self._storage.get_tournament, tournament_id)
        if tournament is None:
            log.debug("Tournament %s not found, skipping poll", tournament_id)
            return None
        if tournament.is_terminal:
            return ReconcileSummary(tournament_id=tournament_id, phase=tournament.phase)

        remote_tournament = await self._remote.fetch_tournament(tournament.slug)
        if remote_tournament is None:
            raise RemoteSourceError(f"Tournament {tournament.slug} not found on start.gg")

        phase = await self._sync_phase(tournament, remote_tournament.state)
        events = await self._sync_events(tournament, remote_tournament)
        summary = ReconcileSummary(
            tournament_id=tournament_id, phase=phase, events=len(events)
        )

        results = await asyncio.gather(
            *(self._reconcile_event(tournament, event, phase) for event in events),
            return_exceptions=True,
        )
        failures: dict[str, Exception] = {}
        for event, result in zip(events, results):
            if isinstance(result, EventSyncResult):
                summary.created += result.created
                summary.updated += result.updated
                continue
            if not isinstance(result, Exception):
                raise result
            failures[event.event_id] = result
            log.error(
                "Reconciliation failed for event %s of tournament %s: %s",
                event.event_id,
                tournament_id,
                result,
            )
        summary.failed_events = sorted(failures)

        for exc in failures.values():
            if isinstance(exc, RemoteAuthError):
                raise exc
        if failures:
            raise ReconciliationError(tournament_id, failures)

        await asyncio.to_thread(self._storage.mark_polled, tournament_id, utc_now_iso())
        if summary.created or summary.updated:
            log.info(
                "Tournament %s synced: %s created, %s updated",
                tournament_id,
                summary.created,
                summary.updated,
            )
        return summary

    async def _sync_phase(self, tournament: Tournament, remote_state: int | None) -> str:
        new_phase = tournament.phase
        if remote_state == TOURNAMENT_STATE_COMPLETED:
            new_phase = PHASE_COMPLETED
        elif remote_state == TOURNAMENT_STATE_ACTIVE and tournament.phase in REGISTRATION_PHASES:
            new_phase = PHASE_IN_PROGRESS
        if new_phase == tournament.phase:
            return tournament.phase

        changed = await asyncio.to_thread(
            self._storage.update_phase,
            tournament.tournament_id,
            tournament.phase,
            new_phase,
        )
        if not changed:
            current = await asyncio.to_thread(
                self._storage.get_tournament, tournament.tournament_id
            )
            return current.phase if current else tournament.phase
        log.info(
            "Tournament %s phase %s -> %s",
            tournament.tournament_id,
            tournament.phase,
            new_phase,
        )
        return new_phase

    async def _sync_events(
        self, tournament: Tournament, remote_tournament: RemoteTournament
    ) -> list[Event]:
        existing = {
            event.event_id: event
            for event in await asyncio.to_thread(
                self._storage.list_events, tournament.tournament_id
            )
        }
        now = utc_now_iso()
        events: list[Event] = []
        for remote_event in remote_tournament.events:
            current = existing.pop(remote_event.event_id, None)
            event = Event(
                tournament_id=tournament.tournament_id,
                event_id=remote_event.event_id,
                name=remote_event.name,
                entrant_count=remote_event.entrant_count,
                state=remote_event.state,
                updated_at=now,
            )
            if current is None or (
                current.name,
                current.entrant_count,
                current.state,
            ) != (event.name, event.entrant_count, event.state):
                await asyncio.to_thread(self._storage.save_event, event)
            else:
                event.updated_at = current.updated_at
            events.append(event)

        for orphan in existing.values():
            await asyncio.to_thread(
                self._storage.delete_event, tournament.tournament_id, orphan.event_id
            )
            log.info(
                "Removed event %s from tournament %s (no longer on start.gg)",
                orphan.event_id,
                tournament.tournament_id,
            )
        return events

    async def _reconcile_event(
        self, tournament: Tournament, event: Event, phase: str
    ) -> EventSyncResult:
        if phase in REGISTRATION_PHASES:
            count = await self.count_entrants(event.event_id)
            if count != event.entrant_count:
                event.entrant_count = count
                event.updated_at = utc_now_iso()
                await asyncio.to_thread(self._storage.save_event, event)
        return await self.sync_event_matches(tournament, event.event_id)

    async def count_entrants(self, event_id: str) -> int:
        total = 0
        page = 1
        while page <= self._entrant_max_pages:
            result = await self._remote.fetch_entrants(event_id, page, self._page_size)
            total += len(result.items)
            if not result.items or result.total_pages <= page:
                break
            page += 1
        return total

    async def sync_event_matches(
        self, tournament: Tournament, event_id: str
    ) -> EventSyncResult:
        result = EventSyncResult(event_id=event_id)
        known = {
            match.remote_set_id: match
            for match in await asyncio.to_thread(self._storage.list_event_matches, event_id)
        }
        links = await asyncio.to_thread(
            self._storage.get_entrant_links, tournament.tournament_id
        )

        page = 1
        while page <= self._max_pages:
            sets_page = await self._remote.fetch_sets(event_id, page, self._page_size)
            if not sets_page.items:
                break
            for remote_set in sets_page.items:
                outcome = await self._process_set(
                    tournament, event_id, remote_set, known, links
                )
                if outcome == "created":
                    result.created += 1
                elif outcome == "updated":
                    result.updated += 1
            if sets_page.total_pages <= page:
                break
            page += 1
        else:
            log.warning(
                "Stopped paging sets for event %s after %s pages", event_id, self._max_pages
            )
        return result

    async def _process_set(
        self,
        tournament: Tournament,
        event_id: str,
        remote_set: RemoteSet,
        known: dict[str, Match],
        links: dict[str, int],
    ) -> SetOutcome | None:
        entrants = remote_set.entrants()
        if entrants is None:
            return None

        existing = known.get(remote_set.set_id)
        if existing is None:
            if not remote_set.is_playable:
                return None
            match = self._build_match(tournament, event_id, remote_set, entrants, links)
            try:
                await asyncio.to_thread(self._storage.create_match, match)
            except DuplicateMatchError:
                log.debug("Set %s already has a match; another poll created it", remote_set.set_id)
                return None
            known[remote_set.set_id] = match
            log.info(
                "Match ready: %s %s vs %s",
                remote_set.round_label,
                entrants[0].name,
                entrants[1].name,
            )
            await self._open_conversation(match)
            return "created"

        if remote_set.is_completed and not existing.is_terminal:
            updated = await self._lifecycle.apply_remote_completion(existing, remote_set)
            if updated is None:
                return None
            known[remote_set.set_id] = updated
            return "updated"
        if (
            existing.state == NOT_STARTED
            and not existing.conversation_id
            and remote_set.is_playable
        ):
            # An earlier poll committed the match but could not call it.
            await self._open_conversation(existing)
        return None

    @staticmethod
    def _build_match(
        tournament: Tournament,
        event_id: str,
        remote_set: RemoteSet,
        entrants: tuple[RemoteEntrant, RemoteEntrant],
        links: dict[str, int],
    ) -> Match:
        now = utc_now_iso()
        players = [
            MatchPlayer(
                slot=slot,
                player_name=entrant.name,
                remote_entrant_id=entrant.entrant_id,
                discord_id=links.get(entrant.entrant_id),
            )
            for slot, entrant in enumerate(entrants, start=1)
        ]
        return Match(
            match_id=match_id_for_set(remote_set.set_id),
            remote_set_id=remote_set.set_id,
            tournament_id=tournament.tournament_id,
            event_id=event_id,
            identifier=remote_set.identifier,
            round_label=remote_set.round_label,
            round_number=remote_set.round_number,
            state=NOT_STARTED,
            players=players,
            created_at=now,
            updated_at=now,
        )

    async def _open_conversation(self, match: Match) -> None:
        # The match row is committed; a failure here leaves it playable without
        # a conversation.
        try:
            await self._lifecycle.call_match(match.match_id)
        except Exception:  # pylint: disable=broad-except
            log.exception("Conversation creation failed for match %s", match.match_id)


__all__ = [
    "EventSyncResult",
    "MAX_ENTRANT_PAGES",
    "MAX_SET_PAGES",
    "MatchReconciler",
    "PAGE_SIZE",
    "REGISTRATION_PHASES",
    "ReconciliationError",
]
