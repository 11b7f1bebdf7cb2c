from __future__ import annotations

import asyncio
import logging

import pytest

from fakes import make_match, make_remote_set, make_remote_tournament, make_tournament
from fightrise.models import (
    CALLED,
    COMPLETED,
    NOT_STARTED,
    PHASE_COMPLETED,
    PHASE_IN_PROGRESS,
    PHASE_REGISTRATION_OPEN,
    EntrantLink,
    Event,
    match_id_for_set,
)
from fightrise.reconciliation import MatchReconciler, ReconciliationError
from fightrise.remote import (
    SET_STATE_COMPLETED,
    SET_STATE_NOT_STARTED,
    RemoteAuthError,
    RemoteEntrant,
    RemoteSourceError,
)


@pytest.fixture
def reconciler(storage, remote, lifecycle) -> MatchReconciler:
    return MatchReconciler(storage, remote, lifecycle)


@pytest.fixture
def tournament(storage, remote):
    tournament = make_tournament()
    storage.save_tournament(tournament)
    remote.tournament = make_remote_tournament()
    return tournament


@pytest.mark.asyncio
async def test_ready_set_creates_match_and_calls_it(
    reconciler, storage, remote, notifier, tournament
):
    storage.link_entrant(EntrantLink(tournament_id="t1", entrant_id="e1", discord_id=101))
    remote.sets["ev1"] = [make_remote_set("set-1")]

    summary = await reconciler.reconcile_tournament("t1")

    assert summary.created == 1
    assert summary.updated == 0
    assert summary.events == 1
    match = storage.get_match(match_id_for_set("set-1"))
    assert match.state == CALLED
    assert match.conversation_id == "thread-1"
    assert [player.discord_id for player in match.players] == [101, None]
    assert [player.remote_entrant_id for player in match.players] == ["e1", "e2"]
    assert notifier.participants == [("thread-1", 101)]
    assert storage.get_tournament("t1").last_polled_at is not None


@pytest.mark.asyncio
async def test_sets_without_both_entrants_or_not_ready_are_skipped(
    reconciler, storage, remote, tournament
):
    remote.sets["ev1"] = [
        make_remote_set("set-1", entrants=(("e1", "Alice"), None)),
        make_remote_set("set-2", state=SET_STATE_NOT_STARTED),
        make_remote_set("set-3", state=SET_STATE_COMPLETED, scores=(2, 0)),
    ]

    summary = await reconciler.reconcile_tournament("t1")

    assert summary.created == 0
    assert storage.list_event_matches("ev1") == []


@pytest.mark.asyncio
async def test_repeat_polls_do_not_duplicate(reconciler, storage, remote, notifier, tournament):
    remote.sets["ev1"] = [make_remote_set("set-1"), make_remote_set("set-2")]

    first = await reconciler.reconcile_tournament("t1")
    second = await reconciler.reconcile_tournament("t1")

    assert first.created == 2
    assert second.created == 0
    assert len(storage.list_event_matches("ev1")) == 2
    assert len(notifier.created) == 2


@pytest.mark.asyncio
async def test_concurrent_polls_create_one_match(reconciler, storage, remote, notifier, tournament):
    remote.sets["ev1"] = [make_remote_set("set-1")]

    summaries = await asyncio.gather(
        reconciler.reconcile_tournament("t1"),
        reconciler.reconcile_tournament("t1"),
    )

    assert sum(summary.created for summary in summaries) == 1
    assert len(storage.list_event_matches("ev1")) == 1
    assert len(notifier.created) == 1


@pytest.mark.asyncio
async def test_remote_completion_is_synced_once(reconciler, storage, remote, tournament):
    storage.create_match(make_match("set-1", state=CALLED, conversation_id="thread-9"))
    remote.sets["ev1"] = [make_remote_set("set-1", state=SET_STATE_COMPLETED, scores=(1, 2))]

    first = await reconciler.reconcile_tournament("t1")
    second = await reconciler.reconcile_tournament("t1")

    assert first.updated == 1
    assert second.updated == 0
    match = storage.get_match(match_id_for_set("set-1"))
    assert match.state == COMPLETED
    assert match.winner().player_name == "Bob"
    assert match.result_submitted is True


@pytest.mark.asyncio
async def test_sets_are_paged(storage, remote, lifecycle, tournament):
    reconciler = MatchReconciler(storage, remote, lifecycle, page_size=2)
    remote.sets["ev1"] = [make_remote_set(f"set-{index}") for index in range(5)]

    summary = await reconciler.reconcile_tournament("t1")

    assert summary.created == 5
    assert remote.set_pages_fetched["ev1"] == 3


@pytest.mark.asyncio
async def test_set_paging_is_capped(storage, remote, lifecycle, tournament, caplog):
    reconciler = MatchReconciler(storage, remote, lifecycle, page_size=2, max_pages=2)
    remote.sets["ev1"] = [make_remote_set(f"set-{index}") for index in range(10)]
    remote.total_pages_override = 1000

    with caplog.at_level(logging.WARNING, logger="fightrise.reconciliation"):
        summary = await reconciler.reconcile_tournament("t1")

    assert summary.created == 4
    assert remote.set_pages_fetched["ev1"] == 2
    assert "Stopped paging sets for event ev1 after 2 pages" in caplog.text


@pytest.mark.asyncio
async def test_failed_event_does_not_block_siblings(reconciler, storage, remote, tournament):
    remote.tournament = make_remote_tournament(
        events=(("ev1", "Street Fighter 6"), ("ev2", "Tekken 8"))
    )
    remote.sets["ev1"] = [make_remote_set("set-1")]
    remote.set_errors["ev2"] = RemoteSourceError("boom")

    with pytest.raises(ReconciliationError) as excinfo:
        await reconciler.reconcile_tournament("t1")

    assert list(excinfo.value.failures) == ["ev2"]
    assert storage.get_match(match_id_for_set("set-1")) is not None
    assert storage.get_tournament("t1").last_polled_at is None


@pytest.mark.asyncio
async def test_auth_failure_is_reraised(reconciler, remote, tournament):
    remote.set_errors["ev1"] = RemoteAuthError("bad key")

    with pytest.raises(RemoteAuthError):
        await reconciler.reconcile_tournament("t1")


@pytest.mark.asyncio
async def test_missing_remote_tournament_is_an_error(reconciler, remote, tournament):
    remote.tournament = None

    with pytest.raises(RemoteSourceError):
        await reconciler.reconcile_tournament("t1")


@pytest.mark.asyncio
async def test_unknown_tournament_returns_none(reconciler):
    assert await reconciler.reconcile_tournament("missing") is None


@pytest.mark.asyncio
async def test_terminal_tournament_is_not_fetched(reconciler, storage, remote):
    storage.save_tournament(make_tournament(phase=PHASE_COMPLETED))
    remote.tournament_errors.append(AssertionError("should not fetch"))

    summary = await reconciler.reconcile_tournament("t1")

    assert summary.phase == PHASE_COMPLETED
    assert summary.created == 0


@pytest.mark.asyncio
async def test_remote_start_moves_registration_to_in_progress(reconciler, storage, remote):
    storage.save_tournament(make_tournament(phase=PHASE_REGISTRATION_OPEN))
    remote.tournament = make_remote_tournament(state=2)

    summary = await reconciler.reconcile_tournament("t1")

    assert summary.phase == PHASE_IN_PROGRESS
    assert storage.get_tournament("t1").phase == PHASE_IN_PROGRESS


@pytest.mark.asyncio
async def test_remote_completion_completes_tournament(reconciler, storage, remote, tournament):
    remote.tournament = make_remote_tournament(state=3)

    summary = await reconciler.reconcile_tournament("t1")

    assert summary.phase == PHASE_COMPLETED
    assert storage.get_tournament("t1").phase == PHASE_COMPLETED


@pytest.mark.asyncio
async def test_events_removed_remotely_are_deleted(reconciler, storage, remote, tournament):
    storage.save_event(Event(tournament_id="t1", event_id="ev-old", name="Old"))

    await reconciler.reconcile_tournament("t1")

    assert [event.event_id for event in storage.list_events("t1")] == ["ev1"]


@pytest.mark.asyncio
async def test_entrants_are_counted_during_registration(storage, remote, lifecycle):
    reconciler = MatchReconciler(storage, remote, lifecycle, page_size=2)
    storage.save_tournament(make_tournament(phase=PHASE_REGISTRATION_OPEN))
    remote.tournament = make_remote_tournament(state=1)
    remote.entrants["ev1"] = [
        RemoteEntrant(entrant_id=f"e{index}", name=f"Player {index}")
        for index in range(5)
    ]

    summary = await reconciler.reconcile_tournament("t1")

    assert summary.phase == PHASE_REGISTRATION_OPEN
    assert storage.list_events("t1")[0].entrant_count == 5


@pytest.mark.asyncio
async def test_conversation_failure_keeps_new_match(
    reconciler, storage, remote, notifier, tournament
):
    remote.sets["ev1"] = [make_remote_set("set-1")]
    notifier.fail_create = RuntimeError("missing permissions")

    summary = await reconciler.reconcile_tournament("t1")

    assert summary.created == 1
    match = storage.get_match(match_id_for_set("set-1"))
    assert match.state == NOT_STARTED
    assert match.conversation_id is None


@pytest.mark.asyncio
async def test_next_poll_retries_conversation_for_uncalled_match(
    reconciler, storage, remote, notifier, tournament
):
    remote.sets["ev1"] = [make_remote_set("set-1")]
    notifier.fail_create = RuntimeError("discord outage")
    await reconciler.reconcile_tournament("t1")

    notifier.fail_create = None
    summary = await reconciler.reconcile_tournament("t1")

    assert summary.created == 0
    match = storage.get_match(match_id_for_set("set-1"))
    assert match.state == CALLED
    assert match.conversation_id == "thread-1"
    assert len(notifier.created) == 1

    await reconciler.reconcile_tournament("t1")
    assert len(notifier.created) == 1
