"""Per-tournament poll scheduling.

Each tournament has at most one poll job, keyed ``poll-<tournament id>``, that
is either waiting on a timer, queued, or running. Workers pull jobs from an
``asyncio.Queue``; after a poll the job is rescheduled using the interval for
the tournament's (possibly new) phase, and polling stops on its own once the
tournament reaches a terminal phase.
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Final

from .models import (
    PHASE_IN_PROGRESS,
    PHASE_REGISTRATION_OPEN,
    TERMINAL_PHASES,
    parse_iso,
)
from .reconciliation import MatchReconciler
from .remote import RateLimitError, RemoteAuthError
from .storage import TournamentStorage

log = logging.getLogger(__name__)

ACTIVE_INTERVAL: Final = 15.0
REGISTRATION_INTERVAL: Final = 60.0
INACTIVE_INTERVAL: Final = 300.0

DEFAULT_CONCURRENCY: Final = 1
DEFAULT_MAX_ATTEMPTS: Final = 3
DEFAULT_BACKOFF_BASE: Final = 1.0
DEFAULT_SHUTDOWN_TIMEOUT: Final = 30.0
DEFAULT_LEASE_SECONDS: Final = 300


def calculate_poll_interval(phase: str) -> float | None:
    """Seconds until the next poll for ``phase``; ``None`` stops polling."""
    if phase in TERMINAL_PHASES:
        return None
    if phase == PHASE_IN_PROGRESS:
        return ACTIVE_INTERVAL
    if phase == PHASE_REGISTRATION_OPEN:
        return REGISTRATION_INTERVAL
    return INACTIVE_INTERVAL


def default_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


@dataclass(slots=True)
class PollStatus:
    tournament_id: str
    phase: str
    last_polled_at: datetime | None
    next_poll_at: datetime | None
    interval: float | None
    in_flight: bool = False


@dataclass(slots=True)
class PollTrigger:
    scheduled: bool
    message: str


class PollScheduler:
    def __init__(
        self,
        storage: TournamentStorage,
        reconciler: MatchReconciler,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
        owner: str | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._storage = storage
        self._reconciler = reconciler
        self._concurrency = max(1, concurrency)
        self._max_attempts = max(1, max_attempts)
        self._backoff_base = backoff_base
        self._shutdown_timeout = shutdown_timeout
        self._lease_seconds = lease_seconds
        self._owner = owner or default_owner()
        self._sleep = sleep

        self._queue: asyncio.Queue[str | None] | None = None
        self._workers: list[asyncio.Task[None]] = []
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._due: dict[str, datetime] = {}
        self._queued: set[str] = set()
        self._in_flight: set[str] = set()
        self._accepting = False

    @staticmethod
    def job_id(tournament_id: str) -> str:
        return f"poll-{tournament_id}"

    @property
    def is_running(self) -> bool:
        return self._accepting

    def pending_jobs(self) -> list[str]:
        ids = set(self._timers) | self._queued | self._in_flight
        return sorted(self.job_id(tournament_id) for tournament_id in ids)

    async def start(self) -> None:
        if self._accepting:
            return
        self._queue = asyncio.Queue()
        self._accepting = True
        self._workers = [
            asyncio.create_task(self._worker(), name=f"poll-worker-{index}")
            for index in range(self._concurrency)
        ]
        await self.schedule_active_tournaments()
        log.info(
            "Poll scheduler started (%s worker(s), owner %s)",
            self._concurrency,
            self._owner,
        )

    async def schedule_active_tournaments(self) -> int:
        tournaments = await asyncio.to_thread(self._storage.list_active_tournaments)
        scheduled = 0
        for tournament in tournaments:
            interval = calculate_poll_interval(tournament.phase)
            if interval is not None and self.schedule_poll(tournament.tournament_id, interval):
                scheduled += 1
        log.info("Scheduled %s tournament(s) for polling", scheduled)
        return scheduled

    def schedule_poll(self, tournament_id: str, delay: float) -> bool:
        """Schedule ``tournament_id`` to be polled after ``delay`` seconds.

        A job still waiting on its timer has its delay replaced. Returns
        ``False`` when the scheduler is stopped or the job is already queued
        or running.
        """
        if not self._accepting:
            return False
        if tournament_id in self._queued or tournament_id in self._in_flight:
            log.debug("%s already queued or running", self.job_id(tournament_id))
            return False
        delay = max(0.0, float(delay))
        existing = self._timers.pop(tournament_id, None)
        if existing is not None:
            existing.cancel()
        loop = asyncio.get_running_loop()
        self._timers[tournament_id] = loop.call_later(delay, self._enqueue, tournament_id)
        self._due[tournament_id] = datetime.now(UTC) + timedelta(seconds=delay)
        return True

    def _enqueue(self, tournament_id: str) -> None:
        self._timers.pop(tournament_id, None)
        self._due.pop(tournament_id, None)
        if not self._accepting or self._queue is None:
            return
        if tournament_id in self._queued or tournament_id in self._in_flight:
            return
        self._queued.add(tournament_id)
        self._queue.put_nowait(tournament_id)

    async def _worker(self) -> None:
        queue = self._queue
        assert queue is not None
        while True:
            tournament_id = await queue.get()
            try:
                if tournament_id is None:
                    return
                self._queued.discard(tournament_id)
                self._in_flight.add(tournament_id)
                try:
                    next_delay = await self._run_job(tournament_id)
                except Exception:  # pylint: disable=broad-except
                    log.exception("%s crashed", self.job_id(tournament_id))
                    next_delay = INACTIVE_INTERVAL
                finally:
                    self._in_flight.discard(tournament_id)
                if next_delay is not None:
                    self.schedule_poll(tournament_id, next_delay)
            finally:
                queue.task_done()

    async def _run_job(self, tournament_id: str) -> float | None:
        """Poll once with retries; return the delay before the next poll."""
        job_id = self.job_id(tournament_id)
        acquired = await asyncio.to_thread(
            self._storage.acquire_poll_lease,
            tournament_id,
            self._owner,
            self._lease_seconds,
        )
        if not acquired:
            log.info("%s skipped: another process holds the poll lease", job_id)
            return await self._next_interval(tournament_id)

        try:
            attempt = 0
            while True:
                attempt += 1
                try:
                    summary = await self._reconciler.reconcile_tournament(tournament_id)
                except RemoteAuthError as exc:
                    log.critical(
                        "CRITICAL: auth error polling tournament %s, polling stopped: %s",
                        tournament_id,
                        exc,
                    )
                    return None
                except Exception as exc:  # pylint: disable=broad-except
                    if attempt >= self._max_attempts or not self._accepting:
                        log.error(
                            "%s failed after %s attempt(s): %s", job_id, attempt, exc
                        )
                        break
                    delay = self._backoff_base * 2 ** (attempt - 1)
                    if isinstance(exc, RateLimitError) and exc.retry_after:
                        delay = max(delay, exc.retry_after)
                    log.warning(
                        "%s attempt %s/%s failed: %s; retrying in %.1fs",
                        job_id,
                        attempt,
                        self._max_attempts,
                        exc,
                        delay,
                    )
                    await self._sleep(delay)
                    continue
                if summary is None:
                    log.debug("%s: tournament no longer exists", job_id)
                    return None
                log.info(
                    "%s completed (%s created, %s updated)",
                    job_id,
                    summary.created,
                    summary.updated,
                )
                break
        finally:
            await self._release_lease(tournament_id)
        return await self._next_interval(tournament_id)

    async def _release_lease(self, tournament_id: str) -> None:
        try:
            await asyncio.to_thread(
                self._storage.release_poll_lease, tournament_id, self._owner
            )
        except Exception:  # pylint: disable=broad-except
            log.exception("Failed to release poll lease for %s", tournament_id)

    async def _next_interval(self, tournament_id: str) -> float | None:
        tournament = await asyncio.to_thread(self._storage.get_tournament, tournament_id)
        if tournament is None:
            return None
        return calculate_poll_interval(tournament.phase)

    async def stop(self) -> None:
        """Stop accepting jobs and give running polls a bounded grace period."""
        if not self._accepting and not self._workers:
            return
        self._accepting = False
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._due.clear()

        queue = self._queue
        if queue is not None:
            dropped = 0
            while not queue.empty():
                queue.get_nowait()
                queue.task_done()
                dropped += 1
            if dropped:
                log.info("Dropped %s queued poll job(s) on shutdown", dropped)
            self._queued.clear()
            for _ in self._workers:
                queue.put_nowait(None)

        if self._workers:
            _, pending = await asyncio.wait(self._workers, timeout=self._shutdown_timeout)
            if pending:
                log.warning(
                    "Poll workers still busy after %.1fs; forcing close",
                    self._shutdown_timeout,
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        self._workers = []
        self._queue = None
        log.info("Poll scheduler stopped")

    async def get_poll_status(self, tournament_id: str) -> PollStatus | None:
        tournament = await asyncio.to_thread(self._storage.get_tournament, tournament_id)
        if tournament is None:
            return None
        interval = calculate_poll_interval(tournament.phase)
        last_polled = (
            parse_iso(tournament.last_polled_at) if tournament.last_polled_at else None
        )
        next_poll = self._due.get(tournament_id)
        if next_poll is None and last_polled is not None and interval is not None:
            next_poll = last_polled + timedelta(seconds=interval)
        return PollStatus(
            tournament_id=tournament_id,
            phase=tournament.phase,
            last_polled_at=last_polled,
            next_poll_at=next_poll,
            interval=interval,
            in_flight=tournament_id in self._in_flight,
        )

    async def trigger_immediate_poll(self, tournament_id: str) -> PollTrigger:
        tournament = await asyncio.to_thread(self._storage.get_tournament, tournament_id)
        if tournament is None:
            return PollTrigger(False, "Tournament not found")
        if tournament.is_terminal:
            return PollTrigger(False, "Tournament is completed or cancelled")
        if not self._accepting:
            return PollTrigger(False, "Polling service not running")
        if not self.schedule_poll(tournament_id, 0):
            return PollTrigger(False, "Poll already queued or running")
        return PollTrigger(True, "Poll scheduled for immediate execution")


__all__ = [
    "ACTIVE_INTERVAL",
    "INACTIVE_INTERVAL",
    "PollScheduler",
    "PollStatus",
    "PollTrigger",
    "REGISTRATION_INTERVAL",
    "calculate_poll_interval",
    "default_owner",
]
