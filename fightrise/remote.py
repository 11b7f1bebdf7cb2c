"""Remote tournament source backed by the start.gg GraphQL API.

The engine only ever sees the validated dataclasses defined here; raw
payloads never leave this module.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Final

import aiohttp

from . import queries

log: Final = logging.getLogger(__name__)

DEFAULT_API_URL: Final = "https://api.start.gg/gql/alpha"

SET_STATE_NOT_STARTED: Final = 1
SET_STATE_STARTED: Final = 2
SET_STATE_COMPLETED: Final = 3
SET_STATE_READY: Final = 6
SET_STATE_IN_PROGRESS: Final = 7
PLAYABLE_SET_STATES: Final = frozenset(
    {SET_STATE_READY, SET_STATE_STARTED, SET_STATE_IN_PROGRESS}
)

TOURNAMENT_STATE_CREATED: Final = 1
TOURNAMENT_STATE_ACTIVE: Final = 2
TOURNAMENT_STATE_COMPLETED: Final = 3


class RemoteSourceError(Exception):
    """Transient failure talking to the remote tournament source."""


class RateLimitError(RemoteSourceError):
    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class RemoteAuthError(RemoteSourceError):
    """The API key was rejected; retrying will not help."""


class RemotePayloadError(RemoteSourceError):
    """The remote source returned data that does not match the expected shape."""


def _require(data: object, field_name: str, context: str) -> Any:
    if not isinstance(data, dict) or data.get(field_name) is None:
        raise RemotePayloadError(f"{context} is missing '{field_name}'")
    return data[field_name]


def _as_int(value: object, context: str) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise RemotePayloadError(f"{context} is not an integer: {value!r}") from exc


@dataclass(frozen=True, slots=True)
class RemoteEntrant:
    entrant_id: str
    name: str

    @classmethod
    def from_payload(cls, data: object) -> RemoteEntrant:
        return cls(
            entrant_id=str(_require(data, "id", "entrant")),
            name=str(_require(data, "name", "entrant")),
        )


@dataclass(frozen=True, slots=True)
class RemoteSlot:
    entrant: RemoteEntrant | None
    score: int | None

    @classmethod
    def from_payload(cls, data: object) -> RemoteSlot:
        if not isinstance(data, dict):
            return cls(entrant=None, score=None)
        entrant_data = data.get("entrant")
        entrant = RemoteEntrant.from_payload(entrant_data) if entrant_data else None
        score: int | None = None
        standing = data.get("standing") or {}
        stats = standing.get("stats") if isinstance(standing, dict) else None
        score_data = stats.get("score") if isinstance(stats, dict) else None
        if isinstance(score_data, dict):
            raw_value = score_data.get("value")
            if isinstance(raw_value, (int, float)) and not isinstance(raw_value, bool):
                score = int(raw_value)
        return cls(entrant=entrant, score=score)


@dataclass(frozen=True, slots=True)
class RemoteSet:
    set_id: str
    identifier: str
    round_label: str
    round_number: int
    state: int
    slots: tuple[RemoteSlot, RemoteSlot]

    @classmethod
    def from_payload(cls, data: object) -> RemoteSet:
        set_id = str(_require(data, "id", "set"))
        context = f"set {set_id}"
        raw_slots = data.get("slots") or []  # type: ignore[union-attr]
        if not isinstance(raw_slots, list):
            raise RemotePayloadError(f"{context} has malformed slots")
        parsed = [RemoteSlot.from_payload(slot) for slot in raw_slots[:2]]
        while len(parsed) < 2:
            parsed.append(RemoteSlot(entrant=None, score=None))
        return cls(
            set_id=set_id,
            identifier=str(data.get("identifier") or ""),  # type: ignore[union-attr]
            round_label=str(data.get("fullRoundText") or ""),  # type: ignore[union-attr]
            round_number=_as_int(data.get("round") or 0, context),  # type: ignore[union-attr]
            state=_as_int(_require(data, "state", context), context),
            slots=(parsed[0], parsed[1]),
        )

    @property
    def is_playable(self) -> bool:
        return self.state in PLAYABLE_SET_STATES

    @property
    def is_completed(self) -> bool:
        return self.state == SET_STATE_COMPLETED

    def entrants(self) -> tuple[RemoteEntrant, RemoteEntrant] | None:
        first, second = self.slots[0].entrant, self.slots[1].entrant
        if first is None or second is None:
            return None
        return first, second


@dataclass(frozen=True, slots=True)
class RemoteEvent:
    event_id: str
    name: str
    entrant_count: int
    state: str | None

    @classmethod
    def from_payload(cls, data: object) -> RemoteEvent:
        event_id = str(_require(data, "id", "event"))
        count = data.get("numEntrants")  # type: ignore[union-attr]
        state = data.get("state")  # type: ignore[union-attr]
        return cls(
            event_id=event_id,
            name=str(data.get("name") or event_id),  # type: ignore[union-attr]
            entrant_count=_as_int(count, f"event {event_id}") if count is not None else 0,
            state=str(state) if state is not None else None,
        )


@dataclass(frozen=True, slots=True)
class RemoteTournament:
    tournament_id: str
    name: str
    slug: str
    state: int | None
    events: tuple[RemoteEvent, ...]

    @classmethod
    def from_payload(cls, data: object) -> RemoteTournament:
        tournament_id = str(_require(data, "id", "tournament"))
        raw_events = data.get("events") or []  # type: ignore[union-attr]
        state = data.get("state")  # type: ignore[union-attr]
        return cls(
            tournament_id=tournament_id,
            name=str(data.get("name") or ""),  # type: ignore[union-attr]
            slug=str(data.get("slug") or ""),  # type: ignore[union-attr]
            state=_as_int(state, "tournament state") if state is not None else None,
            events=tuple(RemoteEvent.from_payload(event) for event in raw_events),
        )


@dataclass(frozen=True, slots=True)
class Page:
    items: tuple
    total_pages: int


def _parse_connection(connection: object, parser, context: str) -> Page:
    if connection is None:
        return Page(items=(), total_pages=0)
    page_info = _require(connection, "pageInfo", context)
    total_pages = _as_int(page_info.get("totalPages") or 0, f"{context} totalPages")
    nodes = connection.get("nodes") or []  # type: ignore[union-attr]
    return Page(items=tuple(parser(node) for node in nodes), total_pages=total_pages)


class StartGGClient:
    """Thin async client for the handful of start.gg calls the bot needs."""

    def __init__(
        self,
        api_key: str,
        *,
        api_url: str = DEFAULT_API_URL,
        session: aiohttp.ClientSession | None = None,
        timeout: float = 30.0,
    ) -> None:
        if not api_key:
            raise ValueError("start.gg API key is required")
        self._api_key = api_key
        self._api_url = api_url
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def _request(self, query: str, variables: dict[str, object]) -> dict[str, Any]:
        session = await self._get_session()
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with session.post(
                self._api_url,
                json={"query": query, "variables": variables},
                headers=headers,
            ) as resp:
                if resp.status in (401, 403):
                    raise RemoteAuthError(
                        f"start.gg rejected the API key (HTTP {resp.status})"
                    )
                if resp.status == 429:
                    retry_after_raw = resp.headers.get("Retry-After")
                    try:
                        retry_after = float(retry_after_raw) if retry_after_raw else None
                    except ValueError:
                        retry_after = None
                    raise RateLimitError("start.gg rate limit exceeded", retry_after)
                if resp.status >= 400:
                    raise RemoteSourceError(f"start.gg returned HTTP {resp.status}")
                payload = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise RemoteSourceError(f"Request to start.gg failed: {exc}") from exc

        if not isinstance(payload, dict):
            raise RemotePayloadError("start.gg response is not a JSON object")
        errors = payload.get("errors")
        if errors:
            messages = ", ".join(
                str(error.get("message", error)) if isinstance(error, dict) else str(error)
                for error in errors
            )
            raise RemoteSourceError(f"GraphQL errors: {messages}")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise RemotePayloadError("start.gg response has no data")
        return data

    async def fetch_tournament(self, slug: str) -> RemoteTournament | None:
        data = await self._request(queries.tournament_query, {"slug": slug})
        tournament = data.get("tournament")
        if tournament is None:
            return None
        return RemoteTournament.from_payload(tournament)

    async def fetch_sets(self, event_id: str, page: int, per_page: int) -> Page:
        data = await self._request(
            queries.event_sets_query,
            {"eventId": event_id, "page": page, "perPage": per_page},
        )
        event = data.get("event") or {}
        return _parse_connection(
            event.get("sets"), RemoteSet.from_payload, f"event {event_id} sets"
        )

    async def fetch_entrants(self, event_id: str, page: int, per_page: int) -> Page:
        data = await self._request(
            queries.event_entrants_query,
            {"eventId": event_id, "page": page, "perPage": per_page},
        )
        event = data.get("event") or {}
        return _parse_connection(
            event.get("entrants"),
            RemoteEntrant.from_payload,
            f"event {event_id} entrants",
        )

    async def report_result(self, set_id: str, winner_entrant_id: str) -> bool:
        data = await self._request(
            queries.report_set_mutation,
            {"setId": set_id, "winnerId": winner_entrant_id},
        )
        acknowledged = data.get("reportBracketSet") is not None
        if not acknowledged:
            log.warning("start.gg did not acknowledge result for set %s", set_id)
        return acknowledged


__all__ = [
    "DEFAULT_API_URL",
    "PLAYABLE_SET_STATES",
    "Page",
    "RateLimitError",
    "RemoteAuthError",
    "RemoteEntrant",
    "RemoteEvent",
    "RemotePayloadError",
    "RemoteSet",
    "RemoteSlot",
    "RemoteSourceError",
    "RemoteTournament",
    "SET_STATE_COMPLETED",
    "SET_STATE_IN_PROGRESS",
    "SET_STATE_NOT_STARTED",
    "SET_STATE_READY",
    "SET_STATE_STARTED",
    "StartGGClient",
    "TOURNAMENT_STATE_ACTIVE",
    "TOURNAMENT_STATE_COMPLETED",
    "TOURNAMENT_STATE_CREATED",
]
