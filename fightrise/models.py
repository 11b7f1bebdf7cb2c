from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import ClassVar, Final, Literal

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

TournamentPhase = Literal[
    "created",
    "registration_open",
    "registration_closed",
    "in_progress",
    "completed",
    "cancelled",
]
PHASE_CREATED: Final = "created"
PHASE_REGISTRATION_OPEN: Final = "registration_open"
PHASE_REGISTRATION_CLOSED: Final = "registration_closed"
PHASE_IN_PROGRESS: Final = "in_progress"
PHASE_COMPLETED: Final = "completed"
PHASE_CANCELLED: Final = "cancelled"
TERMINAL_PHASES: Final = frozenset({PHASE_COMPLETED, PHASE_CANCELLED})

MatchState = Literal[
    "NOT_STARTED",
    "CALLED",
    "CHECKED_IN",
    "IN_PROGRESS",
    "PENDING_CONFIRMATION",
    "COMPLETED",
    "DISPUTED",
    "DQ",
]
NOT_STARTED: Final = "NOT_STARTED"
CALLED: Final = "CALLED"
CHECKED_IN: Final = "CHECKED_IN"
IN_PROGRESS: Final = "IN_PROGRESS"
PENDING_CONFIRMATION: Final = "PENDING_CONFIRMATION"
COMPLETED: Final = "COMPLETED"
DISPUTED: Final = "DISPUTED"
DQ: Final = "DQ"
TERMINAL_MATCH_STATES: Final = frozenset({COMPLETED, DQ})
OPEN_MATCH_STATES: Final = frozenset(
    {NOT_STARTED, CALLED, CHECKED_IN, IN_PROGRESS, PENDING_CONFIRMATION, DISPUTED}
)

PLAYER_SLOTS: Final = (1, 2)

_MATCH_NAMESPACE: Final = uuid.uuid5(uuid.NAMESPACE_URL, "https://start.gg/set")


def utc_now_iso() -> str:
    """Return current UTC timestamp in ISO-8601 format (ms precision)."""
    return datetime.now(UTC).strftime(ISO_FORMAT)


def isoformat_utc(dt: datetime) -> str:
    return dt.astimezone(UTC).strftime(ISO_FORMAT)


def parse_iso(raw: str) -> datetime:
    return datetime.strptime(raw, ISO_FORMAT).replace(tzinfo=UTC)


def match_id_for_set(remote_set_id: str) -> str:
    """Derive the local match id from the remote set id.

    The id is deterministic so the table's primary key doubles as the
    one-match-per-set uniqueness constraint.
    """
    return uuid.uuid5(_MATCH_NAMESPACE, str(remote_set_id)).hex


def _optional_str(value: object) -> str | None:
    if value in (None, "", "None"):
        return None
    return str(value)


def _optional_int(value: object) -> int | None:
    if value in (None, "", "None"):
        return None
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):  # pragma: no cover - defensive
        return None


def _optional_bool(value: object) -> bool | None:
    if value is None:
        return None
    return bool(value)


@dataclass(slots=True)
class Tournament:
    tournament_id: str
    slug: str
    name: str
    phase: str
    updated_at: str
    guild_id: int | None = None
    channel_id: int | None = None
    require_check_in: bool = True
    check_in_window_minutes: int = 10
    last_polled_at: str | None = None

    PK_TEMPLATE: ClassVar[str] = "TOURNAMENT#%s"
    SK_VALUE: ClassVar[str] = "TOURNAMENT"

    @classmethod
    def key(cls, tournament_id: str) -> dict[str, str]:
        return {"pk": cls.PK_TEMPLATE % tournament_id, "sk": cls.SK_VALUE}

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.tournament_id)
        item.update(
            {
                "tournament_id": self.tournament_id,
                "slug": self.slug,
                "name": self.name,
                "phase": self.phase,
                "updated_at": self.updated_at,
                "require_check_in": self.require_check_in,
                "check_in_window_minutes": self.check_in_window_minutes,
            }
        )
        if self.guild_id is not None:
            item["guild_id"] = str(self.guild_id)
        if self.channel_id is not None:
            item["channel_id"] = str(self.channel_id)
        if self.last_polled_at is not None:
            item["last_polled_at"] = self.last_polled_at
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> Tournament:
        tournament_id = str(
            item.get("tournament_id") or str(item["pk"]).split("#", 1)[1]
        )
        window = _optional_int(item.get("check_in_window_minutes"))
        return cls(
            tournament_id=tournament_id,
            slug=str(item.get("slug", "")),
            name=str(item.get("name", "")),
            phase=str(item.get("phase", PHASE_CREATED)),
            updated_at=str(item.get("updated_at", "")),
            guild_id=_optional_int(item.get("guild_id")),
            channel_id=_optional_int(item.get("channel_id")),
            require_check_in=bool(item.get("require_check_in", True)),
            check_in_window_minutes=window if window is not None else 10,
            last_polled_at=_optional_str(item.get("last_polled_at")),
        )


@dataclass(slots=True)
class Event:
    tournament_id: str
    event_id: str
    name: str
    entrant_count: int = 0
    state: str | None = None
    updated_at: str = ""

    PK_TEMPLATE: ClassVar[str] = "TOURNAMENT#%s"
    SK_TEMPLATE: ClassVar[str] = "EVENT#%s"
    SK_PREFIX: ClassVar[str] = "EVENT#"

    @classmethod
    def key(cls, tournament_id: str, event_id: str) -> dict[str, str]:
        return {
            "pk": cls.PK_TEMPLATE % tournament_id,
            "sk": cls.SK_TEMPLATE % event_id,
        }

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.tournament_id, self.event_id)
        item.update(
            {
                "tournament_id": self.tournament_id,
                "event_id": self.event_id,
                "name": self.name,
                "entrant_count": self.entrant_count,
                "updated_at": self.updated_at,
            }
        )
        if self.state is not None:
            item["event_state"] = self.state
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> Event:
        sk_value = str(item.get("sk", ""))
        event_id = str(item.get("event_id") or sk_value.split("#", 1)[-1])
        tournament_id = str(
            item.get("tournament_id") or str(item["pk"]).split("#", 1)[1]
        )
        return cls(
            tournament_id=tournament_id,
            event_id=event_id,
            name=str(item.get("name", "")),
            entrant_count=_optional_int(item.get("entrant_count")) or 0,
            state=_optional_str(item.get("event_state")),
            updated_at=str(item.get("updated_at", "")),
        )


@dataclass(slots=True)
class MatchPlayer:
    slot: int
    player_name: str
    remote_entrant_id: str | None = None
    discord_id: int | None = None
    checked_in: bool = False
    checked_in_at: str | None = None
    reported_score: int | None = None
    is_winner: bool | None = None

    def to_dict(self) -> dict[str, object]:
        # checked_in, is_winner and reported_score are always written so
        # conditional updates can address them.
        data: dict[str, object] = {
            "slot": self.slot,
            "player_name": self.player_name,
            "checked_in": self.checked_in,
            "checked_in_at": self.checked_in_at,
            "reported_score": self.reported_score,
            "is_winner": self.is_winner,
        }
        if self.remote_entrant_id is not None:
            data["remote_entrant_id"] = self.remote_entrant_id
        if self.discord_id is not None:
            data["discord_id"] = str(self.discord_id)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> MatchPlayer:
        return cls(
            slot=int(data.get("slot", 0)),  # type: ignore[arg-type]
            player_name=str(data.get("player_name", "")),
            remote_entrant_id=_optional_str(data.get("remote_entrant_id")),
            discord_id=_optional_int(data.get("discord_id")),
            checked_in=bool(data.get("checked_in", False)),
            checked_in_at=_optional_str(data.get("checked_in_at")),
            reported_score=_optional_int(data.get("reported_score")),
            is_winner=_optional_bool(data.get("is_winner")),
        )

    def display(self) -> str:
        if self.discord_id is not None:
            return f"<@{self.discord_id}>"
        return self.player_name


@dataclass(slots=True)
class Match:
    match_id: str
    remote_set_id: str
    tournament_id: str
    event_id: str
    identifier: str
    round_label: str
    round_number: int
    state: str
    players: list[MatchPlayer]
    created_at: str
    updated_at: str
    conversation_id: str | None = None
    check_in_deadline: str | None = None
    reported_by_slot: int | None = None
    result_submitted: bool = False

    PK_TEMPLATE: ClassVar[str] = "MATCH#%s"
    SK_VALUE: ClassVar[str] = "MATCH"
    EVENT_INDEX: ClassVar[str] = "event_id-index"

    @classmethod
    def key(cls, match_id: str) -> dict[str, str]:
        return {"pk": cls.PK_TEMPLATE % match_id, "sk": cls.SK_VALUE}

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.match_id)
        item.update(
            {
                "match_id": self.match_id,
                "remote_set_id": self.remote_set_id,
                "tournament_id": self.tournament_id,
                "event_id": self.event_id,
                "identifier": self.identifier,
                "round_label": self.round_label,
                "round_number": self.round_number,
                "state": self.state,
                "players": {
                    str(player.slot): player.to_dict() for player in self.players
                },
                "created_at": self.created_at,
                "updated_at": self.updated_at,
                "result_submitted": self.result_submitted,
                "reported_by_slot": self.reported_by_slot,
            }
        )
        if self.conversation_id is not None:
            item["conversation_id"] = self.conversation_id
        if self.check_in_deadline is not None:
            item["check_in_deadline"] = self.check_in_deadline
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> Match:
        players_data = item.get("players", {})
        if isinstance(players_data, dict):
            raw_players: Iterable[dict[str, object]] = players_data.values()  # type: ignore[assignment]
        else:
            raw_players = players_data  # type: ignore[assignment]
        players = sorted(
            (MatchPlayer.from_dict(data) for data in raw_players),
            key=lambda player: player.slot,
        )
        return cls(
            match_id=str(item.get("match_id") or str(item["pk"]).split("#", 1)[1]),
            remote_set_id=str(item.get("remote_set_id", "")),
            tournament_id=str(item.get("tournament_id", "")),
            event_id=str(item.get("event_id", "")),
            identifier=str(item.get("identifier", "")),
            round_label=str(item.get("round_label", "")),
            round_number=_optional_int(item.get("round_number")) or 0,
            state=str(item.get("state", NOT_STARTED)),
            players=players,
            created_at=str(item.get("created_at", "")),
            updated_at=str(item.get("updated_at", "")),
            conversation_id=_optional_str(item.get("conversation_id")),
            check_in_deadline=_optional_str(item.get("check_in_deadline")),
            reported_by_slot=_optional_int(item.get("reported_by_slot")),
            result_submitted=bool(item.get("result_submitted", False)),
        )

    def player(self, slot: int) -> MatchPlayer | None:
        for player in self.players:
            if player.slot == slot:
                return player
        return None

    def slot_for(self, discord_id: int) -> int | None:
        for player in self.players:
            if player.discord_id is not None and player.discord_id == discord_id:
                return player.slot
        return None

    def opponent_of(self, slot: int) -> MatchPlayer | None:
        for player in self.players:
            if player.slot != slot:
                return player
        return None

    def winner(self) -> MatchPlayer | None:
        for player in self.players:
            if player.is_winner:
                return player
        return None

    @property
    def both_checked_in(self) -> bool:
        return len(self.players) == 2 and all(p.checked_in for p in self.players)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_MATCH_STATES


@dataclass(slots=True)
class EntrantLink:
    """Maps a remote entrant to the Discord member playing as it."""

    tournament_id: str
    entrant_id: str
    discord_id: int

    PK_TEMPLATE: ClassVar[str] = "TOURNAMENT#%s"
    SK_TEMPLATE: ClassVar[str] = "ENTRANT#%s"
    SK_PREFIX: ClassVar[str] = "ENTRANT#"

    @classmethod
    def key(cls, tournament_id: str, entrant_id: str) -> dict[str, str]:
        return {
            "pk": cls.PK_TEMPLATE % tournament_id,
            "sk": cls.SK_TEMPLATE % entrant_id,
        }

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.tournament_id, self.entrant_id)
        item.update(
            {
                "tournament_id": self.tournament_id,
                "entrant_id": self.entrant_id,
                "discord_id": str(self.discord_id),
            }
        )
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> EntrantLink:
        return cls(
            tournament_id=str(item.get("tournament_id", "")),
            entrant_id=str(
                item.get("entrant_id") or str(item.get("sk", "")).split("#", 1)[-1]
            ),
            discord_id=int(item["discord_id"]),  # type: ignore[arg-type]
        )


@dataclass(slots=True)
class PollLease:
    tournament_id: str
    owner: str
    expires_at: int

    PK_TEMPLATE: ClassVar[str] = "TOURNAMENT#%s"
    SK_VALUE: ClassVar[str] = "POLL_LEASE"

    @classmethod
    def key(cls, tournament_id: str) -> dict[str, str]:
        return {"pk": cls.PK_TEMPLATE % tournament_id, "sk": cls.SK_VALUE}

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.tournament_id)
        item.update({"owner": self.owner, "expires_at": self.expires_at})
        return item


@dataclass(slots=True)
class ReconcileSummary:
    tournament_id: str
    phase: str
    created: int = 0
    updated: int = 0
    events: int = 0
    failed_events: list[str] = field(default_factory=list)


__all__ = [
    "CALLED",
    "CHECKED_IN",
    "COMPLETED",
    "DISPUTED",
    "DQ",
    "EntrantLink",
    "Event",
    "IN_PROGRESS",
    "ISO_FORMAT",
    "Match",
    "MatchPlayer",
    "MatchState",
    "NOT_STARTED",
    "OPEN_MATCH_STATES",
    "PENDING_CONFIRMATION",
    "PHASE_CANCELLED",
    "PHASE_COMPLETED",
    "PHASE_CREATED",
    "PHASE_IN_PROGRESS",
    "PHASE_REGISTRATION_CLOSED",
    "PHASE_REGISTRATION_OPEN",
    "PLAYER_SLOTS",
    "PollLease",
    "ReconcileSummary",
    "TERMINAL_MATCH_STATES",
    "TERMINAL_PHASES",
    "Tournament",
    "TournamentPhase",
    "isoformat_utc",
    "match_id_for_set",
    "parse_iso",
    "utc_now_iso",
]
