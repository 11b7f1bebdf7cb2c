from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from typing import Any

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from .models import (
    CALLED,
    NOT_STARTED,
    OPEN_MATCH_STATES,
    TERMINAL_PHASES,
    EntrantLink,
    Event,
    Match,
    PollLease,
    Tournament,
    utc_now_iso,
)

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"


class StorageNotConfiguredError(RuntimeError):
    """Raised when the tournament table has not been configured."""


class DuplicateMatchError(Exception):
    """Raised when a match already exists for a remote set id."""

    def __init__(self, match_id: str, remote_set_id: str) -> None:
        super().__init__(f"Match {match_id} already exists for set {remote_set_id}")
        self.match_id = match_id
        self.remote_set_id = remote_set_id


def _is_conditional_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == CONDITIONAL_CHECK_FAILED


def build_update_expression(
    changes: Mapping[str, object],
) -> tuple[str, dict[str, str], dict[str, object]]:
    """Build a ``SET`` expression for dotted attribute paths.

    Placeholders use the ``#u``/``:u`` prefixes so they never collide with the
    ``#n``/``:v`` names boto3 generates for condition objects.
    """
    names: dict[str, str] = {}
    values: dict[str, object] = {}
    name_lookup: dict[str, str] = {}
    assignments: list[str] = []
    for index, (path, value) in enumerate(changes.items()):
        placeholders: list[str] = []
        for part in path.split("."):
            placeholder = name_lookup.get(part)
            if placeholder is None:
                placeholder = f"#u{len(name_lookup)}"
                name_lookup[part] = placeholder
                names[placeholder] = part
            placeholders.append(placeholder)
        value_placeholder = f":u{index}"
        values[value_placeholder] = value
        assignments.append(f"{'.'.join(placeholders)} = {value_placeholder}")
    return "SET " + ", ".join(assignments), names, values


class TournamentStorage:
    """DynamoDB-backed persistence for tournaments, events and matches.

    Every state-changing match write is conditional; a failed condition is
    reported as ``None``/``False`` so callers can treat it as "another writer
    got there first".
    """

    def __init__(self, table) -> None:
        self._table = table

    def ensure_table(self) -> None:
        if self._table is None:
            raise StorageNotConfiguredError("Tournament table is not configured")

    def _query_all(self, **kwargs: Any) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        while True:
            resp = self._table.query(**kwargs)
            items.extend(resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    def _scan_all(self, **kwargs: Any) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        while True:
            resp = self._table.scan(**kwargs)
            items.extend(resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    def _conditional_update(
        self,
        key: dict[str, str],
        changes: Mapping[str, object],
        condition,
    ) -> dict[str, Any] | None:
        expression, names, values = build_update_expression(changes)
        try:
            resp = self._table.update_item(
                Key=key,
                UpdateExpression=expression,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ConditionExpression=condition,
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                return None
            raise
        return resp.get("Attributes")

    # ----- Tournaments -----
    def get_tournament(self, tournament_id: str) -> Tournament | None:
        self.ensure_table()
        resp = self._table.get_item(Key=Tournament.key(tournament_id))
        item = resp.get("Item")
        if not item:
            return None
        return Tournament.from_item(item)

    def save_tournament(self, tournament: Tournament) -> None:
        self.ensure_table()
        self._table.put_item(Item=tournament.to_item())

    def list_active_tournaments(self) -> list[Tournament]:
        self.ensure_table()
        condition = Attr("sk").eq(Tournament.SK_VALUE)
        for phase in sorted(TERMINAL_PHASES):
            condition = condition & Attr("phase").ne(phase)
        items = self._scan_all(FilterExpression=condition)
        tournaments = [Tournament.from_item(item) for item in items]
        tournaments.sort(key=lambda entry: entry.tournament_id)
        return tournaments

    def mark_polled(self, tournament_id: str, polled_at: str) -> bool:
        self.ensure_table()
        attributes = self._conditional_update(
            Tournament.key(tournament_id),
            {"last_polled_at": polled_at},
            Attr("pk").exists(),
        )
        return attributes is not None

    def update_phase(
        self, tournament_id: str, expected_phase: str, new_phase: str
    ) -> bool:
        self.ensure_table()
        attributes = self._conditional_update(
            Tournament.key(tournament_id),
            {"phase": new_phase, "updated_at": utc_now_iso()},
            Attr("phase").eq(expected_phase),
        )
        return attributes is not None

    # ----- Events -----
    def list_events(self, tournament_id: str) -> list[Event]:
        self.ensure_table()
        items = self._query_all(
            KeyConditionExpression=Key("pk").eq(Event.PK_TEMPLATE % tournament_id)
            & Key("sk").begins_with(Event.SK_PREFIX),
            Select="ALL_ATTRIBUTES",
        )
        events = [Event.from_item(item) for item in items]
        events.sort(key=lambda event: event.event_id)
        return events

    def save_event(self, event: Event) -> None:
        self.ensure_table()
        self._table.put_item(Item=event.to_item())

    def delete_event(self, tournament_id: str, event_id: str) -> bool:
        self.ensure_table()
        try:
            self._table.delete_item(
                Key=Event.key(tournament_id, event_id),
                ConditionExpression=Attr("pk").exists(),
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                return False
            raise
        return True

    # ----- Entrant links -----
    def link_entrant(self, link: EntrantLink) -> None:
        self.ensure_table()
        self._table.put_item(Item=link.to_item())

    def get_entrant_links(self, tournament_id: str) -> dict[str, int]:
        """Return ``{remote entrant id: discord id}`` for a tournament."""
        self.ensure_table()
        items = self._query_all(
            KeyConditionExpression=Key("pk").eq(EntrantLink.PK_TEMPLATE % tournament_id)
            & Key("sk").begins_with(EntrantLink.SK_PREFIX),
        )
        links = (EntrantLink.from_item(item) for item in items)
        return {link.entrant_id: link.discord_id for link in links}

    # ----- Matches -----
    def get_match(self, match_id: str) -> Match | None:
        self.ensure_table()
        resp = self._table.get_item(Key=Match.key(match_id))
        item = resp.get("Item")
        if not item:
            return None
        return Match.from_item(item)

    def list_event_matches(self, event_id: str) -> list[Match]:
        self.ensure_table()
        items = self._query_all(
            IndexName=Match.EVENT_INDEX,
            KeyConditionExpression=Key("event_id").eq(event_id),
            # Event rows carry event_id too and share the index.
            FilterExpression=Attr("sk").eq(Match.SK_VALUE),
        )
        return [Match.from_item(item) for item in items]

    def create_match(self, match: Match) -> None:
        """Persist a new match together with both of its players.

        Raises ``DuplicateMatchError`` when a match for the same remote set
        already exists.
        """
        self.ensure_table()
        try:
            self._table.put_item(
                Item=match.to_item(),
                ConditionExpression=Attr("pk").not_exists(),
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                raise DuplicateMatchError(match.match_id, match.remote_set_id) from exc
            raise

    def _match_guard(
        self,
        expected: str | Iterable[str],
        require: Mapping[str, object] | None,
    ):
        if isinstance(expected, str):
            guard = Attr("state").eq(expected)
        else:
            guard = Attr("state").is_in(sorted(expected))
        for path, value in (require or {}).items():
            guard = guard & Attr(path).eq(value)
        return guard

    def transition_match(
        self,
        match_id: str,
        *,
        expected: str | Iterable[str],
        new_state: str,
        changes: Mapping[str, object] | None = None,
        require: Mapping[str, object] | None = None,
    ) -> Match | None:
        """Move a match to ``new_state`` only if it is still in ``expected``.

        ``require`` adds equality guards on other attributes (dotted paths are
        allowed). Returns the updated match, or ``None`` when any guard no
        longer holds.
        """
        self.ensure_table()
        guard = self._match_guard(expected, require)
        fields: dict[str, object] = {"state": new_state, "updated_at": utc_now_iso()}
        if changes:
            fields.update(changes)
        attributes = self._conditional_update(Match.key(match_id), fields, guard)
        if attributes is None:
            return None
        return Match.from_item(attributes)

    def bind_conversation(
        self,
        match_id: str,
        conversation_id: str,
        *,
        new_state: str,
        check_in_deadline: str | None = None,
    ) -> Match | None:
        """Attach the notification conversation while the match is NOT_STARTED.

        Fails (``None``) if the match already moved on or another caller bound
        a conversation first.
        """
        self.ensure_table()
        guard = self._match_guard(NOT_STARTED, None) & Attr(
            "conversation_id"
        ).not_exists()
        fields: dict[str, object] = {
            "state": new_state,
            "conversation_id": conversation_id,
            "updated_at": utc_now_iso(),
        }
        if check_in_deadline is not None:
            fields["check_in_deadline"] = check_in_deadline
        attributes = self._conditional_update(Match.key(match_id), fields, guard)
        if attributes is None:
            return None
        return Match.from_item(attributes)

    def update_match_fields(
        self, match_id: str, changes: Mapping[str, object]
    ) -> Match | None:
        self.ensure_table()
        fields = dict(changes)
        fields["updated_at"] = utc_now_iso()
        attributes = self._conditional_update(
            Match.key(match_id), fields, Attr("pk").exists()
        )
        if attributes is None:
            return None
        return Match.from_item(attributes)

    def mark_player_checked_in(
        self, match_id: str, slot: int, checked_in_at: str
    ) -> Match | None:
        """Flag one player as checked in while the match is still CALLED."""
        self.ensure_table()
        prefix = f"players.{slot}"
        attributes = self._conditional_update(
            Match.key(match_id),
            {
                f"{prefix}.checked_in": True,
                f"{prefix}.checked_in_at": checked_in_at,
                "updated_at": utc_now_iso(),
            },
            Attr("state").eq(CALLED) & Attr(f"{prefix}.checked_in").eq(False),
        )
        if attributes is None:
            return None
        return Match.from_item(attributes)

    def link_match_player(
        self, match_id: str, slot: int, entrant_id: str, discord_id: int
    ) -> Match | None:
        """Set a player's Discord id while the match is open and the slot
        still belongs to ``entrant_id``."""
        self.ensure_table()
        prefix = f"players.{slot}"
        attributes = self._conditional_update(
            Match.key(match_id),
            {f"{prefix}.discord_id": str(discord_id), "updated_at": utc_now_iso()},
            Attr("state").is_in(sorted(OPEN_MATCH_STATES))
            & Attr(f"{prefix}.remote_entrant_id").eq(entrant_id),
        )
        if attributes is None:
            return None
        return Match.from_item(attributes)

    # ----- Poll leases -----
    def acquire_poll_lease(
        self,
        tournament_id: str,
        owner: str,
        ttl_seconds: int,
        *,
        now: float | None = None,
    ) -> bool:
        self.ensure_table()
        current = int(now if now is not None else time.time())
        lease = PollLease(
            tournament_id=tournament_id,
            owner=owner,
            expires_at=current + ttl_seconds,
        )
        try:
            self._table.put_item(
                Item=lease.to_item(),
                ConditionExpression=Attr("pk").not_exists()
                | Attr("expires_at").lt(current)
                | Attr("owner").eq(owner),
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                return False
            raise
        return True

    def release_poll_lease(self, tournament_id: str, owner: str) -> bool:
        self.ensure_table()
        try:
            self._table.delete_item(
                Key=PollLease.key(tournament_id),
                ConditionExpression=Attr("owner").eq(owner),
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                return False
            raise
        return True


__all__ = [
    "DuplicateMatchError",
    "StorageNotConfiguredError",
    "TournamentStorage",
    "build_update_expression",
]
