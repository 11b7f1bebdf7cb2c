from __future__ import annotations

import aiohttp
import pytest

from fightrise.remote import (
    RateLimitError,
    RemoteAuthError,
    RemotePayloadError,
    RemoteSet,
    RemoteSourceError,
    StartGGClient,
)


class FakeResponse:
    def __init__(self, status: int = 200, payload=None, headers=None) -> None:
        self.status = status
        self._payload = payload
        self.headers = headers or {}

    async def json(self):
        return self._payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> bool:
        return False


class FakeSession:
    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.requests: list[dict[str, object]] = []
        self.closed = False

    def post(self, url, *, json=None, headers=None):
        self.requests.append({"url": url, "json": json, "headers": headers})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self) -> None:
        self.closed = True


def _client(*responses) -> tuple[StartGGClient, FakeSession]:
    session = FakeSession(*responses)
    return StartGGClient("secret", api_url="https://example.test/gql", session=session), session


def _set_node(set_id="11", state=6, slots=None):
    return {
        "id": set_id,
        "state": state,
        "fullRoundText": "Winners Quarter-Final",
        "identifier": "C",
        "round": 3,
        "slots": slots
        if slots is not None
        else [
            {
                "entrant": {"id": 1, "name": "Alice"},
                "standing": {"stats": {"score": {"value": 2}}},
            },
            {"entrant": {"id": 2, "name": "Bob"}, "standing": None},
        ],
    }


def test_api_key_is_required():
    with pytest.raises(ValueError):
        StartGGClient("")


@pytest.mark.asyncio
async def test_fetch_tournament_parses_events():
    client, session = _client(
        FakeResponse(
            payload={
                "data": {
                    "tournament": {
                        "id": 99,
                        "name": "Evo",
                        "slug": "tournament/evo",
                        "state": 2,
                        "events": [
                            {"id": 5, "name": "SF6", "numEntrants": 128, "state": "ACTIVE"},
                            {"id": 6, "name": None, "numEntrants": None, "state": None},
                        ],
                    }
                }
            }
        )
    )

    tournament = await client.fetch_tournament("evo")

    assert tournament.tournament_id == "99"
    assert tournament.state == 2
    assert [(event.event_id, event.name, event.entrant_count) for event in tournament.events] == [
        ("5", "SF6", 128),
        ("6", "6", 0),
    ]
    request = session.requests[0]
    assert request["url"] == "https://example.test/gql"
    assert request["json"]["variables"] == {"slug": "evo"}
    assert request["headers"]["Authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_unknown_tournament_is_none():
    client, _ = _client(FakeResponse(payload={"data": {"tournament": None}}))

    assert await client.fetch_tournament("missing") is None


@pytest.mark.asyncio
async def test_fetch_sets_parses_slots_and_pages():
    client, session = _client(
        FakeResponse(
            payload={
                "data": {
                    "event": {
                        "id": 5,
                        "sets": {
                            "pageInfo": {"total": 3, "totalPages": 2},
                            "nodes": [_set_node(), _set_node("12", slots=[None, None])],
                        },
                    }
                }
            }
        )
    )

    page = await client.fetch_sets("5", 1, 2)

    assert page.total_pages == 2
    first, second = page.items
    assert first.set_id == "11"
    assert first.round_label == "Winners Quarter-Final"
    assert first.is_playable is True
    assert [slot.score for slot in first.slots] == [2, None]
    assert [entrant.name for entrant in first.entrants()] == ["Alice", "Bob"]
    assert second.entrants() is None
    assert session.requests[0]["json"]["variables"] == {
        "eventId": "5",
        "page": 1,
        "perPage": 2,
    }


@pytest.mark.asyncio
async def test_missing_connection_is_an_empty_page():
    client, _ = _client(FakeResponse(payload={"data": {"event": None}}))

    page = await client.fetch_entrants("5", 1, 50)

    assert page.items == ()
    assert page.total_pages == 0


def test_set_without_state_is_rejected():
    node = _set_node()
    del node["state"]

    with pytest.raises(RemotePayloadError):
        RemoteSet.from_payload(node)


def test_completed_set_is_not_playable():
    remote_set = RemoteSet.from_payload(_set_node(state=3))

    assert remote_set.is_completed is True
    assert remote_set.is_playable is False


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 403])
async def test_rejected_key_raises_auth_error(status):
    client, _ = _client(FakeResponse(status=status))

    with pytest.raises(RemoteAuthError):
        await client.fetch_tournament("evo")


@pytest.mark.asyncio
async def test_rate_limit_carries_retry_after():
    client, _ = _client(FakeResponse(status=429, headers={"Retry-After": "7"}))

    with pytest.raises(RateLimitError) as excinfo:
        await client.fetch_sets("5", 1, 50)

    assert excinfo.value.retry_after == 7.0


@pytest.mark.asyncio
async def test_server_error_is_transient():
    client, _ = _client(FakeResponse(status=502))

    with pytest.raises(RemoteSourceError) as excinfo:
        await client.fetch_tournament("evo")

    assert not isinstance(excinfo.value, RemoteAuthError)


@pytest.mark.asyncio
async def test_graphql_errors_are_raised():
    client, _ = _client(
        FakeResponse(payload={"errors": [{"message": "Event not found"}], "data": None})
    )

    with pytest.raises(RemoteSourceError, match="Event not found"):
        await client.fetch_sets("5", 1, 50)


@pytest.mark.asyncio
async def test_connection_errors_are_wrapped():
    client, _ = _client(aiohttp.ClientConnectionError("reset"))

    with pytest.raises(RemoteSourceError):
        await client.fetch_tournament("evo")


@pytest.mark.asyncio
async def test_report_result_acknowledgement():
    client, session = _client(
        FakeResponse(payload={"data": {"reportBracketSet": [{"id": 11, "state": 3}]}}),
        FakeResponse(payload={"data": {"reportBracketSet": None}}),
    )

    assert await client.report_result("11", "1") is True
    assert await client.report_result("11", "1") is False
    assert session.requests[0]["json"]["variables"] == {"setId": "11", "winnerId": "1"}


@pytest.mark.asyncio
async def test_close_leaves_injected_session_open():
    client, session = _client()

    await client.close()

    assert session.closed is False
