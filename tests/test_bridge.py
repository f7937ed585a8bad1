import asyncio
import json

import pytest

from groupguard.channels.whatsapp_bridge import (
    BridgeGroupDirectory,
    BridgeKickExecutor,
    BridgeProtocolError,
    WhatsAppBridgeClient,
    map_bridge_error,
    parse_group,
)
from groupguard.config.schema import BridgeConfig
from groupguard.core.errors import (
    GroupListingError,
    ParticipantNotFoundError,
    PermissionDeniedError,
    PlatformError,
    RateLimitedError,
    TransientPlatformError,
)
from groupguard.core.models import GroupRecord, ParticipantRecord


class _ReplyingWs:
    """Answers every command frame with a canned bridge response."""

    def __init__(self, client: WhatsAppBridgeClient, payload: dict) -> None:
        self.client = client
        self.payload = payload
        self.sent: list[dict] = []

    async def send(self, raw: str) -> None:
        envelope = json.loads(raw)
        self.sent.append(envelope)
        frame = {"version": 2, "type": "response", "requestId": envelope["requestId"], "payload": self.payload}
        asyncio.get_running_loop().call_soon(self.client.handle_frame, json.dumps(frame))


class _KickClient:
    def __init__(self, outcomes: list, members: tuple[str, ...] = ("X@lid",)) -> None:
        self.outcomes = list(outcomes)
        self.members = members
        self.timeouts: list[float | None] = []

    async def remove_participants(self, group_id, participant_ids, timeout_seconds=None):
        self.timeouts.append(timeout_seconds)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def group_metadata(self, group_id, timeout_seconds=None):
        return GroupRecord(
            group_id=group_id,
            name="G",
            participants=tuple(ParticipantRecord(id=m) for m in self.members),
        )


def _executor(client: _KickClient, sleeps: list[float]) -> BridgeKickExecutor:
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return BridgeKickExecutor(client, sleep=_sleep)


def test_parse_group_maps_roles_and_phone_numbers() -> None:
    group = parse_group(
        {
            "chatJid": "120363000001@g.us",
            "subject": " North ",
            "participants": [
                {"id": "A@lid", "phoneNumber": "972500000000@s.whatsapp.net", "admin": "superadmin"},
                {"id": "972500000001@s.whatsapp.net", "admin": "admin"},
                {"id": "972500000002@s.whatsapp.net", "admin": None},
                {"phoneNumber": "no-id"},
                "garbage",
            ],
        }
    )
    assert group is not None
    assert group.group_id == "120363000001@g.us"
    assert group.name == "North"
    assert [p.admin_role for p in group.participants] == ["owner", "admin", "none"]
    assert group.participants[0].phone_number == "972500000000@s.whatsapp.net"
    assert group.participants[1].phone_number is None
    assert parse_group({"subject": "x"}) is None
    assert parse_group({"subject": "x"}, fallback_id="g@g.us").participants == ()


def test_map_bridge_error() -> None:
    assert isinstance(map_bridge_error(BridgeProtocolError("ERR_RATE_LIMITED", "slow down", True)), RateLimitedError)
    assert isinstance(map_bridge_error(RuntimeError("rate-overlimit")), RateLimitedError)
    assert isinstance(map_bridge_error(BridgeProtocolError("ERR_FORBIDDEN", "x", False)), PermissionDeniedError)
    assert isinstance(map_bridge_error(RuntimeError("403 forbidden")), PermissionDeniedError)
    assert isinstance(map_bridge_error(BridgeProtocolError("ERR_NOT_PARTICIPANT", "x", False)), ParticipantNotFoundError)
    assert isinstance(map_bridge_error(TimeoutError()), TransientPlatformError)
    assert isinstance(map_bridge_error(OSError("connection reset")), TransientPlatformError)
    hard = map_bridge_error(BridgeProtocolError("ERR_INTERNAL", "bad", False))
    assert isinstance(hard, PlatformError)
    assert not isinstance(hard, TransientPlatformError)


async def test_request_envelope_and_group_listing() -> None:
    client = WhatsAppBridgeClient(BridgeConfig(token="secret", account_id="main"))
    ws = _ReplyingWs(
        client,
        {
            "ok": True,
            "result": {
                "groups": [
                    {"chatJid": "a@g.us", "subject": "Alpha", "participants": [{"id": "1@s.whatsapp.net"}]},
                    {"chatJid": "b@g.us", "subject": "Beta", "participants": []},
                ]
            },
        },
    )
    client._ws = ws

    groups = await client.list_groups()

    assert list(groups) == ["a@g.us", "b@g.us"]
    assert groups["a@g.us"].member_count == 1
    envelope = ws.sent[0]
    assert envelope["version"] == 2
    assert envelope["type"] == "list_groups"
    assert envelope["token"] == "secret"
    assert envelope["accountId"] == "main"
    assert envelope["payload"] == {"includeParticipants": True}
    assert client._pending == {}


async def test_error_response_raises_protocol_error() -> None:
    client = WhatsAppBridgeClient(BridgeConfig(token="secret"))
    client._ws = _ReplyingWs(
        client, {"ok": False, "error": {"code": "ERR_NOT_ADMIN", "message": "not admin", "retryable": False}}
    )

    with pytest.raises(BridgeProtocolError) as excinfo:
        await client.remove_participants("a@g.us", ["1@s.whatsapp.net"])
    assert excinfo.value.code == "ERR_NOT_ADMIN"
    assert excinfo.value.retryable is False


async def test_request_requires_connection_and_token() -> None:
    with pytest.raises(RuntimeError):
        await WhatsAppBridgeClient(BridgeConfig(token="t")).request("health", {})
    client = WhatsAppBridgeClient(BridgeConfig(token=""))
    client._ws = object()
    with pytest.raises(RuntimeError, match="token"):
        await client.request("health", {})


async def test_directory_wraps_listing_failures() -> None:
    client = WhatsAppBridgeClient(BridgeConfig(token="secret"))
    with pytest.raises(GroupListingError):
        await BridgeGroupDirectory(client).list_administered_groups()


async def test_kick_retries_then_succeeds() -> None:
    sleeps: list[float] = []
    client = _KickClient([TimeoutError(), {"X@lid": "200"}])

    await _executor(client, sleeps).remove_participant("g@g.us", "X@lid")

    assert client.timeouts == [10.0, 10.0]
    assert sleeps == [2.0]


async def test_kick_gives_up_after_bounded_attempts_with_longer_final_timeout() -> None:
    sleeps: list[float] = []
    client = _KickClient([TimeoutError(), TimeoutError(), TimeoutError()])

    with pytest.raises(TransientPlatformError):
        await _executor(client, sleeps).remove_participant("g@g.us", "X@lid")

    assert client.timeouts == [10.0, 10.0, 20.0]
    assert sleeps == [2.0, 2.0]


async def test_kick_counts_as_done_when_participant_left_between_attempts() -> None:
    sleeps: list[float] = []
    client = _KickClient([TimeoutError(), TimeoutError()], members=("Y@lid",))

    await _executor(client, sleeps).remove_participant("g@g.us", "X@lid")

    assert client.timeouts == [10.0]


async def test_kick_permission_error_is_not_retried() -> None:
    sleeps: list[float] = []
    client = _KickClient([BridgeProtocolError("ERR_FORBIDDEN", "not admin", False)])

    with pytest.raises(PermissionDeniedError):
        await _executor(client, sleeps).remove_participant("g@g.us", "X@lid")
    assert len(client.timeouts) == 1
    assert sleeps == []


async def test_kick_status_codes() -> None:
    with pytest.raises(ParticipantNotFoundError):
        await _executor(_KickClient([{"X@lid": "404"}]), []).remove_participant("g@g.us", "X@lid")
    with pytest.raises(PermissionDeniedError):
        await _executor(_KickClient([{"X@lid": "403"}]), []).remove_participant("g@g.us", "X@lid")
