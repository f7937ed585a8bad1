"""WhatsApp adapters speaking the Node.js bridge protocol v2.

One websocket carries request/response frames; a reader task resolves the
pending future for each ``requestId``. The adapters below implement the
group directory, kick executor and identity-mapping ports on top of it.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from groupguard.config.schema import BridgeConfig, KickConfig
from groupguard.core.errors import (
    GroupListingError,
    ParticipantNotFoundError,
    PermissionDeniedError,
    PlatformError,
    RateLimitedError,
    TransientPlatformError,
    is_rate_limit_error,
)
from groupguard.core.models import AdminRole, GroupRecord, ParticipantRecord
from groupguard.identity.jid import jid_key

PROTOCOL_VERSION = 2

_PERMISSION_CODES = frozenset({"ERR_FORBIDDEN", "ERR_NOT_ADMIN", "ERR_PERMISSION_DENIED"})
_NOT_FOUND_CODES = frozenset({"ERR_NOT_FOUND", "ERR_NOT_PARTICIPANT"})
_RATE_LIMIT_CODES = frozenset({"ERR_RATE_LIMITED", "ERR_RATE_OVERLIMIT"})
_PERMISSION_MARKERS = ("403", "forbidden", "admin_required", "not admin", "not-authorized")
_NOT_FOUND_MARKERS = ("not in group", "not a participant", "item-not-found")

_ROLE_MAP: dict[str, AdminRole] = {"admin": "admin", "superadmin": "owner"}


class BridgeProtocolMismatchError(RuntimeError):
    """Bridge protocol version mismatch."""


class BridgeProtocolError(RuntimeError):
    """Bridge returned a protocol-level error."""

    def __init__(self, code: str, message: str, retryable: bool):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.retryable = retryable


def map_bridge_error(exc: BaseException) -> PlatformError:
    """Translate a bridge or transport failure into the platform error taxonomy."""
    if isinstance(exc, PlatformError):
        return exc
    text = str(exc).lower()
    code = exc.code if isinstance(exc, BridgeProtocolError) else ""

    if code in _RATE_LIMIT_CODES or is_rate_limit_error(exc):
        return RateLimitedError(str(exc))
    if code in _PERMISSION_CODES or any(m in text for m in _PERMISSION_MARKERS):
        return PermissionDeniedError(str(exc))
    if code in _NOT_FOUND_CODES or any(m in text for m in _NOT_FOUND_MARKERS):
        return ParticipantNotFoundError(str(exc))
    if isinstance(exc, TimeoutError):
        return TransientPlatformError(str(exc) or "Bridge request timed out")
    if isinstance(exc, BridgeProtocolError) and not exc.retryable:
        return PlatformError(str(exc))
    return TransientPlatformError(str(exc) or exc.__class__.__name__)


def parse_participant(item: Any) -> ParticipantRecord | None:
    if not isinstance(item, dict):
        return None
    participant_id = str(item.get("id") or item.get("jid") or "").strip()
    if not participant_id:
        return None
    phone = str(item.get("phoneNumber") or "").strip() or None
    role = _ROLE_MAP.get(str(item.get("admin") or "").strip().lower(), "none")
    return ParticipantRecord(id=participant_id, phone_number=phone, admin_role=role)


def parse_group(item: Any, *, fallback_id: str = "") -> GroupRecord | None:
    """Build a GroupRecord from a bridge group object."""
    if not isinstance(item, dict):
        return None
    group_id = str(item.get("chatJid") or item.get("id") or fallback_id).strip()
    if not group_id:
        return None
    raw_participants = item.get("participants")
    participants: list[ParticipantRecord] = []
    if isinstance(raw_participants, list):
        for raw in raw_participants:
            participant = parse_participant(raw)
            if participant is not None:
                participants.append(participant)
    return GroupRecord(
        group_id=group_id,
        name=str(item.get("subject") or "").strip(),
        participants=tuple(participants),
    )


class WhatsAppBridgeClient:
    """Request/response client for the bridge websocket."""

    def __init__(self, config: BridgeConfig):
        self.config = config
        self._ws: Any = None
        self._reader_task: asyncio.Task[None] | None = None
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._send_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def _require_token(self) -> str:
        token = (self.config.token or "").strip()
        if not token:
            raise RuntimeError("bridge.token is required for protocol v2")
        return token

    async def __aenter__(self) -> WhatsAppBridgeClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def connect(self) -> None:
        import websockets

        token = self._require_token()
        logger.info(f"Connecting to WhatsApp bridge at {self.config.url}...")
        self._ws = await websockets.connect(
            self.config.url,
            max_size=self.config.max_payload_bytes,
            ping_interval=20,
            ping_timeout=20,
        )
        self._reader_task = asyncio.create_task(self._read_loop())
        try:
            await self._verify_bridge_health(token)
        except Exception:
            await self.close()
            raise
        logger.info("Connected to WhatsApp bridge (protocol v2)")

    async def close(self) -> None:
        if self._reader_task:
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
            self._reader_task = None
        if self._ws:
            await self._ws.close()
            self._ws = None
        self._fail_pending("Bridge connection closed")

    # ── Commands ─────────────────────────────────────────────────────

    async def list_groups(self) -> dict[str, GroupRecord]:
        result = await self.request("list_groups", {"includeParticipants": True})
        groups = result.get("groups", [])
        out: dict[str, GroupRecord] = {}
        if isinstance(groups, list):
            for item in groups:
                group = parse_group(item)
                if group is not None:
                    out[group.group_id] = group
        return out

    async def group_metadata(self, group_id: str, timeout_seconds: float | None = None) -> GroupRecord:
        result = await self.request("group_metadata", {"chatJid": group_id}, timeout_seconds=timeout_seconds)
        group = parse_group(result, fallback_id=group_id)
        if group is None:
            raise BridgeProtocolError("ERR_MALFORMED", "group metadata malformed", True)
        return group

    async def remove_participants(
        self,
        group_id: str,
        participant_ids: list[str],
        timeout_seconds: float | None = None,
    ) -> dict[str, str]:
        """Remove participants; returns per-participant status codes from the platform."""
        result = await self.request(
            "group_participants_update",
            {"chatJid": group_id, "participants": participant_ids, "action": "remove"},
            timeout_seconds=timeout_seconds,
        )
        statuses: dict[str, str] = {}
        items = result.get("participants", [])
        if isinstance(items, list):
            for item in items:
                if isinstance(item, dict) and item.get("jid"):
                    statuses[str(item["jid"])] = str(item.get("status") or "200")
        return statuses

    async def lid_lookup(self, lid_user: str) -> str | None:
        result = await self.request("lid_lookup", {"lid": lid_user})
        value = result.get("phoneNumber") or result.get("pn")
        return str(value) if value else None

    async def request(
        self,
        command_type: str,
        payload: dict[str, Any],
        timeout_seconds: float | None = None,
        token: str | None = None,
    ) -> dict[str, Any]:
        if not self._ws:
            raise RuntimeError("Bridge websocket not connected")

        token = token or self._require_token()
        request_id = uuid.uuid4().hex
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        envelope = {
            "version": PROTOCOL_VERSION,
            "type": command_type,
            "token": token,
            "requestId": request_id,
            "accountId": self.config.account_id,
            "payload": payload,
        }
        timeout = timeout_seconds or self.config.request_timeout_ms / 1000.0

        try:
            async with self._send_lock:
                await self._ws.send(json.dumps(envelope))
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            self._pending.pop(request_id, None)

    # ── Internals ────────────────────────────────────────────────────

    async def _verify_bridge_health(self, token: str) -> None:
        response = await self.request("health", {}, token=token)
        version = response.get("protocolVersion", response.get("version"))
        if version != PROTOCOL_VERSION:
            raise BridgeProtocolMismatchError(
                f"Bridge protocol mismatch: expected v{PROTOCOL_VERSION}, got {version!r}"
            )

    async def _read_loop(self) -> None:
        if not self._ws:
            return
        try:
            async for raw in self._ws:
                self.handle_frame(raw)
        except Exception as e:
            logger.warning(f"WhatsApp bridge connection error: {e}")
        finally:
            self._fail_pending("Bridge connection closed")

    def handle_frame(self, raw: str | bytes) -> None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON from bridge")
            return
        if not isinstance(data, dict):
            logger.warning("Invalid bridge frame shape")
            return
        if data.get("version") != PROTOCOL_VERSION:
            logger.warning(f"Unexpected bridge protocol version: {data.get('version')!r}")
            return

        msg_type = data.get("type")
        payload = data.get("payload")
        if not isinstance(payload, dict):
            payload = {}

        if msg_type == "response":
            request_id = data.get("requestId")
            if isinstance(request_id, str):
                self._resolve_pending(request_id, payload)
        elif msg_type == "status":
            logger.info(f"WhatsApp status: {payload.get('status')}")
        elif msg_type == "error":
            logger.error(f"WhatsApp bridge error: {payload.get('error')}")

    def _resolve_pending(self, request_id: str, payload: dict[str, Any]) -> None:
        future = self._pending.get(request_id)
        if not future or future.done():
            return

        if bool(payload.get("ok")):
            result = payload.get("result")
            future.set_result(result if isinstance(result, dict) else {})
            return

        error = payload.get("error") if isinstance(payload.get("error"), dict) else {}
        code = str(error.get("code") or "ERR_INTERNAL")
        message = str(error.get("message") or "Bridge command failed")
        retryable = bool(error.get("retryable", False))
        future.set_exception(BridgeProtocolError(code, message, retryable))

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(RuntimeError(reason))
        self._pending.clear()


class BridgeGroupDirectory:
    """Group directory backed by the bridge."""

    def __init__(self, client: WhatsAppBridgeClient):
        self._client = client

    async def list_administered_groups(self) -> dict[str, GroupRecord]:
        try:
            return await self._client.list_groups()
        except Exception as e:
            raise GroupListingError(f"Failed to fetch group list: {e}") from e

    async def fetch_group_metadata(self, group_id: str) -> GroupRecord:
        try:
            return await self._client.group_metadata(group_id)
        except Exception as e:
            raise map_bridge_error(e) from e


class BridgeIdentityMapping:
    """Live LID lookup through the bridge's signal key store."""

    def __init__(self, client: WhatsAppBridgeClient):
        self._client = client

    async def resolve_lid(self, lid_user: str) -> str | None:
        return await self._client.lid_lookup(lid_user)


class BridgeKickExecutor:
    """Remove a participant with bounded retry.

    Each attempt has its own timeout, extended on the final attempt for large
    groups. Between attempts the group is re-read; if the participant is gone
    the earlier attempt landed and the removal counts as done. Permission and
    not-found failures are raised immediately.
    """

    def __init__(
        self,
        client: WhatsAppBridgeClient,
        *,
        max_attempts: int = 3,
        attempt_timeout_s: float = 10.0,
        final_attempt_timeout_s: float = 20.0,
        retry_delay_s: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._client = client
        self._max_attempts = max(1, int(max_attempts))
        self._attempt_timeout_s = attempt_timeout_s
        self._final_attempt_timeout_s = max(attempt_timeout_s, final_attempt_timeout_s)
        self._retry_delay_s = retry_delay_s
        self._sleep = sleep

    @classmethod
    def from_config(cls, client: WhatsAppBridgeClient, config: KickConfig) -> BridgeKickExecutor:
        return cls(
            client,
            max_attempts=config.max_attempts,
            attempt_timeout_s=config.attempt_timeout_ms / 1000.0,
            final_attempt_timeout_s=config.final_attempt_timeout_ms / 1000.0,
            retry_delay_s=config.retry_delay_ms / 1000.0,
        )

    async def remove_participant(self, group_id: str, participant_id: str) -> None:
        last_error: PlatformError | None = None
        for attempt in range(1, self._max_attempts + 1):
            final = attempt == self._max_attempts
            timeout = self._final_attempt_timeout_s if final else self._attempt_timeout_s
            try:
                statuses = await self._client.remove_participants(
                    group_id, [participant_id], timeout_seconds=timeout
                )
                self._check_status(statuses.get(participant_id, "200"))
                if attempt > 1:
                    logger.info(f"Removed {participant_id} from {group_id} on attempt {attempt}")
                return
            except (PermissionDeniedError, ParticipantNotFoundError):
                raise
            except Exception as e:
                error = map_bridge_error(e)
                if isinstance(error, (PermissionDeniedError, ParticipantNotFoundError)):
                    raise error from e
                last_error = error
                logger.warning(
                    f"Kick attempt {attempt}/{self._max_attempts} failed for "
                    f"{participant_id} in {group_id}: {e}"
                )

            if final:
                break
            await self._sleep(self._retry_delay_s)
            if await self._is_gone(group_id, participant_id):
                logger.info(f"{participant_id} no longer in {group_id}; treating removal as done")
                return

        raise last_error or TransientPlatformError(f"Failed to remove {participant_id} from {group_id}")

    @staticmethod
    def _check_status(status: str) -> None:
        if status in {"200", "ok", ""}:
            return
        if status == "403":
            raise PermissionDeniedError(f"Insufficient privileges (status {status})")
        if status in {"401", "404"}:
            raise ParticipantNotFoundError(f"Participant not in group (status {status})")
        raise TransientPlatformError(f"Removal rejected with status {status}")

    async def _is_gone(self, group_id: str, participant_id: str) -> bool:
        try:
            group = await self._client.group_metadata(group_id)
        except Exception as e:
            logger.warning(f"Could not verify membership in {group_id}: {e}")
            return False
        wanted = jid_key(participant_id)
        return not any(p.id == participant_id or jid_key(p.id) == wanted for p in group.participants)
