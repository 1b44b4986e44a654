"""matrix-nio backed protocol client.

Room events are normalized from their raw Matrix JSON into ``Event``s and
handed to the UI through ``events()``; outbound commands map onto the
matching ``AsyncClient`` calls.
"""
from __future__ import annotations

import asyncio
import logging
import random
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

import aiofiles
from nio import (
    AsyncClient,
    AsyncClientConfig,
    ErrorResponse,
    KeyVerificationCancel,
    KeyVerificationKey,
    KeyVerificationMac,
    KeyVerificationStart,
    LocalProtocolError,
    LoginResponse,
    MatrixRoom,
    MegolmEvent,
    UploadResponse,
)
from nio.crypto import ENCRYPTION_ENABLED
from nio.events.room_events import Event as NioRoomEvent

from matui.config import KEYS_FILE, STORE_DIR, SYNC_TIMEOUT_MS
from matui.media import mime_from_path, msgtype_for
from matui.models import (
    Content,
    EditContent,
    Event,
    MediaContent,
    MembershipContent,
    ReactionContent,
    RedactionContent,
    TextContent,
)
from matui.notices import RecoveryRequired, RoomNotice, TimelineNotice, VerificationDone, VerificationNotice

logger = logging.getLogger("matui.matrix")

_RECONNECT_BASE_DELAY = 1.0
_RECONNECT_MAX_DELAY = 60.0
_RECONNECT_JITTER = 0.25

_MEDIA_TYPES = {"m.image", "m.video", "m.file", "m.audio"}
_ROOM_META_TYPES = {"m.room.name", "m.room.canonical_alias"}


# ---------------------------------------------------------------------------
# Matrix JSON -> Event
# ---------------------------------------------------------------------------

def _message_content(content: Dict[str, Any]) -> Optional[Content]:
    relates = content.get("m.relates_to") or {}
    if relates.get("rel_type") == "m.replace" and relates.get("event_id"):
        new = content.get("m.new_content") or {}
        body = new.get("body")
        if body is None:
            body = str(content.get("body", "")).removeprefix("* ")
        return EditContent(target=relates["event_id"], body=str(body))

    body = content.get("body")
    if body is None:
        return None
    msgtype = content.get("msgtype", "m.text")
    if msgtype in _MEDIA_TYPES:
        info = content.get("info") or {}
        return MediaContent(
            body=str(body),
            url=str(content.get("url") or (content.get("file") or {}).get("url", "")),
            mimetype=str(info.get("mimetype", "")),
            size=int(info.get("size", 0) or 0),
        )
    return TextContent(body=str(body), formatted=str(content.get("formatted_body", "")))


def parse_event(room_id: str, source: Dict[str, Any]) -> Optional[Event]:
    """Normalize one raw timeline event. Returns None for types we don't show."""
    event_id = source.get("event_id")
    sender = source.get("sender")
    ts = source.get("origin_server_ts")
    if not event_id or not sender or ts is None:
        return None
    etype = source.get("type")
    content = source.get("content") or {}

    parsed: Optional[Content] = None
    if etype == "m.room.message":
        parsed = _message_content(content)
    elif etype == "m.reaction":
        relates = content.get("m.relates_to") or {}
        if relates.get("rel_type") == "m.annotation" and relates.get("event_id") and relates.get("key"):
            parsed = ReactionContent(target=relates["event_id"], key=relates["key"])
    elif etype == "m.room.redaction":
        target = source.get("redacts") or content.get("redacts")
        if target:
            parsed = RedactionContent(target=target, reason=str(content.get("reason", "")))
    elif etype == "m.room.member":
        membership = content.get("membership")
        if membership:
            parsed = MembershipContent(membership=membership, display_name=str(content.get("displayname") or ""))

    if parsed is None:
        return None
    return Event(event_id=event_id, room_id=room_id, sender=sender, timestamp=int(ts), content=parsed)


def _check(response: Any, what: str) -> Any:
    if isinstance(response, ErrorResponse):
        raise RuntimeError(f"{what}: {response.message or response.status_code}")
    return response


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class MatrixClient:
    def __init__(
        self,
        homeserver: str,
        user_id: str,
        password: str = "",
        store_dir: Path = STORE_DIR,
        keys_file: Path = KEYS_FILE,
    ) -> None:
        self.homeserver = homeserver
        self.user_id = user_id
        self._password = password
        self.keys_file = keys_file
        store_dir.mkdir(parents=True, exist_ok=True)
        self._client = AsyncClient(
            homeserver,
            user_id,
            store_path=str(store_dir),
            config=AsyncClientConfig(encryption_enabled=ENCRYPTION_ENABLED, store_sync_tokens=True),
        )
        self._out: "asyncio.Queue[object]" = asyncio.Queue()
        self._sync_task: Optional[asyncio.Task] = None
        self._asked_recovery = False
        self._synced = False

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def start(self) -> None:
        if not self._password:
            raise RuntimeError("no password given; pass --password or set MATUI_PASSWORD")
        logger.info("logging in as %s on %s", self.user_id, self.homeserver)
        resp = await self._client.login(password=self._password, device_name="matui")
        if not isinstance(resp, LoginResponse):
            _check(resp, "login")
            raise RuntimeError(f"login failed: {resp}")
        self._password = ""

        self._client.add_event_callback(self._on_room_event, NioRoomEvent)
        self._client.add_to_device_callback(
            self._on_verification,
            (KeyVerificationStart, KeyVerificationKey, KeyVerificationMac, KeyVerificationCancel),
        )

        if self._client.should_upload_keys:
            _check(await self._client.keys_upload(), "keys upload")
        _check(await self._client.sync(timeout=SYNC_TIMEOUT_MS, full_state=True), "initial sync")
        self._synced = True
        for room in self._client.rooms.values():
            await self._out.put(RoomNotice(room.room_id, room.display_name))
        self._sync_task = asyncio.create_task(self._sync_loop())

    async def stop(self) -> None:
        if self._sync_task is not None:
            self._sync_task.cancel()
            await asyncio.gather(self._sync_task, return_exceptions=True)
            self._sync_task = None
        await self._client.close()

    async def _sync_loop(self) -> None:
        """Long-poll ``/sync`` forever, backing off exponentially on errors."""
        delay = _RECONNECT_BASE_DELAY
        while True:
            try:
                _check(await self._client.sync(timeout=SYNC_TIMEOUT_MS), "sync")
                delay = _RECONNECT_BASE_DELAY
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                wait = delay + random.uniform(0, _RECONNECT_JITTER * delay)
                logger.warning("sync error: %s -- retrying in %.1f s", exc, wait)
                await asyncio.sleep(wait)
                delay = min(delay * 2, _RECONNECT_MAX_DELAY)

    async def events(self) -> AsyncIterator[object]:
        """Normalized notifications, in the order nio delivered them."""
        while True:
            yield await self._out.get()

    # ── Callbacks ─────────────────────────────────────────────────────────────

    async def _on_room_event(self, room: MatrixRoom, event: NioRoomEvent) -> None:
        if isinstance(event, MegolmEvent):
            logger.info("could not decrypt %s in %s", event.event_id, room.room_id)
            if not self._asked_recovery:
                self._asked_recovery = True
                await self._out.put(RecoveryRequired("Some messages could not be decrypted; enter your recovery passphrase."))
            return
        source = event.source
        etype = source.get("type")
        if etype == "m.room.member" and source.get("state_key") == self.user_id:
            membership = (source.get("content") or {}).get("membership", "")
            await self._out.put(RoomNotice(room.room_id, room.display_name, membership))
        elif etype in _ROOM_META_TYPES:
            await self._out.put(RoomNotice(room.room_id, room.display_name))

        parsed = parse_event(room.room_id, source)
        if parsed is not None:
            await self._out.put(TimelineNotice(parsed, backfill=not self._synced))

    async def _on_verification(self, event: Any) -> None:
        client = self._client
        tx = event.transaction_id
        if isinstance(event, KeyVerificationStart):
            if "emoji" not in event.short_authentication_string:
                logger.info("verification %s offers no emoji SAS; cancelling", tx)
                await client.cancel_key_verification(tx, reject=True)
                return
            _check(await client.accept_key_verification(tx), "accept verification")
            sas = client.key_verifications[tx]
            _check(await client.to_device(sas.share_key()), "share key")
        elif isinstance(event, KeyVerificationKey):
            sas = client.key_verifications[tx]
            emojis = tuple((e, d) for e, d in sas.get_emoji())
            await self._out.put(VerificationNotice(tx, event.sender, emojis))
        elif isinstance(event, KeyVerificationMac):
            sas = client.key_verifications[tx]
            try:
                mac = sas.get_mac()
            except LocalProtocolError as e:
                logger.warning("verification %s failed: %s", tx, e)
                await self._out.put(VerificationDone(tx, False))
                return
            _check(await client.to_device(mac), "send mac")
            await self._out.put(VerificationDone(tx, sas.verified))
        elif isinstance(event, KeyVerificationCancel):
            await self._out.put(VerificationDone(tx, False))

    # ── Outbound ──────────────────────────────────────────────────────────────

    async def _send(self, room_id: str, event_type: str, content: Dict[str, Any]) -> None:
        resp = await self._client.room_send(room_id, event_type, content, ignore_unverified_devices=True)
        _check(resp, event_type)

    async def send_text(self, room_id: str, body: str) -> None:
        await self._send(room_id, "m.room.message", {"msgtype": "m.text", "body": body})

    async def send_edit(self, room_id: str, event_id: str, body: str) -> None:
        await self._send(room_id, "m.room.message", {
            "msgtype": "m.text",
            "body": f"* {body}",
            "m.new_content": {"msgtype": "m.text", "body": body},
            "m.relates_to": {"rel_type": "m.replace", "event_id": event_id},
        })

    async def send_reaction(self, room_id: str, event_id: str, key: str) -> None:
        await self._send(room_id, "m.reaction", {
            "m.relates_to": {"rel_type": "m.annotation", "event_id": event_id, "key": key},
        })

    async def redact(self, room_id: str, event_id: str, reason: str = "") -> None:
        _check(await self._client.room_redact(room_id, event_id, reason or None), "redact")

    async def upload(self, room_id: str, path: str) -> None:
        """Upload one file and post it to *room_id*, encrypted if the room is."""
        file = Path(path)
        mimetype = mime_from_path(file)
        size = file.stat().st_size
        room = self._client.rooms.get(room_id)
        encrypt = bool(room and room.encrypted)
        logger.info("uploading %s (%s, %d bytes) to %s", file.name, mimetype, size, room_id)
        async with aiofiles.open(file, "rb") as f:
            resp, keys = await self._client.upload(
                f, content_type=mimetype, filename=file.name, filesize=size, encrypt=encrypt,
            )
        if not isinstance(resp, UploadResponse):
            _check(resp, f"upload {file.name}")
            raise RuntimeError(f"upload {file.name} failed: {resp}")

        content: Dict[str, Any] = {
            "msgtype": msgtype_for(mimetype),
            "body": file.name,
            "info": {"mimetype": mimetype, "size": size},
        }
        if keys:
            content["file"] = {"url": resp.content_uri, **keys}
        else:
            content["url"] = resp.content_uri
        await self._send(room_id, "m.room.message", content)

    async def recover(self, passphrase: str) -> None:
        if not self.keys_file.exists():
            raise RuntimeError(f"no key export at {self.keys_file}")
        await self._client.import_keys(str(self.keys_file), passphrase)

    async def confirm_verification(self, transaction_id: str, matches: bool) -> None:
        if matches:
            _check(await self._client.confirm_short_auth_string(transaction_id), "confirm verification")
        else:
            _check(await self._client.cancel_key_verification(transaction_id, reject=True), "reject verification")

    async def set_focus(self, focused: bool) -> None:
        _check(await self._client.set_presence("online" if focused else "unavailable"), "presence")
