"""Adapter between the asynchronous protocol stream and the UI task.

Background tasks ``publish`` into one bounded queue; the UI task ``drain``s
it once per cycle and calls ``apply`` for protocol notifications. Nothing is
dropped: a full queue makes producers wait.
"""
from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import AsyncIterable, Dict, List, Optional

from matui.config import CHANNEL_MAXSIZE
from matui.event_store import FORGOTTEN_ID_MEMORY, remember_id
from matui.models import Event
from matui.notices import RoomNotice, TimelineNotice
from matui.rooms import Room, RoomRegistry

logger = logging.getLogger("matui.sync")

_LEFT = {"leave", "ban"}


class SyncBridge:
    def __init__(self, maxsize: int = CHANNEL_MAXSIZE) -> None:
        self._queue: "asyncio.Queue[object]" = asyncio.Queue(maxsize=maxsize)
        self._recent: "OrderedDict[str, None]" = OrderedDict()
        self._last_ts: Dict[str, int] = {}
        self.inconsistencies = 0

    # ── Feed side (background tasks) ──────────────────────────────────────────

    async def publish(self, message: object) -> None:
        await self._queue.put(message)

    async def consume(self, stream: AsyncIterable[object]) -> None:
        """Forward *stream* into the channel in order until it ends."""
        async for notice in stream:
            await self.publish(notice)

    # ── UI side ───────────────────────────────────────────────────────────────

    def pending(self) -> int:
        return self._queue.qsize()

    def drain(self, limit: Optional[int] = None) -> List[object]:
        out: List[object] = []
        while limit is None or len(out) < limit:
            try:
                out.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return out

    def apply(self, notice: object, registry: RoomRegistry) -> Optional[Room]:
        """Apply one protocol notification. Returns the room it touched, if any."""
        if isinstance(notice, TimelineNotice):
            return self._apply_event(notice.event, registry, notice.backfill)
        if isinstance(notice, RoomNotice):
            return self._apply_room(notice, registry)
        return None

    def _apply_room(self, notice: RoomNotice, registry: RoomRegistry) -> Optional[Room]:
        if notice.membership in _LEFT:
            registry.remove(notice.room_id)
            self._last_ts.pop(notice.room_id, None)
            return None
        room = registry.ensure(notice.room_id, notice.name)
        room.membership = notice.membership
        if notice.timestamp:
            registry.touch(room.room_id, notice.timestamp)
        return room

    def _apply_event(self, event: Event, registry: RoomRegistry, backfill: bool = False) -> Optional[Room]:
        if event.event_id in self._recent:
            logger.debug("duplicate delivery of %s absorbed", event.event_id)
            return None
        remember_id(self._recent, event.event_id, FORGOTTEN_ID_MEMORY)

        last = self._last_ts.get(event.room_id, 0)
        if event.timestamp < last and backfill:
            logger.debug("backfilled %s in %s is older than the latest event", event.event_id, event.room_id)
        elif event.timestamp < last:
            self.inconsistencies += 1
            logger.warning(
                "event %s in %s arrived out of order (%d < %d); applying in arrival order",
                event.event_id, event.room_id, event.timestamp, last,
            )
        else:
            self._last_ts[event.room_id] = event.timestamp

        room = registry.ensure(event.room_id)
        if room.store.insert(event):
            room.timeline.sync()
        if not event.is_fold:
            message = room.store.get(event.event_id)
            if message is not None:
                registry.note_event(room, event, message.body)
        return room
