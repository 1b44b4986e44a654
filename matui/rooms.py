from __future__ import annotations

import dataclasses
import logging
import re
from typing import Dict, List, Optional, Set

from matui.config import Settings
from matui.event_store import EventStore
from matui.models import Event
from matui.timeline import TimelineView

logger = logging.getLogger("matui.rooms")


def localpart(user_id: str) -> str:
    """``@alice:example.org`` -> ``alice``."""
    return user_id.lstrip("@").split(":", 1)[0]


def mentions(text: str, user_id: str) -> bool:
    name = localpart(user_id)
    if not name:
        return False
    return re.search(rf"(?<!\w)@?{re.escape(name)}(?!\w)", text, re.IGNORECASE) is not None


@dataclasses.dataclass
class Room:
    room_id: str
    store: EventStore
    timeline: TimelineView
    name: str = ""
    membership: str = "join"
    muted: bool = False
    last_activity: int = 0
    unread: int = 0
    highlights: int = 0

    @property
    def display_name(self) -> str:
        return self.name or self.room_id


class RoomRegistry:
    """Joined rooms, most recently active first; ties go to the latest touched.

    Muted rooms stay listed but do not move when they see activity.
    """

    def __init__(self, settings: Optional[Settings] = None, own_user: str = "") -> None:
        settings = settings or Settings()
        self.own_user = own_user
        self.focused_id: Optional[str] = None
        self._rooms: Dict[str, Room] = {}
        self._order: List[str] = []
        self._muted: Set[str] = set(settings.muted)
        self._max_events = settings.max_events
        self._page_size = settings.page_size

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def rooms(self) -> List[Room]:
        return [self._rooms[rid] for rid in self._order]

    @property
    def focused(self) -> Optional[Room]:
        return self._rooms.get(self.focused_id) if self.focused_id else None

    # ── Membership ────────────────────────────────────────────────────────────

    def ensure(self, room_id: str, name: str = "") -> Room:
        room = self._rooms.get(room_id)
        if room is not None:
            if name:
                room.name = name
            return room
        store = EventStore(max_events=self._max_events)
        room = Room(
            room_id=room_id,
            store=store,
            timeline=TimelineView(store, page_size=self._page_size),
            name=name,
            muted=room_id in self._muted,
        )
        self._rooms[room_id] = room
        if room.muted:
            self._order.append(room_id)
        else:
            self._order.insert(0, room_id)
        logger.info("room appeared: %s (%s)", room.display_name, room_id)
        if self.focused_id is None:
            self.focused_id = room_id
        return room

    def remove(self, room_id: str) -> bool:
        if room_id not in self._rooms:
            return False
        del self._rooms[room_id]
        self._order.remove(room_id)
        if self.focused_id == room_id:
            self.focused_id = self._order[0] if self._order else None
        logger.info("left room %s", room_id)
        return True

    def focus(self, room_id: str) -> bool:
        room = self._rooms.get(room_id)
        if room is None:
            return False
        self.focused_id = room_id
        room.unread = 0
        room.highlights = 0
        return True

    # ── Activity ──────────────────────────────────────────────────────────────

    def touch(self, room_id: str, timestamp: int) -> None:
        room = self._rooms.get(room_id)
        if room is None:
            return
        room.last_activity = max(room.last_activity, timestamp)
        if room.muted:
            return
        self._order.remove(room_id)
        self._order.insert(self._slot(room.last_activity), room_id)

    def _slot(self, last_activity: int) -> int:
        """Position ahead of the first unmuted room that is not more recently active."""
        after = 0
        for i, rid in enumerate(self._order):
            other = self._rooms[rid]
            if other.muted:
                continue
            if other.last_activity <= last_activity:
                return i
            after = i + 1
        return after

    def note_event(self, room: Room, event: Event, body: str) -> None:
        """Count unread/highlights for a new message in *room*."""
        self.touch(room.room_id, event.timestamp)
        if room.room_id == self.focused_id or event.sender == self.own_user:
            return
        room.unread += 1
        if self.own_user and mentions(body, self.own_user):
            room.highlights += 1

    def filter(self, text: str) -> List[Room]:
        pattern = text.lower()
        return [r for r in self.rooms() if pattern in r.display_name.lower()]

    def toggle_mute(self, room_id: str) -> bool:
        room = self._rooms.get(room_id)
        if room is None:
            return False
        room.muted = not room.muted
        return room.muted

    def apply_settings(self, settings: Settings) -> None:
        self._muted = set(settings.muted)
        self._max_events = settings.max_events
        self._page_size = settings.page_size
        for room in self._rooms.values():
            room.muted = room.room_id in self._muted
            room.timeline.page_size = settings.page_size
            if room.store.set_capacity(settings.max_events):
                room.timeline.sync()
