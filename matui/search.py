"""Live search over one room's cached timeline.

Every keystroke re-runs a full scan; there is no index to maintain. The scan
only sees what the room's EventStore still holds, so history older than
``max_events`` is never searched.
"""
from __future__ import annotations

import dataclasses
import itertools
import re
from typing import Iterable, List, Optional, Pattern, Tuple

from matui.config import Settings
from matui.errors import EventNotFound
from matui.models import Message
from matui.rooms import Room

Span = Tuple[int, int]


@dataclasses.dataclass(frozen=True)
class SearchMatch:
    """Back-reference into a room's store; holds no message data."""
    event_id: str
    timestamp: int
    span: Span
    spans: Tuple[Span, ...]


class SearchEngine:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.configure(settings or Settings())

    def configure(self, settings: Settings) -> None:
        self.newest_first = settings.search_newest_first
        self.depth = settings.search_depth
        self.regex = settings.search_regex

    def compile(self, query: str) -> Optional[Pattern[str]]:
        if not query:
            return None
        if self.regex:
            try:
                return re.compile(query, re.IGNORECASE)
            except re.error:
                return None
        return re.compile(re.escape(query), re.IGNORECASE)

    def search(self, room: Room, query: str) -> List[SearchMatch]:
        pattern = self.compile(query)
        if pattern is None:
            return []
        source: Iterable[Message] = room.store.iter_newest() if self.newest_first else room.store.iter()
        if self.depth >= 0:
            source = itertools.islice(source, self.depth)
        matches: List[SearchMatch] = []
        for message in source:
            spans = tuple(
                (m.start(), m.end()) for m in pattern.finditer(message.body) if m.end() > m.start()
            )
            if spans:
                matches.append(SearchMatch(message.event_id, message.timestamp, spans[0], spans))
        return matches

    def resolve(self, room: Room, match: SearchMatch) -> Message:
        message = room.store.get(match.event_id)
        if message is None:
            raise EventNotFound(match.event_id)
        return message

    def visible(self, room: Room, matches: Iterable[SearchMatch]) -> List[SearchMatch]:
        """Drop matches whose event has been evicted since the query ran."""
        return [m for m in matches if m.event_id in room.store]
