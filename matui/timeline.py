from __future__ import annotations

from typing import List, Optional

from matui.config import DEFAULT_PAGE_SIZE
from matui.errors import EventNotFound
from matui.event_store import EventStore
from matui.models import Message


class TimelineView:
    """Selection and scroll window over one room's cached messages.

    Index 0 is the oldest cached message. ``selected`` is always a valid
    index for the current sequence, or 0 when the sequence is empty.
    """

    def __init__(self, store: EventStore, page_size: int = DEFAULT_PAGE_SIZE, height: int = 20) -> None:
        self.store = store
        self.page_size = page_size
        self.height = max(1, height)
        self.selected = 0
        self.offset = 0
        self._selected_id: Optional[str] = None
        self._follow = True

    def __len__(self) -> int:
        return len(self.store)

    @property
    def following(self) -> bool:
        return self._follow

    @property
    def selected_message(self) -> Optional[Message]:
        messages = self.store.snapshot()
        if not messages:
            return None
        return messages[self.selected]

    def visible(self) -> List[Message]:
        return self.store.snapshot()[self.offset:self.offset + self.height]

    # ── Movement ──────────────────────────────────────────────────────────────

    def down(self, count: int = 1) -> None:
        self._select(self.selected + count)

    def up(self, count: int = 1) -> None:
        self._select(self.selected - count)

    def page_down(self) -> None:
        self.down(self.page_size)

    def page_up(self) -> None:
        self.up(self.page_size)

    def jump_latest(self) -> None:
        self._select(len(self.store) - 1)

    def jump_oldest(self) -> None:
        self._select(0)

    def jump_to(self, event_id: str) -> None:
        index = self.store.index_of(event_id)
        if index is None:
            raise EventNotFound(event_id)
        self._select(index)

    def select_nearest(self, timestamp: int) -> None:
        """Select the cached message closest in time to *timestamp*."""
        messages = self.store.snapshot()
        if not messages:
            self._select(0)
            return
        best = min(range(len(messages)), key=lambda i: abs(messages[i].timestamp - timestamp))
        self._select(best)

    def resize(self, height: int) -> None:
        self.height = max(1, height)
        self._scroll_into_view()

    def sync(self) -> None:
        """Re-clamp after the store was mutated (insert, fold or eviction)."""
        n = len(self.store)
        if n == 0 or self._follow:
            self._select(n - 1)
            return
        index = self.store.index_of(self._selected_id) if self._selected_id else None
        self._select(self.selected if index is None else index)

    # ── Internals ─────────────────────────────────────────────────────────────

    def _select(self, index: int) -> None:
        messages = self.store.snapshot()
        n = len(messages)
        if n == 0:
            self.selected = 0
            self.offset = 0
            self._selected_id = None
            self._follow = True
            return
        self.selected = max(0, min(index, n - 1))
        self._selected_id = messages[self.selected].event_id
        self._follow = self.selected == n - 1
        self._scroll_into_view()

    def _scroll_into_view(self) -> None:
        n = len(self.store)
        if self.selected < self.offset:
            self.offset = self.selected
        elif self.selected >= self.offset + self.height:
            self.offset = self.selected - self.height + 1
        self.offset = max(0, min(self.offset, max(0, n - self.height)))
