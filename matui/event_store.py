"""Per-room bounded timeline cache.

Messages are kept in arrival order and trimmed oldest-first once the store
grows past ``max_events``. Edits, reactions and redactions never become
entries of their own: they are folded into the message they target when
they are inserted.
"""
from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from matui.config import DEFAULT_MAX_EVENTS
from matui.models import (
    EditContent,
    Event,
    Message,
    ReactionContent,
    RedactionContent,
)

logger = logging.getLogger("matui.store")

PENDING_FOLD_TTL_S = 30.0
MAX_PENDING_FOLDS = 256
FORGOTTEN_ID_MEMORY = 4096


def remember_id(ids: "OrderedDict[str, None]", event_id: str, cap: int) -> None:
    ids[event_id] = None
    ids.move_to_end(event_id)
    while len(ids) > cap:
        ids.popitem(last=False)


class EventStore:
    def __init__(
        self,
        max_events: int = DEFAULT_MAX_EVENTS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_events = max_events
        self._clock = clock
        self._messages: "OrderedDict[str, Message]" = OrderedDict()
        # reaction event id -> id of the message it is folded into
        self._reaction_index: Dict[str, str] = {}
        # fold ids already applied; makes repeat deliveries no-ops
        self._applied: "OrderedDict[str, None]" = OrderedDict()
        # ids evicted or redacted; folds that target them are dropped
        self._forgotten: "OrderedDict[str, None]" = OrderedDict()
        # fold event id -> (deadline, event) for folds whose target hasn't arrived
        self._pending: "OrderedDict[str, Tuple[float, Event]]" = OrderedDict()
        self._snapshot: Optional[List[Message]] = None
        self._positions: Optional[Dict[str, int]] = None

    # ── Queries ───────────────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._messages

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages.values())

    def iter(self) -> Iterator[Message]:
        """Oldest to newest. Each call starts a fresh pass."""
        return iter(self)

    def iter_newest(self) -> Iterator[Message]:
        return reversed(self._messages.values())

    def get(self, event_id: str) -> Optional[Message]:
        return self._messages.get(event_id)

    def snapshot(self) -> List[Message]:
        """Indexable view of the current sequence, rebuilt after a mutation."""
        if self._snapshot is None:
            self._snapshot = list(self._messages.values())
        return self._snapshot

    def index_of(self, event_id: str) -> Optional[int]:
        if self._positions is None:
            self._positions = {m.event_id: i for i, m in enumerate(self.snapshot())}
        return self._positions.get(event_id)

    def reaction_event_id(self, target: str, sender: str, key: str) -> Optional[str]:
        message = self._messages.get(target)
        if message is None:
            return None
        return message.reactions.get(key, {}).get(sender)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ── Mutation ──────────────────────────────────────────────────────────────

    def insert(self, event: Event) -> bool:
        """Insert or fold *event*. Returns True when the visible timeline changed."""
        self._expire_pending()
        if event.is_fold:
            changed = self._fold(event)
        else:
            changed = self._append(event)
        if self.evict_over_capacity():
            changed = True
        return changed

    def evict_over_capacity(self) -> int:
        if self.max_events < 0:
            return 0
        evicted = 0
        while len(self._messages) > self.max_events:
            event_id, message = self._messages.popitem(last=False)
            self._forget(event_id, message)
            evicted += 1
        if evicted:
            self._invalidate()
            logger.debug("evicted %d messages (max_events=%d)", evicted, self.max_events)
        return evicted

    def set_capacity(self, max_events: int) -> int:
        self.max_events = max_events
        return self.evict_over_capacity()

    # ── Internals ─────────────────────────────────────────────────────────────

    def _invalidate(self) -> None:
        self._snapshot = None
        self._positions = None

    def _append(self, event: Event) -> bool:
        if event.event_id in self._messages or event.event_id in self._forgotten:
            return False
        self._messages[event.event_id] = Message.from_event(event)
        self._invalidate()
        self._apply_pending(event.event_id)
        return True

    def _forget(self, event_id: str, message: Message) -> None:
        for senders in message.reactions.values():
            for reaction_id in senders.values():
                self._reaction_index.pop(reaction_id, None)
        remember_id(self._forgotten, event_id, FORGOTTEN_ID_MEMORY)

    def _fold(self, event: Event) -> bool:
        content = event.content
        if event.event_id in self._applied:
            return False

        target = content.target
        if isinstance(content, RedactionContent) and target in self._reaction_index:
            message = self._messages.get(self._reaction_index.pop(target))
            remember_id(self._applied, event.event_id, FORGOTTEN_ID_MEMORY)
            return bool(message and message.remove_reaction_event(target))

        message = self._messages.get(target)
        if message is None:
            if target in self._forgotten:
                logger.debug("dropping %s for forgotten event %s", event.event_id, target)
            else:
                self._buffer(event)
            return False
        return self._apply_fold(message, event)

    def _apply_fold(self, message: Message, event: Event) -> bool:
        content = event.content
        if isinstance(content, EditContent):
            remember_id(self._applied, event.event_id, FORGOTTEN_ID_MEMORY)
            return message.edit(event.event_id, content.body)

        if isinstance(content, ReactionContent):
            remember_id(self._applied, event.event_id, FORGOTTEN_ID_MEMORY)
            previous = message.reactions.get(content.key, {}).get(event.sender)
            present = message.toggle_reaction(event.sender, content.key, event.event_id)
            if previous:
                self._reaction_index.pop(previous, None)
            if present:
                self._reaction_index[event.event_id] = message.event_id
                self._apply_pending(event.event_id)
            return True

        if isinstance(content, RedactionContent):
            remember_id(self._applied, event.event_id, FORGOTTEN_ID_MEMORY)
            del self._messages[message.event_id]
            self._forget(message.event_id, message)
            self._invalidate()
            return True

        return False

    def _buffer(self, event: Event) -> None:
        if event.event_id in self._pending:
            return
        self._pending[event.event_id] = (self._clock() + PENDING_FOLD_TTL_S, event)
        while len(self._pending) > MAX_PENDING_FOLDS:
            _, (_, dropped) = self._pending.popitem(last=False)
            logger.debug("pending fold buffer full; dropping %s", dropped.event_id)

    def _apply_pending(self, target: str) -> None:
        waiting = [fid for fid, (_, e) in self._pending.items() if e.target == target]
        for fold_id in waiting:
            _, event = self._pending.pop(fold_id)
            message = self._messages.get(target)
            if message is not None:
                self._apply_fold(message, event)
            elif target in self._reaction_index:
                self._fold(event)

    def _expire_pending(self) -> None:
        now = self._clock()
        while self._pending:
            fold_id, (deadline, _) = next(iter(self._pending.items()))
            if deadline > now:
                break
            del self._pending[fold_id]
            logger.debug("target of %s never arrived; dropping", fold_id)
