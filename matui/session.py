"""The UI task's view of the world.

A ``Session`` owns every piece of core state (rooms, stores, timelines,
search, input mode). Only the task that calls ``handle_key`` and ``pump``
may touch it; background tasks reach it through the ``SyncBridge`` channel.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from matui.client import SetFocus
from matui.config import Settings
from matui.delay_timer import DelayTimer
from matui.dispatcher import Action, InputDispatcher, KeyPress, Mode
from matui.notices import (
    Blurred,
    CommandFailed,
    ComposeFailed,
    ComposeFinished,
    ConfigRejected,
    ConfigReloaded,
    FilesPicked,
    PickFailed,
    RecoveryRequired,
    RoomNotice,
    TimelineNotice,
    VerificationDone,
    VerificationNotice,
)
from matui.rooms import RoomRegistry
from matui.search import SearchEngine
from matui.sync_bridge import SyncBridge

logger = logging.getLogger("matui.session")


class Session:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        own_user: str = "",
        bridge: Optional[SyncBridge] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.registry = RoomRegistry(self.settings, own_user=own_user)
        self.search = SearchEngine(self.settings)
        self.dispatcher = InputDispatcher(self.registry, self.search, self.settings)
        self.bridge = bridge or SyncBridge()
        self.blur_timer = DelayTimer(self.settings.blur_delay, self._on_inactive)
        self.focused = True

    @property
    def mode(self) -> Mode:
        return self.dispatcher.mode

    @property
    def notice(self) -> str:
        return self.dispatcher.notice

    @notice.setter
    def notice(self, text: str) -> None:
        self.dispatcher.notice = text

    # ── Input ─────────────────────────────────────────────────────────────────

    def handle_key(self, key: KeyPress) -> bool:
        if not self.focused:
            self.focused = True
            self.dispatcher.outbox.append(SetFocus(True))
        self.blur_timer.record()
        return self.dispatcher.handle_key(key)

    def take_actions(self) -> List[Action]:
        return self.dispatcher.take_outbox()

    # ── Channel ───────────────────────────────────────────────────────────────

    def pump(self) -> int:
        """Apply everything queued so far, in receipt order. Call once per UI cycle."""
        messages = self.bridge.drain()
        for message in messages:
            self.apply(message)
        return len(messages)

    def apply(self, message: object) -> None:
        try:
            self._apply(message)
        except Exception:
            logger.exception("failed to apply %r", message)

    def _apply(self, m: object) -> None:
        d = self.dispatcher
        if isinstance(m, (TimelineNotice, RoomNotice)):
            before = self.registry.focused_id
            room = self.bridge.apply(m, self.registry)
            if self.registry.focused_id != before and before is not None:
                d.room_changed()
            if room is not None and room.room_id == self.registry.focused_id and d.mode is Mode.SEARCH:
                d.refresh_search()
        elif isinstance(m, VerificationNotice):
            d.verification_requested(m)
        elif isinstance(m, VerificationDone):
            d.verification_done(m)
        elif isinstance(m, RecoveryRequired):
            d.recovery_required(m.reason)
        elif isinstance(m, ConfigReloaded):
            self.reconfigure(m.settings)
            self.notice = "Configuration reloaded."
        elif isinstance(m, ConfigRejected):
            self.notice = f"Configuration rejected, keeping previous: {m.error}"
        elif isinstance(m, Blurred):
            if self.focused:
                self.focused = False
                d.outbox.append(SetFocus(False))
        elif isinstance(m, ComposeFinished):
            d.compose_finished(m)
        elif isinstance(m, ComposeFailed):
            d.compose_failed(m.error)
        elif isinstance(m, FilesPicked):
            d.files_picked(m)
        elif isinstance(m, PickFailed):
            d.pick_failed(m.error)
        elif isinstance(m, CommandFailed):
            self.notice = f"{m.command} failed: {m.error}"
        else:
            logger.warning("unknown channel message %r", m)

    def reconfigure(self, settings: Settings) -> None:
        self.settings = settings
        self.registry.apply_settings(settings)
        self.search.configure(settings)
        self.dispatcher.configure(settings)
        self.blur_timer.delay = settings.blur_delay

    async def _on_inactive(self) -> None:
        await self.bridge.publish(Blurred())
