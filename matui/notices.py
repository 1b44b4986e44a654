"""Messages carried by the single channel into the UI task.

Protocol notifications come from the sync task; the rest are injected by
other background tasks (config watcher, inactivity timer, editor, command
runner). The UI task applies them strictly in receipt order.
"""
from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Optional, Tuple

from matui.models import Event

if TYPE_CHECKING:
    from matui.config import Settings


# ── Protocol notifications ───────────────────────────────────────────────────


@dataclasses.dataclass(frozen=True)
class TimelineNotice:
    event: Event
    backfill: bool = False  # replayed history from the initial sync

    @property
    def room_id(self) -> str:
        return self.event.room_id


@dataclasses.dataclass(frozen=True)
class RoomNotice:
    """Own membership or room metadata changed."""
    room_id: str
    name: str = ""
    membership: str = "join"
    timestamp: int = 0


@dataclasses.dataclass(frozen=True)
class VerificationNotice:
    transaction_id: str
    other_user: str
    emojis: Tuple[Tuple[str, str], ...] = ()  # (emoji, description)


@dataclasses.dataclass(frozen=True)
class VerificationDone:
    transaction_id: str
    verified: bool


@dataclasses.dataclass(frozen=True)
class RecoveryRequired:
    reason: str = ""


# ── Local notifications ──────────────────────────────────────────────────────


@dataclasses.dataclass(frozen=True)
class ConfigReloaded:
    settings: "Settings"


@dataclasses.dataclass(frozen=True)
class ConfigRejected:
    error: str


@dataclasses.dataclass(frozen=True)
class Blurred:
    pass


@dataclasses.dataclass(frozen=True)
class ComposeFinished:
    room_id: str
    text: Optional[str]
    edit_of: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class ComposeFailed:
    error: str


@dataclasses.dataclass(frozen=True)
class CommandFailed:
    command: str
    error: str


@dataclasses.dataclass(frozen=True)
class FilesPicked:
    room_id: str
    paths: Tuple[str, ...]  # empty when the picker was cancelled


@dataclasses.dataclass(frozen=True)
class PickFailed:
    error: str
