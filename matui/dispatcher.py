"""Modal key handling.

Exactly one ``Mode`` is active. Every key press is routed by the active mode;
a key the mode does not know is ignored. Mode changes only happen through
``InputDispatcher._set_mode``.
"""
from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
from typing import List, Optional, Union

from matui.client import (
    Command,
    ConfirmVerification,
    Redact,
    SendEdit,
    SendReaction,
    SendText,
    SubmitPassphrase,
    UploadMedia,
)
from matui.config import Settings
from matui.errors import EventNotFound
from matui.notices import ComposeFinished, FilesPicked, VerificationDone, VerificationNotice
from matui.rooms import Room, RoomRegistry
from matui.search import SearchEngine, SearchMatch

logger = logging.getLogger("matui.input")


class Mode(enum.Enum):
    NORMAL = "normal"
    ROOM_SWITCHER = "room_switcher"
    SEARCH = "search"
    SEARCH_RESULTS = "search_results"
    COMPOSE = "compose"
    UPLOAD = "upload"
    REACT = "react"
    VERIFY_PASSPHRASE = "verify_passphrase"
    CONFIRM_VERIFICATION = "confirm_verification"
    HELP = "help"


@dataclasses.dataclass(frozen=True)
class KeyPress:
    """A terminal key: Textual-style ``key`` name plus the typed character, if any."""
    key: str
    character: Optional[str] = None

    @property
    def printable(self) -> bool:
        return self.character is not None and len(self.character) == 1 and self.character.isprintable()

    @property
    def name(self) -> str:
        return self.character if self.printable else self.key


@dataclasses.dataclass(frozen=True)
class StartCompose:
    """Ask the UI layer to run the external editor."""
    room_id: str
    existing: Optional[str] = None
    edit_of: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class StartUpload:
    """Ask the UI layer to run the file picker."""
    room_id: str


Action = Union[Command, StartCompose, StartUpload]

_DOWN = {"j", "down"}
_UP = {"k", "up"}
_EXTERNAL = (Mode.COMPOSE, Mode.UPLOAD)


class InputDispatcher:
    def __init__(self, registry: RoomRegistry, search: SearchEngine, settings: Optional[Settings] = None) -> None:
        settings = settings or Settings()
        self.registry = registry
        self.search_engine = search
        self.palette: List[str] = list(settings.reactions)
        self.mode = Mode.NORMAL
        self.outbox: List[Action] = []
        self.notice = ""
        # pending external-process wait (editor or picker), cancelled on mode/room change
        self.external: Optional[asyncio.Future] = None

        self.switcher_filter = ""
        self.switcher_index = 0
        self.query = ""
        self.results: List[SearchMatch] = []
        self.result_index = 0
        self.react_target: Optional[str] = None
        self.react_options: List[str] = []
        self.react_index = 0
        self.passphrase = ""
        self.verification: Optional[VerificationNotice] = None
        self._parked: Optional[VerificationNotice] = None
        self._resume_mode = Mode.NORMAL

    @property
    def room(self) -> Optional[Room]:
        return self.registry.focused

    def configure(self, settings: Settings) -> None:
        self.palette = list(settings.reactions)

    def take_outbox(self) -> List[Action]:
        out, self.outbox = self.outbox, []
        return out

    # ── Entry point ───────────────────────────────────────────────────────────

    def handle_key(self, key: KeyPress) -> bool:
        """Route *key* through the active mode. Returns False if it was ignored."""
        if key.key == "escape":
            if self.mode is Mode.NORMAL:
                return False
            if self.mode is Mode.CONFIRM_VERIFICATION and self.verification:
                self._answer_verification(False)
            self._set_mode(Mode.NORMAL)
            return True
        handler = getattr(self, f"_on_{self.mode.value}")
        return handler(key)

    # ── Mode handlers ─────────────────────────────────────────────────────────

    def _on_normal(self, key: KeyPress) -> bool:
        name = key.name
        room = self.room
        if name in (" ", "space"):
            self.switcher_filter = ""
            self.switcher_index = 0
            self._set_mode(Mode.ROOM_SWITCHER)
        elif name == "/":
            self.query = ""
            self.results = []
            self.result_index = 0
            self._set_mode(Mode.SEARCH)
        elif name == "?":
            self._set_mode(Mode.HELP)
        elif name == "p":
            self.passphrase = ""
            self._set_mode(Mode.VERIFY_PASSPHRASE)
        elif room is None:
            return False
        elif name == "i":
            self.start_external(StartCompose(room.room_id), Mode.COMPOSE)
        elif name == "u":
            self.start_external(StartUpload(room.room_id), Mode.UPLOAD)
        elif name == "c":
            return self._edit_selected(room)
        elif name == "r":
            return self._react_to_selected(room)
        elif name == "m":
            muted = self.registry.toggle_mute(room.room_id)
            self.notice = f"{room.display_name} {'muted' if muted else 'unmuted'} until restart"
        elif name in _DOWN:
            room.timeline.down()
        elif name in _UP:
            room.timeline.up()
        elif name == "pagedown":
            room.timeline.page_down()
        elif name == "pageup":
            room.timeline.page_up()
        elif name in ("G", "end"):
            room.timeline.jump_latest()
        elif name in ("g", "home"):
            room.timeline.jump_oldest()
        else:
            return False
        return True

    def _on_room_switcher(self, key: KeyPress) -> bool:
        rooms = self.registry.filter(self.switcher_filter)
        if key.key == "down":
            self.switcher_index = min(self.switcher_index + 1, max(0, len(rooms) - 1))
        elif key.key == "up":
            self.switcher_index = max(self.switcher_index - 1, 0)
        elif key.key == "enter":
            if not rooms:
                return False
            self.select_room(rooms[min(self.switcher_index, len(rooms) - 1)].room_id)
            self._set_mode(Mode.NORMAL)
        elif key.key == "backspace":
            self.switcher_filter = self.switcher_filter[:-1]
            self.switcher_index = 0
        elif key.printable:
            self.switcher_filter += key.character
            self.switcher_index = 0
        else:
            return False
        return True

    def _on_search(self, key: KeyPress) -> bool:
        if key.key == "enter":
            self.result_index = 0
            self._set_mode(Mode.SEARCH_RESULTS)
        elif key.key == "backspace":
            self.query = self.query[:-1]
            self.refresh_search()
        elif key.printable:
            self.query += key.character
            self.refresh_search()
        else:
            return False
        return True

    def _on_search_results(self, key: KeyPress) -> bool:
        room = self.room
        visible = self.search_engine.visible(room, self.results) if room else []
        name = key.name
        if name in _DOWN:
            self.result_index = min(self.result_index + 1, max(0, len(visible) - 1))
        elif name in _UP:
            self.result_index = max(self.result_index - 1, 0)
        elif name == "/":
            self._set_mode(Mode.SEARCH)
        elif key.key == "enter":
            if room is None or not visible:
                return False
            self._jump(room, visible[min(self.result_index, len(visible) - 1)])
            self._set_mode(Mode.NORMAL)
        else:
            return False
        return True

    def _on_compose(self, key: KeyPress) -> bool:
        return False

    def _on_upload(self, key: KeyPress) -> bool:
        return False

    def _on_react(self, key: KeyPress) -> bool:
        name = key.name
        if name in _DOWN:
            self.react_index = min(self.react_index + 1, max(0, len(self.react_options) - 1))
        elif name in _UP:
            self.react_index = max(self.react_index - 1, 0)
        elif key.key == "enter":
            self._send_reaction()
            self._set_mode(Mode.NORMAL)
        else:
            return False
        return True

    def _on_verify_passphrase(self, key: KeyPress) -> bool:
        if key.key == "enter":
            if not self.passphrase:
                return False
            self.outbox.append(SubmitPassphrase(self.passphrase))
            self.passphrase = ""
            self._set_mode(Mode.NORMAL)
        elif key.key == "backspace":
            self.passphrase = self.passphrase[:-1]
        elif key.printable:
            self.passphrase += key.character
        else:
            return False
        return True

    def _on_confirm_verification(self, key: KeyPress) -> bool:
        if key.name not in ("y", "n") or self.verification is None:
            return False
        self._answer_verification(key.name == "y")
        self._set_mode(Mode.NORMAL)
        return True

    def _on_help(self, key: KeyPress) -> bool:
        self._set_mode(Mode.NORMAL)
        return True

    # ── Commands issued by the session ────────────────────────────────────────

    def select_room(self, room_id: str) -> bool:
        if room_id == self.registry.focused_id:
            return False
        self._cancel_external()
        if not self.registry.focus(room_id):
            return False
        self.results = []
        return True

    def room_changed(self) -> None:
        """The focused room went away or changed underneath us."""
        self._cancel_external()
        if self.mode in (Mode.SEARCH, Mode.SEARCH_RESULTS, Mode.REACT, Mode.COMPOSE, Mode.UPLOAD):
            self._set_mode(Mode.NORMAL)

    def refresh_search(self) -> None:
        room = self.room
        self.results = self.search_engine.search(room, self.query) if room else []
        self.result_index = min(self.result_index, max(0, len(self.results) - 1))

    def start_external(self, action: Action, mode: Mode) -> None:
        self._resume_mode = self.mode
        self.outbox.append(action)
        self._set_mode(mode)

    def compose_finished(self, done: ComposeFinished) -> None:
        if self.mode is not Mode.COMPOSE:
            return
        self.external = None
        self._set_mode(self._resume_mode)
        if done.text is None:
            self.notice = "Ignoring blank message."
        elif done.edit_of:
            self.outbox.append(SendEdit(done.room_id, done.edit_of, done.text))
        else:
            self.outbox.append(SendText(done.room_id, done.text))

    def compose_failed(self, error: str) -> None:
        if self.mode is not Mode.COMPOSE:
            return
        self.external = None
        self._set_mode(self._resume_mode)
        self.notice = f"Couldn't read from editor: {error}"

    def files_picked(self, picked: FilesPicked) -> None:
        if self.mode is not Mode.UPLOAD:
            return
        self.external = None
        self._set_mode(self._resume_mode)
        if not picked.paths:
            self.notice = "Upload cancelled."
            return
        self.outbox.append(UploadMedia(picked.room_id, picked.paths))
        count = len(picked.paths)
        self.notice = f"Uploading {count} file{'s' if count != 1 else ''}."

    def pick_failed(self, error: str) -> None:
        if self.mode is not Mode.UPLOAD:
            return
        self.external = None
        self._set_mode(self._resume_mode)
        self.notice = f"Couldn't run the file picker: {error}"

    def verification_requested(self, notice: VerificationNotice) -> None:
        if self.mode is Mode.NORMAL:
            self.verification = notice
            self._set_mode(Mode.CONFIRM_VERIFICATION)
        else:
            self._parked = notice

    def verification_done(self, done: VerificationDone) -> None:
        if self._parked and self._parked.transaction_id == done.transaction_id:
            self._parked = None
        if self.verification and self.verification.transaction_id == done.transaction_id:
            self.verification = None
            if self.mode is Mode.CONFIRM_VERIFICATION:
                self._set_mode(Mode.NORMAL)
        self.notice = "Session verified." if done.verified else "Verification cancelled."

    def recovery_required(self, reason: str) -> None:
        self.notice = reason or "Enter your recovery passphrase (p)."
        if self.mode is Mode.NORMAL:
            self.passphrase = ""
            self._set_mode(Mode.VERIFY_PASSPHRASE)

    # ── Internals ─────────────────────────────────────────────────────────────

    def _set_mode(self, mode: Mode) -> None:
        if self.mode in _EXTERNAL and mode is not self.mode:
            self._cancel_external()
        if mode is not Mode.SEARCH and mode is not Mode.SEARCH_RESULTS:
            self.results = []
        if mode is Mode.NORMAL and self._parked is not None:
            self.verification, self._parked = self._parked, None
            mode = Mode.CONFIRM_VERIFICATION
        if mode is not self.mode:
            logger.debug("mode %s -> %s", self.mode.value, mode.value)
        self.mode = mode

    def _cancel_external(self) -> None:
        if self.external is not None and not self.external.done():
            logger.info("cancelling pending %s", self.mode.value)
            self.external.cancel()
        self.external = None

    def _jump(self, room: Room, match: SearchMatch) -> None:
        try:
            room.timeline.jump_to(match.event_id)
        except EventNotFound:
            room.timeline.select_nearest(match.timestamp)
            self.notice = "That message is no longer cached; showing the nearest one."

    def _edit_selected(self, room: Room) -> bool:
        message = room.timeline.selected_message
        if message is None:
            return False
        if message.sender != self.registry.own_user or message.is_media:
            self.notice = "Only your own text messages can be edited."
            return True
        self.start_external(StartCompose(room.room_id, message.body, message.event_id), Mode.COMPOSE)
        return True

    def _react_to_selected(self, room: Room) -> bool:
        message = room.timeline.selected_message
        if message is None:
            return False
        mine = message.reaction_keys_by(self.registry.own_user)
        self.react_target = message.event_id
        self.react_options = mine + [r for r in self.palette if r not in mine]
        self.react_index = 0
        self._set_mode(Mode.REACT)
        return True

    def _send_reaction(self) -> None:
        room = self.room
        if room is None or self.react_target is None or not self.react_options:
            return
        key = self.react_options[min(self.react_index, len(self.react_options) - 1)]
        if self.react_target not in room.store:
            self.notice = "That message is no longer cached."
            return
        existing = room.store.reaction_event_id(self.react_target, self.registry.own_user, key)
        if existing:
            self.outbox.append(Redact(room.room_id, existing))
        else:
            self.outbox.append(SendReaction(room.room_id, self.react_target, key))

    def _answer_verification(self, matches: bool) -> None:
        if self.verification is None:
            return
        self.outbox.append(ConfirmVerification(self.verification.transaction_id, matches))
        self.verification = None
