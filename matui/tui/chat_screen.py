"""Main panel-based chat screen."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import List, Optional

from rich.markup import escape as markup_escape
from textual.app import ComposeResult, SuspendNotSupported
from textual.binding import Binding
from textual.containers import Horizontal
from textual.events import Key, Resize
from textual.screen import Screen
from textual.widgets import Footer, Header, Static

from matui.client import CommandRunner
from matui.config import CONFIG_FILE, DRAIN_INTERVAL_S, ConfigWatcher
from matui.dispatcher import Action, KeyPress, Mode, StartCompose, StartUpload
from matui.editor import edit_text, pick_files
from matui.errors import EditorError, PickerError
from matui.matrix import MatrixClient
from matui.models import Message
from matui.notices import CommandFailed, ComposeFailed, ComposeFinished, FilesPicked, PickFailed
from matui.session import Session

from ._utils import format_message
from .overlay import render_overlay

logger = logging.getLogger("matui.tui")


def _row_lines(message: Message) -> int:
    return 1 + message.body.count("\n") + (1 if message.reactions else 0)


class ChatScreen(Screen):
    """Room list, timeline and status line, all driven by the Session."""

    BINDINGS = [
        Binding("ctrl+q", "app.quit", "Quit", priority=True),
    ]

    DEFAULT_CSS = """
    ChatScreen {
        layout: vertical;
    }
    #chat-body {
        height: 1fr;
    }
    #room-list {
        width: 26;
        border-right: solid $primary-darken-2;
        padding: 0 1;
    }
    #timeline {
        width: 1fr;
        padding: 0 1;
    }
    #overlay {
        height: auto;
        max-height: 16;
        border-top: solid $primary-darken-2;
        padding: 0 1;
        background: $surface;
    }
    #status {
        height: 1;
        padding: 0 1;
        background: $primary-darken-3;
    }
    """

    def __init__(self, session: Session, client: MatrixClient, config_path: Path = CONFIG_FILE, **kwargs) -> None:
        super().__init__(**kwargs)
        self.session = session
        self.client = client
        self.runner = CommandRunner(client, session.bridge.publish)
        self.watcher = ConfigWatcher(session.bridge.publish, config_path)
        self._sync_task: Optional[asyncio.Task] = None
        self._config_task: Optional[asyncio.Task] = None
        self._external_task: Optional[asyncio.Task] = None
        self._away = False

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal(id="chat-body"):
            yield Static("", id="room-list")
            yield Static("", id="timeline")
        yield Static("", id="overlay")
        yield Static("", id="status")
        yield Footer()

    async def on_mount(self) -> None:
        self._sync_task = asyncio.create_task(self._run_sync())
        self._config_task = asyncio.create_task(self.watcher.run())
        self.set_interval(DRAIN_INTERVAL_S, self._pump_channel)
        self.session.notice = "Press ? for help."
        self._redraw_panels()

    async def on_unmount(self) -> None:
        self.watcher.stop()
        self.session.blur_timer.cancel()
        for task in (self._external_task, self._sync_task, self._config_task):
            if task:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        await self.runner.shutdown()
        await self.client.stop()

    # ── Protocol ──────────────────────────────────────────────────────────────

    async def _run_sync(self) -> None:
        try:
            await self.client.start()
            await self.session.bridge.consume(self.client.events())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("sync stopped")
            await self.session.bridge.publish(CommandFailed("Sync", str(e) or type(e).__name__))

    # ── UI cycle ──────────────────────────────────────────────────────────────

    def _pump_channel(self) -> None:
        applied = self.session.pump()
        actions = self.session.take_actions()
        self._run_actions(actions)
        if (applied or actions) and not self._away:
            self._redraw_panels()

    def _run_actions(self, actions: List[Action]) -> None:
        for action in actions:
            if isinstance(action, StartCompose):
                self._start_external(self._run_editor(action))
            elif isinstance(action, StartUpload):
                self._start_external(self._run_picker(action))
            else:
                self.runner.submit(action)

    def _start_external(self, coro) -> None:
        self._external_task = asyncio.create_task(coro)
        self.session.dispatcher.external = self._external_task

    @contextlib.contextmanager
    def _terminal_released(self):
        self._away = True
        try:
            with self.app.suspend():
                yield
        finally:
            self._away = False
            self.refresh()

    async def _run_editor(self, action: StartCompose) -> None:
        publish = self.session.bridge.publish
        clear_vim = self.session.settings.clear_vim
        try:
            with self._terminal_released():
                text = await edit_text(action.existing, clear_vim=clear_vim)
        except (EditorError, SuspendNotSupported) as e:
            await publish(ComposeFailed(str(e) or type(e).__name__))
            return
        await publish(ComposeFinished(action.room_id, text, action.edit_of))

    async def _run_picker(self, action: StartUpload) -> None:
        publish = self.session.bridge.publish
        command = self.session.settings.file_picker
        try:
            with self._terminal_released():
                paths = await pick_files(command)
        except (PickerError, SuspendNotSupported) as e:
            await publish(PickFailed(str(e) or type(e).__name__))
            return
        await publish(FilesPicked(action.room_id, tuple(str(p) for p in paths)))

    # ── Input ─────────────────────────────────────────────────────────────────

    def on_key(self, event: Key) -> None:
        event.stop()
        if self.session.handle_key(KeyPress(event.key, event.character)):
            self._run_actions(self.session.take_actions())
            self._redraw_panels()

    def on_resize(self, event: Resize) -> None:
        self._redraw_panels()

    # ── Rendering ─────────────────────────────────────────────────────────────

    def _redraw_panels(self) -> None:
        session = self.session
        room = session.registry.focused
        own = session.registry.own_user

        rooms: List[str] = []
        for r in session.registry.rooms():
            label = markup_escape(r.display_name)
            if r.room_id == session.registry.focused_id:
                label = f"[reverse]{label}[/reverse]"
            elif r.muted:
                label = f"[dim]{label}[/dim]"
            elif r.highlights:
                label = f"[bold red]{label} ({r.unread})[/bold red]"
            elif r.unread:
                label = f"[bold]{label} ({r.unread})[/bold]"
            rooms.append(label)
        self.query_one("#room-list", Static).update("\n".join(rooms) or "[dim]no rooms yet[/dim]")

        timeline = self.query_one("#timeline", Static)
        if room is None:
            timeline.update("[dim italic]Waiting for rooms…[/dim italic]")
            self.title = "matui"
        else:
            view = room.timeline
            rows = timeline.size.height or view.height
            height = rows
            view.resize(height)
            while height > 1 and sum(_row_lines(m) for m in view.visible()) > rows:
                height -= 1
                view.resize(height)
            lines = [
                format_message(m, own, selected=(view.offset + i == view.selected))
                for i, m in enumerate(view.visible())
            ]
            timeline.update("\n".join(lines) or "[dim italic]No messages yet.[/dim italic]")
            self.title = f"matui  {room.display_name}"

        overlay = self.query_one("#overlay", Static)
        panel = render_overlay(session)
        overlay.display = panel is not None
        overlay.update(panel or "")

        mode = "" if session.mode is Mode.NORMAL else f"[bold]{session.mode.value.replace('_', ' ')}[/bold]  "
        self.query_one("#status", Static).update(mode + markup_escape(session.notice))
