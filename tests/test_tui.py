"""Tests for the Textual screen, driven headless through ``App.run_test``."""
import asyncio

import pytest
from textual.widgets import Static

from matui.config import Settings
from matui.dispatcher import Mode
from matui.notices import RoomNotice, TimelineNotice
from matui.tui import MatuiApp
from matui.tui.chat_screen import ChatScreen

from tests.factories import ALICE, BOB, ROOM, text


class FakeClient:
    user_id = ALICE

    def __init__(self):
        self.queue = asyncio.Queue()
        self.calls = []
        self.stopped = False

    async def start(self):
        pass

    async def events(self):
        while True:
            yield await self.queue.get()

    async def stop(self):
        self.stopped = True

    async def send_text(self, room_id, body):
        self.calls.append(("text", room_id, body))

    async def send_edit(self, room_id, event_id, body):
        self.calls.append(("edit", room_id, event_id, body))

    async def send_reaction(self, room_id, event_id, key):
        self.calls.append(("react", room_id, event_id, key))

    async def redact(self, room_id, event_id, reason=""):
        self.calls.append(("redact", room_id, event_id))

    async def upload(self, room_id, path):
        self.calls.append(("upload", room_id, path))

    async def recover(self, passphrase):
        self.calls.append(("recover",))

    async def confirm_verification(self, transaction_id, matches):
        self.calls.append(("verify", transaction_id, matches))

    async def set_focus(self, focused):
        self.calls.append(("focus", focused))


def shown(screen, widget_id):
    return str(screen.query_one(widget_id, Static).render())


@pytest.fixture
def app(tmp_path):
    return MatuiApp(FakeClient(), Settings(), config_path=tmp_path / "config.toml")


class TestChatScreen:
    @pytest.mark.asyncio
    async def test_mounts_with_empty_panels(self, app):
        async with app.run_test() as pilot:
            await pilot.pause()
            screen = app.screen
            assert isinstance(screen, ChatScreen)
            assert "Press ? for help." in shown(screen, "#status")
            assert "no rooms yet" in shown(screen, "#room-list")
            assert not screen.query_one("#overlay", Static).display

    @pytest.mark.asyncio
    async def test_help_search_and_escape(self, app):
        async with app.run_test() as pilot:
            await pilot.pause()
            screen = app.screen
            overlay = screen.query_one("#overlay", Static)

            await pilot.press("?")
            assert app.session.mode is Mode.HELP
            assert overlay.display
            assert "Keys" in shown(screen, "#overlay")
            assert "help" in shown(screen, "#status")

            await pilot.press("escape")
            assert app.session.mode is Mode.NORMAL
            assert not overlay.display

            await pilot.press("/", "f", "o", "o")
            assert app.session.mode is Mode.SEARCH
            assert app.session.dispatcher.query == "foo"
            assert "Search" in shown(screen, "#overlay")
            assert "search" in shown(screen, "#status")

            await pilot.press("escape")
            assert app.session.mode is Mode.NORMAL
            assert not overlay.display

    @pytest.mark.asyncio
    async def test_notifications_reach_the_panels(self, app):
        async with app.run_test() as pilot:
            await app.client.queue.put(RoomNotice(ROOM, "Lobby"))
            await app.client.queue.put(TimelineNotice(text("hello from bob", sender=BOB)))
            await pilot.pause(0.3)
            screen = app.screen
            assert "Lobby" in shown(screen, "#room-list")
            assert "hello from bob" in shown(screen, "#timeline")

    @pytest.mark.asyncio
    async def test_editor_without_terminal_returns_to_normal(self, app):
        async with app.run_test() as pilot:
            await app.client.queue.put(TimelineNotice(text("hi")))
            await pilot.pause(0.3)
            await pilot.press("i")
            await pilot.pause(0.3)
            assert app.session.mode is Mode.NORMAL
            assert "editor" in app.session.notice
            assert app.client.calls == []

    @pytest.mark.asyncio
    async def test_picker_without_terminal_returns_to_normal(self, app):
        async with app.run_test() as pilot:
            await app.client.queue.put(TimelineNotice(text("hi")))
            await pilot.pause(0.3)
            await pilot.press("u")
            await pilot.pause(0.3)
            assert app.session.mode is Mode.NORMAL
            assert "file picker" in app.session.notice
            assert not [c for c in app.client.calls if c[0] == "upload"]
