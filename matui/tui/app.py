"""Top-level Textual application."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from textual.app import App
from textual.binding import Binding

from matui.config import CONFIG_FILE, Settings
from matui.matrix import MatrixClient
from matui.session import Session

from .chat_screen import ChatScreen


class MatuiApp(App):
    """matui terminal UI application."""

    TITLE = "matui"
    BINDINGS = [Binding("ctrl+q", "quit", "Quit", priority=True)]

    def __init__(
        self,
        client: MatrixClient,
        settings: Optional[Settings] = None,
        config_path: Path = CONFIG_FILE,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.client = client
        self.config_path = config_path
        self.session = Session(settings, own_user=client.user_id)

    def on_mount(self) -> None:
        self.push_screen(ChatScreen(self.session, self.client, self.config_path))
