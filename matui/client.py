"""Boundary to the protocol client.

The core never talks to the network itself. The dispatcher emits the
commands below; a ``CommandRunner`` executes them against a
``ProtocolClient`` as background tasks and reports failures back through
the UI channel.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Awaitable, Callable, Protocol, Set, Tuple, Union

from matui.notices import CommandFailed

logger = logging.getLogger("matui.client")


@dataclasses.dataclass(frozen=True)
class SendText:
    room_id: str
    body: str


@dataclasses.dataclass(frozen=True)
class SendEdit:
    room_id: str
    event_id: str
    body: str


@dataclasses.dataclass(frozen=True)
class SendReaction:
    room_id: str
    event_id: str
    key: str


@dataclasses.dataclass(frozen=True)
class Redact:
    room_id: str
    event_id: str
    reason: str = ""


@dataclasses.dataclass(frozen=True)
class UploadMedia:
    room_id: str
    paths: Tuple[str, ...]


@dataclasses.dataclass(frozen=True)
class SubmitPassphrase:
    passphrase: str

    def __repr__(self) -> str:
        return "SubmitPassphrase(passphrase=***)"


@dataclasses.dataclass(frozen=True)
class ConfirmVerification:
    transaction_id: str
    matches: bool


@dataclasses.dataclass(frozen=True)
class SetFocus:
    focused: bool


Command = Union[
    SendText, SendEdit, SendReaction, Redact, UploadMedia, SubmitPassphrase, ConfirmVerification, SetFocus,
]


class ProtocolClient(Protocol):
    async def send_text(self, room_id: str, body: str) -> None: ...

    async def send_edit(self, room_id: str, event_id: str, body: str) -> None: ...

    async def send_reaction(self, room_id: str, event_id: str, key: str) -> None: ...

    async def redact(self, room_id: str, event_id: str, reason: str = "") -> None: ...

    async def upload(self, room_id: str, path: str) -> None: ...

    async def recover(self, passphrase: str) -> None: ...

    async def confirm_verification(self, transaction_id: str, matches: bool) -> None: ...

    async def set_focus(self, focused: bool) -> None: ...


class CommandRunner:
    """Fire-and-forget execution of outbound commands."""

    def __init__(self, client: ProtocolClient, publish: Callable[[object], Awaitable[None]]) -> None:
        self.client = client
        self._publish = publish
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, command: Command) -> asyncio.Task:
        task = asyncio.create_task(self._run(command))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, command: Command) -> None:
        try:
            await self._dispatch(command)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("%r failed: %s: %s", command, type(e).__name__, e)
            await self._publish(CommandFailed(type(command).__name__, str(e) or type(e).__name__))

    async def _dispatch(self, command: Command) -> None:
        c = command
        if isinstance(c, SendText):
            await self.client.send_text(c.room_id, c.body)
        elif isinstance(c, SendEdit):
            await self.client.send_edit(c.room_id, c.event_id, c.body)
        elif isinstance(c, SendReaction):
            await self.client.send_reaction(c.room_id, c.event_id, c.key)
        elif isinstance(c, Redact):
            await self.client.redact(c.room_id, c.event_id, c.reason)
        elif isinstance(c, UploadMedia):
            # one at a time; the first failure stops the rest
            for path in c.paths:
                await self.client.upload(c.room_id, path)
        elif isinstance(c, SubmitPassphrase):
            await self.client.recover(c.passphrase)
        elif isinstance(c, ConfirmVerification):
            await self.client.confirm_verification(c.transaction_id, c.matches)
        elif isinstance(c, SetFocus):
            await self.client.set_focus(c.focused)
        else:
            raise TypeError(f"unknown command {c!r}")

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
