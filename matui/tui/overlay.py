"""Markup for the panel shown above the status line in every non-normal mode."""
from __future__ import annotations

from typing import List, Optional

from rich.markup import escape as markup_escape

from matui.dispatcher import Mode
from matui.session import Session

from ._utils import format_time, highlight_spans

HELP_LINES = [
    ("space", "switch rooms"),
    ("j / k", "select next / previous message"),
    ("pgup / pgdn", "page through the timeline"),
    ("g / G", "jump to oldest / latest"),
    ("i", "write a new message"),
    ("u", "upload files to this room"),
    ("c", "edit your selected message"),
    ("r", "react to the selected message"),
    ("m", "mute or unmute this room"),
    ("/", "search this room"),
    ("p", "enter your recovery passphrase"),
    ("?", "show this help"),
    ("esc", "back to the timeline"),
    ("ctrl+q", "quit"),
]

MAX_LIST_ROWS = 12


def _window(index: int, total: int, rows: int = MAX_LIST_ROWS) -> range:
    start = max(0, min(index - rows // 2, total - rows))
    return range(start, min(total, start + rows))


def _render_help() -> str:
    lines = ["[bold]Keys[/bold]"]
    lines += [f"  [bold cyan]{k:<12}[/bold cyan] {desc}" for k, desc in HELP_LINES]
    lines.append("[dim]any key to close[/dim]")
    return "\n".join(lines)


def _render_switcher(session: Session) -> str:
    d = session.dispatcher
    rooms = session.registry.filter(d.switcher_filter)
    lines = [f"[bold]Rooms[/bold]  [dim]filter:[/dim] {markup_escape(d.switcher_filter)}▏"]
    if not rooms:
        lines.append("  [dim]no matching rooms[/dim]")
    for i in _window(d.switcher_index, len(rooms)):
        room = rooms[i]
        label = markup_escape(room.display_name)
        if room.muted:
            label = f"[dim]{label} (muted)[/dim]"
        elif room.highlights:
            label = f"[bold red]{label} ({room.highlights}!)[/bold red]"
        elif room.unread:
            label = f"[bold]{label} ({room.unread})[/bold]"
        marker = "▶" if i == d.switcher_index else " "
        lines.append(f" {marker} {label}")
    return "\n".join(lines)


def _render_search(session: Session) -> str:
    d = session.dispatcher
    room = session.registry.focused
    matches = session.search.visible(room, d.results) if room else []
    active = d.mode is Mode.SEARCH_RESULTS
    lines = [f"[bold]Search[/bold]  /{markup_escape(d.query)}{'' if active else '▏'}"]
    if d.query and not matches:
        lines.append("  [dim]no matches[/dim]")
    for i in _window(d.result_index, len(matches)):
        match = matches[i]
        message = room.store.get(match.event_id)
        if message is None:
            continue
        marker = "▶" if active and i == d.result_index else " "
        body = highlight_spans(message.body.replace("\n", " "), match.spans)
        lines.append(f" {marker} [dim]{format_time(match.timestamp)}[/dim] {body}")
    if matches:
        hint = "j/k select, enter jump, / edit query" if active else "enter to browse results"
        lines.append(f"[dim]{len(matches)} match{'es' if len(matches) != 1 else ''}; {hint}[/dim]")
    return "\n".join(lines)


def _render_react(session: Session) -> str:
    d = session.dispatcher
    room = session.registry.focused
    mine = set()
    if room is not None and d.react_target:
        message = room.store.get(d.react_target)
        if message is not None:
            mine = set(message.reaction_keys_by(session.registry.own_user))
    cells: List[str] = []
    for i, key in enumerate(d.react_options):
        cell = markup_escape(key)
        if key in mine:
            cell = f"{cell}✓"
        cells.append(f"[reverse] {cell} [/reverse]" if i == d.react_index else f" {cell} ")
    return "[bold]React[/bold]  " + " ".join(cells) + "\n[dim]j/k choose, enter toggle[/dim]"


def _render_passphrase(session: Session) -> str:
    masked = "•" * len(session.dispatcher.passphrase)
    return f"[bold]Recovery passphrase[/bold]\n  {masked}▏\n[dim]enter to unlock, esc to cancel[/dim]"


def _render_verification(session: Session) -> str:
    v = session.dispatcher.verification
    if v is None:
        return ""
    lines = [f"[bold]Verify session with {markup_escape(v.other_user)}[/bold]", ""]
    lines.append("   ".join(f"{emoji} {markup_escape(desc)}" for emoji, desc in v.emojis))
    lines += ["", "Do these match?  [bold green]y[/bold green]es / [bold red]n[/bold red]o"]
    return "\n".join(lines)


def render_overlay(session: Session) -> Optional[str]:
    """Overlay markup for the current mode, or None when nothing is shown."""
    mode = session.mode
    if mode is Mode.HELP:
        return _render_help()
    if mode is Mode.ROOM_SWITCHER:
        return _render_switcher(session)
    if mode in (Mode.SEARCH, Mode.SEARCH_RESULTS):
        return _render_search(session)
    if mode is Mode.REACT:
        return _render_react(session)
    if mode is Mode.VERIFY_PASSPHRASE:
        return _render_passphrase(session)
    if mode is Mode.CONFIRM_VERIFICATION:
        return _render_verification(session)
    if mode is Mode.COMPOSE:
        return "[dim]Waiting for the editor…[/dim]"
    if mode is Mode.UPLOAD:
        return "[dim]Waiting for the file picker…[/dim]"
    return None
