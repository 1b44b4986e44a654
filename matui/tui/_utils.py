"""Shared helpers: sender colors, inline-Markdown renderer, mentions, message rows."""
from __future__ import annotations

import re
import time
import zlib
from typing import List, Tuple

from rich.markup import escape as markup_escape

from matui.models import Message, pretty_senders
from matui.rooms import localpart


# ---------------------------------------------------------------------------
# Per-sender color palette
# ---------------------------------------------------------------------------

_SENDER_COLORS = [
    "cyan", "yellow", "magenta", "bright_cyan",
    "bright_yellow", "bright_magenta", "orange1", "hot_pink",
    "chartreuse3", "cornflower_blue", "salmon1", "sky_blue2",
]


def _sender_color(user_id: str) -> str:
    """Return a Rich color name for *user_id*, stable across restarts."""
    return _SENDER_COLORS[zlib.crc32(user_id.encode()) % len(_SENDER_COLORS)]


# ---------------------------------------------------------------------------
# Inline Markdown → Rich markup renderer
# ---------------------------------------------------------------------------

def _render_text(text: str) -> str:
    """Escape Rich markup in *text*, then convert common inline Markdown.

    Supported: ``**bold**``  ``*italic*``  ``_italic_``  `` `code` ``  ``~~strike~~``
    """
    out = markup_escape(text)

    # Code spans first; their content must not be altered by later rules.
    out = re.sub(
        r"`([^`\n]+)`",
        r"[bold bright_black on grey23] \1 [/bold bright_black on grey23]",
        out,
    )
    out = re.sub(r"\*\*(.+?)\*\*", r"[bold]\1[/bold]", out)
    out = re.sub(r"\*([^*\n]+)\*", r"[italic]\1[/italic]", out)
    # word-boundary guard keeps snake_case intact
    out = re.sub(r"(?<!\w)_([^_\n]+)_(?!\w)", r"[italic]\1[/italic]", out)
    out = re.sub(r"~~(.+?)~~", r"[strike]\1[/strike]", out)
    return out


# ---------------------------------------------------------------------------
# Mentions
# ---------------------------------------------------------------------------

_MENTION_RE = re.compile(r"(?<![\w@])@([\w.\-=/]+)(?::[\w.\-]+)?")


def _render_text_with_mentions(text: str, own_user: str) -> Tuple[str, bool]:
    """Render *text* as Rich markup and detect whether it mentions *own_user*.

    ``@name`` tokens are highlighted; ones naming the local user are shown in
    reverse video.
    """
    rendered = _render_text(text)
    me = localpart(own_user).lower()
    mentioned = False

    def _replace_mention(m: re.Match) -> str:
        nonlocal mentioned
        token = m.group(0)
        if me and m.group(1).lower() == me:
            mentioned = True
            return f"[bold reverse yellow]{token}[/bold reverse yellow]"
        return f"[bold yellow]{token}[/bold yellow]"

    rendered = _MENTION_RE.sub(_replace_mention, rendered)
    return rendered, mentioned


def highlight_spans(text: str, spans: Tuple[Tuple[int, int], ...], style: str = "black on yellow") -> str:
    """Escape *text* and wrap each ``(start, end)`` span in *style*."""
    out: List[str] = []
    pos = 0
    for start, end in spans:
        if start < pos:
            continue
        out.append(markup_escape(text[pos:start]))
        out.append(f"[{style}]{markup_escape(text[start:end])}[/{style}]")
        pos = end
    out.append(markup_escape(text[pos:]))
    return "".join(out)


# ---------------------------------------------------------------------------
# Timeline rows
# ---------------------------------------------------------------------------

def format_time(timestamp_ms: int) -> str:
    return time.strftime("%H:%M", time.localtime(timestamp_ms / 1000))


def format_reactions(message: Message) -> str:
    parts = []
    for key, senders in message.reactions.items():
        names = pretty_senders([localpart(s) for s in senders])
        parts.append(f"{markup_escape(key)} {markup_escape(names)}")
    return "   ".join(parts)


def format_message(message: Message, own_user: str, selected: bool = False) -> str:
    ts = format_time(message.timestamp)
    author = markup_escape(localpart(message.sender) or message.sender)
    if message.is_media:
        body = f"[italic]\\[{markup_escape(message.body)}][/italic]"
        mentioned = False
    else:
        body, mentioned = _render_text_with_mentions(message.body, own_user)
    if message.edited:
        body += " [dim](edited)[/dim]"
    color = "green" if message.sender == own_user else _sender_color(message.sender)
    line = f"[dim]{ts}[/dim] [bold {color}]{author}[/bold {color}]: {body}"
    reactions = format_reactions(message)
    if reactions:
        line += f"\n      [dim]{reactions}[/dim]"
    if selected:
        return f"[reverse]{line}[/reverse]"
    if mentioned:
        return f"[on navy_blue]{line}[/on navy_blue]"
    return line
