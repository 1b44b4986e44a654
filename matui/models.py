from __future__ import annotations

import dataclasses
import time
from typing import Dict, List, Optional, Union


def now_ms() -> int:
    return int(time.time() * 1000)


# ── Event content variants ───────────────────────────────────────────────────


@dataclasses.dataclass(frozen=True)
class TextContent:
    body: str
    formatted: str = ""  # markdown / html source when the sender supplied one


@dataclasses.dataclass(frozen=True)
class MediaContent:
    body: str          # file name or caption
    url: str = ""      # mxc:// reference, resolved by the protocol client
    mimetype: str = ""
    size: int = 0


@dataclasses.dataclass(frozen=True)
class ReactionContent:
    target: str
    key: str


@dataclasses.dataclass(frozen=True)
class RedactionContent:
    target: str
    reason: str = ""


@dataclasses.dataclass(frozen=True)
class EditContent:
    target: str
    body: str


@dataclasses.dataclass(frozen=True)
class MembershipContent:
    membership: str  # join | leave | invite | ban
    display_name: str = ""


Content = Union[
    TextContent,
    MediaContent,
    ReactionContent,
    RedactionContent,
    EditContent,
    MembershipContent,
]

FOLD_TYPES = (ReactionContent, RedactionContent, EditContent)


@dataclasses.dataclass(frozen=True)
class Event:
    """One protocol event as delivered by the sync layer. Never mutated."""
    event_id: str
    room_id: str
    sender: str
    timestamp: int  # milliseconds since the epoch
    content: Content

    @property
    def is_fold(self) -> bool:
        return isinstance(self.content, FOLD_TYPES)

    @property
    def target(self) -> Optional[str]:
        return getattr(self.content, "target", None)


# ── Folded timeline entries ──────────────────────────────────────────────────


_MEMBERSHIP_VERBS = {
    "join": "joined the room",
    "leave": "left the room",
    "invite": "was invited",
    "ban": "was banned",
}


@dataclasses.dataclass
class Message:
    """A line in the timeline: the original event with edits and reactions
    folded in. Owned by exactly one EventStore."""
    event: Event
    body: str
    history: List[str] = dataclasses.field(default_factory=list)
    applied_edits: List[str] = dataclasses.field(default_factory=list)
    # reaction key -> sender -> reaction event id, in first-seen order
    reactions: Dict[str, Dict[str, str]] = dataclasses.field(default_factory=dict)

    @staticmethod
    def from_event(event: Event) -> Message:
        return Message(event=event, body=display_text(event))

    @property
    def event_id(self) -> str:
        return self.event.event_id

    @property
    def sender(self) -> str:
        return self.event.sender

    @property
    def timestamp(self) -> int:
        return self.event.timestamp

    @property
    def is_media(self) -> bool:
        return isinstance(self.event.content, MediaContent)

    @property
    def edited(self) -> bool:
        return bool(self.history)

    def edit(self, edit_id: str, body: str) -> bool:
        if edit_id in self.applied_edits:
            return False
        self.applied_edits.append(edit_id)
        self.history.append(self.body)
        self.body = body
        return True

    def toggle_reaction(self, sender: str, key: str, reaction_id: str) -> bool:
        """Add the reaction, or remove it if *sender* already reacted with *key*.

        Returns True when the reaction is present afterwards.
        """
        senders = self.reactions.setdefault(key, {})
        if sender in senders:
            del senders[sender]
            if not senders:
                del self.reactions[key]
            return False
        senders[sender] = reaction_id
        return True

    def remove_reaction_event(self, reaction_id: str) -> bool:
        for key, senders in list(self.reactions.items()):
            for sender, rid in list(senders.items()):
                if rid == reaction_id:
                    del senders[sender]
                    if not senders:
                        del self.reactions[key]
                    return True
        return False

    def reaction_keys_by(self, sender: str) -> List[str]:
        return [key for key, senders in self.reactions.items() if sender in senders]


def display_text(event: Event) -> str:
    c = event.content
    if isinstance(c, (TextContent, MediaContent)):
        return c.body
    if isinstance(c, EditContent):
        return c.body
    if isinstance(c, MembershipContent):
        who = c.display_name or event.sender
        return f"{who} {_MEMBERSHIP_VERBS.get(c.membership, c.membership)}"
    if isinstance(c, ReactionContent):
        return c.key
    return ""


def pretty_senders(senders: List[str]) -> str:
    """``["a", "b", "c"]`` -> ``"a, b and c"``; first word of each name only."""
    names = [s.split()[0] if s.split() else s for s in senders]
    if not names:
        return ""
    if len(names) == 1:
        return names[0]
    return f"{', '.join(names[:-1])} and {names[-1]}"
