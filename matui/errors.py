from __future__ import annotations


class MatuiError(Exception):
    """Base class for recoverable matui errors."""


class EventNotFound(MatuiError):
    """A back-reference points at an event that is no longer cached."""

    def __init__(self, event_id: str) -> None:
        super().__init__(f"event {event_id} is not cached")
        self.event_id = event_id


class EditorError(MatuiError):
    """The external editor could not be run or exited abnormally."""


class ConfigError(MatuiError):
    """The settings file is missing, unreadable or invalid."""


class PickerError(MatuiError):
    """The external file picker could not be run."""
