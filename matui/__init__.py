"""matui: a terminal Matrix chat client."""

__version__ = "0.1.0"
