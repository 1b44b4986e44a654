"""matui TUI package.

Public surface: ``MatuiApp``.
"""
from .app import MatuiApp

__all__ = ["MatuiApp"]
