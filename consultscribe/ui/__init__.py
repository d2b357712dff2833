"""Terminal user interface."""

from .review_console import ReviewConsole

__all__ = ["ReviewConsole"]
