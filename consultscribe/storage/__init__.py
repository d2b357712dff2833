"""Session storage."""

from .file_manager import FileManager, SessionInfo

__all__ = ["FileManager", "SessionInfo"]
