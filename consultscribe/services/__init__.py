"""Services layer for ConsultScribe recording logic."""

from .background import BackgroundWorker
from .context import get_recording_manager, init_recording_manager
from .publisher import RecordingPublisher
from .recording_manager import RecordingManager
from .ticker import ElapsedTicker

__all__ = [
    "BackgroundWorker",
    "ElapsedTicker",
    "RecordingManager",
    "RecordingPublisher",
    "get_recording_manager",
    "init_recording_manager",
]
