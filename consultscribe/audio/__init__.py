"""Audio capture, device management and playback."""

from .capture import AudioCapture, CaptureState
from .buffer import ChunkBuffer
from .devices import AudioDeviceManager
from .player import AudioPlayer, PyAudioPlayer

__all__ = [
    'AudioCapture',
    'CaptureState',
    'ChunkBuffer',
    'AudioDeviceManager',
    'AudioPlayer',
    'PyAudioPlayer',
]
