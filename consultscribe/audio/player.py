"""Audio playback used while reviewing flagged words."""

import io
import logging
import threading
import wave
from abc import ABC, abstractmethod
from typing import Callable, Optional

import pyaudio

from ..models.recording import AudioBlob

logger = logging.getLogger(__name__)


class AudioPlayer(ABC):
    """Command interface the validator uses to drive audio playback."""

    @abstractmethod
    def seek(self, time_seconds: float) -> None:
        """Move the playback position."""

    @abstractmethod
    def play(self) -> None:
        """Start playing from the current position."""

    @abstractmethod
    def pause(self) -> None:
        """Pause playback, keeping the position."""

    @property
    @abstractmethod
    def current_time(self) -> float:
        """Current playback position in seconds."""

    @property
    @abstractmethod
    def duration(self) -> float:
        """Total audio duration in seconds."""

    def close(self) -> None:
        """Release playback resources."""


class PyAudioPlayer(AudioPlayer):
    """Plays a WAV AudioBlob through a PyAudio output stream."""

    def __init__(self, audio_blob: AudioBlob,
                 pyaudio_factory: Optional[Callable[[], pyaudio.PyAudio]] = None):
        with wave.open(io.BytesIO(audio_blob.data), 'rb') as wf:
            self.channels = wf.getnchannels()
            self.sample_width = wf.getsampwidth()
            self.sample_rate = wf.getframerate()
            self.frames = wf.readframes(wf.getnframes())

        self.frame_size = self.channels * self.sample_width
        self.total_frames = len(self.frames) // self.frame_size if self.frame_size else 0

        self._pyaudio_factory = pyaudio_factory or pyaudio.PyAudio
        self._lock = threading.Lock()
        self._position = 0  # in frames
        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream = None

        logger.debug(f"PyAudioPlayer loaded {self.duration:.1f}s of audio")

    @property
    def current_time(self) -> float:
        with self._lock:
            return self._position / self.sample_rate if self.sample_rate else 0.0

    @property
    def duration(self) -> float:
        return self.total_frames / self.sample_rate if self.sample_rate else 0.0

    def seek(self, time_seconds: float) -> None:
        frame = int(max(0.0, time_seconds) * self.sample_rate)
        with self._lock:
            self._position = min(frame, self.total_frames)

    def _on_playback(self, in_data, frame_count, time_info, status_flags):
        with self._lock:
            start = self._position
            end = min(start + frame_count, self.total_frames)
            self._position = end
            data = self.frames[start * self.frame_size:end * self.frame_size]

        if end >= self.total_frames:
            # Pad the last buffer so PortAudio receives a full block
            data += b'\x00' * ((frame_count - (end - start)) * self.frame_size)
            return (data, pyaudio.paComplete)
        return (data, pyaudio.paContinue)

    def play(self) -> None:
        if self.stream is None:
            self.pyaudio_instance = self._pyaudio_factory()
            self.stream = self.pyaudio_instance.open(
                format=self.pyaudio_instance.get_format_from_width(self.sample_width),
                channels=self.channels,
                rate=self.sample_rate,
                output=True,
                stream_callback=self._on_playback,
            )
            return

        if not self.stream.is_active():
            self.stream.stop_stream()
            self.stream.start_stream()

    def pause(self) -> None:
        if self.stream is not None:
            self.stream.stop_stream()

    def close(self) -> None:
        if self.stream is not None:
            self.stream.stop_stream()
            self.stream.close()
            self.stream = None
        if self.pyaudio_instance is not None:
            self.pyaudio_instance.terminate()
            self.pyaudio_instance = None
