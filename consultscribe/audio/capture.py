"""Microphone capture with pause/resume and fixed-interval chunk collection."""

import pyaudio
import time
import logging
import threading
from enum import Enum
from typing import Optional, Callable
from datetime import datetime
import numpy as np

from ..models.audio import AudioStats, AudioEvent
from ..exceptions import (
    DeviceError,
    DeviceNotFoundError,
    DeviceOverconstrainedError,
    DeviceUnavailableError,
)

logger = logging.getLogger(__name__)


class CaptureState(Enum):
    INACTIVE = "inactive"
    RECORDING = "recording"
    PAUSED = "paused"


class AudioCapture:
    """Captures microphone audio and emits one AudioEvent per timeslice.

    The PyAudio stream runs in callback mode, so pausing simply stops the
    stream and resuming restarts it. Audio captured before a pause stays in
    the pending slice and is emitted with later audio.
    """

    def __init__(
        self,
        callback: Callable[[AudioEvent], None],
        sample_rate: int = 16000,
        channels: int = 1,
        frames_per_buffer: int = 1024,
        timeslice_seconds: float = 1.0,
        device_index: Optional[int] = None,
        echo_cancellation: bool = True,
        noise_suppression: bool = True,
        format: int = pyaudio.paInt16,
    ):
        """Initialize audio capture with specified parameters.

        Args:
            callback: Receives every collected AudioEvent
            sample_rate: Audio sample rate (16kHz for Whisper compatibility)
            channels: Number of audio channels (1 for mono)
            frames_per_buffer: Frames delivered per PortAudio callback
            timeslice_seconds: How much audio to collect before emitting a chunk
            device_index: PortAudio input device, None for the default device
            echo_cancellation: Requested from the host, applied where supported
            noise_suppression: Requested from the host, applied where supported
            format: Audio format (16-bit signed int)
        """
        self.audio_event_callback = callback
        self.sample_rate = sample_rate
        self.channels = channels
        self.frames_per_buffer = frames_per_buffer
        self.timeslice_seconds = timeslice_seconds
        self.device_index = device_index
        self.echo_cancellation = echo_cancellation
        self.noise_suppression = noise_suppression
        self.format = format

        self.bytes_per_timeslice = int(sample_rate * channels * 2 * timeslice_seconds)

        self.state = CaptureState.INACTIVE
        self._lock = threading.Lock()
        self._pending = bytearray()

        # Statistics tracking
        self.start_time: Optional[datetime] = None
        self.total_chunks = 0
        self.peak_level = 0.0

        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream = None

    @property
    def is_active(self) -> bool:
        return self.state is not CaptureState.INACTIVE

    def open(self) -> None:
        """Acquire the input device and start capturing.

        Raises:
            DeviceError: if the device cannot be acquired; nothing is retained
        """
        if self.state is not CaptureState.INACTIVE:
            logger.warning("Capture already open")
            return

        logger.info(f"Opening audio input: {self.sample_rate}Hz, {self.channels} channel(s), "
                    f"device={self.device_index if self.device_index is not None else 'default'}")
        logger.debug(f"Requested processing: echo_cancellation={self.echo_cancellation}, "
                     f"noise_suppression={self.noise_suppression}")

        try:
            self.pyaudio_instance = pyaudio.PyAudio()
            self._check_input_device()
            self.stream = self.pyaudio_instance.open(
                format=self.format,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                input_device_index=self.device_index,
                frames_per_buffer=self.frames_per_buffer,
                stream_callback=self._on_audio,
            )
        except DeviceError:
            self._terminate()
            raise
        except OSError as e:
            self._terminate()
            raise self._map_device_error(e) from e

        with self._lock:
            self._pending.clear()
            self.total_chunks = 0
            self.peak_level = 0.0
            self.start_time = datetime.now()
            self.state = CaptureState.RECORDING

        logger.info("Audio capture started")

    def _check_input_device(self) -> None:
        if self.pyaudio_instance.get_device_count() == 0:
            raise DeviceNotFoundError()

        if self.device_index is None:
            try:
                self.pyaudio_instance.get_default_input_device_info()
            except OSError as e:
                raise DeviceNotFoundError() from e
            return

        try:
            info = self.pyaudio_instance.get_device_info_by_index(self.device_index)
        except (OSError, ValueError) as e:
            raise DeviceOverconstrainedError() from e

        if int(info.get('maxInputChannels', 0)) < self.channels:
            raise DeviceOverconstrainedError()

    def _map_device_error(self, error: OSError) -> DeviceError:
        code = error.errno if isinstance(error.errno, int) else (error.args[0] if error.args else None)
        logger.error(f"Failed to open audio input (code={code}): {error}")

        if code in (pyaudio.paInvalidSampleRate, pyaudio.paInvalidChannelCount):
            return DeviceOverconstrainedError()
        if code == pyaudio.paInvalidDevice:
            if self.device_index is not None:
                return DeviceOverconstrainedError()
            return DeviceNotFoundError()
        if code == pyaudio.paDeviceUnavailable:
            return DeviceUnavailableError()
        return DeviceError()

    def _on_audio(self, in_data, frame_count, time_info, status_flags):
        """PortAudio callback; runs on the PortAudio thread."""
        emit = None
        with self._lock:
            if self.state is CaptureState.RECORDING and in_data:
                self._pending.extend(in_data)
                samples = np.frombuffer(in_data, dtype=np.int16)
                if samples.size:
                    self.peak_level = float(np.abs(samples.astype(np.int32)).max()) / 32768.0
                if len(self._pending) >= self.bytes_per_timeslice:
                    emit = self._take_pending()

        if emit:
            self._publish(emit, final=False)
        return (None, pyaudio.paContinue)

    def _take_pending(self) -> bytes:
        data = bytes(self._pending)
        self._pending.clear()
        self.total_chunks += 1
        return data

    def _publish(self, audio_chunk: bytes, final: bool) -> None:
        audio_event = AudioEvent(
            chunk_id=f"chunk_{self.total_chunks}",
            audio_data=audio_chunk,
            timestamp=time.time(),
            sequence_number=self.total_chunks,
            sample_rate=self.sample_rate,
            channels=self.channels,
            final=final,
        )
        self.audio_event_callback(audio_event)

    def pause(self) -> bool:
        """Pause capture. Only valid while recording."""
        with self._lock:
            if self.state is not CaptureState.RECORDING:
                return False
            self.state = CaptureState.PAUSED

        try:
            self.stream.stop_stream()
        except OSError as e:
            # Chunks are dropped while paused even if the stream keeps running
            logger.warning(f"Failed to pause audio stream: {e}")
        logger.info("Audio capture paused")
        return True

    def resume(self) -> bool:
        """Resume capture. Only valid while paused."""
        with self._lock:
            if self.state is not CaptureState.PAUSED:
                return False

        try:
            self.stream.start_stream()
        except OSError as e:
            logger.error(f"Failed to resume audio stream: {e}")
            return False

        with self._lock:
            self.state = CaptureState.RECORDING
        logger.info("Audio capture resumed")
        return True

    def stop(self, discard: bool = False) -> None:
        """Stop capturing and release the device.

        Any audio collected since the last emitted chunk is flushed as a
        final event unless discard is set.
        """
        with self._lock:
            if self.state is CaptureState.INACTIVE:
                return
            self.state = CaptureState.INACTIVE

        logger.info("Stopping audio capture")
        if self.stream is not None:
            for release in (self.stream.stop_stream, self.stream.close):
                try:
                    release()
                except OSError as e:
                    logger.warning(f"Error releasing audio stream: {e}")
        self.stream = None
        self._terminate()

        with self._lock:
            remaining = self._take_pending() if self._pending and not discard else None
            self._pending.clear()

        if remaining:
            self._publish(remaining, final=True)
        logger.info(f"Audio capture stopped. Total chunks: {self.total_chunks}")

    def _terminate(self) -> None:
        if self.pyaudio_instance is None:
            return
        try:
            self.pyaudio_instance.terminate()
        except OSError as e:
            logger.warning(f"Error terminating PortAudio: {e}")
        finally:
            self.pyaudio_instance = None

    def get_recording_stats(self) -> AudioStats:
        """Get current recording statistics."""
        duration = 0.0
        if self.start_time:
            duration = (datetime.now() - self.start_time).total_seconds()

        return AudioStats(
            is_recording=self.state is CaptureState.RECORDING,
            is_paused=self.state is CaptureState.PAUSED,
            duration_seconds=duration,
            sample_rate=self.sample_rate,
            total_chunks=self.total_chunks,
            peak_level=self.peak_level,
        )

    def __del__(self):
        """Ensure the device is released on deletion."""
        if getattr(self, "state", CaptureState.INACTIVE) is not CaptureState.INACTIVE:
            self.stop(discard=True)
