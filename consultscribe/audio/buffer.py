"""Chunk buffer that turns captured audio slices into one audio artifact."""

import io
import logging
import threading
import wave
from typing import List

from ..models.recording import AudioBlob

logger = logging.getLogger(__name__)


class ChunkBuffer:
    """Thread-safe collection of captured audio chunks for a single session."""

    def __init__(self, sample_rate: int = 16000, channels: int = 1):
        """Initialize chunk buffer.

        Args:
            sample_rate: Audio sample rate
            channels: Number of audio channels
        """
        self.sample_rate = sample_rate
        self.channels = channels
        self.bytes_per_sample = 2  # 16-bit audio
        self.bytes_per_second = sample_rate * channels * self.bytes_per_sample

        self.chunks: List[bytes] = []
        self.lock = threading.Lock()
        self.total_bytes = 0

    def add_chunk(self, audio_data: bytes) -> None:
        """Append a captured chunk."""
        if not audio_data:
            return

        with self.lock:
            self.chunks.append(audio_data)
            self.total_bytes += len(audio_data)
            logger.debug(f"Added audio chunk: {len(audio_data)} bytes, "
                         f"buffer now has {len(self.chunks)} chunks ({self.total_bytes} bytes)")

    @property
    def duration_seconds(self) -> float:
        return self.total_bytes / self.bytes_per_second

    def __len__(self) -> int:
        return len(self.chunks)

    def finalize(self) -> AudioBlob:
        """Combine every chunk into a single WAV artifact."""
        with self.lock:
            pcm = b''.join(self.chunks)

        output = io.BytesIO()
        with wave.open(output, 'wb') as wf:
            wf.setnchannels(self.channels)
            wf.setsampwidth(self.bytes_per_sample)
            wf.setframerate(self.sample_rate)
            wf.writeframes(pcm)

        blob = AudioBlob(
            data=output.getvalue(),
            sample_rate=self.sample_rate,
            channels=self.channels,
            duration_seconds=len(pcm) / self.bytes_per_second,
        )
        logger.info(f"Finalized audio artifact: {blob.duration_seconds:.1f}s, {blob.size_bytes} bytes")
        return blob

    def clear(self) -> None:
        """Discard all chunks."""
        with self.lock:
            self.chunks.clear()
            self.total_bytes = 0
            logger.debug("Audio buffer cleared")
