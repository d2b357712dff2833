"""Audio-related data models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


@dataclass
class AudioStats:
    """Audio recording statistics."""
    is_recording: bool
    is_paused: bool
    duration_seconds: float
    sample_rate: int
    total_chunks: int
    peak_level: float = 0.0


@dataclass
class AudioEvent:
    """One collected slice of captured audio."""
    chunk_id: str
    audio_data: bytes
    timestamp: float  # Unix timestamp when the slice was emitted
    sequence_number: int
    sample_rate: int = 16000
    channels: int = 1
    final: bool = False  # True for the flush emitted when capture stops


@dataclass(frozen=True)
class AudioDevice:
    """An audio input device (microphone)."""
    device_id: str  # device name, stable across PortAudio re-enumeration
    index: int
    label: str
    host_api: int = 0
    max_input_channels: int = 1


class PermissionStatus(Enum):
    PROMPT = "prompt"
    GRANTED = "granted"
    DENIED = "denied"
    UNKNOWN = "unknown"


@dataclass
class AudioDeviceState:
    """State of audio input device management."""
    devices: List[AudioDevice] = field(default_factory=list)
    selected_device_id: Optional[str] = None
    permission_status: PermissionStatus = PermissionStatus.UNKNOWN
    is_enumerating: bool = False
    error: Optional[str] = None
