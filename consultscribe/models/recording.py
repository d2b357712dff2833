"""Recording session data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from .transcript import DiarizedTranscript


class RecordingStatus(Enum):
    """Lifecycle status of the single in-flight recording."""
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


# States from which a new recording may be started
STARTABLE_STATUSES = (RecordingStatus.IDLE, RecordingStatus.COMPLETED, RecordingStatus.ERROR)


@dataclass(frozen=True)
class RecordingSession:
    """The consultation a recording belongs to."""
    appointment_id: str
    patient_id: str
    patient_name: str
    started_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class AudioBlob:
    """Finalized audio artifact of one recording (WAV container)."""
    data: bytes
    sample_rate: int
    channels: int
    duration_seconds: float
    mime_type: str = "audio/wav"

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass
class RecordingState:
    """Process-wide recording state. Consumers only ever see copies."""
    status: RecordingStatus = RecordingStatus.IDLE
    session: Optional[RecordingSession] = None
    elapsed_time: int = 0  # seconds, advances only while RECORDING
    audio_blob: Optional[AudioBlob] = None
    transcript: Optional[DiarizedTranscript] = None
    error: Optional[str] = None
    show_stop_modal: bool = False

    @property
    def is_recording_active(self) -> bool:
        return self.status in (RecordingStatus.RECORDING, RecordingStatus.PAUSED)
