"""Data models for the ConsultScribe application."""

from .audio import AudioStats, AudioEvent, AudioDevice, AudioDeviceState, PermissionStatus
from .transcript import (
    TranscriptWord,
    TranscriptSegment,
    DiarizedTranscript,
    speaker_label,
    raw_speaker_id,
)
from .recording import (
    RecordingStatus,
    RecordingSession,
    RecordingState,
    AudioBlob,
)
from .validation import (
    MedicalCategory,
    HighlightLevel,
    ConfidenceThresholds,
    DEFAULT_THRESHOLDS,
    FlaggedWord,
    ReviewProgress,
    MedicalTermDetection,
    WordCorrection,
    ValidationStatus,
    ValidationState,
    highlight_level,
    term_key,
)

__all__ = [
    "AudioStats",
    "AudioEvent",
    "AudioDevice",
    "AudioDeviceState",
    "PermissionStatus",
    # Transcription service wire models
    "TranscriptWord",
    "TranscriptSegment",
    "DiarizedTranscript",
    "speaker_label",
    "raw_speaker_id",
    # Recording session
    "RecordingStatus",
    "RecordingSession",
    "RecordingState",
    "AudioBlob",
    # Validation
    "MedicalCategory",
    "HighlightLevel",
    "ConfidenceThresholds",
    "DEFAULT_THRESHOLDS",
    "FlaggedWord",
    "ReviewProgress",
    "MedicalTermDetection",
    "WordCorrection",
    "ValidationStatus",
    "ValidationState",
    "highlight_level",
    "term_key",
]
