"""ConsultScribe exception hierarchy.

All application-specific exceptions inherit from ConsultScribeError. Device
and transcription errors are turned into recording state by the
RecordingManager; classification errors are absorbed by the validator.
"""

from datetime import datetime
from typing import Optional


class ConsultScribeError(Exception):
    """Base exception for all ConsultScribe errors."""

    def __init__(self, detail: str = "An unexpected error occurred", code: str = "CONSULTSCRIBE_ERROR"):
        self.detail = detail
        self.code = code
        self.timestamp = datetime.now().isoformat()
        super().__init__(detail)


class ConfigurationError(ConsultScribeError):
    """Raised when required configuration (e.g. an API token) is missing."""

    def __init__(self, detail: str = "Invalid configuration"):
        super().__init__(detail=detail, code="CONFIGURATION_ERROR")


class DeviceError(ConsultScribeError):
    """Raised when the microphone cannot be acquired."""

    default_detail = "Could not access the microphone. Check the permissions."

    def __init__(self, detail: Optional[str] = None, code: str = "DEVICE_ERROR"):
        super().__init__(detail=detail or self.default_detail, code=code)


class DeviceNotFoundError(DeviceError):
    """No input device is connected."""

    default_detail = "No microphone was found. Connect one and try again."

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail=detail, code="DEVICE_NOT_FOUND")


class DevicePermissionError(DeviceError):
    """Access to the input device was refused by the host."""

    default_detail = "Microphone permission denied. Enable it in the system settings."

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail=detail, code="DEVICE_PERMISSION_DENIED")


class DeviceUnavailableError(DeviceError):
    """The device exists but is busy or otherwise unusable."""

    default_detail = "The microphone is busy or unavailable. Close other applications using it."

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail=detail, code="DEVICE_UNAVAILABLE")


class DeviceOverconstrainedError(DeviceError):
    """The selected device cannot satisfy the requested constraints."""

    default_detail = "The selected microphone is no longer available. Please select another one."

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail=detail, code="DEVICE_OVERCONSTRAINED")


class TranscriptionError(ConsultScribeError):
    """Raised when the diarized transcription service fails."""

    def __init__(self, detail: str = "Transcription failed"):
        super().__init__(detail=detail, code="TRANSCRIPTION_ERROR")


class ClassificationError(ConsultScribeError):
    """Raised when medical term classification fails."""

    def __init__(self, detail: str = "Medical term detection failed"):
        super().__init__(detail=detail, code="CLASSIFICATION_ERROR")
