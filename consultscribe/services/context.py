"""Process-wide recording manager and factories for the external service clients."""

import atexit
import logging
from typing import Optional

from ..audio.devices import AudioDeviceManager
from ..config import ConsultScribeConfig, get_config
from ..transcription import GeminiMedicalTermClassifier, ReplicateDiarizationBackend
from .recording_manager import RecordingManager

logger = logging.getLogger(__name__)

_recording_manager: Optional[RecordingManager] = None


def build_transcription_backend(config: ConsultScribeConfig) -> ReplicateDiarizationBackend:
    """Create the diarization backend from the ``transcription`` config section.

    Raises:
        ConfigurationError: if the API token is not available
    """
    return ReplicateDiarizationBackend(
        api_token=config.get_secret('transcription.api_token_env'),
        model_version=config.get('transcription.model_version'),
        language=config.get('transcription.language', 'es'),
        num_speakers=config.get('transcription.num_speakers', 2),
        group_segments=config.get('transcription.group_segments', True),
        prompt=config.get('transcription.prompt', ''),
        base_url=config.get('transcription.base_url'),
        poll_interval=config.get('transcription.poll_interval_seconds', 1.0),
        timeout=config.get('transcription.timeout_seconds', 600.0),
    )


def build_medical_classifier(config: ConsultScribeConfig) -> GeminiMedicalTermClassifier:
    """Create the medical-term classifier from the ``classification`` config section.

    Raises:
        ConfigurationError: if the API key is not available
    """
    return GeminiMedicalTermClassifier(
        api_key=config.get_secret('classification.api_key_env'),
        model=config.get('classification.model', 'gemini-2.5-flash'),
        base_url=config.get('classification.base_url'),
        temperature=config.get('classification.temperature', 0.1),
        max_output_tokens=config.get('classification.max_output_tokens', 2048),
        timeout=config.get('classification.timeout_seconds', 60.0),
    )


def init_recording_manager(config: Optional[ConsultScribeConfig] = None,
                           device_manager: Optional[AudioDeviceManager] = None) -> RecordingManager:
    """Create the process-wide recording manager.

    The manager is shut down at interpreter exit, releasing the microphone
    if a recording is still live.
    """
    global _recording_manager
    if _recording_manager is not None:
        logger.warning("Recording manager already initialized, replacing it")
        _recording_manager.shutdown()

    config = config or get_config()
    if device_manager is None:
        device_manager = AudioDeviceManager(config.get_data_directory())

    _recording_manager = RecordingManager(
        config,
        build_transcription_backend(config),
        device_manager=device_manager,
    )
    atexit.register(_recording_manager.shutdown)
    return _recording_manager


def get_recording_manager() -> RecordingManager:
    """Return the process-wide recording manager.

    Raises:
        RuntimeError: if init_recording_manager has not been called
    """
    if _recording_manager is None:
        raise RuntimeError("Recording manager is not initialized; call init_recording_manager() first")
    return _recording_manager
