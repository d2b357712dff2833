"""File management for recordings, transcripts and review results."""

import io
import json
import logging
import re
import wave
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from pydantic import ValidationError

from ..models.recording import AudioBlob, RecordingSession, RecordingState
from ..models.transcript import DiarizedTranscript
from ..models.validation import WordCorrection

logger = logging.getLogger(__name__)

AUDIO_FILENAME = "recording.wav"
SESSION_INFO_FILENAME = "session_info.json"
TRANSCRIPT_FILENAME = "transcript.json"
VALIDATION_FILENAME = "validation.json"


@dataclass
class SessionInfo:
    """Information about a stored recording."""
    session_id: str
    appointment_id: str
    patient_id: str
    patient_name: str
    started_at: datetime
    duration_seconds: float
    audio_file: str
    file_size_bytes: int
    sample_rate: int
    status: str
    error: Optional[str] = None


class FileManager:
    """Keeps one directory per recording so the audio survives a failed transcription."""

    def __init__(self, data_dir: str = "./data"):
        """Initialize file manager with data directory.

        Args:
            data_dir: Base directory for storing all data
        """
        self.data_dir = Path(data_dir)
        self.sessions_dir = self.data_dir / "sessions"
        self.logs_dir = self.data_dir / "logs"

        for directory in [self.data_dir, self.sessions_dir, self.logs_dir]:
            directory.mkdir(parents=True, exist_ok=True)

        logger.info(f"FileManager initialized with data_dir: {self.data_dir}")

    def create_session_directory(self, appointment_id: str, started_at: Optional[datetime] = None) -> str:
        """Create the directory for one recording.

        Returns:
            Session ID of the form <appointment>_<timestamp>
        """
        safe_appointment = re.sub(r"[^A-Za-z0-9_-]", "-", appointment_id) or "appointment"
        timestamp = (started_at or datetime.now()).strftime("%Y%m%d_%H%M%S")
        session_id = f"{safe_appointment}_{timestamp}"
        session_path = self.sessions_dir / session_id
        session_path.mkdir(parents=True, exist_ok=True)

        logger.info(f"Created session directory: {session_path}")
        return session_id

    def get_session_path(self, session_id: str) -> Path:
        return self.sessions_dir / session_id

    def save_audio_file(self, audio_blob: AudioBlob, session_id: str) -> str:
        """Write the recording and return its path."""
        audio_file_path = self.get_session_path(session_id) / AUDIO_FILENAME
        audio_file_path.parent.mkdir(parents=True, exist_ok=True)
        audio_file_path.write_bytes(audio_blob.data)

        logger.info(f"Audio file saved: {audio_file_path} ({audio_blob.size_bytes} bytes)")
        return str(audio_file_path)

    def load_audio(self, session_id: str) -> Optional[AudioBlob]:
        audio_file_path = self.get_session_path(session_id) / AUDIO_FILENAME
        if not audio_file_path.exists():
            logger.warning(f"Audio file not found: {audio_file_path}")
            return None

        data = audio_file_path.read_bytes()
        with wave.open(io.BytesIO(data), 'rb') as wf:
            sample_rate = wf.getframerate()
            channels = wf.getnchannels()
            duration = wf.getnframes() / sample_rate if sample_rate else 0.0

        return AudioBlob(data=data, sample_rate=sample_rate, channels=channels, duration_seconds=duration)

    def save_session_info(self, session_info: SessionInfo) -> str:
        info_file = self.get_session_path(session_info.session_id) / SESSION_INFO_FILENAME
        info_file.parent.mkdir(parents=True, exist_ok=True)

        info_dict = asdict(session_info)
        info_dict['started_at'] = session_info.started_at.isoformat()

        with open(info_file, 'w', encoding='utf-8') as f:
            json.dump(info_dict, f, indent=2, ensure_ascii=False)

        logger.info(f"Session info saved: {info_file}")
        return str(info_file)

    def load_session_info(self, session_id: str) -> Optional[SessionInfo]:
        """Load session information, or None if missing or unreadable."""
        info_file = self.get_session_path(session_id) / SESSION_INFO_FILENAME
        if not info_file.exists():
            logger.warning(f"Session info file not found: {info_file}")
            return None

        try:
            with open(info_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            data['started_at'] = datetime.fromisoformat(data['started_at'])
            return SessionInfo(**data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error loading session info: {e}")
            return None

    def save_transcript(self, session_id: str, transcript: DiarizedTranscript) -> str:
        transcript_file = self.get_session_path(session_id) / TRANSCRIPT_FILENAME
        transcript_file.write_text(transcript.model_dump_json(indent=2), encoding='utf-8')
        logger.info(f"Transcript saved: {transcript_file}")
        return str(transcript_file)

    def load_transcript(self, session_id: str) -> Optional[DiarizedTranscript]:
        """Load a saved transcript, or None if there is none or it is malformed."""
        transcript_file = self.get_session_path(session_id) / TRANSCRIPT_FILENAME
        if not transcript_file.exists():
            logger.warning(f"Transcript file not found: {transcript_file}")
            return None

        try:
            return DiarizedTranscript.model_validate_json(transcript_file.read_text(encoding='utf-8'))
        except ValidationError as e:
            logger.error(f"Error loading transcript: {e}")
            return None

    def save_validation(self, session_id: str, final_transcript: str,
                        corrections: Sequence[WordCorrection]) -> str:
        """Store the reviewed transcript and the corrections made."""
        validation_file = self.get_session_path(session_id) / VALIDATION_FILENAME
        data = {
            "validated_at": datetime.now().isoformat(),
            "final_transcript": final_transcript,
            "corrections": [asdict(c) for c in corrections],
        }
        with open(validation_file, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        logger.info(f"Validation saved: {validation_file} ({len(corrections)} corrections)")
        return str(validation_file)

    def save_recording(self, session: RecordingSession, state: RecordingState) -> str:
        """Store everything a finished recording produced.

        The audio is written even when transcription failed so the user
        can proceed manually.

        Returns:
            Session ID
        """
        session_id = self.create_session_directory(session.appointment_id, session.started_at)

        audio_file = ""
        file_size = 0
        duration = float(state.elapsed_time)
        sample_rate = 0
        if state.audio_blob is not None:
            audio_file = self.save_audio_file(state.audio_blob, session_id)
            file_size = state.audio_blob.size_bytes
            duration = state.audio_blob.duration_seconds
            sample_rate = state.audio_blob.sample_rate

        if state.transcript is not None:
            self.save_transcript(session_id, state.transcript)

        self.save_session_info(SessionInfo(
            session_id=session_id,
            appointment_id=session.appointment_id,
            patient_id=session.patient_id,
            patient_name=session.patient_name,
            started_at=session.started_at,
            duration_seconds=duration,
            audio_file=audio_file,
            file_size_bytes=file_size,
            sample_rate=sample_rate,
            status=state.status.value,
            error=state.error,
        ))
        return session_id

    def list_sessions(self) -> List[str]:
        """List stored session IDs, sorted by name."""
        sessions = [
            path.name for path in self.sessions_dir.iterdir()
            if path.is_dir() and (path / SESSION_INFO_FILENAME).exists()
        ]
        sessions.sort()
        logger.debug(f"Found {len(sessions)} sessions")
        return sessions
