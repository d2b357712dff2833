"""Abstract base classes for the external AI services."""

from abc import ABC, abstractmethod
from typing import List, Sequence
import logging

from ..models.recording import AudioBlob
from ..models.transcript import DiarizedTranscript
from ..models.validation import MedicalTermDetection

logger = logging.getLogger(__name__)


class AbstractTranscriptionBackend(ABC):
    """Turns a finished recording into a diarized transcript."""

    def __init__(self, language: str = "es"):
        self.language = language

    @abstractmethod
    async def transcribe(self, audio_blob: AudioBlob) -> DiarizedTranscript:
        """Transcribe the whole recording.

        Args:
            audio_blob: Finalized audio artifact

        Returns:
            DiarizedTranscript with word-level confidence where available

        Raises:
            TranscriptionError: on transport, service or response-shape failures
        """
        pass


class AbstractMedicalTermClassifier(ABC):
    """Decides which words are clinically relevant."""

    @abstractmethod
    async def classify(self, words: Sequence[str]) -> List[MedicalTermDetection]:
        """Classify words.

        Args:
            words: Lowercase, de-duplicated words

        Returns:
            One detection per requested word

        Raises:
            ClassificationError: on transport or service failures
        """
        pass
