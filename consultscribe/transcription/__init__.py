"""Clients for the external transcription and classification services."""

from .base import AbstractTranscriptionBackend, AbstractMedicalTermClassifier
from .replicate_backend import ReplicateDiarizationBackend
from .gemini_classifier import GeminiMedicalTermClassifier

__all__ = [
    "AbstractTranscriptionBackend",
    "AbstractMedicalTermClassifier",
    "ReplicateDiarizationBackend",
    "GeminiMedicalTermClassifier",
]
