"""Data models for the human-in-the-loop transcription validation."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence, Tuple


class MedicalCategory(Enum):
    """Clinical category assigned by the medical term classifier."""
    MEDICATION = "medication"
    DIAGNOSIS = "diagnosis"
    SYMPTOM = "symptom"
    ANATOMY = "anatomy"
    PROCEDURE = "procedure"
    PAIN_VERB = "pain_verb"
    INTENSITY = "intensity"
    TEMPORAL = "temporal"
    EMOTIONAL = "emotional"
    VITAL_SIGN = "vital_sign"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["MedicalCategory"]:
        """Map a classifier category string to the enum; unknown values become OTHER."""
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.OTHER


_TERM_PUNCTUATION = ".,;:!?¿¡\"'()[]«»"


def term_key(word: str) -> str:
    """Lookup key for a transcript word: lowercase, without surrounding spaces or punctuation."""
    return word.strip().strip(_TERM_PUNCTUATION).lower()


class HighlightLevel(Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    NORMAL = "normal"
    CORRECTED = "corrected"


@dataclass(frozen=True)
class ConfidenceThresholds:
    """Confidence cutoffs used to flag and highlight words."""
    critical: float = 0.4  # below this the word is highlighted as critical
    warning: float = 0.7   # below this the word is flagged for review


DEFAULT_THRESHOLDS = ConfidenceThresholds()


def highlight_level(probability: float,
                    thresholds: ConfidenceThresholds = DEFAULT_THRESHOLDS,
                    is_corrected: bool = False) -> HighlightLevel:
    """Determine how a word should be highlighted based on its confidence."""
    if is_corrected:
        return HighlightLevel.CORRECTED
    if probability < thresholds.critical:
        return HighlightLevel.CRITICAL
    if probability < thresholds.warning:
        return HighlightLevel.WARNING
    return HighlightLevel.NORMAL


@dataclass(frozen=True)
class FlaggedWord:
    """A transcript word below the warning threshold, queued for possible review."""
    id: str  # "<segment_index>-<word_index>"
    word: str
    probability: float
    timestamp: float
    speaker: str
    segment_index: int
    word_index: int
    end_timestamp: Optional[float] = None
    corrected_word: Optional[str] = None
    is_medical_term: bool = False
    medical_category: Optional[MedicalCategory] = None
    is_reviewed: bool = False
    is_accepted: bool = False

    @property
    def has_correction(self) -> bool:
        corrected = (self.corrected_word or "").strip()
        return bool(corrected) and corrected != self.word.strip()


@dataclass(frozen=True)
class ReviewProgress:
    total: int = 0
    reviewed: int = 0
    medical_total: int = 0
    medical_reviewed: int = 0
    percentage: int = 100


@dataclass(frozen=True)
class MedicalTermDetection:
    """Classifier verdict for one word."""
    word: str
    is_medical: bool
    category: Optional[MedicalCategory] = None


@dataclass(frozen=True)
class WordCorrection:
    """A correction committed by the reviewer."""
    segment_index: int
    word_index: int
    original_word: str
    corrected_word: str
    timestamp: float


@dataclass(frozen=True)
class ValidationStatus:
    """Result of the review gate."""
    can_proceed: bool
    unreviewed_medical_count: int
    message: Optional[str] = None


@dataclass(frozen=True)
class ValidationState:
    """Reducer state for the review session."""
    flagged_words: Tuple[FlaggedWord, ...] = ()
    current_word_id: Optional[str] = None
    audio_current_time: float = 0.0
    is_playing: bool = False
    thresholds: ConfidenceThresholds = field(default=DEFAULT_THRESHOLDS)
    medical_terms_loading: bool = False

    @property
    def review_progress(self) -> ReviewProgress:
        return calculate_progress(self.flagged_words)


def calculate_progress(flagged_words: Sequence[FlaggedWord]) -> ReviewProgress:
    """Derive review progress from the flagged words."""
    total = len(flagged_words)
    reviewed = sum(1 for w in flagged_words if w.is_reviewed)
    medical_total = sum(1 for w in flagged_words if w.is_medical_term)
    medical_reviewed = sum(1 for w in flagged_words if w.is_medical_term and w.is_reviewed)

    return ReviewProgress(
        total=total,
        reviewed=reviewed,
        medical_total=medical_total,
        medical_reviewed=medical_reviewed,
        percentage=round(reviewed / total * 100) if total > 0 else 100,
    )
