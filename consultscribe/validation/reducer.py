"""Pure state transitions and selectors for the transcript review session.

Everything in this module is a function of its inputs: the validator
controller owns the current ValidationState and replaces it with the
result of validation_reducer for every action it dispatches.
"""

import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Type

from ..models.transcript import TranscriptSegment
from ..models.validation import (
    DEFAULT_THRESHOLDS,
    ConfidenceThresholds,
    FlaggedWord,
    MedicalTermDetection,
    ValidationState,
    ValidationStatus,
    calculate_progress,
    term_key,
)

logger = logging.getLogger(__name__)


# === Actions ===

@dataclass(frozen=True)
class SetFlaggedWords:
    words: Tuple[FlaggedWord, ...]


@dataclass(frozen=True)
class SetMedicalTerms:
    detections: Tuple[MedicalTermDetection, ...]


@dataclass(frozen=True)
class SelectWord:
    word_id: Optional[str]


@dataclass(frozen=True)
class UpdateWord:
    word_id: str
    corrected_word: str


@dataclass(frozen=True)
class AcceptWord:
    word_id: str
    corrected_word: Optional[str] = None


@dataclass(frozen=True)
class SkipWord:
    word_id: str


@dataclass(frozen=True)
class SetAudioTime:
    time_seconds: float


@dataclass(frozen=True)
class SetPlaying:
    is_playing: bool


@dataclass(frozen=True)
class SetMedicalLoading:
    loading: bool


@dataclass(frozen=True)
class BulkAcceptAll:
    pass


@dataclass(frozen=True)
class Reset:
    pass


# === Derivation and selectors ===

def extract_flagged_words(segments: Sequence[TranscriptSegment],
                          thresholds: ConfidenceThresholds = DEFAULT_THRESHOLDS) -> List[FlaggedWord]:
    """Collect every word below the warning threshold, ordered by timestamp.

    Words without their own timing inherit the start/end of their segment.
    The sort is stable, so words sharing a timestamp keep transcript order.
    """
    flagged: List[FlaggedWord] = []

    for segment_index, segment in enumerate(segments):
        for word_index, word in enumerate(segment.words):
            if word.probability >= thresholds.warning:
                continue
            flagged.append(FlaggedWord(
                id=f"{segment_index}-{word_index}",
                word=word.word,
                probability=word.probability,
                timestamp=word.start if word.start is not None else segment.start,
                end_timestamp=word.end if word.end is not None else segment.end,
                speaker=segment.speaker,
                segment_index=segment_index,
                word_index=word_index,
            ))

    return sorted(flagged, key=lambda w: w.timestamp)


def medical_flagged_words(flagged_words: Sequence[FlaggedWord]) -> List[FlaggedWord]:
    """Words the reviewer actually has to look at."""
    return [w for w in flagged_words if w.is_medical_term]


def next_unreviewed_medical(flagged_words: Sequence[FlaggedWord],
                            after_id: Optional[str] = None) -> Optional[FlaggedWord]:
    """Next unreviewed medical word after after_id, wrapping around to the start."""
    medical = medical_flagged_words(flagged_words)
    current_index = next((i for i, w in enumerate(medical) if w.id == after_id), -1)

    for word in medical[current_index + 1:]:
        if not word.is_reviewed:
            return word
    return next((w for w in medical if not w.is_reviewed), None)


def can_proceed_with_validation(flagged_words: Sequence[FlaggedWord]) -> ValidationStatus:
    """Review gate: every medical term has been reviewed."""
    unreviewed = sum(1 for w in flagged_words if w.is_medical_term and not w.is_reviewed)
    if unreviewed == 0:
        return ValidationStatus(can_proceed=True, unreviewed_medical_count=0)

    noun = "medical term" if unreviewed == 1 else "medical terms"
    return ValidationStatus(
        can_proceed=False,
        unreviewed_medical_count=unreviewed,
        message=f"Review {unreviewed} {noun} before continuing",
    )


def committed_corrections(flagged_words: Sequence[FlaggedWord]) -> List[FlaggedWord]:
    """Reviewed and accepted words whose correction differs from the original."""
    return [w for w in flagged_words if w.is_reviewed and w.is_accepted and w.has_correction]


# === Reducer ===

def _update_word(words: Sequence[FlaggedWord], word_id: str,
                 **changes) -> Optional[Tuple[FlaggedWord, ...]]:
    """Copy of words with one entry changed, or None if word_id is unknown."""
    if not any(w.id == word_id for w in words):
        return None
    return tuple(replace(w, **changes) if w.id == word_id else w for w in words)


def _mark_reviewed(state: ValidationState, word_id: str, **changes) -> ValidationState:
    words = _update_word(state.flagged_words, word_id, is_reviewed=True, is_accepted=True, **changes)
    if words is None:
        logger.debug(f"Ignoring review of unknown word {word_id}")
        return state

    next_word = next_unreviewed_medical(words, word_id)
    return replace(state, flagged_words=words, current_word_id=next_word.id if next_word else None)


def _set_flagged_words(state: ValidationState, action: SetFlaggedWords) -> ValidationState:
    # Nothing is selected until classification has settled
    return replace(state, flagged_words=tuple(action.words), current_word_id=None)


def _set_medical_terms(state: ValidationState, action: SetMedicalTerms) -> ValidationState:
    detections: Dict[str, MedicalTermDetection] = {term_key(d.word): d for d in action.detections}

    updated = []
    for word in state.flagged_words:
        detection = detections.get(term_key(word.word))
        if detection is not None and detection.is_medical:
            updated.append(replace(word, is_medical_term=True, medical_category=detection.category))
        else:
            # Non-medical words never enter the review queue
            updated.append(replace(word, is_medical_term=False, medical_category=None,
                                   is_reviewed=True, is_accepted=True))

    words = tuple(updated)
    first = next((w for w in words if w.is_medical_term and not w.is_reviewed), None)
    return replace(state, flagged_words=words, current_word_id=first.id if first else None,
                   medical_terms_loading=False)


def _select_word(state: ValidationState, action: SelectWord) -> ValidationState:
    if action.word_id is not None and not any(w.id == action.word_id for w in state.flagged_words):
        logger.debug(f"Ignoring selection of unknown word {action.word_id}")
        return state
    return replace(state, current_word_id=action.word_id)


def _update_word_text(state: ValidationState, action: UpdateWord) -> ValidationState:
    words = _update_word(state.flagged_words, action.word_id, corrected_word=action.corrected_word)
    if words is None:
        return state
    return replace(state, flagged_words=words)


def _accept_word(state: ValidationState, action: AcceptWord) -> ValidationState:
    word = next((w for w in state.flagged_words if w.id == action.word_id), None)
    if word is None:
        return state
    corrected = action.corrected_word if action.corrected_word is not None else word.corrected_word
    return _mark_reviewed(state, action.word_id, corrected_word=corrected)


def _skip_word(state: ValidationState, action: SkipWord) -> ValidationState:
    word = next((w for w in state.flagged_words if w.id == action.word_id), None)
    if word is None:
        return state
    if word.is_reviewed:
        return _mark_reviewed(state, action.word_id)
    # Skipping means "fine as transcribed", so a pending draft is dropped
    return _mark_reviewed(state, action.word_id, corrected_word=None)


def _set_audio_time(state: ValidationState, action: SetAudioTime) -> ValidationState:
    return replace(state, audio_current_time=action.time_seconds)


def _set_playing(state: ValidationState, action: SetPlaying) -> ValidationState:
    return replace(state, is_playing=action.is_playing)


def _set_medical_loading(state: ValidationState, action: SetMedicalLoading) -> ValidationState:
    return replace(state, medical_terms_loading=action.loading)


def _bulk_accept_all(state: ValidationState, action: BulkAcceptAll) -> ValidationState:
    words = tuple(replace(w, is_reviewed=True, is_accepted=True) for w in state.flagged_words)
    return replace(state, flagged_words=words, current_word_id=None)


def _reset(state: ValidationState, action: Reset) -> ValidationState:
    return ValidationState(thresholds=state.thresholds)


_HANDLERS: Dict[Type, Callable[[ValidationState, object], ValidationState]] = {
    SetFlaggedWords: _set_flagged_words,
    SetMedicalTerms: _set_medical_terms,
    SelectWord: _select_word,
    UpdateWord: _update_word_text,
    AcceptWord: _accept_word,
    SkipWord: _skip_word,
    SetAudioTime: _set_audio_time,
    SetPlaying: _set_playing,
    SetMedicalLoading: _set_medical_loading,
    BulkAcceptAll: _bulk_accept_all,
    Reset: _reset,
}


def validation_reducer(state: ValidationState, action: object) -> ValidationState:
    """Return the state that results from applying action to state.

    Unknown actions leave the state unchanged.
    """
    handler = _HANDLERS.get(type(action))
    if handler is None:
        logger.warning(f"Unknown validation action: {type(action).__name__}")
        return state
    return handler(state, action)


__all__ = [
    "AcceptWord",
    "BulkAcceptAll",
    "Reset",
    "SelectWord",
    "SetAudioTime",
    "SetFlaggedWords",
    "SetMedicalLoading",
    "SetMedicalTerms",
    "SetPlaying",
    "SkipWord",
    "UpdateWord",
    "calculate_progress",
    "can_proceed_with_validation",
    "committed_corrections",
    "extract_flagged_words",
    "medical_flagged_words",
    "next_unreviewed_medical",
    "validation_reducer",
]
