"""Human-in-the-loop validation of a diarized transcript."""

import logging
import threading
from functools import partial
from typing import Callable, List, Optional, Sequence

from ..audio.player import AudioPlayer
from ..models.transcript import DiarizedTranscript
from ..models.validation import (
    DEFAULT_THRESHOLDS,
    ConfidenceThresholds,
    FlaggedWord,
    MedicalTermDetection,
    ReviewProgress,
    ValidationState,
    ValidationStatus,
    WordCorrection,
    term_key,
)
from ..transcription.base import AbstractMedicalTermClassifier
from .reducer import (
    AcceptWord,
    BulkAcceptAll,
    Reset,
    SelectWord,
    SetAudioTime,
    SetFlaggedWords,
    SetMedicalLoading,
    SetMedicalTerms,
    SetPlaying,
    SkipWord,
    UpdateWord,
    can_proceed_with_validation,
    extract_flagged_words,
    medical_flagged_words,
    next_unreviewed_medical,
    validation_reducer,
)
from .transcript import build_final_transcript, collect_corrections

logger = logging.getLogger(__name__)


class TranscriptionValidator:
    """Owns the review state for one transcript and the audio player used to check it.

    Low-confidence words are flagged, sent once to the medical term
    classifier, and only the medical ones are left for the reviewer. A
    classifier failure never blocks the review: every flagged word is then
    treated as non-medical.
    """

    def __init__(self,
                 classifier: AbstractMedicalTermClassifier,
                 player: Optional[AudioPlayer] = None,
                 thresholds: ConfidenceThresholds = DEFAULT_THRESHOLDS,
                 context_seconds: float = 3.0,
                 max_words_per_request: int = 100,
                 timer_factory: Callable[..., threading.Timer] = threading.Timer):
        """Initialize validator.

        Args:
            classifier: Medical term classifier
            player: Playback adapter for the recording, if audio is available
            thresholds: Confidence thresholds for flagging words
            context_seconds: Audio played before and after a word
            max_words_per_request: Largest word list sent in one classification call
            timer_factory: Creates the auto-pause timer, called as (interval, function)
        """
        if max_words_per_request < 1:
            raise ValueError("max_words_per_request must be at least 1")
        self.classifier = classifier
        self.player = player
        self.context_seconds = context_seconds
        self.max_words_per_request = max_words_per_request
        self.timer_factory = timer_factory

        self._lock = threading.RLock()
        self._state = ValidationState(thresholds=thresholds)
        self._transcript: Optional[DiarizedTranscript] = None
        self._generation = 0
        self._playback_timer: Optional[threading.Timer] = None
        self._playback_token = 0

    # === State access ===

    @property
    def state(self) -> ValidationState:
        with self._lock:
            return self._state

    @property
    def transcript(self) -> Optional[DiarizedTranscript]:
        return self._transcript

    @property
    def flagged_words(self) -> Sequence[FlaggedWord]:
        return self.state.flagged_words

    @property
    def medical_flagged_words(self) -> List[FlaggedWord]:
        return medical_flagged_words(self.state.flagged_words)

    @property
    def current_word(self) -> Optional[FlaggedWord]:
        state = self.state
        return next((w for w in state.flagged_words if w.id == state.current_word_id), None)

    @property
    def review_progress(self) -> ReviewProgress:
        return self.state.review_progress

    @property
    def validation_status(self) -> ValidationStatus:
        return can_proceed_with_validation(self.state.flagged_words)

    @property
    def audio_duration(self) -> float:
        return self.player.duration if self.player is not None else 0.0

    def dispatch(self, action) -> ValidationState:
        with self._lock:
            self._state = validation_reducer(self._state, action)
            return self._state

    # === Loading ===

    async def load_transcript(self, transcript: DiarizedTranscript) -> ValidationState:
        """Reset the review for a new transcript and classify its flagged words.

        Returns:
            The state once classification has settled
        """
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._transcript = transcript
            self.dispatch(Reset())

            if not transcript.has_word_data:
                logger.info("Transcript has no word-level confidence data, nothing to review")
                return self._state

            flagged = extract_flagged_words(transcript.segments, self._state.thresholds)
            self.dispatch(SetFlaggedWords(tuple(flagged)))
            logger.info(f"Flagged {len(flagged)} low-confidence words")
            if not flagged:
                return self._state
            self.dispatch(SetMedicalLoading(True))

        detections = await self._detect_medical_terms([w.word for w in flagged])

        with self._lock:
            if generation != self._generation:
                logger.info("Discarding medical term detection for a superseded transcript")
                return self._state
            state = self.dispatch(SetMedicalTerms(tuple(detections)))
            logger.info(f"{len(medical_flagged_words(state.flagged_words))} medical terms need review")
            return state

    async def _detect_medical_terms(self, words: Sequence[str]) -> List[MedicalTermDetection]:
        unique = list(dict.fromkeys(key for key in (term_key(word) for word in words) if key))
        detections: List[MedicalTermDetection] = []

        try:
            for start in range(0, len(unique), self.max_words_per_request):
                batch = unique[start:start + self.max_words_per_request]
                detections.extend(await self.classifier.classify(batch))
        except Exception as e:
            logger.warning(f"Medical term detection failed, treating all flagged words as non-medical: {e}")
            return [MedicalTermDetection(word=word, is_medical=False) for word in unique]

        return detections

    # === Review actions ===

    def accept_word(self, word_id: str, corrected_word: Optional[str] = None) -> None:
        self.dispatch(AcceptWord(word_id, corrected_word))

    def skip_word(self, word_id: str) -> None:
        self.dispatch(SkipWord(word_id))

    def update_word(self, word_id: str, corrected_word: str) -> None:
        """Store a draft correction without marking the word reviewed."""
        self.dispatch(UpdateWord(word_id, corrected_word))

    def accept_all(self) -> None:
        logger.info("Accepting all flagged words")
        self.dispatch(BulkAcceptAll())

    def select_word(self, word_id: Optional[str]) -> None:
        """Select a word and move the audio to its timestamp."""
        with self._lock:
            state = self.dispatch(SelectWord(word_id))
            if word_id is None or state.current_word_id != word_id or self.player is None:
                return
            word = self.current_word
            self.player.seek(word.timestamp)
            self.dispatch(SetAudioTime(word.timestamp))

    def next_word(self) -> Optional[FlaggedWord]:
        """Select the next unreviewed medical word, wrapping around."""
        with self._lock:
            word = next_unreviewed_medical(self._state.flagged_words, self._state.current_word_id)
            if word is not None:
                self.select_word(word.id)
            return word

    def prev_word(self) -> Optional[FlaggedWord]:
        """Select the medical word before the current one."""
        with self._lock:
            medical = medical_flagged_words(self._state.flagged_words)
            index = next((i for i, w in enumerate(medical) if w.id == self._state.current_word_id), -1)
            if index <= 0:
                return None
            self.select_word(medical[index - 1].id)
            return medical[index - 1]

    # === Audio ===

    def play_word_audio(self, timestamp: float, context_seconds: Optional[float] = None) -> None:
        """Play the audio around timestamp, then pause automatically.

        A new call replaces the pending auto-pause of the previous one.
        """
        if self.player is None:
            return
        context = self.context_seconds if context_seconds is None else context_seconds
        start_time = max(0.0, timestamp - context)
        end_time = timestamp + context

        with self._lock:
            self._cancel_playback_timer()
            self.player.seek(start_time)
            self.player.play()
            self.dispatch(SetAudioTime(start_time))
            self.dispatch(SetPlaying(True))

            timer = self.timer_factory(end_time - start_time, partial(self._auto_pause, self._playback_token))
            timer.daemon = True
            self._playback_timer = timer
            timer.start()

    def seek_audio(self, time_seconds: float) -> None:
        if self.player is None:
            return
        with self._lock:
            self.player.seek(time_seconds)
            self.dispatch(SetAudioTime(time_seconds))

    def toggle_playback(self) -> None:
        if self.player is None:
            return
        with self._lock:
            if self._state.is_playing:
                self.player.pause()
                self._cancel_playback_timer()
            else:
                self.player.play()
            self.dispatch(SetPlaying(not self._state.is_playing))

    def sync_audio_time(self) -> float:
        """Copy the player position into the state."""
        if self.player is None:
            return self.state.audio_current_time
        position = self.player.current_time
        self.dispatch(SetAudioTime(position))
        return position

    def _auto_pause(self, token: int) -> None:
        with self._lock:
            if token != self._playback_token:
                return
            self._playback_timer = None
            self.player.pause()
            self.dispatch(SetPlaying(False))
            self.dispatch(SetAudioTime(self.player.current_time))

    def _cancel_playback_timer(self) -> None:
        self._playback_token += 1
        if self._playback_timer is not None:
            self._playback_timer.cancel()
            self._playback_timer = None

    # === Results ===

    def get_final_transcript(self) -> str:
        if self._transcript is None:
            return ""
        return build_final_transcript(self._transcript, self.state.flagged_words)

    def get_corrections(self) -> List[WordCorrection]:
        return collect_corrections(self.state.flagged_words)

    def close(self) -> None:
        with self._lock:
            self._cancel_playback_timer()
            if self.player is not None:
                self.player.close()
