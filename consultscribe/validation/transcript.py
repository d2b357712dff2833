"""Rebuild the reviewed transcript text and list the committed corrections."""

from typing import Dict, List, Sequence

from ..models.transcript import DiarizedTranscript, TranscriptSegment, format_speaker_turns
from ..models.validation import FlaggedWord, WordCorrection
from .reducer import committed_corrections


def _segment_text(segment: TranscriptSegment, segment_index: int, corrections: Dict[str, str]) -> str:
    if not segment.words:
        return segment.text.strip()

    words = []
    for word_index, word in enumerate(segment.words):
        text = corrections.get(f"{segment_index}-{word_index}", word.word).strip()
        if text:
            words.append(text)
    return " ".join(words)


def build_final_transcript(transcript: DiarizedTranscript, flagged_words: Sequence[FlaggedWord]) -> str:
    """Transcript text with committed corrections applied.

    Segments keep their original order; a ``[Speaker NN]:`` label starts a
    new line only where the speaker changes.
    """
    corrections = {w.id: w.corrected_word for w in committed_corrections(flagged_words)}
    return format_speaker_turns(
        (segment.speaker, _segment_text(segment, index, corrections))
        for index, segment in enumerate(transcript.segments)
    )


def collect_corrections(flagged_words: Sequence[FlaggedWord]) -> List[WordCorrection]:
    return [
        WordCorrection(
            segment_index=w.segment_index,
            word_index=w.word_index,
            original_word=w.word,
            corrected_word=w.corrected_word,
            timestamp=w.timestamp,
        )
        for w in committed_corrections(flagged_words)
    ]
