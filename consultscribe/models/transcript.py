"""Wire models for the diarized transcription service."""

import re
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

SPEAKER_PREFIX = "SPEAKER_"
SPEAKER_LABEL_PREFIX = "Speaker "

_RAW_SPEAKER = re.compile(r"^SPEAKER_(\d+)$")
_SPEAKER_LABEL = re.compile(r"^Speaker (\d+)$")


def speaker_label(speaker: str) -> str:
    """Display form of a raw speaker id: SPEAKER_00 -> Speaker 00."""
    match = _RAW_SPEAKER.match(speaker)
    if not match:
        return speaker
    return f"{SPEAKER_LABEL_PREFIX}{match.group(1)}"


def raw_speaker_id(label: str) -> str:
    """Inverse of speaker_label: Speaker 00 -> SPEAKER_00."""
    match = _SPEAKER_LABEL.match(label)
    if not match:
        return label
    return f"{SPEAKER_PREFIX}{match.group(1)}"


def format_speaker_turns(turns: Iterable[Tuple[str, str]]) -> str:
    """Render (speaker, text) pairs, adding a label only when the speaker changes.

    Consecutive segments from the same speaker share one line.
    """
    lines: List[str] = []
    current_speaker: Optional[str] = None

    for speaker, text in turns:
        text = text.strip()
        if speaker != current_speaker or not lines:
            lines.append(f"[{speaker_label(speaker)}]: {text}".rstrip())
            current_speaker = speaker
        elif text:
            lines[-1] = f"{lines[-1]} {text}"

    return "\n".join(lines).strip()


class TranscriptWord(BaseModel):
    """A single word with its confidence score."""
    word: str
    probability: float = Field(ge=0.0, le=1.0)
    start: Optional[float] = None
    end: Optional[float] = None


class TranscriptSegment(BaseModel):
    """A speaker-attributed span of the transcript."""
    start: float
    end: float
    text: str
    speaker: str
    words: List[TranscriptWord] = Field(default_factory=list)

    @field_validator("words", mode="before")
    @classmethod
    def _none_words_as_empty(cls, value):
        return [] if value is None else value


class DiarizedTranscript(BaseModel):
    """Complete diarized transcript as returned by the transcription service."""
    language: str = ""
    num_speakers: int = 0
    segments: List[TranscriptSegment] = Field(default_factory=list)

    @property
    def has_word_data(self) -> bool:
        return any(segment.words for segment in self.segments)

    @property
    def full_text(self) -> str:
        """Concatenated text with speaker labels at each speaker turn."""
        return format_speaker_turns((segment.speaker, segment.text) for segment in self.segments)
