"""Pytest configuration and fixtures for ConsultScribe tests."""

import asyncio
import io
import logging
import tempfile
import threading
import wave
from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import Mock, patch

import numpy as np
import pytest

from consultscribe.audio.capture import CaptureState
from consultscribe.audio.player import AudioPlayer
from consultscribe.config import ConsultScribeConfig
from consultscribe.models.recording import AudioBlob
from consultscribe.models.transcript import DiarizedTranscript
from consultscribe.models.validation import MedicalCategory, MedicalTermDetection
from consultscribe.transcription.base import AbstractMedicalTermClassifier, AbstractTranscriptionBackend


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without hardware or network")
    config.addinivalue_line("markers", "integration: tests that wire several components together")


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def sample_audio_chunk():
    """Generate a sample audio chunk for testing."""
    # 1024 samples of 16-bit audio (440 Hz sine wave)
    sample_rate = 16000
    duration = 1024 / sample_rate
    t = np.linspace(0, duration, 1024, False)
    wave_data = np.sin(2 * np.pi * 440 * t)
    audio_data = (wave_data * 32767).astype(np.int16)
    return audio_data.tobytes()


def make_wav_blob(duration_seconds: float = 1.0, sample_rate: int = 16000) -> AudioBlob:
    frames = b'\x00\x00' * int(duration_seconds * sample_rate)
    output = io.BytesIO()
    with wave.open(output, 'wb') as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(frames)
    return AudioBlob(data=output.getvalue(), sample_rate=sample_rate, channels=1,
                     duration_seconds=duration_seconds)


@pytest.fixture
def wav_blob():
    """Two seconds of silence as a WAV artifact."""
    return make_wav_blob(2.0)


@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio for testing without actual audio hardware."""
    with patch('pyaudio.PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        mock_stream.stop_stream.return_value = None
        mock_stream.start_stream.return_value = None
        mock_stream.close.return_value = None
        mock_stream.is_active.return_value = True

        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.terminate.return_value = None
        mock_pyaudio_instance.get_sample_size.return_value = 2
        mock_pyaudio_instance.get_format_from_width.return_value = 8
        mock_pyaudio_instance.get_device_count.return_value = 1
        mock_pyaudio_instance.get_default_input_device_info.return_value = {
            'index': 0, 'name': 'Built-in Microphone', 'maxInputChannels': 1, 'hostApi': 0
        }
        mock_pyaudio_instance.get_device_info_by_index.return_value = {
            'index': 0, 'name': 'Built-in Microphone', 'maxInputChannels': 1, 'hostApi': 0
        }

        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }


@pytest.fixture
def test_config(temp_data_dir):
    """Configuration with storage and logs inside the temporary directory."""
    return ConsultScribeConfig.from_dict({
        "storage": {"data_directory": temp_data_dir},
        "logging": {"file_path": str(Path(temp_data_dir) / "logs" / "test.log")},
    })


class FakeCapture:
    """Stands in for AudioCapture; audio is pushed in by the test."""

    def __init__(self, callback, open_error: Optional[Exception] = None, **kwargs):
        self.callback = callback
        self.open_error = open_error
        self.kwargs = kwargs
        self.state = CaptureState.INACTIVE
        self.pending = b''
        self.opened = False
        self.released = False
        self.discarded = False

    def open(self):
        if self.open_error is not None:
            raise self.open_error
        self.opened = True
        self.state = CaptureState.RECORDING

    def emit(self, data: bytes):
        from consultscribe.models.audio import AudioEvent
        self.callback(AudioEvent(chunk_id="chunk", audio_data=data, timestamp=0.0, sequence_number=0))

    def pause(self):
        if self.state is not CaptureState.RECORDING:
            return False
        self.state = CaptureState.PAUSED
        return True

    def resume(self):
        if self.state is not CaptureState.PAUSED:
            return False
        self.state = CaptureState.RECORDING
        return True

    def stop(self, discard: bool = False):
        if self.state is CaptureState.INACTIVE:
            return
        self.state = CaptureState.INACTIVE
        self.released = True
        self.discarded = discard
        if self.pending and not discard:
            self.emit(self.pending)
        self.pending = b''


class CaptureFactory:
    """Builds FakeCapture instances and remembers them."""

    def __init__(self):
        self.captures: List[FakeCapture] = []
        self.open_error: Optional[Exception] = None

    def __call__(self, callback, **kwargs):
        capture = FakeCapture(callback, open_error=self.open_error, **kwargs)
        self.captures.append(capture)
        return capture

    @property
    def last(self) -> FakeCapture:
        return self.captures[-1]


class ManualTicker:
    """Ticker driven by the test instead of a thread."""

    def __init__(self, interval, callback):
        self.interval = interval
        self.callback = callback
        self.started = False
        self.stopped = False

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def tick(self, times: int = 1):
        for _ in range(times):
            if self.started and not self.stopped:
                self.callback()

    def fire(self):
        """Deliver a tick even if stopped, like a tick already in flight."""
        self.callback()


class TickerFactory:
    def __init__(self):
        self.tickers: List[ManualTicker] = []

    def __call__(self, interval, callback):
        ticker = ManualTicker(interval, callback)
        self.tickers.append(ticker)
        return ticker

    @property
    def active(self) -> Optional[ManualTicker]:
        running = [t for t in self.tickers if t.started and not t.stopped]
        return running[-1] if running else None


class FakeTranscriptionBackend(AbstractTranscriptionBackend):
    """Returns a canned transcript, or raises, optionally after being released."""

    def __init__(self, transcript: Optional[DiarizedTranscript] = None,
                 error: Optional[Exception] = None, wait_for_release: bool = False):
        super().__init__("es")
        self.transcript = transcript or DiarizedTranscript(language="es", num_speakers=1, segments=[])
        self.error = error
        self.release = threading.Event()
        if not wait_for_release:
            self.release.set()
        self.calls: List[AudioBlob] = []

    async def transcribe(self, audio_blob: AudioBlob) -> DiarizedTranscript:
        self.calls.append(audio_blob)
        while not self.release.is_set():
            await asyncio.sleep(0.01)
        if self.error is not None:
            raise self.error
        return self.transcript


class FakeClassifier(AbstractMedicalTermClassifier):
    """Marks the configured words as medical."""

    def __init__(self, medical: Optional[Dict[str, MedicalCategory]] = None,
                 error: Optional[Exception] = None):
        self.medical = medical or {}
        self.error = error
        self.calls: List[List[str]] = []

    async def classify(self, words):
        self.calls.append(list(words))
        if self.error is not None:
            raise self.error
        return [
            MedicalTermDetection(word=w, is_medical=w in self.medical, category=self.medical.get(w))
            for w in words
        ]


class FakePlayer(AudioPlayer):
    def __init__(self, duration: float = 60.0):
        self._duration = duration
        self.position = 0.0
        self.playing = False
        self.closed = False
        self.calls: List[str] = []

    def seek(self, time_seconds):
        self.position = time_seconds
        self.calls.append(f"seek:{time_seconds}")

    def play(self):
        self.playing = True
        self.calls.append("play")

    def pause(self):
        self.playing = False
        self.calls.append("pause")

    @property
    def current_time(self):
        return self.position

    @property
    def duration(self):
        return self._duration

    def close(self):
        self.closed = True


class FakeTimer:
    """Records scheduled auto-pauses; the test fires them explicitly."""

    instances: List["FakeTimer"] = []

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.instances.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function()


@pytest.fixture
def capture_factory():
    return CaptureFactory()


@pytest.fixture
def ticker_factory():
    return TickerFactory()


@pytest.fixture
def fake_timer():
    FakeTimer.instances = []
    yield FakeTimer
    FakeTimer.instances = []


@pytest.fixture
def sample_transcript():
    """Two speakers, four segments, four low-confidence words (three medical)."""
    return DiarizedTranscript.model_validate({
        "language": "es",
        "num_speakers": 2,
        "segments": [
            {
                "start": 0.0, "end": 2.0, "speaker": "SPEAKER_00",
                "text": " Buenos días, ¿qué le pasa?",
                "words": [
                    {"word": " Buenos", "probability": 0.98, "start": 0.0, "end": 0.4},
                    {"word": " días,", "probability": 0.95, "start": 0.4, "end": 0.8},
                    {"word": " ¿qué", "probability": 0.9, "start": 0.9, "end": 1.2},
                    {"word": " le", "probability": 0.5, "start": 1.2, "end": 1.4},
                    {"word": " pasa?", "probability": 0.93, "start": 1.4, "end": 2.0},
                ],
            },
            {
                "start": 2.5, "end": 5.0, "speaker": "SPEAKER_01",
                "text": " Me duele el abdomen.",
                "words": [
                    {"word": " Me", "probability": 0.97, "start": 2.5, "end": 2.7},
                    {"word": " duele", "probability": 0.6, "start": 2.7, "end": 3.1},
                    {"word": " el", "probability": 0.99, "start": 3.1, "end": 3.3},
                    {"word": " abdomen.", "probability": 0.3, "start": 3.3, "end": 4.0},
                ],
            },
            {
                "start": 5.0, "end": 6.0, "speaker": "SPEAKER_01",
                "text": " Desde ayer.",
                "words": [
                    {"word": " Desde", "probability": 0.96, "start": 5.0, "end": 5.4},
                    {"word": " ayer.", "probability": 0.94, "start": 5.4, "end": 6.0},
                ],
            },
            {
                "start": 6.5, "end": 8.0, "speaker": "SPEAKER_00",
                "text": " Le receto amoxicilina.",
                "words": [
                    {"word": " Le", "probability": 0.99, "start": 6.5, "end": 6.7},
                    {"word": " receto", "probability": 0.92, "start": 6.7, "end": 7.1},
                    {"word": " amoxicilina.", "probability": 0.2, "start": 7.1, "end": 8.0},
                ],
            },
        ],
    })


@pytest.fixture
def medical_classifier():
    """Classifier that knows the medical words of sample_transcript."""
    return FakeClassifier({
        "duele": MedicalCategory.PAIN_VERB,
        "abdomen": MedicalCategory.ANATOMY,
        "amoxicilina": MedicalCategory.MEDICATION,
    })


@pytest.fixture
def make_backend():
    """Factory for FakeTranscriptionBackend instances."""
    return FakeTranscriptionBackend


@pytest.fixture
def make_classifier():
    """Factory for FakeClassifier instances."""
    return FakeClassifier


@pytest.fixture
def fake_player():
    return FakePlayer()


class StateRecorder:
    """pubsub listener collecting every state snapshot it receives."""

    def __init__(self):
        self.states = []

    def on_state(self, state):
        self.states.append(state)

    @property
    def statuses(self):
        return [s.status for s in self.states]


@pytest.fixture
def state_recorder():
    return StateRecorder()
