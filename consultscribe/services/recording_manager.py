"""Recording session manager: owns the lifecycle of the single in-flight recording."""

import logging
import threading
from dataclasses import replace
from functools import partial
from typing import Callable, Optional

from ..audio.buffer import ChunkBuffer
from ..audio.capture import AudioCapture, CaptureState
from ..audio.devices import AudioDeviceManager
from ..config import ConsultScribeConfig
from ..exceptions import (
    DeviceError,
    DeviceOverconstrainedError,
    DevicePermissionError,
    TranscriptionError,
)
from ..models.audio import AudioEvent
from ..models.recording import (
    STARTABLE_STATUSES,
    AudioBlob,
    RecordingSession,
    RecordingState,
    RecordingStatus,
)
from ..models.transcript import DiarizedTranscript
from ..transcription.base import AbstractTranscriptionBackend
from .background import BackgroundWorker
from .publisher import RecordingPublisher
from .ticker import ElapsedTicker

logger = logging.getLogger(__name__)

TRANSCRIPTION_FALLBACK_ERROR = "Transcription failed. You can continue manually."


class RecordingManager:
    """State machine for one consultation recording at a time.

    idle -> recording <-> paused -> processing -> completed | error, with
    cancel/clear returning to idle from anywhere. All state changes happen
    under a single lock and are broadcast through the RecordingPublisher.
    Completions of background work carry the session generation they were
    issued under and are dropped once a newer session (or a cancel/clear)
    has superseded it.
    """

    def __init__(self,
                 config: ConsultScribeConfig,
                 transcription_backend: AbstractTranscriptionBackend,
                 capture_factory: Callable[..., AudioCapture] = AudioCapture,
                 ticker_factory: Callable[..., ElapsedTicker] = ElapsedTicker,
                 worker: Optional[BackgroundWorker] = None,
                 publisher: Optional[RecordingPublisher] = None,
                 device_manager: Optional[AudioDeviceManager] = None):
        """Initialize recording manager.

        Args:
            config: Application configuration
            transcription_backend: Service that turns the recording into a transcript
            capture_factory: Builds the microphone capture for each session
            ticker_factory: Builds the elapsed-time ticker, called as (interval, callback)
            worker: Runs the transcription in the background
            publisher: Broadcasts state snapshots
            device_manager: Provides the selected input device, if any
        """
        self.config = config
        self.transcription_backend = transcription_backend
        self.capture_factory = capture_factory
        self.ticker_factory = ticker_factory
        self.worker = worker or BackgroundWorker("transcription")
        self.publisher = publisher or RecordingPublisher()
        self.device_manager = device_manager

        self.sample_rate = config.get('audio.sample_rate', 16000)
        self.channels = config.get('audio.channels', 1)
        self.tick_interval = config.get('recording.tick_interval_seconds', 1.0)

        self._lock = threading.RLock()
        self._state = RecordingState()
        self._buffer = ChunkBuffer(self.sample_rate, self.channels)
        self._capture: Optional[AudioCapture] = None
        self._ticker: Optional[ElapsedTicker] = None
        self._ticker_token = 0
        self._generation = 0
        self._is_on_consultation_page = False
        self._shut_down = False

        logger.info("RecordingManager initialized")

    # === Read access ===

    @property
    def state(self) -> RecordingState:
        """Snapshot of the current state."""
        with self._lock:
            return replace(self._state)

    @property
    def status(self) -> RecordingStatus:
        with self._lock:
            return self._state.status

    @property
    def is_recording_active(self) -> bool:
        with self._lock:
            return self._state.is_recording_active

    def subscribe(self, listener: Callable[..., None]) -> None:
        """Receive a ``state`` snapshot after every change."""
        self.publisher.subscribe_state(listener)

    def unsubscribe(self, listener: Callable[..., None]) -> None:
        self.publisher.unsubscribe_state(listener)

    # === Lifecycle operations ===

    def start_recording(self, session: RecordingSession) -> bool:
        """Acquire the microphone and start a new recording.

        Only allowed from idle, completed or error. Calls made while a
        recording is recording, paused or processing are ignored.

        Returns:
            True if capture started
        """
        with self._lock:
            if self._shut_down:
                logger.warning("Ignoring start_recording: manager is shut down")
                return False
            if self._state.status not in STARTABLE_STATUSES:
                logger.warning(f"Ignoring start_recording: recording is {self._state.status.value}")
                return False

            self._release_capture(discard=True)
            self._generation += 1
            self._buffer.clear()

            capture = self.capture_factory(
                callback=partial(self._on_audio_chunk, self._generation),
                sample_rate=self.sample_rate,
                channels=self.channels,
                frames_per_buffer=self.config.get('audio.frames_per_buffer', 1024),
                timeslice_seconds=self.config.get('audio.timeslice_seconds', 1.0),
                device_index=self._selected_device_index(),
                echo_cancellation=self.config.get('audio.echo_cancellation', True),
                noise_suppression=self.config.get('audio.noise_suppression', True),
            )

            try:
                capture.open()
            except DeviceError as e:
                logger.error(f"Error starting recording: {e}")
                self._handle_device_error(e)
                self._replace_state(RecordingState(status=RecordingStatus.ERROR, error=e.detail))
                return False

            self._capture = capture
            self._replace_state(RecordingState(status=RecordingStatus.RECORDING, session=session))
            logger.info(f"Started recording for appointment {session.appointment_id} "
                        f"(patient {session.patient_id})")
            return True

    def pause_recording(self) -> bool:
        """Pause capture; no-op unless the capture is actively recording."""
        with self._lock:
            if (self._capture is None or self._capture.state is not CaptureState.RECORDING
                    or self._state.status is not RecordingStatus.RECORDING):
                logger.debug("Ignoring pause_recording: not recording")
                return False

            self._capture.pause()
            self._update_state(status=RecordingStatus.PAUSED)
            logger.info(f"Recording paused at {self._state.elapsed_time}s")
            return True

    def resume_recording(self) -> bool:
        """Resume capture; no-op unless the capture is paused."""
        with self._lock:
            if (self._capture is None or self._capture.state is not CaptureState.PAUSED
                    or self._state.status is not RecordingStatus.PAUSED):
                logger.debug("Ignoring resume_recording: not paused")
                return False

            if not self._capture.resume():
                logger.warning("Audio stream could not be resumed; recording stays paused")
                return False
            self._update_state(status=RecordingStatus.RECORDING)
            logger.info("Recording resumed")
            return True

    def stop_recording(self) -> Optional[AudioBlob]:
        """Stop capture, release the device and start transcription in the background.

        Returns as soon as capture has stopped; the transcription result
        arrives later as a state change.

        Returns:
            The finalized audio artifact, or None if nothing was being recorded
        """
        with self._lock:
            capture = self._capture
            if capture is None or not self._state.is_recording_active:
                logger.debug("Ignoring stop_recording: not recording")
                return None

            # Stopping flushes the last partial chunk into the buffer
            capture.stop()
            self._capture = None
            audio_blob = self._buffer.finalize()
            self._buffer.clear()

            session = self._state.session
            generation = self._generation
            self._update_state(
                status=RecordingStatus.PROCESSING,
                audio_blob=audio_blob,
                show_stop_modal=not self._is_on_consultation_page,
            )
            self.publisher.publish_stopped(session, audio_blob)
            logger.info(f"Recording stopped after {self._state.elapsed_time}s, transcribing in background")

            submitted = self.worker.submit(
                f"transcription-{session.appointment_id}",
                partial(self.transcription_backend.transcribe, audio_blob),
                partial(self._on_transcription_success, generation),
                partial(self._on_transcription_failure, generation),
            )
            if not submitted:
                self._on_transcription_failure(generation, TranscriptionError("Transcription service is not available"))

            return audio_blob

    def cancel_recording(self) -> None:
        """Abort whatever is in progress, discard the audio and return to idle."""
        with self._lock:
            self._generation += 1
            self._release_capture(discard=True)
            self._buffer.clear()
            self._replace_state(RecordingState())
            logger.info("Recording cancelled")

    def clear_recording(self) -> None:
        """Dismiss a finished recording and return to idle."""
        with self._lock:
            self._generation += 1
            if self._capture is not None:
                # Keeps the single-acquisition guarantee if clear is used on a live capture
                logger.warning("clear_recording called with a live capture, releasing it")
                self._release_capture(discard=True)
            self._buffer.clear()
            self._replace_state(RecordingState())
            logger.info("Recording cleared")

    def wait_for_transcription(self, timeout: float = 30.0) -> bool:
        """Block until the background transcription (if any) has settled."""
        return self.worker.wait_until_idle(timeout)

    def shutdown(self, timeout: float = 30.0) -> None:
        """Release the microphone and stop background work. Safe to call twice."""
        with self._lock:
            if self._shut_down:
                return
            self._shut_down = True
            self._generation += 1
            self._release_capture(discard=True)
            self._stop_ticker()

        # Outside the lock: pending completion handlers need it to finish
        self.worker.shutdown(timeout)
        logger.info("RecordingManager shut down")

    # === UI notification flags ===

    def set_show_stop_modal(self, show: bool) -> None:
        with self._lock:
            self._update_state(show_stop_modal=show)

    def set_on_consultation_page(self, on_page: bool) -> None:
        """The consultation page handles the stop flow itself, so no modal is raised there."""
        with self._lock:
            self._is_on_consultation_page = on_page

    # === Internal ===

    def _selected_device_index(self) -> Optional[int]:
        if self.device_manager is not None:
            return self.device_manager.selected_device_index
        return self.config.get('audio.device_index')

    def _handle_device_error(self, error: DeviceError) -> None:
        if self.device_manager is None:
            return
        if isinstance(error, DeviceOverconstrainedError):
            self.device_manager.clear_selection()
            self.device_manager.enumerate_devices()
        elif isinstance(error, DevicePermissionError):
            self.device_manager.mark_permission_denied()

    def _release_capture(self, discard: bool) -> None:
        if self._capture is not None:
            self._capture.stop(discard=discard)
            self._capture = None

    def _on_audio_chunk(self, generation: int, event: AudioEvent) -> None:
        # Runs on the PortAudio thread and must not take the manager lock
        if generation != self._generation:
            return
        self._buffer.add_chunk(event.audio_data)

    def _on_transcription_success(self, generation: int, transcript: DiarizedTranscript) -> None:
        with self._lock:
            if generation != self._generation or self._state.status is not RecordingStatus.PROCESSING:
                logger.info("Discarding transcription result for a superseded recording")
                return
            self._update_state(status=RecordingStatus.COMPLETED, transcript=transcript)
            logger.info(f"Transcription completed: {len(transcript.segments)} segments")

    def _on_transcription_failure(self, generation: int, error: BaseException) -> None:
        with self._lock:
            if generation != self._generation or self._state.status is not RecordingStatus.PROCESSING:
                logger.info("Discarding transcription failure for a superseded recording")
                return
            message = str(error) or TRANSCRIPTION_FALLBACK_ERROR
            logger.error(f"Transcription error: {message}")
            # audio_blob is kept so the user can proceed manually
            self._update_state(status=RecordingStatus.ERROR, error=message)

    def _on_tick(self, token: int) -> None:
        with self._lock:
            if token != self._ticker_token or self._ticker is None:
                return
            if self._state.status is not RecordingStatus.RECORDING:
                return
            self._state = replace(self._state, elapsed_time=self._state.elapsed_time + 1)
            self.publisher.publish_state(replace(self._state))

    def _sync_ticker(self) -> None:
        """Run the ticker exactly while status is RECORDING."""
        if self._state.status is RecordingStatus.RECORDING:
            if self._ticker is None:
                self._ticker_token += 1
                self._ticker = self.ticker_factory(self.tick_interval, partial(self._on_tick, self._ticker_token))
                self._ticker.start()
        else:
            self._stop_ticker()

    def _stop_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.stop()
            self._ticker = None

    def _update_state(self, **changes) -> None:
        self._replace_state(replace(self._state, **changes))

    def _replace_state(self, state: RecordingState) -> None:
        self._state = state
        self._sync_ticker()
        self.publisher.publish_state(replace(self._state))
