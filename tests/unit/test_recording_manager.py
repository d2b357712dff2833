"""Unit tests for the RecordingManager state machine."""

import uuid
from unittest.mock import Mock

import pytest

from consultscribe.audio.devices import AudioDeviceManager
from consultscribe.exceptions import (
    DeviceError,
    DeviceOverconstrainedError,
    DevicePermissionError,
    TranscriptionError,
)
from consultscribe.models.recording import RecordingSession, RecordingStatus
from consultscribe.models.transcript import DiarizedTranscript
from consultscribe.services.publisher import RecordingPublisher
from consultscribe.services.recording_manager import TRANSCRIPTION_FALLBACK_ERROR, RecordingManager

ONE_SECOND = b'\x01\x00' * 16000


@pytest.fixture
def session():
    return RecordingSession(appointment_id="apt-1", patient_id="pat-1", patient_name="Ana García")


@pytest.fixture
def publisher():
    return RecordingPublisher(topic=f"recording_test_{uuid.uuid4().hex}")


@pytest.fixture
def manager_factory(test_config, capture_factory, ticker_factory, make_backend, publisher):
    managers = []

    def build(backend=None, device_manager=None):
        manager = RecordingManager(
            test_config,
            backend or make_backend(),
            capture_factory=capture_factory,
            ticker_factory=ticker_factory,
            publisher=publisher,
            device_manager=device_manager,
        )
        managers.append(manager)
        return manager

    yield build
    for manager in managers:
        manager.shutdown(timeout=2.0)


@pytest.mark.unit
class TestStartRecording:

    def test_start_from_idle(self, manager_factory, capture_factory, ticker_factory, session):
        manager = manager_factory()

        assert manager.start_recording(session) is True

        state = manager.state
        assert state.status is RecordingStatus.RECORDING
        assert state.session == session
        assert state.elapsed_time == 0
        assert state.error is None
        assert capture_factory.last.opened
        assert ticker_factory.active is not None

    def test_capture_uses_configured_constraints(self, manager_factory, capture_factory, session):
        manager = manager_factory()
        manager.start_recording(session)

        kwargs = capture_factory.last.kwargs
        assert kwargs["sample_rate"] == 16000
        assert kwargs["channels"] == 1
        assert kwargs["timeslice_seconds"] == 1.0
        assert kwargs["echo_cancellation"] is True
        assert kwargs["noise_suppression"] is True
        assert kwargs["device_index"] is None

    @pytest.mark.parametrize("second_call", ["recording", "paused"])
    def test_start_while_active_is_ignored(self, manager_factory, capture_factory, session, second_call):
        manager = manager_factory()
        manager.start_recording(session)
        if second_call == "paused":
            manager.pause_recording()
        expected = manager.status

        other = RecordingSession(appointment_id="apt-2", patient_id="pat-2", patient_name="Luis")
        assert manager.start_recording(other) is False

        assert manager.status is expected
        assert manager.state.session == session
        assert len(capture_factory.captures) == 1
        assert not capture_factory.last.released

    def test_start_while_processing_is_ignored(self, manager_factory, make_backend, capture_factory, session):
        backend = make_backend(wait_for_release=True)
        manager = manager_factory(backend)
        manager.start_recording(session)
        manager.stop_recording()

        assert manager.start_recording(session) is False
        assert manager.status is RecordingStatus.PROCESSING
        assert len(capture_factory.captures) == 1

        backend.release.set()
        assert manager.wait_for_transcription(5.0)

    def test_start_after_completed_clears_previous_result(self, manager_factory, session):
        manager = manager_factory()
        manager.start_recording(session)
        manager.stop_recording()
        manager.wait_for_transcription(5.0)
        assert manager.status is RecordingStatus.COMPLETED

        assert manager.start_recording(session) is True

        state = manager.state
        assert state.status is RecordingStatus.RECORDING
        assert state.audio_blob is None
        assert state.transcript is None
        assert state.elapsed_time == 0

    def test_start_after_error_is_allowed(self, manager_factory, capture_factory, session):
        manager = manager_factory()
        capture_factory.open_error = DevicePermissionError()
        manager.start_recording(session)
        assert manager.status is RecordingStatus.ERROR

        capture_factory.open_error = None
        assert manager.start_recording(session) is True
        assert manager.state.error is None


@pytest.mark.unit
class TestDeviceErrors:

    def test_permission_denied(self, manager_factory, capture_factory, ticker_factory, session):
        manager = manager_factory()
        capture_factory.open_error = DevicePermissionError()

        assert manager.start_recording(session) is False

        state = manager.state
        assert state.status is RecordingStatus.ERROR
        assert state.error == DevicePermissionError.default_detail
        assert state.session is None
        assert ticker_factory.tickers == []

    def test_overconstrained_resets_device_selection(self, manager_factory, capture_factory, session):
        device_manager = Mock(spec=AudioDeviceManager)
        device_manager.selected_device_index = 3
        manager = manager_factory(device_manager=device_manager)
        capture_factory.open_error = DeviceOverconstrainedError()

        manager.start_recording(session)

        assert capture_factory.last.kwargs["device_index"] == 3
        device_manager.clear_selection.assert_called_once()
        device_manager.enumerate_devices.assert_called_once()
        assert manager.state.error == DeviceOverconstrainedError.default_detail

    def test_permission_error_marks_permission_denied(self, manager_factory, capture_factory, session):
        device_manager = Mock(spec=AudioDeviceManager)
        device_manager.selected_device_index = None
        manager = manager_factory(device_manager=device_manager)
        capture_factory.open_error = DevicePermissionError()

        manager.start_recording(session)

        device_manager.mark_permission_denied.assert_called_once()
        device_manager.clear_selection.assert_not_called()


@pytest.fixture
def live_manager(test_config, mock_pyaudio, ticker_factory, make_backend, publisher):
    """RecordingManager driving the real AudioCapture over mocked PortAudio."""
    backend = make_backend(wait_for_release=True)
    manager = RecordingManager(
        test_config,
        backend,
        ticker_factory=ticker_factory,
        publisher=publisher,
    )
    yield manager
    backend.release.set()
    manager.shutdown(timeout=2.0)


@pytest.mark.unit
class TestPortAudioFailures:
    """PortAudio errors surface as state, never as exceptions."""

    def test_host_error_on_startup(self, live_manager, mock_pyaudio, ticker_factory, session):
        mock_pyaudio['class'].side_effect = OSError(-9999, "Unanticipated host error")

        assert live_manager.start_recording(session) is False

        state = live_manager.state
        assert state.status is RecordingStatus.ERROR
        assert state.error == DeviceError.default_detail
        assert ticker_factory.tickers == []

    def test_stream_error_on_stop_still_finalizes(self, live_manager, mock_pyaudio, ticker_factory, session):
        live_manager.start_recording(session)
        stream_callback = mock_pyaudio['instance'].open.call_args.kwargs['stream_callback']
        stream_callback(b'\x01\x00' * 1024, 1024, None, 0)
        mock_pyaudio['stream'].stop_stream.side_effect = OSError(-9988, "Stream closed")

        audio_blob = live_manager.stop_recording()

        assert audio_blob is not None
        assert audio_blob.duration_seconds == pytest.approx(1024 / 16000)
        assert live_manager.status is RecordingStatus.PROCESSING
        assert ticker_factory.active is None
        mock_pyaudio['stream'].close.assert_called_once()
        mock_pyaudio['instance'].terminate.assert_called_once()

    def test_stream_error_on_pause_and_resume(self, live_manager, mock_pyaudio, session):
        live_manager.start_recording(session)
        mock_pyaudio['stream'].stop_stream.side_effect = OSError(-9988, "Stream closed")
        mock_pyaudio['stream'].start_stream.side_effect = OSError(-9988, "Stream closed")

        assert live_manager.pause_recording() is True
        assert live_manager.status is RecordingStatus.PAUSED

        assert live_manager.resume_recording() is False
        assert live_manager.status is RecordingStatus.PAUSED


@pytest.mark.unit
class TestPauseResume:

    def test_pause_and_resume(self, manager_factory, capture_factory, session):
        manager = manager_factory()
        manager.start_recording(session)

        assert manager.pause_recording() is True
        assert manager.status is RecordingStatus.PAUSED
        assert manager.is_recording_active

        assert manager.resume_recording() is True
        assert manager.status is RecordingStatus.RECORDING

    def test_pause_requires_recording(self, manager_factory, session):
        manager = manager_factory()
        assert manager.pause_recording() is False

        manager.start_recording(session)
        manager.pause_recording()
        assert manager.pause_recording() is False
        assert manager.status is RecordingStatus.PAUSED

    def test_resume_requires_paused(self, manager_factory, session):
        manager = manager_factory()
        assert manager.resume_recording() is False

        manager.start_recording(session)
        assert manager.resume_recording() is False
        assert manager.status is RecordingStatus.RECORDING


@pytest.mark.unit
class TestElapsedTime:

    def test_elapsed_time_only_advances_while_recording(self, manager_factory, ticker_factory, session):
        manager = manager_factory()
        manager.start_recording(session)
        first_ticker = ticker_factory.active

        first_ticker.tick(3)
        assert manager.state.elapsed_time == 3

        manager.pause_recording()
        assert first_ticker.stopped
        paused_at = manager.state.elapsed_time
        # A tick already in flight when the pause happened
        first_ticker.fire()
        assert manager.state.elapsed_time == paused_at

        manager.resume_recording()
        second_ticker = ticker_factory.active
        assert second_ticker is not first_ticker
        second_ticker.tick(2)
        assert manager.state.elapsed_time == 5

        manager.stop_recording()
        assert second_ticker.stopped
        second_ticker.fire()
        assert manager.state.elapsed_time == 5

    def test_stale_ticker_ignored_after_restart(self, manager_factory, ticker_factory, session):
        manager = manager_factory()
        manager.start_recording(session)
        old_ticker = ticker_factory.active
        manager.cancel_recording()

        manager.start_recording(session)
        old_ticker.fire()
        assert manager.state.elapsed_time == 0

        ticker_factory.active.tick()
        assert manager.state.elapsed_time == 1


@pytest.mark.unit
class TestStopRecording:

    def test_stop_finalizes_audio_and_transcribes(self, manager_factory, make_backend, capture_factory, session):
        transcript = DiarizedTranscript(language="es", num_speakers=2, segments=[])
        backend = make_backend(transcript=transcript, wait_for_release=True)
        manager = manager_factory(backend)
        manager.start_recording(session)
        capture = capture_factory.last
        capture.emit(ONE_SECOND)
        capture.pending = ONE_SECOND

        audio_blob = manager.stop_recording()

        assert capture.released and not capture.discarded
        assert audio_blob.duration_seconds == pytest.approx(2.0)
        state = manager.state
        assert state.status is RecordingStatus.PROCESSING
        assert state.audio_blob == audio_blob
        assert state.show_stop_modal is True

        backend.release.set()
        assert manager.wait_for_transcription(5.0)

        state = manager.state
        assert state.status is RecordingStatus.COMPLETED
        assert state.transcript == transcript
        assert backend.calls == [audio_blob]

    def test_no_stop_modal_on_consultation_page(self, manager_factory, session):
        manager = manager_factory()
        manager.set_on_consultation_page(True)
        manager.start_recording(session)
        manager.stop_recording()

        assert manager.state.show_stop_modal is False
        manager.wait_for_transcription(5.0)

    def test_stop_modal_can_be_dismissed(self, manager_factory, session):
        manager = manager_factory()
        manager.start_recording(session)
        manager.stop_recording()
        manager.set_show_stop_modal(False)

        assert manager.state.show_stop_modal is False
        manager.wait_for_transcription(5.0)

    def test_stop_from_paused(self, manager_factory, session):
        manager = manager_factory()
        manager.start_recording(session)
        manager.pause_recording()

        assert manager.stop_recording() is not None
        manager.wait_for_transcription(5.0)
        assert manager.status is RecordingStatus.COMPLETED

    def test_stop_when_idle_is_noop(self, manager_factory):
        manager = manager_factory()
        assert manager.stop_recording() is None
        assert manager.status is RecordingStatus.IDLE

    def test_transcription_failure_keeps_audio(self, manager_factory, make_backend, session):
        backend = make_backend(error=TranscriptionError("Rate limit exceeded. Please try again in a moment."))
        manager = manager_factory(backend)
        manager.start_recording(session)
        audio_blob = manager.stop_recording()

        manager.wait_for_transcription(5.0)

        state = manager.state
        assert state.status is RecordingStatus.ERROR
        assert state.error == "Rate limit exceeded. Please try again in a moment."
        assert state.audio_blob == audio_blob

    def test_transcription_failure_without_message(self, manager_factory, make_backend, session):
        manager = manager_factory(make_backend(error=RuntimeError()))
        manager.start_recording(session)
        manager.stop_recording()

        manager.wait_for_transcription(5.0)

        assert manager.state.error == TRANSCRIPTION_FALLBACK_ERROR

    def test_stop_publishes_notification(self, manager_factory, publisher, session):
        class StopListener:
            def __init__(self):
                self.received = []

            def on_stopped(self, session, audio_blob):
                self.received.append((session, audio_blob))

        listener = StopListener()
        publisher.subscribe_stopped(listener.on_stopped)
        manager = manager_factory()
        manager.start_recording(session)

        audio_blob = manager.stop_recording()

        assert listener.received == [(session, audio_blob)]
        manager.wait_for_transcription(5.0)


@pytest.mark.unit
class TestCancelAndClear:

    def test_cancel_releases_and_discards(self, manager_factory, capture_factory, session):
        manager = manager_factory()
        manager.start_recording(session)
        capture = capture_factory.last
        capture.emit(ONE_SECOND)

        manager.cancel_recording()

        assert capture.released and capture.discarded
        state = manager.state
        assert state.status is RecordingStatus.IDLE
        assert state.session is None
        assert state.audio_blob is None

    def test_clear_ignores_late_transcription(self, manager_factory, make_backend, session):
        backend = make_backend(wait_for_release=True)
        manager = manager_factory(backend)
        manager.start_recording(session)
        manager.stop_recording()

        manager.clear_recording()
        backend.release.set()
        manager.wait_for_transcription(5.0)

        state = manager.state
        assert state.status is RecordingStatus.IDLE
        assert state.transcript is None

    def test_late_result_does_not_touch_new_session(self, manager_factory, make_backend, session):
        backend = make_backend(wait_for_release=True)
        manager = manager_factory(backend)
        manager.start_recording(session)
        manager.stop_recording()
        manager.clear_recording()

        manager.start_recording(session)
        backend.release.set()
        manager.wait_for_transcription(5.0)

        assert manager.status is RecordingStatus.RECORDING

    def test_clear_releases_live_capture(self, manager_factory, capture_factory, session):
        manager = manager_factory()
        manager.start_recording(session)

        manager.clear_recording()

        assert capture_factory.last.released
        assert manager.status is RecordingStatus.IDLE

    def test_chunks_from_cancelled_capture_are_dropped(self, manager_factory, capture_factory, session):
        manager = manager_factory()
        manager.start_recording(session)
        old_capture = capture_factory.last
        manager.cancel_recording()

        manager.start_recording(session)
        old_capture.emit(ONE_SECOND)
        audio_blob = manager.stop_recording()

        assert audio_blob.duration_seconds == 0.0
        manager.wait_for_transcription(5.0)


@pytest.mark.unit
class TestSubscriptionsAndShutdown:

    def test_subscribers_receive_every_change(self, manager_factory, ticker_factory, state_recorder, session):
        manager = manager_factory()
        manager.subscribe(state_recorder.on_state)

        manager.start_recording(session)
        ticker_factory.active.tick()
        manager.pause_recording()
        manager.cancel_recording()

        assert state_recorder.statuses == [
            RecordingStatus.RECORDING,
            RecordingStatus.RECORDING,
            RecordingStatus.PAUSED,
            RecordingStatus.IDLE,
        ]
        assert state_recorder.states[1].elapsed_time == 1

        manager.unsubscribe(state_recorder.on_state)
        manager.start_recording(session)
        assert len(state_recorder.states) == 4

    def test_state_is_a_snapshot(self, manager_factory, session):
        manager = manager_factory()
        snapshot = manager.state
        manager.start_recording(session)

        assert snapshot.status is RecordingStatus.IDLE

    def test_shutdown_releases_capture(self, manager_factory, capture_factory, session):
        manager = manager_factory()
        manager.start_recording(session)

        manager.shutdown(timeout=2.0)
        manager.shutdown(timeout=2.0)

        assert capture_factory.last.released
        assert manager.start_recording(session) is False
