"""Main application entry point for ConsultScribe."""

import sys
import time
import asyncio
import argparse
import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from . import __version__
from .audio.devices import AudioDeviceManager
from .audio.player import PyAudioPlayer
from .config import ConsultScribeConfig, reload_config
from .exceptions import ConsultScribeError
from .models.recording import RecordingSession, RecordingStatus
from .models.validation import ConfidenceThresholds
from .services.context import build_medical_classifier, init_recording_manager
from .storage.file_manager import FileManager
from .ui.review_console import ReviewConsole
from .validation.validator import TranscriptionValidator

logger = logging.getLogger(__name__)


class Server:
    """Wires configuration, storage and services for one CLI command."""

    def __init__(self, config_path: Optional[str] = None, log_level: Optional[str] = None):
        self.config = reload_config(config_path)
        setup_logging(self.config, log_level or self.config.get('logging.level', 'INFO'))
        self.console = Console()
        self.file_manager = FileManager(self.config.get_data_directory())
        self.device_manager = AudioDeviceManager(self.config.get_data_directory())
        self.should_exit = False

    def record(self, session: RecordingSession, duration: Optional[int] = None, review: bool = False) -> int:
        """Record one consultation, wait for its transcript and store everything."""
        manager = init_recording_manager(self.config, self.device_manager)

        if not manager.start_recording(session):
            self.console.print(f"❌ Could not start recording: {manager.state.error}", style="bold red")
            return 1

        self.console.print(f"🔴 Recording consultation {session.appointment_id} "
                           f"({session.patient_name}) - press Ctrl+C to stop", style="bold red")
        try:
            started = time.time()
            while not self.should_exit:
                if duration and time.time() - started >= duration:
                    break
                time.sleep(0.2)
        except KeyboardInterrupt:
            logger.info("Recording stopped by user")

        audio_blob = manager.stop_recording()
        self.console.print(f"⏹️  Stopped after {manager.state.elapsed_time}s "
                           f"({audio_blob.size_bytes if audio_blob else 0} bytes)", style="yellow")

        self.console.print("📝 Transcribing...", style="blue")
        timeout = self.config.get('transcription.timeout_seconds', 600.0)
        manager.wait_for_transcription(timeout + 5)

        state = manager.state
        session_id = self.file_manager.save_recording(session, state)
        manager.clear_recording()
        self.console.print(f"💾 Saved session {session_id}", style="green")

        if state.status is RecordingStatus.ERROR:
            self.console.print(f"❌ {state.error}", style="bold red")
            self.console.print("The audio was kept; you can continue manually.", style="yellow")
            return 1

        if review and state.transcript is not None:
            return self.review(session_id)
        return 0

    def review(self, session_id: str) -> int:
        """Review a stored transcript and save the validated text."""
        transcript = self.file_manager.load_transcript(session_id)
        if transcript is None:
            self.console.print(f"❌ No transcript stored for session {session_id}", style="bold red")
            return 1

        audio_blob = self.file_manager.load_audio(session_id)
        thresholds = ConfidenceThresholds(
            critical=self.config.get('validation.critical_threshold', 0.4),
            warning=self.config.get('validation.warning_threshold', 0.7),
        )
        validator = TranscriptionValidator(
            build_medical_classifier(self.config),
            player=PyAudioPlayer(audio_blob) if audio_blob is not None else None,
            thresholds=thresholds,
            context_seconds=self.config.get('validation.context_seconds', 3.0),
            max_words_per_request=self.config.get('classification.max_words_per_request', 100),
        )

        try:
            self.console.print("🩺 Detecting medical terms...", style="blue")
            asyncio.run(validator.load_transcript(transcript))

            review_console = ReviewConsole(validator, self.console)
            if not review_console.run():
                self.console.print("Review not finished, nothing saved.", style="yellow")
                return 1

            review_console.print_summary()
            self.file_manager.save_validation(session_id, validator.get_final_transcript(),
                                              validator.get_corrections())
            return 0
        finally:
            validator.close()

    def list_devices(self) -> int:
        devices = self.device_manager.enumerate_devices()
        state = self.device_manager.state

        table = Table(title="🎙️  Input devices")
        table.add_column("Index", justify="right")
        table.add_column("Name")
        table.add_column("Channels", justify="right")
        table.add_column("Selected")
        for device in devices:
            table.add_row(str(device.index), device.label, str(device.max_input_channels),
                          "✅" if device.device_id == state.selected_device_id else "")

        self.console.print(table)
        if state.error:
            self.console.print(f"⚠️  {state.error}", style="yellow")
        return 0

    def select_device(self, device_id: str) -> int:
        devices = self.device_manager.enumerate_devices()
        if not any(device.device_id == device_id for device in devices):
            self.console.print(f"❌ Unknown device: {device_id}", style="bold red")
            return 1
        self.device_manager.select_device(device_id)
        self.console.print(f"✅ Selected {device_id}", style="green")
        return 0


def setup_logging(config: ConsultScribeConfig, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/consultscribe.log')
    console_output = config.get('logging.console_output', True)

    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    ))
    handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("ConsultScribe application starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="ConsultScribe - consultation recording and transcript review"
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: looks for consultscribe.yaml)"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config, INFO)"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"ConsultScribe v{__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    record = subparsers.add_parser("record", help="Record a consultation and transcribe it")
    record.add_argument("--appointment-id", required=True)
    record.add_argument("--patient-id", required=True)
    record.add_argument("--patient-name", required=True)
    record.add_argument("--duration", type=int, help="Stop automatically after N seconds")
    record.add_argument("--review", action="store_true", help="Review the transcript right after recording")

    review = subparsers.add_parser("review", help="Review the transcript of a stored session")
    review.add_argument("session_id")

    devices = subparsers.add_parser("devices", help="List input devices")
    devices.add_argument("--select", metavar="DEVICE", help="Remember DEVICE as the preferred microphone")

    return parser


def main(argv=None) -> None:
    """Main entry point for ConsultScribe."""
    args = build_parser().parse_args(argv)

    try:
        server = Server(args.config, args.log_level)
        if args.command == "record":
            session = RecordingSession(
                appointment_id=args.appointment_id,
                patient_id=args.patient_id,
                patient_name=args.patient_name,
            )
            exit_code = server.record(session, args.duration, args.review)
        elif args.command == "review":
            exit_code = server.review(args.session_id)
        elif args.select:
            exit_code = server.select_device(args.select)
        else:
            exit_code = server.list_devices()
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
        exit_code = 130
    except ConsultScribeError as e:
        print(f"❌ Error: {e.detail}")
        logging.error(f"Application error: {e}")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
