"""Audio input device enumeration, selection and preference persistence."""

import logging
import threading
from dataclasses import replace
from pathlib import Path
from typing import Callable, List, Optional

import pyaudio
import yaml

from ..models.audio import AudioDevice, AudioDeviceState, PermissionStatus

logger = logging.getLogger(__name__)

PREFERENCES_FILENAME = "preferences.yaml"
PREFERRED_DEVICE_KEY = "preferred_audio_device"


class AudioDeviceManager:
    """Keeps track of the available microphones and the user's preferred one."""

    def __init__(self, data_dir: str, pyaudio_factory: Callable[[], pyaudio.PyAudio] = None):
        """Initialize device manager.

        Args:
            data_dir: Directory where the device preference is stored
            pyaudio_factory: Creates PyAudio instances (defaults to pyaudio.PyAudio)
        """
        self.preferences_file = Path(data_dir) / PREFERENCES_FILENAME
        self._pyaudio_factory = pyaudio_factory or pyaudio.PyAudio
        self._state = AudioDeviceState()
        self._lock = threading.Lock()

    @property
    def state(self) -> AudioDeviceState:
        with self._lock:
            return replace(self._state, devices=list(self._state.devices))

    @property
    def selected_device_index(self) -> Optional[int]:
        """PortAudio index of the selected device, None for the system default."""
        with self._lock:
            for device in self._state.devices:
                if device.device_id == self._state.selected_device_id:
                    return device.index
        return None

    def enumerate_devices(self) -> List[AudioDevice]:
        """Refresh the list of input devices and reconcile the saved preference."""
        with self._lock:
            self._state.is_enumerating = True
            self._state.error = None

        try:
            devices = self._list_input_devices()
        except OSError as e:
            logger.error(f"Error enumerating audio devices: {e}")
            with self._lock:
                self._state.is_enumerating = False
                self._state.error = "Error listing audio devices"
            return []

        saved_device_id = self._load_preference()
        device_exists = any(d.device_id == saved_device_id for d in devices)
        if device_exists:
            selected_id = saved_device_id
        else:
            selected_id = devices[0].device_id if devices else None

        with self._lock:
            self._state.devices = devices
            self._state.selected_device_id = selected_id
            self._state.is_enumerating = False
            # granted/denied are only changed by an explicit access check
            if self._state.permission_status in (PermissionStatus.UNKNOWN, PermissionStatus.PROMPT):
                self._state.permission_status = PermissionStatus.PROMPT if devices else PermissionStatus.UNKNOWN

        if saved_device_id and not device_exists:
            logger.info(f"Saved audio device '{saved_device_id}' no longer available")
            self._save_preference(None)

        logger.info(f"Found {len(devices)} audio input device(s), selected: {selected_id}")
        return devices

    def _list_input_devices(self) -> List[AudioDevice]:
        pa = self._pyaudio_factory()
        try:
            devices = []
            for index in range(pa.get_device_count()):
                info = pa.get_device_info_by_index(index)
                max_inputs = int(info.get('maxInputChannels', 0))
                if max_inputs <= 0:
                    continue
                name = str(info.get('name') or '').strip()
                label = name or f"Microphone {len(devices) + 1}"
                devices.append(AudioDevice(
                    device_id=label,
                    index=index,
                    label=label,
                    host_api=int(info.get('hostApi', 0)),
                    max_input_channels=max_inputs,
                ))
            return devices
        finally:
            pa.terminate()

    def select_device(self, device_id: str) -> None:
        """Select a device and persist the choice."""
        with self._lock:
            self._state.selected_device_id = device_id
        self._save_preference(device_id)
        logger.info(f"Selected audio device: {device_id}")

    def clear_selection(self) -> None:
        """Forget the selected device (e.g. after it stopped satisfying constraints)."""
        with self._lock:
            self._state.selected_device_id = None
        self._save_preference(None)

    def mark_permission_denied(self) -> None:
        with self._lock:
            self._state.permission_status = PermissionStatus.DENIED

    def request_permission(self) -> bool:
        """Open and immediately close an input stream to verify access."""
        device_index = self.selected_device_index
        pa = self._pyaudio_factory()
        try:
            stream = pa.open(
                format=pyaudio.paInt16,
                channels=1,
                rate=16000,
                input=True,
                input_device_index=device_index,
                frames_per_buffer=1024,
            )
            stream.close()
        except OSError as e:
            logger.warning(f"Microphone access check failed: {e}")
            with self._lock:
                self._state.permission_status = PermissionStatus.DENIED
                self._state.error = "Microphone permission denied. Enable it in the system settings."
            return False
        finally:
            pa.terminate()

        with self._lock:
            self._state.permission_status = PermissionStatus.GRANTED
        self.enumerate_devices()
        return True

    def clear_error(self) -> None:
        with self._lock:
            self._state.error = None

    def _load_preference(self) -> Optional[str]:
        if not self.preferences_file.exists():
            return None
        try:
            with open(self.preferences_file, 'r', encoding='utf-8') as f:
                preferences = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not read device preference: {e}")
            return None
        return preferences.get(PREFERRED_DEVICE_KEY)

    def _save_preference(self, device_id: Optional[str]) -> None:
        try:
            self.preferences_file.parent.mkdir(parents=True, exist_ok=True)
            preferences = {}
            if self.preferences_file.exists():
                with open(self.preferences_file, 'r', encoding='utf-8') as f:
                    preferences = yaml.safe_load(f) or {}
            if device_id is None:
                preferences.pop(PREFERRED_DEVICE_KEY, None)
            else:
                preferences[PREFERRED_DEVICE_KEY] = device_id
            with open(self.preferences_file, 'w', encoding='utf-8') as f:
                yaml.safe_dump(preferences, f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not store device preference: {e}")
