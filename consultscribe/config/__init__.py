"""Simple YAML configuration loader for ConsultScribe."""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, Union
import logging

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "consultscribe.yaml"

DEFAULT_CONFIG: Dict[str, Any] = {
    "audio": {
        "sample_rate": 16000,
        "channels": 1,
        "frames_per_buffer": 1024,
        "timeslice_seconds": 1.0,
        "echo_cancellation": True,
        "noise_suppression": True,
    },
    "recording": {
        "tick_interval_seconds": 1.0,
    },
    "transcription": {
        "api_token_env": "REPLICATE_API_TOKEN",
        "base_url": "https://api.replicate.com/v1",
        "model_version": "1495a9cddc83b2203b0d8d3516e38b80fd1572ebc4bc5700ac1da56a9b3ed886",
        "language": "es",
        "num_speakers": 2,
        "group_segments": True,
        "prompt": "",
        "poll_interval_seconds": 1.0,
        "timeout_seconds": 600.0,
    },
    "classification": {
        "api_key_env": "GEMINI_API_KEY",
        "base_url": "https://generativelanguage.googleapis.com/v1beta",
        "model": "gemini-2.5-flash",
        "temperature": 0.1,
        "max_output_tokens": 2048,
        "max_words_per_request": 100,
        "timeout_seconds": 60.0,
    },
    "validation": {
        "warning_threshold": 0.7,
        "critical_threshold": 0.4,
        "context_seconds": 3.0,
    },
    "storage": {
        "data_directory": "data",
    },
    "logging": {
        "level": "INFO",
        "file_path": "data/logs/consultscribe.log",
        "console_output": True,
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def find_config_file(start: Optional[Union[str, Path]] = None) -> Optional[Path]:
    """Look for consultscribe.yaml in start (default cwd) and its parents."""
    directory = (Path(start) if start else Path.cwd()).resolve()
    for candidate_dir in [directory, *directory.parents]:
        candidate = candidate_dir / CONFIG_FILENAME
        if candidate.exists():
            return candidate
    return None


class ConsultScribeConfig:
    """ConsultScribe configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, looks for consultscribe.yaml
                        in current directory and parent directories, then falls back
                        to built-in defaults.
        """
        if config_path is not None:
            self.config_file: Optional[Path] = Path(config_path)
            if not self.config_file.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_file}")
        else:
            self.config_file = find_config_file()

        if self.config_file is None:
            logger.info("No configuration file found, using defaults")
            self.config = copy.deepcopy(DEFAULT_CONFIG)
        else:
            logger.info(f"Loading configuration from: {self.config_file}")
            self.config = self._load_config()

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "ConsultScribeConfig":
        """Build a configuration from an in-memory dict layered over the defaults."""
        instance = cls.__new__(cls)
        instance.config_file = None
        instance.config = _merge(DEFAULT_CONFIG, values)
        return instance

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")

        if not config:
            raise ValueError("Configuration file is empty")

        config = _merge(DEFAULT_CONFIG, config)
        self._resolve_paths(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        data_dir = config['storage']['data_directory']
        if not os.path.isabs(data_dir):
            config['storage']['data_directory'] = str(config_dir / data_dir)

        log_path = config['logging']['file_path']
        if not os.path.isabs(log_path):
            config['logging']['file_path'] = str(config_dir / log_path)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'transcription.language').

        Args:
            key_path: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation."""
        keys = key_path.split('.')
        config_dict = self.config

        for key in keys[:-1]:
            if key not in config_dict:
                config_dict[key] = {}
            config_dict = config_dict[key]

        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_secret(self, env_key_path: str) -> str:
        """Read an API token from the environment variable named at env_key_path.

        Raises:
            ConfigurationError: if the variable is unset or empty
        """
        env_name = self.get(env_key_path)
        if not env_name:
            raise ConfigurationError(f"'{env_key_path}' is not configured")

        secret = os.environ.get(env_name)
        if not secret:
            raise ConfigurationError(f"{env_name} not found in environment variables")
        return secret

    def get_data_directory(self) -> str:
        """Get data directory path."""
        data_dir = self.get('storage.data_directory', 'data')
        return str(Path(data_dir).absolute())


_config: Optional[ConsultScribeConfig] = None


def get_config() -> ConsultScribeConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = ConsultScribeConfig()
    return _config


def reload_config(config_path: Optional[str] = None) -> ConsultScribeConfig:
    """Replace the process-wide configuration with one loaded from config_path."""
    global _config
    _config = ConsultScribeConfig(config_path)
    return _config
