"""
Hierarchical configuration management.

Loads configuration from multiple sources with this precedence (highest wins):
    1. Environment variables (PREFIX_SECTION__KEY)
    2. Config file (YAML or JSON)
    3. Built-in defaults

The Config is built once at process start and passed explicitly to
``BucketManager.from_config``; there is no module-level instance.

Usage:
    config = Config(config_file="bucketeer.yaml")

    config.get("remote.backend")          # dot-notation access
    config.get_int("quota.memory_allocated")
"""

import json
import os
from typing import Any

import yaml

from .exceptions import ConfigurationError

_DEFAULT_ENV_PREFIX = "BUCKETEER_"
_DEFAULT_DATA_DIR_NAME = ".bucketeer-data"

DEFAULT_ALLOWED_TYPES = [
    "image/bmp",
    "image/png",
    "image/jpeg",
    "image/jpg",
    "image/gif",
    "image/tiff",
    "text/plain",
    "text/json",
    "application/octet-stream",
]


class Config:
    """
    Central configuration manager.

    Loads and merges configuration from defaults, a config file, and
    environment variables. Env vars use double-underscore to denote nesting:
    BUCKETEER_REMOTE__BACKEND=gcs -> config["remote"]["backend"] = "gcs"
    """

    def __init__(
        self,
        config_file: str | None = None,
        env_prefix: str = _DEFAULT_ENV_PREFIX,
        data_dir: str | None = None,
        defaults: dict[str, Any] | None = None,
    ):
        """
        Args:
            config_file: Path to YAML or JSON configuration file.
            env_prefix: Prefix for environment variable overrides.
            data_dir: Base directory for local blobs, metadata and logs. Defaults to ~/.bucketeer-data.
            defaults: Additional default values to merge (consumer-specific).
        """
        self.config_file = config_file
        self.env_prefix = env_prefix or ""
        self._data_dir = data_dir or os.path.join("~", _DEFAULT_DATA_DIR_NAME)
        self._extra_defaults = defaults or {}
        self.config_data: dict[str, Any] = {}

        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from all sources."""
        self.config_data = self._get_default_config()

        if self._extra_defaults:
            self._update_dict(self.config_data, self._extra_defaults)

        if self.config_file:
            if not os.path.exists(self.config_file):
                raise ConfigurationError(f"Config file not found: {self.config_file}")
            file_config = self._load_file(self.config_file)
            self._update_dict(self.config_data, file_config)

        # Env vars override everything
        self._load_from_env()

    def _get_default_config(self) -> dict[str, Any]:
        data_dir = os.path.expanduser(self._data_dir)
        return {
            "paths": {
                "data_dir": data_dir,
                "blob_dir": os.path.join(data_dir, "blobs"),
                "metadata_dir": os.path.join(data_dir, "metadata"),
                "log_dir": os.path.join(data_dir, "logs"),
            },
            "quota": {
                "memory_allocated": 500_000_000,
                "api_calls_allocated": 20_000,
            },
            "remote": {
                "backend": "local",
                "project_id": "",
                "key_file": "",
                "location": "EU",
                "bucket_prefix": "bucketeer-bucket-",
                "public_base_url": "",
            },
            "metadata": {
                "backend": "json",
            },
            "timeouts": {
                "remote_call": 30.0,
                "metadata_call": 10.0,
                "stream_chunk": 60.0,
            },
            "upload": {
                "allowed_types": list(DEFAULT_ALLOWED_TYPES),
            },
            "download": {
                "chunk_size": 64 * 1024,
                "cache_lifetime": 0,
                "compress_raw_for_gzip": False,
            },
            "logging": {
                "level": "WARNING",
                "file": "",
            },
        }

    @staticmethod
    def _load_file(path: str) -> dict[str, Any]:
        """Load a YAML or JSON config file."""
        ext = os.path.splitext(path)[1].lower()
        with open(path) as f:
            if ext in (".yaml", ".yml"):
                return yaml.safe_load(f) or {}
            elif ext == ".json":
                return json.load(f)
        return {}

    def _update_dict(self, target: dict, source: dict) -> None:
        """Recursively merge source into target."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._update_dict(target[key], value)
            else:
                target[key] = value

    def _load_from_env(self) -> None:
        """Override config values from environment variables."""
        if not self.env_prefix:
            return
        for env_key, env_value in os.environ.items():
            if not env_key.startswith(self.env_prefix):
                continue
            config_key = env_key[len(self.env_prefix) :].lower()
            key_parts = config_key.split("__")

            current = self.config_data
            for part in key_parts[:-1]:
                if part not in current:
                    current[part] = {}
                current = current[part]
            current[key_parts[-1]] = env_value

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get a config value by dot-notation path.

        Args:
            key_path: e.g. "paths.data_dir", "remote.backend"
            default: Returned when key is not found.
        """
        parts = key_path.split(".")
        current = self.config_data
        for part in parts:
            if not isinstance(current, dict) or part not in current:
                return default
            current = current[part]
        return current

    def get_int(self, key_path: str, default: int = 0) -> int:
        """Integer value; env overrides arrive as strings."""
        value = self.get(key_path, default)
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"'{key_path}' must be an integer, got {value!r}") from e

    def get_float(self, key_path: str, default: float = 0.0) -> float:
        value = self.get(key_path, default)
        try:
            return float(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"'{key_path}' must be a number, got {value!r}") from e

    def get_bool(self, key_path: str, default: bool = False) -> bool:
        value = self.get(key_path, default)
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)

    def set(self, key_path: str, value: Any) -> None:
        """Set a config value by dot-notation path, creating intermediate dicts."""
        parts = key_path.split(".")
        current = self.config_data
        for part in parts[:-1]:
            if part not in current:
                current[part] = {}
            current = current[part]
        current[parts[-1]] = value

    def ensure_directories(self) -> None:
        """Create all configured directories if they don't exist."""
        for path_value in self.config_data.get("paths", {}).values():
            if isinstance(path_value, str):
                expanded = os.path.expanduser(path_value)
                os.makedirs(expanded, exist_ok=True)
