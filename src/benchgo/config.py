"""
benchgo - Configuration Management

This module handles loading, merging, and managing configuration from
TOML files and environment variables. Supports default values and
runtime configuration updates.
"""

import copy
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

# Python 3.11+ has tomllib built-in, older versions need tomli
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from .constants import (
    CONFIG_FILENAME,
    CONNECT_TIMEOUT,
    DEFAULT_DATA_DIR,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_RSA_KEY_SIZE,
    HANDSHAKE_TIMEOUT,
    IDENTITY_FILENAME,
)
from .errors import ConfigError, ErrorCode


def _toml_string(value: str) -> str:
    """Quote a value as a TOML basic string."""
    # JSON escapes are valid in TOML basic strings; DEL is the one control
    # character JSON leaves bare
    return json.dumps(value, ensure_ascii=False).replace("\x7f", "\\u007f")


# Default configuration dictionary
DEFAULT_CONFIG: Dict[str, Any] = {
    "network": {
        "host": DEFAULT_HOST,
        "port": DEFAULT_PORT,
        "connect_timeout": CONNECT_TIMEOUT,
        "handshake_timeout": HANDSHAKE_TIMEOUT,
        # Empty means "use the address of the local socket"
        "local_address": "",
    },
    "crypto": {
        "rsa_key_size": DEFAULT_RSA_KEY_SIZE,
    },
    "identity": {
        "persist": False,
        "filename": IDENTITY_FILENAME,
    },
    "logging": {
        "level": "INFO",
        "file_logging": True,
        "console_logging": False,
    },
}


class Config:
    """Configuration manager for benchgo.

    Loads configuration from TOML files, merges with defaults,
    and applies environment variable overrides.

    Attributes:
        config_path: Path to the configuration file
        data: Configuration dictionary
    """

    ENV_PREFIX = "BENCHGO"

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file (optional)
                If not provided, uses default location
        """
        if config_path is None:
            data_dir = Path(DEFAULT_DATA_DIR).expanduser()
            config_path = data_dir / CONFIG_FILENAME

        self.config_path = Path(config_path)
        self.data = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file and merge with defaults.

        Returns:
            Merged configuration dictionary

        Raises:
            ConfigError: If configuration loading or parsing fails
        """
        config = copy.deepcopy(DEFAULT_CONFIG)

        if self.config_path.exists():
            try:
                with open(self.config_path, "rb") as f:
                    file_config = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigError(
                    ErrorCode.E704_CONFIG_PARSE_ERROR,
                    f"Failed to parse configuration file: {e}",
                    {"path": str(self.config_path), "error": str(e)},
                ) from e

            config = self._merge_config(config, file_config)

        return self._apply_env_overrides(config)

    def _merge_config(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge override config into base config."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration.

        Environment variables follow the pattern: BENCHGO_SECTION_KEY
        For example: BENCHGO_NETWORK_PORT=9000

        Args:
            config: Base configuration dictionary

        Returns:
            Configuration with environment overrides applied
        """
        for section, settings in config.items():
            if not isinstance(settings, dict):
                continue

            for key, current in settings.items():
                env_var = f"{self.ENV_PREFIX}_{section.upper()}_{key.upper()}"
                env_value = os.environ.get(env_var)
                if env_value is None:
                    continue

                # bool must be checked before int, bool is an int subclass
                try:
                    if isinstance(current, bool):
                        settings[key] = env_value.lower() in ("true", "1", "yes")
                    elif isinstance(current, int):
                        settings[key] = int(env_value)
                    elif isinstance(current, float):
                        settings[key] = float(env_value)
                    else:
                        settings[key] = env_value
                except ValueError as e:
                    raise ConfigError(
                        ErrorCode.E704_CONFIG_PARSE_ERROR,
                        f"Invalid value for {env_var}: {env_value!r}",
                        {"variable": env_var, "value": env_value},
                    ) from e

        return config

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """Get a configuration value.

        Args:
            section: Configuration section name
            key: Configuration key name
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self.data.get(section, {}).get(key, default)

    def set(self, section: str, key: str, value: Any) -> None:
        """Set a configuration value."""
        self.data.setdefault(section, {})[key] = value

    def save(self) -> None:
        """Save current configuration to file.

        Raises:
            ConfigError: If saving fails
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "w", encoding="utf-8") as f:
                self._write_toml(f, self.data)
        except OSError as e:
            raise ConfigError(
                ErrorCode.E702_CONFIG_SAVE_FAILED,
                f"Failed to save configuration: {e}",
                {"path": str(self.config_path), "error": str(e)},
            ) from e

    @staticmethod
    def _write_toml(file, data: Dict[str, Any]) -> None:
        """Write configuration data as TOML format."""
        for section, settings in data.items():
            if not isinstance(settings, dict):
                continue
            file.write(f"[{section}]\n")
            for key, value in settings.items():
                if isinstance(value, bool):
                    file.write(f"{key} = {str(value).lower()}\n")
                elif isinstance(value, (int, float)):
                    file.write(f"{key} = {value}\n")
                elif isinstance(value, str):
                    file.write(f"{key} = {_toml_string(value)}\n")
            file.write("\n")

    def to_dict(self) -> Dict[str, Any]:
        """Get configuration as dictionary."""
        return copy.deepcopy(self.data)

    @classmethod
    def create_example(cls, path: Path) -> None:
        """Create an example configuration file.

        Args:
            path: Path where to create the example config

        Raises:
            ConfigError: If file creation fails
        """
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                f.write("# benchgo configuration file\n")
                f.write(f"# Every key can be overridden with {cls.ENV_PREFIX}_<SECTION>_<KEY>\n\n")
                cls._write_toml(f, DEFAULT_CONFIG)
        except OSError as e:
            raise ConfigError(
                ErrorCode.E702_CONFIG_SAVE_FAILED,
                f"Failed to create example configuration: {e}",
                {"path": str(path), "error": str(e)},
            ) from e
