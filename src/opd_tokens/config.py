"""
Configuration for opd-tokens.

Supports configuration via:
1. Environment variables (highest priority)
2. TOML config file (opd-tokens.toml)
3. Default values (lowest priority)

Environment variables:
- OPD_TOKENS_CONFIG_FILE: Path to TOML config file
- OPD_TOKENS_LOCK_TIMEOUT: Seconds to wait for a resource lock ("none" or 0 = no limit)
- OPD_TOKENS_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
- OPD_TOKENS_STRUCTURED_LOGGING: JSON log lines (true/false)

Example opd-tokens.toml:

    [engine]
    lock_timeout = 5.0

    [logging]
    level = "DEBUG"
    structured = false
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # Python < 3.11 fallback

from opd_tokens.core.coordinator import DEFAULT_LOCK_TIMEOUT
from opd_tokens.core.logging_config import configure_logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILES = ("opd-tokens.toml", ".opd-tokens.toml")

_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"true", "1", "yes", "on"}


def _parse_timeout(value: Any) -> Optional[float]:
    """Parse a lock timeout; "none", "" and values <= 0 mean no limit.

    Raises:
        ValueError: If value is not a number or "none"
    """
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() in {"", "none", "null"}:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid lock timeout: {value!r}")
    timeout = float(value)
    return timeout if timeout > 0 else None


@dataclass
class EngineConfig:
    """Engine configuration with support for env vars and TOML overrides.

    Attributes:
        lock_timeout: Default seconds to wait for a resource lock (None = no limit)
        log_level: Level for the opd_tokens logger
        structured_logging: JSON log lines when True, human-readable otherwise
    """

    lock_timeout: Optional[float] = DEFAULT_LOCK_TIMEOUT
    log_level: str = "INFO"
    structured_logging: bool = True

    @classmethod
    def from_env(cls, config_file: Optional[str] = None) -> "EngineConfig":
        """
        Create configuration from environment variables and optional TOML file.

        Priority (highest to lowest):
        1. Environment variables
        2. TOML config file
        3. Default values
        """
        config = cls()

        toml_path = config_file or os.environ.get("OPD_TOKENS_CONFIG_FILE")
        if toml_path:
            config._load_toml(Path(toml_path))
        else:
            for default_path in DEFAULT_CONFIG_FILES:
                if Path(default_path).exists():
                    config._load_toml(Path(default_path))
                    break

        config._load_env()
        return config

    def _load_toml(self, path: Path) -> None:
        """Load configuration from TOML file."""
        if not path.exists():
            logger.warning(f"Config file not found: {path}")
            return

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.error(f"Error loading config file {path}: {e}")
            return

        engine = data.get("engine", {})
        if "lock_timeout" in engine:
            self._set_lock_timeout(engine["lock_timeout"], source=str(path))

        log = data.get("logging", {})
        if "level" in log:
            self._set_log_level(log["level"], source=str(path))
        if "structured" in log:
            self.structured_logging = _parse_bool(log["structured"])

    def _load_env(self) -> None:
        """Load configuration from environment variables."""
        if (timeout := os.environ.get("OPD_TOKENS_LOCK_TIMEOUT")) is not None:
            self._set_lock_timeout(timeout, source="OPD_TOKENS_LOCK_TIMEOUT")

        if level := os.environ.get("OPD_TOKENS_LOG_LEVEL"):
            self._set_log_level(level, source="OPD_TOKENS_LOG_LEVEL")

        if structured := os.environ.get("OPD_TOKENS_STRUCTURED_LOGGING"):
            self.structured_logging = _parse_bool(structured)

    def _set_lock_timeout(self, value: Any, *, source: str) -> None:
        try:
            self.lock_timeout = _parse_timeout(value)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring invalid lock_timeout {value!r} from {source}")

    def _set_log_level(self, value: Any, *, source: str) -> None:
        level = str(value).strip().upper()
        if level not in _VALID_LEVELS:
            logger.warning(f"Ignoring invalid log level {value!r} from {source}")
            return
        self.log_level = level

    def setup_logging(self) -> logging.Logger:
        """Configure the opd_tokens logger from these settings."""
        return configure_logging(
            level=self.log_level,
            format="json" if self.structured_logging else "console",
        )


# Global configuration instance
_config: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = EngineConfig.from_env()
    return _config


def set_config(config: Optional[EngineConfig]) -> None:
    """Set (or with None, reset) the global configuration instance."""
    global _config
    _config = config
