"""Configuration management for cmdwire.

Loads ``settings.yaml`` and environment variables (``.env``) from a
config directory into a Config object. Property getters provide safe
access with defaults; the ``dispatch`` section is validated into a
DispatchSettings model.

Key classes:
    Config: Central configuration manager.

Key functions:
    get_config: Singleton accessor for the global Config instance.
"""

import os
from pathlib import Path
from typing import Optional

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from .exceptions import ConfigurationError
from .models import DispatchSettings

logger = structlog.get_logger("cmdwire.config")

PREFIX_ENV_VAR = "CMDWIRE_PREFIX"


class Config:
    """Central configuration manager for cmdwire.

    Reads are safe from any thread; nothing is mutated after __init__.

    Args:
        config_dir: Directory holding settings.yaml and .env. Defaults
            to ``./config`` relative to the working directory.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        if config_dir is None:
            config_dir = Path.cwd() / "config"
        self.config_dir = Path(config_dir)

        env_file = self.config_dir / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        self.settings = self._load_yaml("settings.yaml")

    def _load_yaml(self, filename: str) -> dict:
        """Load a YAML configuration file."""
        filepath = self.config_dir / filename
        if not filepath.exists():
            return {}
        try:
            with open(filepath, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Cannot parse {filename}: {e}", setting_name=filename
            ) from e
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"{filename} must contain a mapping", setting_name=filename
            )
        return data

    def validate(self):
        """Check settings at startup.

        Logs problems but does not raise; dispatch_settings raises when
        the dispatch section is actually used.
        """
        try:
            self.dispatch_settings
        except ConfigurationError as e:
            logger.error("config_invalid", error=str(e))
        if not isinstance(self.settings.get("logging", {}), dict):
            logger.error("config_invalid_section", key="logging")

    @property
    def dispatch_settings(self) -> DispatchSettings:
        """Validated ``dispatch`` section. Env var CMDWIRE_PREFIX overrides the prefix."""
        section = self.settings.get("dispatch") or {}
        if not isinstance(section, dict):
            raise ConfigurationError(
                "dispatch section must be a mapping", setting_name="dispatch"
            )
        section = dict(section)
        env_prefix = os.environ.get(PREFIX_ENV_VAR)
        if env_prefix:
            section["prefix"] = env_prefix
        try:
            return DispatchSettings.model_validate(section)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid dispatch settings: {e}", setting_name="dispatch"
            ) from e

    @property
    def command_prefix(self) -> str:
        return self.dispatch_settings.prefix

    @property
    def log_dir(self) -> Optional[Path]:
        """Log directory. None means console-only logging."""
        configured = self.settings.get("log_dir")
        if configured:
            return Path(configured).expanduser()
        return None

    @property
    def logging_level(self) -> str:
        """Global log level (default INFO)."""
        log_config = self.settings.get("logging", {})
        return log_config.get("level", "INFO")

    @property
    def logging_subsystem_levels(self) -> dict:
        """Per-subsystem log level overrides. E.g. {"dispatch": "DEBUG"}."""
        log_config = self.settings.get("logging", {})
        return log_config.get("subsystem_levels", {})

    @property
    def logging_max_file_size_mb(self) -> int:
        """Max size per log file in MB before rotation (default 10)."""
        log_config = self.settings.get("logging", {})
        return log_config.get("max_file_size_mb", 10)

    @property
    def logging_backup_count(self) -> int:
        """Number of rotated log files to keep (default 5)."""
        log_config = self.settings.get("logging", {})
        return log_config.get("backup_count", 5)


_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global Config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config() -> None:
    """Drop the global Config instance (for testing)."""
    global _config
    _config = None
