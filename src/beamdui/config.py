"""
Configuration management for beamdui.

This module provides configuration file support with YAML format,
environment overrides, and default settings.

Features:
- YAML configuration file at ~/.config/beamdui/config.yaml
- Default values with user overrides
- Environment variable overrides for the API connection
- Backend profile selection (direct server API or hosting panel)
- Poll intervals and notification duration
- Log location override

Architecture:
- ConfigManager: Main configuration interface
- Merges user config with defaults
- Provides typed access to settings
- Handles missing/invalid config gracefully

The loaded AppConfig is passed explicitly to the API client and the state
store; nothing here is a process-wide singleton.
"""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)

PROFILES = ("direct", "panel")

ENV_OVERRIDES = {
    'BEAMDUI_API_URL': 'base_url',
    'BEAMDUI_API_TOKEN': 'token',
    'BEAMDUI_PROFILE': 'profile',
    'BEAMDUI_SERVER_ID': 'server_id',
}


class ConfigError(Exception):
    """Raised when the configuration cannot be used to reach the API."""


@dataclass
class ApiConfig:
    """Remote management API connection."""
    base_url: str = ""
    token: str = ""
    profile: str = "direct"  # direct, panel
    server_id: str = ""  # Required by the panel profile
    timeout: float = 10.0  # seconds

    def validate(self) -> None:
        if not self.base_url:
            raise ConfigError("api.base_url is not set")
        if not self.token:
            raise ConfigError("api.token is not set")
        if self.profile not in PROFILES:
            raise ConfigError(f"api.profile must be one of {', '.join(PROFILES)}, got '{self.profile}'")
        if self.profile == "panel" and not self.server_id:
            raise ConfigError("api.server_id is required for the panel profile")


@dataclass
class PollingConfig:
    """Refresh intervals in seconds; 0 fetches once on activation."""
    dashboard_interval: float = 30.0
    players_interval: float = 10.0
    mods_interval: float = 0.0
    settings_interval: float = 0.0
    latest_wins: bool = True  # False reproduces last-completion-wins races


@dataclass
class NotificationConfig:
    duration: float = 3.0  # seconds


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    file_path: Optional[str] = None  # None for default
    max_size_mb: int = 10
    backup_count: int = 5


@dataclass
class AppConfig:
    """Main application configuration."""
    api: ApiConfig = field(default_factory=ApiConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    logging: LogConfig = field(default_factory=LogConfig)


class ConfigManager:
    """Configuration manager with YAML file support."""

    def __init__(self, config_file: Optional[Path] = None,
                 environ: Optional[Mapping[str, str]] = None):
        if config_file is None:
            config_file = Path.home() / ".config" / "beamdui" / "config.yaml"
        self.config_file = Path(config_file)
        self.config_dir = self.config_file.parent
        self._environ = os.environ if environ is None else environ
        self._config: AppConfig = AppConfig()

        self.load_config()

    def load_config(self) -> None:
        """Load configuration from YAML file, then apply environment overrides."""
        try:
            if self.config_file.exists():
                with open(self.config_file, 'r') as f:
                    user_config = yaml.safe_load(f) or {}

                self._config = self._merge_configs(AppConfig(), user_config)
                logger.debug(f"Loaded configuration from {self.config_file}")
            else:
                self.save_config()
                logger.info(f"Created default configuration at {self.config_file}")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load config: {e}, using defaults")
            self._config = AppConfig()

        self._apply_env_overrides()

    def save_config(self) -> None:
        """Save current configuration to YAML file."""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, 'w') as f:
                yaml.dump(self._config_to_dict(self._config), f, default_flow_style=False, indent=2)
            logger.debug(f"Saved configuration to {self.config_file}")
        except OSError as e:
            logger.error(f"Failed to save config: {e}")

    def get_config(self) -> AppConfig:
        """Get current configuration."""
        return self._config

    def _merge_configs(self, default: AppConfig, user: Dict[str, Any]) -> AppConfig:
        """Merge user config with defaults."""
        if not isinstance(user, dict):
            logger.warning(f"Ignoring malformed config in {self.config_file}")
            return default
        for section in ('api', 'polling', 'notifications', 'logging'):
            if isinstance(user.get(section), dict):
                self._merge_dataclass(getattr(default, section), user[section])
        return default

    def _merge_dataclass(self, obj: Any, updates: Dict[str, Any]) -> None:
        """Merge updates into dataclass object."""
        for key, value in updates.items():
            if hasattr(obj, key):
                setattr(obj, key, value)
            else:
                logger.warning(f"Unknown config key '{key}' ignored")

    def _apply_env_overrides(self) -> None:
        for env_name, attr in ENV_OVERRIDES.items():
            value = self._environ.get(env_name)
            if value:
                setattr(self._config.api, attr, value)
                logger.debug(f"api.{attr} overridden from {env_name}")

    def _config_to_dict(self, config: AppConfig) -> Dict[str, Any]:
        """Convert config dataclass to dictionary."""
        return dataclasses.asdict(config)
