"""
App settings for cd-player, read from ~/.config/cd-player/settings.yaml.

Only settings about the app itself live here: log level, log file and
rotation, colima/docker binary overrides and log viewer sizing. Colima user
and pin state are kept in the JSON stores (store.py).

ConfigManager starts from the dataclass defaults and overlays whatever the
file provides. Unknown keys and values of the wrong type are skipped, and a
file that cannot be parsed leaves the defaults in place.
"""

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .store import CONFIG_DIR

logger = logging.getLogger(__name__)


@dataclass
class LogConfig:
    """Log level, file location and rotation."""
    level: str = "INFO"
    file_path: Optional[str] = None  # None for default
    max_size_mb: int = 10
    backup_count: int = 5


@dataclass
class BinaryConfig:
    """Paths to external tools. Empty means search the usual locations."""
    colima: str = ""
    docker: str = ""


@dataclass
class UIConfig:
    """Presenter configuration."""
    log_tail: int = 200
    max_log_lines: int = 1000


@dataclass
class AppConfig:
    """Top-level settings, one section per dataclass."""
    logging: LogConfig = field(default_factory=LogConfig)
    binaries: BinaryConfig = field(default_factory=BinaryConfig)
    ui: UIConfig = field(default_factory=UIConfig)


class ConfigManager:
    """Loads settings.yaml over the defaults and writes it back."""

    SECTIONS = ("logging", "binaries", "ui")

    def __init__(self, config_dir: Path = CONFIG_DIR):
        self.config_dir = Path(config_dir)
        self.config_file = self.config_dir / "settings.yaml"
        self._config: AppConfig = AppConfig()
        self.load_config()

    def load_config(self) -> None:
        """Read settings.yaml, writing a default one on first run."""
        if not self.config_file.exists():
            self._config = AppConfig()
            self.save_config()
            logger.info(f"Wrote default settings to {self.config_file}")
            return
        try:
            self._config = self._merge_configs(AppConfig(), self._read_file())
            logger.debug(f"Loaded settings from {self.config_file}")
        except (OSError, yaml.YAMLError, ValueError) as e:
            logger.error(f"Invalid settings in {self.config_file}: {e}, using defaults")
            self._config = AppConfig()

    def _read_file(self) -> Dict[str, Any]:
        with open(self.config_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError("top level must be a mapping")
        return data

    def save_config(self) -> None:
        """Write the current settings back to settings.yaml."""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.safe_dump(asdict(self._config), f, default_flow_style=False, indent=2)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Could not write {self.config_file}: {e}")

    def get_config(self) -> AppConfig:
        return self._config

    def _merge_configs(self, merged: AppConfig, user: Dict[str, Any]) -> AppConfig:
        for section in self.SECTIONS:
            values = user.get(section)
            if isinstance(values, dict):
                self._merge_dataclass(getattr(merged, section), values)
            elif values is not None:
                logger.warning(f"Settings section '{section}' must be a mapping, ignoring it")
        return merged

    def _merge_dataclass(self, target: Any, values: Dict[str, Any]) -> None:
        """Apply known keys whose type matches the default."""
        for key, value in values.items():
            if not hasattr(target, key):
                logger.debug(f"Ignoring unknown setting: {key}")
                continue
            default = getattr(target, key)
            if default is not None and value is not None and not isinstance(value, type(default)):
                logger.warning(f"Setting '{key}' has the wrong type, keeping {default!r}")
                continue
            setattr(target, key, value)

    def get_binary(self, name: str) -> str:
        """Configured path for 'colima' or 'docker', empty if unset."""
        return getattr(self._config.binaries, name, "") or ""
