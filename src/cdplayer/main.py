"""
Entry point for cd-player.

Wires the pieces together:
  1. Load settings.yaml (ConfigManager) and configure logging
  2. Open the JSON stores (SettingsStore, PinStore)
  3. Build ColimaManager and DockerManager around their CLI backends
  4. Run the Textual app, which starts polling on mount and stops it on exit

Logging goes to a rotating file only; the terminal belongs to the UI.
"""

import logging
import logging.handlers
import os
from typing import Optional

from . import get_log_path
from .backend import DockerBackend
from .colima import ColimaBackend, ColimaManager
from .config import ConfigManager, LogConfig
from .docker_manager import DockerManager
from .store import PinStore, SettingsStore
from .textual_app import run

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(log_config: LogConfig) -> str:
    """Configure the root logger with a rotating file handler; returns the log path."""
    path = os.path.expanduser(log_config.file_path) if log_config.file_path else get_log_path()
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=max(1, log_config.max_size_mb) * 1024 * 1024,
        backupCount=max(0, log_config.backup_count),
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)

    level = logging.getLevelName(log_config.level.upper())
    root.setLevel(level if isinstance(level, int) else logging.INFO)
    return path


def build_managers(config_manager: ConfigManager,
                   settings: Optional[SettingsStore] = None,
                   pin_store: Optional[PinStore] = None):
    """Create (ColimaManager, DockerManager) sharing the configured Colima user."""
    settings = settings or SettingsStore()
    pin_store = pin_store or PinStore()
    config = config_manager.get_config()

    colima = ColimaManager(
        settings,
        backend=ColimaBackend(config_manager.get_binary("colima")),
    )
    docker = DockerManager(
        pin_store,
        backend=DockerBackend(
            config_manager.get_binary("docker"),
            configured_user=colima.configured_user,
        ),
        log_tail=config.ui.log_tail,
    )
    return colima, docker


def main() -> None:
    config_manager = ConfigManager()
    log_path = setup_logging(config_manager.get_config().logging)
    logging.info(f"cd-player starting, logging to {log_path}")

    colima, docker = build_managers(config_manager)
    try:
        run(colima, docker, config_manager.get_config().ui)
    except KeyboardInterrupt:
        logging.info("KeyboardInterrupt caught, exiting...")
    logging.info("cd-player stopped")


if __name__ == "__main__":
    main()
