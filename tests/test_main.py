import logging
import logging.handlers

import pytest

from cdplayer import get_log_path
from cdplayer.config import ConfigManager, LogConfig
from cdplayer.main import build_managers, setup_logging
from cdplayer.store import PinStore, SettingsStore


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def test_setup_logging_uses_rotating_file(tmp_path, restore_root_logger):
    path = setup_logging(LogConfig(level="debug", file_path=str(tmp_path / "app.log"),
                                   max_size_mb=2, backup_count=3))
    root = logging.getLogger()

    assert path == str(tmp_path / "app.log")
    assert root.level == logging.DEBUG
    handler = root.handlers[0]
    assert isinstance(handler, logging.handlers.RotatingFileHandler)
    assert handler.maxBytes == 2 * 1024 * 1024
    assert handler.backupCount == 3


def test_setup_logging_unknown_level_defaults_to_info(tmp_path, restore_root_logger):
    setup_logging(LogConfig(level="chatty", file_path=str(tmp_path / "app.log")))
    assert logging.getLogger().level == logging.INFO


def test_get_log_path_follows_xdg(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
    assert get_log_path() == str(tmp_path / "cd-player" / "logs" / "cd-player.log")


def test_build_managers_share_configured_user(tmp_path):
    settings = SettingsStore(tmp_path)
    settings.set_colima_user("colima")
    config_manager = ConfigManager(tmp_path)

    colima, docker = build_managers(config_manager, settings, PinStore(tmp_path))

    assert colima.configured_user == "colima"
    assert docker.backend.configured_user == "colima"
    assert docker.log_tail == config_manager.get_config().ui.log_tail
