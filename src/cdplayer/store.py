"""
JSON persistence for cd-player.

Two small JSON documents live in ~/.config/cd-player:
  - config.json: {"colimaUser": str, "autoFixSocketPermissions": bool}
  - docker.json: {"pinned": [id], "unpinned": [id]}

Older releases stored pins in two bare JSON arrays (pins.json and
unpinned.json); PinStore migrates them once into docker.json.

Persistence is a convenience cache: every read, parse or write failure is
logged and treated as if the file were absent.
"""

import getpass
import json
import logging
import pwd
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "cd-player"


def current_user() -> str:
    return getpass.getuser()


def user_exists(username: str) -> bool:
    """True if `username` is a local account."""
    try:
        pwd.getpwnam(username)
        return True
    except KeyError:
        return False


def home_for_user(username: str) -> Path:
    """Home directory of a local account, guessed from the platform if unknown."""
    try:
        return Path(pwd.getpwnam(username).pw_dir)
    except KeyError:
        base = "/Users" if sys.platform == "darwin" else "/home"
        return Path(base) / username


def _read_json(path: Path) -> Optional[Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable {path}: {e}")
        return None


def _write_json(path: Path, data: Any) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        return True
    except (OSError, TypeError) as e:
        logger.warning(f"Failed to write {path}: {e}")
        return False


def _string_list(value: Any) -> Optional[List[str]]:
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return value
    return None


class SettingsStore:
    """Configured Colima user and the docker.sock permission-fix flag."""

    DEFAULTS: Dict[str, Any] = {"autoFixSocketPermissions": False}

    def __init__(self, config_dir: Path = CONFIG_DIR):
        self.config_file = Path(config_dir) / "config.json"

    def load(self) -> Dict[str, Any]:
        data = _read_json(self.config_file)
        merged = dict(self.DEFAULTS)
        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(f"Ignoring malformed settings in {self.config_file}")
        return merged

    def save(self, config: Dict[str, Any]) -> None:
        _write_json(self.config_file, config)

    def get_colima_user(self) -> Optional[str]:
        user = self.load().get("colimaUser")
        if isinstance(user, str) and user:
            return user
        return None

    def set_colima_user(self, user: Optional[str]) -> None:
        config = self.load()
        if user:
            config["colimaUser"] = user
        else:
            config.pop("colimaUser", None)
        self.save(config)

    def get_auto_fix_socket_permissions(self) -> bool:
        return self.load().get("autoFixSocketPermissions") is True

    def set_auto_fix_socket_permissions(self, enabled: bool) -> None:
        config = self.load()
        config["autoFixSocketPermissions"] = bool(enabled)
        self.save(config)


class PinStore:
    """Pinned and manually-unpinned container ids, with legacy migration."""

    def __init__(self, config_dir: Path = CONFIG_DIR):
        config_dir = Path(config_dir)
        self.docker_file = config_dir / "docker.json"
        self.legacy_pins_file = config_dir / "pins.json"
        self.legacy_unpinned_file = config_dir / "unpinned.json"

    def load(self) -> Tuple[List[str], List[str]]:
        """Return (pinned, unpinned), migrating legacy files if needed."""
        data = _read_json(self.docker_file)
        if isinstance(data, dict):
            pinned = _string_list(data.get("pinned", []))
            unpinned = _string_list(data.get("unpinned", []))
            if pinned is not None and unpinned is not None:
                return pinned, unpinned
        return self._migrate_legacy()

    def _migrate_legacy(self) -> Tuple[List[str], List[str]]:
        migrated = False
        pinned: List[str] = []
        unpinned: List[str] = []

        legacy_pins = _string_list(_read_json(self.legacy_pins_file))
        if legacy_pins is not None:
            pinned = legacy_pins
            migrated = True

        legacy_unpinned = _string_list(_read_json(self.legacy_unpinned_file))
        if legacy_unpinned is not None:
            unpinned = legacy_unpinned
            migrated = True

        if migrated:
            logger.info(f"Migrating legacy pin files into {self.docker_file}")
            if self.save(pinned, unpinned):
                for legacy in (self.legacy_pins_file, self.legacy_unpinned_file):
                    try:
                        legacy.unlink()
                    except FileNotFoundError:
                        pass
                    except OSError as e:
                        logger.warning(f"Could not remove {legacy}: {e}")
        return pinned, unpinned

    def save(self, pinned: List[str], unpinned) -> bool:
        return _write_json(
            self.docker_file,
            {"pinned": list(pinned), "unpinned": sorted(unpinned)},
        )
