"""
Colima profile discovery and lifecycle.

Ground truth for profiles comes from two places:
  - the profile directories under ~/.colima of the effective user, each
    with a colima.yaml holding resource hints (cpu, memory, disk)
  - the OS process list, where every running profile has a
    `colima daemon start <profile>` process

ColimaManager merges both into the published instance list on every poll
and overlays in-flight Starting/Stopping transitions so the UI does not
flip back to "Stopped" while a start is still being dispatched.

Dispatch:
  - Same user: run `colima start|stop -p <profile>` without waiting; the
    poller observes the result
  - Other user: open a terminal running the command through `sudo -Hu`,
    optionally followed by a chmod on the profile's docker.sock
"""

import asyncio
import logging
import shlex
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set

import yaml

from .model import ColimaInstance, ColimaStatus
from .shell import find_binary, launch_detached, open_terminal_with_command, run_shell_command, shell_safe
from .state import Poller, StateNotifier
from .store import SettingsStore, current_user, home_for_user, user_exists
from .transitions import INSTANCE_MIN_DWELL_SECONDS, TransitionTracker

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = "default"
PROCESS_MARKER = "colima daemon start "
PS_COMMAND = "ps aux | grep 'colima daemon start' | grep -v grep"


@dataclass(frozen=True)
class ProfileConfig:
    name: str
    cpu: Optional[int] = None
    memory: Optional[int] = None
    disk: Optional[int] = None


def _int_hint(data: dict, key: str) -> Optional[int]:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def read_profile_config(name: str, config_file: Path) -> ProfileConfig:
    """Read resource hints from a profile's colima.yaml; unreadable files give no hints."""
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.debug(f"Could not read {config_file}: {e}")
        return ProfileConfig(name)
    if not isinstance(data, dict):
        return ProfileConfig(name)
    return ProfileConfig(
        name=name,
        cpu=_int_hint(data, "cpu"),
        memory=_int_hint(data, "memory"),
        disk=_int_hint(data, "disk"),
    )


def scan_profiles(colima_home: Path) -> List[ProfileConfig]:
    """List declared profiles under a Colima home directory."""
    try:
        entries = sorted(Path(colima_home).iterdir())
    except OSError as e:
        logger.debug(f"Cannot list {colima_home}: {e}")
        return []

    profiles = []
    for entry in entries:
        if entry.name.startswith((".", "_")):
            continue
        config_file = entry / "colima.yaml"
        try:
            if not (entry.is_dir() and config_file.is_file()):
                continue
        except OSError as e:
            logger.debug(f"Skipping profile {entry.name}: {e}")
            continue
        profiles.append(read_profile_config(entry.name, config_file))
    return profiles


def parse_running_profiles(ps_output: str) -> Set[str]:
    """Profile names of running `colima daemon start <profile>` processes."""
    running = set()
    for line in ps_output.splitlines():
        idx = line.find(PROCESS_MARKER)
        if idx < 0:
            continue
        tokens = line[idx + len(PROCESS_MARKER):].split()
        if tokens and not tokens[0].startswith("-"):
            running.add(tokens[0])
    return running


def sort_instances(instances: Iterable[ColimaInstance]) -> List[ColimaInstance]:
    """'default' first, then ordinal by name."""
    return sorted(instances, key=lambda i: (i.name != DEFAULT_PROFILE, i.name))


def merge_instances(profiles: Iterable[ProfileConfig], running: Set[str]) -> List[ColimaInstance]:
    by_name = {}
    for config in profiles:
        status = ColimaStatus.RUNNING if config.name in running else ColimaStatus.STOPPED
        by_name[config.name] = ColimaInstance(
            id=config.name,
            name=config.name,
            status=status,
            cpu=config.cpu,
            memory=config.memory,
            disk=config.disk,
        )
    # Running profiles whose directory is missing or unreadable
    for name in running:
        if name not in by_name:
            by_name[name] = ColimaInstance(id=name, name=name, status=ColimaStatus.RUNNING)
    return sort_instances(by_name.values())


class ColimaBackend:
    """Filesystem, process-list and command access for Colima."""

    def __init__(self, binary: str = ""):
        self.binary = find_binary("colima", binary)

    def colima_home(self, user: str) -> Path:
        return home_for_user(user) / ".colima"

    def socket_path(self, user: str, profile: str) -> Path:
        return self.colima_home(user) / profile / "docker.sock"

    @shell_safe(default_return=[])
    def profiles(self, user: str) -> List[ProfileConfig]:
        return scan_profiles(self.colima_home(user))

    @shell_safe(default_return=set())
    def running_profiles(self) -> Set[str]:
        return parse_running_profiles(run_shell_command(PS_COMMAND))

    def run_directly(self, args: List[str]) -> None:
        logger.info(f"Running {self.binary} {' '.join(args)}")
        launch_detached([self.binary, *args])

    def open_terminal(self, command: str) -> None:
        open_terminal_with_command(command)


class ColimaManager:
    """Publishes the Colima instance list and drives start/stop transitions."""

    def __init__(
        self,
        settings: SettingsStore,
        backend: Optional[ColimaBackend] = None,
        clock: Callable[[], float] = time.monotonic,
        user: Optional[str] = None,
    ):
        self.settings = settings
        self.backend = backend or ColimaBackend()
        self.current_user = user or current_user()
        self.configured_user: Optional[str] = settings.get_colima_user()
        self.transitions = TransitionTracker(INSTANCE_MIN_DWELL_SECONDS, clock)
        self.changes = StateNotifier()
        self.poller = Poller(self.refresh, name="colima")
        self.is_loading = True
        self._instances: List[ColimaInstance] = []
        self._refresh_seq = 0
        self._applied_seq = 0
        self._tasks: Set[asyncio.Task] = set()

    @property
    def instances(self) -> List[ColimaInstance]:
        return self._instances

    @property
    def has_running_instance(self) -> bool:
        return any(i.status.is_running for i in self._instances)

    @property
    def has_only_default_profile(self) -> bool:
        return len(self._instances) == 1 and self._instances[0].name == DEFAULT_PROFILE

    @property
    def effective_user(self) -> str:
        return self.configured_user or self.current_user

    @property
    def needs_sudo(self) -> bool:
        return self.configured_user is not None and self.configured_user != self.current_user

    @property
    def auto_fix_socket_permissions(self) -> bool:
        return self.settings.get_auto_fix_socket_permissions()

    # Lifecycle
    def start_polling(self) -> None:
        self.poller.start()

    def stop_polling(self) -> None:
        self.poller.stop()

    async def refresh(self) -> None:
        self._refresh_seq += 1
        seq = self._refresh_seq
        user = self.effective_user
        profiles, running = await asyncio.gather(
            asyncio.to_thread(self.backend.profiles, user),
            asyncio.to_thread(self.backend.running_profiles),
        )
        if seq < self._applied_seq:
            logger.debug(f"Dropping stale colima refresh #{seq}")
            return
        self._applied_seq = seq
        self._publish(self.apply_transitions(merge_instances(profiles, running)))

    def apply_transitions(self, instances: List[ColimaInstance],
                          now: Optional[float] = None) -> List[ColimaInstance]:
        """Overlay in-flight statuses, keeping resource hints from the observed record."""
        result = []
        for instance in instances:
            status = self.transitions.reconcile(instance.name, instance.status, now)
            result.append(instance if status == instance.status else replace(instance, status=status))
        if self.transitions.is_empty():
            self.poller.stop_fast()
        return result

    def _publish(self, instances: List[ColimaInstance]) -> None:
        self._instances = instances
        self.is_loading = False
        self.changes.publish()

    def _patch_status(self, profile: str, status: ColimaStatus) -> None:
        """Show the transitional status right away, ahead of the next poll."""
        if not any(i.name == profile for i in self._instances):
            return
        self._publish([
            replace(i, status=status) if i.name == profile else i
            for i in self._instances
        ])

    def _spawn(self, func, *args) -> None:
        task = asyncio.get_running_loop().create_task(asyncio.to_thread(func, *args))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # Actions
    def start_instance(self, profile: str) -> None:
        logger.info(f"Starting colima profile {profile}")
        self.transitions.begin(profile, ColimaStatus.STARTING, ColimaStatus.RUNNING)
        self._patch_status(profile, ColimaStatus.STARTING)
        self.poller.start_fast()
        if self.needs_sudo:
            self._spawn(self.backend.open_terminal, self.start_command(profile))
        else:
            self._spawn(self.backend.run_directly, ["start", "-p", profile])

    def stop_instance(self, profile: str) -> None:
        logger.info(f"Stopping colima profile {profile}")
        self.transitions.begin(profile, ColimaStatus.STOPPING, ColimaStatus.STOPPED)
        self._patch_status(profile, ColimaStatus.STOPPING)
        self.poller.start_fast()
        if self.needs_sudo:
            self._spawn(self.backend.open_terminal, self.stop_command(profile))
        else:
            self._spawn(self.backend.run_directly, ["stop", "-p", profile])

    def _colima_command(self, args: str) -> str:
        if self.configured_user:
            return f"sudo -Hu {shlex.quote(self.configured_user)} {self.backend.binary} {args}"
        return f"{self.backend.binary} {args}"

    def start_command(self, profile: str) -> str:
        """Terminal command starting a profile, chained with the socket chmod when enabled."""
        command = self._colima_command(f"start -p {shlex.quote(profile)}")
        if self.configured_user and self.auto_fix_socket_permissions:
            socket = self.backend.socket_path(self.configured_user, profile)
            command = (
                f"{command} && sudo chmod g+rw {shlex.quote(str(socket))}"
                " && echo 'Socket permissions updated.'"
            )
        return command

    def stop_command(self, profile: str) -> str:
        return self._colima_command(f"stop -p {shlex.quote(profile)}")

    # Settings
    def set_colima_user(self, user: Optional[str]) -> Optional[str]:
        """
        Set the account that owns Colima.

        Returns an error message if the account does not exist, leaving the
        current setting unchanged. An empty value clears the setting.
        """
        user = (user or "").strip() or None
        if user is not None and not user_exists(user):
            return f"User '{user}' does not exist"
        self.settings.set_colima_user(user)
        self.configured_user = user
        logger.info(f"Colima user set to {user or '(current user)'}")
        self.changes.publish()
        self.poller.trigger()
        return None

    def set_auto_fix_socket_permissions(self, enabled: bool) -> None:
        self.settings.set_auto_fix_socket_permissions(enabled)
        self.changes.publish()
