"""
Container state engine.

DockerManager owns the published container list, daemon availability, the
pinned shortlist and the set of containers with an action in flight. Every
poll rebuilds the list from `docker ps -a`; when it comes back empty the
daemon is probed so the UI can tell "no containers" from "cannot reach
docker" and say why.

Actions are fire-and-forget: the command runs in a worker thread and fast
polling picks up the outcome. Fast polling expires on its own after
FAST_POLL_CEILING_SECONDS, or earlier once every pending container has
changed status.
"""

import asyncio
import grp
import logging
import os
import pwd
import stat
from typing import Callable, List, Optional, Set, Tuple

from .backend import DockerBackend, classify_unavailable
from .model import DockerContainer, UnavailableReason
from .pins import PinSet
from .shell import LogStream
from .state import Poller, StateNotifier
from .store import PinStore, home_for_user
from .transitions import PendingActions

logger = logging.getLogger(__name__)

FAST_POLL_CEILING_SECONDS = 30.0


def _owner_name(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return "?"


def _group_name(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return "?"


def collect_diagnostics(backend: DockerBackend) -> Tuple[str, str, bool]:
    """
    Check why docker is unreachable for a remote Colima user.

    Returns (title, message, accessible). Runs filesystem checks and a
    `docker info` probe, so call it off the event loop.
    """
    socket = backend.docker_socket_path()
    user = backend.configured_user
    if socket is None or not user:
        return (
            "No Remote User",
            "No remote user configured. Use 'Set User' first.",
            False,
        )

    lines = [
        f"Socket: {socket}",
        f"Configured user: {user}",
        f"Current user: {backend.current_user}",
        "",
    ]

    if not os.path.exists(socket):
        lines += [
            "Socket does not exist.",
            "",
            f"The colima daemon may not be running for user '{user}'.",
        ]
        return "Socket Not Found", "\n".join(lines), False

    try:
        st = os.stat(socket)
        lines.append(
            f"Socket permissions: {stat.S_IMODE(st.st_mode):o} "
            f"(owner: {_owner_name(st.st_uid)}, group: {_group_name(st.st_gid)})"
        )
    except OSError as e:
        logger.debug(f"Cannot stat {socket}: {e}")

    home = home_for_user(user)
    blocked = [
        str(d) for d in (home, home / ".colima", home / ".colima" / "default")
        if not os.access(d, os.X_OK)
    ]
    if blocked:
        lines += ["", "Directories not traversable:"]
        lines += [f"  {d}" for d in blocked]

    output = backend.info().output
    reason = classify_unavailable(output)
    if reason is UnavailableReason.PERMISSION_DENIED:
        lines += [
            "",
            "Permission denied when connecting to socket.",
            "",
            "Ensure the current user has group read/write access to the socket "
            "file, and that parent directories are traversable.",
        ]
        return "Permission Denied", "\n".join(lines), False
    if reason is UnavailableReason.DAEMON_NOT_RUNNING:
        lines += [
            "",
            "Cannot connect to docker daemon.",
            "",
            f"The colima daemon may not be running for user '{user}'.",
        ]
        return "Daemon Not Running", "\n".join(lines), False
    if "Server:" in output:
        lines += ["", "Docker is accessible!"]
        return "Docker Accessible", "\n".join(lines), True
    lines += ["", "Unexpected error:", output[:500]]
    return "Error", "\n".join(lines), False


class DockerManager:
    """Publishes containers and availability, and applies the pin policy."""

    def __init__(
        self,
        pin_store: PinStore,
        backend: Optional[DockerBackend] = None,
        configured_user: Optional[str] = None,
        log_tail: int = 200,
    ):
        self.backend = backend or DockerBackend(configured_user=configured_user)
        self.pin_store = pin_store
        pinned, unpinned = pin_store.load()
        self.pins = PinSet(pinned, unpinned)
        self.pending = PendingActions()
        self.changes = StateNotifier()
        self.poller = Poller(self.refresh, name="docker", on_ceiling=self._expire_pending)
        self.log_tail = log_tail
        self.is_loading = True
        self.is_available = True
        self.unavailable_reason = UnavailableReason.NONE
        self._containers: List[DockerContainer] = []
        self._refresh_seq = 0
        self._applied_seq = 0
        self._tasks: Set[asyncio.Task] = set()

    @property
    def containers(self) -> List[DockerContainer]:
        return self._containers

    @property
    def pinned_containers(self) -> List[DockerContainer]:
        return self.pins.pinned_containers(self._containers)

    @property
    def unpinned_running_count(self) -> int:
        return self.pins.unpinned_running_count(self._containers)

    def is_pinned(self, container_id: str) -> bool:
        return self.pins.is_pinned(container_id)

    def is_pending(self, container_id: str) -> bool:
        return container_id in self.pending

    # Lifecycle
    def start_polling(self) -> None:
        self.poller.start()

    def stop_polling(self) -> None:
        self.poller.stop()

    async def refresh(self) -> None:
        self._refresh_seq += 1
        seq = self._refresh_seq
        containers = await asyncio.to_thread(self.backend.fetch_containers)
        if containers:
            available, reason = True, UnavailableReason.NONE
        else:
            available, reason = await asyncio.to_thread(self.backend.check_status)
        if seq < self._applied_seq:
            logger.debug(f"Dropping stale docker refresh #{seq}")
            return
        self._applied_seq = seq
        self.apply(containers, available, reason)

    def apply(self, containers: List[DockerContainer], available: bool = True,
              reason: UnavailableReason = UnavailableReason.NONE) -> None:
        """Publish one refresh result and run the pin policy over it."""
        previous = {c.id: c.status for c in self._containers}
        cleared = self.pending.resolve(previous, containers)
        if cleared and self.pending.is_empty():
            self.poller.stop_fast()

        if reason is not self.unavailable_reason:
            logger.info(f"Docker availability: {reason.label}")
        self._containers = list(containers)
        self.is_available = available
        self.unavailable_reason = reason
        self.is_loading = False

        if self.pins.auto_pin(self._containers):
            self._save_pins()
        self.changes.publish()

    def _expire_pending(self) -> None:
        if self.pending.is_empty():
            return
        logger.info(f"Giving up on pending actions: {', '.join(self.pending)}")
        self.pending.clear()
        self.changes.publish()

    def _save_pins(self) -> None:
        self.pin_store.save(self.pins.pinned, self.pins.unpinned)

    def _spawn(self, func, *args) -> None:
        task = asyncio.get_running_loop().create_task(asyncio.to_thread(func, *args))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # Actions
    def _run_action(self, action: str, container_id: str) -> None:
        logger.info(f"docker {action} {container_id}")
        self.pending.mark(container_id)
        self._spawn(self.backend.run_action, action, container_id)
        self.poller.start_fast(ceiling=FAST_POLL_CEILING_SECONDS)
        self.changes.publish()

    def start_container(self, container_id: str) -> None:
        self._run_action("start", container_id)

    def stop_container(self, container_id: str) -> None:
        self._run_action("stop", container_id)

    def pause_container(self, container_id: str) -> None:
        self._run_action("pause", container_id)

    def unpause_container(self, container_id: str) -> None:
        self._run_action("unpause", container_id)

    # Pins
    def pin(self, container_id: str) -> None:
        if self.pins.pin(container_id, self._containers):
            self._save_pins()
            self.changes.publish()

    def unpin(self, container_id: str) -> None:
        self.pins.unpin(container_id)
        self._save_pins()
        self.changes.publish()

    def toggle_pin(self, container_id: str) -> None:
        if self.is_pinned(container_id):
            self.unpin(container_id)
        else:
            self.pin(container_id)

    # Remote user
    def update_configured_user(self, user: Optional[str]) -> None:
        self.backend.configured_user = user
        self.poller.trigger()

    async def run_diagnostics(self) -> Tuple[str, str]:
        title, message, accessible = await asyncio.to_thread(collect_diagnostics, self.backend)
        if accessible:
            self.poller.start_fast(ceiling=FAST_POLL_CEILING_SECONDS)
        return title, message

    # Detail views
    async def inspect_container(self, container_id: str) -> str:
        return await asyncio.to_thread(self.backend.inspect, container_id)

    def stream_logs(self, container_id: str, handler: Callable[[str], None]) -> LogStream:
        """Follow a container's logs; chunks are delivered on the running loop."""
        loop = asyncio.get_running_loop()
        return self.backend.stream_logs(
            container_id, handler, tail=self.log_tail, deliver=loop.call_soon_threadsafe
        )

    def open_shell(self, container_id: str) -> None:
        self.backend.open_shell(container_id)

    def terminal_command(self, args: str) -> str:
        return self.backend.terminal_command(args)
