"""
Docker CLI wrapper and backend operations.

This module provides a high-level interface to the Docker runtime through
its command-line interface. It covers:
  - Fetching container records (`docker ps -a` one JSON object per line)
  - Probing daemon reachability (`docker info`) and classifying failures
  - Executing container actions (start, stop, pause, unpause)
  - Inspect output, log streaming and interactive shell commands

All methods follow a fail-safe pattern: exceptions are caught and logged,
returning empty/default values to prevent UI crashes.

Key Classes:
  - DockerBackend: stateless apart from the configured Colima user, which
    selects the DOCKER_HOST socket when Colima runs as another account

Error Handling:
  - Missing docker binary → empty container list, unavailable reason
  - Malformed `docker ps` lines → skipped
  - Daemon errors → classified with UNAVAILABLE_PATTERNS
"""

import json
import logging
import shlex
from typing import Dict, List, Optional, Tuple

from .model import ContainerStatus, DockerContainer, UnavailableReason
from .shell import (
    CommandResult,
    LogStream,
    find_binary,
    open_terminal_with_command,
    run_command,
    run_shell_command,
    shell_safe,
)
from .store import current_user, home_for_user

logger = logging.getLogger(__name__)

# Checked in order; the first substring found in `docker info` output wins.
UNAVAILABLE_PATTERNS: Tuple[Tuple[str, UnavailableReason], ...] = (
    ("permission denied", UnavailableReason.PERMISSION_DENIED),
    ("Is the docker daemon running", UnavailableReason.DAEMON_NOT_RUNNING),
    ("Cannot connect", UnavailableReason.DAEMON_NOT_RUNNING),
    ("No such file", UnavailableReason.SOCKET_NOT_FOUND),
    ("no such file", UnavailableReason.SOCKET_NOT_FOUND),
)


def classify_unavailable(output: str) -> UnavailableReason:
    """Map `docker info` error text to an UnavailableReason, UNKNOWN if nothing matches."""
    for needle, reason in UNAVAILABLE_PATTERNS:
        if needle in output:
            return reason
    return UnavailableReason.UNKNOWN


def parse_container_lines(output: str) -> List[DockerContainer]:
    """Parse `docker ps --format '{{json .}}'` output, skipping malformed lines."""
    result = []
    for line in output.splitlines():
        trimmed = line.strip()
        if not trimmed:
            continue
        try:
            data = json.loads(trimmed)
        except json.JSONDecodeError:
            continue
        if not isinstance(data, dict):
            continue
        full_id = str(data.get("ID", "") or "")
        result.append(DockerContainer(
            id=full_id,
            short_id=full_id[:12],
            name=str(data.get("Names", "") or ""),
            image=str(data.get("Image", "") or ""),
            status=ContainerStatus.from_state(str(data.get("State", "") or "")),
            status_text=str(data.get("Status", "") or ""),
            ports=str(data.get("Ports", "") or ""),
            created=str(data.get("CreatedAt", "") or ""),
        ))
    return result


class DockerBackend:
    ACTIONS = ("start", "stop", "pause", "unpause")

    def __init__(self, binary: str = "", configured_user: Optional[str] = None,
                 user: Optional[str] = None):
        self.binary = find_binary("docker", binary)
        self.configured_user = configured_user
        self.current_user = user or current_user()

    @property
    def is_remote_user(self) -> bool:
        """Whether docker runs as a different account than ours."""
        return bool(self.configured_user) and self.configured_user != self.current_user

    def docker_socket_path(self) -> Optional[str]:
        """Socket of the configured user's default Colima profile, if remote."""
        if not self.is_remote_user:
            return None
        return str(home_for_user(self.configured_user) / ".colima" / "default" / "docker.sock")

    def docker_env(self) -> Optional[Dict[str, str]]:
        socket = self.docker_socket_path()
        if socket is None:
            return None
        return {"DOCKER_HOST": f"unix://{socket}"}

    def terminal_command(self, args: str) -> str:
        """Docker command line for an interactive terminal, exporting DOCKER_HOST if needed."""
        socket = self.docker_socket_path()
        if socket is not None:
            return f"DOCKER_HOST=unix://{socket} {self.binary} {args}"
        return f"{self.binary} {args}"

    @shell_safe(default_return=[])
    def fetch_containers(self) -> List[DockerContainer]:
        output = run_shell_command(
            f"{self.binary} ps -a --format '{{{{json .}}}}'", extra_env=self.docker_env()
        )
        return parse_container_lines(output)

    def info(self) -> CommandResult:
        return run_command(f"{self.binary} info 2>&1", extra_env=self.docker_env())

    @shell_safe(default_return=(False, UnavailableReason.UNKNOWN))
    def check_status(self) -> Tuple[bool, UnavailableReason]:
        """Return (available, reason) from a `docker info` probe."""
        result = self.info()
        if result.ok:
            return True, UnavailableReason.NONE
        reason = classify_unavailable(result.output)
        logger.debug(f"Docker unavailable ({reason.value}): {result.output[:200]!r}")
        return False, reason

    # Actions
    @shell_safe(default_return=None)
    def run_action(self, action: str, container_id: str) -> Optional[CommandResult]:
        if action not in self.ACTIONS:
            raise ValueError(f"Unsupported container action: {action}")
        result = run_command(
            f"{self.binary} {action} {shlex.quote(container_id)}", extra_env=self.docker_env()
        )
        if not result.ok:
            logger.warning(f"docker {action} {container_id} failed: {result.output.strip()}")
        return result

    @shell_safe(default_return="")
    def inspect(self, container_id: str) -> str:
        return run_shell_command(
            f"{self.binary} inspect {shlex.quote(container_id)}", extra_env=self.docker_env()
        )

    def logs_command(self, container_id: str, tail: int = 200) -> str:
        return f"{self.binary} logs -f --tail {int(tail)} {shlex.quote(container_id)}"

    def stream_logs(self, container_id: str, handler, tail: int = 200, deliver=None) -> LogStream:
        return LogStream(
            self.logs_command(container_id, tail), handler,
            extra_env=self.docker_env(), deliver=deliver,
        )

    def shell_command(self, container_id: str) -> str:
        return self.terminal_command(f"exec -it {shlex.quote(container_id)} /bin/sh")

    def open_shell(self, container_id: str) -> None:
        open_terminal_with_command(self.shell_command(container_id))
