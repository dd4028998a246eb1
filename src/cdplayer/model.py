"""
Data models for cd-player state.

This module defines the dataclasses and enums that represent Colima profiles
and Docker containers as the engine sees them. Used throughout the app for:
  - Type safety between managers and the presenter
  - Clear separation of data (models) from logic (managers/backends)
  - Pure derived display fields (sort age, short status, ports)

Data Classes:
  - ColimaInstance: Colima profile (name, status, resource hints)
  - DockerContainer: Docker container record from `docker ps`

Enums:
  - ColimaStatus: Running/Stopped plus the transitional Starting/Stopping
  - ContainerStatus: running, paused, exited, created, other
  - UnavailableReason: why the Docker runtime could not be reached

Key Fields:
  - Resource hints (cpu/memory/disk) come from the profile config, never
    from live state
  - DockerContainer.status_text is the free-form runtime string used for
    "age" sorting and short status display
"""

import re
import sys
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional


class ColimaStatus(Enum):
    RUNNING = "Running"
    STOPPED = "Stopped"
    STARTING = "Starting..."
    STOPPING = "Stopping..."
    UNKNOWN = "Unknown"

    @property
    def is_running(self) -> bool:
        return self is ColimaStatus.RUNNING

    @property
    def is_stopped(self) -> bool:
        return self in (ColimaStatus.STOPPED, ColimaStatus.UNKNOWN)

    @property
    def is_transitioning(self) -> bool:
        return self in (ColimaStatus.STARTING, ColimaStatus.STOPPING)


@dataclass(frozen=True)
class ColimaInstance:
    id: str
    name: str
    status: ColimaStatus
    cpu: Optional[int] = None
    memory: Optional[int] = None  # GiB
    disk: Optional[int] = None  # GiB

    @property
    def status_lines(self) -> List[str]:
        """Status and resource lines for menu display."""
        lines = [f"Status: {self.status.value}"]
        if self.cpu is not None:
            lines.append(f"CPUs: {self.cpu}")
        if self.memory is not None:
            lines.append(f"Memory: {self.memory} GB")
        if self.disk is not None:
            lines.append(f"Disk: {self.disk} GB")
        return lines


class ContainerStatus(Enum):
    RUNNING = "running"
    PAUSED = "paused"
    EXITED = "exited"
    CREATED = "created"
    OTHER = "other"

    @classmethod
    def from_state(cls, state: str) -> "ContainerStatus":
        """Parse the runtime State field, defaulting to OTHER."""
        try:
            return cls((state or "").lower())
        except ValueError:
            return cls.OTHER

    @property
    def icon(self) -> str:
        if self is ContainerStatus.RUNNING:
            return "●"
        if self is ContainerStatus.PAUSED:
            return "◐"
        return "○"


class UnavailableReason(Enum):
    NONE = "none"
    PERMISSION_DENIED = "permission_denied"
    DAEMON_NOT_RUNNING = "daemon_not_running"
    SOCKET_NOT_FOUND = "socket_not_found"
    UNKNOWN = "unknown"

    @property
    def label(self) -> str:
        return _UNAVAILABLE_LABELS[self]


_UNAVAILABLE_LABELS = {
    UnavailableReason.NONE: "Docker available",
    UnavailableReason.PERMISSION_DENIED: "Docker: permission denied",
    UnavailableReason.DAEMON_NOT_RUNNING: "Docker: daemon not running",
    UnavailableReason.SOCKET_NOT_FOUND: "Docker: socket not found",
    UnavailableReason.UNKNOWN: "Docker unavailable",
}

UNIT_SECONDS = {
    "second": 1,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
    "week": 604800,
    "month": 2592000,
    "year": 31536000,
}

# Sorts after every parsable age.
UNPARSABLE_AGE = sys.float_info.max

_AGE_RE = re.compile(r"(\d+)\s*(second|minute|hour|day|week|month|year)s?")
_PAREN_RE = re.compile(r" \(([^)]+)\)")
_EXITED_RE = re.compile(r"^Exited \(\d+\) ")


@dataclass(frozen=True)
class DockerContainer:
    id: str
    short_id: str
    name: str
    image: str
    status: ContainerStatus
    status_text: str = ""
    ports: str = ""
    created: str = ""

    @property
    def display_label(self) -> str:
        return self.name

    @property
    def sortable_seconds(self) -> float:
        return sortable_seconds(self.status_text, self.status)

    @property
    def short_status(self) -> str:
        return short_status(self.status_text)

    @property
    def short_ports_display(self) -> str:
        """First port for compact display, with ellipsis if more."""
        parsed = parse_ports(self.ports)
        if not parsed:
            return "—"
        if len(parsed) == 1:
            return parsed[0]
        return f"{parsed[0]} ..."

    @property
    def full_ports_display(self) -> str:
        parsed = parse_ports(self.ports)
        return ", ".join(parsed) if parsed else "—"

    def matches(self, pin_id: str) -> bool:
        """True if a pin record refers to this container by id or name."""
        return self.id == pin_id or self.name == pin_id


def sortable_seconds(status_text: str, status: ContainerStatus) -> float:
    """
    Approximate age in seconds from the runtime status line.

    Smaller means more recent and sorts first ascending. Non-running
    containers get one extra second so they sort after running containers
    of the same age. Unparsable text returns UNPARSABLE_AGE.

    Examples:
        "Up About a minute"      -> 60
        "Up 3 weeks"             -> 1814400
        "Exited (0) 2 hours ago" -> 7201
    """
    text = (status_text or "").lower()
    bonus = 0.0 if status is ContainerStatus.RUNNING else 1.0
    match = _AGE_RE.search(text)
    if not match:
        if "about a minute" in text or "about an hour" in text:
            return (60.0 if "minute" in text else 3600.0) + bonus
        return UNPARSABLE_AGE
    return int(match.group(1)) * UNIT_SECONDS[match.group(2)] + bonus


def short_status(status_text: str) -> str:
    """
    Shortened status for table display.

    "Up About a minute (healthy)" -> "1 minute, healthy"
    "Exited (0) 3 weeks ago"      -> "(3 weeks ago)"
    """
    text = status_text or ""
    if text.startswith("Up "):
        text = text[3:]
        text = text.replace("About a ", "1 ").replace("About an ", "1 ")
        match = _PAREN_RE.search(text)
        if match:
            text = f"{text[:match.start()]}, {match.group(1)}"
        return text
    match = _EXITED_RE.match(text)
    if match:
        return f"({text[match.end():]})"
    return text


def parse_ports(raw: str) -> List[str]:
    """
    Parse port mappings from the raw `docker ps` Ports string.

    Input:  "0.0.0.0:9243->443/tcp, :::9243->443/tcp, 0.0.0.0:5432->5432/tcp"
    Output: ["9243->443", "5432->5432"]

    Only tcp mappings are kept, address prefixes are stripped and duplicates
    across address families collapse into the first occurrence.
    """
    if not raw:
        return []
    seen = set()
    result = []
    for part in raw.split(", "):
        trimmed = part.strip()
        if not trimmed.endswith("/tcp"):
            continue
        arrow = trimmed[:-len("/tcp")].split("->")
        if len(arrow) != 2:
            continue
        host_part, container_port = arrow
        host_port = host_part.rsplit(":", 1)[-1]
        short = f"{host_port}->{container_port}"
        if short not in seen:
            seen.add(short)
            result.append(short)
    return result
