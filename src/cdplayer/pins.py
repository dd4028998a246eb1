"""
Pinned container policy.

Pins are a bounded shortlist of containers shown prominently. Running
containers are pinned automatically; the user can unpin them, and that
choice is remembered for as long as the container keeps running.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from .model import ContainerStatus, DockerContainer

logger = logging.getLogger(__name__)

MAX_PINS = 10

# Least active containers are evicted first.
EVICTION_PRIORITY = (
    ContainerStatus.EXITED,
    ContainerStatus.CREATED,
    ContainerStatus.OTHER,
    ContainerStatus.PAUSED,
    ContainerStatus.RUNNING,
)


def resolve_pin(pin_id: str, containers: Sequence[DockerContainer]) -> Optional[DockerContainer]:
    """Find the first container a pin refers to by id or name."""
    for container in containers:
        if container.matches(pin_id):
            return container
    return None


class PinSet:
    """Ordered pinned ids (oldest first) plus the manually-unpinned ids."""

    def __init__(self, pinned: Optional[Iterable[str]] = None,
                 unpinned: Optional[Iterable[str]] = None, max_pins: int = MAX_PINS):
        self.pinned: List[str] = list(dict.fromkeys(pinned or []))
        self.unpinned = set(unpinned or [])
        self.max_pins = max_pins

    def is_pinned(self, container_id: str) -> bool:
        return container_id in self.pinned

    def covers(self, container: DockerContainer) -> bool:
        """True if the container is pinned by id or by name."""
        return container.id in self.pinned or container.name in self.pinned

    def pin(self, container_id: str, containers: Sequence[DockerContainer] = ()) -> bool:
        """Pin an id, evicting one entry first when at capacity. Returns False if already pinned."""
        if container_id in self.pinned:
            return False
        if len(self.pinned) >= self.max_pins:
            self.evict(containers)
        self.pinned.append(container_id)
        self.unpinned.discard(container_id)
        return True

    def unpin(self, container_id: str) -> None:
        self.pinned = [p for p in self.pinned if p != container_id]
        self.unpinned.add(container_id)

    def evict(self, containers: Sequence[DockerContainer]) -> Optional[str]:
        """
        Remove one pin, preferring the least active container.

        Tiers are scanned in EVICTION_PRIORITY order; within the first tier
        that has a match the oldest pin goes. When no pin resolves to a live
        container the oldest pin is dropped as an orphan.
        """
        candidate = self._eviction_candidate(containers)
        if candidate is None and self.pinned:
            candidate = self.pinned[0]
        if candidate is None:
            return None
        self.pinned.remove(candidate)
        logger.debug(f"Evicted pin {candidate}")
        return candidate

    def _eviction_candidate(self, containers: Sequence[DockerContainer],
                            tiers: Sequence[ContainerStatus] = EVICTION_PRIORITY) -> Optional[str]:
        for target in tiers:
            for pin_id in self.pinned:
                container = resolve_pin(pin_id, containers)
                if container is not None and container.status is target:
                    return pin_id
        return None

    def _auto_pin_victim(self, containers: Sequence[DockerContainer]) -> Optional[str]:
        # Never displace a running pin to make room for another running one,
        # otherwise every pass would rotate the shortlist.
        candidate = self._eviction_candidate(containers, EVICTION_PRIORITY[:-1])
        if candidate is None:
            candidate = next((p for p in self.pinned if resolve_pin(p, containers) is None), None)
        return candidate

    def prune_unpinned(self, containers: Sequence[DockerContainer]) -> bool:
        """Forget manual unpins of containers that are no longer running."""
        running_ids = {c.id for c in containers if c.status is ContainerStatus.RUNNING}
        pruned = self.unpinned & running_ids
        changed = pruned != self.unpinned
        self.unpinned = pruned
        return changed

    def auto_pin(self, containers: Sequence[DockerContainer]) -> bool:
        """
        Pin every eligible running container.

        A full shortlist only makes room by dropping a pin that is not
        running (or no longer exists). Returns True if the pinned or
        unpinned sets changed.
        """
        changed = self.prune_unpinned(containers)
        for container in containers:
            if container.status is not ContainerStatus.RUNNING:
                continue
            if container.id in self.unpinned or self.covers(container):
                continue
            if len(self.pinned) >= self.max_pins:
                victim = self._auto_pin_victim(containers)
                if victim is None:
                    break
                self.pinned.remove(victim)
                logger.debug(f"Evicted pin {victim} for {container.name}")
            self.pin(container.id, containers)
            changed = True
        return changed

    def pinned_containers(self, containers: Sequence[DockerContainer]) -> List[DockerContainer]:
        """Pinned containers that currently exist, sorted by name."""
        resolved = {}
        for pin_id in self.pinned:
            container = resolve_pin(pin_id, containers)
            if container is not None:
                resolved[container.id] = container
        return sorted(resolved.values(), key=lambda c: c.name.casefold())

    def unpinned_running_count(self, containers: Sequence[DockerContainer]) -> int:
        return sum(
            1 for c in containers
            if c.status is ContainerStatus.RUNNING and not self.covers(c)
        )
