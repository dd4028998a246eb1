"""
Optimistic transition tracking.

When the user starts or stops something, the UI should immediately show
"Starting..." / "Stopping..." and keep showing it until the polled ground
truth confirms the expected outcome. Storing that overlay centrally, keyed by
name, means the published lists can be rebuilt from scratch on every poll
without losing the in-flight state.

Classes:
  - TransitionTracker: dwell-gated overlay with an expected final status
  - PendingActions: edge-triggered pending markers for container actions
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Iterable, Mapping, Optional, Set

# Starting a profile as another user goes through an interactive terminal and
# sudo, which can take seconds before the daemon process even appears.
INSTANCE_MIN_DWELL_SECONDS = 5.0


@dataclass(frozen=True)
class Transition:
    display_status: Any
    expected_status: Any
    start_time: float


class TransitionTracker:
    """Central store of in-flight transitions keyed by profile or container name."""

    def __init__(self, min_dwell: float = 0.0, clock: Callable[[], float] = time.monotonic):
        self.min_dwell = min_dwell
        self._clock = clock
        self._transitions: Dict[Hashable, Transition] = {}

    def begin(self, key: Hashable, display_status: Any, expected_status: Any,
              now: Optional[float] = None) -> None:
        """
        Record a transition, replacing any previous one for `key`.

        Args:
            key: Profile name or container id
            display_status: Status to show while in flight (STARTING, STOPPING)
            expected_status: Observed status that may settle the transition
            now: Start timestamp (defaults to the tracker clock)
        """
        start = self._clock() if now is None else now
        self._transitions[key] = Transition(display_status, expected_status, start)

    def reconcile(self, key: Hashable, observed: Any, now: Optional[float] = None) -> Any:
        """
        Return the status to publish for `key` given the observed status.

        The transition settles (and is removed) only when the observed status
        equals the expected one and the minimum dwell has elapsed.
        """
        transition = self._transitions.get(key)
        if transition is None:
            return observed
        current = self._clock() if now is None else now
        elapsed = current - transition.start_time
        if observed == transition.expected_status and elapsed >= self.min_dwell:
            del self._transitions[key]
            return observed
        return transition.display_status

    def get(self, key: Hashable) -> Optional[Transition]:
        return self._transitions.get(key)

    def clear(self, key: Hashable) -> None:
        """Drop a transition (operation failed or target disappeared)."""
        self._transitions.pop(key, None)

    def is_empty(self) -> bool:
        return not self._transitions

    def __contains__(self, key: Hashable) -> bool:
        return key in self._transitions

    def __len__(self) -> int:
        return len(self._transitions)


class PendingActions:
    """
    Container ids with an action in flight.

    Resolution is edge-triggered: an id stops being pending as soon as a
    refresh observes a status different from the one it had in the previous
    published list. Ids that never change stay pending until clear() is
    called, which the manager does when the fast-poll ceiling expires.
    """

    def __init__(self) -> None:
        self._ids: Set[str] = set()

    def mark(self, container_id: str) -> None:
        self._ids.add(container_id)

    def discard(self, container_id: str) -> None:
        self._ids.discard(container_id)

    def resolve(self, previous: Mapping[str, Any], current: Iterable[Any]) -> Set[str]:
        """
        Clear ids whose status changed between two container lists.

        Args:
            previous: container id -> status before the refresh
            current: containers (with .id and .status) after the refresh

        Returns:
            The ids that were cleared.
        """
        cleared = set()
        for container in current:
            if container.id not in self._ids or container.id not in previous:
                continue
            if previous[container.id] != container.status:
                self._ids.discard(container.id)
                cleared.add(container.id)
        return cleared

    def clear(self) -> None:
        self._ids.clear()

    def is_empty(self) -> bool:
        return not self._ids

    def __contains__(self, container_id: str) -> bool:
        return container_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self):
        return iter(sorted(self._ids))
