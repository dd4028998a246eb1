"""
State publication and polling for cd-player managers.

Architecture:
  - One owner: the asyncio event loop the managers are used from (the
    Textual app loop in production). All published state is mutated there,
    so no locks are needed.
  - External commands run in worker threads via asyncio.to_thread and their
    results are applied back on the loop when awaited.
  - StateNotifier: listener list plus a version counter bumped on every
    publish, so presenters can re-render only on change.
  - Poller: a slow repeating timer plus an optional fast overlay that
    can self-expire after a ceiling.

Poller Lifecycle:
  - start() schedules the slow loop and an immediate refresh
  - start_fast() replaces any running fast overlay
  - stop_fast() returns to the slow interval
  - stop() cancels both timers and any refresh tasks it spawned
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Set

logger = logging.getLogger(__name__)

SLOW_POLL_INTERVAL = 5.0
FAST_POLL_INTERVAL = 1.0

Listener = Callable[[], None]


class StateNotifier:
    """Observer list for published manager state."""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []
        self._version = 0

    @property
    def version(self) -> int:
        return self._version

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def publish(self) -> None:
        self._version += 1
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.error(f"State listener {listener!r} failed: {e}", exc_info=True)


class Poller:
    """
    Drives a refresh coroutine on a slow interval with an optional fast overlay.

    Each tick spawns an independent refresh task; a slow refresh is still
    issued while the fast overlay is active. on_ceiling runs when a fast
    overlay expires on its own, not when it is stopped.
    """

    def __init__(
        self,
        refresh: Callable[[], Awaitable[None]],
        interval: float = SLOW_POLL_INTERVAL,
        fast_interval: float = FAST_POLL_INTERVAL,
        name: str = "poller",
        on_ceiling: Optional[Callable[[], None]] = None,
    ):
        self._refresh = refresh
        self._on_ceiling = on_ceiling
        self.interval = interval
        self.fast_interval = fast_interval
        self.name = name
        self._slow_task: Optional[asyncio.Task] = None
        self._fast_task: Optional[asyncio.Task] = None
        self._refresh_tasks: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._slow_task is not None and not self._slow_task.done()

    @property
    def fast_active(self) -> bool:
        return self._fast_task is not None and not self._fast_task.done()

    def start(self) -> None:
        if self.running:
            return
        self.trigger()
        self._slow_task = asyncio.get_running_loop().create_task(
            self._loop(self.interval, None), name=f"{self.name}-slow"
        )

    def stop(self) -> None:
        self.stop_fast()
        if self._slow_task is not None:
            self._slow_task.cancel()
            self._slow_task = None
        for task in list(self._refresh_tasks):
            task.cancel()
        self._refresh_tasks.clear()

    def start_fast(self, ceiling: Optional[float] = None) -> None:
        """Poll every fast_interval seconds, optionally for at most `ceiling` seconds."""
        self.stop_fast()
        logger.debug(f"{self.name}: fast polling on (ceiling={ceiling})")
        self._fast_task = asyncio.get_running_loop().create_task(
            self._loop(self.fast_interval, ceiling), name=f"{self.name}-fast"
        )

    def stop_fast(self) -> None:
        if self._fast_task is not None:
            self._fast_task.cancel()
            self._fast_task = None
            logger.debug(f"{self.name}: fast polling off")

    def trigger(self) -> asyncio.Task:
        """Schedule one refresh now."""
        task = asyncio.get_running_loop().create_task(self._run_refresh())
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)
        return task

    async def _run_refresh(self) -> None:
        try:
            await self._refresh()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self.name}: refresh failed: {e}", exc_info=True)

    async def _loop(self, interval: float, ceiling: Optional[float]) -> None:
        loop = asyncio.get_running_loop()
        deadline = None if ceiling is None else loop.time() + ceiling
        while True:
            await asyncio.sleep(interval)
            if deadline is not None and loop.time() >= deadline:
                logger.debug(f"{self.name}: fast polling ceiling reached")
                if self._fast_task is asyncio.current_task():
                    self._fast_task = None
                if self._on_ceiling is not None:
                    self._on_ceiling()
                return
            self.trigger()
