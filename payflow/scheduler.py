"""Cancellable timers keyed by ``(instance_id, node_id)``.

Delays are expressed in hours. ``AsyncioScheduler`` runs each timer as an
asyncio task; ``ManualScheduler`` keeps a virtual clock that only moves when
``advance()`` is awaited, which makes reminder and timeout behaviour
deterministic in tests and simulations.
"""

from __future__ import annotations

import abc
import asyncio
import itertools
import logging
import os
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from .config import PayflowConfig, load_config
from .constants import SECONDS_PER_HOUR

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]
TimerKey = Tuple[str, str]

_sequence = itertools.count()


@dataclass
class TimerHandle:
    """A scheduled callback for one node of one instance."""

    instance_id: str
    node_id: str
    kind: str
    delay_hours: float
    callback: TimerCallback
    repeat: bool = False
    due_at: float = 0.0
    fired: int = 0
    cancelled: bool = False
    seq: int = field(default_factory=lambda: next(_sequence))
    task: Optional[asyncio.Task] = None

    @property
    def key(self) -> TimerKey:
        return (self.instance_id, self.node_id)

    @property
    def repeating(self) -> bool:
        # A repeating timer with no interval would fire forever.
        return self.repeat and self.delay_hours > 0


class BaseScheduler(metaclass=abc.ABCMeta):
    """Keeps track of armed timers and cancels them on request."""

    def __init__(self) -> None:
        self._timers: Dict[TimerKey, List[TimerHandle]] = {}

    @abc.abstractmethod
    def schedule(
        self,
        instance_id: str,
        node_id: str,
        delay_hours: float,
        callback: TimerCallback,
        *,
        repeat: bool = False,
        kind: str = "timer",
    ) -> TimerHandle:
        """Arm ``callback`` to run after ``delay_hours``.

        With ``repeat`` the callback runs again every ``delay_hours`` until
        cancelled.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def _stop(self, handle: TimerHandle) -> None:
        """Backend-specific teardown of a cancelled handle."""
        raise NotImplementedError

    def _register(self, handle: TimerHandle) -> TimerHandle:
        self._timers.setdefault(handle.key, []).append(handle)
        return handle

    def _unregister(self, handle: TimerHandle) -> None:
        handles = self._timers.get(handle.key)
        if not handles:
            return
        if handle in handles:
            handles.remove(handle)
        if not handles:
            del self._timers[handle.key]

    def cancel(self, instance_id: str, node_id: str) -> int:
        """Cancel every timer armed for one node. Returns how many were cancelled."""
        handles = self._timers.pop((instance_id, node_id), [])
        for handle in handles:
            handle.cancelled = True
            self._stop(handle)
        if handles:
            logger.debug(
                f"Cancelled {len(handles)} timer(s) for instance={instance_id} node={node_id}"
            )
        return len(handles)

    def cancel_instance(self, instance_id: str) -> int:
        """Cancel every timer belonging to ``instance_id``."""
        keys = [key for key in self._timers if key[0] == instance_id]
        return sum(self.cancel(*key) for key in keys)

    def pending(self, instance_id: Optional[str] = None) -> List[TimerHandle]:
        handles = [h for group in self._timers.values() for h in group]
        if instance_id is not None:
            handles = [h for h in handles if h.instance_id == instance_id]
        return sorted(handles, key=lambda h: (h.due_at, h.seq))

    async def shutdown(self) -> None:
        """Cancel all outstanding timers."""
        for instance_id in {key[0] for key in self._timers}:
            self.cancel_instance(instance_id)


class AsyncioScheduler(BaseScheduler):
    """Run timers as asyncio tasks on the current event loop."""

    def __init__(self, seconds_per_hour: float = SECONDS_PER_HOUR) -> None:
        super().__init__()
        self.seconds_per_hour = seconds_per_hour

    def schedule(
        self,
        instance_id: str,
        node_id: str,
        delay_hours: float,
        callback: TimerCallback,
        *,
        repeat: bool = False,
        kind: str = "timer",
    ) -> TimerHandle:
        loop = asyncio.get_running_loop()
        delay_hours = max(delay_hours, 0.0)
        handle = TimerHandle(
            instance_id=instance_id,
            node_id=node_id,
            kind=kind,
            delay_hours=delay_hours,
            callback=callback,
            repeat=repeat,
            due_at=loop.time() + delay_hours * self.seconds_per_hour,
        )
        self._register(handle)
        handle.task = loop.create_task(
            self._run(handle), name=f"payflow-{kind}-{instance_id}-{node_id}"
        )
        return handle

    async def _run(self, handle: TimerHandle) -> None:
        delay = handle.delay_hours * self.seconds_per_hour
        while not handle.cancelled:
            await asyncio.sleep(delay)
            if handle.cancelled:
                return
            handle.fired += 1
            if not handle.repeating:
                self._unregister(handle)
            else:
                handle.due_at += delay
            try:
                await handle.callback()
            except Exception:
                logger.exception(
                    f"Timer {handle.kind} failed for instance={handle.instance_id} "
                    f"node={handle.node_id}"
                )
            if not handle.repeating:
                return

    def _stop(self, handle: TimerHandle) -> None:
        task = handle.task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # A callback may cancel its own node's timers; let it run to completion.
        if task is not current:
            task.cancel()


class ManualScheduler(BaseScheduler):
    """Virtual-clock scheduler driven explicitly by ``advance()``."""

    def __init__(self) -> None:
        super().__init__()
        self.now = 0.0

    def schedule(
        self,
        instance_id: str,
        node_id: str,
        delay_hours: float,
        callback: TimerCallback,
        *,
        repeat: bool = False,
        kind: str = "timer",
    ) -> TimerHandle:
        delay_hours = max(delay_hours, 0.0)
        handle = TimerHandle(
            instance_id=instance_id,
            node_id=node_id,
            kind=kind,
            delay_hours=delay_hours,
            callback=callback,
            repeat=repeat,
            due_at=self.now + delay_hours,
        )
        return self._register(handle)

    def _stop(self, handle: TimerHandle) -> None:
        pass

    async def advance(self, hours: float = 0.0) -> int:
        """Move the clock forward, firing due timers in order.

        Timers armed by a callback are eligible within the same call when
        they fall due before the target time. Returns the number of fired
        timers.
        """
        target = self.now + max(hours, 0.0)
        fired = 0
        while True:
            due = [h for h in self.pending() if h.due_at <= target]
            if not due:
                break
            handle = due[0]
            self.now = max(self.now, handle.due_at)
            handle.fired += 1
            if handle.repeating:
                handle.due_at += handle.delay_hours
            else:
                self._unregister(handle)
            fired += 1
            await handle.callback()
        self.now = target
        return fired

    async def run_due(self) -> int:
        """Fire every timer already due without moving the clock."""
        return await self.advance(0.0)


def get_scheduler(
    backend: Optional[str] = None, config: Optional[PayflowConfig] = None
) -> BaseScheduler:
    """Factory function to get the configured scheduler."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("PAYFLOW_SCHEDULER")
        or config.scheduler.backend
    ).lower()

    if backend == "asyncio":
        return AsyncioScheduler(seconds_per_hour=config.scheduler.seconds_per_hour)
    elif backend == "manual":
        return ManualScheduler()
    else:
        raise ValueError(f"Unsupported scheduler backend: {backend}")
