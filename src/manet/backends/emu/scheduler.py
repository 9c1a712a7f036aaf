from __future__ import annotations

import heapq
import itertools
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, List

from manet.backends.base import Scheduler
from manet.core.errors import EngineError


@dataclass(order=True)
class ScheduledEvent:
    time: float
    seq: int
    fn: Callable[..., None] = field(compare=False)
    args: tuple = field(compare=False, default=())
    cancelled: bool = field(compare=False, default=False)


class EventScheduler(Scheduler):
    """Heap of timestamped callbacks; equal timestamps run in insertion order."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._log = logger or logging.getLogger("manet.emu.scheduler")
        self._queue: List[ScheduledEvent] = []
        self._seq = itertools.count()
        self._now = 0.0
        self._halted = False
        self._destroy_hooks: List[Callable[[], None]] = []
        self.events_executed = 0

    @property
    def now(self) -> float:
        return self._now

    @property
    def pending(self) -> int:
        return sum(1 for ev in self._queue if not ev.cancelled)

    def schedule(self, at: float, fn: Callable[..., None], *args: Any) -> ScheduledEvent:
        at = float(at)
        if not math.isfinite(at):
            raise EngineError(f"cannot schedule an event at a non-finite time: {at}")
        if at < self._now:
            raise EngineError(f"cannot schedule an event in the past: {at} < {self._now}")
        event = ScheduledEvent(at, next(self._seq), fn, args)
        heapq.heappush(self._queue, event)
        return event

    def schedule_in(self, delay: float, fn: Callable[..., None], *args: Any) -> ScheduledEvent:
        return self.schedule(self._now + float(delay), fn, *args)

    @staticmethod
    def cancel(event: ScheduledEvent | None) -> None:
        if event is not None:
            event.cancelled = True

    def stop(self, at: float) -> None:
        self.schedule(at, self.halt)

    def halt(self) -> None:
        self._halted = True

    def on_destroy(self, hook: Callable[[], None]) -> None:
        self._destroy_hooks.append(hook)

    def run(self, stop_time: float | None = None) -> None:
        if stop_time is not None:
            self.stop(stop_time)
        self._halted = False
        self._log.debug("run start: now=%.6f pending=%d", self._now, len(self._queue))
        while self._queue and not self._halted:
            event = heapq.heappop(self._queue)
            if event.cancelled:
                continue
            self._now = event.time
            try:
                event.fn(*event.args)
            except EngineError:
                raise
            except Exception as exc:
                raise EngineError(f"event at t={event.time:.6f} failed: {exc}") from exc
            self.events_executed += 1
        self._log.debug("run end: now=%.6f executed=%d", self._now, self.events_executed)

    def destroy(self) -> None:
        hooks, self._destroy_hooks = self._destroy_hooks, []
        for hook in hooks:
            hook()
        self._queue.clear()
        self._now = 0.0
