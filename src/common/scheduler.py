from __future__ import annotations

import heapq
import itertools
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional


@dataclass(order=True)
class ScheduledTask:
    due: float
    seq: int
    generation: int = field(compare=False)
    callback: Callable[[], Any] = field(compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class TaskScheduler:
    """
    Cancellable delayed callbacks keyed by a session generation.

    - `call_later(delay, cb)` tags the task with the current generation.
    - `next_generation()` starts a new generation and cancels every pending task
      of older ones; a task of an older generation never runs, even if it was
      already due but not yet drained.
    - `run_due()` runs tasks whose due time has passed. The host event loop
      calls it; tests drive it with a fake clock.

    Runs on the UI event loop; not safe for concurrent use.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._queue: List[ScheduledTask] = []
        self._seq = itertools.count()
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def now(self) -> float:
        return self._clock()

    def next_generation(self) -> int:
        self._generation += 1
        for task in self._queue:
            task.cancel()
        self._queue.clear()
        return self._generation

    def call_later(self, delay: float, callback: Callable[[], Any]) -> ScheduledTask:
        if delay < 0:
            raise ValueError("delay must be >= 0")
        task = ScheduledTask(
            due=self._clock() + delay,
            seq=next(self._seq),
            generation=self._generation,
            callback=callback,
        )
        heapq.heappush(self._queue, task)
        return task

    def pending(self) -> int:
        return sum(1 for t in self._queue if not t.cancelled)

    def next_due(self) -> Optional[float]:
        for task in sorted(self._queue):
            if not task.cancelled:
                return task.due
        return None

    def run_due(self) -> int:
        """Run every live task that is due; returns how many ran."""
        ran = 0
        while self._queue and self._queue[0].due <= self._clock():
            task = heapq.heappop(self._queue)
            if task.cancelled or task.generation != self._generation:
                continue
            task.callback()
            ran += 1
        return ran


__all__ = ["ScheduledTask", "TaskScheduler"]
