"""Fixed-size pool of self-throttled worker threads.

The rate cap is per worker: each thread completes at most
``max_ops_per_second_per_worker`` iterations in any one-second window, so
the pool as a whole can reach ``workers * ops_per_second``. ``--maxQueriesPerSec``
is therefore not a global ceiling.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable


logger = logging.getLogger(__name__)

WINDOW_S = 1.0

WorkBody = Callable[[], None]
WorkerFactory = Callable[[int], WorkBody]


@dataclass(frozen=True)
class PoolConfig:
    max_concurrent_workers: int = 1
    max_ops_per_second_per_worker: int = 1

    def __post_init__(self) -> None:
        if self.max_concurrent_workers < 1:
            raise ValueError("max_concurrent_workers must be >= 1.")
        if self.max_ops_per_second_per_worker < 1:
            raise ValueError("max_ops_per_second_per_worker must be >= 1.")

    @property
    def aggregate_ceiling(self) -> int:
        return self.max_concurrent_workers * self.max_ops_per_second_per_worker


class ThrottleWindow:
    """Fixed one-second window counter owned by a single worker."""

    def __init__(self, max_ops: int, clock: Callable[[], float] = time.monotonic) -> None:
        if max_ops < 1:
            raise ValueError("max_ops must be >= 1.")
        self.max_ops = max_ops
        self._clock = clock
        self.window_start = clock()
        self.count = 0

    def reserve(self, now: float | None = None) -> float:
        """Admit one operation, or return how long to wait before retrying."""
        if now is None:
            now = self._clock()
        if now - self.window_start >= WINDOW_S:
            self.count = 0
            self.window_start = now
        if self.count >= self.max_ops:
            return max(0.0, self.window_start + WINDOW_S - now)
        self.count += 1
        return 0.0

    def acquire(self, stop_event: threading.Event) -> bool:
        while not stop_event.is_set():
            delay = self.reserve()
            if delay <= 0:
                return True
            stop_event.wait(delay)
        return False


class RateLimitedWorkerPool:
    def __init__(
        self,
        config: PoolConfig,
        worker_factory: WorkerFactory,
        stop_event: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._worker_factory = worker_factory
        self.stop_event = stop_event or threading.Event()
        self._clock = clock
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        if self._threads:
            raise RuntimeError("Worker pool already started.")
        logger.info(
            "Starting %d worker(s) at %d op/s each (aggregate ceiling %d op/s).",
            self.config.max_concurrent_workers,
            self.config.max_ops_per_second_per_worker,
            self.config.aggregate_ceiling,
        )
        # Daemon threads: a hung command must not keep the process alive after shutdown.
        for worker_id in range(self.config.max_concurrent_workers):
            thread = threading.Thread(
                target=self._worker_loop,
                args=(worker_id,),
                name=f"profiler-worker-{worker_id}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()

    def stop(self) -> None:
        self.stop_event.set()

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for workers to exit. Returns True if all of them did."""
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in self._threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
        return self.alive_workers() == 0

    def alive_workers(self) -> int:
        return sum(1 for t in self._threads if t.is_alive())

    def _worker_loop(self, worker_id: int) -> None:
        work_body = self._worker_factory(worker_id)
        throttle = ThrottleWindow(self.config.max_ops_per_second_per_worker, clock=self._clock)
        while throttle.acquire(self.stop_event):
            try:
                work_body()
            except Exception:  # noqa: BLE001
                logger.exception("Worker %d iteration failed; continuing.", worker_id)
        logger.debug("Worker %d stopped.", worker_id)
