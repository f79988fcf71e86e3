"""
Ramp controller: keeps the number of live workers on the profile's curve.

* Runs its scheduling loop on the calling thread, one reconcile per ``tick``.
* Workers are OS threads, each with a private :class:`random.Random`.
* Ramp-down retires the oldest workers. A retired worker finishes its
  current iteration (an in-flight request is never interrupted), but a
  pending think-time pause is cut short.
* At the end of the profile, or on cancel, every worker is stopped and
  joined (bounded by ``drain_timeout``).
"""

from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

import structlog

from slo_engine.metrics import MetricSink
from slo_engine.model import RampProfile, ThinkTime

logger = structlog.get_logger(__name__)

IterationFn = Callable[[Any, random.Random], Any]
TickObserver = Callable[[float, int, int], None]  # (elapsed, target, live)


class Worker:
    """One virtual user: iterate, pause, repeat until stopped."""

    def __init__(
        self,
        worker_id: int,
        iteration: IterationFn,
        context: Any,
        *,
        rng: random.Random,
        think_time: ThinkTime,
        sink: MetricSink,
    ) -> None:
        self.id = worker_id
        self.iteration = iteration
        self.context = context
        self.rng = rng
        self.think_time = think_time
        self.sink = sink
        self._stop = threading.Event()
        self.thread = threading.Thread(target=self._loop, name=f"vu-{worker_id}", daemon=True)

    def start(self) -> None:
        self.thread.start()

    def stop(self) -> None:
        """Ask the worker to exit after its current iteration."""
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def is_alive(self) -> bool:
        return self.thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> None:
        self.thread.join(timeout)

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.iteration(self.context, self.rng)
            except Exception as exc:
                logger.warning("iteration_crashed", worker=self.id, error=repr(exc))
                self.sink.counter("iteration_errors").add(1)
                self.sink.rate("iteration_failed").add(False)

            pause = self.think_time.draw(self.rng)
            if pause > 0:
                self._stop.wait(pause)


@dataclass(frozen=True)
class RampResult:
    spawned: int
    retired: int
    peak_live: int
    spawn_failures: int
    starved_stages: Tuple[int, ...]
    cancelled: bool
    elapsed: float
    stragglers: int = 0

    @property
    def incomplete(self) -> bool:
        """At least one stage wanted workers but never had any."""
        return bool(self.starved_stages)


class RampController:
    """Sole owner of the worker population."""

    def __init__(
        self,
        sink: MetricSink,
        *,
        think_time: ThinkTime = ThinkTime(),
        tick: float = 0.1,
        seed: Optional[int] = None,
        drain_timeout: float = 11.0,
    ) -> None:
        if tick <= 0:
            raise ValueError("tick must be positive")
        self.sink = sink
        self.think_time = think_time
        self.tick = tick
        self.seed = seed
        self.drain_timeout = drain_timeout
        self._observers: List[TickObserver] = []
        self._workers: List[Worker] = []  # spawn order, oldest first
        self._lock = threading.Lock()
        self._next_id = 0
        self.spawned = 0
        self.retired = 0
        self.peak_live = 0
        self.spawn_failures = 0

    def add_observer(self, observer: TickObserver) -> None:
        self._observers.append(observer)

    # Registry helpers

    def _rng_for(self, worker_id: int) -> random.Random:
        if self.seed is None:
            return random.Random()
        return random.Random(f"{self.seed}:{worker_id}")

    def _reap(self) -> None:
        self._workers = [w for w in self._workers if w.is_alive()]

    def _spawn(self, n: int, iteration: IterationFn, context: Any) -> int:
        started = 0
        for _ in range(n):
            worker_id = self._next_id
            self._next_id += 1
            worker = Worker(
                worker_id,
                iteration,
                context,
                rng=self._rng_for(worker_id),
                think_time=self.think_time,
                sink=self.sink,
            )
            try:
                worker.start()
            except RuntimeError as exc:  # "can't start new thread"
                self.spawn_failures += 1
                logger.warning("worker_spawn_failed", worker=worker_id, error=str(exc))
                break
            self._workers.append(worker)
            started += 1
        self.spawned += started
        return started

    def _retire(self, n: int) -> None:
        live = [w for w in self._workers if not w.stopping]
        for worker in live[:n]:
            worker.stop()
        self.retired += min(n, len(live))

    def live_count(self) -> int:
        """Workers iterating and not asked to stop."""
        with self._lock:
            return sum(1 for w in self._workers if not w.stopping and w.is_alive())

    def running_count(self) -> int:
        """Threads still alive, including ones finishing their last iteration."""
        with self._lock:
            return sum(1 for w in self._workers if w.is_alive())

    def reconcile(self, target: int, iteration: IterationFn, context: Any) -> int:
        """Spawn or retire workers so that *target* are live; return the live count."""
        with self._lock:
            self._reap()
            live = sum(1 for w in self._workers if not w.stopping)
            if target > live:
                live += self._spawn(target - live, iteration, context)
            elif target < live:
                self._retire(live - target)
                live = target
            self.peak_live = max(self.peak_live, live)
            return live

    # Main loop

    def _schedule(
        self,
        profile: RampProfile,
        iteration: IterationFn,
        context: Any,
        cancel: threading.Event,
        wanted: List[bool],
        served: List[bool],
        start: float,
    ) -> None:
        while not cancel.is_set():
            elapsed = time.monotonic() - start
            index = profile.stage_index_at(elapsed)
            if index is None:
                break
            target = profile.target_at(elapsed)
            live = self.reconcile(target, iteration, context)
            if target > 0:
                wanted[index] = True
            if live > 0:
                served[index] = True
            for observer in self._observers:
                observer(elapsed, target, live)
            cancel.wait(self.tick)

    def run(
        self,
        profile: RampProfile,
        iteration: IterationFn,
        context: Any,
        cancel: Optional[threading.Event] = None,
        *,
        on_drain: Optional[Callable[[], None]] = None,
    ) -> RampResult:
        """Drive workers through *profile*; block until all of them exited."""
        cancel = cancel if cancel is not None else threading.Event()
        n = len(profile.stages)
        wanted = [False] * n
        served = [False] * n
        start = time.monotonic()
        logger.info("ramp_started", stages=n, duration_s=profile.total_duration)

        try:
            self._schedule(profile, iteration, context, cancel, wanted, served, start)
        except KeyboardInterrupt:
            logger.warning("ramp_interrupted")
            cancel.set()
        finally:
            if on_drain is not None:
                on_drain()
            stragglers = self.drain()

        starved = tuple(i for i in range(n) if wanted[i] and not served[i])
        if starved:
            logger.error("stages_without_workers", stages=list(starved))
        return RampResult(
            spawned=self.spawned,
            retired=self.retired,
            peak_live=self.peak_live,
            spawn_failures=self.spawn_failures,
            starved_stages=starved,
            cancelled=cancel.is_set(),
            elapsed=time.monotonic() - start,
            stragglers=stragglers,
        )

    def drain(self) -> int:
        """Stop every worker and wait for them; return how many are still running."""
        with self._lock:
            workers = list(self._workers)
            for worker in workers:
                worker.stop()
        logger.info("drain_started", workers=len(workers))

        deadline = time.monotonic() + self.drain_timeout
        for worker in workers:
            worker.join(max(0.0, deadline - time.monotonic()))
        stragglers = sum(1 for w in workers if w.is_alive())
        if stragglers:
            logger.warning("workers_still_running", count=stragglers)

        with self._lock:
            self._reap()
        return stragglers
