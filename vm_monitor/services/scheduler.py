"""Fixed-interval sampling loop: query, aggregate, publish."""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Set

import structlog

from vm_monitor.config import DEFAULT_UPDATE_INTERVAL_MS
from vm_monitor.services.aggregator import (
    Category,
    CycleAggregationError,
    Snapshot,
    aggregate,
    settle,
)
from vm_monitor.services.broadcaster import Broadcaster

log = structlog.get_logger()


@dataclass
class SchedulerState:
    """Runtime counters of the sampling loop."""

    running: bool = False
    ticks: int = 0
    published: int = 0
    skipped: int = 0
    last_error: Optional[str] = None
    last_published_at: Optional[datetime] = None

    def record_published(self) -> None:
        self.published += 1
        self.last_published_at = datetime.now()

    def record_skipped(self, error: BaseException) -> None:
        self.skipped += 1
        self.last_error = str(error) or repr(error)


class Scheduler:
    """
    Drives one sampling cycle per tick and publishes its snapshot.

    Ticks fire every `interval_ms` regardless of how long earlier cycles take:
    each cycle runs as its own task, so a slow cycle publishes late but never
    delays the next tick. Cycle failures are logged and counted, never raised.
    """

    def __init__(
        self,
        source: Any,
        broadcaster: Broadcaster,
        interval_ms: int = DEFAULT_UPDATE_INTERVAL_MS,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        self.source = source
        self.broadcaster = broadcaster
        self.interval_ms = interval_ms
        self.state = SchedulerState()
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._cycles: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the tick loop on the running event loop."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run(), name="vm-monitor-scheduler")

    async def stop(self) -> None:
        """Stop ticking and wait for cycles already in flight to finish."""
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        if self._cycles:
            await asyncio.gather(*self._cycles, return_exceptions=True)

    async def run(self) -> None:
        """Tick until stop() is called."""
        interval = self.interval_ms / 1000
        self.state.running = True
        log.info("scheduler_started", interval_ms=self.interval_ms)
        try:
            while not self._stop_event.is_set():
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                    break
                except asyncio.TimeoutError:
                    self._spawn_cycle()
        finally:
            self.state.running = False
            log.info("scheduler_stopped", ticks=self.state.ticks)

    def _spawn_cycle(self) -> None:
        task = asyncio.create_task(self.run_cycle())
        self._cycles.add(task)
        task.add_done_callback(self._cycles.discard)

    async def run_cycle(self) -> Optional[Snapshot]:
        """
        Execute one tick: fan out all queries, wait for every one to settle,
        aggregate and publish. Returns the published snapshot, or None when
        the tick was skipped.
        """
        self.state.ticks += 1
        tick = self.state.ticks
        try:
            results = await asyncio.gather(
                settle(Category.CPU_LOAD, self.source.current_load),
                settle(Category.CPU_TEMPERATURE, self.source.cpu_temperature),
                settle(Category.MEMORY, self.source.mem),
                settle(Category.STORAGE, self.source.fs_size),
                settle(Category.NETWORK, self.source.network_stats),
                settle(Category.PROCESSES, self.source.processes),
                settle(Category.UPTIME, self.source.time),
            )
            snapshot = aggregate({result.category: result for result in results})
        except CycleAggregationError as exc:
            self.state.record_skipped(exc)
            log.warning("cycle_skipped", tick=tick, error=str(exc))
            return None
        except Exception as exc:
            self.state.record_skipped(exc)
            log.exception("cycle_failed", tick=tick, error=repr(exc))
            return None

        if snapshot.degraded:
            log.debug(
                "cycle_degraded",
                tick=tick,
                categories=sorted(category.value for category in snapshot.degraded),
            )

        delivered = await self.broadcaster.publish(snapshot)
        self.state.record_published()
        log.debug("cycle_published", tick=tick, subscribers=delivered)
        return snapshot
