"""
Recurring timers for discovery and collection entities.
"""

import asyncio
import inspect
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from cloud_bridge.models.core import ScheduleEntry

logger = logging.getLogger(__name__)

TickFn = Callable[[], Union[None, Awaitable[None]]]


class SchedulerState(Enum):
    """Scheduler state enumeration."""
    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class SchedulerConfig:
    """Configuration for the entity scheduler."""
    timezone: str = "UTC"
    job_defaults: Dict[str, Any] = field(default_factory=lambda: {
        'coalesce': True,
        'max_instances': 1,
        'misfire_grace_time': 300
    })
    shutdown_timeout: int = 30  # seconds


class Scheduler:
    """
    One recurring fixed-rate timer per entity id.

    Backed by an APScheduler AsyncIOScheduler: each entity is one interval
    job whose first fire time is ``now + initial_delay``. Scheduling an
    entity that already has a timer replaces it. Stopping an entity removes
    its job but never interrupts a tick that is already running.

    Tick callbacks may be plain functions or coroutine functions. A tick
    that raises is logged and the timer keeps firing.
    """

    def __init__(self, config: Optional[SchedulerConfig] = None):
        self.config = config or SchedulerConfig()
        self._scheduler = AsyncIOScheduler(
            timezone=self.config.timezone,
            job_defaults=self.config.job_defaults
        )
        self._state = SchedulerState.STOPPED
        self._entries: Dict[str, ScheduleEntry] = {}
        self._ticks: Dict[str, TickFn] = {}
        self._last_ticks: Dict[str, datetime] = {}
        self._inflight: Set[asyncio.Task] = set()
        self._lock = threading.RLock()

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state == SchedulerState.RUNNING

    @property
    def timezone(self):
        return self._scheduler.timezone

    def now(self) -> datetime:
        return datetime.now(self._scheduler.timezone)

    @staticmethod
    def job_id_for(entity_id: str) -> str:
        return f"schedule:{entity_id}"

    def schedule(
        self,
        entity_id: str,
        initial_delay: timedelta,
        interval: timedelta,
        tick_fn: TickFn
    ) -> ScheduleEntry:
        """
        Arm a recurring timer for an entity, replacing any existing one.

        Args:
            entity_id: Entity to schedule
            initial_delay: Delay before the first tick
            interval: Period between tick starts
            tick_fn: Callback run on every tick

        Returns:
            The new ScheduleEntry

        Raises:
            ValueError: If the delay is negative or the interval not positive
        """
        if interval <= timedelta(0):
            raise ValueError(f"Interval must be positive: {interval}")
        if initial_delay < timedelta(0):
            raise ValueError(f"Initial delay must be non-negative: {initial_delay}")

        job_id = self.job_id_for(entity_id)
        with self._lock:
            replaced = self._remove_job(job_id)

            first_run_time = self.now() + initial_delay
            trigger = IntervalTrigger(
                seconds=interval.total_seconds(),
                start_date=first_run_time,
                timezone=self._scheduler.timezone
            )
            self._scheduler.add_job(
                self._run_tick,
                trigger=trigger,
                args=[entity_id],
                id=job_id,
                name=f"Tick: {entity_id}",
                next_run_time=first_run_time,
                replace_existing=True
            )

            entry = ScheduleEntry(
                entity_id=entity_id,
                job_id=job_id,
                interval=interval,
                initial_delay=initial_delay,
                first_run_time=first_run_time
            )
            self._entries[entity_id] = entry
            self._ticks[entity_id] = tick_fn

        logger.info(
            f"{'Rescheduled' if replaced else 'Scheduled'} {entity_id}: "
            f"first run at {first_run_time.isoformat()}, every {interval}"
        )
        return entry

    def stop(self, entity_id: str) -> bool:
        """
        Cancel an entity's timer. A tick already running is allowed to finish.

        Returns:
            True if a timer was cancelled, False if none existed
        """
        with self._lock:
            self._remove_job(self.job_id_for(entity_id))
            entry = self._entries.pop(entity_id, None)
            self._ticks.pop(entity_id, None)

        if entry is not None:
            logger.info(f"Stopped schedule for {entity_id}")
        return entry is not None

    def stop_all(self) -> int:
        """Cancel every timer and return how many were cancelled."""
        with self._lock:
            entity_ids = list(self._entries)
        return sum(1 for entity_id in entity_ids if self.stop(entity_id))

    def _remove_job(self, job_id: str) -> bool:
        try:
            self._scheduler.remove_job(job_id)
            return True
        except JobLookupError:
            return False

    def is_scheduled(self, entity_id: str) -> bool:
        with self._lock:
            return entity_id in self._entries

    def get_entry(self, entity_id: str) -> Optional[ScheduleEntry]:
        with self._lock:
            return self._entries.get(entity_id)

    def entries(self) -> List[ScheduleEntry]:
        with self._lock:
            return list(self._entries.values())

    def job_ids(self) -> List[str]:
        """Ids of the jobs known to APScheduler, pending ones included."""
        return sorted(job.id for job in self._scheduler.get_jobs())

    def next_run(self, entity_id: str) -> Optional[datetime]:
        """Next fire time of an entity's timer, or None if unscheduled."""
        with self._lock:
            entry = self._entries.get(entity_id)
            if entry is None:
                return None
            job = self._scheduler.get_job(entry.job_id)
        if job is None:
            return None
        # Jobs added before start() have no next_run_time yet
        if not hasattr(job, "next_run_time"):
            return entry.first_run_time
        return job.next_run_time

    def last_tick(self, entity_id: str) -> Optional[datetime]:
        with self._lock:
            return self._last_ticks.get(entity_id)

    async def _run_tick(self, entity_id: str) -> None:
        """Job function: run the entity's tick shielded from scheduler shutdown."""
        with self._lock:
            tick_fn = self._ticks.get(entity_id)
            if tick_fn is not None:
                self._last_ticks[entity_id] = self.now()
        if tick_fn is None:
            logger.warning(f"Tick fired for unscheduled entity {entity_id}")
            return

        task = asyncio.ensure_future(self._execute_tick(entity_id, tick_fn))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        await asyncio.shield(task)

    async def _execute_tick(self, entity_id: str, tick_fn: TickFn) -> None:
        try:
            result = tick_fn()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Scheduled tick for {entity_id} failed: {e}", exc_info=True)

    def start(self) -> None:
        """
        Start firing timers. Must be called from a running event loop.
        """
        if self._state == SchedulerState.RUNNING:
            logger.warning("Scheduler already running")
            return

        loop = asyncio.get_running_loop()
        if not self._scheduler.running:
            # Pending first runs whose delay elapsed before start fire right away
            now = self.now()
            with self._lock:
                for entry in self._entries.values():
                    if entry.first_run_time < now:
                        self._scheduler.modify_job(entry.job_id, next_run_time=now)
            self._scheduler.configure(
                event_loop=loop,
                timezone=self.config.timezone,
                job_defaults=self.config.job_defaults
            )
            self._scheduler.start()

        self._state = SchedulerState.RUNNING
        logger.info(f"Scheduler started with {len(self._entries)} timers")

    async def shutdown(self, wait: bool = True) -> None:
        """
        Cancel all timers and stop the scheduler.

        Args:
            wait: Let in-flight ticks finish, up to the shutdown timeout
        """
        if self._state == SchedulerState.STOPPED and not self._scheduler.running:
            self.stop_all()
            return

        self._state = SchedulerState.STOPPING
        logger.info("Stopping scheduler")

        self.stop_all()

        if wait and self._inflight:
            done, pending = await asyncio.wait(
                set(self._inflight), timeout=self.config.shutdown_timeout
            )
            if pending:
                logger.warning(f"{len(pending)} ticks still running after {self.config.shutdown_timeout}s")

        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

        self._state = SchedulerState.STOPPED
        logger.info("Scheduler stopped")

    def get_status(self) -> Dict[str, Any]:
        """Summary of timers for status output."""
        timers = {}
        for entry in self.entries():
            next_run = self.next_run(entry.entity_id)
            last_tick = self.last_tick(entry.entity_id)
            timers[entry.entity_id] = {
                "job_id": entry.job_id,
                "interval_seconds": entry.interval.total_seconds(),
                "initial_delay_seconds": entry.initial_delay.total_seconds(),
                "next_run": next_run.isoformat() if next_run else None,
                "last_tick": last_tick.isoformat() if last_tick else None,
            }
        return {
            "state": self._state.value,
            "total_timers": len(timers),
            "running_ticks": len(self._inflight),
            "timers": timers,
        }
