"""
Per-entity run status tracking.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from cloud_bridge.models.core import RunKind, RunState, RunStatus
from cloud_bridge.monitoring.execution_history import ExecutionHistoryTracker

logger = logging.getLogger(__name__)


class RunStatusTracker:
    """
    Holds one RunStatus per entity of a single run kind.

    Every transition happens under the entity's own lock, so a scheduled
    run and an on-demand run of the same entity never lose each other's
    updates. Readers always get copies.

    Overlapping runs are counted: the record only leaves RUNNING when the
    last active run finishes. Callers that must not overlap (scheduled
    ticks) pass ``exclusive=True`` to ``begin_run`` and are refused while
    another run is active.
    """

    def __init__(self, kind: RunKind, history: Optional[ExecutionHistoryTracker] = None):
        self.kind = kind
        self.history = history
        self._statuses: Dict[str, RunStatus] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._map_lock = threading.Lock()

    def _entry(self, entity_id: str) -> Tuple[RunStatus, threading.Lock]:
        with self._map_lock:
            status = self._statuses.get(entity_id)
            if status is None:
                status = RunStatus(entity_id=entity_id, kind=self.kind)
                self._statuses[entity_id] = status
                self._locks[entity_id] = threading.Lock()
            return status, self._locks[entity_id]

    def begin_run(
        self,
        entity_id: str,
        exclusive: bool = False,
        entity_type: Optional[str] = None,
        provider_id: Optional[str] = None
    ) -> Optional[int]:
        """
        Move an entity to RUNNING.

        Args:
            entity_id: Provider id or resource id
            exclusive: Refuse to start while another run is active
            entity_type: Provider type or resource type to record
            provider_id: Owning provider to record

        Returns:
            The run number, or None if an exclusive run was refused
        """
        status, lock = self._entry(entity_id)
        with lock:
            if exclusive and status.active_runs > 0:
                skipped = True
            else:
                skipped = False
                now = datetime.now()
                if status.last_end_time and now < status.last_end_time:
                    now = status.last_end_time
                status.active_runs += 1
                status.run_count += 1
                status.state = RunState.RUNNING
                status.last_start_time = now
                status.last_end_time = None
                if entity_type:
                    status.entity_type = entity_type
                if provider_id:
                    status.provider_id = provider_id
                run_number = status.run_count

        if skipped:
            logger.info(f"Skipping {self.kind.value} of {entity_id}: previous run still active")
            if self.history is not None:
                self.history.record_skipped(entity_id, self.kind, "previous run still active")
            return None

        if self.history is not None:
            self.history.start_execution(
                entity_id, self.kind, f"{self.kind.value}:{entity_id}:{run_number}", start_time=now
            )
        return run_number

    def complete_run(self, entity_id: str, run_number: int, result_count: int) -> RunStatus:
        """Record a successful run and return the updated status snapshot."""
        return self._finish(entity_id, run_number, True, result_count=result_count)

    def fail_run(self, entity_id: str, run_number: int, error_message: str) -> RunStatus:
        """Record a failed run and return the updated status snapshot."""
        return self._finish(entity_id, run_number, False, error_message=error_message)

    def _finish(
        self,
        entity_id: str,
        run_number: int,
        success: bool,
        result_count: int = 0,
        error_message: Optional[str] = None
    ) -> RunStatus:
        status, lock = self._entry(entity_id)
        with lock:
            now = datetime.now()
            if status.last_start_time and now < status.last_start_time:
                now = status.last_start_time

            status.active_runs = max(0, status.active_runs - 1)
            if success:
                status.last_success_time = now
                status.last_result_count = result_count
                status.consecutive_failure_count = 0
            else:
                status.last_error_message = error_message
                status.consecutive_failure_count += 1

            if status.active_runs == 0:
                status.last_end_time = now
                status.state = RunState.COMPLETED if success else RunState.FAILED

            snapshot = status.copy()

        if self.history is not None:
            self.history.complete_execution(
                f"{self.kind.value}:{entity_id}:{run_number}",
                success=success,
                result_count=result_count,
                error=error_message,
                end_time=now
            )
        return snapshot

    def mark_scheduled(
        self,
        entity_id: str,
        interval: timedelta,
        next_run: Optional[datetime],
        job_id: str,
        entity_type: Optional[str] = None,
        provider_id: Optional[str] = None
    ) -> None:
        status, lock = self._entry(entity_id)
        with lock:
            status.scheduled = True
            status.schedule_interval = interval
            status.next_scheduled_run = next_run
            status.job_id = job_id
            if entity_type:
                status.entity_type = entity_type
            if provider_id:
                status.provider_id = provider_id
            if status.state in (RunState.PENDING, RunState.DISABLED):
                status.state = RunState.SCHEDULED

    def mark_unscheduled(self, entity_id: str, disabled: bool = False) -> None:
        """Clear schedule metadata after the entity's timer was stopped."""
        status, lock = self._entry(entity_id)
        with lock:
            status.scheduled = False
            status.next_scheduled_run = None
            status.job_id = None
            if disabled:
                status.state = RunState.DISABLED
            elif status.state == RunState.SCHEDULED:
                status.state = RunState.PENDING

    def update_next_run(self, entity_id: str, next_run: Optional[datetime]) -> None:
        with self._map_lock:
            if entity_id not in self._statuses:
                return
        status, lock = self._entry(entity_id)
        with lock:
            if status.scheduled:
                status.next_scheduled_run = next_run

    def get(self, entity_id: str) -> Optional[RunStatus]:
        with self._map_lock:
            status = self._statuses.get(entity_id)
            lock = self._locks.get(entity_id)
        if status is None:
            return None
        with lock:
            return status.copy()

    def all(self) -> List[RunStatus]:
        with self._map_lock:
            ids = list(self._statuses)
        return [status for status in (self.get(entity_id) for entity_id in ids) if status is not None]

    def remove(self, entity_id: str) -> None:
        with self._map_lock:
            self._statuses.pop(entity_id, None)
            self._locks.pop(entity_id, None)

    def __contains__(self, entity_id: str) -> bool:
        with self._map_lock:
            return entity_id in self._statuses

    def __len__(self) -> int:
        with self._map_lock:
            return len(self._statuses)
