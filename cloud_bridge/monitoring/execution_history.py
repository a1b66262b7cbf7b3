"""
Execution history tracking for discovery and collection runs.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from cloud_bridge.models.core import RunKind

logger = logging.getLogger(__name__)


class ExecutionStatus(Enum):
    """Execution status enumeration."""
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass
class ExecutionRecord:
    """Record of a single discovery or collection run."""
    entity_id: str
    kind: RunKind
    execution_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    status: ExecutionStatus = ExecutionStatus.SUCCESS
    result_count: int = 0
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> Optional[timedelta]:
        """Calculate execution duration."""
        if self.end_time:
            return self.end_time - self.start_time
        return None

    @property
    def duration_seconds(self) -> Optional[float]:
        duration = self.duration
        return duration.total_seconds() if duration else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert execution record to dictionary."""
        return {
            "entity_id": self.entity_id,
            "kind": self.kind.value,
            "execution_id": self.execution_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "status": self.status.value,
            "result_count": self.result_count,
            "duration_seconds": self.duration_seconds,
            "error": self.error,
            "metadata": self.metadata
        }


class ExecutionHistoryTracker:
    """
    Tracks execution history for all discovery and collection runs.

    Keeps a bounded list of records per entity so status queries can show
    recent outcomes without the history growing with uptime.
    """

    def __init__(self, max_records_per_entity: int = 100):
        """
        Initialize execution history tracker.

        Args:
            max_records_per_entity: Maximum records to keep per entity
        """
        self.max_records_per_entity = max_records_per_entity
        self._execution_history: Dict[Tuple[RunKind, str], List[ExecutionRecord]] = {}
        self._active_executions: Dict[str, ExecutionRecord] = {}
        self._lock = threading.Lock()

    def start_execution(
        self,
        entity_id: str,
        kind: RunKind,
        execution_id: str,
        start_time: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ExecutionRecord:
        """
        Start tracking a new execution.

        Args:
            entity_id: Provider id (discovery) or resource id (collection)
            kind: Kind of run
            execution_id: Unique identifier for this execution
            start_time: Start time, defaults to now
            metadata: Optional metadata for the execution

        Returns:
            ExecutionRecord for the started execution
        """
        record = ExecutionRecord(
            entity_id=entity_id,
            kind=kind,
            execution_id=execution_id,
            start_time=start_time or datetime.now(),
            metadata=metadata or {}
        )
        with self._lock:
            self._active_executions[execution_id] = record

        logger.debug(f"Started execution tracking for {kind.value} of {entity_id} ({execution_id})")
        return record

    def complete_execution(
        self,
        execution_id: str,
        success: bool,
        result_count: int = 0,
        error: Optional[str] = None,
        end_time: Optional[datetime] = None
    ) -> Optional[ExecutionRecord]:
        """
        Complete an execution and update its record.

        Returns:
            Completed ExecutionRecord or None if not found
        """
        with self._lock:
            record = self._active_executions.pop(execution_id, None)
            if record is None:
                logger.warning(f"No active execution found for ID: {execution_id}")
                return None

            record.end_time = end_time or datetime.now()
            record.result_count = result_count
            record.error = error
            record.status = ExecutionStatus.SUCCESS if success else ExecutionStatus.FAILURE
            self._add_to_history(record)

        duration_str = f"{record.duration_seconds:.2f}s" if record.duration_seconds is not None else "unknown"
        logger.debug(
            f"Completed execution {execution_id} for {record.entity_id}: "
            f"{record.status.value} ({duration_str}, {record.result_count} results)"
        )
        return record

    def record_skipped(self, entity_id: str, kind: RunKind, reason: str) -> ExecutionRecord:
        """Record a run that was not started because another run was active."""
        now = datetime.now()
        record = ExecutionRecord(
            entity_id=entity_id,
            kind=kind,
            execution_id=f"{kind.value}:{entity_id}:skipped:{now.timestamp()}",
            start_time=now,
            end_time=now,
            status=ExecutionStatus.SKIPPED,
            error=reason
        )
        with self._lock:
            self._add_to_history(record)
        return record

    def _add_to_history(self, record: ExecutionRecord) -> None:
        history = self._execution_history.setdefault((record.kind, record.entity_id), [])
        history.append(record)

        # Maintain maximum records limit
        if len(history) > self.max_records_per_entity:
            history.pop(0)

    def get_execution_history(
        self,
        entity_id: Optional[str] = None,
        limit: Optional[int] = None,
        status_filter: Optional[ExecutionStatus] = None,
        kind: Optional[RunKind] = None
    ) -> List[ExecutionRecord]:
        """
        Get execution history with optional filtering.

        Args:
            entity_id: Filter by entity
            limit: Maximum number of records to return
            status_filter: Filter by execution status
            kind: Filter by run kind

        Returns:
            List of ExecutionRecord objects, most recent first
        """
        with self._lock:
            records = [
                r for (record_kind, record_entity), history in self._execution_history.items()
                if (not entity_id or record_entity == entity_id) and (not kind or record_kind == kind)
                for r in history
            ]

        if status_filter:
            records = [r for r in records if r.status == status_filter]

        records.sort(key=lambda r: r.start_time, reverse=True)

        if limit:
            records = records[:limit]

        return records

    def get_active_executions(self) -> List[ExecutionRecord]:
        with self._lock:
            return list(self._active_executions.values())

    def get_execution_statistics(
        self,
        entity_id: Optional[str] = None,
        time_window: Optional[timedelta] = None
    ) -> Dict[str, Any]:
        """
        Get execution statistics for analysis.

        Args:
            entity_id: Filter by entity
            time_window: Only include executions within this time window

        Returns:
            Dictionary with execution statistics
        """
        records = self.get_execution_history(entity_id)

        if time_window:
            cutoff_time = datetime.now() - time_window
            records = [r for r in records if r.start_time >= cutoff_time]

        # Skipped runs did no work
        records = [r for r in records if r.status != ExecutionStatus.SKIPPED]

        if not records:
            return {
                "total_executions": 0,
                "success_rate": 0.0,
                "average_duration": 0.0,
                "total_results": 0
            }

        total_executions = len(records)
        successful_executions = len([r for r in records if r.status == ExecutionStatus.SUCCESS])

        durations = [r.duration_seconds for r in records if r.duration_seconds is not None]
        average_duration = sum(durations) / len(durations) if durations else 0.0

        return {
            "total_executions": total_executions,
            "successful_executions": successful_executions,
            "failed_executions": total_executions - successful_executions,
            "success_rate": successful_executions / total_executions * 100,
            "average_duration": average_duration,
            "total_results": sum(r.result_count for r in records),
            "time_window": str(time_window) if time_window else "all_time"
        }

    def get_recent_failures(self, entity_id: Optional[str] = None, hours: int = 24) -> List[ExecutionRecord]:
        cutoff_time = datetime.now() - timedelta(hours=hours)
        records = self.get_execution_history(entity_id, status_filter=ExecutionStatus.FAILURE)
        return [r for r in records if r.start_time >= cutoff_time]

    def clear(self, entity_id: Optional[str] = None) -> None:
        with self._lock:
            if entity_id is None:
                self._execution_history.clear()
            else:
                for key in [key for key in self._execution_history if key[1] == entity_id]:
                    del self._execution_history[key]
