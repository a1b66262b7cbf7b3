"""
Run status and execution history tracking.
"""

from .execution_history import ExecutionHistoryTracker, ExecutionRecord, ExecutionStatus
from .status_tracker import RunStatusTracker

__all__ = [
    'ExecutionHistoryTracker',
    'ExecutionRecord',
    'ExecutionStatus',
    'RunStatusTracker',
]
