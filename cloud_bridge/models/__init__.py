"""
Data models for the cloud bridge.
"""

from .core import (
    Resource,
    DiscoveredNode,
    Metric,
    MetricBatch,
    ValidationResult,
    RunState,
    RunKind,
    RunStatus,
    ScheduleEntry,
    OrchestrationResult,
)

__all__ = [
    "Resource",
    "DiscoveredNode",
    "Metric",
    "MetricBatch",
    "ValidationResult",
    "RunState",
    "RunKind",
    "RunStatus",
    "ScheduleEntry",
    "OrchestrationResult",
]
