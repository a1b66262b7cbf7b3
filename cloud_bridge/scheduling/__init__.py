"""
Recurring timers for discovery and collection.
"""

from .scheduler import Scheduler, SchedulerConfig, SchedulerState

__all__ = [
    'Scheduler',
    'SchedulerConfig',
    'SchedulerState',
]
