"""
Downstream sinks for discovered nodes and metrics.
"""

from .base import ReconciliationSink, foreign_source_for
from .opennms import OpenNMSClient

__all__ = [
    'ReconciliationSink',
    'OpenNMSClient',
    'foreign_source_for',
]
