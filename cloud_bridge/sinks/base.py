"""
Downstream reconciliation boundary.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from cloud_bridge.models.core import DiscoveredNode, MetricBatch

FOREIGN_SOURCE_PREFIX = "cloud"


def foreign_source_for(provider_type: str, provider_id: str) -> str:
    """Requisition name for a provider: cloud-<type>-<id>."""
    return f"{FOREIGN_SOURCE_PREFIX}-{provider_type}-{provider_id}"


class ReconciliationSink(ABC):
    """
    Target monitoring system for discovered nodes and metric batches.

    Node upserts are keyed by foreign source and foreign id, so pushing the
    same discovery result twice is harmless. Failed calls raise
    DownstreamPushError.
    """

    @abstractmethod
    async def upsert_nodes(self, foreign_source: str, nodes: Iterable[DiscoveredNode]) -> None:
        """Create or replace the requisition for ``foreign_source``."""
        pass

    @abstractmethod
    async def synchronize(self, foreign_source: str) -> None:
        """Apply a previously upserted requisition."""
        pass

    @abstractmethod
    async def submit_metrics(self, node_id: str, batch: MetricBatch) -> None:
        pass

    @abstractmethod
    async def find_node_by_foreign_id(self, foreign_source: str, foreign_id: str) -> Optional[str]:
        """Monitoring-system node id for a foreign id, or None if not provisioned."""
        pass

    async def close(self) -> None:
        """Release connections."""
