"""
OpenNMS REST client used as the reconciliation sink.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

import aiohttp

from cloud_bridge.config.models import OpenNMSConfig
from cloud_bridge.models.core import DiscoveredNode, MetricBatch
from cloud_bridge.sinks.base import ReconciliationSink
from cloud_bridge.utils.errors import DownstreamPushError

logger = logging.getLogger(__name__)

# Node attributes copied into requisition metadata
_METADATA_ATTRIBUTES = ("instance_type", "availability_zone", "vpc_id", "subnet_id", "platform", "status")


def normalize_base_url(base_url: str) -> str:
    """Base URL ending in '/opennms/'."""
    url = base_url.rstrip("/")
    if not url.endswith("/opennms"):
        url = f"{url}/opennms"
    return f"{url}/"


class OpenNMSClient(ReconciliationSink):
    """
    Pushes requisitions and measurements to OpenNMS over its REST API.

    Use as an async context manager, or call ``close()`` when done. A
    session passed in is used as-is and not closed by the client.
    """

    def __init__(self, config: OpenNMSConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.base_url = normalize_base_url(config.base_url)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self):
        self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                auth=aiohttp.BasicAuth(self.config.username, self.config.password),
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
                headers={"Accept": "application/json"}
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        foreign_source: Optional[str] = None,
        node_id: Optional[str] = None
    ) -> Any:
        """
        Send one request and return the decoded JSON body, if any.

        Raises:
            DownstreamPushError: On transport errors and non-2xx responses
        """
        url = f"{self.base_url}{path.lstrip('/')}"
        try:
            async with self._get_session().request(method, url, json=json, params=params) as response:
                if response.status >= 300:
                    body = await response.text()
                    raise DownstreamPushError(
                        operation,
                        f"{operation} failed with HTTP {response.status}: {body[:200]}",
                        foreign_source=foreign_source,
                        node_id=node_id,
                        status_code=response.status
                    )
                if response.content_type == "application/json":
                    return await response.json()
                return None
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DownstreamPushError(
                operation,
                f"{operation} failed: {str(e) or type(e).__name__}",
                foreign_source=foreign_source,
                node_id=node_id
            ) from e

    def build_requisition_node(self, node: DiscoveredNode) -> Dict[str, Any]:
        """Requisition entry for one discovered node."""
        primary = node.primary_ip_address
        interfaces = []
        if primary:
            interfaces.append({"ip-addr": primary, "snmp-primary": "P"})
        for address in sorted(node.ip_addresses - {primary}):
            interfaces.append({"ip-addr": address, "snmp-primary": "N"})

        metadata: List[Dict[str, str]] = [
            {"context": "requisition", "key": "providerId", "value": node.provider_id},
            {"context": "requisition", "key": "resourceType", "value": node.type},
        ]
        if node.region:
            metadata.append({"context": "requisition", "key": "region", "value": node.region})
        for key in _METADATA_ATTRIBUTES:
            value = node.attributes.get(key)
            if value is not None:
                metadata.append({"context": "requisition", "key": key, "value": str(value)})
        for key, value in sorted(node.tags.items()):
            metadata.append({"context": "requisition", "key": f"tag:{key}", "value": value})

        return {
            "foreign-id": node.foreign_id,
            "node-label": node.node_label,
            "location": self.config.default_location,
            "interfaces": interfaces,
            "meta-data": metadata,
        }

    def build_requisition(self, foreign_source: str, nodes: Iterable[DiscoveredNode]) -> Dict[str, Any]:
        ordered = sorted(nodes, key=lambda n: n.foreign_id)
        return {
            "foreign-source": foreign_source,
            "nodes": [self.build_requisition_node(node) for node in ordered],
        }

    @staticmethod
    def build_measurements(node_id: str, batch: MetricBatch) -> Dict[str, Any]:
        return {
            "node": node_id,
            "timestamp": int(batch.timestamp.timestamp() * 1000),
            "metrics": batch.as_measurements(),
        }

    async def upsert_nodes(self, foreign_source: str, nodes: Iterable[DiscoveredNode]) -> None:
        requisition = self.build_requisition(foreign_source, nodes)
        logger.info(f"Creating/updating requisition '{foreign_source}' with {len(requisition['nodes'])} nodes")
        await self._request(
            "POST", "api/v2/requisitions", "upsert_nodes",
            json=requisition, foreign_source=foreign_source
        )

    async def synchronize(self, foreign_source: str) -> None:
        logger.info(f"Synchronizing requisition '{foreign_source}'")
        await self._request(
            "PUT", f"api/v2/requisitions/{foreign_source}/import", "synchronize",
            foreign_source=foreign_source
        )

    async def submit_metrics(self, node_id: str, batch: MetricBatch) -> None:
        logger.info(f"Submitting {batch.metric_count} metrics for node '{node_id}'")
        await self._request(
            "POST", "api/v2/measurements", "submit_metrics",
            json=self.build_measurements(node_id, batch), node_id=node_id
        )

    async def find_node_by_foreign_id(self, foreign_source: str, foreign_id: str) -> Optional[str]:
        """Node id for a foreign id; lookup failures are reported as not found."""
        try:
            body = await self._request(
                "GET", "api/v2/nodes", "find_node",
                params={"foreignSource": foreign_source, "foreignId": foreign_id, "limit": 1},
                foreign_source=foreign_source
            )
        except DownstreamPushError as e:
            logger.error(f"Error finding node {foreign_source}:{foreign_id}: {e}")
            return None

        nodes = (body or {}).get("nodes") or (body or {}).get("node") or []
        if not nodes:
            logger.warning(f"No node found for foreignSource '{foreign_source}' and foreignId '{foreign_id}'")
            return None
        return str(nodes[0]["id"])

    async def create_location(self, name: str, monitoring_area: str) -> None:
        logger.info(f"Creating location '{name}' with monitoring area '{monitoring_area}'")
        await self._request(
            "POST", "api/v2/monitoringLocations", "create_location",
            json={"location": name, "monitoringArea": monitoring_area, "geolocation": {}}
        )

    async def test_connection(self) -> bool:
        """True if either the legacy or the v2 info endpoint answers."""
        for path in ("rest/info", "api/v2/info"):
            try:
                await self._request("GET", path, "test_connection")
                logger.info(f"Connected to OpenNMS at {self.base_url} via {path}")
                return True
            except DownstreamPushError as e:
                logger.debug(f"OpenNMS connection check via {path} failed: {e}")
        logger.warning(f"Could not connect to OpenNMS at {self.base_url}")
        return False
