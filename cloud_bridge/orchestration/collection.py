"""
Collection orchestration: metric collection per resource, status, push.
"""

import asyncio
import threading
from typing import Dict, List, Optional

from cloud_bridge.models.core import MetricBatch, OrchestrationResult, Resource
from cloud_bridge.orchestration.base import BaseOrchestrator
from cloud_bridge.orchestration.discovery import DiscoveryOrchestrator
from cloud_bridge.providers.base import CloudProvider
from cloud_bridge.sinks.base import foreign_source_for
from cloud_bridge.utils.errors import ConfigurationError, ProviderError
from cloud_bridge.utils.structured_logging import with_correlation_id


class CollectionOrchestrator(BaseOrchestrator):
    """
    Runs collection passes for resources.

    Collection needs to know which provider owns a resource. The mapping
    is recorded whenever a resource is collected or scheduled through a
    named provider; ``collect`` on an unmapped resource is a
    configuration error.
    """

    def __init__(
        self,
        registry,
        tracker,
        discovery: DiscoveryOrchestrator,
        executor=None,
        sink=None,
        pushes=None
    ):
        super().__init__(registry, tracker, executor=executor, sink=sink, pushes=pushes)
        self.discovery = discovery
        self._resource_providers: Dict[str, str] = {}
        self._mapping_lock = threading.Lock()

    def map_resource(self, resource_id: str, provider_id: str) -> None:
        with self._mapping_lock:
            previous = self._resource_providers.get(resource_id)
            self._resource_providers[resource_id] = provider_id
        if previous is not None and previous != provider_id:
            self.logger.warning(
                f"Resource {resource_id} moved from provider {previous} to {provider_id}",
                resource_id=resource_id
            )

    def unmap_resource(self, resource_id: str) -> Optional[str]:
        with self._mapping_lock:
            return self._resource_providers.pop(resource_id, None)

    def provider_for(self, resource_id: str) -> Optional[str]:
        with self._mapping_lock:
            return self._resource_providers.get(resource_id)

    def mapped_resources(self, provider_id: Optional[str] = None) -> List[str]:
        with self._mapping_lock:
            return sorted(
                resource_id for resource_id, owner in self._resource_providers.items()
                if provider_id is None or owner == provider_id
            )

    async def collect(
        self,
        resource: Resource,
        exclusive: bool = False,
        push: bool = True
    ) -> OrchestrationResult[MetricBatch]:
        """
        Collect a resource through its mapped provider.

        Fails with ConfigurationError if the resource has no provider
        mapping or the mapped provider is no longer registered.
        """
        provider_id = self.provider_for(resource.id)
        if provider_id is None:
            error = ConfigurationError(
                f"No provider mapping for resource {resource.id}",
                error_code="NO_PROVIDER_MAPPING"
            )
            self.logger.error(f"Cannot collect metrics: {error}", resource_id=resource.id)
            return OrchestrationResult.failed(resource.id, error)
        return await self.collect_for(provider_id, resource, exclusive=exclusive, push=push)

    @with_correlation_id
    async def collect_for(
        self,
        provider_id: str,
        resource: Resource,
        exclusive: bool = False,
        push: bool = True
    ) -> OrchestrationResult[MetricBatch]:
        """
        Collect a resource through a named provider and record the mapping.

        Args:
            provider_id: Provider that owns the resource
            resource: Resource to collect
            exclusive: Skip if a collection of this resource is running
            push: Submit the batch downstream after a successful collection

        Returns:
            OrchestrationResult carrying the batch, the error, or the skip marker
        """
        try:
            provider = self.registry.require(provider_id)
        except ConfigurationError as e:
            self.logger.error(f"Cannot collect metrics: {e}", resource_id=resource.id)
            return OrchestrationResult.failed(resource.id, e)

        self.map_resource(resource.id, provider_id)

        run_number = self.tracker.begin_run(
            resource.id,
            exclusive=exclusive,
            entity_type=resource.resource_type,
            provider_id=provider_id
        )
        if run_number is None:
            return OrchestrationResult.skip(resource.id)

        self.logger.debug(f"Collecting metrics for {resource.id} via {provider_id}", resource_id=resource.id)
        try:
            batch = await self._call_provider(provider, provider.collect, resource, resource_id=resource.id)
        except ProviderError as e:
            self.tracker.fail_run(resource.id, run_number, e.message)
            self.logger.error(
                f"Collection failed for resource {resource.id}: {e}",
                resource_id=resource.id, provider_id=provider_id, error_code=e.error_code
            )
            return OrchestrationResult.failed(resource.id, e)
        except asyncio.CancelledError:
            self.tracker.fail_run(resource.id, run_number, "Collection cancelled")
            raise

        self.tracker.complete_run(resource.id, run_number, batch.metric_count)
        self.logger.info(
            f"Collected {batch.metric_count} metrics for resource {resource.id}",
            resource_id=resource.id, result_count=batch.metric_count
        )

        if push:
            self.push_batch(provider, resource, batch)
        return OrchestrationResult.ok(resource.id, batch)

    async def collect_all(
        self,
        provider_id: str,
        exclusive: bool = False,
        push: bool = True
    ) -> List[MetricBatch]:
        """
        Collect every resource of a provider.

        Resources come from the discovery read-through cache. Each resource
        is collected independently; failures are recorded on that
        resource's own status and left out of the returned list.

        Raises:
            ConfigurationError: If the provider is not registered
            ProviderError: If the resource list cannot be discovered
        """
        resources = sorted(await self.discovery.discover_resources(provider_id), key=lambda r: r.id)
        if not resources:
            self.logger.info(f"No resources to collect for provider {provider_id}", provider_id=provider_id)
            return []

        results = await asyncio.gather(
            *(self.collect_for(provider_id, resource, exclusive=exclusive, push=push) for resource in resources)
        )

        batches = [result.value for result in results if result.success]
        failed = sum(1 for result in results if result.error is not None)
        skipped = sum(1 for result in results if result.skipped)
        self.logger.info(
            f"Collected {len(batches)}/{len(resources)} resources for provider {provider_id} "
            f"({failed} failed, {skipped} skipped)",
            provider_id=provider_id
        )
        return batches

    def push_batch(self, provider: CloudProvider, resource: Resource, batch: MetricBatch) -> Optional[asyncio.Task]:
        """
        Submit a batch in the background.

        Returns:
            The push task, or None when nothing is pushed
        """
        if not self.push_enabled:
            return None
        if batch.metric_count == 0:
            self.logger.debug(f"No metrics to submit for resource {resource.id}", resource_id=resource.id)
            return None
        foreign_source = foreign_source_for(provider.provider_type, provider.provider_id)
        return self.pushes.spawn(
            self._submit(foreign_source, resource, batch),
            f"metrics {foreign_source}/{resource.id}"
        )

    async def _submit(self, foreign_source: str, resource: Resource, batch: MetricBatch) -> None:
        node_id = await self.sink.find_node_by_foreign_id(foreign_source, resource.id)
        if node_id is None:
            # Not provisioned yet; the batch is dropped
            self.logger.warning(
                f"No node found for {foreign_source}:{resource.id}; "
                f"dropping {batch.metric_count} metrics",
                resource_id=resource.id
            )
            return
        await self.sink.submit_metrics(node_id, batch)
        self.logger.debug(f"Submitted {batch.metric_count} metrics for node {node_id}", resource_id=resource.id)
