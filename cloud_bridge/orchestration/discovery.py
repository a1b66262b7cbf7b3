"""
Discovery orchestration: provider discovery, cache update, status, push.
"""

import asyncio
from typing import Dict, FrozenSet, Iterable, List, Optional

from cloud_bridge.models.core import DiscoveredNode, OrchestrationResult, Resource
from cloud_bridge.orchestration.base import BaseOrchestrator
from cloud_bridge.orchestration.cache import ResultCache
from cloud_bridge.providers.base import CloudProvider
from cloud_bridge.sinks.base import foreign_source_for
from cloud_bridge.utils.errors import ConfigurationError, ProviderError
from cloud_bridge.utils.structured_logging import with_correlation_id


class DiscoveryOrchestrator(BaseOrchestrator):
    """
    Runs discovery passes for providers.

    A successful pass overwrites the provider's cached resource set and is
    recorded as COMPLETED before anything is pushed downstream. The push
    runs in the background and cannot undo the local result.
    """

    def __init__(self, registry, tracker, cache: ResultCache, executor=None, sink=None, pushes=None):
        super().__init__(registry, tracker, executor=executor, sink=sink, pushes=pushes)
        self.cache = cache

    def _resolve(self, provider_id: str) -> CloudProvider:
        return self.registry.require(provider_id)

    @with_correlation_id
    async def run_discovery(
        self,
        provider_id: str,
        exclusive: bool = False,
        push: bool = True
    ) -> OrchestrationResult[FrozenSet[Resource]]:
        """
        Run one discovery pass for a provider.

        Args:
            provider_id: Provider to discover
            exclusive: Skip the pass if another discovery of this provider
                is still running (scheduled ticks)
            push: Push the result downstream after a successful pass

        Returns:
            OrchestrationResult carrying the discovered set, the error, or
            the skip marker
        """
        try:
            provider = self._resolve(provider_id)
        except ConfigurationError as e:
            self.logger.error(f"Cannot run discovery: {e}", provider_id=provider_id)
            return OrchestrationResult.failed(provider_id, e)

        run_number = self.tracker.begin_run(
            provider_id,
            exclusive=exclusive,
            entity_type=provider.provider_type,
            provider_id=provider_id
        )
        if run_number is None:
            return OrchestrationResult.skip(provider_id)

        self.logger.info(f"Starting discovery for provider {provider_id}", provider_id=provider_id)
        try:
            discovered = await self._call_provider(provider, provider.discover)
        except ProviderError as e:
            self.tracker.fail_run(provider_id, run_number, e.message)
            self.logger.error(
                f"Discovery failed for provider {provider_id}: {e}",
                provider_id=provider_id, error_code=e.error_code
            )
            return OrchestrationResult.failed(provider_id, e)
        except asyncio.CancelledError:
            self.tracker.fail_run(provider_id, run_number, "Discovery cancelled")
            raise

        # Cache before status so a COMPLETED reader never sees the old set
        resources = self.cache.put(provider_id, discovered)
        self.tracker.complete_run(provider_id, run_number, len(resources))
        self.logger.info(
            f"Discovered {len(resources)} resources from provider {provider_id}",
            provider_id=provider_id, result_count=len(resources)
        )

        if push:
            self.push_resources(provider, resources)
        return OrchestrationResult.ok(provider_id, resources)

    async def discover_resources(self, provider_id: str) -> FrozenSet[Resource]:
        """
        Read-through lookup of a provider's resources.

        Returns the cached set when it is non-empty, otherwise runs a
        discovery pass (without a downstream push) and returns its result.

        Raises:
            ConfigurationError: If the provider is not registered
            ProviderError: If the fresh discovery fails
        """
        self._resolve(provider_id)
        cached = self.cache.get_fresh(provider_id)
        if cached is not None:
            self.logger.debug(f"Using {len(cached)} cached resources for provider {provider_id}")
            return cached

        result = await self.run_discovery(provider_id, push=False)
        return result.unwrap()

    def build_nodes(self, provider: CloudProvider, resources: Iterable[Resource]) -> List[DiscoveredNode]:
        return [DiscoveredNode.from_resource(resource, provider.provider_id) for resource in resources]

    def push_resources(self, provider: CloudProvider, resources: Iterable[Resource]) -> Optional[asyncio.Task]:
        """
        Upsert the provider's requisition and synchronize it in the background.

        Returns:
            The push task, or None when no sink is configured
        """
        if not self.push_enabled:
            return None
        foreign_source = foreign_source_for(provider.provider_type, provider.provider_id)
        nodes = self.build_nodes(provider, resources)
        return self.pushes.spawn(
            self._reconcile(foreign_source, nodes),
            f"requisition {foreign_source}"
        )

    async def _reconcile(self, foreign_source: str, nodes: List[DiscoveredNode]) -> None:
        await self.sink.upsert_nodes(foreign_source, nodes)
        await self.sink.synchronize(foreign_source)
        self.logger.info(f"Pushed {len(nodes)} nodes to requisition {foreign_source}")

    async def run_all(self, exclusive: bool = False, push: bool = True) -> Dict[str, OrchestrationResult]:
        """
        Discover every registered provider concurrently.

        A failing provider does not affect the others; each outcome is in
        the returned mapping.
        """
        provider_ids = self.registry.ids()
        if not provider_ids:
            self.logger.info("No providers registered; nothing to discover")
            return {}

        results = await asyncio.gather(
            *(self.run_discovery(provider_id, exclusive=exclusive, push=push) for provider_id in provider_ids)
        )
        outcomes = dict(zip(provider_ids, results))
        failed = [pid for pid, result in outcomes.items() if result.error is not None]
        self.logger.info(
            f"Discovery pass finished for {len(provider_ids)} providers ({len(failed)} failed)"
        )
        return outcomes
