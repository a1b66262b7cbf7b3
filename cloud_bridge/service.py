"""
Bridge service: schedules, on-demand operations and status for the core.
"""

import asyncio
import functools
import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import asdict, replace
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Union

from cloud_bridge.config.models import BridgeConfig, ScheduleConfig
from cloud_bridge.config.validation import validate_schedule_update
from cloud_bridge.models.core import (
    MetricBatch, Resource, RunKind, RunStatus, ScheduleEntry, ValidationResult
)
from cloud_bridge.monitoring.execution_history import ExecutionHistoryTracker, ExecutionRecord
from cloud_bridge.monitoring.status_tracker import RunStatusTracker
from cloud_bridge.orchestration.base import PushTracker
from cloud_bridge.orchestration.cache import ResultCache
from cloud_bridge.orchestration.collection import CollectionOrchestrator
from cloud_bridge.orchestration.discovery import DiscoveryOrchestrator
from cloud_bridge.providers.base import CloudProvider
from cloud_bridge.providers.factory import create_provider, create_providers
from cloud_bridge.providers.registry import ProviderRegistry
from cloud_bridge.scheduling.scheduler import Scheduler, SchedulerConfig
from cloud_bridge.sinks.base import ReconciliationSink
from cloud_bridge.sinks.opennms import OpenNMSClient
from cloud_bridge.utils.durations import format_minutes
from cloud_bridge.utils.errors import BridgeError, ConfigurationError

logger = logging.getLogger(__name__)

GLOBAL_DISCOVERY = "global:discovery"
GLOBAL_COLLECTION = "global:collection"
GLOBAL_ENTITIES = {
    "discovery": GLOBAL_DISCOVERY,
    "collection": GLOBAL_COLLECTION,
}


def _discovery_entity(provider_id: str) -> str:
    return f"discovery:{provider_id}"


def _collection_entity(resource_id: str) -> str:
    return f"collection:{resource_id}"


class BridgeService:
    """
    Facade over the scheduling and orchestration core.

    Owns one Scheduler, one worker pool for blocking provider calls, the
    result cache and one status tracker per run kind. Per-provider
    discovery schedules, per-resource collection schedules and the two
    global schedules all live on the same Scheduler under distinct
    entity ids.
    """

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        registry: Optional[ProviderRegistry] = None,
        sink: Optional[ReconciliationSink] = None,
        executor: Optional[Executor] = None
    ):
        self.config = config or BridgeConfig()
        scheduling = self.config.scheduling

        self.registry = registry or ProviderRegistry()
        self.cache = ResultCache()
        self.history = ExecutionHistoryTracker(max_records_per_entity=scheduling.history_size)
        self.discovery_status = RunStatusTracker(RunKind.DISCOVERY, self.history)
        self.collection_status = RunStatusTracker(RunKind.COLLECTION, self.history)

        self.scheduler = Scheduler(SchedulerConfig(
            timezone=scheduling.timezone,
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': scheduling.misfire_grace_time
            }
        ))

        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=scheduling.max_workers,
            thread_name_prefix="cloud-bridge-worker"
        )

        self.sink = sink
        self.pushes = PushTracker()
        self.discovery = DiscoveryOrchestrator(
            self.registry, self.discovery_status, self.cache,
            executor=self.executor, sink=sink, pushes=self.pushes
        )
        self.collection = CollectionOrchestrator(
            self.registry, self.collection_status, self.discovery,
            executor=self.executor, sink=sink, pushes=self.pushes
        )

        self._global_schedules: Dict[str, ScheduleConfig] = {
            "discovery": replace(scheduling.discovery),
            "collection": replace(scheduling.collection),
        }
        self._scheduled_resources: Dict[str, Resource] = {}
        self._schedule_lock = threading.RLock()
        self._started = False

    @classmethod
    def from_config(
        cls,
        config: BridgeConfig,
        sink: Optional[ReconciliationSink] = None
    ) -> "BridgeService":
        """
        Build a service with the configured providers and OpenNMS sink.

        Disabled providers are skipped; a disabled ``opennms`` section
        means no sink and no downstream pushes.
        """
        if sink is None and config.opennms.enabled:
            sink = OpenNMSClient(config.opennms)

        service = cls(config, sink=sink)
        for provider in create_providers(config.providers):
            service.register_provider(provider)
        return service

    @property
    def started(self) -> bool:
        return self._started

    # Lifecycle

    def start(self) -> None:
        """
        Start the scheduler and arm the enabled global schedules.

        Must be called from a running event loop.
        """
        if self._started:
            logger.warning("Bridge service already started")
            return

        self.scheduler.start()
        with self._schedule_lock:
            for target in GLOBAL_ENTITIES:
                self._arm_global(target)
        self._started = True
        logger.info(f"Bridge service started with providers: {', '.join(self.registry.ids()) or 'none'}")

    async def shutdown(self, push_timeout: Optional[float] = 30.0) -> None:
        """Stop all timers, let running ticks and pushes finish, release resources."""
        logger.info("Shutting down bridge service")
        await self.scheduler.shutdown(wait=True)

        if not await self.pushes.drain(timeout=push_timeout):
            cancelled = self.pushes.cancel_all()
            logger.warning(f"Cancelled {cancelled} unfinished downstream pushes")

        if self.sink is not None:
            await self.sink.close()
        self.registry.close_all()
        if self._owns_executor:
            self.executor.shutdown(wait=False)

        self._started = False
        logger.info("Bridge service stopped")

    async def wait_for_pushes(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight downstream pushes; True if all finished."""
        return await self.pushes.drain(timeout=timeout)

    # Providers

    def register_provider(self, provider: CloudProvider, replace: bool = False) -> bool:
        return self.registry.register(provider, replace=replace)

    def unregister_provider(self, provider_id: str) -> bool:
        """
        Remove a provider with its schedules and cached resources.

        Returns:
            True if the provider was registered
        """
        self.stop_discovery(provider_id)
        for resource_id in self.collection.mapped_resources(provider_id):
            self.stop_collection(resource_id)
            self.collection.unmap_resource(resource_id)
        self.cache.invalidate(provider_id)

        provider = self.registry.unregister(provider_id)
        if provider is None:
            return False
        provider.close()
        return True

    def _resolve_provider(self, provider: Union[CloudProvider, str]) -> CloudProvider:
        if isinstance(provider, CloudProvider):
            registered = self.registry.get(provider.provider_id)
            if registered is None:
                self.registry.register(provider)
                return provider
            if registered is not provider:
                raise ConfigurationError(
                    f"A different provider is already registered as {provider.provider_id}",
                    error_code="PROVIDER_CONFLICT"
                )
            return registered
        return self.registry.require(provider)

    async def validate_provider(self, provider_id: str) -> ValidationResult:
        """Run the provider's validation on the worker pool."""
        provider = self.registry.require(provider_id)
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self.executor, provider.validate)
        except BridgeError as e:
            return ValidationResult.invalid(e.message)

    async def update_provider_configuration(self, provider_id: str, changes: Mapping[str, Any]) -> None:
        """
        Apply configuration changes to a provider transactionally.

        The provider's cached resources are dropped on success so the next
        read goes back to the provider.

        Raises:
            ConfigurationError: If the provider is unknown or the changes
                are rejected; the previous configuration stays in force
        """
        provider = self.registry.require(provider_id)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self.executor, provider.update_configuration, changes)
        self.cache.invalidate(provider_id)

    # Discovery

    def schedule_discovery(
        self,
        provider: Union[CloudProvider, str],
        config: ScheduleConfig
    ) -> Optional[ScheduleEntry]:
        """
        Schedule recurring discovery of a provider, replacing any existing schedule.

        A provider instance that is not registered yet is registered. With
        ``enabled=False`` the existing schedule is stopped and the provider
        is marked DISABLED.

        Returns:
            The new ScheduleEntry, or None when the schedule is disabled

        Raises:
            ConfigurationError: If the provider is unknown or the schedule invalid
        """
        provider = self._resolve_provider(provider)
        provider_id = provider.provider_id
        self._check_schedule(config)

        with self._schedule_lock:
            if not config.enabled:
                self.scheduler.stop(_discovery_entity(provider_id))
                self.discovery_status.mark_unscheduled(provider_id, disabled=True)
                logger.info(f"Discovery disabled for provider {provider_id}")
                return None

            entry = self.scheduler.schedule(
                _discovery_entity(provider_id),
                config.initial_delay,
                config.interval,
                functools.partial(self._discovery_tick, provider_id)
            )
            self.discovery_status.mark_scheduled(
                provider_id,
                interval=config.interval,
                next_run=entry.first_run_time,
                job_id=entry.job_id,
                entity_type=provider.provider_type,
                provider_id=provider_id
            )
        return entry

    def stop_discovery(self, provider_id: str) -> bool:
        """Cancel a provider's discovery schedule; no-op if none exists."""
        with self._schedule_lock:
            stopped = self.scheduler.stop(_discovery_entity(provider_id))
            if provider_id in self.discovery_status:
                self.discovery_status.mark_unscheduled(provider_id)
        return stopped

    async def discover_resources(self, provider_id: str) -> FrozenSet[Resource]:
        return await self.discovery.discover_resources(provider_id)

    async def run_discovery(self, provider_id: str, push: bool = True) -> FrozenSet[Resource]:
        """Discover a provider now, bypassing the cache."""
        result = await self.discovery.run_discovery(provider_id, push=push)
        return result.unwrap()

    def get_discovery_status(self) -> List[RunStatus]:
        return sorted(self.discovery_status.all(), key=lambda s: s.entity_id)

    async def _discovery_tick(self, provider_id: str) -> None:
        result = await self.discovery.run_discovery(provider_id, exclusive=True)
        self.discovery_status.update_next_run(
            provider_id, self.scheduler.next_run(_discovery_entity(provider_id))
        )
        if result.error is not None:
            logger.error(f"Scheduled discovery of {provider_id} failed", exc_info=result.error)

    # Collection

    def schedule_collection(self, resource: Resource, config: ScheduleConfig) -> Optional[ScheduleEntry]:
        """
        Schedule recurring collection of a resource, replacing any existing schedule.

        The owning provider is taken from ``config.provider_id``, then the
        resource's own back-reference, then an earlier mapping.

        Returns:
            The new ScheduleEntry, or None when the schedule is disabled

        Raises:
            ConfigurationError: If no registered provider can be resolved
                or the schedule is invalid
        """
        provider_id = config.provider_id or resource.provider_id or self.collection.provider_for(resource.id)
        if not provider_id:
            raise ConfigurationError(
                f"No provider mapping for resource {resource.id}",
                error_code="NO_PROVIDER_MAPPING"
            )
        self.registry.require(provider_id)
        self._check_schedule(config)

        with self._schedule_lock:
            self.collection.map_resource(resource.id, provider_id)
            if not config.enabled:
                self.scheduler.stop(_collection_entity(resource.id))
                self._scheduled_resources.pop(resource.id, None)
                self.collection_status.mark_unscheduled(resource.id, disabled=True)
                logger.info(f"Collection disabled for resource {resource.id}")
                return None

            self._scheduled_resources[resource.id] = resource
            entry = self.scheduler.schedule(
                _collection_entity(resource.id),
                config.initial_delay,
                config.interval,
                functools.partial(self._collection_tick, resource.id)
            )
            self.collection_status.mark_scheduled(
                resource.id,
                interval=config.interval,
                next_run=entry.first_run_time,
                job_id=entry.job_id,
                entity_type=resource.resource_type,
                provider_id=provider_id
            )
        return entry

    def stop_collection(self, resource_id: str) -> bool:
        """Cancel a resource's collection schedule; no-op if none exists."""
        with self._schedule_lock:
            stopped = self.scheduler.stop(_collection_entity(resource_id))
            self._scheduled_resources.pop(resource_id, None)
            if resource_id in self.collection_status:
                self.collection_status.mark_unscheduled(resource_id)
        return stopped

    def collect_metrics(self, resource: Resource) -> "asyncio.Task[MetricBatch]":
        """
        Start collecting a resource through its mapped provider.

        Returns:
            Task resolving to the MetricBatch, or raising ConfigurationError
            or ProviderError
        """
        return asyncio.ensure_future(self._collect_mapped(resource))

    async def _collect_mapped(self, resource: Resource) -> MetricBatch:
        result = await self.collection.collect(resource)
        return result.unwrap()

    async def collect_metrics_for(self, provider_id: str, resource: Resource) -> MetricBatch:
        result = await self.collection.collect_for(provider_id, resource)
        return result.unwrap()

    async def collect_all_metrics(self, provider_id: str, push: bool = True) -> List[MetricBatch]:
        return await self.collection.collect_all(provider_id, push=push)

    def get_collection_status(self) -> List[RunStatus]:
        return sorted(self.collection_status.all(), key=lambda s: s.entity_id)

    async def _collection_tick(self, resource_id: str) -> None:
        resource = self._current_resource(resource_id)
        if resource is None:
            logger.warning(f"Collection tick for unknown resource {resource_id}")
            return

        result = await self.collection.collect(resource, exclusive=True)
        self.collection_status.update_next_run(
            resource_id, self.scheduler.next_run(_collection_entity(resource_id))
        )
        if result.error is not None:
            logger.error(f"Scheduled collection of {resource_id} failed", exc_info=result.error)

    def _current_resource(self, resource_id: str) -> Optional[Resource]:
        """Latest discovered snapshot of a scheduled resource, else the one scheduled."""
        with self._schedule_lock:
            scheduled = self._scheduled_resources.get(resource_id)
        provider_id = self.collection.provider_for(resource_id)
        for resource in (self.cache.get(provider_id) if provider_id else None) or ():
            if resource.id == resource_id:
                return resource
        return scheduled

    # Global schedules

    def _global_schedule(self, target: str) -> ScheduleConfig:
        if target not in GLOBAL_ENTITIES:
            raise ConfigurationError(f"Unknown schedule target: {target}", error_code="INVALID_SCHEDULE")
        return self._global_schedules[target]

    def _arm_global(self, target: str) -> Optional[ScheduleEntry]:
        schedule = self._global_schedules[target]
        entity_id = GLOBAL_ENTITIES[target]
        self.scheduler.stop(entity_id)
        if not schedule.enabled:
            logger.info(f"Global {target} schedule is disabled")
            return None
        tick = self._global_discovery_tick if target == "discovery" else self._global_collection_tick
        return self.scheduler.schedule(entity_id, schedule.initial_delay, schedule.interval, tick)

    async def _global_discovery_tick(self) -> None:
        outcomes = await self.discovery.run_all(exclusive=True)
        for provider_id, result in outcomes.items():
            if result.error is not None:
                logger.error(f"Global discovery of {provider_id} failed: {result.error}")

    async def _global_collection_tick(self) -> None:
        provider_ids = self.registry.ids()
        results = await asyncio.gather(
            *(self.collection.collect_all(provider_id, exclusive=True) for provider_id in provider_ids),
            return_exceptions=True
        )
        for provider_id, result in zip(provider_ids, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                logger.error(f"Global collection of {provider_id} failed: {result}", exc_info=result)

    def get_schedule_info(self, target: str = "collection") -> Dict[str, Any]:
        """
        Current global schedule: enabled flag, delays in whole minutes, and
        the next and last run times.
        """
        with self._schedule_lock:
            schedule = self._global_schedule(target)
            entity_id = GLOBAL_ENTITIES[target]
            return {
                "enabled": schedule.enabled,
                "initial_delay": format_minutes(schedule.initial_delay),
                "interval": format_minutes(schedule.interval),
                "next_run": self.scheduler.next_run(entity_id),
                "last_run": self.scheduler.last_tick(entity_id),
            }

    def update_schedule(self, config: Mapping[str, Any], target: str = "collection") -> bool:
        """
        Apply a loose schedule update to a global schedule.

        Accepts ``enabled``, ``initial_delay``/``initialDelay`` and
        ``interval``; bare numbers are minutes. The update is validated
        before the current timer is touched, so a rejected update leaves
        the previous schedule running.

        Returns:
            True if the update was applied, False on any error
        """
        try:
            update = validate_schedule_update(config)
            with self._schedule_lock:
                updated = update.apply_to(self._global_schedule(target))
                self._check_schedule(updated)

                self.scheduler.stop(GLOBAL_ENTITIES[target])
                self._global_schedules[target] = updated
                if updated.enabled:
                    self._arm_global(target)

            logger.info(
                f"Updated global {target} schedule: enabled={updated.enabled}, "
                f"initial_delay={updated.initial_delay}, interval={updated.interval}"
            )
            return True
        except Exception as e:
            logger.error(f"Failed to update global {target} schedule: {e}")
            return False

    @staticmethod
    def _check_schedule(config: ScheduleConfig) -> None:
        errors = config.validate()
        if errors:
            raise ConfigurationError("; ".join(errors), error_code="INVALID_SCHEDULE")

    # Configuration reload

    async def apply_config(self, config: BridgeConfig) -> None:
        """
        Apply a reloaded configuration.

        New providers are registered, removed ones unregistered, changed
        ones updated in place. Provider construction and reconfiguration
        run on the worker pool. The global schedules are re-armed from the
        new scheduling section. A provider whose update or replacement is
        rejected keeps its previous configuration.
        """
        loop = asyncio.get_running_loop()
        wanted = {p.provider_id: p for p in config.providers if p.enabled}

        for provider_id in self.registry.ids():
            if provider_id not in wanted:
                logger.info(f"Provider {provider_id} removed from configuration")
                self.unregister_provider(provider_id)

        for provider_id, provider_config in wanted.items():
            provider = self.registry.get(provider_id)
            try:
                if provider is None:
                    created = await loop.run_in_executor(self.executor, create_provider, provider_config)
                    self.register_provider(created)
                elif provider.config.backend != provider_config.backend:
                    # Replacement is built before the old provider is removed
                    created = await loop.run_in_executor(self.executor, create_provider, provider_config)
                    self.unregister_provider(provider_id)
                    self.register_provider(created)
                elif provider.config != provider_config:
                    await self.update_provider_configuration(provider_id, asdict(provider_config))
            except BridgeError as e:
                logger.error(f"Kept previous state of provider {provider_id}: {e}")

        with self._schedule_lock:
            self.config = config
            self._global_schedules = {
                "discovery": replace(config.scheduling.discovery),
                "collection": replace(config.scheduling.collection),
            }
            if self._started:
                for target in GLOBAL_ENTITIES:
                    self._arm_global(target)
        logger.info("Applied reloaded configuration")

    # Status

    def get_execution_history(
        self,
        entity_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[ExecutionRecord]:
        return self.history.get_execution_history(entity_id, limit=limit)

    def get_status(self) -> Dict[str, Any]:
        """Overall status for CLI and API output."""
        def _schedule(target: str) -> Dict[str, Any]:
            info = self.get_schedule_info(target)
            for key in ("next_run", "last_run"):
                info[key] = info[key].isoformat() if info[key] else None
            return info

        return {
            "started": self._started,
            "providers": [provider.describe() for provider in self.registry.all()],
            "scheduler": self.scheduler.get_status(),
            "schedules": {target: _schedule(target) for target in GLOBAL_ENTITIES},
            "discovery": [status.to_dict() for status in self.get_discovery_status()],
            "collection": [status.to_dict() for status in self.get_collection_status()],
            "cached_providers": self.cache.provider_ids(),
            "pending_pushes": self.pushes.pending,
            "statistics": self.history.get_execution_statistics(),
        }
