"""
Last discovered resource set per provider.
"""

import logging
import threading
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from cloud_bridge.models.core import Resource

logger = logging.getLogger(__name__)


class ResultCache:
    """
    Holds the most recent discovery result of each provider.

    Entries never expire. A new discovery result replaces the previous set
    wholesale, so resources the provider stopped reporting disappear.
    """

    def __init__(self):
        self._entries: Dict[str, Tuple[FrozenSet[Resource], datetime]] = {}
        self._lock = threading.Lock()

    def get(self, provider_id: str) -> Optional[FrozenSet[Resource]]:
        with self._lock:
            entry = self._entries.get(provider_id)
        return entry[0] if entry else None

    def get_fresh(self, provider_id: str) -> Optional[FrozenSet[Resource]]:
        """Cached set if present and non-empty, otherwise None."""
        resources = self.get(provider_id)
        return resources if resources else None

    def put(self, provider_id: str, resources: Iterable[Resource]) -> FrozenSet[Resource]:
        snapshot = frozenset(resources)
        with self._lock:
            self._entries[provider_id] = (snapshot, datetime.now())
        logger.debug(f"Cached {len(snapshot)} resources for provider {provider_id}")
        return snapshot

    def updated_at(self, provider_id: str) -> Optional[datetime]:
        with self._lock:
            entry = self._entries.get(provider_id)
        return entry[1] if entry else None

    def find_resource(self, resource_id: str) -> Optional[Resource]:
        """Look a resource up across all cached providers."""
        with self._lock:
            entries = list(self._entries.values())
        for resources, _ in entries:
            for resource in resources:
                if resource.id == resource_id:
                    return resource
        return None

    def invalidate(self, provider_id: str) -> None:
        with self._lock:
            self._entries.pop(provider_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def provider_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._entries)

    def __contains__(self, provider_id: str) -> bool:
        with self._lock:
            return provider_id in self._entries
