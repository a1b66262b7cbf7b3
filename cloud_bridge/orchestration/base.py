"""
Base orchestrator and background push tracking.
"""

import asyncio
import contextvars
import functools
import logging
from concurrent.futures import Executor
from typing import Any, Awaitable, Callable, Optional, Set

from cloud_bridge.monitoring.status_tracker import RunStatusTracker
from cloud_bridge.providers.base import CloudProvider
from cloud_bridge.providers.registry import ProviderRegistry
from cloud_bridge.sinks.base import ReconciliationSink
from cloud_bridge.utils.errors import DownstreamPushError, ProviderError
from cloud_bridge.utils.structured_logging import LogContext, get_logger

logger = logging.getLogger(__name__)


class PushTracker:
    """
    Runs downstream pushes as background tasks.

    A push failure is logged and never propagates: the run that produced
    the data has already been recorded as successful.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable[Any], description: str) -> asyncio.Task:
        task = asyncio.ensure_future(self._guard(coro, description))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guard(self, coro: Awaitable[Any], description: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            logger.warning(f"Downstream push cancelled: {description}")
            raise
        except DownstreamPushError as e:
            logger.warning(f"Downstream push failed ({description}): {e}")
        except Exception as e:
            logger.error(f"Unexpected error in downstream push ({description}): {e}", exc_info=True)

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the pushes in flight.

        Returns:
            True if every push finished within the timeout
        """
        if not self._tasks:
            return True
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} downstream pushes still running after {timeout}s")
        return not pending

    def cancel_all(self) -> int:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        return len(tasks)


class BaseOrchestrator:
    """
    Shared plumbing for the discovery and collection orchestrators.

    Blocking provider calls run on the worker pool with the caller's
    logging context copied over, so their log lines keep the run's
    correlation id.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        tracker: RunStatusTracker,
        executor: Optional[Executor] = None,
        sink: Optional[ReconciliationSink] = None,
        pushes: Optional[PushTracker] = None
    ):
        self.registry = registry
        self.tracker = tracker
        self.executor = executor
        self.sink = sink
        self.pushes = pushes or PushTracker()
        self.logger = get_logger(
            f"{__name__}.{self.__class__.__name__}",
            LogContext(operation=tracker.kind.value)
        )

    async def _call_provider(
        self,
        provider: CloudProvider,
        func: Callable[..., Any],
        *args: Any,
        resource_id: Optional[str] = None
    ) -> Any:
        """
        Run a blocking provider call on the worker pool.

        Raises:
            ProviderError: The provider's own error, or any other exception
                wrapped with error code PROVIDER_CALL_FAILED
        """
        loop = asyncio.get_running_loop()
        context = contextvars.copy_context()
        try:
            return await loop.run_in_executor(
                self.executor, functools.partial(context.run, func, *args)
            )
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(
                provider.provider_id,
                f"{type(e).__name__}: {e}",
                error_code="PROVIDER_CALL_FAILED",
                resource_id=resource_id
            ) from e

    @property
    def push_enabled(self) -> bool:
        return self.sink is not None
