"""Background health probing of registered clusters.

Each registered cluster gets its own asyncio task that probes it on a fixed
interval. A failing cluster never delays or stops the probing of another.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from kubefleet.config import ClusterManagerSettings
from kubefleet.errors import NotRegisteredError
from kubefleet.models import ClusterStatus
from kubefleet.observability import get_logger

logger = get_logger(__name__)

ProbeFn = Callable[[str], Awaitable[ClusterStatus]]


class HealthService:
    """Schedules periodic health probes, one task per cluster.

    The probe itself (and the resulting state transition) is owned by the
    registry; this service only decides when to run it.
    """

    def __init__(self, probe: ProbeFn, settings: ClusterManagerSettings):
        self.probe = probe
        self.interval = settings.health_check_interval_seconds
        self.enabled = settings.health_checks_enabled
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def watched(self) -> list[str]:
        """Names of clusters currently being probed."""
        return sorted(self._tasks)

    def watch(self, name: str) -> None:
        """Start probing ``name`` if not already probing it."""
        if not self.enabled:
            return
        task = self._tasks.get(name)
        if task is not None and not task.done():
            return
        self._tasks[name] = asyncio.create_task(
            self._run(name), name=f"health-probe:{name}"
        )
        logger.debug("Health probing started", cluster=name)

    def unwatch(self, name: str) -> None:
        """Stop probing ``name``."""
        task = self._tasks.pop(name, None)
        if task is not None:
            task.cancel()
            logger.debug("Health probing stopped", cluster=name)

    async def stop(self) -> None:
        """Cancel every probe task and wait for them to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Periodic health checks stopped", clusters=len(tasks))

    async def _run(self, name: str) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.probe(name)
            except NotRegisteredError:
                logger.debug("Cluster no longer registered, probe loop exiting", cluster=name)
                break
            except Exception as e:
                logger.error("Periodic health check failed", cluster=name, error=str(e))

        if self._tasks.get(name) is asyncio.current_task():
            del self._tasks[name]
