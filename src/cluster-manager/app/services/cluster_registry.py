"""Cluster registry: the live mapping from cluster name to client handle.

Concurrency model:
- ``get`` and ``list`` are plain dict reads with no lock and no I/O.
- ``register``, ``remove``, ``refresh`` and the application of a health
  probe result hold a lock scoped to the cluster name, so work on different
  names never blocks and work on one name is serialized.
- Entries are immutable and replaced whole, so a reader never sees a
  half-updated entry.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from kubernetes.client.rest import ApiException
from sqlalchemy.exc import SQLAlchemyError
from urllib3.exceptions import HTTPError

from kubefleet.config import ClusterManagerSettings
from kubefleet.errors import (
    AlreadyExistsError,
    ClusterUnavailableError,
    ConflictError,
    ConnectionFailedError,
    DuplicateNameError,
    InvalidConfigError,
    KubeFleetError,
    NotRegisteredError,
    PersistenceUnavailableError,
    redact,
)
from kubefleet.models import Cluster, ClusterStatus, ClusterSummary
from kubefleet.observability import get_logger

from .cluster_client import ClientHandle, build_client_handle
from .credential_parser import ConnectionParameters, parse_credentials
from .health_service import HealthService

if TYPE_CHECKING:
    from ..repositories import RepositoryFactory

logger = get_logger(__name__)

Parser = Callable[[bytes], ConnectionParameters]
ClientFactory = Callable[[str, ConnectionParameters], ClientHandle]


@dataclass(frozen=True)
class RegistryEntry:
    """One registered cluster: its persisted snapshot and live handle."""

    cluster: Cluster
    handle: ClientHandle
    status: ClusterStatus
    failures: int = 0


def _describe_probe_error(error: BaseException) -> str:
    if isinstance(error, ApiException):
        return f"HTTP {error.status} {error.reason}"
    if isinstance(error, TimeoutError):
        return "probe timed out"
    return redact(f"{type(error).__name__}: {error}")


class ClusterRegistry:
    """Authoritative source of which clusters exist and whether they are reachable."""

    def __init__(
        self,
        repositories: RepositoryFactory,
        settings: ClusterManagerSettings,
        *,
        parser: Parser = parse_credentials,
        client_factory: ClientFactory = build_client_handle,
    ):
        self.repository = repositories.clusters
        self.settings = settings
        self.parser = parser
        self.client_factory = client_factory
        self.health = HealthService(self.probe, settings)
        self._entries: dict[str, RegistryEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, name: str) -> asyncio.Lock:
        return self._locks.setdefault(name, asyncio.Lock())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, name: str) -> ClientHandle:
        """Return the live handle for ``name``.

        Raises:
            NotRegisteredError: If ``name`` is not registered
            ClusterUnavailableError: If ``name`` is registered but unhealthy
        """
        entry = self._entries.get(name)
        if entry is None:
            raise NotRegisteredError(f"Cluster '{name}' is not registered", cluster=name)
        if entry.status is not ClusterStatus.CONNECTED:
            raise ClusterUnavailableError(
                f"Cluster '{name}' is {entry.status.value.lower()}",
                cluster=name,
                status=entry.status.value,
            )
        return entry.handle

    def list(self) -> list[ClusterSummary]:
        """Snapshot of every registered cluster, ordered by name."""
        entries = dict(self._entries)
        return [
            ClusterSummary(name=name, status=entries[name].status)
            for name in sorted(entries)
        ]

    def describe(self, name: str) -> Cluster:
        """Return the last persisted snapshot of a registered cluster."""
        entry = self._entries.get(name)
        if entry is None:
            raise NotRegisteredError(f"Cluster '{name}' is not registered", cluster=name)
        return entry.cluster.model_copy(update={"status": entry.status})

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def register(
        self, name: str, credential_blob: bytes, description: str = ""
    ) -> Cluster:
        """Register a cluster and connect to it.

        The cluster is Pending while its credentials are parsed and its API
        server probed; it only becomes visible once the probe succeeds.

        Raises:
            DuplicateNameError: If ``name`` is already registered
            InvalidConfigError: If the credentials cannot be parsed
            ConnectionFailedError: If the probe fails; nothing is stored
        """
        async with self._lock(name):
            if name in self._entries:
                raise DuplicateNameError(f"Cluster '{name}' is already registered", cluster=name)

            logger.info("Registering cluster", cluster=name, status=ClusterStatus.PENDING.value)
            handle = self._build(name, credential_blob)
            try:
                await self._probe_handle(handle, self.settings.connect_timeout_seconds)
                cluster = await self._store_registration(name, credential_blob, description)
            except BaseException:
                handle.close()
                raise

            self._install(RegistryEntry(cluster=cluster, handle=handle, status=ClusterStatus.CONNECTED))
            logger.info(
                "Cluster registered",
                cluster=name,
                cluster_id=cluster.id,
                server_version=handle.server_version,
            )
            return cluster

    async def remove(self, name: str) -> None:
        """Disable a cluster and drop its handle. Idempotent."""
        async with self._lock(name):
            stored = await self.repository.find_by_name(name)
            if stored is not None and stored.status is not ClusterStatus.DISABLED:
                await self._save(stored, {"status": ClusterStatus.DISABLED})

            self.health.unwatch(name)
            # In-flight calls may still hold the handle; it is released once they drop it.
            entry = self._entries.pop(name, None)

        if entry is None and (stored is None or stored.status is ClusterStatus.DISABLED):
            logger.debug("Cluster already removed", cluster=name)
        else:
            logger.info("Cluster removed", cluster=name)

    async def refresh(self, name: str, credential_blob: bytes) -> Cluster:
        """Rotate the credentials of a registered cluster.

        The new handle is built and probed first; only then is it swapped in,
        in one step under the cluster's lock. On any failure the old handle
        stays in place.

        Raises:
            NotRegisteredError: If ``name`` is not registered
            InvalidConfigError: If the new credentials cannot be parsed
            ConnectionFailedError: If the new handle fails its probe
        """
        if name not in self._entries:
            raise NotRegisteredError(f"Cluster '{name}' is not registered", cluster=name)

        handle = self._build(name, credential_blob)
        try:
            await self._probe_handle(handle, self.settings.connect_timeout_seconds)
            async with self._lock(name):
                entry = self._entries.get(name)
                if entry is None:
                    raise NotRegisteredError(f"Cluster '{name}' is not registered", cluster=name)
                cluster = await self._save(
                    entry.cluster,
                    {"credential_blob": credential_blob, "status": ClusterStatus.CONNECTED},
                )
                self._entries[name] = RegistryEntry(
                    cluster=cluster, handle=handle, status=ClusterStatus.CONNECTED
                )
        except BaseException:
            handle.close()
            raise

        logger.info("Cluster credentials rotated", cluster=name, resource_version=cluster.resource_version)
        return cluster

    async def probe(self, name: str) -> ClusterStatus:
        """Run one health probe and apply the resulting state transition.

        A Connected cluster becomes Unhealthy after
        ``health_check_failure_threshold`` consecutive failures and returns to
        Connected on the next success. A result obtained from a handle that
        was rotated out meanwhile is discarded.
        """
        entry = self._entries.get(name)
        if entry is None:
            raise NotRegisteredError(f"Cluster '{name}' is not registered", cluster=name)

        handle = entry.handle
        error: str | None = None
        try:
            await self._probe_handle(handle, self.settings.probe_timeout_seconds)
        except ConnectionFailedError as e:
            error = e.message

        async with self._lock(name):
            current = self._entries.get(name)
            if current is None:
                raise NotRegisteredError(f"Cluster '{name}' is not registered", cluster=name)
            if current.handle is not handle:
                return current.status

            if error is None:
                failures = 0
                status = ClusterStatus.CONNECTED
            else:
                failures = current.failures + 1
                status = current.status
                if failures >= self.settings.health_check_failure_threshold:
                    status = ClusterStatus.UNHEALTHY
                logger.debug("Health probe failed", cluster=name, failures=failures, error=error)

            updated = replace(current, status=status, failures=failures)
            self._entries[name] = updated
            if status is not current.status:
                logger.warning(
                    "Cluster state changed",
                    cluster=name,
                    old_state=current.status.value,
                    new_state=status.value,
                    error=error,
                )
                await self._save_probe_status(updated)
            return status

    async def rehydrate(self) -> None:
        """Restore every non-disabled persisted cluster at startup.

        A cluster that fails its probe is kept as Unhealthy and retried by the
        health prober. A cluster whose stored credentials cannot be parsed is
        skipped. Neither aborts startup.

        Raises:
            PersistenceUnavailableError: If the store cannot be read at all
        """
        try:
            clusters = await self.repository.list_active()
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceUnavailableError(f"Cannot load clusters: {type(e).__name__}") from e
        except InvalidConfigError as e:
            raise PersistenceUnavailableError(e.message) from e

        # Each restore holds only its own name lock, so probes overlap.
        results = await asyncio.gather(
            *(self._restore(cluster) for cluster in clusters), return_exceptions=True
        )
        for cluster, result in zip(clusters, results):
            if isinstance(result, (KubeFleetError, SQLAlchemyError)):
                logger.error("Cluster could not be restored", cluster=cluster.name, error=str(result))
            elif isinstance(result, BaseException):
                raise result

        logger.info("Registry rehydrated", stored=len(clusters), restored=len(self._entries))

    async def close(self) -> None:
        """Stop probing and release every handle."""
        await self.health.stop()
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            entry.handle.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build(self, name: str, credential_blob: bytes) -> ClientHandle:
        try:
            params = self.parser(credential_blob)
        except InvalidConfigError as e:
            e.context.setdefault("cluster", name)
            logger.warning("Invalid cluster credentials", cluster=name, error=e.message)
            raise
        return self.client_factory(name, params)

    async def _probe_handle(self, handle: ClientHandle, timeout: float) -> None:
        try:
            await asyncio.wait_for(asyncio.to_thread(handle.probe, timeout), timeout=timeout)
        except (ApiException, HTTPError, OSError, TimeoutError) as e:
            raise ConnectionFailedError(
                f"Cluster '{handle.cluster_name}' is unreachable: {_describe_probe_error(e)}",
                cluster=handle.cluster_name,
            ) from e

    def _install(self, entry: RegistryEntry) -> None:
        self._entries[entry.cluster.name] = entry
        self.health.watch(entry.cluster.name)

    async def _store_registration(
        self, name: str, credential_blob: bytes, description: str
    ) -> Cluster:
        existing = await self.repository.find_by_name(name)
        if existing is not None:
            if existing.status is not ClusterStatus.DISABLED:
                raise DuplicateNameError(f"Cluster '{name}' is already registered", cluster=name)
            # A disabled row is a tombstone; a new registration replaces it.
            await self.repository.delete(existing.id)

        try:
            return await self.repository.create(
                {
                    "name": name,
                    "credential_blob": credential_blob,
                    "description": description,
                    "status": ClusterStatus.CONNECTED,
                }
            )
        except AlreadyExistsError as e:
            raise DuplicateNameError(f"Cluster '{name}' is already registered", cluster=name) from e

    async def _save(self, cluster: Cluster, data: dict[str, Any]) -> Cluster:
        try:
            return await self.repository.update(cluster.id, cluster.resource_version, data)
        except ConflictError:
            # The row was edited outside the registry; registry fields win.
            latest = await self.repository.get(cluster.id)
            return await self.repository.update(latest.id, latest.resource_version, data)

    async def _save_probe_status(self, entry: RegistryEntry) -> None:
        name = entry.cluster.name
        try:
            cluster = await self._save(entry.cluster, {"status": entry.status})
        except (KubeFleetError, SQLAlchemyError) as e:
            logger.error("Failed to persist cluster state", cluster=name, error=str(e))
            return
        self._entries[name] = replace(entry, cluster=cluster)

    async def _restore(self, cluster: Cluster) -> None:
        name = cluster.name
        async with self._lock(name):
            if name in self._entries:
                return

            handle = self._build(name, cluster.credential_blob)
            try:
                failures = 0
                status = ClusterStatus.CONNECTED
                try:
                    await self._probe_handle(handle, self.settings.connect_timeout_seconds)
                except ConnectionFailedError as e:
                    failures = self.settings.health_check_failure_threshold
                    status = ClusterStatus.UNHEALTHY
                    logger.warning("Cluster unreachable during rehydration", cluster=name, error=e.message)

                if status is not cluster.status:
                    cluster = await self._save(cluster, {"status": status})
            except BaseException:
                handle.close()
                raise

            self._install(RegistryEntry(cluster=cluster, handle=handle, status=status, failures=failures))
