"""Generic CRUD dispatcher over the resource kinds of registered clusters.

One implementation serves every kind. A ``ResourceKindSpec`` names the API
group, the method suffix and the typed payload model of a kind; the operator
derives the client method from it (``list_namespaced_deployment``,
``read_namespace``, ...).

The operator never retries and never reads before writing. Callers pass a
deadline (``timeout`` seconds) that is handed to the transport and also
bounds the awaiting coroutine.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from kubefleet.errors import (
    AlreadyExistsError,
    ClusterUnavailableError,
    ConflictError,
    KubeFleetError,
    NotFoundError,
    NotRegisteredError,
    PermissionDeniedError,
    UnavailableError,
    UnknownError,
)
from kubefleet.models import ResourceKind, ResourceRef
from kubefleet.observability import external_call, get_logger

from .cluster_client import ClientHandle

if TYPE_CHECKING:
    from .cluster_registry import ClusterRegistry

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ResourceKindSpec(Generic[T]):
    """How to reach one resource kind through the Kubernetes client."""

    kind: ResourceKind
    api_group: str
    resource: str
    model: type[T]

    @property
    def namespaced(self) -> bool:
        return self.kind.namespaced

    def method(self, verb: str) -> str:
        """Client method name for ``verb`` (list, read, create, replace, delete)."""
        if self.namespaced:
            return f"{verb}_namespaced_{self.resource}"
        return f"{verb}_{self.resource}"


NAMESPACE = ResourceKindSpec[client.V1Namespace](
    ResourceKind.NAMESPACE, "core_v1", "namespace", client.V1Namespace
)
DEPLOYMENT = ResourceKindSpec[client.V1Deployment](
    ResourceKind.DEPLOYMENT, "apps_v1", "deployment", client.V1Deployment
)
STATEFUL_SET = ResourceKindSpec[client.V1StatefulSet](
    ResourceKind.STATEFUL_SET, "apps_v1", "stateful_set", client.V1StatefulSet
)
JOB = ResourceKindSpec[client.V1Job](ResourceKind.JOB, "batch_v1", "job", client.V1Job)
SERVICE = ResourceKindSpec[client.V1Service](
    ResourceKind.SERVICE, "core_v1", "service", client.V1Service
)

KIND_SPECS: dict[ResourceKind, ResourceKindSpec[Any]] = {
    spec.kind: spec for spec in (NAMESPACE, DEPLOYMENT, STATEFUL_SET, JOB, SERVICE)
}


def spec_for_kind(kind: ResourceKind) -> ResourceKindSpec[Any]:
    return KIND_SPECS[kind]


def spec_for_object(resource: Any) -> ResourceKindSpec[Any]:
    """Find the kind spec whose model ``resource`` is an instance of."""
    for spec in KIND_SPECS.values():
        if isinstance(resource, spec.model):
            return spec
    raise TypeError(f"Unsupported resource type: {type(resource).__name__}")


def translate_error(
    error: BaseException, ref: ResourceRef, *, creating: bool = False
) -> KubeFleetError:
    """Map a transport or API failure to the error taxonomy."""
    context = ref.log_context()
    if isinstance(error, ApiException):
        status = error.status
        if status in (401, 403):
            return PermissionDeniedError(f"Access denied ({status} {error.reason})", **context)
        if status == 404:
            return NotFoundError(f"{ref.kind.value} '{ref.object_name}' not found", **context)
        if status == 409:
            if creating:
                return AlreadyExistsError(
                    f"{ref.kind.value} '{ref.object_name}' already exists", **context
                )
            return ConflictError(
                f"{ref.kind.value} '{ref.object_name}' was modified; re-fetch and retry", **context
            )
        if not status:
            return UnavailableError(f"Cluster API unreachable: {error.reason}", **context)
        return UnknownError(f"HTTP {status} {error.reason}: {error.body or ''}", **context)
    if isinstance(error, TimeoutError):
        return UnavailableError("Deadline exceeded", **context)
    if isinstance(error, (HTTPError, OSError)):
        return UnavailableError(f"Cluster API unreachable: {type(error).__name__}", **context)
    return UnknownError(f"{type(error).__name__}: {error}", **context)


class ResourceOperator:
    """Uniform CRUD over Namespaces, Deployments, StatefulSets, Jobs and Services."""

    def __init__(self, registry: ClusterRegistry, default_timeout: float = 30.0):
        self.registry = registry
        self.default_timeout = default_timeout

    async def list(self, ref: ResourceRef, timeout: float | None = None) -> list[Any]:
        """List objects of ``ref.kind`` in the order the cluster returns them."""
        spec = spec_for_kind(ref.kind)
        kwargs = {"namespace": ref.namespace} if spec.namespaced else {}
        result = await self._call(ref, spec, "list", timeout, **kwargs)
        return list(result.items or [])

    async def get(self, ref: ResourceRef, timeout: float | None = None) -> Any:
        """Read one object."""
        spec = spec_for_kind(ref.kind)
        return await self._call(ref, spec, "read", timeout, **self._object_args(spec, ref))

    async def create(
        self, cluster_name: str, resource: Any, timeout: float | None = None
    ) -> None:
        """Create ``resource``; its kind is taken from its model type."""
        spec = spec_for_object(resource)
        ref = self._ref_for(cluster_name, spec, resource)
        kwargs: dict[str, Any] = {"body": resource}
        if spec.namespaced:
            kwargs["namespace"] = ref.namespace
        await self._call(ref, spec, "create", timeout, creating=True, **kwargs)

    async def update(
        self, cluster_name: str, resource: Any, timeout: float | None = None
    ) -> None:
        """Replace ``resource``, guarded by the resource_version it carries.

        A stale version surfaces as ConflictError; the caller re-fetches.
        """
        spec = spec_for_object(resource)
        ref = self._ref_for(cluster_name, spec, resource)
        if not resource.metadata.resource_version:
            raise ValueError("Update requires metadata.resource_version")
        await self._call(
            ref, spec, "replace", timeout, body=resource, **self._object_args(spec, ref)
        )

    async def delete(self, ref: ResourceRef, timeout: float | None = None) -> None:
        """Delete one object. Deleting an absent object raises NotFoundError."""
        spec = spec_for_kind(ref.kind)
        await self._call(ref, spec, "delete", timeout, **self._object_args(spec, ref))

    # ------------------------------------------------------------------

    def _resolve(self, ref: ResourceRef) -> ClientHandle:
        try:
            return self.registry.get(ref.cluster_name)
        except (NotRegisteredError, ClusterUnavailableError) as e:
            logger.warning("Cluster unavailable", error=e.message, **ref.log_context())
            raise ClusterUnavailableError(e.message, **ref.log_context()) from e

    @staticmethod
    def _object_args(spec: ResourceKindSpec[Any], ref: ResourceRef) -> dict[str, Any]:
        kwargs = {"name": ref.object_name}
        if spec.namespaced:
            kwargs["namespace"] = ref.namespace
        return kwargs

    @staticmethod
    def _ref_for(cluster_name: str, spec: ResourceKindSpec[Any], resource: Any) -> ResourceRef:
        metadata = resource.metadata
        if metadata is None or not metadata.name:
            raise ValueError(f"{spec.kind.value} requires metadata.name")
        namespace = (metadata.namespace or "") if spec.namespaced else ""
        return ResourceRef.for_object(cluster_name, spec.kind, metadata.name, namespace)

    async def _call(
        self,
        ref: ResourceRef,
        spec: ResourceKindSpec[Any],
        verb: str,
        timeout: float | None,
        *,
        creating: bool = False,
        **kwargs: Any,
    ) -> Any:
        handle = self._resolve(ref)
        operation = spec.method(verb)
        method = getattr(handle.api(spec.api_group), operation)
        deadline = timeout if timeout is not None else self.default_timeout

        with external_call(logger, "kubernetes", operation, **ref.log_context()):
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(method, _request_timeout=deadline, **kwargs),
                    timeout=deadline,
                )
            except Exception as e:
                raise translate_error(e, ref, creating=creating) from e
