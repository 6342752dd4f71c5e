"""Remote resource references."""

from __future__ import annotations

from enum import Enum

from pydantic import ConfigDict

from .base import KubeFleetBaseModel


class ResourceKind(str, Enum):
    """Resource kinds the operator can dispatch."""

    NAMESPACE = "Namespace"
    DEPLOYMENT = "Deployment"
    STATEFUL_SET = "StatefulSet"
    JOB = "Job"
    SERVICE = "Service"

    @property
    def namespaced(self) -> bool:
        return self is not ResourceKind.NAMESPACE


class ResourceRef(KubeFleetBaseModel):
    """Fully-qualified pointer to a remote object.

    ``namespace`` and ``object_name`` are empty for cluster-scoped kinds and
    ``object_name`` is empty when the reference addresses a whole list.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True, populate_by_name=True)

    cluster_name: str
    kind: ResourceKind
    namespace: str = ""
    object_name: str = ""

    @classmethod
    def for_list(
        cls, cluster_name: str, kind: ResourceKind, namespace: str = ""
    ) -> ResourceRef:
        """Reference to every object of ``kind`` (in ``namespace`` if namespaced)."""
        return cls(cluster_name=cluster_name, kind=kind, namespace=namespace)

    @classmethod
    def for_object(
        cls,
        cluster_name: str,
        kind: ResourceKind,
        object_name: str,
        namespace: str = "",
    ) -> ResourceRef:
        """Reference to a single named object."""
        return cls(
            cluster_name=cluster_name,
            kind=kind,
            namespace=namespace,
            object_name=object_name,
        )

    def log_context(self) -> dict[str, str]:
        """Identifiers safe to attach to log events and errors."""
        return {
            "cluster": self.cluster_name,
            "kind": self.kind.value,
            "namespace": self.namespace,
            "object_name": self.object_name,
        }
