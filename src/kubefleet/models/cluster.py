"""Cluster domain models."""

from enum import Enum

from pydantic import Field

from .base import KubeFleetBaseModel
from .common import Timestamp


class ClusterStatus(str, Enum):
    """Registration state of a cluster.

    PENDING -> CONNECTED (probe success) -> UNHEALTHY (probe failures)
    -> CONNECTED (probe recovers). Any state -> DISABLED (terminal).
    """

    PENDING = "PENDING"
    CONNECTED = "CONNECTED"
    UNHEALTHY = "UNHEALTHY"
    DISABLED = "DISABLED"


class Cluster(KubeFleetBaseModel):
    """A registered Kubernetes cluster as persisted."""

    id: int
    resource_version: int = Field(default=0, ge=0)
    name: str = Field(min_length=1, max_length=63)
    status: ClusterStatus = ClusterStatus.PENDING
    credential_blob: bytes = Field(default=b"", exclude=True, repr=False)
    description: str = ""
    created_at: Timestamp
    modified_at: Timestamp


class ClusterSummary(KubeFleetBaseModel):
    """Name and status of a registry entry."""

    name: str
    status: ClusterStatus
