"""Live API client handles for registered clusters."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from kubernetes import client

from kubefleet.models import utcnow
from kubefleet.observability import get_logger

from .credential_parser import ConnectionParameters

logger = get_logger(__name__)

# API groups exposed by a handle, by attribute name
API_GROUPS = ("core_v1", "apps_v1", "batch_v1")


class ClientHandle:
    """In-memory connection to one cluster.

    Wraps a single ``kubernetes.client.ApiClient`` and the typed API groups
    built on it. The underlying connection pool is thread-safe, so one handle
    serves any number of concurrent operator calls.
    """

    def __init__(self, cluster_name: str, api_client: client.ApiClient):
        self.cluster_name = cluster_name
        self.api_client = api_client
        self.core_v1 = client.CoreV1Api(api_client)
        self.apps_v1 = client.AppsV1Api(api_client)
        self.batch_v1 = client.BatchV1Api(api_client)
        self.last_probe_at: datetime | None = None
        self.server_version: str | None = None

    def api(self, group: str) -> Any:
        """Return the API group object named ``group``."""
        if group not in API_GROUPS:
            raise ValueError(f"Unknown API group: {group}")
        return getattr(self, group)

    def probe(self, timeout: float) -> str:
        """Blocking connectivity check against the version endpoint.

        Raises whatever the transport raises; callers translate.
        """
        info = client.VersionApi(self.api_client).get_code(_request_timeout=timeout)
        self.server_version = info.git_version
        self.last_probe_at = utcnow()
        return info.git_version

    def close(self) -> None:
        """Release the connection pool."""
        self.api_client.close()

    def __repr__(self) -> str:
        return f"ClientHandle(cluster_name={self.cluster_name!r}, server_version={self.server_version!r})"


def build_client_handle(cluster_name: str, params: ConnectionParameters) -> ClientHandle:
    """Construct a handle from parsed connection parameters."""
    logger.debug("Building cluster client", cluster=cluster_name, host=params.host)
    return ClientHandle(cluster_name, client.ApiClient(configuration=params.configuration))
