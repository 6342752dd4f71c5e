"""Test fixtures for the Cluster Manager."""

import threading
import time
from typing import AsyncGenerator
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
import yaml
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from app.repositories import RepositoryFactory
from app.services import ClusterRegistry, CredentialCipher, ResourceOperator
from kubefleet.config import ClusterManagerSettings
from kubefleet.database import Base, create_session_factory

TEST_ENCRYPTION_KEY = CredentialCipher.generate_key()
UNREACHABLE_SERVER = "https://unreachable.example.com:6443"


def make_kubeconfig(
    server: str = "https://api.c1.example.com:6443",
    token: str = "s3cr3t-token-value",
    context: str = "admin@c1",
) -> bytes:
    """Build a minimal token-based kubeconfig blob."""
    document = {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [
            {
                "name": "c1",
                "cluster": {"server": server, "insecure-skip-tls-verify": True},
            }
        ],
        "users": [{"name": "admin", "user": {"token": token}}],
        "contexts": [{"name": context, "context": {"cluster": "c1", "user": "admin"}}],
        "current-context": context,
    }
    return yaml.safe_dump(document).encode()


class FakeHandle:
    """Stand-in for ClientHandle with mocked API groups."""

    def __init__(self, cluster_name, params, factory=None):
        self.cluster_name = cluster_name
        self.params = params
        self.factory = factory
        self.core_v1 = MagicMock(name="core_v1")
        self.apps_v1 = MagicMock(name="apps_v1")
        self.batch_v1 = MagicMock(name="batch_v1")
        self.healthy = True
        self.closed = False
        self.probe_calls = 0
        self.server_version = None
        self.last_probe_at = None

    def api(self, group):
        return getattr(self, group)

    def probe(self, timeout):
        self.probe_calls += 1
        if self.factory is not None:
            self.factory.hold_probe()
        if not self.healthy:
            raise ConnectionRefusedError("connection refused")
        self.server_version = "v1.29.2"
        return self.server_version

    def close(self):
        self.closed = True

    def remote_calls(self):
        return (
            self.core_v1.method_calls
            + self.apps_v1.method_calls
            + self.batch_v1.method_calls
        )


class FakeClientFactory:
    """Builds FakeHandles; servers in ``unreachable`` fail their probe."""

    def __init__(self):
        self.handles: list[FakeHandle] = []
        self.unreachable: set[str] = {UNREACHABLE_SERVER}
        self.probe_delay = 0.0
        self.active_probes = 0
        self.peak_probes = 0
        self._lock = threading.Lock()

    def __call__(self, cluster_name, params):
        handle = FakeHandle(cluster_name, params, self)
        handle.healthy = params.host not in self.unreachable
        self.handles.append(handle)
        return handle

    def hold_probe(self):
        """Block for probe_delay, recording how many probes overlap."""
        with self._lock:
            self.active_probes += 1
            self.peak_probes = max(self.peak_probes, self.active_probes)
        try:
            time.sleep(self.probe_delay)
        finally:
            with self._lock:
                self.active_probes -= 1


@pytest.fixture
def settings() -> ClusterManagerSettings:
    """Settings with background probing off; tests drive probes directly."""
    return ClusterManagerSettings(
        health_checks_enabled=False,
        health_check_failure_threshold=3,
        probe_timeout_seconds=1,
        connect_timeout_seconds=1,
        request_timeout_seconds=5,
        password_hash_rounds=4,
        credential_encryption_key=TEST_ENCRYPTION_KEY,
    )


@pytest_asyncio.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine backed by a SQLite file."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'kubefleet.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def repositories(test_engine, settings) -> RepositoryFactory:
    return RepositoryFactory(
        create_session_factory(test_engine),
        cipher=CredentialCipher.from_base64(settings.credential_encryption_key),
        password_rounds=settings.password_hash_rounds,
    )


@pytest.fixture
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest_asyncio.fixture
async def registry(repositories, settings, client_factory) -> AsyncGenerator[ClusterRegistry, None]:
    registry = ClusterRegistry(repositories, settings, client_factory=client_factory)
    yield registry
    await registry.close()


@pytest.fixture
def operator(registry, settings) -> ResourceOperator:
    return ResourceOperator(registry, default_timeout=settings.request_timeout_seconds)


@pytest.fixture
def valid_config() -> bytes:
    return make_kubeconfig()


@pytest.fixture
def rotated_config() -> bytes:
    return make_kubeconfig(server="https://api-v2.c1.example.com:6443", token="rotated-token")


@pytest.fixture
def unreachable_config() -> bytes:
    return make_kubeconfig(server=UNREACHABLE_SERVER)


@pytest.fixture
def kubeconfig():
    """Factory for kubeconfig blobs with a chosen server and token."""
    return make_kubeconfig
