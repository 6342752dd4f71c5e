"""Tests for the cluster registry."""

import asyncio

import pytest
from sqlalchemy import select

from app.repositories import RepositoryFactory
from app.services import ClusterRegistry, CredentialCipher, parse_credentials
from kubefleet.database import ClusterModel, create_engine, create_session_factory
from kubefleet.errors import (
    ClusterUnavailableError,
    ConnectionFailedError,
    DuplicateNameError,
    InvalidConfigError,
    NotRegisteredError,
    PersistenceUnavailableError,
)
from kubefleet.models import Cluster, ClusterStatus


class TestRegister:
    async def test_register_connects_and_persists(self, registry, repositories, valid_config):
        """Test a registered cluster is Connected, stored and resolvable."""
        cluster = await registry.register("c1", valid_config, description="primary")

        assert cluster.name == "c1"
        assert cluster.status == ClusterStatus.CONNECTED
        assert cluster.resource_version == 0
        assert cluster.description == "primary"

        handle = registry.get("c1")
        assert handle.cluster_name == "c1"
        assert handle.probe_calls == 1

        stored = await repositories.clusters.get_by_name("c1")
        assert stored.status == ClusterStatus.CONNECTED
        assert stored.credential_blob == valid_config

    async def test_register_duplicate_name(self, registry, valid_config):
        """Test registering a name twice fails and keeps the first entry."""
        await registry.register("c1", valid_config)
        first = registry.get("c1")

        with pytest.raises(DuplicateNameError):
            await registry.register("c1", valid_config)

        assert registry.get("c1") is first

    async def test_register_name_stored_by_another_instance(
        self, registry, repositories, settings, client_factory, valid_config
    ):
        """Test a name persisted by another registry instance is a duplicate."""
        await registry.register("c1", valid_config)
        other = ClusterRegistry(repositories, settings, client_factory=client_factory)

        with pytest.raises(DuplicateNameError):
            await other.register("c1", valid_config)

        assert client_factory.handles[-1].closed
        await other.close()

    async def test_register_invalid_config(self, registry, repositories, client_factory):
        """Test an unparsable blob is rejected before any connection is made."""
        with pytest.raises(InvalidConfigError) as exc_info:
            await registry.register("c1", b"clusters: [unterminated")

        assert exc_info.value.context["cluster"] == "c1"
        assert client_factory.handles == []
        assert registry.list() == []
        assert await repositories.clusters.find_by_name("c1") is None

    async def test_register_non_mapping_config(self, registry):
        """Test a YAML document that is not a mapping is rejected."""
        with pytest.raises(InvalidConfigError):
            await registry.register("c1", b"- just\n- a list\n")

    async def test_register_unreachable(self, registry, repositories, client_factory, unreachable_config):
        """Test a failed probe stores nothing and releases the handle."""
        with pytest.raises(ConnectionFailedError):
            await registry.register("c1", unreachable_config)

        assert client_factory.handles[0].closed
        assert registry.list() == []
        assert await repositories.clusters.find_by_name("c1") is None
        with pytest.raises(NotRegisteredError):
            registry.get("c1")

    async def test_register_unreachable_error_has_no_token(self, registry, kubeconfig):
        """Test connection errors never carry the credential token."""
        blob = kubeconfig(server="https://unreachable.example.com:6443", token="very-secret")

        with pytest.raises(ConnectionFailedError) as exc_info:
            await registry.register("c1", blob)

        assert "very-secret" not in str(exc_info.value)
        assert "very-secret" not in repr(exc_info.value.to_dict())

    async def test_concurrent_register_different_names(self, registry, kubeconfig):
        """Test registrations of different names proceed independently."""
        await asyncio.gather(
            registry.register("a", kubeconfig(server="https://a.example.com:6443")),
            registry.register("b", kubeconfig(server="https://b.example.com:6443")),
        )

        assert [summary.name for summary in registry.list()] == ["a", "b"]
        assert registry.get("a").params.host == "https://a.example.com:6443"
        assert registry.get("b").params.host == "https://b.example.com:6443"

    async def test_concurrent_register_same_name(self, registry, valid_config):
        """Test exactly one of two racing registrations of a name succeeds."""
        results = await asyncio.gather(
            registry.register("c1", valid_config),
            registry.register("c1", valid_config),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], DuplicateNameError)
        assert len(registry.list()) == 1

    async def test_credential_blob_encrypted_at_rest(self, registry, test_engine, valid_config):
        """Test the stored column never holds the plain kubeconfig."""
        await registry.register("c1", valid_config)

        session_factory = create_session_factory(test_engine)
        async with session_factory() as session:
            row = (await session.execute(select(ClusterModel))).scalar_one()

        assert row.credential_blob != valid_config
        assert b"s3cr3t-token-value" not in row.credential_blob


class TestRemove:
    async def test_remove(self, registry, repositories, valid_config):
        """Test a removed cluster is gone from the registry and disabled in the store."""
        await registry.register("c1", valid_config)

        await registry.remove("c1")

        with pytest.raises(NotRegisteredError):
            registry.get("c1")
        assert registry.list() == []
        stored = await repositories.clusters.get_by_name("c1")
        assert stored.status == ClusterStatus.DISABLED
        assert stored.resource_version == 1

    async def test_remove_is_idempotent(self, registry, repositories, valid_config):
        """Test removing twice, or removing an unknown name, is a no-op."""
        await registry.register("c1", valid_config)

        await registry.remove("c1")
        await registry.remove("c1")
        await registry.remove("never-registered")

        stored = await repositories.clusters.get_by_name("c1")
        assert stored.status == ClusterStatus.DISABLED
        assert stored.resource_version == 1

    async def test_remove_keeps_handle_open(self, registry, valid_config):
        """Test in-flight users of a removed handle are not cut off."""
        await registry.register("c1", valid_config)
        handle = registry.get("c1")

        await registry.remove("c1")

        assert not handle.closed

    async def test_register_after_remove(self, registry, repositories, valid_config):
        """Test a removed name can be registered again as a fresh row."""
        await registry.register("c1", valid_config)
        await registry.remove("c1")

        second = await registry.register("c1", valid_config)

        assert second.status == ClusterStatus.CONNECTED
        assert second.resource_version == 0
        assert registry.get("c1") is not None
        stored = await repositories.clusters.list()
        assert [cluster.status for cluster in stored] == [ClusterStatus.CONNECTED]


class TestRefresh:
    async def test_refresh_swaps_handle(self, registry, repositories, valid_config, rotated_config):
        """Test refresh installs the new handle and bumps the stored version."""
        await registry.register("c1", valid_config)
        old = registry.get("c1")

        cluster = await registry.refresh("c1", rotated_config)

        new = registry.get("c1")
        assert new is not old
        assert new.params.host == "https://api-v2.c1.example.com:6443"
        assert cluster.resource_version == 1
        stored = await repositories.clusters.get_by_name("c1")
        assert stored.credential_blob == rotated_config
        assert stored.resource_version == 1

    async def test_refresh_failure_keeps_old_handle(
        self, registry, repositories, client_factory, valid_config, unreachable_config
    ):
        """Test a failed refresh leaves the cluster exactly as it was."""
        await registry.register("c1", valid_config)
        old = registry.get("c1")

        with pytest.raises(ConnectionFailedError):
            await registry.refresh("c1", unreachable_config)

        assert registry.get("c1") is old
        assert client_factory.handles[-1].closed
        assert not old.closed
        stored = await repositories.clusters.get_by_name("c1")
        assert stored.credential_blob == valid_config
        assert stored.resource_version == 0

    async def test_refresh_invalid_config(self, registry, valid_config):
        """Test an unparsable rotation is rejected and the old handle kept."""
        await registry.register("c1", valid_config)
        old = registry.get("c1")

        with pytest.raises(InvalidConfigError):
            await registry.refresh("c1", b"\xff\xfe not yaml")

        assert registry.get("c1") is old

    async def test_refresh_unregistered(self, registry, valid_config):
        """Test refreshing an unknown name fails."""
        with pytest.raises(NotRegisteredError):
            await registry.refresh("c1", valid_config)

    async def test_get_during_refresh(self, registry, valid_config, rotated_config):
        """Test readers racing a refresh see either the old or the new handle."""
        await registry.register("c1", valid_config)
        old = registry.get("c1")
        seen = []

        async def reader():
            for _ in range(20):
                seen.append(registry.get("c1"))
                await asyncio.sleep(0)

        await asyncio.gather(reader(), registry.refresh("c1", rotated_config))
        new = registry.get("c1")

        assert all(handle in (old, new) for handle in seen)

    async def test_register_racing_refresh(self, registry, repositories, valid_config, rotated_config):
        """Test a refresh racing the first register of a name settles on one state."""
        registered, refreshed = await asyncio.gather(
            registry.register("c1", valid_config),
            registry.refresh("c1", rotated_config),
            return_exceptions=True,
        )

        assert isinstance(registered, Cluster)
        if isinstance(refreshed, NotRegisteredError):
            expected_host = "https://api.c1.example.com:6443"
        else:
            assert isinstance(refreshed, Cluster)
            expected_host = "https://api-v2.c1.example.com:6443"
        stored = await repositories.clusters.get_by_name("c1")
        assert parse_credentials(stored.credential_blob).host == expected_host
        assert registry.get("c1").params.host == expected_host
        assert registry.describe("c1").resource_version == stored.resource_version

    async def test_refresh_after_external_edit(self, registry, repositories, valid_config, rotated_config):
        """Test refresh wins over a concurrent edit of the stored row."""
        cluster = await registry.register("c1", valid_config)
        await repositories.clusters.update(cluster.id, cluster.resource_version, {"description": "edited"})

        refreshed = await registry.refresh("c1", rotated_config)

        assert refreshed.resource_version == 2
        assert refreshed.description == "edited"


class TestProbe:
    async def test_failures_below_threshold_stay_connected(self, registry, valid_config):
        """Test a transient failure does not take the cluster out of service."""
        await registry.register("c1", valid_config)
        registry.get("c1").healthy = False

        assert await registry.probe("c1") == ClusterStatus.CONNECTED
        assert await registry.probe("c1") == ClusterStatus.CONNECTED
        assert registry.get("c1") is not None

    async def test_unhealthy_after_threshold_and_recovery(self, registry, repositories, valid_config):
        """Test Connected -> Unhealthy -> Connected with persisted status."""
        await registry.register("c1", valid_config)
        handle = registry.get("c1")
        handle.healthy = False

        for _ in range(3):
            status = await registry.probe("c1")

        assert status == ClusterStatus.UNHEALTHY
        with pytest.raises(ClusterUnavailableError):
            registry.get("c1")
        assert registry.list()[0].status == ClusterStatus.UNHEALTHY
        assert (await repositories.clusters.get_by_name("c1")).status == ClusterStatus.UNHEALTHY

        handle.healthy = True
        assert await registry.probe("c1") == ClusterStatus.CONNECTED
        assert registry.get("c1") is handle
        assert (await repositories.clusters.get_by_name("c1")).status == ClusterStatus.CONNECTED

    async def test_success_resets_failure_count(self, registry, valid_config):
        """Test failures must be consecutive to mark a cluster unhealthy."""
        await registry.register("c1", valid_config)
        handle = registry.get("c1")

        handle.healthy = False
        await registry.probe("c1")
        await registry.probe("c1")
        handle.healthy = True
        await registry.probe("c1")
        handle.healthy = False
        await registry.probe("c1")
        await registry.probe("c1")

        assert registry.list()[0].status == ClusterStatus.CONNECTED

    async def test_probe_unregistered(self, registry):
        """Test probing an unknown name fails."""
        with pytest.raises(NotRegisteredError):
            await registry.probe("c1")


class TestListAndDescribe:
    async def test_list_sorted_by_name(self, registry, kubeconfig):
        """Test the snapshot is ordered by name."""
        for name in ("zeta", "alpha", "mid"):
            await registry.register(name, kubeconfig(server=f"https://{name}.example.com:6443"))

        assert [summary.name for summary in registry.list()] == ["alpha", "mid", "zeta"]

    async def test_describe(self, registry, valid_config):
        """Test describe returns the stored snapshot without credentials in its dump."""
        await registry.register("c1", valid_config, description="primary")

        cluster = registry.describe("c1")

        assert cluster.description == "primary"
        assert "credential_blob" not in cluster.model_dump()

    async def test_describe_unregistered(self, registry):
        with pytest.raises(NotRegisteredError):
            registry.describe("c1")


class TestRehydrate:
    async def test_rehydrate_probes_clusters_concurrently(
        self, registry, repositories, settings, client_factory, kubeconfig
    ):
        """Test restoring several clusters does not probe them one after another."""
        for name in ("a", "b", "c"):
            await registry.register(name, kubeconfig(server=f"https://{name}.example.com:6443"))

        client_factory.probe_delay = 0.2
        client_factory.peak_probes = 0
        restored = ClusterRegistry(repositories, settings, client_factory=client_factory)
        await restored.rehydrate()

        assert client_factory.peak_probes == 3
        assert {summary.name for summary in restored.list()} == {"a", "b", "c"}
        await restored.close()

    async def test_rehydrate_restores_clusters(
        self, registry, repositories, settings, client_factory, kubeconfig
    ):
        """Test a fresh registry restores what an earlier one stored."""
        await registry.register("a", kubeconfig(server="https://a.example.com:6443"))
        await registry.register("b", kubeconfig(server="https://b.example.com:6443"))
        await registry.register("gone", kubeconfig(server="https://gone.example.com:6443"))
        await registry.remove("gone")

        client_factory.unreachable.add("https://b.example.com:6443")
        restored = ClusterRegistry(repositories, settings, client_factory=client_factory)
        await restored.rehydrate()

        statuses = {summary.name: summary.status for summary in restored.list()}
        assert statuses == {"a": ClusterStatus.CONNECTED, "b": ClusterStatus.UNHEALTHY}
        assert restored.get("a").params.host == "https://a.example.com:6443"
        with pytest.raises(ClusterUnavailableError):
            restored.get("b")
        assert (await repositories.clusters.get_by_name("b")).status == ClusterStatus.UNHEALTHY
        await restored.close()

    async def test_rehydrated_unhealthy_cluster_recovers(
        self, registry, repositories, settings, client_factory, valid_config
    ):
        """Test one successful probe brings a cluster restored as Unhealthy back."""
        await registry.register("c1", valid_config)
        client_factory.unreachable.add("https://api.c1.example.com:6443")
        restored = ClusterRegistry(repositories, settings, client_factory=client_factory)
        await restored.rehydrate()

        client_factory.handles[-1].healthy = True
        assert await restored.probe("c1") == ClusterStatus.CONNECTED
        await restored.close()

    async def test_rehydrate_skips_unparsable_credentials(
        self, repositories, settings, client_factory, kubeconfig
    ):
        """Test one bad stored blob does not stop the others from loading."""
        await repositories.clusters.create(
            {"name": "broken", "credential_blob": b"{not yaml", "status": ClusterStatus.CONNECTED}
        )
        await repositories.clusters.create(
            {
                "name": "good",
                "credential_blob": kubeconfig(server="https://good.example.com:6443"),
                "status": ClusterStatus.CONNECTED,
            }
        )

        restored = ClusterRegistry(repositories, settings, client_factory=client_factory)
        await restored.rehydrate()

        assert [summary.name for summary in restored.list()] == ["good"]
        await restored.close()

    async def test_rehydrate_wrong_encryption_key(self, registry, test_engine, settings, client_factory, valid_config):
        """Test stored blobs that cannot be decrypted make the store unusable."""
        await registry.register("c1", valid_config)
        other_key = RepositoryFactory(
            create_session_factory(test_engine),
            cipher=CredentialCipher.from_base64(CredentialCipher.generate_key()),
        )

        restored = ClusterRegistry(other_key, settings, client_factory=client_factory)
        with pytest.raises(PersistenceUnavailableError):
            await restored.rehydrate()

    async def test_rehydrate_store_unreachable(self, tmp_path, settings, client_factory):
        """Test an unreachable store is fatal."""
        engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'nowhere.db'}")
        repositories = RepositoryFactory(create_session_factory(engine))
        restored = ClusterRegistry(repositories, settings, client_factory=client_factory)

        with pytest.raises(PersistenceUnavailableError):
            await restored.rehydrate()
        await engine.dispose()


class TestClose:
    async def test_close_releases_handles(self, registry, client_factory, kubeconfig):
        await registry.register("a", kubeconfig(server="https://a.example.com:6443"))
        await registry.register("b", kubeconfig(server="https://b.example.com:6443"))

        await registry.close()

        assert all(handle.closed for handle in client_factory.handles)
        assert registry.list() == []
