"""Tests for the cluster lifecycle orchestrator."""

import asyncio
import threading
from uuid import uuid4

import pytest

from app.services.cluster_service import K3S_TOKEN_KEY, KUBECONFIG_KEY, PLACEHOLDER_KUBECONFIG
from app.services.errors import (
    ClusterNotFoundError,
    ClusterStateError,
    CredentialError,
    DrainError,
    NotFoundError,
    ProviderNotFoundError,
    ProvisioningError,
    ValidationError,
)
from app.services.locks import ClusterLocks
from app.services.node_drain import SshKubeconfigSource
from app.services.secret_store import cluster_namespace
from shared.models import ClusterState


@pytest.fixture
def clusters(services):
    return services.clusters


async def create(services, provider, passphrase, name="demo", size="single", regions=None):
    return await services.clusters.create(
        name, regions or ["nbg1", "fsn1"], size, provider.id, passphrase
    )


class TestCreate:
    async def test_single_cluster(self, services, provider, passphrase, engine):
        cluster = await create(services, provider, passphrase)

        assert cluster.node_count == 1
        assert cluster.state == ClusterState.READY
        assert cluster.provider_id == provider.id

        spec = engine.converge_calls[0]
        assert spec.name == "demo"
        assert spec.node_count == 1
        assert spec.regions == ["nbg1", "fsn1"]
        assert spec.provider_token == "hcloud-valid-token"
        assert spec.existing_join_token is None

    async def test_ha_cluster_starts_with_three_nodes(self, services, provider, passphrase, engine):
        cluster = await create(services, provider, passphrase, size="ha")

        assert cluster.node_count == 3
        assert engine.converge_calls[0].node_count == 3

    async def test_stores_join_token_and_placeholder_kubeconfig(
        self, services, provider, passphrase, engine
    ):
        cluster = await create(services, provider, passphrase)

        namespace = cluster_namespace(cluster.id)
        stored_token = services.secrets.get(namespace, K3S_TOKEN_KEY, passphrase)
        assert stored_token == engine.stacks[str(cluster.id)].join_token
        assert len(stored_token) == 64
        assert services.secrets.get(namespace, KUBECONFIG_KEY, passphrase) == PLACEHOLDER_KUBECONFIG

    async def test_becomes_current(self, services, provider, passphrase):
        cluster = await create(services, provider, passphrase)

        assert services.clusters.current().cluster_id == cluster.id

    @pytest.mark.parametrize(
        "name, regions, size",
        [
            ("bad name", ["nbg1"], "single"),
            ("x" * 51, ["nbg1"], "single"),
            ("demo", [], "single"),
            ("demo", ["  "], "single"),
            ("demo", ["nbg1"], "huge"),
        ],
    )
    async def test_invalid_input_never_reaches_engine(
        self, clusters, provider, passphrase, engine, name, regions, size
    ):
        with pytest.raises(ValidationError):
            await clusters.create(name, regions, size, provider.id, passphrase)

        assert engine.converge_calls == []
        assert clusters.list() == []

    async def test_duplicate_name(self, services, provider, passphrase):
        await create(services, provider, passphrase)

        with pytest.raises(ValidationError):
            await create(services, provider, passphrase)

    async def test_unknown_provider(self, clusters, passphrase, engine):
        with pytest.raises(ProviderNotFoundError):
            await clusters.create("demo", ["nbg1"], "single", uuid4(), passphrase)

        assert engine.converge_calls == []

    async def test_wrong_passphrase_writes_nothing(self, clusters, provider, engine):
        with pytest.raises(CredentialError):
            await clusters.create("demo", ["nbg1"], "single", provider.id, "wrong")

        assert clusters.list() == []
        assert engine.converge_calls == []

    async def test_failed_provisioning_keeps_unprovisioned_record(
        self, services, provider, passphrase, engine
    ):
        engine.converge_error = ProvisioningError("up failed", diagnostic="quota exceeded")

        with pytest.raises(ProvisioningError):
            await create(services, provider, passphrase)

        [cluster] = services.clusters.list()
        assert cluster.state == ClusterState.UNPROVISIONED
        assert services.clusters.current() is None
        assert services.secrets.get(cluster_namespace(cluster.id), K3S_TOKEN_KEY, passphrase) is None


class TestProvision:
    async def test_retry_after_failed_create(self, services, provider, passphrase, engine):
        engine.converge_error = ProvisioningError("up failed")
        with pytest.raises(ProvisioningError):
            await create(services, provider, passphrase)
        [cluster] = services.clusters.list()

        engine.converge_error = None
        provisioned = await services.clusters.provision(cluster.id, passphrase)

        assert provisioned.state == ClusterState.READY
        assert services.secrets.get(cluster_namespace(cluster.id), K3S_TOKEN_KEY, passphrase)

    async def test_recovers_join_token_from_existing_stack(
        self, services, provider, passphrase, engine
    ):
        engine.converge_error = ProvisioningError("up failed")
        with pytest.raises(ProvisioningError):
            await create(services, provider, passphrase)
        [cluster] = services.clusters.list()
        # An earlier attempt got far enough to leave outputs behind
        engine.converge_error = None
        engine.stacks[str(cluster.id)] = engine.converge(
            engine.converge_calls[0].model_copy(update={"existing_join_token": "f" * 64}),
            passphrase,
        )

        await services.clusters.provision(cluster.id, passphrase)

        assert engine.converge_calls[-1].existing_join_token == "f" * 64

    async def test_ready_cluster_cannot_be_provisioned(self, services, provider, passphrase):
        cluster = await create(services, provider, passphrase)

        with pytest.raises(ClusterStateError):
            await services.clusters.provision(cluster.id, passphrase)

    async def test_wrong_passphrase(self, services, provider, passphrase, engine):
        engine.converge_error = ProvisioningError("up failed")
        with pytest.raises(ProvisioningError):
            await create(services, provider, passphrase)
        [cluster] = services.clusters.list()

        with pytest.raises(CredentialError):
            await services.clusters.provision(cluster.id, "wrong")


class TestScale:
    async def test_scale_down_drains_removed_nodes_before_converging(
        self, services, provider, passphrase, engine, drainer, events
    ):
        cluster = await create(services, provider, passphrase, size="ha")
        events.clear()

        scaled = await services.clusters.scale(cluster.id, 1, passphrase)

        assert events == [("drain", ["demo-node-2", "demo-node-3"]), ("converge", 1)]
        assert scaled.node_count == 1
        assert scaled.state == ClusterState.READY

    async def test_drain_reads_kubeconfig_from_primary_server(
        self, services, provider, passphrase, drainer, settings
    ):
        cluster = await create(services, provider, passphrase, size="ha")

        await services.clusters.scale(cluster.id, 2, passphrase)

        [source] = drainer.sources
        assert isinstance(source, SshKubeconfigSource)
        assert source.address == "10.0.0.1"
        assert source.settings is settings

    async def test_scale_up_reuses_join_token(self, services, provider, passphrase, engine, drainer):
        cluster = await create(services, provider, passphrase)
        first_token = engine.converge_calls[0]
        stored = services.secrets.get(cluster_namespace(cluster.id), K3S_TOKEN_KEY, passphrase)

        scaled = await services.clusters.scale(cluster.id, 3, passphrase)

        spec = engine.converge_calls[-1]
        assert spec.node_count == 3
        assert spec.existing_join_token == stored
        assert first_token.existing_join_token is None
        assert drainer.calls == []
        assert scaled.node_count == 3
        assert scaled.updated_at > cluster.updated_at

    async def test_skip_drain(self, services, provider, passphrase, drainer, events):
        cluster = await create(services, provider, passphrase, size="ha")
        events.clear()

        await services.clusters.scale(cluster.id, 1, passphrase, skip_drain=True)

        assert drainer.calls == []
        assert events == [("converge", 1)]

    @pytest.mark.parametrize("target", [0, -1])
    async def test_target_below_one(self, services, provider, passphrase, target):
        cluster = await create(services, provider, passphrase)

        with pytest.raises(ValidationError):
            await services.clusters.scale(cluster.id, target, passphrase)

    async def test_same_count(self, services, provider, passphrase, engine):
        cluster = await create(services, provider, passphrase)

        with pytest.raises(ValidationError):
            await services.clusters.scale(cluster.id, 1, passphrase)

        assert len(engine.converge_calls) == 1

    async def test_drain_failure_blocks_scale_down(
        self, services, provider, passphrase, engine, drainer
    ):
        cluster = await create(services, provider, passphrase, size="ha")
        drainer.error = DrainError("api unreachable")

        with pytest.raises(DrainError):
            await services.clusters.scale(cluster.id, 1, passphrase)

        stored = services.clusters.get(cluster.id)
        assert stored.node_count == 3
        assert stored.state == ClusterState.READY
        assert len(engine.converge_calls) == 1

    async def test_scale_down_without_live_outputs(self, services, provider, passphrase, engine):
        cluster = await create(services, provider, passphrase, size="ha")
        engine.stacks.clear()

        with pytest.raises(DrainError):
            await services.clusters.scale(cluster.id, 1, passphrase)

        assert services.clusters.get(cluster.id).node_count == 3

    async def test_converge_failure_keeps_node_count(self, services, provider, passphrase, engine):
        cluster = await create(services, provider, passphrase)
        engine.converge_error = ProvisioningError("up failed")

        with pytest.raises(ProvisioningError):
            await services.clusters.scale(cluster.id, 2, passphrase)

        stored = services.clusters.get(cluster.id)
        assert stored.node_count == 1
        assert stored.state == ClusterState.READY

    async def test_wrong_passphrase(self, services, provider, passphrase, engine):
        cluster = await create(services, provider, passphrase)

        with pytest.raises(CredentialError):
            await services.clusters.scale(cluster.id, 2, "wrong")

        assert len(engine.converge_calls) == 1

    async def test_unprovisioned_cluster_cannot_scale(self, services, provider, passphrase, engine):
        engine.converge_error = ProvisioningError("up failed")
        with pytest.raises(ProvisioningError):
            await create(services, provider, passphrase)
        [cluster] = services.clusters.list()

        with pytest.raises(ClusterStateError):
            await services.clusters.scale(cluster.id, 2, passphrase)

    async def test_unknown_cluster(self, clusters, passphrase):
        with pytest.raises(ClusterNotFoundError):
            await clusters.scale(uuid4(), 2, passphrase)


class TestDestroy:
    async def test_removes_everything(self, services, provider, passphrase, engine, settings):
        cluster = await create(services, provider, passphrase)

        assert await services.clusters.destroy(cluster.id, passphrase) is True

        assert engine.teardown_calls == [str(cluster.id)]
        assert services.clusters.list() == []
        assert services.clusters.current() is None
        assert not (settings.secrets_dir / f"{cluster_namespace(cluster.id)}.json").exists()

    async def test_teardown_failure_still_removes_local_state(
        self, services, provider, passphrase, engine
    ):
        cluster = await create(services, provider, passphrase)
        engine.teardown_result = False

        assert await services.clusters.destroy(cluster.id, passphrase) is False

        assert services.clusters.list() == []
        assert services.clusters.current() is None

    async def test_teardown_exception_still_removes_local_state(
        self, services, provider, passphrase, engine, settings
    ):
        cluster = await create(services, provider, passphrase)
        engine.teardown_error = RuntimeError("pulumi CLI not found")

        assert await services.clusters.destroy(cluster.id, passphrase) is False

        assert engine.teardown_calls == [str(cluster.id)]
        assert services.clusters.list() == []
        assert services.clusters.current() is None
        assert not (settings.secrets_dir / f"{cluster_namespace(cluster.id)}.json").exists()

    async def test_keeps_other_current_cluster(self, services, provider, passphrase):
        first = await create(services, provider, passphrase, name="first")
        second = await create(services, provider, passphrase, name="second")
        assert services.clusters.current().cluster_id == second.id

        await services.clusters.destroy(first.id, passphrase)

        assert services.clusters.current().cluster_id == second.id

    async def test_unknown_cluster(self, clusters, passphrase, engine):
        with pytest.raises(ClusterNotFoundError):
            await clusters.destroy(uuid4(), passphrase)

        assert engine.teardown_calls == []


class TestQueries:
    async def test_use_and_resolve(self, services, provider, passphrase):
        first = await create(services, provider, passphrase, name="first")
        await create(services, provider, passphrase, name="second")

        context = services.clusters.use(services.clusters.resolve("first").id)

        assert context.cluster_id == first.id
        assert services.clusters.current_cluster() == first
        assert services.clusters.resolve(str(first.id)) == first

    async def test_use_unknown(self, clusters):
        with pytest.raises(ClusterNotFoundError):
            clusters.use(uuid4())

    async def test_resolve_unknown(self, clusters):
        with pytest.raises(ClusterNotFoundError):
            clusters.resolve("missing")

    async def test_nodes_are_placed_round_robin(self, services, provider, passphrase):
        cluster = await create(services, provider, passphrase, regions=["nbg1", "fsn1"])
        await services.clusters.scale(cluster.id, 5, passphrase)

        nodes = await services.clusters.nodes(cluster.id, passphrase)

        assert [n.name for n in nodes] == [f"demo-node-{i}" for i in range(1, 6)]
        assert [n.region for n in nodes] == ["nbg1", "fsn1", "nbg1", "fsn1", "nbg1"]
        assert [n.role for n in nodes] == ["server", "server", "server", "agent", "agent"]
        assert nodes[0].address == "10.0.0.1"

    async def test_nodes_of_unprovisioned_cluster(self, services, provider, passphrase, engine):
        engine.converge_error = ProvisioningError("up failed")
        with pytest.raises(ProvisioningError):
            await create(services, provider, passphrase)
        [cluster] = services.clusters.list()

        with pytest.raises(ClusterStateError):
            await services.clusters.nodes(cluster.id, passphrase)

    async def test_shell_target(self, services, provider, passphrase):
        cluster = await create(services, provider, passphrase, size="ha")

        node, key = await services.clusters.shell_target(cluster.id, passphrase)
        assert node.name == "demo-node-1"
        assert "PRIVATE KEY" in key

        node, _ = await services.clusters.shell_target(cluster.id, passphrase, "demo-node-3")
        assert node.address == "10.0.0.3"

        with pytest.raises(NotFoundError):
            await services.clusters.shell_target(cluster.id, passphrase, "demo-node-9")


class TestConcurrency:
    async def test_operations_on_same_cluster_are_serialized(self):
        locks = ClusterLocks()
        order = []

        async def operation(label: str):
            async with locks.hold("c1"):
                order.append(f"{label}-start")
                await asyncio.sleep(0.01)
                order.append(f"{label}-end")

        await asyncio.gather(operation("a"), operation("b"))

        assert order == ["a-start", "a-end", "b-start", "b-end"]

    async def test_different_clusters_do_not_block(self):
        locks = ClusterLocks()
        order = []

        async def operation(cluster_id: str):
            async with locks.hold(cluster_id):
                order.append(f"{cluster_id}-start")
                await asyncio.sleep(0.01)
                order.append(f"{cluster_id}-end")

        await asyncio.gather(operation("c1"), operation("c2"))

        assert order[:2] == ["c1-start", "c2-start"]

    async def test_forget_keeps_held_lock(self):
        locks = ClusterLocks()

        async with locks.hold("c1"):
            locks.forget("c1")
            assert locks.locked("c1")

        locks.forget("c1")
        assert not locks.locked("c1")

    async def test_key_derivation_runs_off_the_event_loop(
        self, services, provider, passphrase, monkeypatch
    ):
        loop_thread = threading.get_ident()
        derive_key = services.secrets._derive_key
        threads = []

        def recording_derive_key(passphrase, salt):
            threads.append(threading.get_ident())
            return derive_key(passphrase, salt)

        monkeypatch.setattr(services.secrets, "_derive_key", recording_derive_key)

        cluster = await create(services, provider, passphrase)
        await services.clusters.scale(cluster.id, 2, passphrase)
        await services.providers.add("second", "hcloud-valid-token", passphrase)

        assert threads
        assert loop_thread not in threads


async def test_end_to_end_lifecycle(services, provider, passphrase, engine, drainer):
    cluster = await create(services, provider, passphrase)
    token = services.secrets.get(cluster_namespace(cluster.id), K3S_TOKEN_KEY, passphrase)

    scaled = await services.clusters.scale(cluster.id, 3, passphrase)
    assert scaled.node_count == 3
    assert engine.converge_calls[-1].existing_join_token == token
    assert services.secrets.get(cluster_namespace(cluster.id), K3S_TOKEN_KEY, passphrase) == token

    assert await services.clusters.destroy(cluster.id, passphrase) is True
    assert services.clusters.list() == []
    assert services.clusters.current() is None
    assert drainer.calls == []
