"""Cluster lifecycle orchestrator.

Takes clusters through their states:

    unprovisioned -> provisioning -> ready <-> scaling
    ready -> destroying -> (record deleted)

The metadata record is the source of truth for what the cluster should look
like; the provisioning engine owns the remote state. Node count and state are
persisted only after the remote side succeeded, so a failure always leaves
the record at its last good point.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Callable
from uuid import UUID

from shared.config import Settings
from shared.models import (
    Cluster,
    ClusterSize,
    ClusterState,
    CurrentContext,
    NodeInfo,
    ProvisioningOutputs,
    ProvisionSpec,
    check_resource_name,
    initial_node_count,
    plan_nodes,
)
from shared.observability import OperationContext, get_logger

from ..repositories.metadata_repository import MetadataRepository
from .errors import (
    ClusterNotFoundError,
    ClusterStateError,
    CredentialError,
    DrainError,
    NotFoundError,
    ValidationError,
)
from .locks import ClusterLocks
from .node_drain import KubeconfigSource, NodeDrainCoordinator, SshKubeconfigSource
from .provider_service import ProviderService
from .provisioning import ProvisioningEngine
from .secret_store import SecretStore, cluster_namespace

logger = get_logger(__name__)

K3S_TOKEN_KEY = "k3s_token"
KUBECONFIG_KEY = "kubeconfig"
PLACEHOLDER_KUBECONFIG = "placeholder-kubeconfig"

PROVISIONABLE_STATES = (ClusterState.UNPROVISIONED, ClusterState.PROVISIONING)
SCALABLE_STATES = (ClusterState.READY, ClusterState.SCALING)

KubeconfigSourceFactory = Callable[[str, str], KubeconfigSource]


class ClusterService:
    """Orchestrates cluster create, provision, scale and destroy."""

    def __init__(
        self,
        settings: Settings,
        repository: MetadataRepository,
        secrets: SecretStore,
        providers: ProviderService,
        engine: ProvisioningEngine,
        drainer: NodeDrainCoordinator,
        locks: ClusterLocks | None = None,
        kubeconfig_source_factory: KubeconfigSourceFactory | None = None,
    ):
        self.settings = settings
        self.repository = repository
        self.secrets = secrets
        self.providers = providers
        self.engine = engine
        self.drainer = drainer
        self.locks = locks or ClusterLocks()
        self._kubeconfig_source_factory = kubeconfig_source_factory or (
            lambda address, private_key: SshKubeconfigSource(address, private_key, settings)
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list(self) -> list[Cluster]:
        return self.repository.clusters.list()

    def get(self, cluster_id: UUID | str) -> Cluster:
        cluster = self.repository.clusters.get_by_id(cluster_id)
        if cluster is None:
            raise ClusterNotFoundError(f"Cluster with ID {cluster_id} not found")
        return cluster

    def resolve(self, ref: str) -> Cluster:
        """Look a cluster up by id, falling back to its name."""
        cluster = self.repository.clusters.get_by_id(ref)
        if cluster is not None:
            return cluster
        matches = self.repository.clusters.find_by_name(ref)
        if not matches:
            raise ClusterNotFoundError(f"Cluster '{ref}' not found")
        if len(matches) > 1:
            raise ValidationError(f"Cluster name '{ref}' is ambiguous; use its ID")
        return matches[0]

    def use(self, cluster_id: UUID | str) -> CurrentContext:
        context = self.repository.set_current(cluster_id)
        logger.info("Current cluster set", cluster_id=str(context.cluster_id), name=context.cluster_name)
        return context

    def current(self) -> CurrentContext | None:
        return self.repository.get_current()

    def current_cluster(self) -> Cluster | None:
        return self.repository.get_current_cluster()

    def clear_current(self) -> None:
        self.repository.clear_current()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def create(
        self,
        name: str,
        regions: list[str],
        size: ClusterSize | str,
        provider_id: UUID | str,
        passphrase: str,
    ) -> Cluster:
        """Register a cluster, provision it and make it current.

        If provisioning fails the record is kept as ``unprovisioned`` and the
        error propagates; ``provision`` retries it.

        Raises:
            ValidationError: bad name, regions, size or passphrase
            ProviderNotFoundError: unknown provider
            CredentialError: the passphrase does not unlock the provider token
            ProvisioningError: the engine failed
        """
        try:
            check_resource_name(name, "Cluster")
            cluster_size = ClusterSize(size)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        regions = [region.strip() for region in regions if region and region.strip()]
        if not regions:
            raise ValidationError("At least one region is required")
        if not passphrase:
            raise ValidationError("Passphrase is required")
        if self.repository.clusters.find_by_name(name):
            raise ValidationError(f"Cluster with name '{name}' already exists")

        provider = self.providers.get(provider_id)
        # Fail on a wrong passphrase before anything is written.
        await asyncio.to_thread(self.providers.get_token, provider.id, passphrase)

        cluster = Cluster(
            id=uuid.uuid4(),
            name=name,
            regions=regions,
            size=cluster_size,
            provider_id=provider.id,
            node_count=initial_node_count(cluster_size),
            state=ClusterState.UNPROVISIONED,
        )
        self.repository.clusters.upsert(cluster)
        await asyncio.to_thread(
            self.secrets.put,
            cluster_namespace(cluster.id), KUBECONFIG_KEY, PLACEHOLDER_KUBECONFIG, passphrase
        )
        logger.info(
            "Cluster registered",
            cluster_id=str(cluster.id),
            name=name,
            size=cluster.size,
            node_count=cluster.node_count,
        )

        cluster = await self.provision(cluster.id, passphrase)
        self.repository.set_current(cluster.id)
        return cluster

    async def provision(self, cluster_id: UUID | str, passphrase: str) -> Cluster:
        """Converge a cluster that has not been provisioned successfully yet.

        The join token is taken from the secret store, or recovered from the
        remote stack when an earlier attempt got that far.
        """
        async with self.locks.hold(cluster_id), OperationContext(str(cluster_id), "provision"):
            cluster = self.get(cluster_id)
            if cluster.state not in PROVISIONABLE_STATES:
                raise ClusterStateError(
                    f"Cluster '{cluster.name}' is {cluster.state}; only unprovisioned clusters can be provisioned"
                )
            await asyncio.to_thread(self._check_cluster_passphrase, cluster, passphrase)
            provider_token = await asyncio.to_thread(self.providers.get_token, cluster.provider_id, passphrase)

            join_token = await asyncio.to_thread(
                self.secrets.get, cluster_namespace(cluster.id), K3S_TOKEN_KEY, passphrase
            )
            if join_token is None:
                previous = await asyncio.to_thread(self.engine.fetch_outputs, cluster.id, passphrase)
                if previous is not None and previous.join_token:
                    logger.info("Recovered join token from existing stack")
                    join_token = previous.join_token

            self.repository.clusters.update(cluster.id, state=ClusterState.PROVISIONING)
            spec = self._spec(cluster, cluster.node_count, provider_token, join_token)
            try:
                outputs = await asyncio.to_thread(self.engine.converge, spec, passphrase)
            except Exception:
                self.repository.clusters.update(cluster.id, state=ClusterState.UNPROVISIONED)
                logger.error("Provisioning failed; cluster left unprovisioned")
                raise

            await asyncio.to_thread(self._store_join_token, cluster, outputs, passphrase)
            cluster = self.repository.clusters.update(cluster.id, state=ClusterState.READY)
            logger.info("Cluster provisioned", node_count=cluster.node_count, server_ips=outputs.server_ips)
            return cluster

    async def scale(
        self,
        cluster_id: UUID | str,
        target_count: int,
        passphrase: str,
        skip_drain: bool = False,
    ) -> Cluster:
        """Change the number of nodes.

        Scale-down cordons the nodes being removed (``<name>-node-{target+1}``
        through ``<name>-node-{current}``) before converging, unless
        ``skip_drain`` is set. The new count is persisted only after the
        engine succeeded.

        Raises:
            ValidationError: target below 1 or equal to the current count
            ClusterStateError: the cluster is not ready
            CredentialError: wrong passphrase or missing join token
            DrainError: nodes could not be cordoned; nothing was changed
            ProvisioningError: the engine failed; the count is unchanged
        """
        if target_count < 1:
            raise ValidationError("Node count must be at least 1")

        async with self.locks.hold(cluster_id), OperationContext(str(cluster_id), "scale"):
            cluster = self.get(cluster_id)
            if cluster.state not in SCALABLE_STATES:
                raise ClusterStateError(
                    f"Cluster '{cluster.name}' is {cluster.state}; only ready clusters can be scaled"
                )
            current_count = cluster.node_count
            if target_count == current_count:
                raise ValidationError(f"Cluster '{cluster.name}' already has {current_count} nodes")

            provider_token = await asyncio.to_thread(self.providers.get_token, cluster.provider_id, passphrase)
            join_token = await asyncio.to_thread(
                self.secrets.get, cluster_namespace(cluster.id), K3S_TOKEN_KEY, passphrase
            )
            if join_token is None:
                raise CredentialError(
                    f"Join token for cluster '{cluster.name}' not found: "
                    "wrong passphrase or the cluster was never provisioned"
                )

            self.repository.clusters.update(cluster.id, state=ClusterState.SCALING)
            try:
                if target_count < current_count:
                    removed = [cluster.node_name(i) for i in range(target_count, current_count)]
                    if skip_drain:
                        logger.warning("Skipping drain of removed nodes", nodes=removed)
                    else:
                        await self._drain(cluster, removed, passphrase)

                spec = self._spec(cluster, target_count, provider_token, join_token)
                await asyncio.to_thread(self.engine.converge, spec, passphrase)
            except Exception:
                self.repository.clusters.update(cluster.id, state=ClusterState.READY)
                raise

            cluster = self.repository.clusters.update(
                cluster.id, node_count=target_count, state=ClusterState.READY
            )
            logger.info("Cluster scaled", previous_count=current_count, node_count=target_count)
            return cluster

    async def destroy(self, cluster_id: UUID | str, passphrase: str) -> bool:
        """Tear down remote infrastructure and delete all local state.

        Local state is removed even when teardown fails, so the operator is
        never stuck with an undeletable record.

        Returns:
            True if remote teardown succeeded
        """
        async with self.locks.hold(cluster_id), OperationContext(str(cluster_id), "destroy"):
            cluster = self.get(cluster_id)
            self.repository.clusters.update(cluster.id, state=ClusterState.DESTROYING)

            try:
                torn_down = await asyncio.to_thread(self.engine.teardown, cluster.id, passphrase)
            except Exception as e:
                logger.warning("Teardown raised", error=type(e).__name__, diagnostic=str(e))
                torn_down = False
            if not torn_down:
                logger.warning(
                    "Remote teardown failed; removing local state anyway",
                    name=cluster.name,
                )

            context = self.repository.get_current()
            if context is not None and context.cluster_id == cluster.id:
                self.repository.clear_current()

            self.repository.clusters.delete(cluster.id)
            try:
                self.secrets.remove_namespace(cluster_namespace(cluster.id))
            except OSError as e:
                logger.warning("Failed to remove cluster secrets", error=str(e))

            logger.info("Cluster destroyed", name=cluster.name, torn_down=torn_down)

        self.locks.forget(cluster.id)
        return torn_down

    # -------------------------------------------------------------------------
    # Live state
    # -------------------------------------------------------------------------

    async def outputs(self, cluster_id: UUID | str, passphrase: str) -> ProvisioningOutputs:
        """Read live outputs of a provisioned cluster.

        Raises:
            ClusterStateError: no outputs (never provisioned, or wrong passphrase)
        """
        cluster = self.get(cluster_id)
        outputs = await asyncio.to_thread(self.engine.fetch_outputs, cluster.id, passphrase)
        if outputs is None or not outputs.server_ips:
            raise ClusterStateError(
                f"No servers found for cluster '{cluster.name}': "
                "it may not be provisioned yet, or the passphrase is wrong"
            )
        return outputs

    async def nodes(self, cluster_id: UUID | str, passphrase: str) -> list[NodeInfo]:
        """List provisioned nodes with their public addresses."""
        cluster = self.get(cluster_id)
        outputs = await self.outputs(cluster.id, passphrase)
        plans = plan_nodes(cluster.name, cluster.regions, len(outputs.server_ips))
        return [
            NodeInfo(name=plan.name, address=address, region=plan.region, role=plan.role)
            for plan, address in zip(plans, outputs.server_ips)
        ]

    async def shell_target(
        self,
        cluster_id: UUID | str,
        passphrase: str,
        node: str | None = None,
    ) -> tuple[NodeInfo, str]:
        """Pick a node to open a shell on, defaulting to the first server.

        Returns:
            The node and the cluster's SSH private key
        """
        cluster = self.get(cluster_id)
        outputs = await self.outputs(cluster.id, passphrase)
        if not outputs.ssh_private_key:
            raise CredentialError(f"SSH private key for cluster '{cluster.name}' not found")

        plans = plan_nodes(cluster.name, cluster.regions, len(outputs.server_ips))
        nodes = [
            NodeInfo(name=plan.name, address=address, region=plan.region, role=plan.role)
            for plan, address in zip(plans, outputs.server_ips)
        ]
        if node is None:
            return nodes[0], outputs.ssh_private_key
        for info in nodes:
            if node in (info.name, info.address):
                return info, outputs.ssh_private_key
        raise NotFoundError(f"Node '{node}' not found in cluster '{cluster.name}'")

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _spec(
        self,
        cluster: Cluster,
        node_count: int,
        provider_token: str,
        join_token: str | None,
    ) -> ProvisionSpec:
        return ProvisionSpec(
            cluster_id=cluster.id,
            name=cluster.name,
            regions=cluster.regions,
            node_count=node_count,
            provider_token=provider_token,
            existing_join_token=join_token,
        )

    def _check_cluster_passphrase(self, cluster: Cluster, passphrase: str) -> None:
        if not passphrase:
            raise ValidationError("Passphrase is required")
        if not self.secrets.can_unlock(cluster_namespace(cluster.id), passphrase):
            raise CredentialError(
                f"Passphrase does not unlock the secrets of cluster '{cluster.name}'"
            )

    def _store_join_token(
        self,
        cluster: Cluster,
        outputs: ProvisioningOutputs,
        passphrase: str,
    ) -> None:
        if not outputs.join_token:
            logger.warning("Engine returned no join token")
            return
        self.secrets.put(cluster_namespace(cluster.id), K3S_TOKEN_KEY, outputs.join_token, passphrase)

    async def _drain(self, cluster: Cluster, node_names: list[str], passphrase: str) -> None:
        outputs = await asyncio.to_thread(self.engine.fetch_outputs, cluster.id, passphrase)
        if outputs is None or not outputs.primary_server_ip or not outputs.ssh_private_key:
            raise DrainError(
                f"Cannot drain nodes of cluster '{cluster.name}': live cluster outputs unavailable"
            )
        source = self._kubeconfig_source_factory(outputs.primary_server_ip, outputs.ssh_private_key)
        logger.info("Draining nodes before scale-down", nodes=node_names)
        await asyncio.to_thread(self.drainer.drain, cluster.id, node_names, source)
