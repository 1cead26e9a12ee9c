"""Node drain coordinator.

Before a scale-down removes servers, the nodes about to disappear are
cordoned (``spec.unschedulable = true``) through the cluster's own
Kubernetes API. The admin kubeconfig is read over SSH from the primary
server, since it is never stored locally.

Cordoning is a one-shot side effect: nothing is recorded, and running pods
are not evicted.
"""

from __future__ import annotations

import re
import time
from typing import Any, Callable, Protocol
from uuid import UUID

import paramiko
import yaml
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from shared.config import Settings
from shared.observability import get_logger, log_external_call_end, log_external_call_start

from .errors import DrainError
from .ssh import SSHCommandError, run_command

logger = get_logger(__name__)

LOOPBACK_SERVER = re.compile(r"(https://)(?:127\.0\.0\.1|localhost|\[::1\])(:\d+)")

ApiClientFactory = Callable[[dict[str, Any]], client.ApiClient]


def rewrite_server_address(kubeconfig: str, address: str) -> str:
    """Point loopback API server URLs at ``address``, keeping the port."""
    return LOOPBACK_SERVER.sub(lambda m: f"{m.group(1)}{address}{m.group(2)}", kubeconfig)


class KubeconfigSource(Protocol):
    def read(self) -> str: ...


class SshKubeconfigSource:
    """Reads the k3s admin kubeconfig from a server over SSH."""

    def __init__(self, address: str, private_key: str, settings: Settings):
        self.address = address
        self._private_key = private_key
        self.settings = settings

    def command(self) -> str:
        return f"sudo cat {self.settings.k3s.kubeconfig_path}"

    def read(self) -> str:
        try:
            raw = run_command(self.address, self._private_key, self.command(), self.settings.ssh)
        except (SSHCommandError, paramiko.SSHException, OSError) as e:
            raise DrainError(f"Failed to read kubeconfig from {self.address}: {e}") from e
        return rewrite_server_address(raw, self.address)


def _default_api_client(kubeconfig: dict[str, Any]) -> client.ApiClient:
    return config.new_client_from_config_dict(kubeconfig)


class NodeDrainCoordinator:
    """Cordons nodes ahead of their removal."""

    def __init__(self, api_client_factory: ApiClientFactory = _default_api_client):
        self._api_client_factory = api_client_factory

    def _core_api(self, kubeconfig_source: KubeconfigSource) -> client.CoreV1Api:
        raw = kubeconfig_source.read()
        try:
            kubeconfig = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise DrainError(f"Kubeconfig is not valid YAML: {e}") from e
        if not isinstance(kubeconfig, dict):
            raise DrainError("Kubeconfig is empty or malformed")

        try:
            api_client = self._api_client_factory(kubeconfig)
        except config.ConfigException as e:
            raise DrainError(f"Kubeconfig could not be loaded: {e}") from e
        return client.CoreV1Api(api_client)

    def drain(
        self,
        cluster_id: UUID | str,
        node_names: list[str],
        kubeconfig_source: KubeconfigSource,
    ) -> list[str]:
        """Mark every node in ``node_names`` unschedulable.

        Nodes the API does not know are skipped with a warning.

        Returns:
            Names of the nodes that were cordoned

        Raises:
            DrainError: the kubeconfig could not be obtained or the API failed
        """
        if not node_names:
            return []

        core_api = self._core_api(kubeconfig_source)
        cordoned: list[str] = []

        for name in node_names:
            log_external_call_start(logger, "kubernetes", "cordon")
            start = time.perf_counter()
            try:
                core_api.patch_node(name=name, body={"spec": {"unschedulable": True}})
            except ApiException as e:
                if e.status == 404:
                    logger.warning(
                        "Node not found, skipping cordon",
                        cluster_id=str(cluster_id),
                        node=name,
                    )
                    continue
                log_external_call_end(
                    logger,
                    "kubernetes",
                    "cordon",
                    success=False,
                    duration_ms=(time.perf_counter() - start) * 1000,
                    error=f"HTTP {e.status}",
                )
                raise DrainError(f"Failed to cordon node {name}: {e.reason}") from e
            except Exception as e:
                log_external_call_end(
                    logger,
                    "kubernetes",
                    "cordon",
                    success=False,
                    duration_ms=(time.perf_counter() - start) * 1000,
                    error=type(e).__name__,
                )
                raise DrainError(f"Failed to reach the Kubernetes API to cordon {name}: {e}") from e

            log_external_call_end(
                logger,
                "kubernetes",
                "cordon",
                success=True,
                duration_ms=(time.perf_counter() - start) * 1000,
            )
            cordoned.append(name)

        logger.info("Nodes cordoned", cluster_id=str(cluster_id), nodes=cordoned)
        return cordoned
