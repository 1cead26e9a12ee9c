"""Provisioning engine adapter over the Pulumi Automation API.

One Pulumi stack per cluster, keyed by the cluster id. The adapter turns a
``ProvisionSpec`` into a ``up`` of the Hetzner program and normalizes the
stack outputs into ``ProvisioningOutputs``. Calls block until the engine
finishes and are never retried.
"""

from __future__ import annotations

import secrets
import time
from typing import Callable, Protocol
from uuid import UUID

from pulumi import automation as auto
from pulumi.automation.errors import StackNotFoundError

from shared.config import Settings
from shared.models import ProvisioningOutputs, ProvisionSpec
from shared.observability import get_logger, log_external_call_end, log_external_call_start

from .errors import ProvisioningError
from .hetzner_program import build_cluster_program

logger = get_logger(__name__)

JOIN_TOKEN_BYTES = 32
STACK_NAME = "kubeforge"
PULUMI_ORGANIZATION = "organization"

ProgramFactory = Callable[[ProvisionSpec, str, Settings], Callable[[], None]]


class ProvisioningEngine(Protocol):
    """Boundary the orchestrator uses to converge and tear down clusters."""

    def converge(self, spec: ProvisionSpec, passphrase: str) -> ProvisioningOutputs: ...

    def teardown(self, cluster_id: UUID, passphrase: str) -> bool: ...

    def fetch_outputs(self, cluster_id: UUID, passphrase: str) -> ProvisioningOutputs | None: ...


def generate_join_token() -> str:
    """Random hex k3s join token (64 characters)."""
    return secrets.token_hex(JOIN_TOKEN_BYTES)


def _noop_program() -> None:
    """Placeholder program for read-only and destroy operations."""


class PulumiProvisioningEngine:
    """Converges cluster stacks with the Pulumi Automation API."""

    def __init__(
        self,
        settings: Settings,
        program_factory: ProgramFactory = build_cluster_program,
    ):
        self.settings = settings
        self._program_factory = program_factory

    def project_name(self, cluster_id: UUID | str) -> str:
        return f"{self.settings.app_name}-cluster-{cluster_id}"

    def stack_name(self, cluster_id: UUID | str) -> str:
        return auto.fully_qualified_stack_name(
            PULUMI_ORGANIZATION, self.project_name(cluster_id), STACK_NAME
        )

    def _workspace_options(self, cluster_id: UUID | str, passphrase: str) -> auto.LocalWorkspaceOptions:
        backend_url = self.settings.backend_url
        if backend_url.startswith("file://"):
            self.settings.state_dir.mkdir(parents=True, exist_ok=True)

        return auto.LocalWorkspaceOptions(
            project_settings=auto.ProjectSettings(
                name=self.project_name(cluster_id),
                runtime="python",
                description=f"{self.settings.app_name} cluster infrastructure",
                backend=auto.ProjectBackend(url=backend_url),
            ),
            env_vars={
                "PULUMI_CONFIG_PASSPHRASE": passphrase,
                "PULUMI_BACKEND_URL": backend_url,
            },
        )

    def _select(self, cluster_id: UUID | str, passphrase: str) -> auto.Stack:
        return auto.select_stack(
            stack_name=self.stack_name(cluster_id),
            project_name=self.project_name(cluster_id),
            program=_noop_program,
            opts=self._workspace_options(cluster_id, passphrase),
        )

    def _log_engine_output(self, line: str) -> None:
        logger.debug("Engine output", line=line.rstrip())

    def converge(self, spec: ProvisionSpec, passphrase: str) -> ProvisioningOutputs:
        """Create or update the cluster stack to match ``spec``.

        The join token from ``spec.existing_join_token`` is reused verbatim;
        a fresh one is generated only for a first converge.

        Raises:
            ProvisioningError: the engine failed; carries its diagnostic
        """
        join_token = spec.existing_join_token or generate_join_token()

        log_external_call_start(logger, "pulumi", "up")
        start = time.perf_counter()
        try:
            program = self._program_factory(spec, join_token, self.settings)
            stack = auto.create_or_select_stack(
                stack_name=self.stack_name(spec.cluster_id),
                project_name=self.project_name(spec.cluster_id),
                program=program,
                opts=self._workspace_options(spec.cluster_id, passphrase),
            )
            stack.set_config(
                "hcloud:token",
                auto.ConfigValue(value=spec.provider_token, secret=True),
            )
            result = stack.up(on_output=self._log_engine_output)
        except Exception as e:
            log_external_call_end(
                logger,
                "pulumi",
                "up",
                success=False,
                duration_ms=(time.perf_counter() - start) * 1000,
                error=type(e).__name__,
            )
            raise ProvisioningError(
                f"Failed to converge infrastructure for cluster {spec.cluster_id}",
                diagnostic=str(e),
            ) from e

        log_external_call_end(
            logger,
            "pulumi",
            "up",
            success=True,
            duration_ms=(time.perf_counter() - start) * 1000,
        )

        outputs = ProvisioningOutputs.from_stack_outputs(result.outputs)
        if not outputs.join_token:
            outputs.join_token = join_token
        logger.info(
            "Cluster stack converged",
            cluster_id=str(spec.cluster_id),
            node_count=spec.node_count,
            server_ips=outputs.server_ips,
        )
        return outputs

    def teardown(self, cluster_id: UUID, passphrase: str) -> bool:
        """Destroy and remove the cluster stack.

        Failures are logged, not raised, so local cleanup can proceed; the
        remote infrastructure may then need manual cleanup.

        Returns:
            True if the stack is gone (or never existed), False otherwise
        """
        log_external_call_start(logger, "pulumi", "destroy")
        start = time.perf_counter()
        try:
            stack = self._select(cluster_id, passphrase)
            stack.destroy(on_output=self._log_engine_output)
            stack.workspace.remove_stack(self.stack_name(cluster_id))
        except StackNotFoundError:
            logger.info("No infrastructure stack to destroy", cluster_id=str(cluster_id))
            return True
        except Exception as e:
            log_external_call_end(
                logger,
                "pulumi",
                "destroy",
                success=False,
                duration_ms=(time.perf_counter() - start) * 1000,
                error=type(e).__name__,
            )
            logger.warning(
                "Failed to destroy infrastructure; manual cleanup may be required",
                cluster_id=str(cluster_id),
                diagnostic=str(e),
            )
            return False

        log_external_call_end(
            logger,
            "pulumi",
            "destroy",
            success=True,
            duration_ms=(time.perf_counter() - start) * 1000,
        )
        return True

    def fetch_outputs(self, cluster_id: UUID, passphrase: str) -> ProvisioningOutputs | None:
        """Read the stack outputs without changing anything.

        Returns None on any failure: missing stack, wrong passphrase and
        transient errors all look the same to the caller.
        """
        try:
            outputs = self._select(cluster_id, passphrase).outputs()
        except Exception as e:
            logger.info(
                "Cluster outputs unavailable",
                cluster_id=str(cluster_id),
                error=type(e).__name__,
            )
            return None

        if not outputs:
            return None
        return ProvisioningOutputs.from_stack_outputs(outputs)
