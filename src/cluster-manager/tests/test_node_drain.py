"""Tests for the node drain coordinator and SSH helpers."""

from unittest.mock import MagicMock, patch

import pytest
import yaml
from kubernetes.client.rest import ApiException

from app.services.errors import DrainError
from app.services.node_drain import (
    NodeDrainCoordinator,
    SshKubeconfigSource,
    rewrite_server_address,
)
from app.services.ssh import SSHCommandError, run_command

K3S_YAML = """\
apiVersion: v1
clusters:
- cluster:
    certificate-authority-data: Zm9v
    server: https://127.0.0.1:6443
  name: default
contexts:
- context:
    cluster: default
    user: default
  name: default
current-context: default
kind: Config
users:
- name: default
  user:
    client-certificate-data: YmFy
    client-key-data: YmF6
"""


class StaticSource:
    def __init__(self, text: str = K3S_YAML):
        self.text = text
        self.reads = 0

    def read(self) -> str:
        self.reads += 1
        return self.text


@pytest.fixture
def core_api():
    with patch("app.services.node_drain.client.CoreV1Api") as mock:
        yield mock.return_value


@pytest.fixture
def coordinator() -> NodeDrainCoordinator:
    return NodeDrainCoordinator(api_client_factory=lambda kubeconfig: MagicMock())


class TestRewriteServerAddress:
    @pytest.mark.parametrize(
        "loopback",
        ["https://127.0.0.1:6443", "https://localhost:6443", "https://[::1]:6443"],
    )
    def test_replaces_loopback(self, loopback):
        text = f"server: {loopback}\n"

        assert rewrite_server_address(text, "203.0.113.7") == "server: https://203.0.113.7:6443\n"

    def test_leaves_other_servers_alone(self):
        text = "server: https://10.1.2.3:6443\n"

        assert rewrite_server_address(text, "203.0.113.7") == text


class TestSshKubeconfigSource:
    def test_reads_k3s_config_and_rewrites_server(self, settings):
        source = SshKubeconfigSource("203.0.113.7", "PRIVATE", settings)

        with patch("app.services.node_drain.run_command", return_value=K3S_YAML) as run:
            text = source.read()

        address, key, command, ssh_settings = run.call_args.args
        assert address == "203.0.113.7"
        assert key == "PRIVATE"
        assert command == "sudo cat /etc/rancher/k3s/k3s.yaml"
        assert ssh_settings.user == settings.ssh.user
        assert yaml.safe_load(text)["clusters"][0]["cluster"]["server"] == "https://203.0.113.7:6443"

    def test_ssh_failure_raises_drain_error(self, settings):
        source = SshKubeconfigSource("203.0.113.7", "PRIVATE", settings)

        with patch("app.services.node_drain.run_command", side_effect=OSError("no route to host")):
            with pytest.raises(DrainError):
                source.read()

    def test_command_failure_raises_drain_error(self, settings):
        source = SshKubeconfigSource("203.0.113.7", "PRIVATE", settings)
        error = SSHCommandError("sudo cat", 1, "No such file or directory")

        with patch("app.services.node_drain.run_command", side_effect=error):
            with pytest.raises(DrainError):
                source.read()


class TestDrain:
    def test_cordons_each_node(self, coordinator, core_api):
        cordoned = coordinator.drain("c1", ["demo-node-2", "demo-node-3"], StaticSource())

        assert cordoned == ["demo-node-2", "demo-node-3"]
        assert [c.kwargs["name"] for c in core_api.patch_node.call_args_list] == [
            "demo-node-2",
            "demo-node-3",
        ]
        for call in core_api.patch_node.call_args_list:
            assert call.kwargs["body"] == {"spec": {"unschedulable": True}}

    def test_passes_parsed_kubeconfig_to_client_factory(self, core_api):
        seen = []
        coordinator = NodeDrainCoordinator(api_client_factory=lambda cfg: seen.append(cfg) or MagicMock())

        coordinator.drain("c1", ["demo-node-2"], StaticSource())

        assert seen[0]["current-context"] == "default"

    def test_missing_node_is_skipped(self, coordinator, core_api):
        core_api.patch_node.side_effect = [ApiException(status=404, reason="Not Found"), None]

        cordoned = coordinator.drain("c1", ["demo-node-2", "demo-node-3"], StaticSource())

        assert cordoned == ["demo-node-3"]

    def test_api_error_raises_drain_error(self, coordinator, core_api):
        core_api.patch_node.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(DrainError):
            coordinator.drain("c1", ["demo-node-2"], StaticSource())

    def test_unreachable_api_raises_drain_error(self, coordinator, core_api):
        core_api.patch_node.side_effect = ConnectionError("refused")

        with pytest.raises(DrainError):
            coordinator.drain("c1", ["demo-node-2"], StaticSource())

    def test_unreachable_api_logs_failed_call(self, coordinator, core_api):
        core_api.patch_node.side_effect = ConnectionError("refused")

        with patch("app.services.node_drain.log_external_call_end") as call_end:
            with pytest.raises(DrainError):
                coordinator.drain("c1", ["demo-node-2"], StaticSource())

        call_end.assert_called_once()
        assert call_end.call_args.kwargs["success"] is False
        assert call_end.call_args.kwargs["error"] == "ConnectionError"

    def test_malformed_kubeconfig_raises_drain_error(self, coordinator, core_api):
        with pytest.raises(DrainError):
            coordinator.drain("c1", ["demo-node-2"], StaticSource("just a string"))

        core_api.patch_node.assert_not_called()

    def test_nothing_to_drain_skips_session(self, coordinator, core_api):
        source = StaticSource()

        assert coordinator.drain("c1", [], source) == []
        assert source.reads == 0


class TestRunCommand:
    @pytest.fixture
    def ssh_client(self):
        with patch("app.services.ssh.paramiko.SSHClient") as client_cls, patch(
            "app.services.ssh.load_private_key"
        ):
            yield client_cls.return_value

    def _exec_result(self, stdout: bytes, stderr: bytes, status: int):
        out, err = MagicMock(), MagicMock()
        out.read.return_value = stdout
        out.channel.recv_exit_status.return_value = status
        err.read.return_value = stderr
        return MagicMock(), out, err

    def test_returns_stdout(self, ssh_client, settings):
        ssh_client.exec_command.return_value = self._exec_result(b"hello\n", b"", 0)

        assert run_command("203.0.113.7", "PRIVATE", "echo hello", settings.ssh) == "hello\n"

        connect_kwargs = ssh_client.connect.call_args.kwargs
        assert connect_kwargs["hostname"] == "203.0.113.7"
        assert connect_kwargs["username"] == settings.ssh.user
        assert connect_kwargs["look_for_keys"] is False
        ssh_client.close.assert_called_once()

    def test_non_zero_exit_raises(self, ssh_client, settings):
        ssh_client.exec_command.return_value = self._exec_result(b"", b"permission denied", 1)

        with pytest.raises(SSHCommandError) as exc_info:
            run_command("203.0.113.7", "PRIVATE", "cat /secret", settings.ssh)

        assert exc_info.value.exit_status == 1
        ssh_client.close.assert_called_once()
