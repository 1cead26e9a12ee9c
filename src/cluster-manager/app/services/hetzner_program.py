"""Pulumi inline program for a k3s cluster on Hetzner Cloud.

This is the only module that constructs provider resources. The engine
adapter hands it a ``ProvisionSpec`` and runs the returned program.
"""

from __future__ import annotations

from typing import Callable

import pulumi
import pulumi_hcloud as hcloud
import pulumi_tls as tls
from pulumi_command import remote

from shared.config import Settings
from shared.models import NodeRole, ProvisionSpec, plan_nodes

from .cloud_init import TCP_PORTS, UDP_PORTS, render_user_data

ANYWHERE = ["0.0.0.0/0", "::/0"]

PORT_DESCRIPTIONS = {
    22: "SSH access",
    6443: "k3s API server",
    10250: "k3s kubelet",
    51820: "WireGuard",
}


def _firewall_rules() -> list[hcloud.FirewallRuleArgs]:
    rules = [
        hcloud.FirewallRuleArgs(
            direction="in",
            protocol=protocol,
            port=str(port),
            source_ips=ANYWHERE,
            description=PORT_DESCRIPTIONS[port],
        )
        for protocol, ports in (("tcp", TCP_PORTS), ("udp", UDP_PORTS))
        for port in ports
    ]
    rules.append(
        hcloud.FirewallRuleArgs(
            direction="out",
            protocol="tcp",
            port="any",
            destination_ips=ANYWHERE,
            description="All outbound tcp",
        )
    )
    rules.append(
        hcloud.FirewallRuleArgs(
            direction="out",
            protocol="udp",
            port="any",
            destination_ips=ANYWHERE,
            description="All outbound udp",
        )
    )
    return rules


def build_cluster_program(
    spec: ProvisionSpec,
    join_token: str,
    settings: Settings,
) -> Callable[[], None]:
    """Return the inline program converging ``spec``.

    Exports ``serverIps``, ``sshPrivateKey``, ``k3sToken`` and ``serverIp``.
    """
    nodes = plan_nodes(spec.name, spec.regions, spec.node_count)

    def program() -> None:
        ssh_key = tls.PrivateKey("ssh-key", algorithm="RSA", rsa_bits=4096)

        hcloud_ssh_key = hcloud.SshKey(
            "cluster-ssh-key",
            name=f"{spec.name}-ssh-key",
            public_key=ssh_key.public_key_openssh,
        )

        firewall = hcloud.Firewall(
            "cluster-firewall",
            name=f"{spec.name}-firewall",
            rules=_firewall_rules(),
        )

        servers: list[hcloud.Server] = []
        bootstrap_ip: pulumi.Output[str] | None = None

        for node in nodes:
            user_data = pulumi.Output.all(
                ssh_key.public_key_openssh,
                bootstrap_ip if bootstrap_ip is not None else "",
            ).apply(
                lambda args, node=node: render_user_data(
                    node,
                    public_key=args[0],
                    join_token=join_token,
                    bootstrap_address=args[1] or None,
                    settings=settings,
                )
            )

            server = hcloud.Server(
                f"server-{node.index + 1}",
                name=node.name,
                image=settings.hetzner.image,
                server_type=settings.hetzner.server_type,
                location=node.region,
                ssh_keys=[hcloud_ssh_key.name],
                user_data=pulumi.Output.secret(user_data),
                labels={
                    "cluster": spec.name,
                    "node": str(node.index + 1),
                    "region": node.region,
                    "role": NodeRole(node.role).value,
                },
            )

            hcloud.FirewallAttachment(
                f"firewall-attachment-{node.index + 1}",
                firewall_id=firewall.id.apply(int),
                server_ids=[server.id.apply(int)],
            )

            remote.Command(
                f"cloud-init-wait-{node.index + 1}",
                connection=remote.ConnectionArgs(
                    host=server.ipv4_address,
                    port=settings.ssh.port,
                    user=settings.ssh.user,
                    private_key=ssh_key.private_key_openssh,
                ),
                create="sudo cloud-init status --wait",
                opts=pulumi.ResourceOptions(depends_on=[server]),
            )

            if node.bootstrap:
                bootstrap_ip = server.ipv4_address

            servers.append(server)

        pulumi.export("serverIps", pulumi.Output.all(*[s.ipv4_address for s in servers]))
        pulumi.export("sshPrivateKey", pulumi.Output.secret(ssh_key.private_key_openssh))
        pulumi.export("k3sToken", pulumi.Output.secret(join_token))
        pulumi.export("serverIp", servers[0].ipv4_address)

    return program
