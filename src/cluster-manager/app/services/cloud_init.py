"""cloud-init user-data for cluster nodes.

Every node gets the same hardening (admin user, sshd lockdown, ufw, fail2ban,
unattended upgrades); the k3s install command differs by role:

- bootstrap server: initializes the embedded etcd cluster
- additional servers: join the bootstrap server as control-plane replicas
- agents: join the bootstrap server as workers
"""

from __future__ import annotations

import shlex

import yaml

from shared.config import Settings
from shared.models import NodePlan, NodeRole

K3S_INSTALL_URL = "https://get.k3s.io"

# Ports opened on every node: SSH, Kubernetes API, kubelet, WireGuard (udp).
TCP_PORTS = (22, 6443, 10250)
UDP_PORTS = (51820,)

SSHD_HARDENING = """\
PermitRootLogin no
PasswordAuthentication no
ChallengeResponseAuthentication no
UsePAM yes
X11Forwarding no
AllowUsers {user}
MaxAuthTries 3
ClientAliveInterval 300
ClientAliveCountMax 2
LoginGraceTime 60
"""

FAIL2BAN_JAIL = """\
[DEFAULT]
bantime = 3600
findtime = 600
maxretry = 3

[sshd]
enabled = true
port = ssh
filter = sshd
logpath = /var/log/auth.log
"""

AUTO_UPGRADES = """\
APT::Periodic::Update-Package-Lists "1";
APT::Periodic::Unattended-Upgrade "1";
"""


def k3s_install_command(
    node: NodePlan,
    *,
    join_token: str,
    bootstrap_address: str | None,
    settings: Settings,
) -> str:
    """Shell command installing k3s in the node's role."""
    k3s = settings.k3s
    env = [
        f"INSTALL_K3S_VERSION={shlex.quote(k3s.version)}",
        f"K3S_TOKEN={shlex.quote(join_token)}",
    ]
    if not node.bootstrap:
        if not bootstrap_address:
            raise ValueError(f"Node {node.name} needs the bootstrap server address to join")
        env.append(f"K3S_URL=https://{bootstrap_address}:{k3s.api_port}")

    if node.role == NodeRole.SERVER:
        args = [
            "server",
            f"--node-name={node.name}",
            f"--flannel-backend={k3s.flannel_backend}",
            "--disable=traefik",
            "--disable=servicelb",
        ]
        if node.bootstrap:
            args.append("--cluster-init")
    else:
        args = ["agent", f"--node-name={node.name}"]

    return f"curl -sfL {K3S_INSTALL_URL} | {' '.join(env)} sh -s - {' '.join(args)}"


def render_user_data(
    node: NodePlan,
    *,
    public_key: str,
    join_token: str,
    bootstrap_address: str | None,
    settings: Settings,
) -> str:
    """Render the ``#cloud-config`` document for one node."""
    user = settings.ssh.user
    firewall_cmds = [
        "ufw default deny incoming",
        "ufw default allow outgoing",
        *(f"ufw allow {port}/tcp" for port in TCP_PORTS),
        *(f"ufw allow {port}/udp" for port in UDP_PORTS),
        "ufw --force enable",
    ]
    service = "k3s" if node.role == NodeRole.SERVER else "k3s-agent"

    document = {
        "package_update": True,
        "package_upgrade": True,
        "users": [
            {
                "name": user,
                "groups": ["sudo"],
                "shell": "/bin/bash",
                "ssh_authorized_keys": [public_key.strip()],
                "sudo": ["ALL=(ALL) NOPASSWD:ALL"],
            }
        ],
        "disable_root": True,
        "packages": [
            "ufw",
            "fail2ban",
            "unattended-upgrades",
            "apt-transport-https",
            "ca-certificates",
            "curl",
        ],
        "write_files": [
            {
                "path": "/etc/ssh/sshd_config.d/99-kubeforge.conf",
                "content": SSHD_HARDENING.format(user=user),
                "permissions": "0644",
                "owner": "root:root",
            },
            {
                "path": "/etc/fail2ban/jail.local",
                "content": FAIL2BAN_JAIL,
                "permissions": "0644",
                "owner": "root:root",
            },
            {
                "path": "/etc/apt/apt.conf.d/20auto-upgrades",
                "content": AUTO_UPGRADES,
                "permissions": "0644",
                "owner": "root:root",
            },
        ],
        "runcmd": [
            *firewall_cmds,
            "systemctl enable --now fail2ban",
            "systemctl restart ssh",
            k3s_install_command(
                node,
                join_token=join_token,
                bootstrap_address=bootstrap_address,
                settings=settings,
            ),
            f"systemctl enable {service}",
        ],
    }

    return "#cloud-config\n" + yaml.safe_dump(document, sort_keys=False, width=1000)
