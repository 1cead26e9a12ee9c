"""kubeforge command line interface.

Every command is a thin caller of the services; errors are printed and the
process exits with status 1.
"""

from __future__ import annotations

import asyncio
import functools
import sys
from pathlib import Path
from typing import Any, Callable

import click
import paramiko
from rich.console import Console
from rich.table import Table

from shared.config import LogLevel, Settings, get_settings
from shared.models import Cluster, ClusterSize, ProviderType
from shared.observability import setup_logging

from .services.errors import ClusterNotFoundError, KubeforgeError, ProvisioningError
from .services.factory import Services, build_services
from .services.remote_shell import RemoteShell

console = Console()
err_console = Console(stderr=True)

passphrase_option = click.option(
    "--passphrase",
    envvar="KUBEFORGE_PASSPHRASE",
    prompt="Passphrase",
    hide_input=True,
    help="Secret store passphrase (or KUBEFORGE_PASSPHRASE).",
)


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Print service errors and exit 1 instead of dumping a traceback."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ProvisioningError as e:
            err_console.print(f"[red]Error:[/red] {e.args[0]}")
            if e.diagnostic:
                err_console.print(e.diagnostic, style="dim", markup=False, highlight=False)
            sys.exit(1)
        except KubeforgeError as e:
            err_console.print(f"[red]Error:[/red] {e}")
            sys.exit(1)

    return wrapper


def _services(ctx: click.Context) -> Services:
    return ctx.obj


def _cluster_ref(services: Services, ref: str | None) -> Cluster:
    """Resolve an explicit cluster reference, or fall back to the current cluster."""
    if ref:
        return services.clusters.resolve(ref)
    cluster = services.clusters.current_cluster()
    if cluster is None:
        raise ClusterNotFoundError(
            "No current cluster selected; pass a cluster or run 'kubeforge cluster use' first"
        )
    return cluster


@click.group()
@click.option(
    "--home",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="State directory (defaults to KUBEFORGE_HOME or ~/.kubeforge).",
)
@click.option(
    "--log-level",
    type=click.Choice([level.value for level in LogLevel], case_sensitive=False),
    default=None,
    help="Log level for diagnostics written to stderr.",
)
@click.version_option(package_name="kubeforge")
@click.pass_context
def cli(ctx: click.Context, home: Path | None, log_level: str | None) -> None:
    """Manage k3s clusters on Hetzner Cloud."""
    if ctx.obj is not None:
        return
    settings = get_settings() if home is None else Settings(home_dir=home)
    setup_logging(
        log_level=LogLevel(log_level.upper()) if log_level else LogLevel.WARNING,
        log_format=settings.log_format,
    )
    ctx.obj = build_services(settings)


# =============================================================================
# Providers
# =============================================================================


@cli.group()
def provider() -> None:
    """Manage cloud provider accounts."""


@provider.command("add")
@click.option("--name", prompt="Provider name", help="Name for this provider account.")
@click.option(
    "--type",
    "provider_type",
    type=click.Choice([t.value for t in ProviderType]),
    default=ProviderType.HETZNER.value,
    show_default=True,
)
@click.option(
    "--token",
    envvar="HCLOUD_TOKEN",
    prompt="API token",
    hide_input=True,
    help="Provider API token (or HCLOUD_TOKEN).",
)
@passphrase_option
@click.pass_context
@handle_errors
def provider_add(ctx: click.Context, name: str, provider_type: str, token: str, passphrase: str) -> None:
    """Validate a token and register the provider."""
    services = _services(ctx)
    with console.status("Validating API token..."):
        added = asyncio.run(services.providers.add(name, token, passphrase, type=provider_type))
    console.print(f"[green]Provider '{added.name}' added[/green] (ID: {added.id})")


@provider.command("list")
@click.pass_context
@handle_errors
def provider_list(ctx: click.Context) -> None:
    """List registered providers."""
    providers = _services(ctx).providers.list()
    if not providers:
        console.print("[yellow]No providers found. Add one with 'kubeforge provider add'.[/yellow]")
        return

    table = Table(title="Providers")
    table.add_column("ID")
    table.add_column("Name", style="bold")
    table.add_column("Type")
    table.add_column("Added")
    for p in providers:
        table.add_row(str(p.id), p.name, str(p.type), p.added_at.strftime("%Y-%m-%d %H:%M"))
    console.print(table)


@provider.command("remove")
@click.argument("ref")
@click.confirmation_option(prompt="Remove this provider and its stored token?")
@click.pass_context
@handle_errors
def provider_remove(ctx: click.Context, ref: str) -> None:
    """Remove a provider by ID or name."""
    services = _services(ctx)
    removed = services.providers.remove(services.providers.resolve(ref).id)
    console.print(f"[green]Provider '{removed.name}' removed[/green]")


# =============================================================================
# Clusters
# =============================================================================


@cli.group()
def cluster() -> None:
    """Manage clusters."""


@cluster.command("add")
@click.option("--name", prompt="Cluster name", help="Cluster name.")
@click.option(
    "--region",
    "regions",
    multiple=True,
    required=True,
    help="Hetzner location (repeatable, e.g. --region nbg1 --region fsn1).",
)
@click.option(
    "--size",
    type=click.Choice([s.value for s in ClusterSize]),
    default=ClusterSize.SINGLE.value,
    show_default=True,
    help="single: 1 node, ha: 3 control-plane nodes.",
)
@click.option("--provider", "provider_ref", required=True, help="Provider ID or name.")
@passphrase_option
@click.pass_context
@handle_errors
def cluster_add(
    ctx: click.Context,
    name: str,
    regions: tuple[str, ...],
    size: str,
    provider_ref: str,
    passphrase: str,
) -> None:
    """Create and provision a cluster, then make it current."""
    services = _services(ctx)
    provider_id = services.providers.resolve(provider_ref).id
    with console.status(f"Provisioning cluster '{name}' (this takes a few minutes)..."):
        created = asyncio.run(
            services.clusters.create(name, list(regions), size, provider_id, passphrase)
        )
    console.print(
        f"[green]Cluster '{created.name}' is ready[/green] "
        f"({created.node_count} node(s), ID: {created.id})"
    )
    console.print(f"Current cluster set to '{created.name}'")


@cluster.command("provision")
@click.argument("ref", required=False)
@passphrase_option
@click.pass_context
@handle_errors
def cluster_provision(ctx: click.Context, ref: str | None, passphrase: str) -> None:
    """Retry provisioning of a cluster whose creation failed."""
    services = _services(ctx)
    target = _cluster_ref(services, ref)
    with console.status(f"Provisioning cluster '{target.name}'..."):
        provisioned = asyncio.run(services.clusters.provision(target.id, passphrase))
    console.print(f"[green]Cluster '{provisioned.name}' is ready[/green]")


@cluster.command("use")
@click.argument("ref")
@click.pass_context
@handle_errors
def cluster_use(ctx: click.Context, ref: str) -> None:
    """Set the current cluster by ID or name."""
    services = _services(ctx)
    context = services.clusters.use(services.clusters.resolve(ref).id)
    console.print(f"[green]Current cluster set to '{context.cluster_name}'[/green]")


@cluster.command("current")
@click.pass_context
@handle_errors
def cluster_current(ctx: click.Context) -> None:
    """Show the current cluster."""
    current = _services(ctx).clusters.current_cluster()
    if current is None:
        console.print("[yellow]No current cluster selected[/yellow]")
        return
    console.print(f"[bold]{current.name}[/bold] (ID: {current.id})")
    console.print(f"  State:   {current.state}")
    console.print(f"  Size:    {current.size}")
    console.print(f"  Nodes:   {current.node_count}")
    console.print(f"  Regions: {', '.join(current.regions)}")


@cluster.command("list")
@click.pass_context
@handle_errors
def cluster_list(ctx: click.Context) -> None:
    """List clusters."""
    services = _services(ctx)
    clusters = services.clusters.list()
    if not clusters:
        console.print("[yellow]No clusters found. Create one with 'kubeforge cluster add'.[/yellow]")
        return

    context = services.clusters.current()
    current_id = context.cluster_id if context else None

    table = Table(title="Clusters")
    table.add_column("")
    table.add_column("Name", style="bold")
    table.add_column("ID")
    table.add_column("State")
    table.add_column("Size")
    table.add_column("Nodes", justify="right")
    table.add_column("Regions")
    for c in clusters:
        table.add_row(
            "*" if c.id == current_id else "",
            c.name,
            str(c.id),
            str(c.state),
            str(c.size),
            str(c.node_count),
            ", ".join(c.regions),
        )
    console.print(table)


@cluster.command("remove")
@click.argument("ref", required=False)
@passphrase_option
@click.confirmation_option(prompt="Destroy the cluster infrastructure and delete its local state?")
@click.pass_context
@handle_errors
def cluster_remove(ctx: click.Context, ref: str | None, passphrase: str) -> None:
    """Destroy a cluster (defaults to the current one)."""
    services = _services(ctx)
    target = _cluster_ref(services, ref)
    with console.status(f"Destroying cluster '{target.name}'..."):
        torn_down = asyncio.run(services.clusters.destroy(target.id, passphrase))
    if not torn_down:
        console.print(
            "[yellow]Infrastructure teardown failed; remaining Hetzner resources "
            "may need manual cleanup.[/yellow]"
        )
    console.print(f"[green]Cluster '{target.name}' removed[/green]")


@cluster.command("scale")
@click.argument("node_count", type=click.IntRange(min=1))
@click.option("--cluster", "ref", default=None, help="Cluster ID or name (defaults to current).")
@click.option("--skip-drain", is_flag=True, help="Remove nodes without cordoning them first.")
@passphrase_option
@click.pass_context
@handle_errors
def cluster_scale(
    ctx: click.Context,
    node_count: int,
    ref: str | None,
    skip_drain: bool,
    passphrase: str,
) -> None:
    """Scale a cluster to NODE_COUNT nodes."""
    services = _services(ctx)
    target = _cluster_ref(services, ref)
    with console.status(f"Scaling '{target.name}' from {target.node_count} to {node_count} nodes..."):
        scaled = asyncio.run(
            services.clusters.scale(target.id, node_count, passphrase, skip_drain=skip_drain)
        )
    console.print(f"[green]Cluster '{scaled.name}' now has {scaled.node_count} node(s)[/green]")


@cluster.command("nodes")
@click.argument("ref", required=False)
@passphrase_option
@click.pass_context
@handle_errors
def cluster_nodes(ctx: click.Context, ref: str | None, passphrase: str) -> None:
    """List the nodes of a cluster."""
    services = _services(ctx)
    target = _cluster_ref(services, ref)
    nodes = asyncio.run(services.clusters.nodes(target.id, passphrase))

    table = Table(title=f"Nodes of {target.name}")
    table.add_column("Name", style="bold")
    table.add_column("Address")
    table.add_column("Region")
    table.add_column("Role")
    for node in nodes:
        table.add_row(node.name, node.address, node.region, str(node.role))
    console.print(table)


# =============================================================================
# Shell and server
# =============================================================================


@cli.command("ssh")
@click.argument("node", required=False)
@click.option("--cluster", "ref", default=None, help="Cluster ID or name (defaults to current).")
@passphrase_option
@click.pass_context
@handle_errors
def ssh(ctx: click.Context, node: str | None, ref: str | None, passphrase: str) -> None:
    """Open a shell on NODE (name or address; defaults to the first server)."""
    services = _services(ctx)
    target = _cluster_ref(services, ref)
    info, private_key = asyncio.run(services.clusters.shell_target(target.id, passphrase, node))

    err_console.print(f"Connecting to {info.name} ({info.address}, {info.region})...")
    shell = RemoteShell(info.address, private_key, services.settings.ssh)
    try:
        exit_status = shell.interactive()
    except (OSError, paramiko.SSHException) as e:
        err_console.print(f"[red]Connection failed:[/red] {e}")
        sys.exit(1)
    sys.exit(exit_status)


@cli.command("serve")
@click.option("--host", default=None, help="Bind address (defaults to HOST setting).")
@click.option("--port", type=int, default=None, help="Bind port (defaults to PORT setting).")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the HTTP API."""
    import uvicorn

    from .main import create_app

    services = _services(ctx)
    settings = services.settings
    setup_logging(log_level=settings.log_level, log_format=settings.log_format)
    uvicorn.run(
        create_app(settings, services),
        host=host or settings.host,
        port=port or settings.port,
        log_config=None,
    )


def main() -> None:
    cli(prog_name="kubeforge")


if __name__ == "__main__":
    main()
