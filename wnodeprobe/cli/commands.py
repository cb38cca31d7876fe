"""CLI commands for wnodeprobe.

`run` drives the two-node scenario, `probe` checks that one node answers
RPC, `init` writes a config file and `version` prints the version.
"""

import asyncio
import json
import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from wnodeprobe import __logo__, __version__
from wnodeprobe.cli.shared.logging_utils import ensure_rotating_log_file
from wnodeprobe.config.loader import get_config_path, load_config, save_config
from wnodeprobe.config.schema import Config, NodeConfig
from wnodeprobe.node.peer import SubprocessPeer
from wnodeprobe.node.readiness import wait_until_ready
from wnodeprobe.node.supervisor import NodeSupervisor
from wnodeprobe.scenario.driver import STEPS, PubSubScenario, ScenarioReport
from wnodeprobe.shh.client import ShhClient
from wnodeprobe.utils.exceptions import LifecycleError
from wnodeprobe.utils.retry import RetryPolicy

app = typer.Typer(
    name="wnodeprobe",
    help=f"{__logo__} wnodeprobe - two-node Whisper publish/subscribe check",
    no_args_is_help=True,
)

console = Console()


def _configure_logging(command: str, level: str, verbose: bool) -> Path:
    effective = "DEBUG" if verbose else level.upper()
    logger.remove()
    logger.add(
        sys.stderr,
        level=effective,
        format="<dim>{time:HH:mm:ss.SSS}</dim> | <level>{level: <8}</level> | <level>{message}</level>",
    )
    return ensure_rotating_log_file(command, level=effective)


def build_supervisor(node: NodeConfig, client: ShhClient, readiness: RetryPolicy) -> NodeSupervisor:
    """Supervisor for a managed node, probed through its own client."""
    secret = node.secret.get_secret_value()
    peer = SubprocessPeer(
        node.name,
        node.command(),
        cwd=node.workdir,
        env=node.child_env(),
        secrets=[secret] if secret else None,
        kill_timeout=node.kill_timeout,
    )
    return NodeSupervisor(peer, probe=client.version, readiness=readiness)


def build_scenario(config: Config, *, attach: bool = False) -> PubSubScenario:
    """Wire clients and (unless attaching) supervisors from config."""
    nodes = config.nodes
    publisher = ShhClient(nodes.publisher.base_url, timeout=config.rpc.timeout, name=nodes.publisher.name)
    subscriber = ShhClient(nodes.subscriber.base_url, timeout=config.rpc.timeout, name=nodes.subscriber.name)
    supervisors: list[NodeSupervisor] = []
    if not attach:
        readiness = config.readiness.to_policy()
        for node, client in ((nodes.publisher, publisher), (nodes.subscriber, subscriber)):
            if node.managed:
                supervisors.append(build_supervisor(node, client, readiness))
    return PubSubScenario(publisher, subscriber, settings=config.scenario, supervisors=supervisors)


def _print_report(report: ScenarioReport) -> None:
    table = Table(title=f"{__logo__} publish/subscribe scenario")
    table.add_column("Step")
    table.add_column("Result")
    for step in STEPS:
        if step in report.steps:
            table.add_row(step, "[green]✓[/green]")
        elif step == report.failed_step:
            table.add_row(step, f"[red]✗ {report.error.message if report.error else ''}[/red]")
        else:
            table.add_row(step, "[dim]-[/dim]")
    console.print(table)
    for message in report.received:
        console.print(f"received [cyan]{message.topic}[/cyan]: {message.text}")
    if report.late_filter_id is not None:
        console.print(f"late filter observed {len(report.late_messages)} message(s)")
    for exit_info in report.exits:
        line = f"{exit_info.name}: exit {exit_info.returncode}"
        if exit_info.error:
            line += f" [yellow]({exit_info.error})[/yellow]"
        console.print(line)
    for error in report.lifecycle_errors:
        console.print(f"[yellow]lifecycle:[/yellow] {error.message}")
    if report.ok:
        console.print("[green]✓[/green] message observed on subscriber")
    else:
        console.print(f"[red]✗[/red] failed at {report.failed_step}")


@app.command()
def run(
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file (default ~/.wnodeprobe/config.json)"),
    attach: bool = typer.Option(False, "--attach", help="Use already running nodes; do not spawn or stop any"),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging (RPC calls, node stderr)"),
):
    """Start both nodes, exchange a key, publish on A and check delivery on B."""
    try:
        config = load_config(config_path)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(2)
    log_path = _configure_logging("run", config.log_level, verbose)
    logger.debug("logging to {}", log_path)

    report = asyncio.run(build_scenario(config, attach=attach).run())
    if as_json:
        console.print_json(json.dumps(report.summary()))
    else:
        _print_report(report)
    if not report.ok:
        raise typer.Exit(1)


@app.command()
def probe(
    url: str = typer.Argument(..., help="Node RPC endpoint, e.g. http://127.0.0.1:8536"),
    attempts: int = typer.Option(5, "--attempts", "-n", help="Probe attempts before giving up"),
    timeout: float = typer.Option(5.0, "--timeout", help="Per-call timeout in seconds"),
):
    """Check that a node answers JSON-RPC."""
    client = ShhClient(url, timeout=timeout)
    try:
        asyncio.run(wait_until_ready(client.version, RetryPolicy(max_attempts=attempts), name=url))
    except LifecycleError as exc:
        console.print(f"[red]✗[/red] {exc.message}")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] {url} answers RPC")


@app.command()
def init(
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file (default ~/.wnodeprobe/config.json)"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file with defaults"),
):
    """Write a config file with defaults, or refresh an existing one."""
    path = config_path or get_config_path()
    if path.exists() and not force:
        try:
            config = load_config(path)
        except ValueError as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(2)
        save_config(config, path)
        console.print(f"[green]✓[/green] Config refreshed at {path} (existing values preserved)")
    else:
        save_config(Config(), path)
        console.print(f"[green]✓[/green] Created config at {path}")
    console.print("Node secrets are never written; set WNODEPROBE_NODES__PUBLISHER__SECRET / __SUBSCRIBER__SECRET.")


@app.command()
def version():
    """Show wnodeprobe version."""
    console.print(f"{__logo__} wnodeprobe v{__version__}")


if __name__ == "__main__":
    app()
