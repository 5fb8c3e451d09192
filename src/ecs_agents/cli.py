"""Operator CLI for the ECS agent scheduler.

Read-mostly commands against the cluster named in a settings file:

    ecs-agents --config settings.yaml tasks
    ecs-agents --config settings.yaml containers
    ecs-agents --config settings.yaml stop <task-arn>
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from ecs_agents import __version__
from ecs_agents.backend.client import ecs_client
from ecs_agents.backend.reconciliation import ReconciliationReader
from ecs_agents.core.config import PluginSettings
from ecs_agents.core.logging import configure_logging, get_logger
from ecs_agents.exceptions import SchedulingError
from ecs_agents.scheduling.orchestrator import stop_and_cleanup_task

app = typer.Typer(
    name="ecs-agents",
    help="Inspect and stop elastic build agents running on ECS",
    add_completion=False,
)

console = Console()
_logger = get_logger("cli")

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class _State:
    settings_path: Path | None = None
    log_level: str | None = None
    log_format: str | None = None


_state = _State()


def _load_settings() -> PluginSettings:
    if _state.settings_path is None:
        console.print("[red]No settings file given.[/red] Use --config or ECS_AGENTS_CONFIG.")
        raise typer.Exit(2)
    try:
        settings = PluginSettings.from_yaml(_state.settings_path)
    except FileNotFoundError:
        console.print(f"[red]Settings file not found:[/red] {_state.settings_path}")
        raise typer.Exit(2) from None
    except ValidationError as e:
        console.print(f"[red]Invalid settings:[/red]\n{e}")
        raise typer.Exit(2) from None

    log_config = settings.logging
    configure_logging(
        level=_state.log_level or log_config.level,  # type: ignore[arg-type]
        format=_state.log_format or log_config.format,  # type: ignore[arg-type]
        file_path=log_config.file_path,
    )
    return settings


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"ecs-agents v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Plugin settings YAML file",
            envvar="ECS_AGENTS_CONFIG",
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="ECS_AGENTS_LOG_LEVEL",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option("--log-format", help="Log format: console or json"),
    ] = None,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Elastic build agents on ECS."""
    if log_level and log_level.upper() not in _LOG_LEVELS:
        raise typer.BadParameter(f"must be one of {', '.join(_LOG_LEVELS)}", param_hint="--log-level")
    if log_format and log_format not in ("console", "json"):
        raise typer.BadParameter("must be console or json", param_hint="--log-format")
    _state.settings_path = config
    _state.log_level = log_level.upper() if log_level else None
    _state.log_format = log_format


@app.command()
def tasks() -> None:
    """List agent tasks owned by this server."""
    settings = _load_settings()
    try:
        owned = ReconciliationReader().owned_tasks(settings)
    except SchedulingError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    if not owned:
        console.print(f"No agent tasks owned by {settings.server_id} in {settings.cluster_name}")
        return

    table = Table(title=f"Agent tasks in {settings.cluster_name}")
    table.add_column("Task", style="cyan")
    table.add_column("Job")
    table.add_column("Environment")
    table.add_column("Status")
    table.add_column("Instance", style="dim")
    for task in owned:
        table.add_row(
            task.name,
            task.job_identifier.represent(),
            task.environment or "-",
            task.last_status or "-",
            task.backing_target.instance_id or "-",
        )
    console.print(table)


@app.command()
def containers() -> None:
    """List running containers in the cluster (all owners)."""
    settings = _load_settings()
    try:
        running = ReconciliationReader().all_running_containers(settings)
    except SchedulingError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    if not running:
        console.print(f"No running containers in {settings.cluster_name}")
        return

    table = Table(title=f"Running containers in {settings.cluster_name}")
    table.add_column("Name", style="cyan")
    table.add_column("Image")
    table.add_column("Status")
    table.add_column("Created", style="dim")
    for container in running:
        table.add_row(
            container.name,
            container.image,
            container.last_status or "-",
            container.created_at.isoformat() if container.created_at else "-",
        )
    console.print(table)


@app.command()
def stop(
    task_arn: Annotated[str, typer.Argument(help="ARN of the agent task to stop")],
) -> None:
    """Stop an agent task and remove its task definition."""
    settings = _load_settings()
    try:
        task = ReconciliationReader().scheduled_task(settings, task_arn)
    except SchedulingError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    if task is None:
        console.print(f"[yellow]No task {task_arn} owned by {settings.server_id}[/yellow]")
        raise typer.Exit(1)

    stop_and_cleanup_task(ecs_client(settings), settings, task)
    _logger.info("task_stopped_by_operator", task_arn=task_arn)
    console.print(f"[green]Stopped[/green] {task.name}")


__all__ = ["app"]
