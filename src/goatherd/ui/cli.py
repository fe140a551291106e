"""CLI interface for goatherd.

A thin Typer layer over the orchestration core: route a message, run the
orchestration loop, inspect sessions and read run ledgers.
"""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from goatherd.config import AppConfig, RosterConfig, RosterConfigError, get_settings, load_roster
from goatherd.domain import GoatherdError, SessionNotFoundError
from goatherd.orchestrator import (
    HeuristicPlanner,
    LedgerError,
    LedgerStore,
    OrchestrationService,
    RoutingService,
    RunStatus,
)
from goatherd.providers import ProviderRegistry, default_registry
from goatherd.sessions import SessionService
from goatherd.telemetry import configure_logging

app = typer.Typer(help="goatherd - multi-agent orchestration")
console = Console()

sessions_app = typer.Typer(help="Inspect and manage agent sessions")
runs_app = typer.Typer(help="Read orchestration run ledgers")
app.add_typer(sessions_app, name="sessions")
app.add_typer(runs_app, name="runs")

_STATUS_STYLES = {
    RunStatus.COMPLETED: "green",
    RunStatus.DEGRADED: "yellow",
    RunStatus.FAILED: "red",
    RunStatus.CANCELLED: "magenta",
    RunStatus.RUNNING: "blue",
}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level on stderr"),
) -> None:
    """goatherd - multi-agent orchestration."""
    settings = get_settings()
    configure_logging(
        log_level="DEBUG" if verbose or settings.debug else settings.log_level,
        log_dir=settings.resolved_log_dir,
        log_format=settings.log_format,
    )


def _build_providers(settings: AppConfig, roster_config: RosterConfig) -> ProviderRegistry:
    return default_registry(
        roster_config.providers,
        settings.provider_timeout_seconds,
        http_defaults={
            "base_url": settings.http_provider_base_url,
            "model": settings.http_provider_model,
            "api_key": settings.http_provider_api_key,
        },
    )


def _load_roster_or_exit(settings: AppConfig, roster_path: Optional[Path]) -> RosterConfig:
    path = roster_path or settings.resolved_roster_path
    try:
        return load_roster(path)
    except RosterConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e


@app.command(name="route")
def route_command(
    message: str = typer.Argument(..., help="User message to route"),
    agent: Optional[str] = typer.Option(None, "--agent", "-a", help="Entry agent id"),
    roster_path: Optional[Path] = typer.Option(None, "--roster", help="Agent roster YAML file"),
    json_output: bool = typer.Option(False, "--json", help="Output the decision as JSON"),
) -> None:
    """Show which agent a message would be routed to.

    Examples:
        goatherd route "write a short blog post"
        goatherd route "fix the login bug" --agent goat --json
    """
    settings = get_settings()
    roster_config = _load_roster_or_exit(settings, roster_path)
    decision = RoutingService.from_settings(settings).route(
        message,
        roster_config.roster,
        default_agent_id=settings.default_agent_id,
        entry_agent_id=agent,
    )

    if json_output:
        console.print_json(decision.model_dump_json(by_alias=True))
        return

    console.print(
        f"[bold blue]{decision.entry_agent_id}[/bold blue] → "
        f"[bold green]{decision.target_agent_id}[/bold green] "
        f"(confidence {decision.confidence:.2f})"
    )
    console.print(f"[dim]{decision.reason}[/dim]")
    if decision.candidates:
        table = Table(title="Candidates")
        table.add_column("Agent", style="cyan")
        table.add_column("Score", style="green", justify="right")
        table.add_column("Matched", style="blue", overflow="fold")
        table.add_column("Reason", style="white", overflow="fold")
        for candidate in decision.candidates:
            table.add_row(
                candidate.agent_id,
                f"{candidate.score:.3f}",
                ", ".join(candidate.matched_terms),
                candidate.reason,
            )
        console.print(table)


@app.command(name="run")
def run_command(
    message: str = typer.Argument(..., help="User message"),
    agent: Optional[str] = typer.Option(None, "--agent", "-a", help="Entry agent id"),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Entry agent session"),
    project: Optional[Path] = typer.Option(None, "--project", "-p", help="Project directory"),
    roster_path: Optional[Path] = typer.Option(None, "--roster", help="Agent roster YAML file"),
    heuristic: bool = typer.Option(
        False, "--heuristic", help="Plan with the routing engine instead of the entry agent"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output the run ledger as JSON"),
) -> None:
    """Run the orchestration loop for one message.

    Examples:
        goatherd run "write a short blog post"
        goatherd run "review the API" --project ~/src/api --heuristic
    """
    settings = get_settings()
    roster_config = _load_roster_or_exit(settings, roster_path)
    providers = _build_providers(settings, roster_config)
    planner = (
        HeuristicPlanner(RoutingService.from_settings(settings), settings.default_agent_id)
        if heuristic
        else None
    )
    service = OrchestrationService.from_settings(settings, providers, planner=planner)

    try:
        result = asyncio.run(
            service.run(
                agent,
                message,
                roster_config.roster,
                session_ref=session,
                project_path=project,
            )
        )
    except GoatherdError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e

    if json_output:
        console.print_json(result.ledger.model_dump_json(by_alias=True, exclude_none=True))
    else:
        if result.final_message:
            console.print(f"\n[bold blue]{result.entry_agent_id}:[/bold blue]")
            console.print(Markdown(result.final_message))
        if result.error:
            console.print(f"[red]Error: {result.error}[/red]")
        style = _STATUS_STYLES[result.status]
        console.print(
            f"\n[dim]Run {result.run_id}: [{style}]{result.status.value}[/{style}] "
            f"in {len(result.ledger.steps)} step(s)[/dim]"
        )

    if not result.ok:
        raise typer.Exit(1)


@sessions_app.command("list")
def sessions_list(
    agent: str = typer.Option("goat", "--agent", "-a", help="Agent id"),
    active: Optional[int] = typer.Option(
        None, "--active", help="Only sessions updated in the last N minutes"
    ),
) -> None:
    """List an agent's sessions, most recent first."""
    settings = get_settings()
    summaries = asyncio.run(
        SessionService.from_settings(settings).list_sessions(settings.paths, agent, active)
    )
    if not summaries:
        console.print("[yellow]No sessions found.[/yellow]")
        return

    table = Table(title=f"Sessions for {agent} ({len(summaries)})")
    table.add_column("Key", style="cyan", overflow="fold")
    table.add_column("Session ID", style="magenta", overflow="fold")
    table.add_column("Title", style="white")
    table.add_column("Project", style="blue", overflow="fold")
    table.add_column("Compactions", style="green", justify="right")
    for summary in summaries:
        table.add_row(
            summary.session_key,
            summary.session_id,
            summary.title,
            summary.project_path or "",
            str(summary.compaction_count),
        )
    console.print(table)


@sessions_app.command("history")
def sessions_history(
    agent: str = typer.Option("goat", "--agent", "-a", help="Agent id"),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Session key or id"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Last N messages"),
    include_compaction: bool = typer.Option(
        False, "--include-compaction", help="Show compaction summaries"
    ),
) -> None:
    """Print a session transcript."""
    settings = get_settings()
    history = asyncio.run(
        SessionService.from_settings(settings).get_session_history(
            settings.paths, agent, session, limit=limit, include_compaction=include_compaction
        )
    )
    if not history.messages:
        console.print(f"[yellow]No history for {history.session_key}.[/yellow]")
        return

    console.print(f"[bold blue]{history.session_key}[/bold blue] [dim]{history.session_id}[/dim]")
    for item in history.messages:
        label = item.role or item.type
        console.print(f"\n[bold]{label}:[/bold] {item.content}")


@sessions_app.command("reset")
def sessions_reset(
    agent: str = typer.Option("goat", "--agent", "-a", help="Agent id"),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Session key or id"),
) -> None:
    """Start a fresh session behind a session key."""
    settings = get_settings()
    info = asyncio.run(
        SessionService.from_settings(settings).reset_session(settings.paths, agent, session)
    )
    console.print(f"[green]Reset {info.session_key}[/green] → {info.session_id}")


@sessions_app.command("remove")
def sessions_remove(
    agent: str = typer.Option("goat", "--agent", "-a", help="Agent id"),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Session key or id"),
) -> None:
    """Delete a session record."""
    settings = get_settings()
    try:
        removed = asyncio.run(
            SessionService.from_settings(settings).remove_session(settings.paths, agent, session)
        )
    except SessionNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e
    console.print(f"[green]Removed {removed.session_key}[/green] ({removed.session_id})")


@sessions_app.command("rename")
def sessions_rename(
    title: str = typer.Argument(..., help="New session title"),
    agent: str = typer.Option("goat", "--agent", "-a", help="Agent id"),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Session key or id"),
) -> None:
    """Set a session's display title."""
    settings = get_settings()
    try:
        summary = asyncio.run(
            SessionService.from_settings(settings).rename_session(
                settings.paths, agent, title, session
            )
        )
    except (SessionNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e
    console.print(f"[green]Renamed {summary.session_key}[/green] → {summary.title}")


@sessions_app.command("compact")
def sessions_compact(
    agent: str = typer.Option("goat", "--agent", "-a", help="Agent id"),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Session key or id"),
) -> None:
    """Compact a session transcript now."""
    settings = get_settings()
    try:
        result = asyncio.run(
            SessionService.from_settings(settings).compact_session(settings.paths, agent, session)
        )
    except SessionNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e
    if result.applied:
        console.print(
            f"[green]Compacted {result.compacted_messages} message(s)[/green] in {result.session_key}"
        )
    else:
        console.print(f"[yellow]Nothing to compact in {result.session_key}.[/yellow]")


@runs_app.command("list")
def runs_list(
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum number of runs"),
) -> None:
    """List recent runs, newest first."""
    settings = get_settings()
    summaries = LedgerStore(settings.paths.runs_dir).list_runs(limit=limit)
    if not summaries:
        console.print("[yellow]No runs found.[/yellow]")
        return

    table = Table(title=f"Runs ({len(summaries)})")
    table.add_column("Run ID", style="magenta", overflow="fold")
    table.add_column("Started", style="cyan")
    table.add_column("Entry", style="blue")
    table.add_column("Status")
    table.add_column("Steps", justify="right")
    for summary in summaries:
        style = _STATUS_STYLES[summary.status]
        table.add_row(
            summary.run_id,
            summary.started_at.isoformat()[:19],
            summary.entry_agent_id,
            f"[{style}]{summary.status.value}[/{style}]",
            str(summary.step_count),
        )
    console.print(table)


@runs_app.command("show")
def runs_show(
    run_id: str = typer.Argument(..., help="Run id"),
    json_output: bool = typer.Option(False, "--json", help="Output the raw ledger"),
) -> None:
    """Show one run ledger step by step."""
    settings = get_settings()
    try:
        ledger = LedgerStore(settings.paths.runs_dir).load(run_id)
    except FileNotFoundError as e:
        console.print(f"[red]Error: no ledger for run {run_id}[/red]")
        raise typer.Exit(1) from e
    except LedgerError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e

    if json_output:
        console.print_json(ledger.model_dump_json(by_alias=True, exclude_none=True))
        return

    style = _STATUS_STYLES[ledger.status]
    console.print(f"\n[bold blue]Run {ledger.run_id}[/bold blue] [{style}]{ledger.status.value}[/{style}]")
    console.print(f"[dim]Entry agent: {ledger.entry_agent_id}[/dim]\n")

    table = Table(title="Steps")
    table.add_column("#", justify="right")
    table.add_column("Action", style="green")
    table.add_column("Target", style="blue")
    table.add_column("Code", justify="right")
    table.add_column("Rationale", style="white", overflow="fold")
    for step in ledger.steps:
        action = step.planner_decision.action
        call = step.agent_call
        table.add_row(
            str(step.step),
            action.type,
            call.target_agent_id if call else "",
            str(call.code) if call else "",
            step.planner_decision.rationale,
        )
    console.print(table)

    if ledger.session_graph.edges:
        console.print("\n[bold]Delegations:[/bold]")
        for edge in ledger.session_graph.edges:
            console.print(f"  {edge.from_agent_id} → {edge.to_agent_id} [dim]{edge.reason or ''}[/dim]")
    if ledger.final_message:
        console.print("\n[bold]Final message:[/bold]")
        console.print(Markdown(ledger.final_message))
    if ledger.error:
        console.print(f"\n[red]Error: {ledger.error}[/red]")


if __name__ == "__main__":
    app()
