"""Command line entry point: batch level validation and quick simulations."""

import logging
from collections import Counter
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from infrasim.models.config import SimulationConfig, ValidatorConfig
from infrasim.models.level import NodeKind
from infrasim.models.simulation import EventKind, IncidentState, NodeStatus
from infrasim.reporting.report import format_report, summarize, validate_directory
from infrasim.simulation.engine import SimulationEngine
from infrasim.validation.pipeline import LevelValidationError, parse_level_text

logger = logging.getLogger(__name__)
console = Console()

app = typer.Typer(name="infrasim", help="Validate and simulate infrastructure levels.")

_STATUS_STYLES = {
    NodeStatus.HEALTHY: "green",
    NodeStatus.WARNING: "yellow",
    NodeStatus.CRITICAL: "bold red",
}


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Python logging level."),
) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("validate")
def validate_command(
    directory: Path = typer.Argument(..., help="Directory containing level JSON files."),
    max_lifecycle_ticks: int = typer.Option(
        1000, "--max-lifecycle-ticks", help="Upper bound for warning + duration ticks."
    ),
) -> None:
    """Validate every level file in DIRECTORY; exit 1 if any file fails."""
    if not directory.is_dir():
        console.print(f"[red]Not a directory:[/] {escape(str(directory))}")
        raise typer.Exit(code=2)

    config = ValidatorConfig(max_lifecycle_ticks=max_lifecycle_ticks)
    console.print("Validating level configurations...")
    reports = validate_directory(directory, config)

    for report in reports:
        lines = format_report(report)
        style = "green" if report.ok else "red"
        console.print(f"[{style}]{escape(lines[0])}[/]")
        for line in lines[1:]:
            console.print(escape(line), soft_wrap=True)

    summary = summarize(reports)
    if not summary.ok:
        console.print(
            f"\n[red]Level validation failed:[/] {summary.failed} of {summary.files} file(s) have errors."
        )
        raise typer.Exit(code=1)
    console.print(f"\n[green]All {summary.files} level(s) validated successfully.[/]")


@app.command("simulate")
def simulate_command(
    level_file: Path = typer.Argument(..., help="Level JSON file to simulate."),
    ticks: int = typer.Option(100, "--ticks", min=1, help="Number of ticks to run."),
    seed: Optional[int] = typer.Option(None, "--seed", help="Seed for incident rolls."),
) -> None:
    """Run LEVEL_FILE for a number of ticks and summarize the final state."""
    try:
        raw = level_file.read_bytes()
    except OSError as e:
        console.print(f"[red]Cannot read {escape(str(level_file))}:[/] {escape(str(e))}")
        raise typer.Exit(code=2)

    parsed = parse_level_text(raw)
    if not parsed.ok:
        console.print(f"[red]Failed to parse {escape(level_file.name)}:[/] {escape(parsed.error)}")
        raise typer.Exit(code=1)

    try:
        engine = SimulationEngine.from_document(parsed.document, config=SimulationConfig(seed=seed))
    except LevelValidationError as e:
        console.print(f"[red]{escape(level_file.name)} is not a valid level:[/]")
        for error in e.errors:
            console.print(f"  - {escape(str(error))}", soft_wrap=True)
        raise typer.Exit(code=1)

    snapshots = engine.run(ticks)
    final = snapshots[-1]

    table = Table(title=f"{engine.level.name} after {final.tick} ticks", header_style="bold cyan")
    table.add_column("Node")
    table.add_column("Status")
    table.add_column("Requests", justify="right")
    table.add_column("Utilization", justify="right")
    table.add_column("Latency (ms)", justify="right")
    table.add_column("Errors %", justify="right")
    for node in engine.level.nodes:
        m = final.nodes[node.id]
        load = m.fullness if node.kind == NodeKind.STORAGE else m.utilization
        table.add_row(
            escape(node.display_name),
            f"[{_STATUS_STYLES[m.status]}]{m.status.value}[/]",
            f"{m.requests:.0f}",
            f"{load:.0%}",
            f"{m.latency_ms:.1f}",
            f"{m.error_rate:.1f}",
        )
    console.print(table)

    activations = Counter(
        e.subject for s in snapshots for e in s.events if e.kind == EventKind.INCIDENT_ACTIVE
    )
    for name, state in final.incidents.items():
        marker = "" if state == IncidentState.DORMANT else f" ({state.value})"
        console.print(f"Incident {escape(name)}: {activations.get(name, 0)} activation(s){marker}")

    breach_ticks = sum(1 for s in snapshots if s.breaches)
    console.print(f"Ticks with breaches: {breach_ticks}/{len(snapshots)}")

    opened = sum(1 for s in snapshots for e in s.events if e.kind == EventKind.TICKET_OPENED)
    console.print(f"Tickets opened: {opened} ({len(final.tickets)} unresolved)")
    budget = f" of {engine.level.budget:g}" if engine.level.budget is not None else ""
    console.print(f"Spend per tick: {final.spend:g}{budget}")


if __name__ == "__main__":
    app()
