"""CLI commands for inspecting and feeding the mistake knowledge base.

Provides `mistake-learning engine history|rules|metrics|health|mapping|structure|check|record`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

engine_app = typer.Typer(help="Inspect and feed the mistake knowledge base.")
console = Console()

SEVERITY_COLORS: dict[str, str] = {
    "low": "dim",
    "medium": "yellow",
    "high": "red",
    "critical": "bold red",
}


def _load_engine(seed: bool = False):
    """Build an engine from settings, printing an error on failure."""
    from mistake_learning.engine import MistakeLearningEngine
    from mistake_learning.exceptions import MistakeLearningError
    from mistake_learning.settings import get_settings

    try:
        engine = MistakeLearningEngine(get_settings())
    except MistakeLearningError as e:
        console.print(f"[red]Failed to open knowledge base: {e}[/red]")
        return None
    if seed:
        engine.load_knowledge_base()
    return engine


def _confidence(value: float) -> str:
    color = "green" if value >= 80 else "yellow" if value >= 50 else "red"
    return f"[{color}]{value:.0f}%[/{color}]"


@engine_app.command("history")
def history(
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Filter by project"),
    category: Optional[str] = typer.Option(
        None, "--category", "-c", help="Filter by category"
    ),
    limit: int = typer.Option(50, "--limit", "-l", help="Max results"),
) -> None:
    """List recorded mistakes, newest first."""
    engine = _load_engine()
    if not engine:
        return

    records = engine.get_mistake_history(project, category)[:limit]
    if not records:
        console.print("[dim]No mistakes recorded.[/dim]")
        return

    table = Table(title="Mistake History")
    table.add_column("ID", style="bold", no_wrap=True)
    table.add_column("When")
    table.add_column("Type")
    table.add_column("Category")
    table.add_column("Pattern", max_width=50)
    table.add_column("Severity")
    table.add_column("Seen", justify="right")
    table.add_column("Confidence", justify="right")

    for r in records:
        severity = r.error_details.severity.value
        color = SEVERITY_COLORS.get(severity, "white")
        table.add_row(
            r.id,
            r.timestamp.strftime("%Y-%m-%d %H:%M"),
            r.type.value,
            r.category.value,
            r.learning_pattern.pattern,
            f"[{color}]{severity}[/{color}]",
            str(r.recurrence_count),
            _confidence(r.confidence),
        )

    console.print(table)
    console.print(f"[dim]{len(records)} mistake(s)[/dim]")


@engine_app.command("rules")
def rules(
    seed: bool = typer.Option(False, "--seed", help="Include built-in starter rules"),
) -> None:
    """List enabled prevention rules by priority."""
    engine = _load_engine(seed)
    if not engine:
        return

    enabled = engine.get_prevention_rules()
    if not enabled:
        console.print("[dim]No prevention rules.[/dim]")
        return

    table = Table(title="Prevention Rules")
    table.add_column("ID", style="bold")
    table.add_column("Action")
    table.add_column("Priority", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Evidence", justify="right")
    table.add_column("Validated")
    table.add_column("Message", max_width=60)

    for rule in enabled:
        table.add_row(
            rule.id,
            rule.action.type.value,
            f"{rule.priority:.0f}",
            f"{rule.success_rate:.0f}%",
            str(rule.evidence_count),
            "[green]yes[/green]" if rule.validated else "[dim]no[/dim]",
            rule.action.message,
        )
    console.print(table)


@engine_app.command("metrics")
def metrics() -> None:
    """Show learning effectiveness metrics."""
    engine = _load_engine()
    if not engine:
        return

    m = engine.get_effectiveness_metrics()
    table = Table(title="Learning Effectiveness", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Mistakes recorded", str(m.total_mistakes_recorded))
    table.add_row("Recurring mistakes", str(m.recurring_mistakes))
    table.add_row("Prevention effectiveness", _confidence(m.prevention_effectiveness))
    table.add_row("Rules generated", str(m.rules_generated))
    table.add_row("Mapping accuracy", _confidence(m.mapping_accuracy))
    table.add_row("Structure reliability", _confidence(m.structure_reliability))
    table.add_row("Learning insights", str(m.learning_insights))
    console.print(table)


@engine_app.command("health")
def health() -> None:
    """Summarize knowledge base health."""
    engine = _load_engine()
    if not engine:
        return

    report = engine.get_health_report()
    color = {"healthy": "green", "degraded": "yellow"}.get(report.status, "red")
    console.print(
        Panel(
            f"Status: [{color}]{report.status}[/{color}]\n"
            f"Mistakes prevented: {report.mistakes_prevented}\n"
            f"Average confidence: {report.average_confidence:.0f}%\n"
            f"Validated patterns: {report.validated_patterns}",
            title="Knowledge Base Health",
        )
    )
    insights = engine.get_learning_insights()
    for insight in insights[:5]:
        console.print(f"  [cyan]•[/cyan] {insight.description} [dim]({insight.impact:.0f})[/dim]")


@engine_app.command("mapping")
def mapping(
    source_schema: str = typer.Argument(..., help="Source schema name"),
    target_schema: str = typer.Argument(..., help="Target schema name"),
    source_field: str = typer.Argument(..., help="Field to map"),
    seed: bool = typer.Option(False, "--seed", help="Include built-in starter mappings"),
) -> None:
    """Suggest the target field for a source field."""
    engine = _load_engine(seed)
    if not engine:
        return

    guidance = engine.get_field_mapping_guidance(source_schema, target_schema, source_field)
    if not guidance.suggested_mapping:
        console.print(f"[yellow]{guidance.reasoning}[/yellow]")
        return

    console.print(
        f"[bold]{source_field}[/bold] -> [green]{guidance.suggested_mapping}[/green] "
        f"({_confidence(guidance.confidence)})"
    )
    console.print(f"[dim]{guidance.reasoning}[/dim]")
    if guidance.alternatives:
        console.print(f"Alternatives: {', '.join(guidance.alternatives)}")
    for warning in guidance.warnings:
        console.print(f"[yellow]! {warning}[/yellow]")


@engine_app.command("structure")
def structure(
    structure_type: str = typer.Argument(..., help="Structure type, e.g. react_component"),
    context: str = typer.Option("default", "--context", "-c", help="Structure context"),
    seed: bool = typer.Option(False, "--seed", help="Include built-in starter structures"),
) -> None:
    """Show the known-good structure and its reliability."""
    engine = _load_engine(seed)
    if not engine:
        return

    guidance = engine.get_structure_guidance(structure_type, context)
    if guidance.suggested_structure is None:
        console.print(f"[yellow]{guidance.reasoning}[/yellow]")
        return

    console.print(f"{guidance.reasoning} ({_confidence(guidance.confidence)})")
    if guidance.template:
        console.print(Syntax(guidance.template, "typescript", theme="monokai"))
    for warning in guidance.warnings:
        console.print(f"[yellow]! {warning}[/yellow]")


@engine_app.command("check")
def check(
    project: str = typer.Option(..., "--project", "-p", help="Project id"),
    component: str = typer.Option(..., "--component", help="Component name"),
    operation: str = typer.Option(..., "--operation", "-o", help="Operation about to run"),
    seed: bool = typer.Option(False, "--seed", help="Include built-in starter knowledge"),
) -> None:
    """Check an operation against learned prevention rules."""
    from mistake_learning.models.records import MistakeContext

    engine = _load_engine(seed)
    if not engine:
        return

    result = engine.check_for_potential_mistake(
        MistakeContext(project_id=project, component=component, operation=operation)
    )
    if result.should_prevent:
        console.print(f"[red]Potential mistake[/red] ({_confidence(result.confidence)})")
        console.print(result.reasoning)
        for alternative in result.alternatives:
            console.print(f"  [cyan]-> {alternative}[/cyan]")
        for evidence in result.historical_evidence:
            console.print(f"  [dim]{evidence}[/dim]")
        raise typer.Exit(code=1)
    console.print(f"[green]{result.reasoning}[/green]")


@engine_app.command("record")
def record(
    path: Path = typer.Argument(..., help="YAML file describing the mistake"),
) -> None:
    """Record a mistake from a YAML file.

    The file holds `context`, `error` and optional `attempted` mappings.
    """
    from mistake_learning.exceptions import MistakeLearningError
    from mistake_learning.models.records import (
        AttemptedSolution,
        ErrorDetails,
        MistakeContext,
    )
    from mistake_learning.models.serialization import from_dict

    if not path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(code=1)

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        context = from_dict(MistakeContext, data["context"])
        error_details = from_dict(ErrorDetails, data["error"])
        attempted = from_dict(AttemptedSolution, data.get("attempted") or {})
    except (yaml.YAMLError, KeyError, TypeError, ValueError) as e:
        console.print(f"[red]Invalid mistake file: {e}[/red]")
        raise typer.Exit(code=1)

    engine = _load_engine()
    if not engine:
        raise typer.Exit(code=1)
    try:
        mistake_id = engine.record_mistake(context, error_details, attempted)
        engine.flush()
    except MistakeLearningError as e:
        console.print(f"[red]Failed to record mistake: {e}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Recorded[/green] {mistake_id}")
