"""CLI commands for the background learning loop.

Provides `mistake-learning learn run|daemon`.
"""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console

learn_app = typer.Typer(help="Run background learning tasks.")
console = Console()


def _load_loop():
    from mistake_learning.engine import MistakeLearningEngine
    from mistake_learning.exceptions import MistakeLearningError
    from mistake_learning.services.learning_loop_service import LearningLoop
    from mistake_learning.settings import get_settings

    settings = get_settings()
    try:
        engine = MistakeLearningEngine(settings)
    except MistakeLearningError as e:
        console.print(f"[red]Failed to open knowledge base: {e}[/red]")
        return None
    return LearningLoop(engine, settings.schedule)


@learn_app.command("run")
def run(
    task: str = typer.Argument(
        "all", help="deep_learning, pattern_analysis, retrain or all"
    ),
) -> None:
    """Run learning tasks once."""
    from mistake_learning.services.learning_loop_service import LearningLoop

    tasks = LearningLoop.TASKS if task == "all" else (task,)
    unknown = [t for t in tasks if t not in LearningLoop.TASKS]
    if unknown:
        console.print(f"[red]Unknown task: {unknown[0]}[/red]")
        raise typer.Exit(code=1)

    loop = _load_loop()
    if not loop:
        raise typer.Exit(code=1)
    for name in tasks:
        produced = loop.run_task(name)
        console.print(f"[green]{name}[/green]: {produced} item(s)")


@learn_app.command("daemon")
def daemon() -> None:
    """Run the learning loop on its cron schedule until interrupted."""
    loop = _load_loop()
    if not loop:
        raise typer.Exit(code=1)

    s = loop.schedule
    console.print(
        f"[bold]Learning loop[/bold] deep_learning='{s.deep_learning}' "
        f"pattern_analysis='{s.pattern_analysis}' retrain='{s.retrain}'"
    )
    try:
        asyncio.run(loop.run())
    except KeyboardInterrupt:
        loop.stop()
        console.print("[dim]Stopped.[/dim]")
