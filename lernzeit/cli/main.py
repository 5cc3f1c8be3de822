"""
Typer CLI for the lernzeit content selection engine.

Commands:
    lernzeit evaluate FILE      - Score questions from a JSON file
    lernzeit optimize FILE      - Apply rule-based rewrites to low scorers
    lernzeit rotate-pool        - Archive low performers, warn on a small pool
    lernzeit stats              - Template pool statistics for a grade
    lernzeit info               - Show configuration

Usage:
    lernzeit --help
    lernzeit evaluate questions.json --grade 3
    lernzeit optimize questions.json --grade 2 --output optimized.json --seed 7
    lernzeit rotate-pool --grade 3 --domain "Zahlen & Operationen"
    lernzeit stats --grade 3 --templates templates.json

Without Supabase settings, rotate-pool and stats work on a templates JSON
file passed with --templates.
"""
from __future__ import annotations

import asyncio
import json
import random
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings
from lernzeit import __version__
from lernzeit.core.logging import configure_logging
from lernzeit.core.models import Question
from lernzeit.core.stores import InMemoryTemplateStore, parse_templates
from lernzeit.engine import AdaptiveContentEngine
from lernzeit.quality.dimensions import default_dimensions
from lernzeit.quality.evaluator import quality_band, summarize

app = typer.Typer(
    help="lernzeit engine CLI: question quality and template pool maintenance",
    no_args_is_help=True,
)

console = Console()

_QUESTION_FIELDS = {f.name for f in fields(Question)}


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level, settings.log_file)


# ========================================
# Helpers
# ========================================


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        rprint(f"[red]Cannot read {path}: {e}[/red]")
        raise typer.Exit(code=1)


def load_questions(path: Path) -> list[Question]:
    data = _read_json(path)
    if isinstance(data, dict):
        data = data.get("questions", [])
    questions = []
    for index, row in enumerate(data):
        values = {k: v for k, v in row.items() if k in _QUESTION_FIELDS}
        values.setdefault("id", index + 1)
        if "question" not in values:
            rprint(f"[yellow]Skipping entry {index}: no question text[/yellow]")
            continue
        questions.append(Question(**values))
    return questions


def _build_engine(templates: Optional[Path], seed: Optional[int] = None) -> AdaptiveContentEngine:
    settings = get_settings()
    if templates is not None:
        store = InMemoryTemplateStore(parse_templates(_read_json(templates)))
        return AdaptiveContentEngine(
            template_store=store,
            rng=random.Random(seed) if seed is not None else None,
            min_quality=settings.min_template_quality,
            rotator_options={
                "archive_max_quality": settings.archive_max_quality,
                "archive_min_plays": settings.archive_min_plays,
                "archive_max_success_rate": settings.archive_max_success_rate,
                "pool_min_active": settings.pool_min_active,
            },
        )
    engine = AdaptiveContentEngine.from_settings(settings)
    if seed is not None:
        engine.rng.seed(seed)
    return engine


def _score_style(score: float) -> str:
    return {"excellent": "green", "good": "cyan", "fair": "yellow"}.get(quality_band(score), "red")


# ========================================
# QUALITY COMMANDS
# ========================================


@app.command("evaluate")
def evaluate(
    path: Path = typer.Argument(..., help="JSON file with a list of questions"),
    grade: int = typer.Option(3, "--grade", "-g", help="School grade (1-6)"),
    category: str = typer.Option("math", "--category", "-c", help="Subject category"),
    store: bool = typer.Option(False, "--store", help="Persist reports to the metrics store"),
) -> None:
    """Score questions along the quality dimensions."""
    questions = load_questions(path)
    if not questions:
        rprint("[yellow]No questions to evaluate[/yellow]")
        raise typer.Exit(code=1)

    async def run() -> dict:
        engine = _build_engine(None)
        try:
            return await engine.evaluate_batch(questions, grade, category, persist=store)
        finally:
            await engine.shutdown()

    reports = asyncio.run(run())

    dimension_ids = [d.id for d in default_dimensions()]
    table = Table(title=f"Quality Report ({len(reports)} questions, grade {grade})")
    table.add_column("ID", style="cyan")
    table.add_column("Overall", justify="right")
    for dim_id in dimension_ids:
        table.add_column(dim_id.replace("_", " "), justify="right")
    table.add_column("Confidence", justify="right")

    for question in questions:
        report = reports[question.id]
        style = _score_style(report.overall_score)
        table.add_row(
            str(question.id),
            f"[{style}]{report.overall_score:.2f}[/{style}]",
            *(f"{report.dimension_scores[d]:.2f}" for d in dimension_ids),
            f"{report.confidence_level:.2f}",
        )
    console.print(table)

    summary = summarize(list(reports.values()))
    rprint(f"Average score: [bold]{summary['average_score']:.2f}[/bold]")
    rprint("Distribution: " + ", ".join(f"{k} {v}" for k, v in summary["distribution"].items()))
    if summary["needs_optimization"]:
        rprint("[yellow]Optimization recommended[/yellow]")


@app.command("optimize")
def optimize(
    path: Path = typer.Argument(..., help="JSON file with a list of questions"),
    grade: int = typer.Option(3, "--grade", "-g", help="School grade (1-6)"),
    category: str = typer.Option("math", "--category", "-c", help="Subject category"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write optimized questions here"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed for resampling"),
) -> None:
    """Apply bounded rewrites to questions that fired recommendations."""
    questions = load_questions(path)
    if not questions:
        rprint("[yellow]No questions to optimize[/yellow]")
        raise typer.Exit(code=1)

    async def run():
        engine = _build_engine(None, seed=seed)
        try:
            return await engine.optimize(questions, grade, category)
        finally:
            await engine.shutdown()

    result = asyncio.run(run())

    if result.applied_actions:
        table = Table(title=f"Applied Rewrites ({len(result.applied_actions)})")
        table.add_column("Question", style="cyan")
        table.add_column("Action")
        for entry in result.applied_actions:
            question_id, _, action = entry.partition(": ")
            table.add_row(question_id, action)
        console.print(table)
    else:
        rprint("[green]No rewrites needed[/green]")

    rprint(f"Improvement: [bold]{result.improvement_delta:+.3f}[/bold] in {result.duration:.2f}s")

    if output is not None:
        output.write_text(
            json.dumps([asdict(q) for q in result.optimized], ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        rprint(f"[green]Wrote {len(result.optimized)} questions to {output}[/green]")


# ========================================
# POOL COMMANDS
# ========================================


@app.command("rotate-pool")
def rotate_pool(
    grade: int = typer.Option(..., "--grade", "-g", help="School grade (1-6)"),
    domain: str = typer.Option("Zahlen & Operationen", "--domain", "-d", help="Curriculum domain"),
    templates: Optional[Path] = typer.Option(None, "--templates", help="Templates JSON instead of Supabase"),
) -> None:
    """Archive persistently low-performing templates."""
    if templates is None and not get_settings().has_supabase_config():
        rprint("[red]Supabase not configured (LERNZEIT_SUPABASE_URL / LERNZEIT_SUPABASE_KEY); pass --templates[/red]")
        raise typer.Exit(code=1)

    async def run():
        engine = _build_engine(templates)
        try:
            return await engine.rotate_pool(grade, domain)
        finally:
            await engine.shutdown()

    rotation = asyncio.run(run())
    if rotation is None:
        rprint("[red]Pool rotation failed, see log[/red]")
        raise typer.Exit(code=1)

    rprint(f"Archived [bold]{len(rotation.archived_ids)}[/bold] templates, {rotation.active_count} remain active")
    for template_id in rotation.archived_ids:
        rprint(f"  [dim]- {template_id}[/dim]")
    if rotation.pool_low:
        rprint(f"[yellow]⚠ Template pool low for grade {grade}, {domain}[/yellow]")


@app.command("stats")
def stats(
    grade: int = typer.Option(..., "--grade", "-g", help="School grade (1-6)"),
    templates: Optional[Path] = typer.Option(None, "--templates", help="Templates JSON instead of Supabase"),
) -> None:
    """Show template pool statistics for a grade."""
    if templates is None and not get_settings().has_supabase_config():
        rprint("[red]Supabase not configured (LERNZEIT_SUPABASE_URL / LERNZEIT_SUPABASE_KEY); pass --templates[/red]")
        raise typer.Exit(code=1)

    async def run():
        engine = _build_engine(templates)
        try:
            return await engine.rotation_statistics(grade)
        finally:
            await engine.shutdown()

    data = asyncio.run(run())
    if data is None:
        rprint("[red]Could not load template statistics, see log[/red]")
        raise typer.Exit(code=1)

    table = Table(title=f"Template Pool (grade {grade})")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Total", str(data["total"]))
    table.add_row("Active", str(data["active"]))
    table.add_row("Archived", str(data["archived"]))
    table.add_row("Average quality", f"{data['average_quality']:.2f}")
    table.add_row("Average success rate", f"{data['average_success_rate']:.2f}")
    console.print(table)

    for key, title in (
        ("by_domain", "Domain"),
        ("by_difficulty", "Difficulty"),
        ("by_question_type", "Question type"),
    ):
        breakdown = Table(title=f"By {title.lower()}")
        breakdown.add_column(title, style="cyan")
        breakdown.add_column("Templates", justify="right")
        for value, count in sorted(data[key].items(), key=lambda item: -item[1]):
            breakdown.add_row(str(value), str(count))
        console.print(breakdown)


# ========================================


@app.command("info")
def show_info() -> None:
    """Show configuration."""
    settings = get_settings()

    table = Table(title="lernzeit Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Supabase URL", settings.supabase_url or "Not set")
    table.add_row("Supabase Key", "***" if settings.supabase_key else "Not set")
    table.add_row("Session timeout", f"{settings.session_timeout_minutes} min")
    table.add_row("Min template quality", f"{settings.min_template_quality:.2f}")
    table.add_row("Quality batch", f"{settings.quality_batch_size} / {settings.quality_batch_pause}s")
    table.add_row("Random seed", str(settings.random_seed))
    table.add_row("Log Level", settings.log_level)

    console.print(table)


@app.command("version")
def show_version() -> None:
    """Show version information."""
    rprint(f"[bold]lernzeit-engine[/bold] v{__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
