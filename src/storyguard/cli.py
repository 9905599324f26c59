"""Administrative command-line interface for StoryGuard."""

from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import click
import structlog
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from storyguard import __version__
from storyguard.config import Config, load_config
from storyguard.dedup import DedupEngine, create_engine
from storyguard.errors import ConfigurationError, StoreUnavailable
from storyguard.observability import configure_logging
from storyguard.protocols import Article, ResetScope, TopicLabel

console = Console()
logger = structlog.get_logger(__name__)

T = TypeVar("T")

_DECISION_STYLES = {
    "novel": "green",
    "duplicate_exact": "red",
    "duplicate_source": "red",
    "duplicate_semantic": "yellow",
    "duplicate_cross_module": "magenta",
}


def _run_with_engine(ctx: click.Context, action: Callable[[DedupEngine], Awaitable[T]]) -> T:
    """Build an engine from the loaded config, run ``action`` and close it."""
    config: Config = ctx.obj["config"]
    client_factory: Optional[Callable[[], Any]] = ctx.obj.get("client_factory")

    async def _runner() -> T:
        client = client_factory() if client_factory else None
        engine = await create_engine(config, client=client)
        async with engine:
            return await action(engine)

    try:
        return asyncio.run(_runner())
    except StoreUnavailable as e:
        console.print(f"[red]Recency store unavailable: {e}[/red]")
        sys.exit(1)


def _format_ts(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat(timespec="seconds")


def _load_articles(path: Path) -> List[Article]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("articles", [])
    if not isinstance(data, list):
        raise ValueError("expected a JSON array of article records")
    return [Article.from_dict(record) for record in data if isinstance(record, dict)]


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", type=click.Path(exists=True), help="Configuration file path")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level (overrides the configuration file)",
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], log_level: Optional[str]) -> None:
    """StoryGuard - content freshness and deduplication engine."""
    ctx.ensure_object(dict)
    try:
        loaded = load_config(Path(config) if config else None)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        sys.exit(2)

    if log_level:
        loaded.monitoring.log_level = log_level
    configure_logging(loaded.monitoring)
    ctx.obj["config"] = loaded


@cli.command()
@click.argument("articles_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--commit", is_flag=True, help="Commit novel articles after evaluating them")
@click.pass_context
def evaluate(ctx: click.Context, articles_file: str, commit: bool) -> None:
    """Evaluate a JSON array of article records."""
    try:
        articles = _load_articles(Path(articles_file))
    except (OSError, ValueError) as e:
        console.print(f"[red]Cannot read articles from {articles_file}: {e}[/red]")
        sys.exit(1)

    async def _evaluate(engine: DedupEngine) -> List[List[str]]:
        rows: List[List[str]] = []
        for index, article in enumerate(articles, start=1):
            decision = await engine.evaluate(article)
            committed = "-"
            if commit and decision.accepted and not decision.unidentifiable:
                result = await engine.commit(article)
                committed = "yes" if result.committed else "no"

            style = _DECISION_STYLES.get(decision.decision.value, "white")
            match = decision.matched_source or ""
            if decision.matched_url:
                match = f"{match} {decision.matched_url}".strip()
            rows.append(
                [
                    str(index),
                    escape(article.source) or "-",
                    escape(article.title[:60]) or "-",
                    f"[{style}]{decision.decision.value}[/{style}]" + (" (degraded)" if decision.degraded else ""),
                    escape(match) or "-",
                    f"{decision.overlap_score:.2f}" if decision.overlap_score is not None else "-",
                    committed,
                ]
            )
        return rows

    rows = _run_with_engine(ctx, _evaluate)

    table = Table(title=f"Evaluated {len(rows)} articles")
    for column in ("#", "Source", "Title", "Decision", "Matched", "Overlap", "Committed"):
        table.add_column(column, style="cyan" if column == "#" else None)
    for row in rows:
        table.add_row(*row)
    console.print(table)


@cli.command()
@click.option(
    "--scope",
    "scopes",
    multiple=True,
    type=click.Choice([s.value for s in ResetScope] + ["all"], case_sensitive=False),
    help="Cache family to purge (repeatable)",
)
@click.option("--all", "purge_all", is_flag=True, help="Purge every cache family")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def reset(ctx: click.Context, scopes: tuple[str, ...], purge_all: bool, yes: bool) -> None:
    """Purge deduplication state from the recency store."""
    requested = ["all"] if purge_all else list(scopes)
    if not requested:
        raise click.UsageError("Specify at least one --scope or --all")

    resolved = ResetScope.parse(requested)
    names = ", ".join(s.value for s in resolved)
    if not yes:
        click.confirm(f"Delete all cached {names} entries?", abort=True)

    removed = _run_with_engine(ctx, lambda engine: engine.reset(resolved))

    table = Table(title="Reset Summary")
    table.add_column("Family", style="cyan")
    table.add_column("Keys deleted", style="magenta")
    for family, count in removed.items():
        table.add_row(family, str(count))
    console.print(table)


@cli.command("crosspost-status")
@click.argument("destination")
@click.pass_context
def crosspost_status(ctx: click.Context, destination: str) -> None:
    """Show whether DESTINATION may receive another crosspost."""

    async def _status(engine: DedupEngine):
        marker = await engine.last_crosspost(destination)
        state = await engine.crosspost_state(destination)
        return marker, state, engine.crosspost.min_interval_seconds, engine.clock()

    marker, state, interval, now = _run_with_engine(ctx, _status)

    lines = [f"State: [bold]{state.value.upper()}[/bold]"]
    if marker is None:
        lines.append("Last crosspost: never")
    else:
        lines.append(f"Last crosspost: {_format_ts(marker.timestamp)}")
        remaining = max(0.0, interval - marker.seconds_since(now))
        if remaining:
            lines.append(f"Ready in: {remaining / 60:.0f} min")
        if marker.content:
            lines.append(f"Content: {escape(marker.content[:120])}")

    border = "green" if state.value == "ready" else "yellow"
    console.print(Panel("\n".join(lines), title=f"Crosspost: {destination}", border_style=border))


@cli.command()
@click.pass_context
def topics(ctx: click.Context) -> None:
    """Show the recent topics window and pressure per topic."""

    async def _topics(engine: DedupEngine):
        entries = await engine.recent_topics()
        pressures = {label: await engine.topic_pressure(label) for label in TopicLabel}
        return entries, pressures

    entries, pressures = _run_with_engine(ctx, _topics)

    window = Table(title="Recent Topics")
    window.add_column("When", style="cyan")
    window.add_column("Topic", style="magenta")
    for entry in entries:
        window.add_row(_format_ts(entry.timestamp), entry.label.value)
    console.print(window)

    pressure = Table(title="Topic Pressure")
    pressure.add_column("Topic", style="cyan")
    pressure.add_column("Pressure", style="magenta")
    for label, value in pressures.items():
        pressure.add_row(label.value, f"{value:.0%}")
    console.print(pressure)


@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show engine and store statistics."""
    engine_stats = _run_with_engine(ctx, lambda engine: engine.get_stats())
    console.print(Panel(Text(json.dumps(engine_stats, indent=2, default=str)), title="StoryGuard Statistics"))


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
