"""stats command — summarize what the pattern store has learned."""

from __future__ import annotations

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console()


@click.command("stats")
@click.option("--top", default=10, show_default=True, help="Number of patterns and bots to list.")
@click.pass_context
def stats_cmd(ctx, top: int):
    """Show pattern-store statistics.

    Reports how many comments were processed, the reviewer time saved by
    automatic handling, the confidence spread of learned patterns, and the
    bots seen most often.
    """
    store = ctx.obj["store"]
    stats = store.stats()

    console.print("\n[bold]Pattern store[/bold]")
    console.print(f"  Comments processed: {stats['reviews_processed']}")
    console.print(f"  Time saved:         {stats['time_saved_minutes']:.1f} min")
    console.print(f"  Project patterns:   {stats['project_patterns']}")
    console.print(f"  Learned patterns:   {stats['learned_patterns']} ({stats['patterns_learned']} ever learned)")

    if stats["learned_patterns"]:
        dist_table = Table(title="Confidence", show_header=True)
        dist_table.add_column("Band", style="bold")
        dist_table.add_column("Patterns", justify="right")
        _band_style = {"high": "green", "medium": "yellow", "low": "red"}
        for band in ["high", "medium", "low"]:
            style = _band_style[band]
            dist_table.add_row(f"[{style}]{band}[/{style}]", str(stats["confidence_distribution"][band]))
        console.print(dist_table)

        patterns = sorted(store.learned_patterns(), key=lambda p: (-p.confidence, -p.occurrences))
        pattern_table = Table(title=f"Top {top} Learned Patterns", show_header=True)
        pattern_table.add_column("Pattern")
        pattern_table.add_column("Action")
        pattern_table.add_column("Confidence", justify="right")
        pattern_table.add_column("Seen", justify="right")
        for pattern in patterns[:top]:
            pattern_table.add_row(escape(pattern.id), pattern.action, f"{pattern.confidence:.2f}", str(pattern.occurrences))
        console.print(pattern_table)

    if stats["bot_profiles"]:
        bot_table = Table(title=f"Top {top} Bots", show_header=True)
        bot_table.add_column("Bot")
        bot_table.add_column("Comments", justify="right")
        ranked = sorted(stats["bot_profiles"].items(), key=lambda kv: -kv[1])
        for bot, count in ranked[:top]:
            bot_table.add_row(escape(bot), str(count))
        console.print(bot_table)
