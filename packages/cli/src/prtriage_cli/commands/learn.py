"""learn command — feed a human override back into the pattern store."""

from __future__ import annotations

import click
from rich.console import Console
from rich.markup import escape

from prtriage_core.models import Action, Comment, CommentKind
from prtriage_store.base import OVERRIDE_THRESHOLD

console = Console()


@click.command("learn")
@click.option("--reviewer", required=True, help="Login of the human who overrode the bot.")
@click.option("--body", required=True, help="The human's feedback text.")
@click.option(
    "--action",
    type=click.Choice([a.value for a in Action]),
    default=Action.DISCUSS.value,
    show_default=True,
    help="What the reviewer decided for this kind of comment.",
)
@click.option("--reason", default=None, help="Reason stored with the learned pattern.")
@click.pass_context
def learn_cmd(ctx, reviewer: str, body: str, action: str, reason: str | None):
    """Record a human override.

    The same feedback from the same reviewer becomes a learned pattern once it
    has been seen three times.
    """
    store = ctx.obj["store"]
    comment = Comment(id="cli", author=reviewer, body=body, kind=CommentKind.ISSUE)
    result = store.learn_from_override(comment, {"action": action, "reason": reason})

    if not result.signature:
        raise click.UsageError("Feedback has no usable keywords; nothing to learn.")

    console.print(f"Signature [bold]{escape(result.signature)}[/bold] seen {result.frequency} time(s) from {escape(reviewer)}.")
    if result.materialized:
        pattern = result.pattern
        console.print(
            f"[green]Pattern {escape(pattern.id)} → {pattern.action} at confidence {pattern.confidence:.2f}.[/green]"
        )
    else:
        remaining = OVERRIDE_THRESHOLD - result.frequency
        console.print(f"[dim]{remaining} more before it becomes a pattern.[/dim]")
