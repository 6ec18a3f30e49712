"""decide command — classify and decide one comment without touching GitHub."""

from __future__ import annotations

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from prtriage_core.models import Comment, CommentKind
from prtriage_core.triage import Triager

console = Console()

_ACTION_STYLE = {
    "AUTO_FIX": "green",
    "REJECT": "red",
    "DEFER": "blue",
    "NIT": "dim",
    "DISCUSS": "yellow",
    "ESCALATE": "bold red",
}


@click.command("decide")
@click.option("--body", required=True, help="Comment text. Use '-' to read it from stdin.")
@click.option("--author", default="coderabbitai[bot]", show_default=True, help="Comment author login.")
@click.option("--path", default=None, help="File the comment is attached to, for inline comments.")
@click.option(
    "--kind",
    type=click.Choice([k.value for k in CommentKind]),
    default=None,
    help="Comment kind. Defaults to inline when --path is given, issue otherwise.",
)
@click.option("--record", is_flag=True, help="Record the decision in the pattern store.")
@click.pass_context
def decide_cmd(ctx, body: str, author: str, path: str | None, kind: str | None, record: bool):
    """Classify one comment and show the verdict the engine would reach.

    \b
    Example:
      prtriage decide --path src/db.py \\
        --body "SQL injection: user input is concatenated into the query"
    """
    if body == "-":
        body = click.get_text_stream("stdin").read()
    if kind is None:
        kind = CommentKind.INLINE.value if path else CommentKind.ISSUE.value

    comment = Comment(id="cli", author=author, body=body, kind=CommentKind(kind), path=path)
    triager = Triager(store=ctx.obj["store"], config=ctx.obj["config"])

    classification = triager.classify(comment)
    verdict = triager.should_process(comment)
    decision = triager.decide(comment)

    table = Table(show_header=False, box=None)
    table.add_column(style="bold")
    table.add_column()
    table.add_row("Bot", f"{classification.bot_type or 'no'} ({classification.bot_confidence:.2f})")
    table.add_row("Trivial", f"{classification.is_trivial} ({classification.triviality_confidence:.2f})")
    table.add_row("Process", f"{verdict.process} — {verdict.reason.value}")
    style = _ACTION_STYLE.get(decision.action.value, "white")
    table.add_row("Action", f"[{style}]{decision.action.value}[/{style}] ({decision.confidence:.2f})")
    table.add_row("Category", f"{decision.category.value} / {decision.priority.value}")
    table.add_row("Source", decision.source.value + (f" ({decision.pattern_id})" if decision.pattern_id else ""))
    table.add_row("Reason", escape(decision.reason))
    console.print(table)

    if decision.suggested_fix:
        console.print("\n[bold]Suggested fix:[/bold]")
        console.print(decision.suggested_fix, markup=False)
    if decision.suggested_reply:
        console.print("\n[bold]Suggested reply:[/bold]")
        console.print(decision.suggested_reply, markup=False)

    if record:
        pattern = triager.record_outcome(comment, decision)
        if pattern is not None:
            console.print(f"\n[green]Recorded; pattern {pattern.id} at {pattern.confidence:.2f}.[/green]")
        else:
            console.print("\n[green]Recorded.[/green]")
