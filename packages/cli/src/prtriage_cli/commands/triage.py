"""triage command — list a pull request's bot comments with their verdicts."""

from __future__ import annotations

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from prtriage_core.gh.pull_request import GitHubThread
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


@click.command("triage")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.option("--all", "show_all", is_flag=True, help="Also list comments that were skipped.")
@click.option("--record", is_flag=True, help="Record every decision in the pattern store.")
@click.pass_context
def triage_cmd(ctx, repo: str, pr_number: int, show_all: bool, record: bool):
    """Decide every bot comment on a pull request.

    Read-only with respect to GitHub: nothing is posted.

    \b
    Required environment variables:
      GITHUB_TOKEN or GH_TOKEN   GitHub personal access token (or use gh CLI)
    """
    config = ctx.obj["config"]
    token = config.get("github_token")
    if not token:
        raise click.UsageError(
            "No GitHub token found. Set GITHUB_TOKEN (or GH_TOKEN) or run `gh auth login` first.\n"
            "Create a token at https://github.com/settings/tokens"
        )

    thread = GitHubThread.connect(repo, pr_number, token=token)
    triager = Triager(store=ctx.obj["store"], config=config)
    summary = triager.triage(thread.list_comments())

    if not summary.items:
        console.print("[yellow]No comments found on this pull request.[/yellow]")
        return

    table = Table(title=f"Bot comments — {repo}#{pr_number}", show_header=True, header_style="bold cyan")
    table.add_column("Author", max_width=24)
    table.add_column("Location", max_width=32)
    table.add_column("Action", width=10)
    table.add_column("Conf.", justify="right", width=6)
    table.add_column("Category", width=14)
    table.add_column("Reason", max_width=60)

    for item in summary.items:
        comment = item.comment
        location = f"{comment.path}:{comment.line}" if comment.path else comment.kind.value
        if item.decision is None:
            if show_all:
                table.add_row(escape(comment.author), escape(location), "[dim]skip[/dim]", "", "", f"[dim]{item.verdict.reason.value}[/dim]")
            continue
        decision = item.decision
        style = _ACTION_STYLE.get(decision.action.value, "white")
        table.add_row(
            escape(comment.author),
            escape(location),
            f"[{style}]{decision.action.value}[/{style}]",
            f"{decision.confidence:.2f}",
            decision.category.value,
            escape(decision.reason),
        )
        if record:
            triager.record_outcome(comment, decision)

    console.print(table)
    counts = ", ".join(f"{action}: {n}" for action, n in sorted(summary.action_counts().items()))
    console.print(
        f"\n{len(summary.decided)} decided, {len(summary.skipped)} skipped" + (f" ({counts})" if counts else "")
    )
