"""init command — write starter configuration for a repository.

Creates .prtriage.yml (store and conversation settings) and a curated
.prtriage/patterns.yml that teams extend with their own known false positives.
Existing files are merged or left alone, never clobbered.
"""

from __future__ import annotations

from pathlib import Path

import click
import yaml
from rich.console import Console

console = Console()

_PATTERNS_TEMPLATE = """\
# Curated patterns for this repository. A comment matching one of these is
# decided by the pattern instead of the rule cascade.
#
#   pattern: space-separated keywords that must all appear (case-insensitive)
#   regex:   true to treat `pattern` as a regular expression instead
#   files:   optional path globs the comment must be attached to
#   action:  REJECT | DEFER | DISCUSS | NIT | AUTO_FIX | ESCALATE (default REJECT)
#   reply:   text posted when the pattern rejects a comment
valid_patterns:
  - id: console-log-lambda
    pattern: console.log
    files: ["lambda/**", "functions/**"]
    reason: console.log is the standard logger in Lambda functions
    reply: >-
      console.log output is collected by CloudWatch in Lambda, so it is the
      logger we use here.
  - id: any-external-payload
    pattern: "\\\\bany\\\\b.*(webhook|external|payload)"
    regex: true
    reason: External payload shapes are validated at runtime, not typed
"""


@click.command("init")
@click.option(
    "--store",
    "store_type",
    type=click.Choice(["file", "sqlite", "memory"]),
    default=None,
    help="Pattern store backend. Prompts when omitted.",
)
@click.option("--yes", "-y", is_flag=True, help="Accept defaults without prompting.")
def init_cmd(store_type: str | None, yes: bool):
    """Set up prtriage for this repository."""
    console.print("\n[bold cyan]prtriage init[/bold cyan]\n")

    if store_type is None:
        if yes:
            store_type = "file"
        else:
            console.print("Learned pattern store:")
            console.print("  [bold]file[/bold]    — JSON file under ~/.prtriage/<user>/ (default)")
            console.print("  [bold]sqlite[/bold]  — SQLite database, safe for several processes")
            console.print("  [bold]memory[/bold]  — nothing persisted")
            store_type = click.prompt(
                "Store backend",
                type=click.Choice(["file", "sqlite", "memory"]),
                default="file",
            )

    config: dict = {"store": store_type}
    if store_type == "sqlite":
        db_path = ".prtriage.db" if yes else click.prompt("SQLite database path", default=".prtriage.db")
        if db_path != ".prtriage.db":
            config["store_path"] = db_path

    _write_config(config)
    console.print("[green]Wrote .prtriage.yml[/green]")

    if _write_patterns(Path(".prtriage/patterns.yml")):
        console.print("[green]Created .prtriage/patterns.yml[/green]")
    else:
        console.print("[dim].prtriage/patterns.yml already exists; left unchanged.[/dim]")

    console.print("\n[bold green]Setup complete![/bold green]")
    console.print("Try: [bold]prtriage decide --body \"nit: rename this variable\"[/bold]")


def _write_config(config: dict) -> None:
    """Write or update .prtriage.yml, preserving any existing keys."""
    path = Path(".prtriage.yml")
    existing: dict = {}
    if path.exists():
        existing = yaml.safe_load(path.read_text()) or {}
    existing.update(config)
    existing.setdefault("skip_trivial", False)
    existing.setdefault("conversation", {"max_rounds": 5, "timeout_seconds": 600})
    path.write_text(yaml.dump(existing, default_flow_style=False, sort_keys=False))


def _write_patterns(path: Path) -> bool:
    if path.exists():
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_PATTERNS_TEMPLATE)
    return True
