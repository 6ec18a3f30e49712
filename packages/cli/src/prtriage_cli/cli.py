"""CLI entry point for prtriage.

Commands:
  decide   — classify and decide a single comment given on the command line
  triage   — list a pull request's bot comments with their decisions (never posts)
  learn    — record a human override so repeated feedback becomes a pattern
  stats    — show pattern-store statistics
  init     — write a starter .prtriage.yml and curated patterns file
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console

from prtriage_cli.commands.decide import decide_cmd
from prtriage_cli.commands.init import init_cmd
from prtriage_cli.commands.learn import learn_cmd
from prtriage_cli.commands.stats import stats_cmd
from prtriage_cli.commands.triage import triage_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the configured pattern store from .prtriage.yml settings.

    Store selection:
      store: file   → JsonFilePatternStore (store_path or ~/.prtriage/<user>/)
      store: sqlite → SQLitePatternStore   (store_path or .prtriage.db)
      store: memory → MemoryPatternStore   (nothing persisted)

    Curated project patterns are loaded from `patterns_file` for every store.
    This factory lives in cli.py so neither prtriage_core nor prtriage_store
    know about the CLI config format.
    """
    from prtriage_store.memory import MemoryPatternStore
    from prtriage_store.project import load_project_patterns

    project_patterns = load_project_patterns(config.get("patterns_file") or ".prtriage/patterns.yml")
    store_type = config.get("store", "file")
    user = config.get("user")

    if store_type == "memory":
        return MemoryPatternStore(project_patterns=project_patterns)

    if store_type == "sqlite":
        from prtriage_store.sqlite import SQLitePatternStore

        db_path = config.get("store_path") or ".prtriage.db"
        return SQLitePatternStore(db_path=db_path, namespace=user, project_patterns=project_patterns)

    if store_type != "file":
        console.print(f"[yellow]Unknown store {store_type!r}; using the JSON file store.[/yellow]")

    from prtriage_store.file import JsonFilePatternStore

    return JsonFilePatternStore(path=config.get("store_path"), user=user, project_patterns=project_patterns)


@click.group()
@click.version_option(
    version=importlib.metadata.version("prtriage"),
    prog_name="prtriage",
)
@click.option(
    "--config",
    "config_path",
    default=".prtriage.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRTRIAGE_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Triage automated code-review comments and learn from your overrides."""
    from prtriage_core.config import load_config
    from prtriage_cli.auth import resolve_github_token

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)

    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.UsageError(str(e))

    # Resolve token early so all subcommands share the same resolution.
    token = resolve_github_token()
    if token:
        config["github_token"] = token

    store = _build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(decide_cmd)
main.add_command(triage_cmd)
main.add_command(learn_cmd)
main.add_command(stats_cmd)
main.add_command(init_cmd)
