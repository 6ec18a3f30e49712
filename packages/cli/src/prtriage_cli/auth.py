"""GitHub token lookup for the `triage` command.

Sources, first hit wins:
  1. GITHUB_TOKEN, then GH_TOKEN (the variable the GitHub CLI itself reads)
  2. the token stored by `gh auth login`, via `gh auth token`

Every other command works offline and never asks for a token.
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)

TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")
GH_TIMEOUT_SECONDS = 5


def resolve_github_token() -> str | None:
    """Return a GitHub token, or None when no source has one."""
    for name in TOKEN_ENV_VARS:
        token = os.environ.get(name, "").strip()
        if token:
            logger.debug("Using GitHub token from %s.", name)
            return token
    return _gh_cli_token()


def _gh_cli_token() -> str | None:
    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            timeout=GH_TIMEOUT_SECONDS,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired) as e:
        logger.debug("gh CLI unavailable (%s).", e)
        return None
    if result.returncode != 0:
        logger.debug("gh auth token exited with %d; not logged in.", result.returncode)
        return None
    return result.stdout.strip() or None
