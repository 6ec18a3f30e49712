import os
from pathlib import Path
from typing import Optional

import yaml

from prtriage_core.conversation import ConversationSettings

DEFAULT_CONVERSATION: dict = {
    "max_rounds": 5,
    "timeout_seconds": 600,
    "poll_interval": 3.0,
    "max_poll_interval": 30.0,
    "backoff_factor": 1.5,
    "idle_polls_before_backoff": 0,
}

DEFAULT_CONFIG: dict = {
    "skip_trivial": False,
    "trivial_only": False,
    "patterns_file": ".prtriage/patterns.yml",
    "store": "file",  # "file" | "sqlite" | "memory"
    "store_path": None,  # None = per-user default location
    "min_pattern_confidence": 0.8,
    "conversation": DEFAULT_CONVERSATION,
}


def load_config(config_path: str = ".prtriage.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prtriage.yml in the current directory
      3. CLI argument overrides

    The nested ``conversation`` mapping merges key by key, so a file that only
    sets ``timeout_seconds`` keeps every other default.
    """
    config = {**DEFAULT_CONFIG, "conversation": dict(DEFAULT_CONVERSATION)}

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ValueError(f"{config_path} must contain a YAML mapping.")
        conversation = file_config.pop("conversation", None) or {}
        config.update(file_config)
        config["conversation"].update(conversation)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Resolve credentials and identity from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["user"] = os.environ.get("PRTRIAGE_USER") or config.get("user")

    return config


def conversation_settings(config: dict) -> ConversationSettings:
    """Build typed conversation settings from a loaded config."""
    values = {**DEFAULT_CONVERSATION, **(config.get("conversation") or {})}
    return ConversationSettings(
        max_rounds=int(values["max_rounds"]),
        timeout_seconds=float(values["timeout_seconds"]),
        poll_interval=float(values["poll_interval"]),
        max_poll_interval=float(values["max_poll_interval"]),
        backoff_factor=float(values["backoff_factor"]),
        idle_polls_before_backoff=int(values["idle_polls_before_backoff"]),
    )
