"""Curated project patterns loaded from `.prtriage/patterns.yml`.

The file is versioned with the repository and maintained by hand. Example:

    valid_patterns:
      - id: console-log-lambda
        pattern: console.log
        files: ["lambda/**"]
        reason: Console logging is valid for CloudWatch in Lambda functions
      - id: any-webhook
        pattern: "any.*type.*webhook"
        regex: true
        reason: Using any is acceptable for external webhook payloads
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from prtriage_store.models import KEYWORDS, KNOWN_ACTIONS, PROJECT, REGEX, Pattern

logger = logging.getLogger(__name__)

DEFAULT_PATTERNS_FILE = ".prtriage/patterns.yml"


def load_project_patterns(path: str = DEFAULT_PATTERNS_FILE) -> list[Pattern]:
    """Return the curated patterns in ``path``, or [] if missing or unreadable.

    Never raises: a broken file only costs the curated short-circuit, the
    rule-based decisions still run.
    """
    p = Path(path)
    if not p.exists():
        return []
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
        logger.warning("Could not read project patterns from %s: %s", path, e)
        return []
    if not isinstance(data, dict):
        logger.warning("Project patterns file %s must be a mapping; ignoring it.", path)
        return []

    entries = data.get("valid_patterns") or []
    if not isinstance(entries, list):
        logger.warning("`valid_patterns` in %s must be a list; ignoring it.", path)
        return []

    patterns = []
    for index, entry in enumerate(entries, 1):
        pattern = _parse_entry(entry, index)
        if pattern is None:
            logger.warning("Skipping invalid project pattern #%d in %s", index, path)
            continue
        patterns.append(pattern)
    return patterns


def _parse_entry(entry, index: int) -> Pattern | None:
    if not isinstance(entry, dict) or not entry.get("pattern"):
        return None
    action = str(entry.get("action", "REJECT")).upper()
    if action not in KNOWN_ACTIONS:
        return None

    files = entry.get("files")
    if files is None and isinstance(entry.get("condition"), dict):
        files = entry["condition"].get("files")
    if isinstance(files, str):
        files = [files]

    try:
        confidence = float(entry.get("confidence", 1.0))
    except (TypeError, ValueError):
        return None

    return Pattern(
        id=str(entry.get("id") or f"project-{index}"),
        signature=str(entry["pattern"]),
        scope=PROJECT,
        action=action,
        reason=str(entry.get("reason", "")),
        confidence=confidence,
        kind=REGEX if entry.get("regex") else KEYWORDS,
        files=[str(f) for f in files or []],
        reply=entry.get("reply") or entry.get("auto_reply"),
    )
