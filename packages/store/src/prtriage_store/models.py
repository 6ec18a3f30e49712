"""Pattern store data models.

Decoupled from prtriage_core so the store layer can be used on its own.
Actions are kept as plain strings here; the decision engine owns the enum and
maps them back when a pattern short-circuits the rule cascade.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

PROJECT = "project"
GLOBAL = "global"

KEYWORDS = "keywords"
REGEX = "regex"

KNOWN_ACTIONS = frozenset({"AUTO_FIX", "REJECT", "DISCUSS", "DEFER", "ESCALATE", "NIT"})

MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 1.0

# Application outcomes kept per pattern for acceptance-rate tracking.
HISTORY_LIMIT = 10


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def clamp_confidence(value: float) -> float:
    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, float(value)))


@dataclass
class Pattern:
    """A curated or learned mapping from a comment signature to a decision."""

    id: str
    signature: str
    scope: str  # "project" | "global"
    action: str
    reason: str
    confidence: float
    kind: str = KEYWORDS  # "keywords" | "regex"
    files: list[str] = field(default_factory=list)
    reply: str | None = None
    occurrences: int = 0
    last_used_at: str | None = None
    learned_from: str | None = None
    created_at: str = field(default_factory=utc_now)
    history: list[bool] = field(default_factory=list)

    def __post_init__(self):
        self.confidence = clamp_confidence(self.confidence)

    def acceptance_rate(self) -> float | None:
        if not self.history:
            return None
        return sum(1 for accepted in self.history if accepted) / len(self.history)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "signature": self.signature,
            "scope": self.scope,
            "action": self.action,
            "reason": self.reason,
            "confidence": self.confidence,
            "kind": self.kind,
            "files": list(self.files),
            "reply": self.reply,
            "occurrences": self.occurrences,
            "last_used_at": self.last_used_at,
            "learned_from": self.learned_from,
            "created_at": self.created_at,
            "history": list(self.history),
        }

    @classmethod
    def from_dict(cls, d: dict) -> Pattern:
        return cls(
            id=d["id"],
            signature=d.get("signature", ""),
            scope=d.get("scope", GLOBAL),
            action=d.get("action", "DISCUSS"),
            reason=d.get("reason", ""),
            confidence=d.get("confidence", 0.7),
            kind=d.get("kind", KEYWORDS),
            files=list(d.get("files") or []),
            reply=d.get("reply"),
            occurrences=d.get("occurrences", 0),
            last_used_at=d.get("last_used_at"),
            learned_from=d.get("learned_from"),
            created_at=d.get("created_at") or utc_now(),
            history=[bool(h) for h in d.get("history", [])][-HISTORY_LIMIT:],
        )


@dataclass
class LearnedState:
    """Everything an adapter persists for one user namespace."""

    patterns: dict[str, Pattern] = field(default_factory=dict)
    # reviewer -> signature -> times seen
    reviewer_feedback: dict[str, dict[str, int]] = field(default_factory=dict)
    # author -> comments seen
    bot_profiles: dict[str, int] = field(default_factory=dict)
    reviews_processed: int = 0
    time_saved_minutes: float = 0.0
    patterns_learned: int = 0
    updated_at: str | None = None

    def to_dict(self) -> dict:
        return {
            "version": "1.0",
            "updated_at": self.updated_at,
            "patterns": {pid: p.to_dict() for pid, p in self.patterns.items()},
            "reviewer_feedback": {r: dict(sigs) for r, sigs in self.reviewer_feedback.items()},
            "bot_profiles": dict(self.bot_profiles),
            "reviews_processed": self.reviews_processed,
            "time_saved_minutes": self.time_saved_minutes,
            "patterns_learned": self.patterns_learned,
        }

    @classmethod
    def from_dict(cls, d: dict) -> LearnedState:
        """Rebuild state from its stored form.

        Raises ValueError when a section has the wrong shape; a single bad
        pattern entry is only skipped.
        """
        patterns: dict[str, Pattern] = {}
        for pid, raw in _section(d, "patterns").items():
            try:
                pattern = Pattern.from_dict({"id": pid, **raw})
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable learned pattern %r: %s", pid, e)
                continue
            if pattern.action not in KNOWN_ACTIONS:
                logger.warning("Skipping learned pattern %r with unknown action %r", pid, pattern.action)
                continue
            patterns[pid] = pattern

        reviewer_feedback: dict[str, dict[str, int]] = {}
        for reviewer, sigs in _section(d, "reviewer_feedback").items():
            if not isinstance(sigs, dict):
                raise ValueError(f"reviewer_feedback[{reviewer!r}] is not a mapping")
            reviewer_feedback[reviewer] = {sig: _number(n, int) for sig, n in sigs.items()}

        return cls(
            patterns=patterns,
            reviewer_feedback=reviewer_feedback,
            bot_profiles={author: _number(n, int) for author, n in _section(d, "bot_profiles").items()},
            reviews_processed=_number(d.get("reviews_processed", 0), int),
            time_saved_minutes=_number(d.get("time_saved_minutes", 0.0), float),
            patterns_learned=_number(d.get("patterns_learned", 0), int),
            updated_at=d.get("updated_at"),
        )


def _section(d: dict, key: str) -> dict:
    value = d.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"{key} is a {type(value).__name__}, expected a mapping")
    return value


def _number(value, kind: type):
    # bool is an int subclass but never a valid counter
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"expected a number, got {value!r}")
    return kind(value)


@dataclass
class OverrideResult:
    """Outcome of learning from one human override."""

    reviewer: str
    signature: str
    frequency: int
    pattern: Pattern | None = None

    @property
    def materialized(self) -> bool:
        return self.pattern is not None
