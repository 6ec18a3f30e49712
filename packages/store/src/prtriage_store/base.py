"""Abstract pattern store.

All adapters share one matching and learning algorithm:
    find_match()          → _read_state()   (snapshot, read-only)
    record_outcome()      → _transaction()  (atomic read-modify-write)
    learn_from_override() → _transaction()

Subclasses implement those two primitives only. Everything else lives here so
confidence rules are defined once and every backend learns identically.

Comments and decisions are duck-typed: anything with ``body``/``path``/
``author`` attributes is a comment, anything with ``action``/``confidence``/
``source`` is a decision. The store never imports prtriage_core.
"""

from __future__ import annotations

import fnmatch
import functools
import getpass
import logging
import os
import re
from abc import ABC, abstractmethod
from collections import Counter
from contextlib import AbstractContextManager

from prtriage_store.models import (
    GLOBAL,
    HISTORY_LIMIT,
    MAX_CONFIDENCE,
    MIN_CONFIDENCE,
    REGEX,
    LearnedState,
    OverrideResult,
    Pattern,
    utc_now,
)

logger = logging.getLogger(__name__)

# Decisions at or above this confidence seed a learned pattern.
LEARN_THRESHOLD = 0.9
INITIAL_LEARNED_CONFIDENCE = 0.7
RECURRENCE_BONUS = 0.01
RECURRENCE_CEILING = 0.99

# Human overrides: a (reviewer, signature) pair must recur this often.
OVERRIDE_THRESHOLD = 3
OVERRIDE_STEP = 0.15
OVERRIDE_CEILING = 0.9

# Acceptance-rate confidence adjustment.
MIN_APPLICATIONS = 3
REINFORCE_ABOVE = 0.8
REINFORCE_STEP = 0.1
DECAY_BELOW = 0.5
DECAY_STEP = 0.2

# Minutes of reviewer time an auto-handled comment is assumed to save.
TIME_SAVED_PER_ITEM = 2.5
AUTO_HANDLED_ACTIONS = frozenset({"AUTO_FIX", "REJECT"})

SIGNATURE_KEYWORDS = 3

STOPWORDS = frozenset(
    """
    the a an and or but in on at to for of with from by is are was were be been this that these
    those it its into than then there their them they have has had will would should could can
    may might must also just very more most some such only other over under about above after
    before please consider maybe here what when where which while your you our we not
    use ok no yes i if so as do does done
    """.split()
)

_TOKEN_RE = re.compile(r"[a-z0-9_]+")


class PatternStoreError(Exception):
    """Raised when learned state cannot be written."""


def default_namespace() -> str:
    """Local user the global store is namespaced by."""
    user = os.environ.get("PRTRIAGE_USER")
    if user:
        return user
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "default"


def extract_keywords(text: str, k: int = SIGNATURE_KEYWORDS) -> list[str]:
    """Return the ``k`` most frequent non-stopword tokens, first-seen order breaking ties."""
    tokens = [t for t in _TOKEN_RE.findall((text or "").lower()) if t not in STOPWORDS]
    counts = Counter(tokens)
    first_seen = {}
    for i, token in enumerate(tokens):
        first_seen.setdefault(token, i)
    ranked = sorted(counts, key=lambda t: (-counts[t], first_seen[t]))
    return ranked[:k]


def path_matches(path: str, globs: list[str]) -> bool:
    """Return True if path matches any glob.

    Supports full-path globs ("lambda/**"), basename globs ("*.tf") and bare
    directory prefixes ("infrastructure/", "cdk") anywhere in the tree.
    """
    for pattern in globs:
        if fnmatch.fnmatch(path, pattern):
            return True
        if fnmatch.fnmatch(path.rsplit("/", 1)[-1], pattern):
            return True
        prefix = pattern.rstrip("/*") + "/"
        if prefix != "/" and (path.startswith(prefix) or ("/" + prefix) in path):
            return True
    return False


@functools.lru_cache(maxsize=256)
def _compile(signature: str) -> re.Pattern | None:
    try:
        return re.compile(signature, re.IGNORECASE)
    except re.error as e:
        logger.warning("Ignoring invalid pattern regex %r: %s", signature, e)
        return None


def signature_matches(pattern: Pattern, body: str) -> bool:
    if not pattern.signature:
        return False
    if pattern.kind == REGEX:
        compiled = _compile(pattern.signature)
        return bool(compiled and compiled.search(body))
    lowered = body.lower()
    return all(_keyword_re(word).search(lowered) for word in pattern.signature.lower().split())


@functools.lru_cache(maxsize=1024)
def _keyword_re(word: str) -> re.Pattern:
    # Keywords anchor at a word start: "api" matches "apis" but not "rapid".
    return re.compile(r"(?<![a-z0-9_])" + re.escape(word))


def _value(obj) -> str:
    """Enum members and plain strings alike."""
    return getattr(obj, "value", obj)


def adjust_confidence(pattern: Pattern) -> None:
    """Reinforce or decay a pattern from its recent acceptance rate."""
    if len(pattern.history) < MIN_APPLICATIONS:
        return
    rate = pattern.acceptance_rate()
    if rate > REINFORCE_ABOVE:
        pattern.confidence = min(MAX_CONFIDENCE, pattern.confidence + REINFORCE_STEP)
    elif rate < DECAY_BELOW:
        pattern.confidence = max(MIN_CONFIDENCE, pattern.confidence - DECAY_STEP)


class BasePatternStore(ABC):
    """Project-scoped curated patterns plus a per-user learned pattern store.

    Project patterns are read-only and supplied at construction (see
    ``prtriage_store.project.load_project_patterns``). Learned state is owned
    by the adapter.
    """

    def __init__(self, project_patterns: list[Pattern] | None = None):
        self._project_patterns = list(project_patterns or [])

    # ------------------------------------------------------------------ #
    # Abstract: implemented by each adapter                              #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _read_state(self) -> LearnedState:
        """Return a snapshot of learned state.

        Unreadable or corrupt storage must return an empty LearnedState and
        log a warning — never raise.
        """

    @abstractmethod
    def _transaction(self) -> AbstractContextManager[LearnedState]:
        """Yield the current learned state for mutation and persist it on exit.

        Writes must be serialized so concurrent read-modify-write cycles do not
        lose updates. If the block raises, nothing is persisted.
        """

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    @property
    def project_patterns(self) -> list[Pattern]:
        return list(self._project_patterns)

    def learned_patterns(self) -> list[Pattern]:
        return list(self._read_state().patterns.values())

    def find_match(self, comment, context: dict | None = None) -> Pattern | None:
        """Return the highest-confidence pattern matching the comment.

        Project and learned patterns are scanned together, project first, so a
        confidence tie goes to the curated entry.
        """
        context = context or {}
        body = getattr(comment, "body", "") or ""
        path = context.get("path") or getattr(comment, "path", None) or ""

        best: Pattern | None = None
        for pattern in self._project_patterns + self.learned_patterns():
            if not signature_matches(pattern, body):
                continue
            if pattern.files and not (path and path_matches(path, pattern.files)):
                continue
            if best is None or pattern.confidence > best.confidence:
                best = pattern
        if best is not None:
            logger.debug("Pattern %s matched (confidence %.2f)", best.id, best.confidence)
        return best

    def record_outcome(self, comment, decision, context: dict | None = None) -> Pattern | None:
        """Update counters and learned patterns from one decided comment.

        ``context`` may carry ``accepted`` (bool) when the outcome of applying
        the decision is known; that drives reinforcement and decay. Returns the
        learned pattern touched, if any.
        """
        context = context or {}
        action = _value(decision.action)
        accepted = context.get("accepted")
        author = getattr(comment, "author", None)

        with self._transaction() as state:
            state.reviews_processed += 1
            if action in AUTO_HANDLED_ACTIONS:
                state.time_saved_minutes += TIME_SAVED_PER_ITEM
            if author:
                state.bot_profiles[author] = state.bot_profiles.get(author, 0) + 1

            pattern = self._pattern_for(state, comment, decision)
            if pattern is None:
                return None

            pattern.occurrences += 1
            pattern.last_used_at = utc_now()
            if accepted is not None:
                pattern.history = (pattern.history + [bool(accepted)])[-HISTORY_LIMIT:]
                adjust_confidence(pattern)
            return pattern

    def learn_from_override(self, human_comment, context: dict | None = None) -> OverrideResult:
        """Track a human override and materialize a pattern once it recurs.

        ``context`` may carry ``action`` (what the human decided, default
        DISCUSS) and ``reason``.
        """
        context = context or {}
        reviewer = getattr(human_comment, "author", None) or "unknown"
        keywords = extract_keywords(getattr(human_comment, "body", "") or "")
        if not keywords:
            return OverrideResult(reviewer=reviewer, signature="", frequency=0)
        signature = " ".join(keywords)

        with self._transaction() as state:
            feedback = state.reviewer_feedback.setdefault(reviewer, {})
            frequency = feedback.get(signature, 0) + 1
            feedback[signature] = frequency
            if frequency < OVERRIDE_THRESHOLD:
                return OverrideResult(reviewer=reviewer, signature=signature, frequency=frequency)

            pattern_id = f"override-{_slug(reviewer)}-{'-'.join(keywords)}"
            confidence = min(OVERRIDE_CEILING, frequency * OVERRIDE_STEP)
            pattern = state.patterns.get(pattern_id)
            if pattern is None:
                pattern = Pattern(
                    id=pattern_id,
                    signature=signature,
                    scope=GLOBAL,
                    action=_value(context.get("action") or "DISCUSS"),
                    reason=context.get("reason") or f"Learned from repeated feedback by {reviewer}",
                    confidence=confidence,
                    learned_from=reviewer,
                )
                state.patterns[pattern_id] = pattern
                state.patterns_learned += 1
                logger.info("Learned override pattern %s (confidence %.2f)", pattern_id, confidence)
            else:
                pattern.confidence = max(pattern.confidence, confidence)
            pattern.occurrences = frequency
            pattern.last_used_at = utc_now()
            return OverrideResult(reviewer=reviewer, signature=signature, frequency=frequency, pattern=pattern)

    def stats(self) -> dict:
        state = self._read_state()
        distribution = {"high": 0, "medium": 0, "low": 0}
        for pattern in state.patterns.values():
            if pattern.confidence > 0.9:
                distribution["high"] += 1
            elif pattern.confidence > 0.7:
                distribution["medium"] += 1
            else:
                distribution["low"] += 1
        return {
            "project_patterns": len(self._project_patterns),
            "learned_patterns": len(state.patterns),
            "reviews_processed": state.reviews_processed,
            "time_saved_minutes": state.time_saved_minutes,
            "patterns_learned": state.patterns_learned,
            "bot_profiles": dict(state.bot_profiles),
            "confidence_distribution": distribution,
        }

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional — default is a no-op so callers can always call close() safely.
        """

    # ------------------------------------------------------------------ #
    # Helpers                                                              #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _pattern_for(state: LearnedState, comment, decision) -> Pattern | None:
        """Find or create the learned pattern a decision should update."""
        pattern_id = getattr(decision, "pattern_id", None)
        if _value(getattr(decision, "source", "rule")) == "pattern":
            # Curated patterns are not in learned state and stay read-only.
            return state.patterns.get(pattern_id) if pattern_id else None

        keywords = extract_keywords(getattr(comment, "body", "") or "")
        if not keywords:
            return None
        pattern_id = "pattern-" + "-".join(keywords)
        pattern = state.patterns.get(pattern_id)
        if pattern is not None:
            if pattern.action != _value(decision.action):
                return None
            pattern.confidence = max(pattern.confidence, min(RECURRENCE_CEILING, pattern.confidence + RECURRENCE_BONUS))
            return pattern
        if decision.confidence < LEARN_THRESHOLD:
            return None

        pattern = Pattern(
            id=pattern_id,
            signature=" ".join(keywords),
            scope=GLOBAL,
            action=_value(decision.action),
            reason=getattr(decision, "reason", "") or "",
            confidence=INITIAL_LEARNED_CONFIDENCE,
            reply=getattr(decision, "suggested_reply", None),
        )
        state.patterns[pattern_id] = pattern
        state.patterns_learned += 1
        logger.info("Learned pattern %s from %s decision", pattern_id, pattern.action)
        return pattern


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-") or "unknown"
