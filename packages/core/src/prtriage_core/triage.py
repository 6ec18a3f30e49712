"""Orchestrator-facing entry point.

``Triager`` bundles the classifier, decision engine, pattern store and
conversation engine behind the five operations a caller needs. The store is an
explicit handle, never a module-level singleton, so tests and parallel runs
each get their own.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone

from prtriage_core import classifier, engine
from prtriage_core.classifier import ProcessVerdict
from prtriage_core.config import DEFAULT_CONFIG, conversation_settings
from prtriage_core.conversation import ConversationEngine
from prtriage_core.gh.base import CommentSource, Responder
from prtriage_core.models import Action, Classification, Comment, ConversationResult, Decision
from prtriage_store.base import BasePatternStore
from prtriage_store.memory import MemoryPatternStore
from prtriage_store.models import OverrideResult, Pattern

logger = logging.getLogger(__name__)

# Verdicts that explain rather than act, so the bot may answer back.
DIALOGUE_ACTIONS = frozenset({Action.REJECT, Action.DISCUSS})


def requires_dialogue(decision: Decision) -> bool:
    return decision.action in DIALOGUE_ACTIONS and bool(decision.suggested_reply)


@dataclass
class TriageItem:
    comment: Comment
    verdict: ProcessVerdict
    decision: Decision | None = None


@dataclass
class TriageSummary:
    """Result of triaging a batch of comments, for the caller's report."""

    items: list[TriageItem] = field(default_factory=list)
    triaged_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def decided(self) -> list[TriageItem]:
        return [i for i in self.items if i.decision is not None]

    @property
    def skipped(self) -> list[TriageItem]:
        return [i for i in self.items if i.decision is None]

    def action_counts(self) -> dict[str, int]:
        return dict(Counter(i.decision.action.value for i in self.decided))


class Triager:
    def __init__(
        self,
        store: BasePatternStore | None = None,
        config: dict | None = None,
        source: CommentSource | None = None,
        responder: Responder | None = None,
        **engine_options,
    ):
        self._config = {**DEFAULT_CONFIG, **(config or {})}
        self._store = store if store is not None else MemoryPatternStore()
        self._conversations = None
        if source is not None and responder is not None:
            self._conversations = ConversationEngine(
                source, responder, conversation_settings(self._config), **engine_options
            )

    @property
    def store(self) -> BasePatternStore:
        return self._store

    def classify(self, comment: Comment) -> Classification:
        return classifier.classify(comment)

    def should_process(self, comment: Comment) -> ProcessVerdict:
        return classifier.should_process(
            comment.author,
            comment.body,
            comment.kind,
            skip_trivial=bool(self._config.get("skip_trivial")),
            trivial_only=bool(self._config.get("trivial_only")),
        )

    def decide(self, comment: Comment) -> Decision:
        return engine.decide(
            comment,
            self._store,
            min_pattern_confidence=float(self._config.get("min_pattern_confidence", 0.8)),
        )

    def triage(self, comments: list[Comment]) -> TriageSummary:
        """Filter and decide a batch of comments. Never posts anything."""
        summary = TriageSummary()
        for comment in comments:
            verdict = self.should_process(comment)
            decision = self.decide(comment) if verdict.process else None
            summary.items.append(TriageItem(comment=comment, verdict=verdict, decision=decision))
        logger.info("Triaged %d comment(s), %d decided", len(summary.items), len(summary.decided))
        return summary

    def run_conversation(
        self,
        comment: Comment,
        initial_reply: str,
        cancel: threading.Event | None = None,
    ) -> ConversationResult:
        if self._conversations is None:
            raise RuntimeError("Triager needs a comment source and a responder to hold conversations.")
        return self._conversations.run_conversation(comment, initial_reply, cancel=cancel)

    def record_outcome(self, comment: Comment, decision: Decision, context: dict | None = None) -> Pattern | None:
        return self._store.record_outcome(comment, decision, context)

    def learn_from_override(self, human_comment: Comment, context: dict | None = None) -> OverrideResult:
        return self._store.learn_from_override(human_comment, context)
