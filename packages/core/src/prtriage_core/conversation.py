"""Bounded, rate-limit-aware dialogue with a review bot.

State machine::

    ACTIVE ──▶ RESOLVED | TIMEOUT | ESCALATED   (all terminal)

One conversation is driven by one explicit loop, never recursion, with at most
one outstanding collaborator call at a time. The loop suspends only at poll
ticks and rate-limit waits; both check the caller's cancel event.

Round accounting: ``Conversation.rounds`` holds every message exchanged (our
replies and the bot's answers, the initial reply included). Rate-limit notices
are detours, not rounds. The budget caps ``len(rounds)``; once it is spent the
next bot message ends the conversation instead of being answered.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from prtriage_core.classifier import detect_actor
from prtriage_core.gh.base import REPLY_MARKER, CommentSource, Responder
from prtriage_core.models import (
    Comment,
    Conversation,
    ConversationResult,
    ConversationStatus,
    RateLimitDetour,
    Round,
    Speaker,
    utc_now,
)

logger = logging.getLogger(__name__)


class ConversationError(Exception):
    """Base class for conversation failures."""


class ConversationCancelled(ConversationError):
    """The caller abandoned the conversation at a suspension point."""


@dataclass(frozen=True)
class ConversationSettings:
    max_rounds: int = 5
    timeout_seconds: float = 600.0
    poll_interval: float = 3.0
    max_poll_interval: float = 30.0
    backoff_factor: float = 1.5
    # Empty polls tolerated at the base interval before backing off.
    idle_polls_before_backoff: int = 0
    # Rounds at which a repeated objection escalates instead of being answered.
    escalate_objection_at: int = 3


class Intent(str, Enum):
    RATE_LIMITED = "rate_limited"
    RESOLVED_ACCEPTANCE = "resolved_acceptance"
    CORRECTION = "correction"
    CLARIFICATION_REQUEST = "clarification_request"
    PERSISTENT_OBJECTION = "persistent_objection"
    OTHER = "other"


# ---------------------------------------------------------------------------
# Intent classification
# ---------------------------------------------------------------------------

_UNIT_SECONDS = {"second": 1, "sec": 1, "minute": 60, "min": 60, "hour": 3600}

_DURATION = r"(\d+)\s*(seconds?|secs?|minutes?|mins?|hours?)"
_RATE_LIMIT_WITH_DURATION = tuple(
    re.compile(prefix + r".*?" + _DURATION, re.I | re.S)
    for prefix in (
        r"rate[\s-]?limit",
        r"please\s+wait",
        r"try\s+again\s+in",
        r"quota\s+exceeded",
        r"too\s+many\s+requests",
        r"retry\s+after",
    )
)

_BUSY_PHRASES = (
    "currently processing",
    "high load",
    "queued for processing",
    "busy processing",
    "will process your",
)
_RATE_LIMIT_PHRASES = ("rate limit", "rate-limit", "too many requests", "please try again", "temporarily unavailable")

# Default waits when the bot gives no explicit duration.
BOT_DEFAULT_WAITS = {"coderabbit": 60.0}
GENERIC_RATE_LIMIT_WAIT = 30.0

_ACCEPTANCE_RE = re.compile(
    r"\blgtm\b|looks\s+good|thanks\s+for\s+the\s+explanation|makes\s+sense|acknowledged"
    r"|thank\s+you\s+for\s+clarifying|fair\s+enough|\bunderstood\b",
    re.I,
)
_CORRECTION_RE = re.compile(r"\bactually\b|you\s+mentioned|misunderstood|that'?s\s+not\s+(quite\s+)?(right|correct)", re.I)
_QUESTION_RE = re.compile(r"\?|could\s+you|please\s+explain|provide\s+more|can\s+you\s+clarify|\bclarify\b", re.I)
_OBJECTION_RE = re.compile(
    r"still\s+(strongly\s+)?recommend|security\s+risk|best\s+practice|strongly\s+suggest|still\s+(a\s+)?concern"
    r"|i\s+(still\s+)?disagree",
    re.I,
)


def rate_limit_wait(body: str, author: str = "") -> float | None:
    """Return seconds to wait if ``body`` reports throttling, else None.

    An explicit duration wins; otherwise a bot-specific default, then a generic
    one for plain rate-limit wording.
    """
    for pattern in _RATE_LIMIT_WITH_DURATION:
        match = pattern.search(body)
        if match:
            amount, unit = int(match.group(1)), match.group(2).lower()
            for prefix, seconds in _UNIT_SECONDS.items():
                if unit.startswith(prefix):
                    return float(amount * seconds)

    lowered = body.lower()
    bot_type = detect_actor(author).bot_type
    if bot_type in BOT_DEFAULT_WAITS and (
        any(phrase in lowered for phrase in _BUSY_PHRASES) or ("apologize" in lowered and "delay" in lowered)
    ):
        return BOT_DEFAULT_WAITS[bot_type]
    if any(phrase in lowered for phrase in _RATE_LIMIT_PHRASES):
        return GENERIC_RATE_LIMIT_WAIT
    return None


def classify_intent(body: str, author: str = "") -> Intent:
    """Ordered cascade: throttling, acceptance, correction, question, objection."""
    if rate_limit_wait(body, author) is not None:
        return Intent.RATE_LIMITED
    if _ACCEPTANCE_RE.search(body):
        return Intent.RESOLVED_ACCEPTANCE
    if _CORRECTION_RE.search(body):
        return Intent.CORRECTION
    if _QUESTION_RE.search(body):
        return Intent.CLARIFICATION_REQUEST
    if _OBJECTION_RE.search(body):
        return Intent.PERSISTENT_OBJECTION
    return Intent.OTHER


# ---------------------------------------------------------------------------
# Reply templates
# ---------------------------------------------------------------------------

_EXCERPT_LIMIT = 280


def _excerpt(text: str, limit: int = _EXCERPT_LIMIT) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 3].rstrip() + "..."


def corrective_reply(message: Comment, conversation: Conversation) -> str:
    return (
        "Thanks for the correction, I misread the original point.\n\n"
        f"> {_excerpt(message.body)}\n\n"
        "I'll address the concern as you've restated it."
    )


def clarifying_reply(message: Comment, conversation: Conversation) -> str:
    original = _excerpt(conversation.original_comment.body) or "the implementation"
    return (
        f"To clarify, this is about: {original}\n\n"
        "The current approach is intentional for this codebase and is documented with the team's conventions."
    )


def stronger_justification(message: Comment, conversation: Conversation) -> str:
    return (
        "I understand the general best practice. In this specific case:\n\n"
        "1. This is a documented exception in our codebase\n"
        "2. The alternative would add complexity without a matching benefit\n"
        "3. Compensating controls are in place\n\n"
        "If this is still a concern, it will go to a maintainer for review."
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ConversationEngine:
    """Drives one bot conversation at a time to a terminal state.

    ``sleep``, ``clock`` and ``now`` are injectable so tests run without real
    time passing. ``self_login`` filters our own account out of fetched
    replies in addition to the reply marker.
    """

    def __init__(
        self,
        source: CommentSource,
        responder: Responder,
        settings: ConversationSettings | None = None,
        self_login: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utc_now,
    ):
        self._source = source
        self._responder = responder
        self._settings = settings or ConversationSettings()
        self._self_login = self_login
        self._sleep = sleep
        self._clock = clock
        self._now = now

    @property
    def settings(self) -> ConversationSettings:
        return self._settings

    def run_conversation(
        self,
        comment: Comment,
        initial_reply: str,
        cancel: threading.Event | None = None,
    ) -> ConversationResult:
        """Post ``initial_reply`` to ``comment`` and converse until a terminal state.

        Raises ConversationCancelled if ``cancel`` is set at a suspension
        point; a failed post propagates unchanged.
        """
        conversation = Conversation(id=f"conv-{comment.id}", original_comment=comment)
        started = self._clock()
        logger.info("Starting conversation %s with %s", conversation.id, comment.author)

        self._post(conversation, comment, initial_reply)
        self._wait_loop(conversation, started, cancel)

        duration = self._clock() - started
        if conversation.status is ConversationStatus.TIMEOUT:
            logger.warning(
                "Conversation %s timed out after %.0fs; the bot never answered. This needs operator attention.",
                conversation.id,
                duration,
            )
        else:
            logger.info(
                "Conversation %s %s after %d round(s): %s",
                conversation.id,
                conversation.status.value,
                len(conversation.rounds),
                conversation.resolution,
            )
        return ConversationResult(
            conversation_id=conversation.id,
            status=conversation.status,
            rounds=len(conversation.rounds),
            resolution=conversation.resolution or "",
            duration=duration,
        )

    start = run_conversation

    # ------------------------------------------------------------------ #
    # Loop                                                                 #
    # ------------------------------------------------------------------ #

    def _wait_loop(self, conversation: Conversation, started: float, cancel: threading.Event | None) -> None:
        settings = self._settings
        interval = settings.poll_interval
        idle_polls = 0
        seen: set[str] = set()
        since = conversation.rounds[-1].timestamp if conversation.rounds else None

        while conversation.status is ConversationStatus.ACTIVE:
            remaining = settings.timeout_seconds - (self._clock() - started)
            if remaining <= 0:
                self._finish(conversation, ConversationStatus.TIMEOUT, "Bot did not respond before the timeout")
                return

            self._suspend(min(interval, remaining), cancel)
            message = self._next_bot_message(conversation.original_comment, since, seen)
            if message is None:
                idle_polls += 1
                if idle_polls > settings.idle_polls_before_backoff:
                    interval = min(interval * settings.backoff_factor, settings.max_poll_interval)
                logger.debug("No reply yet for %s; next poll in %.1fs", conversation.id, interval)
                continue

            seen.add(message.id)
            since = max(since, message.timestamp) if since else message.timestamp
            interval = settings.poll_interval
            idle_polls = 0

            wait = rate_limit_wait(message.body, message.author)
            if wait is not None:
                conversation.detours.append(RateLimitDetour(message=message.body, wait_seconds=wait, timestamp=self._now()))
                remaining = settings.timeout_seconds - (self._clock() - started)
                logger.info("%s is rate limited; waiting %.0fs (round not consumed)", message.author, wait)
                self._suspend(max(0.0, min(wait, remaining)), cancel)
                continue

            self._handle(conversation, message)

    def _handle(self, conversation: Conversation, message: Comment) -> None:
        settings = self._settings
        intent = classify_intent(message.body, message.author)

        if len(conversation.rounds) >= settings.max_rounds:
            # Budget spent: the message ends the conversation and is not answered.
            if intent in (Intent.RESOLVED_ACCEPTANCE, Intent.OTHER):
                self._finish(conversation, ConversationStatus.RESOLVED, "Bot accepted the explanation")
            else:
                self._finish(conversation, ConversationStatus.ESCALATED, "Round budget exhausted; escalated to a human")
            return

        conversation.rounds.append(Round(speaker=Speaker.BOT, message=message.body, timestamp=message.timestamp))

        if intent is Intent.RESOLVED_ACCEPTANCE:
            self._finish(conversation, ConversationStatus.RESOLVED, "Bot accepted the explanation")
            return
        if intent is Intent.OTHER:
            self._finish(conversation, ConversationStatus.RESOLVED, "No further action implied by the bot")
            return
        # Checked before the budget: a repeated objection escalates as soon as it is due.
        if intent is Intent.PERSISTENT_OBJECTION and len(conversation.rounds) >= settings.escalate_objection_at:
            self._finish(
                conversation, ConversationStatus.ESCALATED, "Escalated to human review after repeated objections"
            )
            return
        if len(conversation.rounds) >= settings.max_rounds:
            self._finish(conversation, ConversationStatus.ESCALATED, "Round budget exhausted; escalated to a human")
            return

        if intent is Intent.CORRECTION:
            reply = corrective_reply(message, conversation)
        elif intent is Intent.CLARIFICATION_REQUEST:
            reply = clarifying_reply(message, conversation)
        else:
            reply = stronger_justification(message, conversation)
        self._post(conversation, message, reply)

    # ------------------------------------------------------------------ #
    # Helpers                                                              #
    # ------------------------------------------------------------------ #

    def _post(self, conversation: Conversation, target: Comment, body: str) -> None:
        self._responder.post_reply(target, f"{body}\n\n{REPLY_MARKER}")
        conversation.rounds.append(Round(speaker=Speaker.SELF, message=body, timestamp=self._now()))

    def _next_bot_message(self, target: Comment, since: datetime | None, seen: set[str]) -> Comment | None:
        try:
            replies = self._source.fetch_replies(target, since)
        except Exception as e:
            # Retried on the next tick only; no extra retries.
            logger.warning("Could not fetch replies for comment %s: %s", target.id, e)
            return None
        for reply in replies:
            if reply.id in seen or REPLY_MARKER in reply.body:
                continue
            if self._self_login and reply.author == self._self_login:
                continue
            if not detect_actor(reply.author).is_bot:
                continue
            return reply
        return None

    def _suspend(self, seconds: float, cancel: threading.Event | None) -> None:
        if cancel is not None and cancel.is_set():
            raise ConversationCancelled("Conversation abandoned by caller")
        self._sleep(seconds)
        if cancel is not None and cancel.is_set():
            raise ConversationCancelled("Conversation abandoned by caller")

    @staticmethod
    def _finish(conversation: Conversation, status: ConversationStatus, resolution: str) -> None:
        conversation.status = status
        conversation.resolution = resolution
