"""Bot detection and triviality classification.

Both checks are explicit priority lists evaluated top to bottom; the first
match wins. Order matters: named reviewers are checked before the generic
``[bot]`` suffix, and structural "collapsed details" sections before the
lexical nit markers.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum

from prtriage_core.models import ActorDetection, Classification, Comment, CommentKind, Triviality

logger = logging.getLogger(__name__)

NOT_A_BOT_CONFIDENCE = 0.95
GENERIC_BOT_CONFIDENCE = 0.80


@dataclass(frozen=True)
class BotSignature:
    name: str
    pattern: re.Pattern
    confidence: float


# Priority order. Named reviewers first, generic suffix last.
BOT_SIGNATURES: tuple[BotSignature, ...] = (
    BotSignature("coderabbit", re.compile(r"coderabbit", re.I), 0.95),
    BotSignature("deepsource", re.compile(r"deepsource", re.I), 0.95),
    BotSignature("sonarcloud", re.compile(r"sonarcloud|sonarqube", re.I), 0.95),
    BotSignature("codeclimate", re.compile(r"codeclimate", re.I), 0.90),
    BotSignature("snyk", re.compile(r"snyk", re.I), 0.95),
    BotSignature("claude_code", re.compile(r"claude", re.I), 0.95),
    BotSignature("copilot", re.compile(r"copilot", re.I), 0.95),
    BotSignature("codegeex", re.compile(r"codegeex", re.I), 0.90),
    BotSignature("codacy", re.compile(r"codacy", re.I), 0.95),
    BotSignature("reviewdog", re.compile(r"reviewdog", re.I), 0.90),
    BotSignature("dependabot", re.compile(r"dependabot", re.I), 0.95),
    BotSignature("renovate", re.compile(r"renovate", re.I), 0.95),
    BotSignature("generic", re.compile(r"\[bot\]$|bot$", re.I), GENERIC_BOT_CONFIDENCE),
)


@dataclass(frozen=True)
class TrivialityRule:
    name: str
    pattern: re.Pattern
    confidence: float


# Priority order. Structural sections first, then lexical nit markers.
TRIVIALITY_RULES: tuple[TrivialityRule, ...] = (
    TrivialityRule(
        "review_details_section",
        re.compile(r"<details>\s*<summary>[^<]*(review\s+details|nitpick)", re.I),
        0.95,
    ),
    TrivialityRule(
        "additional_comments",
        re.compile(r"additional\s+(comments|items)\s+not\s+(posted|shown)", re.I),
        0.95,
    ),
    TrivialityRule("nit_prefix", re.compile(r"(^|\W)nit(pick)?\s*:", re.I), 0.90),
    TrivialityRule("minor", re.compile(r"\bminor\b", re.I), 0.85),
    TrivialityRule("trivial", re.compile(r"\btrivial\b", re.I), 0.85),
    TrivialityRule("cosmetic", re.compile(r"\bcosmetic\b", re.I), 0.85),
    TrivialityRule("non_blocking", re.compile(r"\bnon[-\s]?blocking\b", re.I), 0.85),
    TrivialityRule("optional", re.compile(r"^\s*\**optional\**\s*:", re.I | re.M), 0.80),
    TrivialityRule("style_suggestion", re.compile(r"\bstyle\s+(suggestion|nit)\b", re.I), 0.80),
    TrivialityRule("naming_suggestion", re.compile(r"more\s+descriptive\s+(variable\s+)?name", re.I), 0.80),
)

_ACTIONABLE_COUNT_RES = (
    re.compile(r"actionable\s+comments\s+posted:\s*\**\s*(\d+)", re.I),
    re.compile(r"found\s+(\d+)\s+issues?\b", re.I),
)
# CodeRabbit walkthrough summaries describe the change set and carry no findings.
_WALKTHROUGH_RE = re.compile(r"<!--\s*walkthrough_start\s*-->|^\s*#{1,3}\s*summary\b", re.I | re.M)


class ProcessReason(str, Enum):
    NOT_A_BOT = "not_a_bot"
    SUMMARY_NO_ACTIONABLE = "summary_no_actionable"
    TRIVIAL_FILTERED = "trivial_filtered"
    NONTRIVIAL_FILTERED = "nontrivial_filtered"
    ACTIONABLE_CONTENT = "actionable_content"
    REVIEW_REPLY = "review_reply"


@dataclass(frozen=True)
class ProcessVerdict:
    process: bool
    reason: ProcessReason
    confidence: float
    classification: Classification


def detect_actor(username: str | None) -> ActorDetection:
    """Decide whether ``username`` belongs to an automated reviewer."""
    if not username:
        return ActorDetection(is_bot=False, confidence=0.0)
    for signature in BOT_SIGNATURES:
        if signature.pattern.search(username):
            return ActorDetection(is_bot=True, bot_type=signature.name, confidence=signature.confidence)
    return ActorDetection(is_bot=False, confidence=NOT_A_BOT_CONFIDENCE)


def classify_triviality(body: str | None) -> Triviality:
    """Decide whether a comment body is a nit or otherwise non-actionable."""
    if not body:
        return Triviality(is_trivial=False, confidence=0.0)
    for rule in TRIVIALITY_RULES:
        if rule.pattern.search(body):
            logger.debug("Triviality rule %s matched", rule.name)
            return Triviality(is_trivial=True, confidence=rule.confidence, matched_rule=rule.name)
    return Triviality(is_trivial=False, confidence=0.0)


def actionable_count(body: str | None) -> int | None:
    """Return the number of actionable items a bot summary reports, if it reports one."""
    for pattern in _ACTIONABLE_COUNT_RES:
        match = pattern.search(body or "")
        if match:
            return int(match.group(1))
    return None


def is_walkthrough_summary(bot_type: str | None, body: str | None) -> bool:
    return bot_type == "coderabbit" and bool(_WALKTHROUGH_RE.search(body or ""))


def classify(comment: Comment) -> Classification:
    return _combine(detect_actor(comment.author), classify_triviality(comment.body))


def _combine(actor: ActorDetection, triviality: Triviality) -> Classification:
    return Classification(
        is_bot=actor.is_bot,
        bot_type=actor.bot_type,
        bot_confidence=actor.confidence,
        is_trivial=triviality.is_trivial,
        triviality_confidence=triviality.confidence,
        matched_rule=triviality.matched_rule,
    )


def should_process(
    username: str | None,
    body: str | None,
    kind: CommentKind = CommentKind.ISSUE,
    skip_trivial: bool = False,
    trivial_only: bool = False,
) -> ProcessVerdict:
    """Decide whether a comment should be triaged at all.

    Replies nested under a review are judged on their own content: the
    parent's "0 actionable comments" summary never suppresses them.
    """
    actor = detect_actor(username)
    triviality = classify_triviality(body)
    classification = _combine(actor, triviality)

    def verdict(process: bool, reason: ProcessReason, confidence: float) -> ProcessVerdict:
        return ProcessVerdict(process=process, reason=reason, confidence=confidence, classification=classification)

    if not actor.is_bot:
        return verdict(False, ProcessReason.NOT_A_BOT, actor.confidence)

    kind = CommentKind(kind)
    if kind is not CommentKind.REVIEW_REPLY:
        if is_walkthrough_summary(actor.bot_type, body):
            return verdict(False, ProcessReason.SUMMARY_NO_ACTIONABLE, 0.95)
        if actionable_count(body) == 0:
            return verdict(False, ProcessReason.SUMMARY_NO_ACTIONABLE, 0.90)

    if skip_trivial and triviality.is_trivial:
        return verdict(False, ProcessReason.TRIVIAL_FILTERED, triviality.confidence)
    if trivial_only and not triviality.is_trivial:
        return verdict(False, ProcessReason.NONTRIVIAL_FILTERED, 0.85)

    if kind is CommentKind.REVIEW_REPLY:
        return verdict(True, ProcessReason.REVIEW_REPLY, actor.confidence)
    return verdict(True, ProcessReason.ACTIONABLE_CONTENT, actor.confidence)
