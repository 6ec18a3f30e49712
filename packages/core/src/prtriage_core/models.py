"""Core data model: comments, classifications, decisions and conversations.

Comments are normalized once at the ingestion boundary (see
``prtriage_core.gh.pull_request.normalize_comment``); nothing past that point
branches on platform-specific field names.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class CommentKind(str, Enum):
    ISSUE = "issue"
    INLINE = "inline"
    REVIEW = "review"
    REVIEW_REPLY = "review_reply"


class Action(str, Enum):
    AUTO_FIX = "AUTO_FIX"
    REJECT = "REJECT"
    DISCUSS = "DISCUSS"
    DEFER = "DEFER"
    ESCALATE = "ESCALATE"
    NIT = "NIT"


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"


class Category(str, Enum):
    SECURITY = "SECURITY"
    CRITICAL = "CRITICAL"
    BREAKING = "BREAKING"
    BUG = "BUG"
    PERFORMANCE = "PERFORMANCE"
    CODE_QUALITY = "CODE_QUALITY"
    TYPE_SAFETY = "TYPE_SAFETY"
    ARCHITECTURE = "ARCHITECTURE"
    STYLE = "STYLE"
    DEBUG = "DEBUG"
    NITPICK = "NITPICK"
    GENERAL = "GENERAL"


class Priority(str, Enum):
    MUST_FIX = "MUST_FIX"
    SUGGESTION = "SUGGESTION"
    NITPICK = "NITPICK"


class DecisionSource(str, Enum):
    RULE = "rule"
    PATTERN = "pattern"


class ConversationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    RESOLVED = "RESOLVED"
    TIMEOUT = "TIMEOUT"
    ESCALATED = "ESCALATED"

    @property
    def terminal(self) -> bool:
        return self is not ConversationStatus.ACTIVE


class Speaker(str, Enum):
    SELF = "self"
    BOT = "bot"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Comment:
    """A review comment in canonical shape, immutable once fetched."""

    id: str
    author: str
    body: str
    kind: CommentKind = CommentKind.ISSUE
    path: str | None = None
    line: int | None = None
    timestamp: datetime = field(default_factory=utc_now)
    in_reply_to: str | None = None


@dataclass(frozen=True)
class ActorDetection:
    is_bot: bool
    confidence: float
    bot_type: str | None = None


@dataclass(frozen=True)
class Triviality:
    is_trivial: bool
    confidence: float
    matched_rule: str | None = None


@dataclass(frozen=True)
class Classification:
    is_bot: bool
    bot_type: str | None
    bot_confidence: float
    is_trivial: bool
    triviality_confidence: float
    matched_rule: str | None = None


@dataclass(frozen=True)
class Decision:
    """One verdict for one comment."""

    action: Action
    reason: str
    confidence: float
    category: Category
    priority: Priority
    source: DecisionSource = DecisionSource.RULE
    severity: Severity | None = None
    suggested_fix: str | None = None
    suggested_reply: str | None = None
    pattern_id: str | None = None

    def __post_init__(self):
        # Frozen dataclass: clamp through object.__setattr__.
        object.__setattr__(self, "confidence", max(0.0, min(1.0, float(self.confidence))))


@dataclass(frozen=True)
class Round:
    speaker: Speaker
    message: str
    timestamp: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class RateLimitDetour:
    """A pause requested by the bot; never counted as a round."""

    message: str
    wait_seconds: float
    timestamp: datetime = field(default_factory=utc_now)


@dataclass
class Conversation:
    id: str
    original_comment: Comment
    rounds: list[Round] = field(default_factory=list)
    status: ConversationStatus = ConversationStatus.ACTIVE
    resolution: str | None = None
    detours: list[RateLimitDetour] = field(default_factory=list)


@dataclass(frozen=True)
class ConversationResult:
    """What a finished conversation reports back to the caller."""

    conversation_id: str
    status: ConversationStatus
    rounds: int
    resolution: str
    duration: float  # seconds

    @property
    def anomalous(self) -> bool:
        # A timeout means the bot went silent; an operator should look.
        return self.status is ConversationStatus.TIMEOUT
