"""Decision engine: one comment in, one verdict out.

Three ordered cascades live here, each an explicit priority list evaluated top
to bottom where the first match wins and matches are never blended:

- ``DECISION_RULES`` maps a comment to an action.
- ``CATEGORY_RULES`` tags the issue. Style, debug and code-quality signatures
  come before security so incidental words ("auth" in a file path, "type"
  imports) do not read as vulnerabilities; auth-specific security phrasing is
  a separate, later rule.
- ``_FIX_TEMPLATES`` is the closed set of deterministic fixes. Anything else
  gets no fix, and a security finding without a fix escalates.

``decide`` is pure with respect to the pattern store: it only reads.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from prtriage_core.classifier import classify_triviality
from prtriage_core.models import (
    Action,
    Category,
    Comment,
    Decision,
    DecisionSource,
    Priority,
    Severity,
    Triviality,
)

if TYPE_CHECKING:
    from prtriage_store.base import BasePatternStore
    from prtriage_store.models import Pattern

logger = logging.getLogger(__name__)

DEFAULT_MIN_PATTERN_CONFIDENCE = 0.8

# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AllowlistEntry:
    id: str
    pattern: re.Pattern
    reason: str
    path_fragments: tuple[str, ...] = ()

    def matches(self, body: str, path: str) -> bool:
        if not self.pattern.search(body):
            return False
        if self.path_fragments:
            return any(fragment in path for fragment in self.path_fragments)
        return True


CURATED_ALLOWLIST: tuple[AllowlistEntry, ...] = (
    AllowlistEntry(
        "console-log-lambda",
        re.compile(r"console\.(log|error|warn).*lambda", re.I | re.S),
        "Console logging is valid for CloudWatch in Lambda functions",
    ),
    AllowlistEntry(
        "any-external-payload",
        re.compile(r"\bany\b.*type.*(stripe|webhook|external\s*api)", re.I | re.S),
        "Using any type is acceptable for complex external API payloads",
    ),
    AllowlistEntry(
        "hardcoded-infra-names",
        re.compile(r"hardcoded.*(table|bucket).*name", re.I | re.S),
        "Hardcoded resource names are valid in infrastructure code",
        path_fragments=("infrastructure", "cdk"),
    ),
)

CRITICAL_SECURITY = (
    re.compile(r"hardcoded.*(api|secret|key|token|password)", re.I),
    re.compile(r"sql\s*injection", re.I),
    re.compile(r"exposed?\s*(credentials?|secrets?)", re.I),
    re.compile(r"plain\s*text\s*password", re.I),
)

HIGH_SECURITY = (
    re.compile(r"missing\s*(input\s*)?(auth\w*|validation|sanitization)", re.I),
    re.compile(r"cors\s*wildcard|access-control-allow-origin[\"']?\s*:\s*[\"']?\*", re.I),
    re.compile(r"\beval\(|new\s+Function\("),
)

_ARCHITECTURE_RE = re.compile(
    r"refactor|restructur|architect|design\s*pattern|decoupl|separation\s+of\s+concerns", re.I
)
_FUTURE_RE = re.compile(
    r"in\s+the\s+future|future\s+(pr|work|iteration|version)|enhancement|follow[-\s]?up|nice\s+to\s+have"
    r"|out\s+of\s+scope|later\s+(pr|iteration)|roadmap",
    re.I,
)
_IMPROVEMENT_RE = re.compile(
    r"could\s+be\s+improved|improvement|would\s+be\s+(better|cleaner)|might\s+want\s+to|recommend|optimi[sz]",
    re.I,
)

CATEGORY_RULES: tuple[tuple[Category, re.Pattern], ...] = (
    (
        Category.STYLE,
        re.compile(
            r"type-only\s+import|eslint|prettier|formatting|indentation|semicolon|whitespace|trailing\s+(space|comma)"
            r"|naming\s+convention|camel\s*case|snake\s*case|line\s+length",
            re.I,
        ),
    ),
    (Category.DEBUG, re.compile(r"console\.(log|debug|info|warn)|debug(ger)?\s+(statement|code|output)|print\s+statement", re.I)),
    (
        Category.CODE_QUALITY,
        re.compile(r"empty\s+catch|unused|too\s+complex|complexity|refactor|clean\s*up|dead\s+code|duplicat|quality", re.I),
    ),
    (
        Category.SECURITY,
        re.compile(
            r"security|vulnerab|api\s*key|sql\s*injection|credential|password|secret|xss|csrf|(command|code)\s+injection", re.I
        ),
    ),
    (Category.BREAKING, re.compile(r"breaking\s+change|backwards?[-\s]incompatib|api\s+contract", re.I)),
    (Category.BUG, re.compile(r"\bbug\b|null\s+(pointer|reference)|memory\s+leak|race\s+condition|off[-\s]by[-\s]one|crash", re.I)),
    (Category.PERFORMANCE, re.compile(r"performance|n\+1|\bslow\b|inefficient|optimi[sz]", re.I)),
    (Category.TYPE_SAFETY, re.compile(r"type\s+safety|typescript|\bany\b\s+type|type\s+(annotation|hint)|untyped", re.I)),
    (Category.ARCHITECTURE, re.compile(r"architect|design\s*pattern|restructur|decoupl", re.I)),
    # Auth phrasing only counts with explicit security intent, never a bare "auth".
    (
        Category.SECURITY,
        re.compile(r"(missing|without|bypass\w*|no)\s+(auth\w*|authori[sz]ation|authentication)\s*(check|guard)?|unauthenticated|unauthori[sz]ed\s+access", re.I),
    ),
)

PRIORITY_BY_CATEGORY = {
    Category.SECURITY: Priority.MUST_FIX,
    Category.CRITICAL: Priority.MUST_FIX,
    Category.BREAKING: Priority.MUST_FIX,
    Category.BUG: Priority.MUST_FIX,
    Category.PERFORMANCE: Priority.SUGGESTION,
    Category.CODE_QUALITY: Priority.SUGGESTION,
    Category.TYPE_SAFETY: Priority.SUGGESTION,
    Category.ARCHITECTURE: Priority.SUGGESTION,
    Category.STYLE: Priority.NITPICK,
    Category.DEBUG: Priority.NITPICK,
    Category.NITPICK: Priority.NITPICK,
}

# ---------------------------------------------------------------------------
# Fix templates
# ---------------------------------------------------------------------------

_JS_ENV_FIX = """Move the secret to an environment variable:
const {name} = process.env.{name};

if (!{name}) {{
  throw new Error('{name} environment variable is required');
}}"""

_PY_ENV_FIX = """Move the secret to an environment variable:
{name} = os.environ.get("{name}")

if not {name}:
    raise RuntimeError("{name} environment variable is required")"""

_JS_SQL_FIX = """Use a parameterized query instead of building SQL from strings:
const query = 'SELECT * FROM users WHERE id = ?';
db.query(query, [userId], callback);"""

_PY_SQL_FIX = """Use a parameterized query instead of building SQL from strings:
cursor.execute("SELECT * FROM users WHERE id = %s", (user_id,))"""

_JS_GUARD_FIX = """Add an input guard clause:
if (!input || typeof input !== 'string') {
  return res.status(400).json({ error: 'Invalid input' });
}"""

_PY_GUARD_FIX = """Add an input guard clause:
if not isinstance(value, str) or not value.strip():
    raise ValueError("Invalid input")"""

_SECRET_NAME_RE = re.compile(r"(?:const|let|var)?\s*([A-Za-z_][A-Za-z0-9_]*)\s*[:=]\s*['\"][^'\"]+['\"]")


def _env_name(text: str) -> str:
    match = _SECRET_NAME_RE.search(text)
    if match:
        name = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", match.group(1)).upper()
        if any(hint in name for hint in ("KEY", "SECRET", "TOKEN", "PASSWORD")):
            return name
    return "API_KEY"


def _is_python(path: str | None) -> bool:
    return bool(path) and path.endswith((".py", ".pyi"))


_FIX_TEMPLATES: tuple[tuple[re.Pattern, Callable[[str, bool], str]], ...] = (
    (
        re.compile(r"hardcoded.*(api|key|token|secret|password)", re.I),
        lambda text, py: (_PY_ENV_FIX if py else _JS_ENV_FIX).format(name=_env_name(text)),
    ),
    (
        re.compile(r"sql\s*injection|(string|concatenat|interpolat)\w*.*\b(sql|query)\b", re.I),
        lambda text, py: _PY_SQL_FIX if py else _JS_SQL_FIX,
    ),
    (
        re.compile(r"missing\s*(input\s*)?validation", re.I),
        lambda text, py: _PY_GUARD_FIX if py else _JS_GUARD_FIX,
    ),
)


def generate_fix(text: str, path: str | None = None) -> str | None:
    """Return a deterministic fix for a recognized issue, else None.

    Never returns placeholder text: when no safe transform exists the caller
    must escalate instead of auto-fixing.
    """
    for pattern, render in _FIX_TEMPLATES:
        if pattern.search(text or ""):
            return render(text, _is_python(path))
    return None


def categorize(text: str) -> Category:
    for category, pattern in CATEGORY_RULES:
        if pattern.search(text or ""):
            return category
    return Category.GENERAL


def priority_of(category: Category | str) -> Priority:
    """Map a category to a priority; unknown categories are suggestions, never dropped."""
    try:
        category = Category(category)
    except ValueError:
        return Priority.SUGGESTION
    return PRIORITY_BY_CATEGORY.get(category, Priority.SUGGESTION)


# ---------------------------------------------------------------------------
# Decision cascade
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Facts:
    """What every decision rule may look at, computed once per comment."""

    comment: Comment
    body: str
    path: str
    category: Category
    triviality: Triviality


def _curated_allowlist(facts: _Facts) -> Decision | None:
    for entry in CURATED_ALLOWLIST:
        if entry.matches(facts.body, facts.path):
            return Decision(
                action=Action.REJECT,
                reason=entry.reason,
                confidence=0.95,
                category=facts.category,
                priority=priority_of(facts.category),
                suggested_reply=f"Thanks for the review. This is an intentional pattern here: {entry.reason}.",
            )
    return None


def _security(signatures: tuple[re.Pattern, ...], severity: Severity, confidence: float):
    def rule(facts: _Facts) -> Decision | None:
        if not any(sig.search(facts.body) for sig in signatures):
            return None
        fix = generate_fix(facts.body, facts.path)
        label = "Critical security vulnerability" if severity is Severity.CRITICAL else "Security issue"
        if fix:
            return Decision(
                action=Action.AUTO_FIX,
                reason=f"{label} with a known safe fix",
                confidence=confidence,
                category=Category.SECURITY,
                priority=Priority.MUST_FIX,
                severity=severity,
                suggested_fix=fix,
                suggested_reply="Thanks for catching this. Applying the fix.",
            )
        return Decision(
            action=Action.ESCALATE,
            reason=f"{label} requires human review",
            confidence=confidence - 0.05,
            category=Category.SECURITY,
            priority=Priority.MUST_FIX,
            severity=severity,
            suggested_reply="Thanks for flagging this. It needs a human reviewer, escalating.",
        )

    return rule


def _architecture(facts: _Facts) -> Decision | None:
    if not _ARCHITECTURE_RE.search(facts.body):
        return None
    return Decision(
        action=Action.DISCUSS,
        reason="Architectural changes require discussion",
        confidence=0.7,
        category=facts.category,
        priority=priority_of(facts.category),
        suggested_reply=(
            "Thanks for the suggestion. Could you provide more context on the benefits of this approach for our use case?"
        ),
    )


def _future_work(facts: _Facts) -> Decision | None:
    if not _FUTURE_RE.search(facts.body):
        return None
    return Decision(
        action=Action.DEFER,
        reason="Enhancement for a future change",
        confidence=0.75,
        category=facts.category,
        priority=priority_of(facts.category),
        suggested_reply="Valid suggestion. Tracking it as follow-up work outside this change.",
    )


def _improvement(facts: _Facts) -> Decision | None:
    if facts.category is Category.SECURITY or not _IMPROVEMENT_RE.search(facts.body):
        return None
    return Decision(
        action=Action.DEFER,
        reason="Valid improvement but not required for this change",
        confidence=0.6,
        category=facts.category,
        priority=priority_of(facts.category),
        suggested_reply="Good idea. Not blocking for this change, added to the backlog.",
    )


def _trivial(facts: _Facts) -> Decision | None:
    if not facts.triviality.is_trivial:
        return None
    return Decision(
        action=Action.NIT,
        reason=f"Trivial comment ({facts.triviality.matched_rule})",
        confidence=facts.triviality.confidence,
        category=facts.category,
        priority=Priority.NITPICK,
        suggested_reply="Thanks, noted as a minor point.",
    )


def _default(facts: _Facts) -> Decision:
    return Decision(
        action=Action.DISCUSS,
        reason="Need more context to make a decision",
        confidence=0.3,
        category=facts.category,
        priority=priority_of(facts.category),
        suggested_reply="Could you clarify the preferred approach here?",
    )


# Priority order. The first rule returning a Decision wins; _default answers otherwise.
DECISION_RULES: tuple[tuple[str, Callable[[_Facts], Decision | None]], ...] = (
    ("curated_allowlist", _curated_allowlist),
    ("critical_security", _security(CRITICAL_SECURITY, Severity.CRITICAL, 0.95)),
    ("high_security", _security(HIGH_SECURITY, Severity.HIGH, 0.85)),
    ("architecture", _architecture),
    ("future_work", _future_work),
    ("improvement", _improvement),
    ("trivial", _trivial),
)


def security_severity(text: str) -> Severity | None:
    """Severity of the strongest security signature in ``text``, if any."""
    if any(sig.search(text) for sig in CRITICAL_SECURITY):
        return Severity.CRITICAL
    if any(sig.search(text) for sig in HIGH_SECURITY):
        return Severity.HIGH
    return None


def _from_pattern(pattern: Pattern, facts: _Facts) -> Decision:
    action = Action(pattern.action)
    fix = None
    if action is Action.AUTO_FIX:
        fix = generate_fix(facts.body, facts.path)
        if fix is None:
            action = Action.ESCALATE
    # Patterns store no severity; a fix or escalation inherits it from the comment.
    severity = security_severity(facts.body) if action in (Action.AUTO_FIX, Action.ESCALATE) else None
    if action is Action.NIT:
        priority = Priority.NITPICK
    elif severity is not None:
        priority = Priority.MUST_FIX
    else:
        priority = priority_of(facts.category)
    return Decision(
        action=action,
        reason=pattern.reason or f"Matched {pattern.scope} pattern {pattern.id}",
        confidence=pattern.confidence,
        category=facts.category,
        priority=priority,
        severity=severity,
        source=DecisionSource.PATTERN,
        suggested_fix=fix,
        suggested_reply=pattern.reply or pattern.reason or None,
        pattern_id=pattern.id,
    )


def decide(
    comment: Comment,
    store: BasePatternStore | None = None,
    triviality: Triviality | None = None,
    min_pattern_confidence: float = DEFAULT_MIN_PATTERN_CONFIDENCE,
) -> Decision:
    """Return the verdict for one comment.

    A pattern-store hit short-circuits the rule cascade: curated project
    patterns always apply, learned ones only at ``min_pattern_confidence`` or
    above. Otherwise ``DECISION_RULES`` runs in order; nothing falls through
    silently because an unmatched comment defaults to a low-confidence DISCUSS.
    """
    body = comment.body or ""
    facts = _Facts(
        comment=comment,
        body=body,
        path=comment.path or "",
        category=categorize(body),
        triviality=triviality or classify_triviality(body),
    )

    if store is not None:
        pattern = store.find_match(comment, {"path": facts.path})
        if pattern is not None and (pattern.scope == "project" or pattern.confidence >= min_pattern_confidence):
            logger.debug("Comment %s decided by pattern %s", comment.id, pattern.id)
            return _from_pattern(pattern, facts)

    for name, rule in DECISION_RULES:
        decision = rule(facts)
        if decision is not None:
            logger.debug("Comment %s decided by rule %s: %s", comment.id, name, decision.action.value)
            return decision
    logger.debug("Comment %s matched no rule, defaulting to DISCUSS", comment.id)
    return _default(facts)


def analyze_comments(
    comments: list[Comment],
    store: BasePatternStore | None = None,
    min_pattern_confidence: float = DEFAULT_MIN_PATTERN_CONFIDENCE,
) -> list[tuple[Comment, Decision]]:
    return [(c, decide(c, store, min_pattern_confidence=min_pattern_confidence)) for c in comments]
