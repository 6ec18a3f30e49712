"""GitHub collaborators built on PyGithub.

``normalize_comment`` is the single place platform field names are read: issue
comments, inline review comments (and their replies) and review bodies all
become one canonical ``Comment``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from github import Github, GithubException

from prtriage_core.gh.base import CommentSource, Responder
from prtriage_core.models import Comment, CommentKind

logger = logging.getLogger(__name__)


def get_repo(repo_name: str, token: str):
    return Github(token).get_repo(repo_name)


def get_pull(repo, pr_number: int):
    return repo.get_pull(pr_number)


def _as_utc(value: datetime | None) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def normalize_comment(raw, kind: CommentKind) -> Comment:
    """Map a PyGithub IssueComment, PullRequestComment or PullRequestReview to a Comment."""
    user = getattr(raw, "user", None)
    author = getattr(user, "login", "") or ""
    if kind is CommentKind.REVIEW:
        timestamp = getattr(raw, "submitted_at", None)
    else:
        timestamp = getattr(raw, "created_at", None)

    in_reply_to = getattr(raw, "in_reply_to_id", None) if kind is CommentKind.INLINE else None
    if in_reply_to:
        kind = CommentKind.REVIEW_REPLY

    path = getattr(raw, "path", None) if kind in (CommentKind.INLINE, CommentKind.REVIEW_REPLY) else None
    line = None
    if path is not None:
        line = getattr(raw, "line", None)
        if line is None:
            # Outdated comments lose `line` after a force-push.
            line = getattr(raw, "original_line", None)

    return Comment(
        id=str(raw.id),
        author=author,
        body=getattr(raw, "body", None) or "",
        kind=kind,
        path=path,
        line=line,
        timestamp=_as_utc(timestamp),
        in_reply_to=str(in_reply_to) if in_reply_to else None,
    )


class GitHubThread(CommentSource, Responder):
    """All review comments of one pull request, readable and repliable."""

    def __init__(self, pull):
        self._pull = pull

    @classmethod
    def connect(cls, repo_name: str, pr_number: int, token: str) -> GitHubThread:
        return cls(get_pull(get_repo(repo_name, token), pr_number))

    def list_comments(self) -> list[Comment]:
        comments = [normalize_comment(c, CommentKind.ISSUE) for c in self._pull.get_issue_comments()]
        comments += [normalize_comment(c, CommentKind.INLINE) for c in self._pull.get_review_comments()]
        comments += [normalize_comment(r, CommentKind.REVIEW) for r in self._pull.get_reviews() if r.body]
        return sorted(comments, key=lambda c: c.timestamp)

    def post_reply(self, comment: Comment, body: str) -> str:
        if comment.kind in (CommentKind.INLINE, CommentKind.REVIEW_REPLY):
            # GitHub threads replies under the top-level review comment.
            root = int(comment.in_reply_to or comment.id)
            try:
                posted = self._pull.create_review_comment_reply(root, body)
                return str(posted.id)
            except GithubException as e:
                logger.warning("Threaded reply to %s failed (%s); posting as a PR comment instead.", comment.id, e)
        mention = f"@{comment.author} " if comment.author else ""
        posted = self._pull.create_issue_comment(f"{mention}{body}")
        return str(posted.id)
