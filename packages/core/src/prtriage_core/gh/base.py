"""Collaborator interfaces the conversation engine talks through.

The engine depends on these ABCs, not on GitHub, so any review platform (or a
test double) can drive a conversation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prtriage_core.models import Comment

# Hidden marker appended to every reply we post, so our own replies are never
# read back as bot messages.
REPLY_MARKER = "<!-- prtriage -->"


class CommentSource(ABC):
    @abstractmethod
    def list_comments(self) -> list[Comment]:
        """Return every comment of the review thread, normalized, oldest first.

        Includes inline replies attached to a parent review.
        """

    def fetch_replies(self, comment: Comment, since: datetime | None = None) -> list[Comment]:
        """Return replies to ``comment`` newer than ``since``, oldest first.

        Default implementation filters ``list_comments``; platforms with a
        cheaper thread query may override it.
        """
        # Inline threads hang off their root comment; top-level comments share one flat thread.
        thread = comment.in_reply_to or comment.id
        replies = [
            c
            for c in self.list_comments()
            if c.id != comment.id
            and REPLY_MARKER not in c.body
            and (c.in_reply_to == thread if comment.path is not None else c.path is None)
            and (since is None or c.timestamp > since)
        ]
        return sorted(replies, key=lambda c: c.timestamp)


class Responder(ABC):
    @abstractmethod
    def post_reply(self, comment: Comment, body: str) -> str:
        """Post ``body`` as a reply to ``comment`` and return a handle (the new comment id).

        Should raise on failure; the conversation engine surfaces the error to
        its caller.
        """
