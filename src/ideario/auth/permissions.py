"""Authorization rules for idea, comment and attachment actions."""

from __future__ import annotations

from ideario.models.attachment import Attachment
from ideario.models.engagement import Comment
from ideario.models.idea import Idea


def can_transition(user_id: str, idea: Idea) -> bool:
    """Only the idea's owner or its author may move it through the lifecycle."""
    return idea.is_responsible(user_id)


def can_assume_ownership(idea: Idea) -> bool:
    """An idea can be claimed while unowned and not yet approved or archived."""
    return idea.owner_id is None and not idea.is_closed


def can_delete_comment(user_id: str, comment: Comment) -> bool:
    """Comments can only be deleted by whoever wrote them."""
    return comment.autor_id == user_id


def can_delete_attachment(user_id: str, attachment: Attachment, idea: Idea) -> bool:
    """The uploader, the idea's owner or its author may remove an attachment."""
    return attachment.uploaded_by == user_id or idea.is_responsible(user_id)
