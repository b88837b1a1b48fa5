"""Event type constants for Ideario."""

from enum import StrEnum


class EventType(StrEnum):
    IDEA_CREATED = "idea.created"
    IDEA_STATUS_CHANGED = "idea.status_changed"
    IDEA_OWNER_ASSIGNED = "idea.owner_assigned"

    EVALUATION_RECORDED = "evaluation.recorded"

    VOTE_ADDED = "vote.added"
    VOTE_REMOVED = "vote.removed"

    COMMENT_ADDED = "comment.added"
    COMMENT_DELETED = "comment.deleted"

    DEFINITION_SAVED = "definition.saved"
    CHECKLIST_UPDATED = "checklist.updated"

    ATTACHMENT_UPLOADED = "attachment.uploaded"
    ATTACHMENT_DELETED = "attachment.deleted"

    SESSION_CHANGED = "session.changed"
    USER_PROFILE_UPDATED = "user.profile_updated"
