"""Ideario data models."""

from ideario.models.attachment import Attachment, UploadFile
from ideario.models.definition import ChecklistItem, DefinitionDocument
from ideario.models.engagement import Comment, Vote
from ideario.models.evaluation import Evaluation
from ideario.models.idea import Idea, IdeaStatus
from ideario.models.user import Session, User, UserSummary

__all__ = [
    "Attachment",
    "ChecklistItem",
    "Comment",
    "DefinitionDocument",
    "Evaluation",
    "Idea",
    "IdeaStatus",
    "Session",
    "UploadFile",
    "User",
    "UserSummary",
    "Vote",
]
