"""Engagement ledger: votes and comments on ideas.

Vote and comment totals are never cached here; they are read back from the
gateway's counter view whenever an idea is fetched.
"""

import logging

from ideario.auth.permissions import can_delete_comment
from ideario.core.records import build, load_idea, parse_record, user_summaries
from ideario.errors import BackendError, ConflictError, NotFound, PermissionDenied, ValidationError
from ideario.events.bus import EventBus
from ideario.events.types import EventType
from ideario.models.engagement import Comment, Vote
from ideario.models.user import User
from ideario.storage.base import PersistenceGateway

logger = logging.getLogger(__name__)

VOTES = "votos"
COMMENTS = "comentarios"


class EngagementLedger:
    """Vote toggling and comment bookkeeping."""

    def __init__(self, gateway: PersistenceGateway, event_bus: EventBus) -> None:
        self._gateway = gateway
        self._event_bus = event_bus

    async def has_voted(self, idea_id: str, user_id: str) -> bool:
        """Whether the user has voted on the idea.

        A failing lookup reads as "not voted" so that a flaky backend never
        blocks the page showing the idea.
        """
        try:
            return await self._vote_exists(idea_id, user_id)
        except BackendError as e:
            logger.warning("Vote check failed for idea %s / user %s: %s", idea_id, user_id, e)
            return False

    async def toggle_vote(self, idea_id: str, user_id: str) -> bool:
        """Add the user's vote if absent, remove it if present.

        Returns:
            True if the user has now voted, False if the vote was removed

        Raises:
            NotFound: If the idea does not exist
        """
        await load_idea(self._gateway, idea_id)

        if await self._vote_exists(idea_id, user_id):
            await self._gateway.delete_where(
                VOTES, {"ideia_id": idea_id, "usuario_id": user_id}
            )
            logger.info("Vote removed: idea %s, user %s", idea_id, user_id)
            await self._event_bus.emit(
                EventType.VOTE_REMOVED, {"idea_id": idea_id, "user_id": user_id}
            )
            return False

        vote = Vote(ideia_id=idea_id, usuario_id=user_id)
        try:
            await self._gateway.insert(VOTES, vote.to_storage())
        except ConflictError:
            # The (idea, user) key is unique; a concurrent toggle got there first
            logger.info("Vote already present for idea %s, user %s", idea_id, user_id)
            return True

        logger.info("Vote added: idea %s, user %s", idea_id, user_id)
        await self._event_bus.emit(EventType.VOTE_ADDED, {"idea_id": idea_id, "user_id": user_id})
        return True

    async def vote_count(self, idea_id: str) -> int:
        return await self._gateway.count(VOTES, filters={"ideia_id": idea_id})

    async def add_comment(self, idea_id: str, author: User, conteudo: str) -> Comment:
        """Add a comment to an idea.

        Raises:
            ValidationError: If the content is blank
            NotFound: If the idea does not exist
        """
        if not conteudo or not conteudo.strip():
            raise ValidationError("Comment cannot be empty")

        await load_idea(self._gateway, idea_id)

        comment = build(
            Comment,
            ideia_id=idea_id,
            autor_id=author.id,
            autor=author.summary(),
            conteudo=conteudo.strip(),
        )
        await self._gateway.insert(COMMENTS, comment.to_storage())
        logger.info("Comment %s added to idea %s by %s", comment.id, idea_id, author.id)

        await self._event_bus.emit(
            EventType.COMMENT_ADDED,
            {"idea_id": idea_id, "comment_id": comment.id, "autor_id": author.id},
        )
        return comment

    async def list_comments(self, idea_id: str) -> list[Comment]:
        """Comments on an idea, newest first, each with its author's profile."""
        rows = await self._gateway.query(
            COMMENTS,
            filters={"ideia_id": idea_id},
            order_by="created_at",
            descending=True,
        )
        authors = await user_summaries(self._gateway, (r["autor_id"] for r in rows))
        return [
            parse_record(Comment, {**row, "autor": authors.get(row["autor_id"])}) for row in rows
        ]

    async def delete_comment(self, comment_id: str, actor: User) -> None:
        """Delete a comment. Only its author may do so.

        Raises:
            NotFound: If the comment does not exist
            PermissionDenied: If the actor did not write the comment
        """
        data = await self._gateway.get(COMMENTS, comment_id)
        if data is None:
            raise NotFound("comment", comment_id)
        comment = parse_record(Comment, data)

        if not can_delete_comment(actor.id, comment):
            raise PermissionDenied(f"Only the author can delete comment {comment_id}")

        if not await self._gateway.delete(COMMENTS, comment_id):
            raise NotFound("comment", comment_id)

        logger.info("Comment %s deleted by %s", comment_id, actor.id)
        await self._event_bus.emit(
            EventType.COMMENT_DELETED,
            {"idea_id": comment.ideia_id, "comment_id": comment_id, "actor_id": actor.id},
        )

    async def _vote_exists(self, idea_id: str, user_id: str) -> bool:
        count = await self._gateway.count(
            VOTES, filters={"ideia_id": idea_id, "usuario_id": user_id}
        )
        return count > 0
