"""Application context: session state, idea cache and orchestration calls.

The context is the single owner of the current session and of the cached
idea list. It is populated when a session starts and cleared on sign-out;
engines receive their collaborators through it instead of reaching for
module-level state.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from ideario.auth.provider import SIGNED_IN, SIGNED_OUT, AuthProvider, LocalAuthProvider
from ideario.config import Config
from ideario.core.attachments import AttachmentManager
from ideario.core.definition import DefinitionTracker
from ideario.core.engagement import EngagementLedger
from ideario.core.lifecycle import IdeaEngine
from ideario.core.users import UserDirectory
from ideario.errors import PermissionDenied
from ideario.events.bus import EventBus
from ideario.events.types import EventType
from ideario.models.attachment import Attachment, UploadFile
from ideario.models.definition import DefinitionDocument
from ideario.models.engagement import Comment
from ideario.models.evaluation import Evaluation
from ideario.models.idea import Idea, IdeaStatus
from ideario.models.user import Session, User
from ideario.storage.base import ObjectStore, PersistenceGateway
from ideario.storage.object_store import LocalObjectStore
from ideario.storage.sqlite_store import SQLiteGateway

logger = logging.getLogger(__name__)


class AppContext:
    """Explicit application state shared by every orchestration call."""

    def __init__(
        self,
        *,
        gateway: PersistenceGateway,
        objects: ObjectStore,
        auth: AuthProvider,
        event_bus: EventBus,
        lifecycle: IdeaEngine,
        engagement: EngagementLedger,
        definitions: DefinitionTracker,
        attachments: AttachmentManager,
        users: UserDirectory,
    ) -> None:
        self.gateway = gateway
        self.objects = objects
        self.auth = auth
        self.event_bus = event_bus
        self.lifecycle = lifecycle
        self.engagement = engagement
        self.definitions = definitions
        self.attachments = attachments
        self.users = users

        self._session: Session | None = None
        self._ideas: list[Idea] = []
        self._unsubscribe: Callable[[], None] | None = None

    @classmethod
    async def open(cls, config: Config) -> AppContext:
        """Build and initialize every collaborator from a config."""
        gateway = SQLiteGateway(config.db_path, wal_mode=config.wal_mode)
        await gateway.initialize()

        objects = LocalObjectStore(config.storage_path, public_base_url=config.public_base_url)
        bus = EventBus()
        auth = LocalAuthProvider(
            gateway, secret=config.jwt_secret, ttl_minutes=config.session_ttl_minutes
        )
        return cls(
            gateway=gateway,
            objects=objects,
            auth=auth,
            event_bus=bus,
            lifecycle=IdeaEngine(gateway, bus),
            engagement=EngagementLedger(gateway, bus),
            definitions=DefinitionTracker(gateway, bus),
            attachments=AttachmentManager(
                gateway,
                objects,
                bus,
                bucket=config.attachments_bucket,
                max_bytes=config.max_upload_bytes,
                allowed_types=config.allowed_mime_types,
                path_attempts=config.upload_path_attempts,
            ),
            users=UserDirectory(
                gateway,
                objects,
                bus,
                bucket=config.avatars_bucket,
                max_bytes=config.max_avatar_bytes,
            ),
        )

    async def start(self) -> None:
        """Follow the auth provider and load any session it already holds."""
        if self._unsubscribe is None:
            self._unsubscribe = self.auth.on_session_change(self._on_session_change)
        session = await self.auth.get_session()
        if session is not None:
            await self._begin(session)

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._end()

    async def close(self) -> None:
        await self.stop()
        await self.gateway.close()

    # --- State ---

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def ideas(self) -> list[Idea]:
        """The cached idea list, newest first. Empty while signed out."""
        return list(self._ideas)

    @property
    def current_user(self) -> User:
        if self._session is None:
            raise PermissionDenied("Sign in first")
        return self._session.user

    async def refresh(self) -> list[Idea]:
        """Reload the idea cache from the gateway."""
        self._ideas = await self.lifecycle.list_ideas()
        logger.debug("Idea cache refreshed (%d ideas)", len(self._ideas))
        return self.ideas

    # --- Orchestration ---

    async def submit_idea(self, titulo: str, descricao: str, **fields: Any) -> Idea:
        idea = await self.lifecycle.create(
            self.current_user, titulo=titulo, descricao=descricao, **fields
        )
        await self.refresh()
        return idea

    async def transition(
        self, idea_id: str, target: IdeaStatus | str, justificativa: str | None = None
    ) -> Idea:
        idea = await self.lifecycle.transition(
            idea_id, target, self.current_user, justificativa=justificativa
        )
        await self.refresh()
        return idea

    async def assume_ownership(self, idea_id: str) -> Idea:
        idea = await self.lifecycle.assume_ownership(idea_id, self.current_user)
        await self.refresh()
        return idea

    async def evaluate(self, idea_id: str, **evaluation: Any) -> Evaluation:
        result = await self.lifecycle.record_evaluation(idea_id, self.current_user, **evaluation)
        await self.refresh()
        return result

    async def toggle_vote(self, idea_id: str) -> bool:
        voted = await self.engagement.toggle_vote(idea_id, self.current_user.id)
        await self.refresh()
        return voted

    async def has_voted(self, idea_id: str) -> bool:
        if self._session is None:
            return False
        return await self.engagement.has_voted(idea_id, self._session.user.id)

    async def comment(self, idea_id: str, conteudo: str) -> Comment:
        comment = await self.engagement.add_comment(idea_id, self.current_user, conteudo)
        await self.refresh()
        return comment

    async def delete_comment(self, comment_id: str) -> None:
        await self.engagement.delete_comment(comment_id, self.current_user)
        await self.refresh()

    async def save_definition(
        self, idea_id: str, definition: DefinitionDocument | Mapping[str, Any]
    ) -> DefinitionDocument:
        return await self.definitions.save(idea_id, definition, self.current_user)

    async def upload_attachment(self, idea_id: str, file: UploadFile) -> Attachment:
        return await self.attachments.upload(idea_id, file, self.current_user)

    async def delete_attachment(self, attachment_id: str) -> None:
        await self.attachments.delete(attachment_id, self.current_user)

    async def update_profile(
        self, *, nome: str | None = None, avatar_url: str | None = None
    ) -> User:
        user = await self.users.update_profile(
            self.current_user.id, nome=nome, avatar_url=avatar_url
        )
        self._replace_user(user)
        return user

    async def upload_avatar(self, file: UploadFile) -> User:
        user = await self.users.upload_avatar(self.current_user.id, file)
        self._replace_user(user)
        return user

    # --- Session tracking ---

    async def _on_session_change(self, event: str, session: Session | None) -> None:
        if event == SIGNED_IN and session is not None:
            await self._begin(session)
        elif event == SIGNED_OUT:
            self._end()
        await self.event_bus.emit(
            EventType.SESSION_CHANGED,
            {"event": event, "user_id": session.user.id if session else None},
        )

    async def _begin(self, session: Session) -> None:
        self._session = session
        logger.info("Session started for %s", session.user.id)
        await self.refresh()

    def _replace_user(self, user: User) -> None:
        if self._session is not None:
            self._session = self._session.model_copy(update={"user": user})

    def _end(self) -> None:
        if self._session is not None:
            logger.info("Session ended for %s", self._session.user.id)
        self._session = None
        self._ideas = []
