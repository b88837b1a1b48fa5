"""User directory: profile lookup, profile edits and avatars.

Avatars live at ``avatars/<user_id>.<ext>`` and are overwritten in place, so
a user has at most one avatar per extension; older ones under a different
extension are removed once the new one is on the profile.
"""

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from ideario.config import DEFAULT_ALLOWED_MIME_TYPES
from ideario.core.records import USERS, parse_record
from ideario.errors import FileTooLarge, NotFound, UnsupportedType, ValidationError
from ideario.events.bus import EventBus
from ideario.events.types import EventType
from ideario.models.attachment import UploadFile
from ideario.models.user import User
from ideario.storage.base import ObjectStore, PersistenceGateway

logger = logging.getLogger(__name__)

AVATAR_PREFIX = "avatars"
DEFAULT_AVATAR_BUCKET = "avatars"
DEFAULT_AVATAR_MAX_BYTES = 2 * 1024 * 1024
AVATAR_TYPES = tuple(t for t in DEFAULT_ALLOWED_MIME_TYPES if t.startswith("image/"))


class UserDirectory:
    """Reads and edits user profiles."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        objects: ObjectStore,
        event_bus: EventBus,
        *,
        bucket: str = DEFAULT_AVATAR_BUCKET,
        max_bytes: int = DEFAULT_AVATAR_MAX_BYTES,
        allowed_types: Iterable[str] = AVATAR_TYPES,
    ) -> None:
        self._gateway = gateway
        self._objects = objects
        self._event_bus = event_bus
        self.bucket = bucket
        self.max_bytes = max_bytes
        self.allowed_types = frozenset(allowed_types)

    async def get_user(self, user_id: str) -> User:
        """Raises NotFound if no user has this id."""
        data = await self._gateway.get(USERS, user_id)
        if data is None:
            raise NotFound("user", user_id)
        return parse_record(User, data)

    async def update_profile(
        self,
        user_id: str,
        *,
        nome: str | None = None,
        avatar_url: str | None = None,
    ) -> User:
        """Change the display name and/or avatar URL.

        A field left as None keeps its value; an empty ``avatar_url`` clears
        the avatar.

        Raises:
            ValidationError: If nome is given but blank, or nothing is given
            NotFound: If the user does not exist
        """
        updates: dict[str, Any] = {}
        if nome is not None:
            if not nome.strip():
                raise ValidationError("nome cannot be empty")
            updates["nome"] = nome.strip()
        if avatar_url is not None:
            updates["avatar_url"] = avatar_url.strip() or None
        if not updates:
            raise ValidationError("Nothing to update: give nome or avatar_url")

        updates["updated_at"] = datetime.now(UTC).isoformat()
        data = await self._gateway.update(USERS, user_id, updates)
        if data is None:
            raise NotFound("user", user_id)

        user = parse_record(User, data)
        logger.info("Profile of %s updated (%s)", user_id, ", ".join(sorted(updates)))
        await self._event_bus.emit(
            EventType.USER_PROFILE_UPDATED,
            {"user_id": user_id, "fields": sorted(k for k in updates if k != "updated_at")},
        )
        return user

    async def upload_avatar(self, user_id: str, file: UploadFile) -> User:
        """Store an avatar image and point the profile at its public URL.

        Raises:
            FileTooLarge: If the image exceeds ``max_bytes``
            UnsupportedType: If the file is not an allowed image type
            NotFound: If the user does not exist
        """
        if file.size > self.max_bytes:
            raise FileTooLarge(
                f"{file.name} is {file.size} bytes; the avatar limit is {self.max_bytes} bytes"
            )
        if file.mime_type not in self.allowed_types:
            raise UnsupportedType(f"Avatar must be an image, got {file.mime_type}")

        await self.get_user(user_id)

        path = f"{AVATAR_PREFIX}/{user_id}.{file.extension}"
        await self._objects.upload_object(
            self.bucket, path, file.data, file.mime_type, upsert=True
        )
        logger.info("Stored avatar of %s at %s (%d bytes)", user_id, path, file.size)

        user = await self.update_profile(
            user_id, avatar_url=self._objects.public_url(self.bucket, path)
        )
        await self._remove_stale_avatars(user_id, keep=path)
        return user

    async def _remove_stale_avatars(self, user_id: str, *, keep: str) -> None:
        for stale in await self._objects.list_objects(self.bucket, f"{AVATAR_PREFIX}/{user_id}."):
            if stale != keep:
                await self._objects.delete_object(self.bucket, stale)
                logger.info("Removed previous avatar %s", stale)
