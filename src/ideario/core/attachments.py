"""Attachment management.

Binaries go to the object store, metadata to the ``anexos`` collection. The
binary is always written first and deleted first; a failure between the two
steps leaves at most an orphan blob or a dangling row, both of which
:meth:`AttachmentManager.reconcile` cleans up.
"""

import logging
import secrets
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from ideario.auth.permissions import can_delete_attachment
from ideario.config import DEFAULT_ALLOWED_MIME_TYPES
from ideario.core.records import build, load_idea, parse_record, user_summaries
from ideario.errors import (
    BackendError,
    FileTooLarge,
    NotFound,
    ObjectExistsError,
    PermissionDenied,
    UnsupportedType,
)
from ideario.events.bus import EventBus
from ideario.events.types import EventType
from ideario.models.attachment import Attachment, UploadFile
from ideario.models.user import User
from ideario.storage.base import ObjectStore, PersistenceGateway

logger = logging.getLogger(__name__)

ATTACHMENTS = "anexos"
PATH_PREFIX = "anexos"

DEFAULT_BUCKET = "anexos-ideias"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024


def _random_suffix() -> str:
    return secrets.token_hex(3)


def _epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ReconcileReport:
    """Outcome of a reconciliation pass."""

    orphan_blobs: list[str] = field(default_factory=list)
    dangling_rows: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.orphan_blobs and not self.dangling_rows

    def to_response(self) -> dict:
        return {
            "_v": "1.0",
            "orphan_blobs": self.orphan_blobs,
            "dangling_rows": self.dangling_rows,
        }


class AttachmentManager:
    """Uploads, lists and deletes attachments of an idea."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        objects: ObjectStore,
        event_bus: EventBus,
        *,
        bucket: str = DEFAULT_BUCKET,
        max_bytes: int = DEFAULT_MAX_BYTES,
        allowed_types: Iterable[str] = DEFAULT_ALLOWED_MIME_TYPES,
        path_attempts: int = 3,
        suffix_factory: Callable[[], str] = _random_suffix,
        clock_ms: Callable[[], int] = _epoch_ms,
    ) -> None:
        self._gateway = gateway
        self._objects = objects
        self._event_bus = event_bus
        self.bucket = bucket
        self.max_bytes = max_bytes
        self.allowed_types = frozenset(allowed_types)
        self.path_attempts = max(1, path_attempts)
        self._suffix_factory = suffix_factory
        self._clock_ms = clock_ms

    def storage_path_for(self, idea_id: str, file: UploadFile) -> str:
        """A fresh storage path: ``anexos/<idea>/<epoch_ms>_<suffix>.<ext>``."""
        return (
            f"{PATH_PREFIX}/{idea_id}/{self._clock_ms()}_{self._suffix_factory()}"
            f".{file.extension}"
        )

    async def upload(self, idea_id: str, file: UploadFile, uploader: User) -> Attachment:
        """Store a file and record its metadata.

        Raises:
            FileTooLarge: If the file exceeds ``max_bytes``
            UnsupportedType: If the MIME type is not allowed
            NotFound: If the idea does not exist
            BackendError: If no free storage path was found or a store failed
        """
        if file.size > self.max_bytes:
            raise FileTooLarge(
                f"{file.name} is {file.size} bytes; the limit is {self.max_bytes} bytes"
            )
        if file.mime_type not in self.allowed_types:
            raise UnsupportedType(f"File type not allowed: {file.mime_type}")

        await load_idea(self._gateway, idea_id)

        path = await self._store_blob(idea_id, file)

        attachment = build(
            Attachment,
            ideia_id=idea_id,
            nome_arquivo=file.name,
            storage_path=path,
            tipo_mime=file.mime_type,
            tamanho_bytes=file.size,
            uploaded_by=uploader.id,
            uploader=uploader.summary(),
        )
        try:
            await self._gateway.insert(ATTACHMENTS, attachment.to_storage())
        except Exception:
            await self._discard_blob(path)
            raise

        logger.info(
            "Uploaded %s (%d bytes) to idea %s as %s", file.name, file.size, idea_id, path
        )
        await self._event_bus.emit(
            EventType.ATTACHMENT_UPLOADED,
            {
                "idea_id": idea_id,
                "attachment_id": attachment.id,
                "nome_arquivo": file.name,
                "uploaded_by": uploader.id,
            },
        )
        return attachment

    async def delete(self, attachment_id: str, actor: User) -> None:
        """Remove the binary, then the metadata row.

        Raises:
            NotFound: If the attachment does not exist
            PermissionDenied: If the actor is neither uploader, owner nor author
        """
        attachment = await self.get(attachment_id)
        idea = await load_idea(self._gateway, attachment.ideia_id)
        if not can_delete_attachment(actor.id, attachment, idea):
            raise PermissionDenied(f"Not allowed to delete attachment {attachment_id}")

        removed = await self._objects.delete_object(self.bucket, attachment.storage_path)
        if not removed:
            logger.warning("Blob %s was already gone", attachment.storage_path)

        await self._gateway.delete(ATTACHMENTS, attachment_id)
        logger.info("Deleted attachment %s from idea %s", attachment_id, attachment.ideia_id)

        await self._event_bus.emit(
            EventType.ATTACHMENT_DELETED,
            {"idea_id": attachment.ideia_id, "attachment_id": attachment_id, "actor_id": actor.id},
        )

    async def get(self, attachment_id: str) -> Attachment:
        data = await self._gateway.get(ATTACHMENTS, attachment_id)
        if data is None:
            raise NotFound("attachment", attachment_id)
        return parse_record(Attachment, data)

    async def list_attachments(self, idea_id: str) -> list[Attachment]:
        """Attachments of an idea, newest first, each with its uploader's profile."""
        rows = await self._gateway.query(
            ATTACHMENTS,
            filters={"ideia_id": idea_id},
            order_by="created_at",
            descending=True,
        )
        uploaders = await user_summaries(self._gateway, (r["uploaded_by"] for r in rows))
        return [
            parse_record(Attachment, {**row, "uploader": uploaders.get(row["uploaded_by"])})
            for row in rows
        ]

    async def download(self, attachment_id: str) -> tuple[Attachment, bytes]:
        attachment = await self.get(attachment_id)
        data = await self._objects.download_object(self.bucket, attachment.storage_path)
        return attachment, data

    def public_url(self, attachment: Attachment) -> str:
        return self._objects.public_url(self.bucket, attachment.storage_path)

    async def reconcile(
        self, idea_id: str | None = None, *, grace_seconds: int = 300
    ) -> ReconcileReport:
        """Remove orphan blobs and dangling metadata rows.

        Blobs younger than ``grace_seconds`` are left alone, since their
        metadata row may still be on its way.

        Rows are read before blobs are listed. Uploads write the blob before
        the row, so every row read here already had its blob in place, and a
        row whose blob is missing from the later listing is truly dangling.
        """
        filters = {"ideia_id": idea_id} if idea_id else None
        records = await self._gateway.query(ATTACHMENTS, filters=filters)
        rows = [parse_record(Attachment, r) for r in records]
        known_paths = {row.storage_path for row in rows}

        prefix = f"{PATH_PREFIX}/{idea_id}/" if idea_id else f"{PATH_PREFIX}/"
        blobs = set(await self._objects.list_objects(self.bucket, prefix))

        report = ReconcileReport()
        cutoff = self._clock_ms() - grace_seconds * 1000
        for path in sorted(blobs - known_paths):
            created = _path_timestamp(path)
            if created is not None and created > cutoff:
                continue
            await self._objects.delete_object(self.bucket, path)
            report.orphan_blobs.append(path)

        for row in rows:
            if row.storage_path not in blobs:
                await self._gateway.delete(ATTACHMENTS, row.id)
                report.dangling_rows.append(row.id)

        if report.clean:
            logger.debug("Reconcile found nothing to clean under %s", prefix)
        else:
            logger.info(
                "Reconcile removed %d orphan blobs and %d dangling rows under %s",
                len(report.orphan_blobs),
                len(report.dangling_rows),
                prefix,
            )
        return report

    async def _store_blob(self, idea_id: str, file: UploadFile) -> str:
        """Write the binary at a fresh path, retrying on collision."""
        for attempt in range(1, self.path_attempts + 1):
            path = self.storage_path_for(idea_id, file)
            try:
                await self._objects.upload_object(self.bucket, path, file.data, file.mime_type)
                return path
            except ObjectExistsError:
                logger.warning(
                    "Storage path %s taken (attempt %d/%d)", path, attempt, self.path_attempts
                )
        raise BackendError(
            f"Could not find a free storage path for {file.name} after "
            f"{self.path_attempts} attempts"
        )

    async def _discard_blob(self, path: str) -> None:
        try:
            await self._objects.delete_object(self.bucket, path)
            logger.info("Removed blob %s after metadata insert failed", path)
        except BackendError as e:
            logger.error("Could not remove orphan blob %s: %s", path, e)


def _path_timestamp(path: str) -> int | None:
    """The epoch-ms prefix of a stored file name, if it has one."""
    name = path.rsplit("/", 1)[-1]
    head = name.split("_", 1)[0]
    return int(head) if head.isdigit() else None
