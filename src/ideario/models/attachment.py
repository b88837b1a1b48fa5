"""Attachment metadata model. The binary lives in the object store."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import PurePosixPath

from pydantic import BaseModel, Field

from ideario.models.user import UserSummary


@dataclass(frozen=True)
class UploadFile:
    """An incoming file: original name, MIME type and payload."""

    name: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        suffix = PurePosixPath(self.name).suffix
        return suffix[1:].lower() if suffix else "bin"


class Attachment(BaseModel):
    """Metadata row for a stored file."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    ideia_id: str
    nome_arquivo: str
    storage_path: str
    tipo_mime: str
    tamanho_bytes: int = Field(ge=0)
    uploaded_by: str
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    # Resolved from usuarios when read, never stored
    uploader: UserSummary | None = None

    def to_storage(self) -> dict:
        return self.model_dump(exclude={"uploader"})

    def to_response(self, *, url: str | None = None) -> dict:
        data = {
            "_v": "1.0",
            "id": self.id,
            "nome_arquivo": self.nome_arquivo,
            "tipo_mime": self.tipo_mime,
            "tamanho_bytes": self.tamanho_bytes,
            "uploaded_by": self.uploaded_by,
            "uploader": self.uploader.to_response() if self.uploader else None,
            "created_at": self.created_at,
        }
        if url:
            data["url"] = url
        return data
