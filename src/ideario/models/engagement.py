"""Vote and comment models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from ideario.models.user import UserSummary


class Vote(BaseModel):
    """A user's vote on an idea. Identity is the (ideia_id, usuario_id) pair."""

    ideia_id: str
    usuario_id: str
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_storage(self) -> dict:
        return self.model_dump()


class Comment(BaseModel):
    """A free-text comment owned by its author."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    ideia_id: str
    autor_id: str
    conteudo: str
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    # Resolved from usuarios when read, never stored
    autor: UserSummary | None = None

    def to_storage(self) -> dict:
        return self.model_dump(exclude={"autor"})

    def to_response(self) -> dict:
        return {
            "_v": "1.0",
            "id": self.id,
            "ideia_id": self.ideia_id,
            "autor_id": self.autor_id,
            "autor": self.autor.to_response() if self.autor else None,
            "conteudo": self.conteudo,
            "created_at": self.created_at,
        }
