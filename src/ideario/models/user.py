"""User and session models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field


class User(BaseModel):
    """An authenticated person. Password hashes never leave the auth layer."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    email: str
    nome: str
    avatar_url: str | None = None
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    updated_at: str | None = None

    def summary(self) -> UserSummary:
        return UserSummary(id=self.id, nome=self.nome, email=self.email, avatar_url=self.avatar_url)

    def to_response(self) -> dict:
        return {
            "_v": "1.0",
            "id": self.id,
            "email": self.email,
            "nome": self.nome,
            "avatar_url": self.avatar_url,
            "updated_at": self.updated_at,
        }


class UserSummary(BaseModel):
    """The public part of a profile, shown next to comments and evaluations."""

    id: str
    nome: str
    email: str
    avatar_url: str | None = None

    def to_response(self) -> dict:
        return self.model_dump()


class Session(BaseModel):
    """An active sign-in: the user plus a bearer token and its expiry."""

    user: User
    access_token: str
    expires_at: int

    def is_expired(self, *, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        return now.timestamp() >= self.expires_at
