"""Idea model and lifecycle statuses."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class IdeaStatus(StrEnum):
    GERACAO = "Geração"
    EM_DEFINICAO = "Em Definição"
    PRONTA_PARA_AVALIACAO = "Pronta para Avaliação"
    APROVADA = "Aprovada"
    ARQUIVADA = "Arquivada"


VALID_STATUSES = frozenset(IdeaStatus)

# Statuses in which nobody may take ownership any more
CLOSED_STATUSES = frozenset({IdeaStatus.APROVADA, IdeaStatus.ARQUIVADA})

# Counters materialized by the gateway's counter view, never written back
DERIVED_FIELDS = frozenset({"votos", "comentarios"})


def normalize_tags(tags: list[str] | set[str] | None) -> list[str]:
    """Lower-case, trim and de-duplicate tags. Order is not significant."""
    if not tags:
        return []
    return sorted({t.strip().lower() for t in tags if t and t.strip()})


class Idea(BaseModel):
    """An idea tracked from intake to approval or archival."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    titulo: str
    descricao: str
    fonte: str | None = None
    segmento: str | None = None
    impacto: str | None = None
    tags: list[str] = Field(default_factory=list)
    status: IdeaStatus = IdeaStatus.GERACAO
    autor_id: str
    owner_id: str | None = None
    justificativa_rejeicao: str | None = None
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    updated_at: str | None = None

    votos: int = 0
    comentarios: int = 0

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> list[str]:
        return normalize_tags(value)

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES

    def is_responsible(self, user_id: str) -> bool:
        """True when the user is the idea's owner or its author."""
        return user_id in {self.owner_id, self.autor_id}

    def to_storage(self) -> dict:
        return self.model_dump(mode="json", exclude=set(DERIVED_FIELDS))

    def to_response(self, *, detail: str = "summary") -> dict[str, Any]:
        data: dict[str, Any] = {
            "_v": "1.0",
            "id": self.id,
            "titulo": self.titulo,
            "status": self.status.value,
            "votos": self.votos,
            "comentarios": self.comentarios,
        }
        if detail != "summary":
            data.update(
                {
                    "descricao": self.descricao,
                    "fonte": self.fonte,
                    "segmento": self.segmento,
                    "impacto": self.impacto,
                    "tags": self.tags,
                    "autor_id": self.autor_id,
                    "owner_id": self.owner_id,
                    "justificativa_rejeicao": self.justificativa_rejeicao,
                    "created_at": self.created_at,
                    "updated_at": self.updated_at,
                }
            )
        return data
