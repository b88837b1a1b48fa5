"""Evaluation model: a scored review that decides approval or archival."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator

from ideario.models.idea import IdeaStatus
from ideario.models.user import UserSummary

# An evaluation can only approve or archive
DECISIONS = frozenset({IdeaStatus.APROVADA, IdeaStatus.ARQUIVADA})


class Evaluation(BaseModel):
    """An append-only evaluation record."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    ideia_id: str
    avaliador_id: str
    nota_clareza_objetivos: int = Field(ge=1, le=5)
    nota_analise_negocio: int = Field(ge=1, le=5)
    nota_viabilidade_tecnica: int = Field(ge=1, le=5)
    decisao: IdeaStatus
    justificativa: str | None = None
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    # Resolved from usuarios when read, never stored
    avaliador: UserSummary | None = None

    @field_validator("decisao")
    @classmethod
    def _check_decision(cls, value: IdeaStatus) -> IdeaStatus:
        if value not in DECISIONS:
            raise ValueError(f"decisao must be one of {sorted(DECISIONS)}")
        return value

    @property
    def scores(self) -> tuple[int, int, int]:
        return (
            self.nota_clareza_objetivos,
            self.nota_analise_negocio,
            self.nota_viabilidade_tecnica,
        )

    @property
    def media(self) -> float:
        return round(sum(self.scores) / len(self.scores), 2)

    def to_storage(self) -> dict:
        return self.model_dump(mode="json", exclude={"avaliador"})

    def to_response(self) -> dict:
        return {
            "_v": "1.0",
            "id": self.id,
            "ideia_id": self.ideia_id,
            "avaliador_id": self.avaliador_id,
            "avaliador": self.avaliador.to_response() if self.avaliador else None,
            "nota_clareza_objetivos": self.nota_clareza_objetivos,
            "nota_analise_negocio": self.nota_analise_negocio,
            "nota_viabilidade_tecnica": self.nota_viabilidade_tecnica,
            "media": self.media,
            "decisao": self.decisao.value,
            "justificativa": self.justificativa,
            "created_at": self.created_at,
        }
