"""Definition document and checklist models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field

TEXT_FIELDS: tuple[str, ...] = (
    "alinhamento_estrategico",
    "publico_alvo",
    "mercado",
    "hipoteses_valor",
    "estimativa_rentabilidade",
)

FLAG_FIELDS: tuple[str, ...] = (
    "capacidade_tecnica",
    "capacidade_operacional",
    "capacidade_recursos",
)

DEFINITION_FIELDS: tuple[str, ...] = TEXT_FIELDS + FLAG_FIELDS


class DefinitionDocument(BaseModel):
    """Structured elaboration of an idea (one per idea)."""

    ideia_id: str
    alinhamento_estrategico: str | None = None
    publico_alvo: str | None = None
    mercado: str | None = None
    hipoteses_valor: str | None = None
    estimativa_rentabilidade: str | None = None
    capacidade_tecnica: bool = False
    capacidade_operacional: bool = False
    capacidade_recursos: bool = False
    progresso_percentual: int = Field(default=0, ge=0, le=100)
    updated_at: str | None = None

    def fields(self) -> dict:
        """The eight user-editable fields."""
        return self.model_dump(include=set(DEFINITION_FIELDS))

    def to_storage(self) -> dict:
        return self.model_dump()

    def to_response(self) -> dict:
        return {"_v": "1.0", **self.model_dump()}


class ChecklistItem(BaseModel):
    """A to-do item in an idea's definition checklist."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    ideia_id: str
    categoria: str
    item: str
    concluido: bool = False
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_storage(self) -> dict:
        return self.model_dump()

    def to_response(self) -> dict:
        return {
            "_v": "1.0",
            "id": self.id,
            "categoria": self.categoria,
            "item": self.item,
            "concluido": self.concluido,
        }
