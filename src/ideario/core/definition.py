"""Definition completeness tracking and the definition checklist."""

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel

from ideario.core.records import build, load_idea, parse_record
from ideario.errors import NotFound, ValidationError
from ideario.events.bus import EventBus
from ideario.events.types import EventType
from ideario.models.definition import (
    DEFINITION_FIELDS,
    FLAG_FIELDS,
    TEXT_FIELDS,
    ChecklistItem,
    DefinitionDocument,
)
from ideario.models.user import User
from ideario.storage.base import PersistenceGateway

logger = logging.getLogger(__name__)

DEFINITIONS = "definicao_produto"
CHECKLIST = "checklist_definicao"

# Keys a caller may echo back from a loaded document; they are recomputed on save
_DERIVED_KEYS = frozenset({"ideia_id", "progresso_percentual", "updated_at"})

DEFAULT_CHECKLIST: tuple[tuple[str, str], ...] = (
    ("Encaixe Organizacional", "Alinhamento estratégico definido"),
    ("Encaixe Organizacional", "Capacidade técnica avaliada"),
    ("Encaixe Organizacional", "Recursos disponíveis identificados"),
    ("Análise de Mercado", "Público-alvo definido"),
    ("Análise de Mercado", "Mercado mapeado"),
    ("Proposta de Valor", "Hipóteses de valor documentadas"),
    ("Proposta de Valor", "Estimativa de rentabilidade feita"),
)


def compute_progress(doc: Mapping[str, Any] | BaseModel) -> int:
    """Percentage of the eight definition fields that are filled.

    Text fields count when non-blank, flags when truthy. Halves round up,
    so one field of eight is 13%.
    """
    data = doc.model_dump() if isinstance(doc, BaseModel) else doc
    filled = sum(1 for name in TEXT_FIELDS if str(data.get(name) or "").strip())
    filled += sum(1 for name in FLAG_FIELDS if data.get(name))
    return int(filled * 100 / len(DEFINITION_FIELDS) + 0.5)


class DefinitionTracker:
    """Loads, edits and saves definition documents and their checklist."""

    def __init__(self, gateway: PersistenceGateway, event_bus: EventBus) -> None:
        self._gateway = gateway
        self._event_bus = event_bus

    @staticmethod
    def edit(doc: DefinitionDocument, **changes: Any) -> DefinitionDocument:
        """Return a copy of the document with changes applied and progress recomputed."""
        unknown = set(changes) - set(DEFINITION_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown definition fields: {sorted(unknown)}")

        data = {**doc.model_dump(), **changes}
        data["progresso_percentual"] = compute_progress(data)
        return build(DefinitionDocument, **data)

    async def get(self, idea_id: str) -> DefinitionDocument:
        """The stored definition, or an empty one if none was saved yet."""
        data = await self._gateway.get(DEFINITIONS, idea_id)
        if data is None:
            return DefinitionDocument(ideia_id=idea_id)
        return parse_record(DefinitionDocument, data)

    async def save(
        self,
        idea_id: str,
        definition: DefinitionDocument | Mapping[str, Any],
        actor: User,
    ) -> DefinitionDocument:
        """Persist all eight fields and the recomputed progress.

        Raises:
            NotFound: If the idea does not exist
            ValidationError: If a field has the wrong type
        """
        await load_idea(self._gateway, idea_id)

        if isinstance(definition, DefinitionDocument):
            fields = definition.fields()
        else:
            unknown = set(definition) - set(DEFINITION_FIELDS) - _DERIVED_KEYS
            if unknown:
                raise ValidationError(f"Unknown definition fields: {sorted(unknown)}")
            fields = {k: v for k, v in definition.items() if k in DEFINITION_FIELDS}

        doc = build(
            DefinitionDocument,
            ideia_id=idea_id,
            **fields,
            progresso_percentual=compute_progress(fields),
            updated_at=datetime.now(UTC).isoformat(),
        )
        await self._gateway.upsert(DEFINITIONS, doc.to_storage())
        logger.info(
            "Saved definition for idea %s (%d%%) by %s", idea_id, doc.progresso_percentual, actor.id
        )

        await self._event_bus.emit(
            EventType.DEFINITION_SAVED,
            {
                "idea_id": idea_id,
                "progresso_percentual": doc.progresso_percentual,
                "actor_id": actor.id,
            },
        )
        return doc

    # --- Checklist ---

    async def list_checklist(self, idea_id: str) -> list[ChecklistItem]:
        rows = await self._gateway.query(
            CHECKLIST, filters={"ideia_id": idea_id}, order_by="created_at"
        )
        items = [parse_record(ChecklistItem, row) for row in rows]
        return sorted(items, key=lambda i: i.categoria)

    async def add_checklist_item(self, idea_id: str, categoria: str, item: str) -> ChecklistItem:
        if not categoria or not categoria.strip():
            raise ValidationError("categoria cannot be empty")
        if not item or not item.strip():
            raise ValidationError("item cannot be empty")
        await load_idea(self._gateway, idea_id)

        entry = ChecklistItem(ideia_id=idea_id, categoria=categoria.strip(), item=item.strip())
        await self._gateway.insert(CHECKLIST, entry.to_storage())
        await self._emit_checklist(idea_id)
        return entry

    async def set_checklist_item(self, item_id: str, concluido: bool) -> ChecklistItem:
        updated = await self._gateway.update(CHECKLIST, item_id, {"concluido": bool(concluido)})
        if updated is None:
            raise NotFound("checklist item", item_id)
        entry = parse_record(ChecklistItem, updated)
        await self._emit_checklist(entry.ideia_id)
        return entry

    async def delete_checklist_item(self, item_id: str) -> None:
        data = await self._gateway.get(CHECKLIST, item_id)
        if data is None or not await self._gateway.delete(CHECKLIST, item_id):
            raise NotFound("checklist item", item_id)
        await self._emit_checklist(data["ideia_id"])

    async def create_default_checklist(self, idea_id: str) -> list[ChecklistItem]:
        """Seed the standard definition checklist for an idea."""
        await load_idea(self._gateway, idea_id)
        items = [
            ChecklistItem(ideia_id=idea_id, categoria=categoria, item=item)
            for categoria, item in DEFAULT_CHECKLIST
        ]
        for entry in items:
            await self._gateway.insert(CHECKLIST, entry.to_storage())
        logger.info("Seeded %d checklist items for idea %s", len(items), idea_id)
        await self._emit_checklist(idea_id)
        return items

    async def _emit_checklist(self, idea_id: str) -> None:
        await self._event_bus.emit(EventType.CHECKLIST_UPDATED, {"idea_id": idea_id})
