"""Idea Lifecycle Engine.

Manages creation, listing, status transitions, ownership and evaluation of
ideas. Status moves forward along a fixed table; the evaluation branch
(approve or archive) can only be taken by recording an Evaluation.
"""

import logging
from collections import Counter
from datetime import UTC, datetime
from typing import Any

from ideario.auth.permissions import can_transition
from ideario.core.records import IDEAS, build, parse_record, user_summaries
from ideario.errors import (
    AlreadyOwned,
    ConflictError,
    InvalidState,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from ideario.events.bus import EventBus
from ideario.events.types import EventType
from ideario.models.evaluation import DECISIONS, Evaluation
from ideario.models.idea import Idea, IdeaStatus
from ideario.models.user import User
from ideario.storage.base import PersistenceGateway, WriteOp

logger = logging.getLogger(__name__)

IDEAS_VIEW = "view_ideias_com_contadores"
EVALUATIONS = "avaliacoes"

# Transitions an owner or author can request directly
DIRECT_TRANSITIONS: dict[IdeaStatus, frozenset[IdeaStatus]] = {
    IdeaStatus.GERACAO: frozenset({IdeaStatus.EM_DEFINICAO}),
    IdeaStatus.EM_DEFINICAO: frozenset({IdeaStatus.PRONTA_PARA_AVALIACAO}),
    IdeaStatus.PRONTA_PARA_AVALIACAO: frozenset(),
    IdeaStatus.APROVADA: frozenset({IdeaStatus.ARQUIVADA}),
    IdeaStatus.ARQUIVADA: frozenset(),
}

# Transitions only an evaluation can trigger
EVALUATION_TRANSITIONS: dict[IdeaStatus, frozenset[IdeaStatus]] = {
    IdeaStatus.PRONTA_PARA_AVALIACAO: frozenset(DECISIONS),
}

ORDERINGS = ("recentes", "antigas", "votos", "comentarios")


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _blank_to_none(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value.strip()


class IdeaEngine:
    """Engine for the idea status/ownership state machine."""

    def __init__(self, gateway: PersistenceGateway, event_bus: EventBus) -> None:
        """Initialize the IdeaEngine.

        Args:
            gateway: Persistence gateway for records
            event_bus: Event bus for emitting lifecycle events
        """
        self._gateway = gateway
        self._event_bus = event_bus

    async def create(
        self,
        actor: User,
        *,
        titulo: str,
        descricao: str,
        fonte: str | None = None,
        segmento: str | None = None,
        impacto: str | None = None,
        tags: list[str] | None = None,
    ) -> Idea:
        """Submit a new idea with status Geração and no owner.

        Raises:
            ValidationError: If titulo or descricao is blank
        """
        if not titulo or not titulo.strip():
            raise ValidationError("titulo cannot be empty")
        if not descricao or not descricao.strip():
            raise ValidationError("descricao cannot be empty")

        idea = build(
            Idea,
            titulo=titulo.strip(),
            descricao=descricao.strip(),
            fonte=_blank_to_none(fonte),
            segmento=_blank_to_none(segmento),
            impacto=_blank_to_none(impacto),
            tags=tags or [],
            status=IdeaStatus.GERACAO,
            autor_id=actor.id,
        )
        await self._gateway.insert(IDEAS, idea.to_storage())
        logger.info("Created idea %s - %s (autor=%s)", idea.id, idea.titulo, actor.id)

        await self._event_bus.emit(
            EventType.IDEA_CREATED,
            {"idea_id": idea.id, "titulo": idea.titulo, "autor_id": actor.id},
        )
        return idea

    async def get(self, idea_id: str) -> Idea:
        """Get an idea, with its vote and comment counters.

        Raises:
            NotFound: If no idea has this id
        """
        data = await self._gateway.get(IDEAS_VIEW, idea_id)
        if data is None:
            raise NotFound("idea", idea_id)
        return parse_record(Idea, data)

    async def list_ideas(
        self,
        *,
        search: str | None = None,
        status: IdeaStatus | str | None = None,
        tag: str | None = None,
        order: str = "recentes",
    ) -> list[Idea]:
        """List ideas with optional text search, status and tag filters.

        Args:
            search: Case-insensitive text matched against titulo, descricao,
                fonte and segmento
            status: Only ideas in this status
            tag: Only ideas carrying this tag
            order: recentes | antigas | votos | comentarios
        """
        if order not in ORDERINGS:
            raise ValidationError(f"Invalid order: {order}. Must be one of {ORDERINGS}")

        filters: dict[str, Any] = {}
        if status:
            filters["status"] = self._parse_status(status, error=ValidationError).value

        rows = await self._gateway.query(
            IDEAS_VIEW,
            filters=filters,
            order_by="created_at",
            descending=order != "antigas",
        )
        ideas = [parse_record(Idea, row) for row in rows]

        if search and search.strip():
            term = search.strip().lower()
            ideas = [
                i
                for i in ideas
                if any(
                    term in (text or "").lower()
                    for text in (i.titulo, i.descricao, i.fonte, i.segmento)
                )
            ]
        if tag and tag.strip():
            wanted = tag.strip().lower()
            ideas = [i for i in ideas if wanted in i.tags]

        # Stable sort keeps newest first among equal counts
        if order == "votos":
            ideas.sort(key=lambda i: i.votos, reverse=True)
        elif order == "comentarios":
            ideas.sort(key=lambda i: i.comentarios, reverse=True)
        return ideas

    async def all_tags(self) -> list[str]:
        rows = await self._gateway.query(IDEAS)
        return sorted({tag for row in rows for tag in (row.get("tags") or [])})

    async def count_by_status(self) -> dict[str, int]:
        """Number of ideas per status, plus the total. Every status is present."""
        rows = await self._gateway.query(IDEAS)
        counts = Counter(row["status"] for row in rows)
        result = {"total": len(rows)}
        result.update({status.value: counts.get(status.value, 0) for status in IdeaStatus})
        return result

    def next_statuses(self, idea: Idea) -> list[IdeaStatus]:
        """Statuses the owner or author can move this idea to directly."""
        return sorted(DIRECT_TRANSITIONS.get(idea.status, frozenset()))

    async def transition(
        self,
        idea_id: str,
        target: IdeaStatus | str,
        actor: User,
        *,
        justificativa: str | None = None,
    ) -> Idea:
        """Move an idea to a new status on behalf of its owner or author.

        An optional justificativa is recorded when archiving.

        Raises:
            NotFound: If the idea does not exist
            PermissionDenied: If the actor is neither owner nor author
            InvalidTransition: If target is not a direct transition of the
                current status
            InvalidState: If the status changed while the request was in flight
        """
        idea = await self.get(idea_id)

        if not can_transition(actor.id, idea):
            raise PermissionDenied(
                f"Only the owner or the author can change the status of idea {idea_id}"
            )

        target_status = self._parse_status(target, error=InvalidTransition)
        allowed = DIRECT_TRANSITIONS.get(idea.status, frozenset())
        if target_status not in allowed:
            raise InvalidTransition(
                f"Invalid status transition from '{idea.status}' to '{target_status}'. "
                f"Allowed transitions: {sorted(allowed)}"
            )

        updates: dict[str, Any] = {"status": target_status.value, "updated_at": _now()}
        reason = _blank_to_none(justificativa)
        if target_status is IdeaStatus.ARQUIVADA and reason:
            updates["justificativa_rejeicao"] = reason

        try:
            updated = await self._gateway.update(
                IDEAS, idea_id, updates, expect={"status": idea.status.value}
            )
        except ConflictError as e:
            raise InvalidState(f"Idea {idea_id} changed status concurrently") from e
        if updated is None:
            raise NotFound("idea", idea_id)

        logger.info(
            "Idea %s: %s -> %s (actor=%s)", idea_id, idea.status, target_status, actor.id
        )
        await self._event_bus.emit(
            EventType.IDEA_STATUS_CHANGED,
            {
                "idea_id": idea_id,
                "from": idea.status.value,
                "to": target_status.value,
                "actor_id": actor.id,
            },
        )
        return await self.get(idea_id)

    async def assume_ownership(self, idea_id: str, actor: User) -> Idea:
        """Make the actor the idea's owner.

        Raises:
            NotFound: If the idea does not exist
            AlreadyOwned: If the idea already has an owner, whoever asks
            InvalidState: If the idea is approved or archived
        """
        idea = await self.get(idea_id)

        if idea.owner_id is not None:
            raise AlreadyOwned(f"Idea {idea_id} is already owned by {idea.owner_id}")
        if idea.is_closed:
            raise InvalidState(f"Idea {idea_id} is {idea.status}; ownership is closed")

        try:
            updated = await self._gateway.update(
                IDEAS,
                idea_id,
                {"owner_id": actor.id, "updated_at": _now()},
                expect={"owner_id": None, "status": idea.status.value},
            )
        except ConflictError as e:
            raise AlreadyOwned(f"Idea {idea_id} was claimed concurrently") from e
        if updated is None:
            raise NotFound("idea", idea_id)

        logger.info("Idea %s now owned by %s", idea_id, actor.id)
        await self._event_bus.emit(
            EventType.IDEA_OWNER_ASSIGNED,
            {"idea_id": idea_id, "owner_id": actor.id},
        )
        return await self.get(idea_id)

    async def record_evaluation(
        self,
        idea_id: str,
        actor: User,
        *,
        nota_clareza_objetivos: int,
        nota_analise_negocio: int,
        nota_viabilidade_tecnica: int,
        decisao: IdeaStatus | str,
        justificativa: str | None = None,
    ) -> Evaluation:
        """Record an evaluation and apply its decision to the idea.

        The evaluation row and the idea's new status (plus the rejection
        rationale when archiving) are written in one atomic batch.

        Raises:
            ValidationError: If archiving without justificativa, a score is
                outside 1-5 or decisao is not Aprovada/Arquivada. Raised
                before anything is read or written.
            NotFound: If the idea does not exist
            InvalidState: If the idea is not Pronta para Avaliação
        """
        decision = self._parse_status(decisao, error=ValidationError)
        if decision not in DECISIONS:
            raise ValidationError(f"decisao must be one of {sorted(DECISIONS)}")

        reason = _blank_to_none(justificativa)
        if decision is IdeaStatus.ARQUIVADA and reason is None:
            raise ValidationError("justificativa is required when archiving an idea")

        evaluation = build(
            Evaluation,
            ideia_id=idea_id,
            avaliador_id=actor.id,
            avaliador=actor.summary(),
            nota_clareza_objetivos=nota_clareza_objetivos,
            nota_analise_negocio=nota_analise_negocio,
            nota_viabilidade_tecnica=nota_viabilidade_tecnica,
            decisao=decision,
            justificativa=reason if decision is IdeaStatus.ARQUIVADA else None,
        )

        idea = await self.get(idea_id)
        if decision not in EVALUATION_TRANSITIONS.get(idea.status, frozenset()):
            raise InvalidState(
                f"Idea {idea_id} is '{idea.status}'; only ideas "
                f"'{IdeaStatus.PRONTA_PARA_AVALIACAO}' can be evaluated"
            )

        idea_updates: dict[str, Any] = {"status": decision.value, "updated_at": _now()}
        if decision is IdeaStatus.ARQUIVADA:
            idea_updates["justificativa_rejeicao"] = reason

        try:
            await self._gateway.commit(
                [
                    WriteOp("upsert", EVALUATIONS, evaluation.to_storage()),
                    WriteOp(
                        "update",
                        IDEAS,
                        idea_updates,
                        record_id=idea_id,
                        expect={"status": idea.status.value},
                    ),
                ]
            )
        except ConflictError as e:
            raise InvalidState(f"Idea {idea_id} changed status concurrently") from e

        logger.info(
            "Evaluation %s on idea %s: %s (media=%.2f)",
            evaluation.id,
            idea_id,
            decision,
            evaluation.media,
        )
        await self._event_bus.emit(
            EventType.EVALUATION_RECORDED,
            {
                "idea_id": idea_id,
                "evaluation_id": evaluation.id,
                "decisao": decision.value,
                "avaliador_id": actor.id,
            },
        )
        await self._event_bus.emit(
            EventType.IDEA_STATUS_CHANGED,
            {
                "idea_id": idea_id,
                "from": idea.status.value,
                "to": decision.value,
                "actor_id": actor.id,
            },
        )
        return evaluation

    async def list_evaluations(self, idea_id: str) -> list[Evaluation]:
        """Evaluations of an idea, newest first, each with its evaluator's profile."""
        rows = await self._gateway.query(
            EVALUATIONS,
            filters={"ideia_id": idea_id},
            order_by="created_at",
            descending=True,
        )
        evaluators = await user_summaries(self._gateway, (r["avaliador_id"] for r in rows))
        return [
            parse_record(Evaluation, {**row, "avaliador": evaluators.get(row["avaliador_id"])})
            for row in rows
        ]

    @staticmethod
    def _parse_status(value: IdeaStatus | str, *, error: type[Exception]) -> IdeaStatus:
        try:
            return IdeaStatus(value)
        except ValueError as e:
            raise error(f"Invalid status: {value}") from e
