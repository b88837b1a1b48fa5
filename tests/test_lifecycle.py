"""Tests for the Idea Lifecycle Engine."""

import itertools

import pytest

from ideario.core.lifecycle import DIRECT_TRANSITIONS
from ideario.errors import (
    AlreadyOwned,
    InvalidState,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from ideario.events.types import EventType
from ideario.models.idea import IdeaStatus
from ideario.models.user import User

ALLOWED_EDGES = {
    (IdeaStatus.GERACAO, IdeaStatus.EM_DEFINICAO),
    (IdeaStatus.EM_DEFINICAO, IdeaStatus.PRONTA_PARA_AVALIACAO),
    (IdeaStatus.APROVADA, IdeaStatus.ARQUIVADA),
}

SCORES = {
    "nota_clareza_objetivos": 4,
    "nota_analise_negocio": 3,
    "nota_viabilidade_tecnica": 5,
}


async def _force_status(gateway, idea_id: str, status: IdeaStatus) -> None:
    await gateway.update("ideias", idea_id, {"status": status.value})


# --- create / get / list ---


async def test_create_idea_defaults(idea, author):
    assert idea.status == IdeaStatus.GERACAO
    assert idea.autor_id == author.id
    assert idea.owner_id is None
    assert idea.tags == ["mobilidade", "rh"]


async def test_create_idea_requires_title_and_description(ideas, author):
    with pytest.raises(ValidationError):
        await ideas.create(author, titulo="  ", descricao="algo")
    with pytest.raises(ValidationError):
        await ideas.create(author, titulo="Algo", descricao="")


async def test_create_idea_emits_event(ideas, author, events):
    created = await ideas.create(author, titulo="Nova", descricao="Descrição")
    assert events[0][0] == EventType.IDEA_CREATED
    assert events[0][1]["idea_id"] == created.id


async def test_get_includes_counters(ideas, idea, gateway, author):
    await gateway.insert(
        "votos", {"ideia_id": idea.id, "usuario_id": author.id, "created_at": "2024-01-01"}
    )
    fetched = await ideas.get(idea.id)
    assert fetched.votos == 1
    assert fetched.comentarios == 0


async def test_get_missing_raises_not_found(ideas):
    with pytest.raises(NotFound):
        await ideas.get("nope")


async def test_list_ideas_filters(ideas, author):
    a = await ideas.create(author, titulo="Drone de entregas", descricao="x", tags=["logistica"])
    b = await ideas.create(author, titulo="Portal RH", descricao="y", segmento="Pessoas")
    await ideas.transition(b.id, IdeaStatus.EM_DEFINICAO, author)

    assert [i.id for i in await ideas.list_ideas(search="DRONE")] == [a.id]
    assert [i.id for i in await ideas.list_ideas(search="pessoas")] == [b.id]
    assert [i.id for i in await ideas.list_ideas(status="Em Definição")] == [b.id]
    assert [i.id for i in await ideas.list_ideas(tag="Logistica")] == [a.id]


async def test_list_ideas_orderings(ideas, author, gateway):
    first = await ideas.create(author, titulo="Primeira", descricao="x")
    second = await ideas.create(author, titulo="Segunda", descricao="y")
    await gateway.insert(
        "votos", {"ideia_id": first.id, "usuario_id": "u1", "created_at": "2024-01-01"}
    )

    newest = await ideas.list_ideas()
    oldest = await ideas.list_ideas(order="antigas")
    by_votes = await ideas.list_ideas(order="votos")

    assert [i.id for i in newest] == [second.id, first.id]
    assert [i.id for i in oldest] == [first.id, second.id]
    assert by_votes[0].id == first.id


async def test_list_ideas_rejects_unknown_order(ideas):
    with pytest.raises(ValidationError):
        await ideas.list_ideas(order="aleatoria")


async def test_all_tags_and_counts(ideas, idea, author):
    await ideas.create(author, titulo="Outra", descricao="x", tags=["rh", "custos"])
    assert await ideas.all_tags() == ["custos", "mobilidade", "rh"]

    counts = await ideas.count_by_status()
    assert counts["total"] == 2
    assert counts["Geração"] == 2
    assert counts["Aprovada"] == 0
    assert set(counts) == {"total", *(s.value for s in IdeaStatus)}


async def test_next_statuses(ideas, idea):
    assert ideas.next_statuses(idea) == [IdeaStatus.EM_DEFINICAO]
    ready = idea.model_copy(update={"status": IdeaStatus.PRONTA_PARA_AVALIACAO})
    assert ideas.next_statuses(ready) == []


# --- transition ---


@pytest.mark.parametrize(
    ("current", "target"), list(itertools.product(IdeaStatus, IdeaStatus))
)
async def test_transition_only_along_table_edges(ideas, idea, author, gateway, current, target):
    await _force_status(gateway, idea.id, current)

    if (current, target) in ALLOWED_EDGES:
        moved = await ideas.transition(idea.id, target, author)
        assert moved.status == target
    else:
        with pytest.raises(InvalidTransition):
            await ideas.transition(idea.id, target, author)
        assert (await ideas.get(idea.id)).status == current


def test_direct_transition_table_matches_edges():
    edges = {(src, dst) for src, targets in DIRECT_TRANSITIONS.items() for dst in targets}
    assert edges == ALLOWED_EDGES


async def test_transition_requires_owner_or_author(ideas, idea, outsider):
    with pytest.raises(PermissionDenied):
        await ideas.transition(idea.id, IdeaStatus.EM_DEFINICAO, outsider)


async def test_transition_permission_checked_before_edge(ideas, idea, outsider):
    with pytest.raises(PermissionDenied):
        await ideas.transition(idea.id, IdeaStatus.APROVADA, outsider)


async def test_transition_by_owner(ideas, idea, owner):
    await ideas.assume_ownership(idea.id, owner)
    moved = await ideas.transition(idea.id, "Em Definição", owner)
    assert moved.status == IdeaStatus.EM_DEFINICAO


async def test_transition_unknown_status(ideas, idea, author):
    with pytest.raises(InvalidTransition):
        await ideas.transition(idea.id, "Cancelada", author)


async def test_transition_missing_idea(ideas, author):
    with pytest.raises(NotFound):
        await ideas.transition("nope", IdeaStatus.EM_DEFINICAO, author)


async def test_archive_records_justification(ideas, idea, author, gateway):
    await _force_status(gateway, idea.id, IdeaStatus.APROVADA)
    archived = await ideas.transition(
        idea.id, IdeaStatus.ARQUIVADA, author, justificativa="  Sem orçamento  "
    )
    assert archived.status == IdeaStatus.ARQUIVADA
    assert archived.justificativa_rejeicao == "Sem orçamento"


async def test_transition_emits_status_changed(ideas, idea, author, events):
    await ideas.transition(idea.id, IdeaStatus.EM_DEFINICAO, author)
    changed = [data for kind, data in events if kind == EventType.IDEA_STATUS_CHANGED]
    assert changed == [
        {"idea_id": idea.id, "from": "Geração", "to": "Em Definição", "actor_id": author.id}
    ]


async def test_transition_lost_race_is_invalid_state(ideas, idea, author, gateway, monkeypatch):
    original = gateway.update

    async def racing_update(collection, record_id, fields, *, expect=None):
        await original("ideias", record_id, {"status": IdeaStatus.EM_DEFINICAO.value})
        return await original(collection, record_id, fields, expect=expect)

    monkeypatch.setattr(gateway, "update", racing_update)
    with pytest.raises(InvalidState):
        await ideas.transition(idea.id, IdeaStatus.EM_DEFINICAO, author)


# --- ownership ---


async def test_assume_ownership(ideas, idea, owner, events):
    claimed = await ideas.assume_ownership(idea.id, owner)
    assert claimed.owner_id == owner.id
    assert any(kind == EventType.IDEA_OWNER_ASSIGNED for kind, _ in events)


@pytest.mark.parametrize("who", ["author", "owner", "outsider"])
async def test_assume_owned_idea_fails_for_anyone(ideas, idea, owner, request, who):
    await ideas.assume_ownership(idea.id, owner)
    actor = request.getfixturevalue(who)
    with pytest.raises(AlreadyOwned):
        await ideas.assume_ownership(idea.id, actor)


@pytest.mark.parametrize("status", [IdeaStatus.APROVADA, IdeaStatus.ARQUIVADA])
async def test_assume_closed_idea_fails(ideas, idea, owner, gateway, status):
    await _force_status(gateway, idea.id, status)
    with pytest.raises(InvalidState):
        await ideas.assume_ownership(idea.id, owner)


async def test_already_owned_wins_over_closed(ideas, idea, owner, outsider, gateway):
    await ideas.assume_ownership(idea.id, owner)
    await _force_status(gateway, idea.id, IdeaStatus.ARQUIVADA)
    with pytest.raises(AlreadyOwned):
        await ideas.assume_ownership(idea.id, outsider)


async def test_assume_lost_race_is_already_owned(ideas, idea, owner, outsider, gateway, monkeypatch):
    original = gateway.update

    async def racing_update(collection, record_id, fields, *, expect=None):
        await original("ideias", record_id, {"owner_id": outsider.id})
        return await original(collection, record_id, fields, expect=expect)

    monkeypatch.setattr(gateway, "update", racing_update)
    with pytest.raises(AlreadyOwned):
        await ideas.assume_ownership(idea.id, owner)
    assert (await ideas.get(idea.id)).owner_id == outsider.id


# --- evaluation ---


async def test_archive_without_justification_fails_without_writes(
    ideas, ready_idea, outsider, gateway, monkeypatch
):
    calls = []

    async def spy(*args, **kwargs):
        calls.append(args)

    monkeypatch.setattr(gateway, "commit", spy)
    monkeypatch.setattr(gateway, "insert", spy)
    monkeypatch.setattr(gateway, "get", spy)

    for blank in (None, "", "   "):
        with pytest.raises(ValidationError):
            await ideas.record_evaluation(
                ready_idea.id, outsider, decisao="Arquivada", justificativa=blank, **SCORES
            )
    assert calls == []


@pytest.mark.parametrize("bad", [0, 6, -1])
async def test_evaluation_scores_must_be_1_to_5(ideas, ready_idea, outsider, bad):
    with pytest.raises(ValidationError):
        await ideas.record_evaluation(
            ready_idea.id,
            outsider,
            nota_clareza_objetivos=bad,
            nota_analise_negocio=3,
            nota_viabilidade_tecnica=3,
            decisao=IdeaStatus.APROVADA,
        )
    assert await ideas.list_evaluations(ready_idea.id) == []


@pytest.mark.parametrize("decisao", ["Geração", "Em Definição", "Talvez"])
async def test_evaluation_decision_must_be_approve_or_archive(ideas, ready_idea, outsider, decisao):
    with pytest.raises(ValidationError):
        await ideas.record_evaluation(ready_idea.id, outsider, decisao=decisao, **SCORES)


async def test_evaluation_requires_ready_status(ideas, idea, outsider):
    with pytest.raises(InvalidState):
        await ideas.record_evaluation(idea.id, outsider, decisao="Aprovada", **SCORES)


async def test_evaluation_missing_idea(ideas, outsider):
    with pytest.raises(NotFound):
        await ideas.record_evaluation("nope", outsider, decisao="Aprovada", **SCORES)


async def test_evaluation_archive_sets_status_and_reason(ideas, ready_idea, outsider, events):
    evaluation = await ideas.record_evaluation(
        ready_idea.id, outsider, decisao="Arquivada", justificativa="Fora do foco", **SCORES
    )
    assert evaluation.media == 4.0

    archived = await ideas.get(ready_idea.id)
    assert archived.status == IdeaStatus.ARQUIVADA
    assert archived.justificativa_rejeicao == "Fora do foco"

    kinds = [kind for kind, _ in events]
    assert EventType.EVALUATION_RECORDED in kinds
    stored = await ideas.list_evaluations(ready_idea.id)
    assert [e.id for e in stored] == [evaluation.id]
    assert stored[0].justificativa == "Fora do foco"


async def test_evaluations_carry_evaluator_profile(ideas, ready_idea, outsider, profiles):
    recorded = await ideas.record_evaluation(ready_idea.id, outsider, decisao="Aprovada", **SCORES)
    assert recorded.avaliador.nome == "Outro"
    assert "avaliador" not in recorded.to_storage()

    [stored] = await ideas.list_evaluations(ready_idea.id)
    assert stored.avaliador.email == "outro@example.com"
    assert stored.to_response()["avaliador"]["nome"] == "Outro"


async def test_evaluation_batch_rolls_back_on_conflict(ideas, ready_idea, outsider, gateway, monkeypatch):
    original = gateway.commit

    async def racing_commit(operations):
        await gateway.update("ideias", ready_idea.id, {"status": IdeaStatus.ARQUIVADA.value})
        return await original(operations)

    monkeypatch.setattr(gateway, "commit", racing_commit)
    with pytest.raises(InvalidState):
        await ideas.record_evaluation(ready_idea.id, outsider, decisao="Aprovada", **SCORES)
    assert await ideas.list_evaluations(ready_idea.id) == []


async def test_second_evaluation_rejected(ideas, ready_idea, outsider):
    await ideas.record_evaluation(ready_idea.id, outsider, decisao="Aprovada", **SCORES)
    with pytest.raises(InvalidState):
        await ideas.record_evaluation(ready_idea.id, outsider, decisao="Aprovada", **SCORES)


# --- end to end ---


async def test_full_lifecycle_scenario(ideas, author):
    user_a = User(id="user-a", email="a@example.com", nome="A")
    evaluator = User(id="evaluator", email="e@example.com", nome="E")

    created = await ideas.create(author, titulo="Reuso de água", descricao="Captação de chuva")
    assert created.status == IdeaStatus.GERACAO
    assert created.owner_id is None

    claimed = await ideas.assume_ownership(created.id, user_a)
    assert claimed.owner_id == user_a.id

    await ideas.transition(created.id, IdeaStatus.EM_DEFINICAO, user_a)
    await ideas.transition(created.id, IdeaStatus.PRONTA_PARA_AVALIACAO, user_a)

    await ideas.record_evaluation(
        created.id,
        evaluator,
        nota_clareza_objetivos=5,
        nota_analise_negocio=5,
        nota_viabilidade_tecnica=5,
        decisao=IdeaStatus.APROVADA,
    )
    assert (await ideas.get(created.id)).status == IdeaStatus.APROVADA
