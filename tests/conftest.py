"""Shared test fixtures for Ideario."""

from __future__ import annotations

from pathlib import Path

import pytest

from ideario.config import Config
from ideario.core.lifecycle import IdeaEngine
from ideario.events.bus import EventBus
from ideario.models.idea import IdeaStatus
from ideario.models.user import User
from ideario.storage.object_store import LocalObjectStore
from ideario.storage.sqlite_store import SQLiteGateway


@pytest.fixture
def tmp_db(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
async def gateway(tmp_db: Path) -> SQLiteGateway:
    g = SQLiteGateway(tmp_db)
    await g.initialize()
    yield g
    await g.close()


@pytest.fixture
def objects(tmp_path: Path) -> LocalObjectStore:
    return LocalObjectStore(tmp_path / "storage")


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(data_path=tmp_path, jwt_secret="test-secret-key-with-enough-length-for-hs256")


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def events(bus: EventBus) -> list[tuple[str, dict]]:
    """Every event emitted on the bus, in order."""
    received: list[tuple[str, dict]] = []

    async def _record(event_type, data):
        received.append((event_type, data))

    bus.on_all(_record)
    return received


@pytest.fixture
def author() -> User:
    return User(id="u-author", email="autora@example.com", nome="Autora")


@pytest.fixture
def owner() -> User:
    return User(id="u-owner", email="dono@example.com", nome="Dono")


@pytest.fixture
def outsider() -> User:
    return User(id="u-other", email="outro@example.com", nome="Outro")


@pytest.fixture
async def ideas(gateway: SQLiteGateway, bus: EventBus) -> IdeaEngine:
    return IdeaEngine(gateway, bus)


@pytest.fixture
async def idea(ideas: IdeaEngine, author: User):
    return await ideas.create(
        author,
        titulo="App de caronas",
        descricao="Caronas entre colaboradores",
        tags=["Mobilidade", "rh"],
    )


@pytest.fixture
async def ready_idea(ideas: IdeaEngine, idea, author: User):
    """An idea moved to Pronta para Avaliação by its author."""
    await ideas.transition(idea.id, IdeaStatus.EM_DEFINICAO, author)
    return await ideas.transition(idea.id, IdeaStatus.PRONTA_PARA_AVALIACAO, author)


@pytest.fixture
async def profiles(gateway: SQLiteGateway, author: User, owner: User, outsider: User) -> list[User]:
    """The test users stored in usuarios, as sign-up would leave them."""
    for user in (author, owner, outsider):
        await gateway.insert("usuarios", {**user.model_dump(), "senha_hash": "not-a-real-hash"})
    return [author, owner, outsider]
