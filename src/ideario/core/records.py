"""Boundary validation of gateway records, and the lookups the engines share."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, TypeVar

import pydantic

from ideario.errors import BackendError, NotFound, ValidationError
from ideario.models.idea import Idea
from ideario.models.user import UserSummary
from ideario.storage.base import PersistenceGateway

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=pydantic.BaseModel)

IDEAS = "ideias"
USERS = "usuarios"


def parse_record(model: type[M], data: dict[str, Any]) -> M:
    """Turn a raw gateway row into a model. A malformed row is a backend fault."""
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        logger.error("Malformed %s record %s: %s", model.__name__, data.get("id"), e)
        raise BackendError(f"Malformed {model.__name__} record") from e


def build(model: type[M], **fields: Any) -> M:
    """Build a model from caller input. Invalid input is a ValidationError."""
    try:
        return model(**fields)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(problems) from e


async def load_idea(gateway: PersistenceGateway, idea_id: str) -> Idea:
    """The stored idea, without counters.

    Raises:
        NotFound: If no idea has this id
    """
    data = await gateway.get(IDEAS, idea_id)
    if data is None:
        raise NotFound("idea", idea_id)
    return parse_record(Idea, data)


async def user_summaries(
    gateway: PersistenceGateway, user_ids: Iterable[str]
) -> dict[str, UserSummary]:
    """Public profile of each known user id, in a single query.

    Ids without a stored user are simply absent from the result.
    """
    wanted = set(user_ids)
    if not wanted:
        return {}
    rows = await gateway.query(USERS, filters={"id": wanted})
    return {row["id"]: parse_record(UserSummary, row) for row in rows}
