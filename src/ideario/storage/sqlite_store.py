"""SQLite persistence gateway with WAL mode and atomic batches."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite

from ideario.errors import BackendError, ConflictError
from ideario.storage.base import Filters, PersistenceGateway, WriteOp

logger = logging.getLogger(__name__)

# Column whitelists per collection, to keep field names out of SQL injection reach
_COLUMNS: dict[str, set[str]] = {
    "usuarios": {"id", "email", "nome", "avatar_url", "senha_hash", "created_at", "updated_at"},
    "ideias": {
        "id",
        "titulo",
        "descricao",
        "fonte",
        "segmento",
        "impacto",
        "tags",
        "status",
        "autor_id",
        "owner_id",
        "justificativa_rejeicao",
        "created_at",
        "updated_at",
    },
    "votos": {"ideia_id", "usuario_id", "created_at"},
    "comentarios": {"id", "ideia_id", "autor_id", "conteudo", "created_at"},
    "avaliacoes": {
        "id",
        "ideia_id",
        "avaliador_id",
        "nota_clareza_objetivos",
        "nota_analise_negocio",
        "nota_viabilidade_tecnica",
        "decisao",
        "justificativa",
        "created_at",
    },
    "definicao_produto": {
        "ideia_id",
        "alinhamento_estrategico",
        "publico_alvo",
        "mercado",
        "hipoteses_valor",
        "estimativa_rentabilidade",
        "capacidade_tecnica",
        "capacidade_operacional",
        "capacidade_recursos",
        "progresso_percentual",
        "updated_at",
    },
    "checklist_definicao": {"id", "ideia_id", "categoria", "item", "concluido", "created_at"},
    "anexos": {
        "id",
        "ideia_id",
        "nome_arquivo",
        "storage_path",
        "tipo_mime",
        "tamanho_bytes",
        "uploaded_by",
        "created_at",
    },
}

# Read-only views: name -> columns
_VIEWS: dict[str, set[str]] = {
    "view_ideias_com_contadores": _COLUMNS["ideias"] | {"votos", "comentarios"},
}

_PRIMARY_KEYS: dict[str, tuple[str, ...]] = {
    "votos": ("ideia_id", "usuario_id"),
    "definicao_produto": ("ideia_id",),
}

_JSON_FIELDS = ("tags",)


def _columns(collection: str, *, writable: bool = False) -> set[str]:
    if collection in _COLUMNS:
        return _COLUMNS[collection]
    if collection in _VIEWS and not writable:
        return _VIEWS[collection]
    raise BackendError(f"Unknown collection: {collection}")


def _primary_key(collection: str) -> tuple[str, ...]:
    return _PRIMARY_KEYS.get(collection, ("id",))


def _single_key(collection: str) -> str:
    key = _primary_key(collection)
    if len(key) != 1:
        raise BackendError(f"{collection} has a composite key; use query/delete_where")
    return key[0]


def _validate_fields(collection: str, fields: dict[str, Any]) -> dict[str, Any]:
    """Filter a field dict to the collection's known columns."""
    allowed = _columns(collection, writable=True)
    filtered = {k: v for k, v in fields.items() if k in allowed}
    rejected = set(fields) - allowed
    if rejected:
        logger.warning("Rejected invalid column names for %s: %s", collection, rejected)
    return filtered


def _where(collection: str, filters: Filters | None) -> tuple[str, list[Any]]:
    """Build a WHERE clause from equality / NULL / membership filters."""
    allowed = _columns(collection)
    if not filters:
        return "1=1", []

    conditions: list[str] = []
    params: list[Any] = []
    for key, value in filters.items():
        if key not in allowed:
            raise BackendError(f"Unknown filter column for {collection}: {key}")
        if value is None:
            conditions.append(f"{key} IS NULL")
        elif isinstance(value, list | tuple | set | frozenset):
            values = list(value)
            if not values:
                conditions.append("0")
                continue
            conditions.append(f"{key} IN ({','.join('?' * len(values))})")
            params.extend(values)
        else:
            conditions.append(f"{key} = ?")
            params.append(value)
    return " AND ".join(conditions), params


@asynccontextmanager
async def _translate_errors(collection: str) -> AsyncIterator[None]:
    """Map aiosqlite errors onto the Ideario backend error taxonomy."""
    try:
        yield
    except aiosqlite.IntegrityError as e:
        logger.info("Integrity violation on %s: %s", collection, e)
        raise ConflictError(f"{collection}: {e}") from e
    except aiosqlite.Error as e:
        logger.error("Store failure on %s: %s", collection, e)
        raise BackendError(f"{collection}: {e}") from e


class SQLiteGateway(PersistenceGateway):
    """aiosqlite-backed gateway.

    All writes go through one lock so that an open batch is never committed
    halfway by an unrelated write on the shared connection.
    """

    def __init__(self, db_path: Path, *, wal_mode: bool = True) -> None:
        self.db_path = db_path
        self.wal_mode = wal_mode
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create database and apply schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row

        if self.wal_mode:
            await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")

        await self._db.executescript(_load_sql("workspace.sql"))
        await self._db.commit()
        logger.info("Initialized SQLite gateway at %s", self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Gateway not initialized. Call initialize() first.")
        return self._db

    # --- Reads ---

    async def query(
        self,
        collection: str,
        *,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        where, params = _where(collection, filters)
        sql = f"SELECT * FROM {collection} WHERE {where}"
        if order_by:
            if order_by not in _columns(collection):
                raise BackendError(f"Unknown order column for {collection}: {order_by}")
            sql += f" ORDER BY {order_by} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        async with _translate_errors(collection):
            cursor = await self.db.execute(sql, params)
            rows = await cursor.fetchall()
        return [_row_to_dict(row) for row in rows]

    async def count(self, collection: str, *, filters: Filters | None = None) -> int:
        where, params = _where(collection, filters)
        async with _translate_errors(collection):
            cursor = await self.db.execute(
                f"SELECT COUNT(*) FROM {collection} WHERE {where}", params
            )
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        _columns(collection)
        key = "id" if collection in _VIEWS else _single_key(collection)
        async with _translate_errors(collection):
            cursor = await self.db.execute(
                f"SELECT * FROM {collection} WHERE {key} = ?", (record_id,)
            )
            row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    # --- Writes ---

    @asynccontextmanager
    async def _writing(self, label: str) -> AsyncIterator[None]:
        """Serialize a write, commit it on success and roll it back on any failure."""
        async with self._write_lock:
            try:
                async with _translate_errors(label):
                    yield
                    await self.db.commit()
            except BaseException:
                await self.db.rollback()
                raise

    async def insert(self, collection: str, fields: dict[str, Any]) -> dict[str, Any]:
        record = _validate_fields(collection, fields)
        async with self._writing(collection):
            await self._execute_insert(collection, record, upsert=False)
        return record

    async def upsert(self, collection: str, fields: dict[str, Any]) -> dict[str, Any]:
        record = _validate_fields(collection, fields)
        async with self._writing(collection):
            await self._execute_insert(collection, record, upsert=True)
        return record

    async def update(
        self,
        collection: str,
        record_id: str,
        fields: dict[str, Any],
        *,
        expect: Filters | None = None,
    ) -> dict[str, Any] | None:
        existing = await self.get(collection, record_id)
        if not existing:
            return None

        updates = _validate_fields(collection, fields)
        if not updates:
            return existing

        async with self._writing(collection):
            await self._execute_update(collection, record_id, updates, expect)
        return await self.get(collection, record_id)

    async def delete(self, collection: str, record_id: str) -> bool:
        _columns(collection, writable=True)
        key = _single_key(collection)
        async with self._writing(collection):
            cursor = await self.db.execute(
                f"DELETE FROM {collection} WHERE {key} = ?", (record_id,)
            )
        return cursor.rowcount > 0

    async def delete_where(self, collection: str, filters: Filters) -> int:
        if not filters:
            raise BackendError("delete_where requires at least one filter")
        _columns(collection, writable=True)
        where, params = _where(collection, filters)
        async with self._writing(collection):
            cursor = await self.db.execute(f"DELETE FROM {collection} WHERE {where}", params)
        return cursor.rowcount

    async def commit(self, operations: Sequence[WriteOp]) -> None:
        if not operations:
            return

        label = ", ".join(f"{op.action}:{op.collection}" for op in operations)
        try:
            async with self._writing(label):
                for op in operations:
                    await self._apply(op)
        except BackendError:
            logger.warning("Rolled back batch of %d operations (%s)", len(operations), label)
            raise

        logger.debug("Committed batch of %d operations (%s)", len(operations), label)

    # --- Stats ---

    async def get_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {}
        for collection in sorted(_COLUMNS):
            if collection == "usuarios":
                continue
            stats[collection] = await self.count(collection)

        cursor = await self.db.execute(
            "SELECT status, COUNT(*) AS count FROM ideias GROUP BY status"
        )
        rows = await cursor.fetchall()
        stats["status"] = {row["status"]: row["count"] for row in rows}
        stats["db_path"] = str(self.db_path)
        return stats

    # --- Internals ---

    async def _apply(self, op: WriteOp) -> None:
        record = _validate_fields(op.collection, op.fields)
        if op.action == "upsert":
            await self._execute_insert(op.collection, record, upsert=True)
        elif op.action == "update":
            if op.record_id is None:
                raise BackendError("update operation requires record_id")
            await self._execute_update(op.collection, op.record_id, record, op.expect)
        elif op.action == "delete":
            if op.record_id is None:
                raise BackendError("delete operation requires record_id")
            key = _single_key(op.collection)
            await self.db.execute(
                f"DELETE FROM {op.collection} WHERE {key} = ?", (op.record_id,)
            )
        else:
            raise BackendError(f"Unknown batch action: {op.action}")

    async def _execute_insert(
        self, collection: str, record: dict[str, Any], *, upsert: bool
    ) -> None:
        record = _serialize_json_fields(record)
        columns = list(record)
        placeholders = ", ".join(f":{c}" for c in columns)
        sql = f"INSERT INTO {collection} ({', '.join(columns)}) VALUES ({placeholders})"
        if upsert:
            key = _primary_key(collection)
            updatable = [c for c in columns if c not in key]
            conflict = f" ON CONFLICT({', '.join(key)})"
            if updatable:
                assignments = ", ".join(f"{c} = excluded.{c}" for c in updatable)
                sql += f"{conflict} DO UPDATE SET {assignments}"
            else:
                sql += f"{conflict} DO NOTHING"
        await self.db.execute(sql, record)

    async def _execute_update(
        self,
        collection: str,
        record_id: str,
        updates: dict[str, Any],
        expect: Filters | None,
    ) -> None:
        key = _single_key(collection)
        updates = {k: v for k, v in _serialize_json_fields(updates).items() if k != key}
        if not updates:
            return

        set_clause = ", ".join(f"{k} = ?" for k in updates)
        guard, guard_params = _where(collection, expect)
        cursor = await self.db.execute(
            f"UPDATE {collection} SET {set_clause} WHERE {key} = ? AND {guard}",
            [*updates.values(), record_id, *guard_params],
        )
        if cursor.rowcount == 0:
            if expect:
                raise ConflictError(f"Precondition failed updating {collection} {record_id}")
            raise ConflictError(f"{collection} {record_id} disappeared during update")


# --- Helpers ---


def _load_sql(filename: str) -> str:
    """Load SQL file from the schema package."""
    schema_dir = Path(__file__).parent.parent / "schema"
    return (schema_dir / filename).read_text(encoding="utf-8")


def _row_to_dict(row: aiosqlite.Row) -> dict[str, Any]:
    """Convert an aiosqlite Row to a dict, deserializing JSON fields.

    JSON fields hold lists; anything else stored there is corrupt data.
    """
    d = dict(row)
    for key in _JSON_FIELDS:
        if key in d and isinstance(d[key], str):
            try:
                value = json.loads(d[key])
            except json.JSONDecodeError as e:
                logger.error("Malformed JSON in %s of record %s", key, d.get("id"))
                raise BackendError(f"Malformed JSON in column {key}") from e
            if not isinstance(value, list):
                logger.error("Non-list JSON in %s of record %s", key, d.get("id"))
                raise BackendError(f"Column {key} does not hold a list")
            d[key] = value
    return d


def _serialize_json_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Serialize list fields to JSON strings for SQLite storage."""
    result = dict(data)
    for field in _JSON_FIELDS:
        if field in result and not isinstance(result[field], str) and result[field] is not None:
            result[field] = json.dumps(result[field])
    return result
