"""Ideario storage layer."""

from ideario.storage.base import ObjectStore, PersistenceGateway, WriteOp
from ideario.storage.object_store import LocalObjectStore
from ideario.storage.sqlite_store import SQLiteGateway

__all__ = ["LocalObjectStore", "ObjectStore", "PersistenceGateway", "SQLiteGateway", "WriteOp"]
