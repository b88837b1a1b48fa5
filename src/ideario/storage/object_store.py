"""Filesystem-backed object store."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path, PurePosixPath

from ideario.errors import BackendError, NotFound, ObjectExistsError
from ideario.storage.base import ObjectStore

logger = logging.getLogger(__name__)


class LocalObjectStore(ObjectStore):
    """Stores objects as files under ``root/<bucket>/<path>``.

    Writes without ``upsert`` use exclusive creation, so two uploads racing
    for the same path cannot overwrite each other.
    """

    def __init__(self, root: Path, *, public_base_url: str | None = None) -> None:
        self.root = root
        self.public_base_url = public_base_url

    def _resolve(self, bucket: str, path: str) -> Path:
        relative = PurePosixPath(path)
        if (
            not path
            or relative.is_absolute()
            or ".." in relative.parts
            or "/" in bucket
            or bucket in {"", ".", ".."}
        ):
            raise BackendError(f"Invalid object path: {bucket}/{path}")
        return self.root / bucket / Path(*relative.parts)

    async def upload_object(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        *,
        upsert: bool = False,
    ) -> None:
        target = self._resolve(bucket, path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "wb" if upsert else "xb") as f:
                f.write(data)

        try:
            await asyncio.to_thread(_write)
        except FileExistsError as e:
            raise ObjectExistsError(f"Object already exists: {bucket}/{path}") from e
        except OSError as e:
            raise BackendError(f"Failed to store {bucket}/{path}: {e}") from e

        logger.debug("Stored %s/%s (%d bytes, %s)", bucket, path, len(data), content_type)

    async def download_object(self, bucket: str, path: str) -> bytes:
        target = self._resolve(bucket, path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as e:
            raise NotFound("object", f"{bucket}/{path}") from e
        except OSError as e:
            raise BackendError(f"Failed to read {bucket}/{path}: {e}") from e

    async def delete_object(self, bucket: str, path: str) -> bool:
        target = self._resolve(bucket, path)
        try:
            await asyncio.to_thread(target.unlink)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise BackendError(f"Failed to delete {bucket}/{path}: {e}") from e
        return True

    async def object_exists(self, bucket: str, path: str) -> bool:
        target = self._resolve(bucket, path)
        return await asyncio.to_thread(target.is_file)

    async def list_objects(self, bucket: str, prefix: str = "") -> list[str]:
        bucket_dir = self.root / bucket

        def _walk() -> list[str]:
            if not bucket_dir.is_dir():
                return []
            paths = (p.relative_to(bucket_dir).as_posix() for p in bucket_dir.rglob("*"))
            return sorted(p for p in paths if p.startswith(prefix) and (bucket_dir / p).is_file())

        return await asyncio.to_thread(_walk)

    def public_url(self, bucket: str, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{bucket}/{path}"
        return self._resolve(bucket, path).resolve().as_uri()
