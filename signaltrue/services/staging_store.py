# signaltrue/services/staging_store.py
from __future__ import annotations

import hashlib
import logging
import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, List, Optional

from starlette.concurrency import run_in_threadpool

from signaltrue.core.errors import StorageError
from signaltrue.services.object_store import LocalObjectStore, ObjectStore

logger = logging.getLogger(__name__)

STAGING_SUFFIX = ".part"
# large enough to reach the PE header of ordinary Windows executables
HEAD_BYTES = 512


@dataclass(frozen=True)
class StagingRef:
    token: str
    path: Path


@dataclass(frozen=True)
class StagedUpload:
    ref: StagingRef
    bytes_written: int
    sha256: str
    head: bytes


class StagingStore:
    """
    In-flight uploads live under <root>/staging/<token>.part and are never
    served. promote() hands a finished file to the object store, which owns
    committed bytes from then on (storage_ref = "<ns>/<token>").
    """

    def __init__(self, root: str | Path, objects: Optional[ObjectStore] = None):
        self.root = Path(root).resolve()
        self.staging_dir = self.root / "staging"
        self.staging_dir.mkdir(parents=True, exist_ok=True)
        self.objects = objects or LocalObjectStore(self.root)

    # ─────────────────────────────────────────────
    # STAGING
    # ─────────────────────────────────────────────

    def new_ref(self) -> StagingRef:
        token = uuid.uuid4().hex
        return StagingRef(token=token, path=self.staging_dir / f"{token}{STAGING_SUFFIX}")

    async def stage(self, ref: StagingRef, chunks: AsyncIterator[bytes]) -> StagedUpload:
        """
        Write the stream into the staging file. Exclusive create: a token that
        already exists on disk is never reused. Local I/O failures (disk full,
        permissions, token collision) surface as StorageError.
        """
        fh = await _disk_io(ref, open, ref.path, "xb")
        digest = hashlib.sha256()
        head = bytearray()
        written = 0
        try:
            async for chunk in chunks:
                if not chunk:
                    continue
                if len(head) < HEAD_BYTES:
                    head.extend(chunk[: HEAD_BYTES - len(head)])
                digest.update(chunk)
                await _disk_io(ref, fh.write, chunk)
                written += len(chunk)
            await _disk_io(ref, _flush_and_sync, fh)
        finally:
            fh.close()

        return StagedUpload(ref=ref, bytes_written=written, sha256=digest.hexdigest(), head=bytes(head))

    def discard(self, ref: StagingRef) -> None:
        """Idempotent; safe when staging never created the file."""
        ref.path.unlink(missing_ok=True)

    def staged_tokens(self) -> List[str]:
        return sorted(p.name[: -len(STAGING_SUFFIX)] for p in self.staging_dir.glob(f"*{STAGING_SUFFIX}"))

    def purge_stale(self, max_age_seconds: int) -> int:
        """
        Remove staging files left behind by a crashed process.
        """
        cutoff = time.time() - max_age_seconds
        removed = 0
        for p in self.staging_dir.glob(f"*{STAGING_SUFFIX}"):
            try:
                if p.stat().st_mtime < cutoff:
                    p.unlink(missing_ok=True)
                    removed += 1
            except FileNotFoundError:
                continue
        if removed:
            logger.info("[staging] purged %d stale staging entries", removed)
        return removed

    # ─────────────────────────────────────────────
    # PUBLISH
    # ─────────────────────────────────────────────

    async def promote(self, ref: StagingRef, *, namespace: str, media_type: str) -> str:
        storage_ref = f"{namespace}/{ref.token}"
        if not ref.path.is_file():
            raise StorageError(f"Staged upload {ref.token} is missing")
        await self.objects.publish(ref.path, storage_ref, media_type=media_type)
        return storage_ref


async def _disk_io(ref: StagingRef, fn, *args):
    try:
        return await run_in_threadpool(fn, *args)
    except OSError as exc:
        raise StorageError(f"Could not write staged upload {ref.token}") from exc


def _flush_and_sync(fh) -> None:
    fh.flush()
    os.fsync(fh.fileno())
