# signaltrue/services/object_store.py
from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import Any, Iterator

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool

from signaltrue.core.config import Settings
from signaltrue.core.errors import StorageError

logger = logging.getLogger(__name__)

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


class ObjectStore:
    """
    Committed attachment bytes, addressed by storage_ref "<namespace>/<token>".

    publish() is the only way bytes enter the store and is all-or-nothing: after
    it returns the object is complete, after it raises nothing is visible.
    Deletes are two-phase (bury, then purge_tombstone or restore) so the caller
    can pair them with a database transaction.
    """

    name = "base"

    async def publish(self, src: Path, storage_ref: str, *, media_type: str) -> None:
        raise NotImplementedError

    def exists(self, storage_ref: str) -> bool:
        raise NotImplementedError

    def size_of(self, storage_ref: str) -> int:
        raise NotImplementedError

    def iter_bytes(self, storage_ref: str, chunk_size: int = 64 * 1024) -> Iterator[bytes]:
        raise NotImplementedError

    def delete(self, storage_ref: str) -> None:
        raise NotImplementedError

    def bury(self, storage_ref: str) -> Any:
        raise NotImplementedError

    def restore(self, storage_ref: str, tomb: Any) -> None:
        raise NotImplementedError

    def purge_tombstone(self, tomb: Any) -> None:
        raise NotImplementedError


class LocalObjectStore(ObjectStore):
    """
    <root>/objects/<ns>/<token>      committed bytes
    <root>/tombstones/<token>        committed bytes pending deletion

    Must share a filesystem with the staging directory: publish is one rename.
    """

    name = "local"

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.objects_dir = self.root / "objects"
        self.tombstone_dir = self.root / "tombstones"
        for d in (self.objects_dir, self.tombstone_dir):
            d.mkdir(parents=True, exist_ok=True)

    def _object_path(self, storage_ref: str) -> Path:
        path = (self.objects_dir / storage_ref).resolve()
        if self.objects_dir not in path.parents:
            raise StorageError("storage_ref escapes the object root.")
        return path

    async def publish(self, src: Path, storage_ref: str, *, media_type: str) -> None:
        dest = self._object_path(storage_ref)
        try:
            await run_in_threadpool(_rename_into, src, dest)
        except OSError as exc:
            raise StorageError(f"Could not publish {storage_ref}") from exc

    def exists(self, storage_ref: str) -> bool:
        return self._object_path(storage_ref).is_file()

    def size_of(self, storage_ref: str) -> int:
        return self._object_path(storage_ref).stat().st_size

    def iter_bytes(self, storage_ref: str, chunk_size: int = 64 * 1024) -> Iterator[bytes]:
        path = self._object_path(storage_ref)
        with open(path, "rb") as f:
            while True:
                chunk = f.read(chunk_size)
                if not chunk:
                    break
                yield chunk

    def delete(self, storage_ref: str) -> None:
        try:
            self._object_path(storage_ref).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not delete {storage_ref}") from exc

    def bury(self, storage_ref: str) -> Path:
        """
        Move committed bytes out of the object namespace in one rename.
        Returns the tombstone path for restore() or purge_tombstone().
        """
        tomb = self.tombstone_dir / uuid.uuid4().hex
        try:
            os.replace(self._object_path(storage_ref), tomb)
        except FileNotFoundError:
            logger.warning("[storage] bytes already missing for %s", storage_ref)
            return tomb
        except OSError as exc:
            raise StorageError(f"Could not remove {storage_ref}") from exc
        return tomb

    def restore(self, storage_ref: str, tomb: Path) -> None:
        if tomb.exists():
            os.replace(tomb, self._object_path(storage_ref))

    def purge_tombstone(self, tomb: Path) -> None:
        tomb.unlink(missing_ok=True)


class S3ObjectStore(ObjectStore):
    """
    S3 (or any S3-compatible endpoint). Uploads are staged locally as usual;
    publish is a single PUT of the finished, scanned file, so a partial object
    is never visible under its key.

    S3 has no rename, so bury() leaves the object in place and purge_tombstone()
    deletes it once the row delete has committed.
    """

    name = "s3"

    def __init__(self, *, client, bucket: str, prefix: str = ""):
        self.client = client
        self.bucket = bucket
        self.prefix = prefix.strip("/")

    def _key(self, storage_ref: str) -> str:
        if storage_ref.startswith("/") or ".." in storage_ref.split("/"):
            raise StorageError("storage_ref escapes the object root.")
        return f"{self.prefix}/{storage_ref}" if self.prefix else storage_ref

    def _put(self, src: Path, key: str, media_type: str) -> None:
        with open(src, "rb") as body:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=body, ContentType=media_type)

    async def publish(self, src: Path, storage_ref: str, *, media_type: str) -> None:
        key = self._key(storage_ref)
        try:
            await run_in_threadpool(self._put, src, key, media_type)
        except (BotoCoreError, ClientError, OSError) as exc:
            raise StorageError(f"Could not upload {storage_ref} to s3://{self.bucket}/{key}") from exc
        # the local copy is only a staging artefact once the PUT has landed
        src.unlink(missing_ok=True)

    def _head(self, storage_ref: str):
        try:
            return self.client.head_object(Bucket=self.bucket, Key=self._key(storage_ref))
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return None
            raise StorageError(f"Could not stat {storage_ref}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Could not stat {storage_ref}") from exc

    def exists(self, storage_ref: str) -> bool:
        return self._head(storage_ref) is not None

    def size_of(self, storage_ref: str) -> int:
        head = self._head(storage_ref)
        if head is None:
            raise StorageError(f"No object for {storage_ref}")
        return int(head["ContentLength"])

    def iter_bytes(self, storage_ref: str, chunk_size: int = 64 * 1024) -> Iterator[bytes]:
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=self._key(storage_ref))
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Could not read {storage_ref}") from exc
        body = obj["Body"]
        try:
            yield from body.iter_chunks(chunk_size)
        finally:
            body.close()

    def delete(self, storage_ref: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=self._key(storage_ref))
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Could not delete {storage_ref}") from exc

    def bury(self, storage_ref: str) -> str:
        self._key(storage_ref)
        return storage_ref

    def restore(self, storage_ref: str, tomb: str) -> None:
        # nothing was moved
        return None

    def purge_tombstone(self, tomb: str) -> None:
        self.delete(tomb)


def _rename_into(src: Path, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    os.replace(src, dest)


def build_object_store(settings: Settings) -> ObjectStore:
    if settings.storage_backend == "local":
        return LocalObjectStore(settings.storage_root)
    if settings.storage_backend == "s3":
        if not settings.s3_bucket:
            raise ValueError("storage_backend=s3 requires s3_bucket.")
        client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url or None,
            region_name=settings.s3_region or None,
        )
        return S3ObjectStore(client=client, bucket=settings.s3_bucket, prefix=settings.s3_prefix)
    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")
