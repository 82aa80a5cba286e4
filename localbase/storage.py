"""Object storage emulator: buckets and files on the local filesystem.

Bytes live under ``<storage_dir>/<bucket>/<path>``; bucket rows and file
metadata live in the record store (storage_buckets, storage_files).

Ordering rules:
- upload stages bytes in a sibling temp file, then writes the file record,
  then moves the bytes into place; a failed upload only ever removes its
  own staged file
- remove deletes bytes first (absence tolerated), then the file record
- download surfaces a record without bytes as NotFoundError

Of several concurrent fresh uploads to one path exactly one succeeds, the
unique (bucket_name, file_path) constraint decides which. Concurrent
overwrites with upsert are not serialized: last writer wins.
"""

import asyncio
import mimetypes
import os
import uuid
from pathlib import Path, PurePosixPath
from typing import IO, Any

import structlog

from localbase import metrics
from localbase.errors import (
    ConflictError,
    FilesystemError,
    NotFoundError,
    StoreError,
    ValidationError,
    translate_store_error,
)
from localbase.query import InsertQuery
from localbase.results import returns_result
from localbase.schema import utc_now
from localbase.store import RecordStore

logger = structlog.get_logger()

DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".txt": "text/plain",
    ".html": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".json": "application/json",
    ".xml": "application/xml",
    ".mp3": "audio/mpeg",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".zip": "application/zip",
    ".rar": "application/vnd.rar",
    ".7z": "application/x-7z-compressed",
}

# Built-in table only (no host mime.types files), with CONTENT_TYPES on top
_mime_types = mimetypes.MimeTypes(filenames=())
for _ext, _type in CONTENT_TYPES.items():
    _mime_types.add_type(_type, _ext)


def guess_content_type(path: str) -> str:
    """Content type from the file extension, octet-stream when unknown."""
    suffix = PurePosixPath(path).suffix.lower()
    if suffix in CONTENT_TYPES:
        return CONTENT_TYPES[suffix]
    content_type, _ = _mime_types.guess_type(path, strict=True)
    return content_type or DEFAULT_CONTENT_TYPE


def validate_bucket_name(bucket: Any) -> str:
    if not isinstance(bucket, str) or not bucket or "/" in bucket or bucket in (".", ".."):
        raise ValidationError(f"Invalid bucket name: {bucket!r}", details={"bucket": repr(bucket)})
    return bucket


def normalize_path(path: Any) -> str:
    """
    Validate an object path and return it in canonical form.

    Paths are relative POSIX paths: no leading slash, no '..' segments,
    no empty result. Repeated slashes and '.' segments collapse.
    """
    if not isinstance(path, str) or not path.strip():
        raise ValidationError(f"Invalid file path: {path!r}", details={"path": repr(path)})
    if path.startswith("/") or "\\" in path:
        raise ValidationError(f"File path must be relative: {path!r}", details={"path": path})
    parts = [p for p in PurePosixPath(path).parts if p != "."]
    if not parts or ".." in parts:
        raise ValidationError(f"Invalid file path: {path!r}", details={"path": path})
    return "/".join(parts)


def _to_bytes(data: Any) -> bytes:
    if isinstance(data, bytes):
        return data
    if isinstance(data, (bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, str):
        return data.encode("utf-8")
    if hasattr(data, "read"):
        return _to_bytes(data.read())
    raise ValidationError(
        f"Unsupported upload payload type: {type(data).__name__}",
        details={"type": type(data).__name__},
    )


def file_entry(record: dict[str, Any]) -> dict[str, Any]:
    """Public listing shape of a storage_files row."""
    return {
        "id": record["id"],
        "name": record["file_name"],
        "path": record["file_path"],
        "bucket": record["bucket_name"],
        "content_type": record.get("content_type"),
        "size": record.get("size"),
        "owner_id": record.get("owner_id"),
        "is_public": record.get("is_public"),
        "created_at": record.get("created_at"),
        "updated_at": record.get("updated_at"),
    }


class StorageEmulator:
    """
    Buckets and files over the record store and a storage root directory.

    Usage:
        storage = StorageEmulator(store, Path("storage"))
        await storage.initialize_buckets({"documents": False, "images": True})
        result = await storage.upload("documents", "u1/notes.txt", b"hello")
    """

    def __init__(
        self,
        store: RecordStore,
        root: Path | str,
        buckets: dict[str, bool] | None = None,
        public_url_prefix: str = "/storage",
    ) -> None:
        self.store = store
        self.root = Path(root)
        self.buckets = dict(buckets or {})
        self.public_url_prefix = public_url_prefix.rstrip("/")

    def from_(self, bucket: str) -> "BucketApi":
        """Bucket-scoped view: ``storage.from_("documents").upload(path, data)``."""
        return BucketApi(self, bucket)

    # ========================================
    # Internal helpers (raise)
    # ========================================

    def _object_path(self, bucket: str, path: str) -> Path:
        return self.root / bucket / Path(*path.split("/"))

    async def _require_bucket(self, bucket: str) -> dict[str, Any]:
        row = await self.store.get_one("SELECT * FROM storage_buckets WHERE name = ?", [bucket])
        if row is None:
            raise NotFoundError(f"Bucket not found: {bucket}", details={"bucket": bucket})
        return self.store.decode_row("storage_buckets", row)

    async def _get_record(self, bucket: str, path: str) -> dict[str, Any] | None:
        row = await self.store.get_one(
            "SELECT * FROM storage_files WHERE bucket_name = ? AND file_path = ?",
            [bucket, path],
        )
        return self.store.decode_row("storage_files", row) if row else None

    async def _require_record(self, bucket: str, path: str) -> dict[str, Any]:
        record = await self._get_record(bucket, path)
        if record is None:
            raise NotFoundError(
                f"File not found: {bucket}/{path}",
                details={"bucket": bucket, "path": path},
            )
        return record

    async def _stage(self, target: Path, payload: bytes) -> Path:
        """Write payload to a uniquely named temp file next to target."""
        staged = target.with_name(f".{target.name}.{uuid.uuid4().hex}.part")

        def write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            staged.write_bytes(payload)

        try:
            await asyncio.to_thread(write)
        except OSError as e:
            raise FilesystemError(f"Failed to write file: {e}", details={"file": str(target)}, cause=e)
        return staged

    async def _place(self, staged: Path, target: Path) -> None:
        try:
            await asyncio.to_thread(os.replace, staged, target)
        except OSError as e:
            raise FilesystemError(f"Failed to write file: {e}", details={"file": str(target)}, cause=e)

    async def _unlink(self, target: Path) -> bool:
        """Delete a file, returning False if it was already gone."""
        try:
            await asyncio.to_thread(target.unlink)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise FilesystemError(f"Failed to delete file: {e}", details={"file": str(target)}, cause=e)
        return True

    # ========================================
    # Buckets
    # ========================================

    @returns_result("initialize_buckets")
    async def initialize_buckets(self, buckets: dict[str, bool] | None = None) -> list[dict[str, Any]]:
        """
        Ensure directory and bucket row exist for every configured bucket.

        Idempotent; existing rows keep their public flag.
        """
        inventory = self.buckets if buckets is None else buckets
        rows = []
        for name, public in inventory.items():
            validate_bucket_name(name)
            try:
                await asyncio.to_thread((self.root / name).mkdir, parents=True, exist_ok=True)
            except OSError as e:
                raise FilesystemError(f"Failed to create bucket directory: {e}", details={"bucket": name}, cause=e)

            row = self.store.encode_row(
                "storage_buckets",
                {"id": f"bucket_{name}", "name": name, "public": bool(public)},
                for_insert=True,
            )
            # existing rows keep their public flag
            try:
                await self.store.execute(
                    "INSERT INTO storage_buckets (id, name, public, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?) ON CONFLICT DO NOTHING",
                    [row["id"], row["name"], row["public"], row["created_at"], row["updated_at"]],
                )
            except StoreError as e:
                raise translate_store_error(e, bucket=name)
            rows.append(await self._require_bucket(name))

        logger.info("buckets_initialized", buckets=sorted(inventory), root=str(self.root))
        return rows

    @returns_result("list_buckets")
    async def list_buckets(self) -> list[dict[str, Any]]:
        rows = await self.store.get_all("SELECT * FROM storage_buckets ORDER BY name")
        return [self.store.decode_row("storage_buckets", r) for r in rows]

    @returns_result("get_bucket")
    async def get_bucket(self, name: str) -> dict[str, Any]:
        return await self._require_bucket(validate_bucket_name(name))

    # ========================================
    # Objects
    # ========================================

    @returns_result("upload")
    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes | str | IO[bytes],
        content_type: str | None = None,
        owner_id: str | None = None,
        upsert: bool = False,
    ) -> dict[str, Any]:
        """
        Write bytes and their file record.

        Args:
            bucket: Existing bucket name
            path: Relative object path; intermediate directories are created
            data: bytes, str (UTF-8 encoded) or a binary file-like object
            content_type: Defaults to a guess from the file extension
            owner_id: Stored on the file record
            upsert: Overwrite an existing object instead of failing

        Returns:
            The file record plus ``path`` and ``full_path`` (bucket/path)
        """
        try:
            bucket = validate_bucket_name(bucket)
            path = normalize_path(path)
            payload = _to_bytes(data)
            bucket_row = await self._require_bucket(bucket)

            existing = await self._get_record(bucket, path)
            if existing is not None and not upsert:
                raise ConflictError(
                    f"File already exists: {bucket}/{path}",
                    details={"bucket": bucket, "path": path},
                )

            content_type = content_type or guess_content_type(path)
            target = self._object_path(bucket, path)
            staged = await self._stage(target, payload)
            try:
                record = None
                if existing is None:
                    try:
                        record = await self._insert_record(
                            bucket, path, payload, content_type, owner_id, bool(bucket_row.get("public"))
                        )
                    except ConflictError:
                        if not upsert:
                            raise
                        # a concurrent upload created the record first; overwrite it
                        existing = await self._require_record(bucket, path)

                if record is not None:
                    try:
                        await self._place(staged, target)
                    except FilesystemError:
                        await self.store.execute("DELETE FROM storage_files WHERE id = ?", [record["id"]])
                        raise
                else:
                    await self._place(staged, target)
                    record = await self._update_record(existing, payload, content_type, owner_id)
            finally:
                await self._unlink(staged)
        except Exception:
            metrics.STORAGE_OPERATIONS_TOTAL.labels(operation="upload", status="error").inc()
            raise

        metrics.STORAGE_OPERATIONS_TOTAL.labels(operation="upload", status="success").inc()
        metrics.STORAGE_UPLOAD_BYTES_TOTAL.inc(len(payload))
        logger.info("file_uploaded", bucket=bucket, path=path, size=len(payload), overwrite=existing is not None)
        return {**record, "path": path, "full_path": f"{bucket}/{path}"}

    async def _insert_record(
        self,
        bucket: str,
        path: str,
        payload: bytes,
        content_type: str,
        owner_id: str | None,
        is_public: bool,
    ) -> dict[str, Any]:
        compiled = InsertQuery(self.store, "storage_files").compile_row({
            "id": str(uuid.uuid4()),
            "bucket_name": bucket,
            "file_path": path,
            "file_name": PurePosixPath(path).name,
            "content_type": content_type,
            "size": len(payload),
            "owner_id": owner_id,
            "is_public": is_public,
        })
        try:
            rows = await self.store.get_all(compiled.sql, compiled.params)
        except StoreError as e:
            error = translate_store_error(e, bucket=bucket, path=path)
            if isinstance(error, ConflictError):
                raise ConflictError(
                    f"File already exists: {bucket}/{path}",
                    details={"bucket": bucket, "path": path},
                    cause=e,
                )
            raise error
        return self.store.decode_row("storage_files", rows[0])

    async def _update_record(
        self,
        existing: dict[str, Any],
        payload: bytes,
        content_type: str,
        owner_id: str | None,
    ) -> dict[str, Any]:
        rows = await self.store.get_all(
            "UPDATE storage_files SET content_type = ?, size = ?, owner_id = ?, updated_at = ? "
            "WHERE id = ? RETURNING *",
            [content_type, len(payload), owner_id or existing.get("owner_id"), utc_now(), existing["id"]],
        )
        return self.store.decode_row("storage_files", rows[0])

    @returns_result("download")
    async def download(self, bucket: str, path: str) -> dict[str, Any]:
        """
        Read an object.

        Returns:
            {"data": bytes, "size", "content_type", "name"}
        """
        bucket = validate_bucket_name(bucket)
        path = normalize_path(path)
        record = await self._require_record(bucket, path)
        target = self._object_path(bucket, path)
        try:
            payload = await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as e:
            metrics.STORAGE_OPERATIONS_TOTAL.labels(operation="download", status="error").inc()
            raise NotFoundError(
                f"File record exists but the file is missing on disk: {bucket}/{path}",
                details={"bucket": bucket, "path": path, "file": str(target)},
                cause=e,
            )
        except OSError as e:
            metrics.STORAGE_OPERATIONS_TOTAL.labels(operation="download", status="error").inc()
            raise FilesystemError(f"Failed to read file: {e}", details={"bucket": bucket, "path": path}, cause=e)

        metrics.STORAGE_OPERATIONS_TOTAL.labels(operation="download", status="success").inc()
        metrics.STORAGE_DOWNLOAD_BYTES_TOTAL.inc(len(payload))
        return {
            "data": payload,
            "size": len(payload),
            "content_type": record.get("content_type") or DEFAULT_CONTENT_TYPE,
            "name": record["file_name"],
        }

    @returns_result("get_public_url")
    async def get_public_url(self, bucket: str, path: str) -> dict[str, str]:
        """Deterministic local URL; visibility is enforced by the HTTP layer."""
        bucket = validate_bucket_name(bucket)
        path = normalize_path(path)
        await self._require_bucket(bucket)
        await self._require_record(bucket, path)
        return {"public_url": f"{self.public_url_prefix}/{bucket}/{path}"}

    @returns_result("list")
    async def list(
        self,
        bucket: str,
        path_prefix: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """File entries in a bucket, sorted by path, optionally prefix-filtered."""
        bucket = validate_bucket_name(bucket)
        await self._require_bucket(bucket)

        sql = "SELECT * FROM storage_files WHERE bucket_name = ?"
        params: list[Any] = [bucket]
        if path_prefix:
            if not isinstance(path_prefix, str):
                raise ValidationError("path_prefix must be a string", details={"path_prefix": repr(path_prefix)})
            sql += " AND starts_with(file_path, ?)"
            params.append(path_prefix.lstrip("/"))
        sql += " ORDER BY file_path ASC"
        if limit is not None:
            if not isinstance(limit, int) or isinstance(limit, bool) or limit < 0:
                raise ValidationError("limit must be a non-negative integer", details={"limit": repr(limit)})
            sql += " LIMIT ?"
            params.append(limit)
        if offset:
            if not isinstance(offset, int) or isinstance(offset, bool) or offset < 0:
                raise ValidationError("offset must be a non-negative integer", details={"offset": repr(offset)})
            sql += " OFFSET ?"
            params.append(offset)

        rows = await self.store.get_all(sql, params)
        metrics.STORAGE_OPERATIONS_TOTAL.labels(operation="list", status="success").inc()
        return [file_entry(self.store.decode_row("storage_files", r)) for r in rows]

    @returns_result("remove")
    async def remove(self, bucket: str, path: str) -> dict[str, str]:
        """
        Delete bytes (absence tolerated), then the file record.

        Returns:
            {"path", "bucket"}; NotFoundError when no record existed
        """
        bucket = validate_bucket_name(bucket)
        path = normalize_path(path)
        target = self._object_path(bucket, path)
        try:
            existed = await self._unlink(target)
            count = await self.store.execute(
                "DELETE FROM storage_files WHERE bucket_name = ? AND file_path = ?",
                [bucket, path],
            )
        except Exception:
            metrics.STORAGE_OPERATIONS_TOTAL.labels(operation="remove", status="error").inc()
            raise
        if not count:
            metrics.STORAGE_OPERATIONS_TOTAL.labels(operation="remove", status="error").inc()
            raise NotFoundError(
                f"File not found: {bucket}/{path}",
                details={"bucket": bucket, "path": path, "bytes_removed": existed},
            )

        metrics.STORAGE_OPERATIONS_TOTAL.labels(operation="remove", status="success").inc()
        logger.info("file_removed", bucket=bucket, path=path, bytes_removed=existed)
        return {"path": path, "bucket": bucket}


class BucketApi:
    """Operations bound to one bucket."""

    def __init__(self, storage: StorageEmulator, bucket: str) -> None:
        self.storage = storage
        self.bucket = bucket

    async def upload(self, path: str, data: Any, content_type: str | None = None,
                     owner_id: str | None = None, upsert: bool = False):
        return await self.storage.upload(
            self.bucket, path, data, content_type=content_type, owner_id=owner_id, upsert=upsert
        )

    async def download(self, path: str):
        return await self.storage.download(self.bucket, path)

    async def get_public_url(self, path: str):
        return await self.storage.get_public_url(self.bucket, path)

    async def list(self, path_prefix: str | None = None, limit: int | None = None, offset: int = 0):
        return await self.storage.list(self.bucket, path_prefix=path_prefix, limit=limit, offset=offset)

    async def remove(self, path: str):
        return await self.storage.remove(self.bucket, path)
