"""Object-store backends behind a single ``ObjectStore`` protocol.

Two backends:

1. **LocalObjectStore** — a directory tree.  Writes go to a temp file in
   the target directory and are moved into place with ``os.replace``, so
   a reader never observes a half-written object.
2. **S3ObjectStore** — any S3-compatible bucket via boto3.  ``put_object``
   and ``copy_object`` are atomic per key on S3.

Backends report a missing key as ``ObjectNotFoundError`` and any other
failure as ``ObjectStoreError``.  Retrying is the caller's concern.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from stagepress.core.errors import NotFoundError

logger = logging.getLogger(__name__)

_TMP_PREFIX = ".tmp-"
_MISSING_CODES = frozenset({"NoSuchKey", "404", "NotFound"})


class ObjectNotFoundError(NotFoundError):
    """Raised when a key does not exist."""


class ObjectStoreError(RuntimeError):
    """Raised when the backing store fails for a reason other than a missing key."""


class ObjectStore(Protocol):
    """Minimal key/value object storage used by the Environment Store."""

    def put(self, key: str, data: bytes, *, content_type: str = "text/html; charset=utf-8") -> None: ...

    def get(self, key: str) -> bytes: ...

    def copy(self, source_key: str, destination_key: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def list_keys(self, prefix: str) -> list[str]: ...

    def exists(self, key: str) -> bool: ...


# ---------------------------------------------------------------------------
# Local filesystem
# ---------------------------------------------------------------------------


class LocalObjectStore:
    """Filesystem-backed object store.

    Parameters
    ----------
    root:
        Directory that plays the role of the bucket.  Keys map to paths
        below it with ``/`` as the separator.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, key: str) -> Path:
        parts = key.split("/")
        if not key or any(p in ("", ".", "..") for p in parts):
            raise ValueError(f"Invalid object key: {key!r}")
        return self._root.joinpath(*parts)

    def put(self, key: str, data: bytes, *, content_type: str = "text/html; charset=utf-8") -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=_TMP_PREFIX, dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise ObjectStoreError(f"Failed to write {key}: {exc}") from exc

    def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise ObjectNotFoundError(f"Object not found: {key}") from None
        except OSError as exc:
            raise ObjectStoreError(f"Failed to read {key}: {exc}") from exc

    def copy(self, source_key: str, destination_key: str) -> None:
        self.put(destination_key, self.get(source_key))

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise ObjectStoreError(f"Failed to delete {key}: {exc}") from exc

    def list_keys(self, prefix: str) -> list[str]:
        base = self._path(prefix.rstrip("/"))
        if not base.is_dir():
            return []
        keys = []
        for path in base.rglob("*"):
            if path.is_file() and not path.name.startswith(_TMP_PREFIX):
                keys.append(path.relative_to(self._root).as_posix())
        return sorted(keys)

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()


# ---------------------------------------------------------------------------
# S3
# ---------------------------------------------------------------------------


class S3ObjectStore:
    """S3-compatible object store.

    Parameters
    ----------
    bucket_name:
        Bucket holding every environment prefix and the backups prefix.
    client:
        A pre-built boto3 S3 client.  Built from the remaining arguments
        when omitted.
    timeout_seconds:
        Connect and read timeout applied to every call.
    """

    def __init__(
        self,
        bucket_name: str,
        *,
        client: Any | None = None,
        endpoint_url: str | None = None,
        region: str = "us-east-1",
        timeout_seconds: float = 30.0,
    ) -> None:
        if not bucket_name:
            raise ValueError("bucket_name is required for the S3 backend")
        self._bucket = bucket_name
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            config=Config(
                connect_timeout=timeout_seconds,
                read_timeout=timeout_seconds,
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        )

    @property
    def bucket_name(self) -> str:
        return self._bucket

    def put(self, key: str, data: bytes, *, content_type: str = "text/html; charset=utf-8") -> None:
        self._call(
            "put_object",
            key,
            Bucket=self._bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
        )

    def get(self, key: str) -> bytes:
        response = self._call("get_object", key, Bucket=self._bucket, Key=key)
        return response["Body"].read()

    def copy(self, source_key: str, destination_key: str) -> None:
        self._call(
            "copy_object",
            source_key,
            Bucket=self._bucket,
            Key=destination_key,
            CopySource={"Bucket": self._bucket, "Key": source_key},
            MetadataDirective="COPY",
        )

    def delete(self, key: str) -> None:
        self._call("delete_object", key, Bucket=self._bucket, Key=key)

    def list_keys(self, prefix: str) -> list[str]:
        head = prefix.rstrip("/") + "/"
        keys: list[str] = []
        token: str | None = None
        while True:
            kwargs: dict[str, Any] = {"Bucket": self._bucket, "Prefix": head}
            if token:
                kwargs["ContinuationToken"] = token
            response = self._call("list_objects_v2", prefix, **kwargs)
            keys.extend(item["Key"] for item in response.get("Contents", []))
            if not response.get("IsTruncated"):
                break
            token = response.get("NextContinuationToken")
        return sorted(keys)

    def exists(self, key: str) -> bool:
        try:
            self._call("head_object", key, Bucket=self._bucket, Key=key)
        except ObjectNotFoundError:
            return False
        return True

    def _call(self, operation: str, key: str, **kwargs: Any) -> Any:
        try:
            return getattr(self._client, operation)(**kwargs)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_CODES:
                raise ObjectNotFoundError(f"Object not found: {key}") from None
            raise ObjectStoreError(f"S3 {operation} failed for {key}: {code or exc}") from exc
        except BotoCoreError as exc:
            raise ObjectStoreError(f"S3 {operation} failed for {key}: {exc}") from exc
