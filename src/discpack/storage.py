"""Remote object storage for packs, one archive per token."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol, cast


class PackStoreError(RuntimeError):
    """Raised when the object store rejects or fails a request."""


class PackStore(Protocol):
    """Operations the pipeline needs from remote storage."""

    def fetch(self, key: str, destination: Path) -> None:
        """Download object ``key`` to ``destination``."""

    def upload(self, key: str, source: Path) -> None:
        """Replace object ``key`` with the contents of ``source``."""

    def delete(self, key: str) -> None:
        """Remove object ``key``."""

    def size(self, key: str) -> int | None:
        """Return the stored size of ``key`` or ``None`` when unknown."""


class _S3ClientProtocol(Protocol):
    def download_file(self, Bucket: str, Key: str, Filename: str) -> Any:
        """Download an object to a local file."""

    def upload_file(
        self, Filename: str, Bucket: str, Key: str, ExtraArgs: Any = None
    ) -> Any:
        """Upload a local file."""

    def delete_object(self, **kwargs: Any) -> Any:
        """Delete an object."""

    def head_object(self, **kwargs: Any) -> Any:
        """Return object metadata."""


def pack_key(token: str) -> str:
    return f"{token}.zip"


class S3PackStore:
    """Store packs in an Amazon S3 compatible bucket (such as Cloudflare R2)."""

    def __init__(
        self,
        *,
        bucket: str,
        prefix: str | None = None,
        client: _S3ClientProtocol | None = None,
        region_name: str | None = None,
        endpoint_url: str | None = None,
        timeout: float = 60.0,
        content_type: str = "application/zip",
    ) -> None:
        self._bucket = bucket
        self._prefix = (prefix or "").strip().strip("/")
        self._content_type = content_type
        self._client: _S3ClientProtocol

        if client is not None:
            self._client = client
            return

        try:
            import boto3  # type: ignore[import-not-found]
            from botocore.config import Config  # type: ignore[import-not-found]
        except ImportError as exc:  # pragma: no cover - defensive guard
            raise RuntimeError(
                "boto3 is required to use S3PackStore but is not installed."
            ) from exc

        self._client = cast(
            _S3ClientProtocol,
            boto3.client(
                "s3",
                region_name=region_name,
                endpoint_url=endpoint_url,
                config=Config(
                    connect_timeout=timeout,
                    read_timeout=timeout,
                    retries={"max_attempts": 2},
                ),
            ),
        )

    def fetch(self, key: str, destination: Path) -> None:
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._client.download_file(self._bucket, self._key(key), str(destination))
        except Exception as exc:
            raise PackStoreError(f"Failed to download pack {key}: {exc}") from exc

    def upload(self, key: str, source: Path) -> None:
        try:
            self._client.upload_file(
                str(source),
                self._bucket,
                self._key(key),
                ExtraArgs={"ContentType": self._content_type},
            )
        except Exception as exc:
            raise PackStoreError(f"Upload of pack {key} failed: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=self._key(key))
        except Exception as exc:
            raise PackStoreError(f"Delete of pack {key} failed: {exc}") from exc

    def size(self, key: str) -> int | None:
        try:
            response = self._client.head_object(Bucket=self._bucket, Key=self._key(key))
        except Exception as exc:
            raise PackStoreError(f"Could not inspect pack {key}: {exc}") from exc
        length = response.get("ContentLength") if isinstance(response, dict) else None
        return int(length) if isinstance(length, int) else None

    def _key(self, key: str) -> str:
        return key if not self._prefix else f"{self._prefix}/{key}"


__all__ = ["PackStore", "PackStoreError", "S3PackStore", "pack_key"]
