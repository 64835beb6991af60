from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from uuid import uuid4

from assessor.collaborators import StoredFile
from assessor.config import Settings
from assessor.errors import StorageError

logger = logging.getLogger("assessor.storage")

S3_SCHEME = "s3://"


def evidence_object_name(evidence_id: str, file_name: str) -> str:
    """``<evidence id>_<base name>``; directory parts of the client file name are dropped."""
    return f"{evidence_id}_{Path(file_name).name or 'upload.bin'}"


def split_s3_location(location: str) -> tuple[str, str]:
    raw = location.strip()
    if not raw.lower().startswith(S3_SCHEME):
        raise StorageError(f"Not an S3 URI: '{location}'")
    bucket, _, key = raw[len(S3_SCHEME):].partition("/")
    if not bucket.strip() or not key.strip():
        raise StorageError(f"Invalid S3 URI: '{location}' (expected s3://<bucket>/<key>)")
    return bucket.strip(), key.strip()


class LocalEvidenceBackend:
    name = "local"

    def __init__(self, root: Path) -> None:
        self.root = root

    def write(self, *, assessment_id: str, object_name: str, content_type: str, content: bytes) -> str:
        folder = self.root / assessment_id
        folder.mkdir(parents=True, exist_ok=True)
        destination = folder / object_name
        destination.write_bytes(content)
        return str(destination)

    def read(self, location: str) -> bytes:
        path = Path(location)
        if not path.is_file():
            raise StorageError(f"Stored file not found at '{location}'.")
        return path.read_bytes()

    def probe(self) -> dict[str, object]:
        self.root.mkdir(parents=True, exist_ok=True)
        marker = self.root / ".ready_probe"
        token = str(uuid4())
        marker.write_text(token, encoding="utf-8")
        try:
            if marker.read_text(encoding="utf-8") != token:
                raise StorageError("Local storage probe read back different content.")
        finally:
            marker.unlink(missing_ok=True)
        return {"ok": True, "backend": self.name}


class S3EvidenceBackend:
    name = "s3"

    def __init__(self, *, bucket: str, prefix: str, region: str) -> None:
        if not bucket:
            raise StorageError("S3 storage backend selected but S3_BUCKET is not configured.")
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.region = region

    def _client(self):
        try:
            import boto3  # type: ignore
        except ImportError as exc:
            raise StorageError("boto3 is required for S3 storage backend.") from exc
        return boto3.client("s3", region_name=self.region)

    def write(self, *, assessment_id: str, object_name: str, content_type: str, content: bytes) -> str:
        key = "/".join(part for part in (self.prefix, "evidence", assessment_id, object_name) if part)
        try:
            self._client().put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type or "application/octet-stream",
            )
        except StorageError:
            raise
        except Exception as exc:  # pragma: no cover - depends on AWS runtime integration
            raise StorageError(f"Failed to write evidence to S3 (bucket={self.bucket}, key={key}): {exc}") from exc
        return f"{S3_SCHEME}{self.bucket}/{key}"

    def read(self, location: str) -> bytes:
        bucket, key = split_s3_location(location)
        try:
            body = self._client().get_object(Bucket=bucket, Key=key).get("Body")
        except StorageError:
            raise
        except Exception as exc:  # pragma: no cover - depends on AWS runtime integration
            raise StorageError(f"Failed to read evidence from S3 (bucket={bucket}, key={key}): {exc}") from exc
        if body is None:
            raise StorageError(f"S3 get_object returned no body (bucket={bucket}, key={key}).")
        return body.read()

    def probe(self) -> dict[str, object]:
        self._client().head_bucket(Bucket=self.bucket)
        return {"ok": True, "backend": self.name, "bucket": self.bucket}


EvidenceBackend = LocalEvidenceBackend | S3EvidenceBackend


def backend_for(settings: Settings) -> EvidenceBackend:
    choice = (settings.storage_backend or "").strip().lower()
    if choice in {"local", "filesystem", "fs"}:
        return LocalEvidenceBackend(Path(settings.storage_root))
    if choice == "s3":
        return S3EvidenceBackend(
            bucket=str(settings.s3_bucket or "").strip(),
            prefix=str(settings.s3_prefix or "").strip(),
            region=settings.aws_region,
        )
    raise StorageError(f"Unsupported STORAGE_BACKEND '{settings.storage_backend}'. Use 'local' or 's3'.")


def save_evidence_bytes(
    *,
    settings: Settings,
    assessment_id: str,
    evidence_id: str,
    file_name: str,
    content_type: str,
    content: bytes,
) -> str:
    return backend_for(settings).write(
        assessment_id=assessment_id,
        object_name=evidence_object_name(evidence_id, file_name),
        content_type=content_type,
        content=content,
    )


def load_evidence_bytes(*, settings: Settings, storage_path: str) -> bytes:
    """Read stored evidence back; the location's scheme picks the backend, not the current setting."""
    location = str(storage_path or "").strip()
    if not location:
        raise StorageError("Missing storage path.")
    if location.lower().startswith(S3_SCHEME):
        bucket, _ = split_s3_location(location)
        return S3EvidenceBackend(bucket=bucket, prefix="", region=settings.aws_region).read(location)
    return LocalEvidenceBackend(Path(settings.storage_root)).read(location)


class EvidenceFileStorage:
    """File storage collaborator scoped to one assessment."""

    def __init__(self, *, settings: Settings, assessment_id: str) -> None:
        self._settings = settings
        self._assessment_id = assessment_id

    async def upload(self, *, file_name: str, content_type: str, content: bytes) -> StoredFile:
        if len(content) > self._settings.max_upload_file_bytes:
            raise StorageError(
                f"File '{Path(file_name).name}' exceeds max size of {self._settings.max_upload_file_bytes} bytes."
            )
        evidence_id = str(uuid4())
        # Disk and S3 writes block; keep them off the event loop.
        url = await asyncio.to_thread(
            save_evidence_bytes,
            settings=self._settings,
            assessment_id=self._assessment_id,
            evidence_id=evidence_id,
            file_name=file_name,
            content_type=content_type,
            content=content,
        )
        logger.info(
            "evidence_bytes_stored",
            extra={"event": "evidence_bytes_stored", "evidence_id": evidence_id, "size_bytes": len(content)},
        )
        return StoredFile(
            id=evidence_id,
            name=Path(file_name).name or "upload.bin",
            url=url,
            size=len(content),
            mime_type=content_type or "application/octet-stream",
        )
