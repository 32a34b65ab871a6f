# storage.py — Local-disk attachment store and upload policies
# Payloads live under UPLOAD_ROOT/<namespace>; the database keeps only metadata.
import logging
import os
import time
import uuid
from dataclasses import dataclass
from typing import FrozenSet, Optional

from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from errors import InvalidInputError

logger = logging.getLogger("issue-tracker.storage")

UPLOAD_ROOT = os.getenv("UPLOAD_ROOT", "uploads")

MB = 1024 * 1024
CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class UploadPolicy:
    name: str
    max_bytes: int
    allowed_mime_types: FrozenSet[str] = frozenset()
    allowed_extensions: FrozenSet[str] = frozenset()
    max_files: int = 1


ISSUE_ATTACHMENT_POLICY = UploadPolicy(
    name="issue attachment",
    max_bytes=10 * MB,
    allowed_mime_types=frozenset({
        "image/jpeg",
        "image/png",
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    }),
    max_files=5,
)

PROJECT_AVATAR_POLICY = UploadPolicy(
    name="project avatar",
    max_bytes=2 * MB,
    allowed_extensions=frozenset({".jpg", ".jpeg", ".png"}),
)


@dataclass(frozen=True)
class StoredFile:
    file_name: str
    file_path: str
    file_type: str
    file_size: int


class AttachmentStore:
    """Writes uploads to disk after checking them against an UploadPolicy"""

    def __init__(self, root: Optional[str] = None):
        self.root = str(root or UPLOAD_ROOT)

    def check(self, upload: UploadFile, policy: UploadPolicy, size: Optional[int] = None):
        file_name = upload.filename or ""
        ext = os.path.splitext(file_name)[1].lower()
        content_type = (upload.content_type or "").lower()

        if policy.allowed_extensions and ext not in policy.allowed_extensions:
            raise InvalidInputError(
                f"Only {', '.join(sorted(policy.allowed_extensions))} files are allowed",
                error_type="Invalid file type",
                details={"file_name": file_name, "policy": policy.name},
            )
        if policy.allowed_mime_types and content_type not in policy.allowed_mime_types:
            raise InvalidInputError(
                f"File type '{content_type or 'unknown'}' is not allowed for {policy.name}",
                error_type="Invalid file type",
                details={"file_name": file_name, "policy": policy.name},
            )
        if size is not None and size > policy.max_bytes:
            raise InvalidInputError(
                f"File exceeds the {policy.max_bytes // MB}MB limit",
                error_type="File too large",
                details={"file_name": file_name, "size": size, "max_bytes": policy.max_bytes},
            )

    def check_count(self, count: int, policy: UploadPolicy):
        if count > policy.max_files:
            raise InvalidInputError(
                f"At most {policy.max_files} files may be uploaded at once",
                error_type="Too many files",
            )

    async def save(self, upload: UploadFile, policy: UploadPolicy, namespace: str) -> StoredFile:
        """Stream an upload to disk, reading at most one byte past the policy limit."""
        self.check(upload, policy, size=upload.size)

        ext = os.path.splitext(upload.filename or "")[1].lower()
        stored_name = f"{int(time.time() * 1000)}-{uuid.uuid4()}{ext}"
        directory = os.path.join(self.root, namespace)
        await run_in_threadpool(os.makedirs, directory, exist_ok=True)
        path = os.path.join(directory, stored_name)

        size = 0
        handle = await run_in_threadpool(open, path, "wb")
        try:
            while True:
                chunk = await upload.read(min(CHUNK_SIZE, policy.max_bytes + 1 - size))
                if not chunk:
                    break
                size += len(chunk)
                self.check(upload, policy, size=size)
                await run_in_threadpool(handle.write, chunk)
        except Exception:
            await run_in_threadpool(handle.close)
            await self.remove(path)
            raise
        await run_in_threadpool(handle.close)

        logger.info(f"Stored {policy.name} {upload.filename!r} at {path} ({size} bytes)")
        return StoredFile(
            file_name=upload.filename or stored_name,
            file_path=path,
            file_type=upload.content_type or "application/octet-stream",
            file_size=size,
        )

    async def remove(self, path: Optional[str]) -> bool:
        """Delete a stored file. A file that is already gone counts as removed."""
        if not path:
            return False
        try:
            await run_in_threadpool(os.remove, path)
        except FileNotFoundError:
            logger.warning(f"Stored file already missing: {path}")
            return False
        return True


def get_attachment_store() -> AttachmentStore:
    """FastAPI dependency; tests override it with a store rooted in tmp_path"""
    return AttachmentStore()
