"""File uploads: object storage and the chunked-upload session arena.

Large files arrive as fixed-size chunks. Each file id owns one spool directory
holding ``session.json`` plus one ``<index>.part`` per acknowledged chunk; the
directory is created with the first chunk and removed on finalize or when the
session sits idle past its TTL.
"""

from __future__ import annotations

import json
import os
import re
import shutil
import tempfile
import threading
import time
import uuid
from dataclasses import asdict, dataclass
from typing import BinaryIO, Optional

import structlog

from postcraft.config import settings
from postcraft.errors import IncompleteUpload, NotFound, PayloadTooLarge

log = structlog.get_logger()

_FILE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{8,64}$")
_COPY_BUFFER = 1024 * 1024

# ── Types ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FileRef:
    url: str
    filename: str
    original_name: str
    mime_type: str
    size_bytes: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class UploadSession:
    file_id: str
    total_chunks: int
    original_name: str
    mime_type: str
    created_at: float
    updated_at: float

    def to_dict(self) -> dict:
        return asdict(self)


# ── Object storage ───────────────────────────────────────────────────────────


class LocalObjectStorage:
    """Stores files under ``root`` and serves them below ``base_url``.

    Every put yields a new reference, even for identical content.
    """

    def __init__(self, root: str, base_url: str):
        self.root = root
        self.base_url = base_url.rstrip("/")
        os.makedirs(self.root, exist_ok=True)

    def _new_name(self, original_name: str) -> str:
        ext = os.path.splitext(original_name or "")[1].lower()
        if not re.match(r"^\.[a-z0-9]{1,10}$", ext):
            ext = ""
        return f"{uuid.uuid4().hex}{ext}"

    def put_file(self, path: str, original_name: str, mime_type: str) -> FileRef:
        filename = self._new_name(original_name)
        dest = os.path.join(self.root, filename)
        shutil.copyfile(path, dest)
        return FileRef(
            url=f"{self.base_url}/{filename}",
            filename=filename,
            original_name=original_name or filename,
            mime_type=mime_type or "application/octet-stream",
            size_bytes=os.path.getsize(dest),
        )

    def put_stream(self, stream: BinaryIO, original_name: str, mime_type: str, max_bytes: int) -> FileRef:
        filename = self._new_name(original_name)
        dest = os.path.join(self.root, filename)
        size = 0
        with open(dest, "wb") as f:
            while chunk := stream.read(_COPY_BUFFER):
                size += len(chunk)
                if size > max_bytes:
                    f.close()
                    os.unlink(dest)
                    raise PayloadTooLarge(f"File too large. Max {max_bytes // (1024 * 1024)} MB.")
                f.write(chunk)
        return FileRef(
            url=f"{self.base_url}/{filename}",
            filename=filename,
            original_name=original_name or filename,
            mime_type=mime_type or "application/octet-stream",
            size_bytes=size,
        )


# ── Chunked uploads ──────────────────────────────────────────────────────────


class ChunkedUploadManager:
    def __init__(
        self,
        spool_dir: str,
        storage: LocalObjectStorage,
        chunk_bytes: int,
        max_bytes: int,
        ttl_seconds: int,
    ):
        self.spool_dir = spool_dir
        self.storage = storage
        self.chunk_bytes = chunk_bytes
        self.max_bytes = max_bytes
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        os.makedirs(self.spool_dir, exist_ok=True)

    # -- session arena --

    def _session_dir(self, file_id: str) -> str:
        if not _FILE_ID_RE.match(file_id or ""):
            raise ValueError("file_id must be 8-64 characters of [A-Za-z0-9_-]")
        return os.path.join(self.spool_dir, file_id)

    def _load(self, file_id: str) -> Optional[UploadSession]:
        path = os.path.join(self._session_dir(file_id), "session.json")
        try:
            with open(path, encoding="utf-8") as f:
                return UploadSession(**json.load(f))
        except FileNotFoundError:
            return None

    def _save(self, session: UploadSession) -> None:
        directory = self._session_dir(session.file_id)
        tmp = os.path.join(directory, "session.json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(session.to_dict(), f)
        os.replace(tmp, os.path.join(directory, "session.json"))

    def _received(self, file_id: str) -> set[int]:
        received = set()
        for name in os.listdir(self._session_dir(file_id)):
            if name.endswith(".part"):
                received.add(int(name[: -len(".part")]))
        return received

    def _received_bytes(self, file_id: str) -> int:
        directory = self._session_dir(file_id)
        return sum(
            os.path.getsize(os.path.join(directory, name))
            for name in os.listdir(directory)
            if name.endswith(".part")
        )

    def _teardown(self, file_id: str) -> None:
        shutil.rmtree(self._session_dir(file_id), ignore_errors=True)

    # -- public API --

    def upload_chunk(
        self,
        file_id: str,
        chunk_index: int,
        total_chunks: int,
        data: bytes,
        original_name: str = "",
        mime_type: str = "application/octet-stream",
    ) -> dict:
        """Store one chunk; the first chunk of a file id opens its session."""
        if total_chunks < 1:
            raise ValueError("total_chunks must be >= 1")
        if not 0 <= chunk_index < total_chunks:
            raise ValueError(f"chunk_index must be in 0..{total_chunks - 1}")
        if len(data) > self.chunk_bytes:
            raise PayloadTooLarge(f"Chunk too large. Max {self.chunk_bytes} bytes per chunk.")
        if total_chunks * self.chunk_bytes > self.max_bytes + self.chunk_bytes:
            raise PayloadTooLarge(f"File too large. Max {self.max_bytes // (1024 * 1024)} MB.")

        directory = self._session_dir(file_id)
        with self._lock:
            session = self._load(file_id)
            now = time.time()
            if session is None:
                os.makedirs(directory, exist_ok=True)
                session = UploadSession(
                    file_id=file_id,
                    total_chunks=total_chunks,
                    original_name=original_name,
                    mime_type=mime_type,
                    created_at=now,
                    updated_at=now,
                )
                log.info("upload_session_opened", file_id=file_id, total_chunks=total_chunks)
            elif session.total_chunks != total_chunks:
                raise ValueError(
                    f"total_chunks changed from {session.total_chunks} to {total_chunks}; restart the upload"
                )

            part = os.path.join(directory, f"{chunk_index:06d}.part")
            previous = os.path.getsize(part) if os.path.exists(part) else 0
            if self._received_bytes(file_id) - previous + len(data) > self.max_bytes:
                raise PayloadTooLarge(f"File too large. Max {self.max_bytes // (1024 * 1024)} MB.")

            tmp = part + ".tmp"
            with open(tmp, "wb") as f:
                f.write(data)
            os.replace(tmp, part)

            session.updated_at = now
            self._save(session)
            received = self._received(file_id)

        return {
            "file_id": file_id,
            "chunk_index": chunk_index,
            "received": len(received),
            "total_chunks": total_chunks,
        }

    def finalize(self, file_id: str) -> FileRef:
        """Assemble every chunk in index order and hand the file to storage."""
        with self._lock:
            session = self._load(file_id)
            if session is None:
                raise NotFound(f"No upload session for file {file_id}")

            received = self._received(file_id)
            missing = sorted(set(range(session.total_chunks)) - received)
            if missing:
                log.info("upload_incomplete", file_id=file_id, missing=missing)
                raise IncompleteUpload(file_id, missing)

            directory = self._session_dir(file_id)
            fd, assembled = tempfile.mkstemp(dir=directory, suffix=".assembled")
            try:
                with os.fdopen(fd, "wb") as out:
                    for index in range(session.total_chunks):
                        with open(os.path.join(directory, f"{index:06d}.part"), "rb") as part:
                            shutil.copyfileobj(part, out, _COPY_BUFFER)
                ref = self.storage.put_file(assembled, session.original_name, session.mime_type)
            finally:
                self._teardown(file_id)

        log.info("upload_finalized", file_id=file_id, url=ref.url, size_bytes=ref.size_bytes)
        return ref

    def reap_expired(self, now: Optional[float] = None) -> int:
        """Remove sessions idle for longer than the TTL."""
        now = time.time() if now is None else now
        removed = 0
        with self._lock:
            for file_id in os.listdir(self.spool_dir):
                if not _FILE_ID_RE.match(file_id):
                    continue
                session = self._load(file_id)
                if session is None:
                    last_seen = os.path.getmtime(self._session_dir(file_id))
                else:
                    last_seen = session.updated_at
                if now - last_seen > self.ttl_seconds:
                    self._teardown(file_id)
                    removed += 1
        if removed:
            log.info("upload_sessions_reaped", removed=removed)
        return removed


_storage: Optional[LocalObjectStorage] = None
_manager: Optional[ChunkedUploadManager] = None


def get_storage() -> LocalObjectStorage:
    global _storage
    if _storage is None:
        _storage = LocalObjectStorage(settings.media_root, settings.media_base_url)
    return _storage


def get_upload_manager() -> ChunkedUploadManager:
    global _manager
    if _manager is None:
        _manager = ChunkedUploadManager(
            spool_dir=settings.upload_spool_dir,
            storage=get_storage(),
            chunk_bytes=settings.upload_chunk_bytes,
            max_bytes=settings.max_upload_mb * 1024 * 1024,
            ttl_seconds=settings.upload_session_ttl_seconds,
        )
    return _manager
