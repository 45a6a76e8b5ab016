"""HTTP upload client: single-shot for small files, sequential chunks for large ones."""

from __future__ import annotations

import math
import mimetypes
import os
import time
import uuid
from typing import Callable, Optional

import httpx
import structlog

from postcraft.config import settings
from postcraft.errors import UploadFailed

log = structlog.get_logger()

_TRANSIENT_STATUS = {408, 425, 429, 500, 502, 503, 504}


class ChunkedUploader:
    """Uploads files to a postcraft server.

    Chunks of one file go out strictly in index order, one at a time. Each chunk
    is retried on transport errors and transient statuses; a chunk that still
    fails aborts the file with :class:`UploadFailed` naming its index, and the
    caller restarts the file from scratch.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        chunk_bytes: int = settings.upload_chunk_bytes,
        threshold_bytes: int = settings.upload_chunk_threshold_bytes,
        retries: int = settings.upload_chunk_retries,
        timeout: float = settings.upload_chunk_timeout_seconds,
        backoff_seconds: float = 1.0,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.chunk_bytes = chunk_bytes
        self.threshold_bytes = threshold_bytes
        self.retries = retries
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=base_url,
            headers={"X-API-Key": api_key},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ── Public API ───────────────────────────────────────────────────────────

    def upload(self, path: str, mime_type: Optional[str] = None) -> dict:
        """Upload a file and return its FileRef as a dict."""
        name = os.path.basename(path)
        mime_type = mime_type or mimetypes.guess_type(name)[0] or "application/octet-stream"
        size = os.path.getsize(path)
        if size < self.threshold_bytes:
            return self._upload_single(path, name, mime_type)
        return self._upload_chunked(path, name, mime_type, size)

    # ── Internals ────────────────────────────────────────────────────────────

    def _post(self, what: str, chunk_index: Optional[int], **kwargs) -> dict:
        last_error = ""
        for attempt in range(self.retries + 1):
            try:
                resp = self._client.post(**kwargs)
            except httpx.TransportError as exc:
                last_error = str(exc) or exc.__class__.__name__
            else:
                if resp.status_code < 400:
                    return resp.json()
                if resp.status_code not in _TRANSIENT_STATUS:
                    raise UploadFailed(
                        f"{what} rejected with HTTP {resp.status_code}: {resp.text[:200]}",
                        chunk_index=chunk_index,
                    )
                last_error = f"HTTP {resp.status_code}"

            if attempt < self.retries:
                log.warning("upload_retry", what=what, attempt=attempt, error=last_error)
                self._sleep(self.backoff_seconds * (2 ** attempt))

        raise UploadFailed(
            f"{what} failed after {self.retries + 1} attempts: {last_error}",
            chunk_index=chunk_index,
        )

    def _upload_single(self, path: str, name: str, mime_type: str) -> dict:
        with open(path, "rb") as f:
            data = f.read()
        return self._post(
            "Upload",
            None,
            url="/v1/uploads",
            files={"file": (name, data, mime_type)},
        )

    def _upload_chunked(self, path: str, name: str, mime_type: str, size: int) -> dict:
        file_id = uuid.uuid4().hex
        total_chunks = max(1, math.ceil(size / self.chunk_bytes))
        log.info("chunked_upload_start", file_id=file_id, name=name, size=size, chunks=total_chunks)

        with open(path, "rb") as f:
            for index in range(total_chunks):
                data = f.read(self.chunk_bytes)
                self._post(
                    f"Chunk {index}",
                    index,
                    url="/v1/uploads/chunk",
                    data={
                        "file_id": file_id,
                        "chunk_index": str(index),
                        "total_chunks": str(total_chunks),
                        "original_name": name,
                        "mime_type": mime_type,
                    },
                    files={"chunk": (f"{index}.part", data, "application/octet-stream")},
                )

        ref = self._post("Finalize", None, url=f"/v1/uploads/{file_id}/finalize")
        log.info("chunked_upload_done", file_id=file_id, url=ref.get("url"))
        return ref
