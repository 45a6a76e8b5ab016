"""File uploads: single shot for small files, chunked for large ones."""

import mimetypes

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.orm import Session

from postcraft.api.deps import get_current_account
from postcraft.config import settings
from postcraft.db.database import get_db
from postcraft.db.models import Account
from postcraft.services.uploads import get_storage, get_upload_manager

router = APIRouter(prefix="/v1/uploads", tags=["uploads"])
log = structlog.get_logger()


def _mime_type(declared: str | None, name: str) -> str:
    if declared and declared != "application/octet-stream":
        return declared
    return mimetypes.guess_type(name)[0] or "application/octet-stream"


@router.post("", status_code=201)
def upload_file(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    name = file.filename or "upload"
    ref = get_storage().put_stream(
        file.file,
        name,
        _mime_type(file.content_type, name),
        settings.max_upload_mb * 1024 * 1024,
    )
    log.info("upload_stored", account_id=str(account.id), url=ref.url, size_bytes=ref.size_bytes)
    return ref.to_dict()


@router.post("/chunk")
def upload_chunk(
    file_id: str = Form(...),
    chunk_index: int = Form(...),
    total_chunks: int = Form(...),
    original_name: str = Form(""),
    mime_type: str = Form(""),
    chunk: UploadFile = File(...),
    db: Session = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    manager = get_upload_manager()
    # One chunk never exceeds the configured chunk size, so reading it whole is bounded.
    data = chunk.file.read(manager.chunk_bytes + 1)
    try:
        return manager.upload_chunk(
            file_id,
            chunk_index,
            total_chunks,
            data,
            original_name=original_name,
            mime_type=_mime_type(mime_type, original_name),
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))


@router.post("/{file_id}/finalize", status_code=201)
def finalize_upload(
    file_id: str,
    db: Session = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    try:
        ref = get_upload_manager().finalize(file_id)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    log.info("upload_chunked_stored", account_id=str(account.id), file_id=file_id, url=ref.url)
    return ref.to_dict()
