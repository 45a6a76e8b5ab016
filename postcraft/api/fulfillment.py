"""Carousel fulfillment requests: submission and resubmission by accounts,
status changes and delivery by operators."""

import uuid

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from postcraft.api.deps import get_current_account, require_operator
from postcraft.api.rate_limit import rate_limit
from postcraft.config import settings
from postcraft.db.database import get_db
from postcraft.db.models import Account, FulfillmentRequest, Video
from postcraft.services import fulfillment as ff_svc

router = APIRouter(prefix="/v1", tags=["requests"])
submit_limiter = rate_limit(settings.request_submit_rate_limit_per_minute, 60, "submit")


# ── Schemas ──────────────────────────────────────────────────────────────────


class FileRefModel(BaseModel):
    url: str
    filename: str
    original_name: str = ""
    mime_type: str = "application/octet-stream"
    size_bytes: int = Field(0, ge=0)


class RequestBody(BaseModel):
    title: str = Field(..., min_length=1, max_length=512)
    description: str = ""
    content_snapshot: str = ""
    files: list[FileRefModel] = Field(default_factory=list)
    carousel_type: str = "professional"
    source_video_id: uuid.UUID | None = None

    def to_payload(self) -> ff_svc.RequestPayload:
        return ff_svc.RequestPayload(
            title=self.title,
            description=self.description,
            content_snapshot=self.content_snapshot,
            files=[f.model_dump() for f in self.files],
            carousel_type=self.carousel_type,
            source_video_id=self.source_video_id,
        )


class StatusBody(BaseModel):
    status: str
    notes: str | None = None


class CompleteBody(BaseModel):
    files: list[FileRefModel] = Field(..., min_length=1)
    notes: str | None = None


def _load_request(db: Session, request_id: uuid.UUID, account: Account | None = None) -> FulfillmentRequest:
    q = db.query(FulfillmentRequest).filter(FulfillmentRequest.id == request_id)
    if account is not None:
        q = q.filter(FulfillmentRequest.account_id == account.id)
    req = q.first()
    if not req:
        raise HTTPException(404, "Request not found")
    return req


def _check_source_video(db: Session, body: RequestBody, account: Account) -> None:
    if body.source_video_id is None:
        return
    video = (
        db.query(Video)
        .filter(Video.id == body.source_video_id, Video.account_id == account.id)
        .first()
    )
    if not video:
        raise HTTPException(404, "Video not found")


# ── Account routes ───────────────────────────────────────────────────────────


@router.post("/requests", status_code=201)
def submit_request(
    body: RequestBody,
    _: None = Depends(submit_limiter),
    db: Session = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    if body.carousel_type not in ff_svc.CAROUSEL_TYPES:
        raise HTTPException(400, f"carousel_type must be one of {', '.join(ff_svc.CAROUSEL_TYPES)}")
    _check_source_video(db, body, account)
    req = ff_svc.submit_request(db, account, body.to_payload())
    return ff_svc.request_view(req)


@router.get("/requests")
def list_requests(
    limit: int = 20,
    offset: int = 0,
    db: Session = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    if limit < 1 or limit > 100:
        raise HTTPException(400, "limit must be between 1 and 100")
    if offset < 0:
        raise HTTPException(400, "offset must be >= 0")

    rows = (
        db.query(FulfillmentRequest)
        .filter(FulfillmentRequest.account_id == account.id)
        .order_by(FulfillmentRequest.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return {"items": [r.to_dict() for r in rows], "limit": limit, "offset": offset}


@router.get("/requests/{request_id}")
def get_request(
    request_id: uuid.UUID,
    version: str = "current",
    db: Session = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    if version not in ("current", "original"):
        raise HTTPException(400, "version must be current|original")
    return ff_svc.request_view(_load_request(db, request_id, account), version)


@router.put("/requests/{request_id}")
def resubmit_request(
    request_id: uuid.UUID,
    body: RequestBody,
    db: Session = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    if body.carousel_type not in ff_svc.CAROUSEL_TYPES:
        raise HTTPException(400, f"carousel_type must be one of {', '.join(ff_svc.CAROUSEL_TYPES)}")
    req = _load_request(db, request_id, account)
    req = ff_svc.resubmit_request(db, req, body.to_payload())
    return ff_svc.request_view(req)


# ── Operator routes ──────────────────────────────────────────────────────────


@router.get("/admin/requests")
def admin_list_requests(
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    _: Account = Depends(require_operator),
):
    if limit < 1 or limit > 200:
        raise HTTPException(400, "limit must be between 1 and 200")
    if offset < 0:
        raise HTTPException(400, "offset must be >= 0")

    q = db.query(FulfillmentRequest, Account.username).join(Account, Account.id == FulfillmentRequest.account_id)
    if status:
        q = q.filter(FulfillmentRequest.status == status)
    rows = q.order_by(FulfillmentRequest.created_at.desc()).offset(offset).limit(limit).all()
    return {
        "items": [{**req.to_dict(), "username": username} for req, username in rows],
        "limit": limit,
        "offset": offset,
    }


@router.get("/admin/requests/{request_id}")
def admin_get_request(
    request_id: uuid.UUID,
    version: str = "current",
    db: Session = Depends(get_db),
    _: Account = Depends(require_operator),
):
    if version not in ("current", "original"):
        raise HTTPException(400, "version must be current|original")
    return ff_svc.request_view(_load_request(db, request_id), version)


@router.post("/admin/requests/{request_id}/status")
def admin_set_status(
    request_id: uuid.UUID,
    body: StatusBody,
    db: Session = Depends(get_db),
    operator: Account = Depends(require_operator),
):
    req = _load_request(db, request_id)
    req = ff_svc.set_request_status(db, req, body.status, notes=body.notes, operator=operator.username)
    return req.to_dict()


@router.post("/admin/requests/{request_id}/complete")
def admin_complete(
    request_id: uuid.UUID,
    body: CompleteBody,
    db: Session = Depends(get_db),
    operator: Account = Depends(require_operator),
):
    req = _load_request(db, request_id)
    req = ff_svc.complete_request(
        db,
        req,
        [f.model_dump() for f in body.files],
        notes=body.notes,
        operator=operator.username,
    )
    return req.to_dict()
