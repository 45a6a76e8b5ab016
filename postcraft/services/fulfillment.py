"""Fulfillment-request lifecycle.

    pending ──► in_progress ──► completed
       │  ▲          │
       ▼  │          ▼
     rejected ◄──────┘

``rejected → pending`` happens on resubmission. ``completed`` is terminal.
Submitting costs one credit; the credit and the request row are written in the
same transaction.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from postcraft.db.models import Account, FulfillmentRequest
from postcraft.errors import InvalidTransition, NotFound
from postcraft.services import quota as quota_svc
from postcraft.services.notify import notify

log = structlog.get_logger()


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"


TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.IN_PROGRESS, RequestStatus.REJECTED}),
    RequestStatus.IN_PROGRESS: frozenset({RequestStatus.COMPLETED, RequestStatus.REJECTED}),
    RequestStatus.REJECTED: frozenset({RequestStatus.PENDING}),
    RequestStatus.COMPLETED: frozenset(),
}
RESUBMITTABLE = frozenset({RequestStatus.PENDING, RequestStatus.REJECTED})
COMPLETABLE = frozenset({RequestStatus.PENDING, RequestStatus.IN_PROGRESS})

CAROUSEL_TYPES = ("professional", "creative", "minimalist", "custom")


@dataclass
class RequestPayload:
    title: str
    description: str = ""
    content_snapshot: str = ""
    files: list[dict] = field(default_factory=list)
    carousel_type: str = "professional"
    source_video_id: Optional[object] = None


def can_transition(current: str, target: str) -> bool:
    try:
        return RequestStatus(target) in TRANSITIONS[RequestStatus(current)]
    except ValueError:
        return False


def _snapshot(req: FulfillmentRequest) -> dict:
    return {
        "content_snapshot": req.content_snapshot or "",
        "files": [dict(f) for f in (req.uploaded_files or [])],
        "title": req.title,
        "description": req.description or "",
    }


def _apply_payload(req: FulfillmentRequest, payload: RequestPayload) -> None:
    req.title = payload.title
    req.description = payload.description
    req.content_snapshot = payload.content_snapshot
    req.uploaded_files = [dict(f) for f in payload.files]
    req.carousel_type = payload.carousel_type


# ── Account actions ──────────────────────────────────────────────────────────


def submit_request(db: Session, account: Account, payload: RequestPayload) -> FulfillmentRequest:
    """Spend one credit, then create the request. All or nothing."""
    if payload.carousel_type not in CAROUSEL_TYPES:
        raise ValueError(f"carousel_type must be one of {CAROUSEL_TYPES}")

    try:
        quota_svc.consume(db, account.id, commit=False)
        req = FulfillmentRequest(
            account_id=account.id,
            source_video_id=payload.source_video_id,
            status=RequestStatus.PENDING.value,
            resend_count=0,
            was_modified=False,
        )
        _apply_payload(req, payload)
        db.add(req)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(req)
    log.info("request_submitted", request_id=str(req.id), account_id=str(account.id))
    notify(account.id, "request_submitted", request_id=str(req.id), title=req.title)
    return req


def resubmit_request(db: Session, req: FulfillmentRequest, payload: RequestPayload) -> FulfillmentRequest:
    """Edit and resubmit a pending or rejected request.

    The first resubmission keeps the content as it was in ``original_content``;
    later ones leave that snapshot alone.
    """
    current = RequestStatus(req.status)
    if current not in RESUBMITTABLE:
        raise InvalidTransition(current.value, RequestStatus.PENDING.value)
    if payload.carousel_type not in CAROUSEL_TYPES:
        raise ValueError(f"carousel_type must be one of {CAROUSEL_TYPES}")

    if req.original_content is None:
        req.original_content = _snapshot(req)
    _apply_payload(req, payload)
    req.was_modified = True
    req.resend_count = (req.resend_count or 0) + 1
    req.status = RequestStatus.PENDING.value
    db.commit()
    db.refresh(req)

    log.info(
        "request_resubmitted",
        request_id=str(req.id),
        previous_status=current.value,
        resend_count=req.resend_count,
    )
    notify(req.account_id, "request_resubmitted", request_id=str(req.id), resend_count=req.resend_count)
    return req


# ── Operator actions ─────────────────────────────────────────────────────────


def set_request_status(
    db: Session,
    req: FulfillmentRequest,
    new_status: str,
    notes: Optional[str] = None,
    operator: Optional[str] = None,
) -> FulfillmentRequest:
    if not can_transition(req.status, new_status):
        log.warning("request_invalid_transition", request_id=str(req.id), current=req.status, target=new_status)
        raise InvalidTransition(req.status, new_status)

    previous = req.status
    req.status = RequestStatus(new_status).value
    if notes is not None:
        req.admin_notes = notes
    if operator:
        req.assigned_operator = operator
    db.commit()
    db.refresh(req)

    log.info("request_status_changed", request_id=str(req.id), previous=previous, status=req.status)
    notify(req.account_id, "request_status_changed", request_id=str(req.id), status=req.status)
    return req


def complete_request(
    db: Session,
    req: FulfillmentRequest,
    completed_files: list[dict],
    notes: Optional[str] = None,
    operator: Optional[str] = None,
) -> FulfillmentRequest:
    """Attach delivered files and close the request."""
    current = RequestStatus(req.status)
    if current not in COMPLETABLE:
        raise InvalidTransition(current.value, RequestStatus.COMPLETED.value)
    if not completed_files:
        raise ValueError("At least one completed file is required")

    req.completed_files = [dict(f) for f in completed_files]
    req.status = RequestStatus.COMPLETED.value
    if notes is not None:
        req.admin_notes = notes
    if operator:
        req.assigned_operator = operator
    db.commit()
    db.refresh(req)

    log.info("request_completed", request_id=str(req.id), files=len(req.completed_files))
    notify(req.account_id, "request_completed", request_id=str(req.id), files=len(req.completed_files))
    return req


# ── Views ────────────────────────────────────────────────────────────────────


def request_view(req: FulfillmentRequest, version: str = "current") -> dict:
    """Request details with content read from exactly one snapshot."""
    if version == "current":
        snapshot = _snapshot(req)
    elif version == "original":
        if not req.was_modified or req.original_content is None:
            raise NotFound("This request has no original version")
        snapshot = dict(req.original_content)
    else:
        raise ValueError("version must be current|original")

    view = req.to_dict()
    for key in ("title", "description", "content_snapshot", "uploaded_files"):
        view.pop(key, None)
    view.update(
        version=version,
        title=snapshot.get("title", ""),
        description=snapshot.get("description", ""),
        content_snapshot=snapshot.get("content_snapshot", ""),
        files=list(snapshot.get("files") or []),
    )
    return view
