"""Credit balance for accounts; plan management for operators."""

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from postcraft.api.deps import get_current_account, require_operator
from postcraft.db.database import get_db
from postcraft.db.models import Account
from postcraft.services import quota as quota_svc

router = APIRouter(prefix="/v1", tags=["quota"])


class AdjustQuotaRequest(BaseModel):
    plan_id: str = Field(..., description="trial | basic | premium | custom | expired")
    limit: int | None = Field(None, ge=0)
    expires_at: datetime | None = None
    reset_count: bool = False


@router.get("/quota")
def get_quota(
    db: Session = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    return quota_svc.check(db, account.id).to_dict()


@router.get("/quota/plans")
def list_plans():
    return {
        "items": [
            {"plan_id": plan_id, "name": plan["name"], "limit": plan["limit"], "duration_days": plan.get("duration_days")}
            for plan_id, plan in quota_svc.PLANS.items()
        ]
    }


# ── Operator ─────────────────────────────────────────────────────────────────


def _require_account(db: Session, account_id: uuid.UUID) -> Account:
    account = db.get(Account, account_id)
    if not account:
        raise HTTPException(404, "Account not found")
    return account


@router.get("/admin/quota")
def list_quotas(
    db: Session = Depends(get_db),
    _: Account = Depends(require_operator),
):
    return {"items": quota_svc.list_records(db)}


@router.put("/admin/quota/{account_id}")
def adjust_quota(
    account_id: uuid.UUID,
    body: AdjustQuotaRequest,
    db: Session = Depends(get_db),
    _: Account = Depends(require_operator),
):
    _require_account(db, account_id)
    record = quota_svc.adjust(
        db,
        account_id,
        body.plan_id,
        limit=body.limit,
        expires_at=body.expires_at,
        reset_count=body.reset_count,
    )
    return record.to_dict()


@router.post("/admin/quota/{account_id}/reset")
def reset_quota(
    account_id: uuid.UUID,
    db: Session = Depends(get_db),
    _: Account = Depends(require_operator),
):
    _require_account(db, account_id)
    return quota_svc.reset(db, account_id).to_dict()
