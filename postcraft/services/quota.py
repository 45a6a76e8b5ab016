"""Credit ledger: one authoritative QuotaRecord per account.

Callers never touch ``count`` directly: ``consume`` is a single conditional
UPDATE (increment-if-available), so concurrent generations / submissions for
the same account can never spend more than ``limit`` credits.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from postcraft.db.models import Account, QuotaRecord
from postcraft.errors import PlanExpired, QuotaAdjustmentRejected, QuotaExceeded

log = structlog.get_logger()

EXPIRED_PLAN = "expired"

PLANS = {
    "trial": {"name": "Trial", "limit": 3, "duration_days": 7},
    "basic": {"name": "Basic", "limit": 10},
    "premium": {"name": "Premium", "limit": 25},
    "custom": {"name": "Custom", "limit": 50},
    EXPIRED_PLAN: {"name": "Expired", "limit": 0},
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything is stored as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _mark_expired(record: QuotaRecord) -> None:
    record.plan_id = EXPIRED_PLAN
    record.plan_name = PLANS[EXPIRED_PLAN]["name"]
    record.limit = 0
    record.status = "inactive"


def ensure_available(record: QuotaRecord) -> None:
    """Raise the business error that would block a consume on ``record``."""
    if record.status != "active" or record.plan_id == EXPIRED_PLAN:
        raise PlanExpired(record.plan_id)
    expires_at = _as_utc(record.expires_at)
    if expires_at is not None and expires_at <= _utcnow():
        raise PlanExpired(record.plan_id)
    if record.count >= record.limit:
        raise QuotaExceeded(limit=record.limit, count=record.count)


def _get_or_create(db: Session, account_id) -> QuotaRecord:
    record = db.get(QuotaRecord, account_id)
    if record is not None:
        return record

    record = QuotaRecord(
        account_id=account_id,
        plan_id=EXPIRED_PLAN,
        plan_name=PLANS[EXPIRED_PLAN]["name"],
        limit=0,
        count=0,
        status="inactive",
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        # Another request created the row first.
        db.rollback()
        record = db.get(QuotaRecord, account_id)
    else:
        log.info("quota_record_created", account_id=str(account_id))
    return record


# ── Public API ───────────────────────────────────────────────────────────────


def check(db: Session, account_id) -> QuotaRecord:
    """Current ledger for an account; never raises for missing or expired plans."""
    record = _get_or_create(db, account_id)
    expires_at = _as_utc(record.expires_at)
    if record.plan_id != EXPIRED_PLAN and expires_at is not None and expires_at <= _utcnow():
        previous = record.plan_id
        _mark_expired(record)
        db.commit()
        log.info("quota_plan_lapsed", account_id=str(account_id), previous_plan=previous)
    return record


def consume(db: Session, account_id, commit: bool = True) -> QuotaRecord:
    """Spend one credit atomically.

    With ``commit=False`` the increment stays in the caller's transaction, so a
    later failure can roll it back together with the caller's own writes.
    """
    record = check(db, account_id)
    now = _utcnow()
    stmt = (
        update(QuotaRecord)
        .where(
            QuotaRecord.account_id == account_id,
            QuotaRecord.count < QuotaRecord.limit,
            QuotaRecord.status == "active",
            QuotaRecord.plan_id != EXPIRED_PLAN,
            or_(QuotaRecord.expires_at.is_(None), QuotaRecord.expires_at > now),
        )
        .values({QuotaRecord.count: QuotaRecord.count + 1, QuotaRecord.updated_at: now})
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)

    if result.rowcount == 0:
        db.refresh(record)
        log.info(
            "quota_consume_refused",
            account_id=str(account_id),
            plan_id=record.plan_id,
            limit=record.limit,
            count=record.count,
        )
        ensure_available(record)
        raise PlanExpired(record.plan_id)

    if commit:
        db.commit()
    db.refresh(record)
    log.info(
        "quota_consumed",
        account_id=str(account_id),
        count=record.count,
        limit=record.limit,
        remaining=record.remaining,
    )
    return record


def adjust(
    db: Session,
    account_id,
    plan_id: str,
    limit: Optional[int] = None,
    expires_at: Optional[datetime] = None,
    reset_count: bool = False,
) -> QuotaRecord:
    """Operator plan change. ``count`` is kept unless ``reset_count`` is set."""
    plan = PLANS.get(plan_id)
    if plan is None:
        raise QuotaAdjustmentRejected(f"Unknown plan: {plan_id}", plan_id=plan_id)

    record = check(db, account_id)

    new_limit = plan["limit"] if limit is None or plan_id == EXPIRED_PLAN else int(limit)
    if new_limit < 0:
        raise QuotaAdjustmentRejected("Credit limit cannot be negative", limit=new_limit)
    if not reset_count and plan_id != EXPIRED_PLAN and new_limit < record.count:
        raise QuotaAdjustmentRejected(
            f"Cannot set limit lower than current usage ({record.count})",
            limit=new_limit,
            count=record.count,
        )

    if expires_at is None and plan.get("duration_days"):
        expires_at = _utcnow() + timedelta(days=plan["duration_days"])

    record.plan_id = plan_id
    record.plan_name = plan["name"]
    record.limit = new_limit
    record.expires_at = _as_utc(expires_at)
    record.status = "inactive" if plan_id == EXPIRED_PLAN else "active"
    if reset_count:
        record.count = 0
    db.commit()
    db.refresh(record)

    log.info(
        "quota_adjusted",
        account_id=str(account_id),
        plan_id=plan_id,
        limit=record.limit,
        count=record.count,
        expires_at=record.expires_at.isoformat() if record.expires_at else None,
        reset_count=reset_count,
    )
    return record


def reset(db: Session, account_id) -> QuotaRecord:
    """Operator reset of the used counter to zero."""
    record = check(db, account_id)
    record.count = 0
    db.commit()
    db.refresh(record)
    log.info("quota_reset", account_id=str(account_id), limit=record.limit)
    return record


def list_records(db: Session) -> list[dict]:
    """Every account's ledger with its username, for the operator overview."""
    rows = db.execute(
        select(QuotaRecord, Account.username)
        .join(Account, Account.id == QuotaRecord.account_id)
        .order_by(Account.username)
    ).all()
    return [{**record.to_dict(), "username": username} for record, username in rows]
