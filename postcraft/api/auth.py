"""Auth routes: register, login, key rotation."""

import secrets

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from postcraft.api.deps import get_current_account
from postcraft.api.rate_limit import rate_limit
from postcraft.config import settings
from postcraft.db.database import get_db
from postcraft.db.models import Account
from postcraft.security import hash_password, verify_password

router = APIRouter(prefix="/v1/auth", tags=["auth"])
auth_limiter = rate_limit(settings.auth_rate_limit_per_minute, 60, "auth")
log = structlog.get_logger()


# ── Schemas ──────────────────────────────────────────────────────────────────

class AuthRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=64)
    # bcrypt uses first 72 bytes; keep strict limit to avoid silent truncation.
    password: str = Field(..., min_length=6, max_length=72)


class AuthResponse(BaseModel):
    api_key: str
    username: str
    role: str


# ── Routes ───────────────────────────────────────────────────────────────────

@router.post("/register", response_model=AuthResponse)
def register(
    body: AuthRequest,
    _: None = Depends(auth_limiter),
    db: Session = Depends(get_db),
):
    if db.query(Account).filter(Account.username == body.username).first():
        log.info("auth_register_duplicate", username=body.username)
        raise HTTPException(400, "Username already taken")

    account = Account(
        username=body.username,
        password_hash=hash_password(body.password),
        api_key=secrets.token_urlsafe(32),
        role="operator" if body.username in settings.operators else "user",
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    log.info("auth_register_success", account_id=str(account.id), username=account.username, role=account.role)
    return AuthResponse(api_key=account.api_key, username=account.username, role=account.role)


@router.post("/login", response_model=AuthResponse)
def login(
    body: AuthRequest,
    _: None = Depends(auth_limiter),
    db: Session = Depends(get_db),
):
    account = db.query(Account).filter(Account.username == body.username).first()
    if not account or not verify_password(body.password, account.password_hash):
        log.info("auth_login_failed", username=body.username)
        raise HTTPException(401, "Invalid username or password")
    log.info("auth_login_success", account_id=str(account.id), username=account.username)
    return AuthResponse(api_key=account.api_key, username=account.username, role=account.role)


@router.post("/rotate-key", response_model=AuthResponse)
def rotate_api_key(
    _: None = Depends(auth_limiter),
    db: Session = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    old_prefix = account.api_key[:6] if account.api_key else ""
    account.api_key = secrets.token_urlsafe(32)
    db.commit()
    db.refresh(account)
    log.info(
        "auth_key_rotated",
        account_id=str(account.id),
        username=account.username,
        old_prefix=old_prefix,
        new_prefix=account.api_key[:6],
    )
    return AuthResponse(api_key=account.api_key, username=account.username, role=account.role)
