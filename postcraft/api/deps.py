"""Shared API dependencies (auth, DB session)."""

from fastapi import Depends, HTTPException, Header
from sqlalchemy.orm import Session

from postcraft.db.database import get_db
from postcraft.db.models import Account


def get_current_account(
    x_api_key: str = Header(..., alias="X-API-Key"),
    db: Session = Depends(get_db),
) -> Account:
    """Resolve current account from X-API-Key header."""
    account = db.query(Account).filter(Account.api_key == x_api_key).first()
    if not account:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return account


def require_operator(account: Account = Depends(get_current_account)) -> Account:
    if not account.is_operator:
        raise HTTPException(status_code=403, detail="Operator access required")
    return account
