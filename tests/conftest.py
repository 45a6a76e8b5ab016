"""Shared test setup: environment before imports, a fresh SQLite schema, helpers."""

import os
import secrets
import tempfile

# Set test env vars before importing the app
_TMP = tempfile.mkdtemp(prefix="postcraft-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP, 'test.db')}")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("UPLOAD_SPOOL_DIR", os.path.join(_TMP, "spool"))
os.environ.setdefault("MEDIA_ROOT", os.path.join(_TMP, "media"))
os.environ.setdefault("OPERATOR_USERNAMES", "opsadmin")
os.environ.setdefault("NOTIFY_WEBHOOK_URL", "")

import pytest

from postcraft.api.rate_limit import reset_buckets
from postcraft.db.database import SessionLocal, engine
from postcraft.db.models import Account, Base, QuotaRecord, Video
from postcraft.security import hash_password


@pytest.fixture(scope="session", autouse=True)
def setup_db():
    """Create tables for tests."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _fresh_rate_limits():
    reset_buckets()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def make_account(db, role: str = "user", plan_id: str | None = None, limit: int = 0, count: int = 0) -> Account:
    account = Account(
        username=f"user-{secrets.token_hex(4)}",
        password_hash=hash_password("secret123"),
        api_key=secrets.token_urlsafe(24),
        role=role,
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    if plan_id is not None:
        db.add(
            QuotaRecord(
                account_id=account.id,
                plan_id=plan_id,
                plan_name=plan_id.title(),
                limit=limit,
                count=count,
                status="inactive" if plan_id == "expired" else "active",
            )
        )
        db.commit()
    return account


def make_video(db, account: Account, transcript: str | None = "hello world transcript") -> Video:
    video = Video(
        account_id=account.id,
        youtube_id="dQw4w9WgXcQ",
        url="https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        title="Demo talk",
        transcript=transcript,
        formatted_transcript=[],
        transcript_status="ready" if transcript else "missing",
    )
    db.add(video)
    db.commit()
    db.refresh(video)
    return video


@pytest.fixture
def account_factory(db):
    def _make(**kwargs):
        return make_account(db, **kwargs)

    return _make
