"""SQLAlchemy ORM models — accounts, saved videos, generated content, credit
ledger and fulfillment requests."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow():
    return datetime.now(timezone.utc)


def _uuid():
    return uuid.uuid4()


def _iso(value):
    return value.isoformat() if value else None


class Base(DeclarativeBase):
    pass


class Account(Base):
    __tablename__ = "postcraft_accounts"

    id = Column(Uuid, primary_key=True, default=_uuid)
    username = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    api_key = Column(String(64), unique=True, nullable=False, index=True)
    role = Column(String(20), nullable=False, default="user")  # user | operator
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    videos = relationship("Video", back_populates="account", lazy="dynamic")

    @property
    def is_operator(self) -> bool:
        return self.role == "operator"


class Video(Base):
    __tablename__ = "postcraft_videos"

    id = Column(Uuid, primary_key=True, default=_uuid)
    account_id = Column(Uuid, ForeignKey("postcraft_accounts.id", ondelete="CASCADE"), nullable=False, index=True)

    youtube_id = Column(String(32), nullable=False, index=True)
    url = Column(String(512))
    title = Column(String(512), default="")
    channel_name = Column(String(255), default="")
    duration_label = Column(String(32), default="")

    transcript = Column(Text)
    formatted_transcript = Column(JSONType, default=list)
    language = Column(String(16))
    is_auto_generated = Column(Boolean, default=False)
    transcript_status = Column(String(20), default="missing")  # missing | fetching | ready | failed
    transcript_source = Column(String(64))
    transcript_error = Column(Text)

    saved_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    account = relationship("Account", back_populates="videos")

    def to_dict(self, include_transcript: bool = False) -> dict:
        data = {
            "id": str(self.id),
            "youtube_id": self.youtube_id,
            "url": self.url,
            "title": self.title,
            "channel_name": self.channel_name,
            "duration_label": self.duration_label,
            "language": self.language,
            "is_auto_generated": bool(self.is_auto_generated),
            "has_transcript": bool(self.transcript),
            "transcript_status": self.transcript_status,
            "transcript_source": self.transcript_source,
            "transcript_error": self.transcript_error,
            "saved_at": _iso(self.saved_at),
        }
        if include_transcript:
            data["transcript"] = self.transcript
            data["formatted_transcript"] = list(self.formatted_transcript or [])
        return data


class GeneratedContent(Base):
    __tablename__ = "postcraft_generated_content"

    id = Column(Uuid, primary_key=True, default=_uuid)
    account_id = Column(Uuid, ForeignKey("postcraft_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    source_video_id = Column(Uuid, ForeignKey("postcraft_videos.id", ondelete="SET NULL"), index=True)

    title = Column(String(512), default="")
    body = Column(Text, nullable=False)
    content_type = Column(String(20), nullable=False)  # text-post | carousel
    slides = Column(JSONType, default=list)
    model = Column(String(64))

    created_at = Column(DateTime(timezone=True), default=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "title": self.title,
            "body": self.body,
            "content_type": self.content_type,
            "slides": list(self.slides or []),
            "source_video_id": str(self.source_video_id) if self.source_video_id else None,
            "model": self.model,
            "created_at": _iso(self.created_at),
        }


class QuotaRecord(Base):
    __tablename__ = "postcraft_quota_records"

    account_id = Column(Uuid, ForeignKey("postcraft_accounts.id", ondelete="CASCADE"), primary_key=True)
    plan_id = Column(String(32), nullable=False, default="expired")
    plan_name = Column(String(64), nullable=False, default="Expired")
    limit = Column("credit_limit", Integer, nullable=False, default=0)
    count = Column("used_count", Integer, nullable=False, default=0)
    expires_at = Column(DateTime(timezone=True))
    status = Column(String(20), nullable=False, default="inactive")  # active | inactive
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def remaining(self) -> int:
        return max(0, (self.limit or 0) - (self.count or 0))

    def to_dict(self) -> dict:
        return {
            "account_id": str(self.account_id),
            "plan_id": self.plan_id,
            "plan_name": self.plan_name,
            "limit": self.limit,
            "count": self.count,
            "remaining": self.remaining,
            "expires_at": _iso(self.expires_at),
            "status": self.status,
        }


class FulfillmentRequest(Base):
    __tablename__ = "postcraft_fulfillment_requests"

    id = Column(Uuid, primary_key=True, default=_uuid)
    account_id = Column(Uuid, ForeignKey("postcraft_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    source_video_id = Column(Uuid, ForeignKey("postcraft_videos.id", ondelete="SET NULL"))

    title = Column(String(512), nullable=False)
    description = Column(Text, default="")
    carousel_type = Column(String(20), default="professional")
    content_snapshot = Column(Text, default="")
    uploaded_files = Column(JSONType, default=list)

    status = Column(String(20), default="pending", index=True)
    admin_notes = Column(Text)
    assigned_operator = Column(String(255))
    completed_files = Column(JSONType, default=list)

    resend_count = Column(Integer, nullable=False, default=0)
    was_modified = Column(Boolean, nullable=False, default=False)
    original_content = Column(JSONType)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "title": self.title,
            "description": self.description,
            "source_video_id": str(self.source_video_id) if self.source_video_id else None,
            "carousel_type": self.carousel_type,
            "content_snapshot": self.content_snapshot,
            "uploaded_files": list(self.uploaded_files or []),
            "status": self.status,
            "admin_notes": self.admin_notes,
            "assigned_operator": self.assigned_operator,
            "completed_files": list(self.completed_files or []),
            "resend_count": self.resend_count,
            "was_modified": bool(self.was_modified),
            "has_original": self.original_content is not None,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
