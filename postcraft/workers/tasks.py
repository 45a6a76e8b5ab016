"""RQ background tasks: transcript acquisition and upload-session maintenance."""

from __future__ import annotations

import traceback
import uuid

import structlog
from redis import Redis

from postcraft.config import settings
from postcraft.db.database import SessionLocal
from postcraft.db.models import Video
from postcraft.errors import TranscriptUnavailable

log = structlog.get_logger()


def _maybe_reap_upload_sessions() -> None:
    """Drop idle chunked-upload sessions, at most once per maintenance interval."""
    from postcraft.services.uploads import get_upload_manager

    conn = Redis.from_url(settings.redis_url)
    got_lock = conn.set(
        "maintenance:upload_reap_lock",
        "1",
        nx=True,
        ex=max(60, settings.maintenance_interval_seconds),
    )
    if not got_lock:
        return
    get_upload_manager().reap_expired()


def acquire_transcript_job(video_id: str) -> None:
    """Run every transcript strategy for a saved video and store the result."""
    from postcraft.services import transcripts as tr_svc

    log.info("transcript_job_start", video_id=video_id)
    try:
        _maybe_reap_upload_sessions()
    except Exception as exc:
        log.warning("upload_reap_failed", error=str(exc))

    db = SessionLocal()
    try:
        video = db.query(Video).filter(Video.id == uuid.UUID(video_id)).first()
        if not video:
            log.error("video_not_found", video_id=video_id)
            return
        try:
            tr_svc.acquire_transcript(db, video)
        except TranscriptUnavailable:
            # Already recorded on the video as failed; the user retries by hand.
            log.info("transcript_job_unavailable", video_id=video_id)
            return
        except Exception as exc:
            log.error("transcript_job_error", video_id=video_id, error=str(exc),
                      traceback=traceback.format_exc())
            db.rollback()
            video.transcript_status = "failed"
            video.transcript_error = f"Transcript processing failed: {str(exc)[:500]}"
            db.commit()
            raise
        log.info("transcript_job_done", video_id=video_id)
    finally:
        db.close()
