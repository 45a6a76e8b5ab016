"""Saved videos and transcript acquisition."""

import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from postcraft.api.deps import get_current_account
from postcraft.db.database import get_db
from postcraft.db.models import Account, Video
from postcraft.queue import enqueue_task
from postcraft.services import transcripts as tr_svc
from postcraft.services import youtube as yt_svc

router = APIRouter(prefix="/v1/videos", tags=["videos"])
log = structlog.get_logger()


class SaveVideoRequest(BaseModel):
    url: str = Field(..., description="YouTube video URL or id")
    title: str | None = Field(None, max_length=512)
    channel_name: str | None = Field(None, max_length=255)
    duration_label: str | None = Field(None, max_length=32)


def _load_video(db: Session, video_id: uuid.UUID, account: Account) -> Video:
    video = db.query(Video).filter(Video.id == video_id, Video.account_id == account.id).first()
    if not video:
        raise HTTPException(404, "Video not found")
    return video


@router.post("", status_code=201)
def save_video(
    body: SaveVideoRequest,
    response: Response,
    db: Session = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    try:
        youtube_id = yt_svc.extract_video_id(body.url)
    except ValueError:
        raise HTTPException(400, "Invalid YouTube URL")

    existing = (
        db.query(Video)
        .filter(Video.account_id == account.id, Video.youtube_id == youtube_id)
        .first()
    )
    if existing:
        response.status_code = 200
        return existing.to_dict()

    url = body.url if "://" in body.url else f"https://www.youtube.com/watch?v={youtube_id}"
    title, channel, duration = body.title, body.channel_name, body.duration_label
    if not title:
        meta = yt_svc.get_metadata(url)
        title = meta.title
        channel = channel or meta.channel
        duration = duration or meta.duration_label

    video = Video(
        account_id=account.id,
        youtube_id=youtube_id,
        url=url,
        title=title or "",
        channel_name=channel or "",
        duration_label=duration or "",
        formatted_transcript=[],
        transcript_status="missing",
    )
    db.add(video)
    db.commit()
    db.refresh(video)
    log.info("video_saved", video_id=str(video.id), youtube_id=youtube_id, account_id=str(account.id))
    return video.to_dict()


@router.get("")
def list_videos(
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
        db.query(Video)
        .filter(Video.account_id == account.id)
        .order_by(Video.saved_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return {"items": [v.to_dict() for v in rows], "limit": limit, "offset": offset}


@router.get("/{video_id}")
def get_video(
    video_id: uuid.UUID,
    db: Session = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    return _load_video(db, video_id, account).to_dict(include_transcript=True)


@router.delete("/{video_id}", status_code=204)
def delete_video(
    video_id: uuid.UUID,
    db: Session = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    video = _load_video(db, video_id, account)
    db.delete(video)
    db.commit()
    log.info("video_deleted", video_id=str(video_id), account_id=str(account.id))
    return Response(status_code=204)


@router.post("/{video_id}/transcript")
def request_transcript(
    video_id: uuid.UUID,
    response: Response,
    wait: bool = False,
    force: bool = False,
    db: Session = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    """Fetch the transcript of a saved video.

    Runs in the background by default (poll the video for ``transcript_status``);
    ``wait=true`` runs every strategy inline and answers with the result.
    ``force=true`` re-fetches a video that already has a transcript.
    """
    video = _load_video(db, video_id, account)
    if video.transcript and not force:
        return {"video_id": str(video.id), "transcript_status": video.transcript_status, "cached": True}

    if wait:
        result = tr_svc.acquire_transcript(db, video)
        return {"video_id": str(video.id), "transcript_status": video.transcript_status, **result.to_dict()}

    video.transcript_status = "fetching"
    video.transcript_error = None
    db.commit()
    enqueue_task("postcraft.workers.tasks.acquire_transcript_job", str(video.id))
    response.status_code = 202
    return {"video_id": str(video.id), "transcript_status": video.transcript_status}
