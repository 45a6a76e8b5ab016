"""Generated content: create from a saved video, browse, export."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from postcraft.api.deps import get_current_account
from postcraft.api.rate_limit import rate_limit
from postcraft.config import settings
from postcraft.db.database import get_db
from postcraft.db.models import Account, GeneratedContent, Video
from postcraft.services import exports
from postcraft.services import generator as gen_svc

router = APIRouter(prefix="/v1/content", tags=["content"])
generate_limiter = rate_limit(settings.generation_rate_limit_per_minute, 60, "generate")


class GenerateRequest(BaseModel):
    video_id: uuid.UUID
    content_type: str = Field(gen_svc.TEXT_POST, description="text-post | carousel")
    style_exemplars: list[str] = Field(default_factory=list, max_length=gen_svc.MAX_EXEMPLARS)
    title: str | None = Field(None, max_length=512)


def _load_content(db: Session, content_id: uuid.UUID, account: Account) -> GeneratedContent:
    content = (
        db.query(GeneratedContent)
        .filter(GeneratedContent.id == content_id, GeneratedContent.account_id == account.id)
        .first()
    )
    if not content:
        raise HTTPException(404, "Content not found")
    return content


@router.post("", status_code=201)
def create_content(
    body: GenerateRequest,
    _: None = Depends(generate_limiter),
    db: Session = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    if body.content_type not in gen_svc.CONTENT_TYPES:
        raise HTTPException(400, f"content_type must be one of {', '.join(gen_svc.CONTENT_TYPES)}")

    video = db.query(Video).filter(Video.id == body.video_id, Video.account_id == account.id).first()
    if not video:
        raise HTTPException(404, "Video not found")

    content = gen_svc.generate_content(
        db,
        account,
        video,
        body.content_type,
        style_exemplars=body.style_exemplars,
        title=body.title,
    )
    return content.to_dict()


@router.get("")
def list_content(
    limit: int = 20,
    offset: int = 0,
    content_type: str | None = None,
    db: Session = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    if limit < 1 or limit > 100:
        raise HTTPException(400, "limit must be between 1 and 100")
    if offset < 0:
        raise HTTPException(400, "offset must be >= 0")

    q = db.query(GeneratedContent).filter(GeneratedContent.account_id == account.id)
    if content_type:
        q = q.filter(GeneratedContent.content_type == content_type)
    rows = q.order_by(GeneratedContent.created_at.desc()).offset(offset).limit(limit).all()
    return {"items": [c.to_dict() for c in rows], "limit": limit, "offset": offset}


@router.get("/{content_id}")
def get_content(
    content_id: uuid.UUID,
    db: Session = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    return _load_content(db, content_id, account).to_dict()


# ── Exports ──────────────────────────────────────────────────────────────────


@router.get("/{content_id}/export.md", response_class=PlainTextResponse)
def export_markdown(
    content_id: uuid.UUID,
    db: Session = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    content = _load_content(db, content_id, account)
    filename = f"postcraft-{content.id}.md"
    return PlainTextResponse(
        content=exports.content_to_markdown(content),
        media_type="text/markdown; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{content_id}/export.docx")
def export_docx(
    content_id: uuid.UUID,
    db: Session = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    content = _load_content(db, content_id, account)
    filename = f"postcraft-{content.id}.docx"
    return Response(
        content=exports.content_to_docx_bytes(content),
        media_type="application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{content_id}/export.pdf")
def export_pdf(
    content_id: uuid.UUID,
    db: Session = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    content = _load_content(db, content_id, account)
    filename = f"postcraft-{content.id}.pdf"
    return Response(
        content=exports.content_to_pdf_bytes(content),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
