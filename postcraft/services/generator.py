"""Content generation: transcript → text post or carousel via OpenAI."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import structlog
from openai import OpenAI, OpenAIError
from sqlalchemy.orm import Session

from postcraft.config import settings
from postcraft.db.models import Account, GeneratedContent, Video
from postcraft.errors import GenerationFailed, TranscriptMissing
from postcraft.services import quota as quota_svc
from postcraft.services.cleaner import clean_text, limit_length, split_slides

log = structlog.get_logger()

TEXT_POST = "text-post"
CAROUSEL = "carousel"
CONTENT_TYPES = (TEXT_POST, CAROUSEL)

# ── Token estimation ─────────────────────────────────────────────────────────

CHARS_PER_TOKEN = 4  # rough approximation
MAX_TRANSCRIPT_TOKENS = 12_000
MAX_EXEMPLARS = 3
MAX_EXEMPLAR_CHARS = 1500


def _estimate_tokens(text: str) -> int:
    return len(text) // CHARS_PER_TOKEN


def _fit_transcript(text: str, max_tokens: int = MAX_TRANSCRIPT_TOKENS) -> str:
    max_chars = max_tokens * CHARS_PER_TOKEN
    if len(text) <= max_chars:
        return text
    return text[:max_chars]


# ── Prompt templates ─────────────────────────────────────────────────────────

SYSTEM_PROMPTS = {
    TEXT_POST: """You are a social media ghostwriter. Turn the video transcript you are given into one
engaging post for a professional network.

Rules:
- Open with a strong hook line.
- Short paragraphs separated by blank lines.
- Plain text only, no markdown headers, no hashtags block, no title line.
- Stay under 2500 characters.""",
    CAROUSEL: """You are a social media ghostwriter. Turn the video transcript you are given into the text of
a carousel of 6 to 10 slides.

Rules:
- One slide per paragraph, slides separated by a single blank line.
- Each slide is one or two short sentences.
- The first slide is a hook, the last slide a takeaway.
- Plain text only, no markdown, no design notes.""",
}

STYLE_TEMPLATE = """Match the voice, rhythm and formatting of these example posts written by the author:

{examples}"""


def _build_system_prompt(content_type: str, style_exemplars: Optional[Sequence[str]]) -> str:
    system = SYSTEM_PROMPTS[content_type]
    exemplars = [e.strip()[:MAX_EXEMPLAR_CHARS] for e in (style_exemplars or []) if e and e.strip()]
    if exemplars:
        examples = "\n\n".join(
            f"--- Example {i + 1} ---\n{e}" for i, e in enumerate(exemplars[:MAX_EXEMPLARS])
        )
        system += "\n\n" + STYLE_TEMPLATE.format(examples=examples)
    return system


# ── LLM call ─────────────────────────────────────────────────────────────────


@dataclass
class RawContent:
    text: str
    content_type: str
    model: str = ""


def _call_llm(system: str, user: str, model: str | None = None) -> str:
    """Single chat completion. No retry: failures surface as GenerationFailed."""
    model = model or settings.generation_model
    try:
        client = OpenAI(
            api_key=settings.openai_api_key,
            timeout=settings.generation_timeout_seconds,
            max_retries=0,
        )
        resp = client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=0.7,
            max_tokens=settings.generation_max_tokens,
        )
    except OpenAIError as exc:
        log.warning("generation_upstream_error", model=model, error=str(exc)[:300])
        raise GenerationFailed(f"Content generation failed: {exc}") from exc

    content = resp.choices[0].message.content if resp.choices else None
    if not content or not content.strip():
        raise GenerationFailed("Content generation failed: the model returned an empty response")
    return content


# ── Public API ───────────────────────────────────────────────────────────────


def generate(
    transcript: str,
    content_type: str,
    style_exemplars: Optional[Sequence[str]] = None,
) -> RawContent:
    """One model call for a transcript; raw, uncleaned text."""
    if content_type not in CONTENT_TYPES:
        raise ValueError(f"content_type must be one of {CONTENT_TYPES}")

    text = _fit_transcript(transcript)
    log.info(
        "generation_start",
        content_type=content_type,
        transcript_tokens=_estimate_tokens(text),
        exemplars=len(style_exemplars or []),
    )
    raw = _call_llm(_build_system_prompt(content_type, style_exemplars), f"Transcript:\n\n{text}")
    return RawContent(text=raw, content_type=content_type, model=settings.generation_model)


def shape_content(raw: RawContent) -> tuple[str, list[str]]:
    """Cleaned body plus ordered slides (empty for text posts)."""
    if raw.content_type == CAROUSEL:
        slides = split_slides(raw.text)
        return "\n\n".join(slides), slides
    return limit_length(clean_text(raw.text)), []


def generate_content(
    db: Session,
    account: Account,
    video: Video,
    content_type: str,
    style_exemplars: Optional[Sequence[str]] = None,
    title: Optional[str] = None,
) -> GeneratedContent:
    """Generate, bill and store content for a saved video.

    The credit is checked before the model call and spent only after it
    succeeds; the spend and the stored content commit together.
    """
    if content_type not in CONTENT_TYPES:
        raise ValueError(f"content_type must be one of {CONTENT_TYPES}")
    if not video.transcript:
        raise TranscriptMissing("This video has no transcript yet. Fetch the transcript first.")

    quota_svc.ensure_available(quota_svc.check(db, account.id))

    raw = generate(video.transcript, content_type, style_exemplars)
    body, slides = shape_content(raw)
    if not body:
        raise GenerationFailed("Content generation failed: the model returned no usable text")

    try:
        quota_svc.consume(db, account.id, commit=False)
        content = GeneratedContent(
            account_id=account.id,
            source_video_id=video.id,
            title=(title or video.title or body.split("\n", 1)[0])[:512],
            body=body,
            content_type=content_type,
            slides=slides,
            model=raw.model,
        )
        db.add(content)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(content)
    log.info(
        "content_generated",
        content_id=str(content.id),
        account_id=str(account.id),
        content_type=content_type,
        slides=len(slides),
    )
    return content
