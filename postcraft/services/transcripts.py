"""Transcript acquisition: ordered strategies, size cap, persistence onto the video."""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import partial
from typing import Optional, Sequence

import httpx
import structlog
from sqlalchemy.orm import Session

from postcraft.config import settings
from postcraft.db.models import Video
from postcraft.errors import TranscriptUnavailable
from postcraft.services import youtube as yt_svc
from postcraft.services.fallback import StrategiesExhausted, run_in_order

log = structlog.get_logger()

TRIM_MARKER = "[Trimmed due to size limits]"

# ── Types ────────────────────────────────────────────────────────────────────


@dataclass
class TranscriptResult:
    transcript: str
    language: str = "unknown"
    is_auto_generated: bool = False
    lines: list[str] = field(default_factory=list)
    strategy: str = ""
    trimmed: bool = False

    def to_dict(self) -> dict:
        return {
            "transcript": self.transcript,
            "language": self.language,
            "is_auto_generated": self.is_auto_generated,
            "strategy": self.strategy,
            "trimmed": self.trimmed,
        }


# ── Strategies ───────────────────────────────────────────────────────────────


class CaptionsStrategy:
    """Caption tracks published on YouTube itself."""

    name = "captions"

    def __init__(self, languages: Sequence[str] = ()):
        self.languages = list(languages)

    def fetch(self, video_id: str, timeout: float) -> TranscriptResult:
        captions = yt_svc.get_captions(video_id, self.languages)
        return TranscriptResult(
            transcript=captions.text,
            language=captions.language,
            is_auto_generated=captions.is_generated,
            lines=[seg["text"] for seg in captions.segments],
        )


class HttpExtractorStrategy:
    """External extraction service answering ``POST {videoId}`` with a transcript.

    Accepts ``{"transcript": ...}`` at the top level or nested under ``data``;
    the transcript may be a string or a list of ``{"text": ...}`` segments.
    """

    def __init__(self, name: str, url: str, token: str = ""):
        self.name = name
        self.url = url
        self.token = token

    def fetch(self, video_id: str, timeout: float) -> TranscriptResult:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        resp = httpx.post(self.url, json={"videoId": video_id}, headers=headers, timeout=timeout)
        if resp.status_code >= 400:
            raise RuntimeError(f"HTTP {resp.status_code}: {resp.text[:200]}")

        payload = resp.json()
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            payload = payload["data"]
        if not isinstance(payload, dict):
            raise ValueError("unexpected response shape")

        raw = payload.get("transcript")
        if isinstance(raw, list):
            lines = [str(seg.get("text", "") if isinstance(seg, dict) else seg).strip() for seg in raw]
            lines = [line for line in lines if line]
            text = " ".join(lines)
        else:
            text = str(raw or "")
            lines = []

        return TranscriptResult(
            transcript=text,
            language=payload.get("language") or "unknown",
            is_auto_generated=bool(payload.get("isAutoGenerated", payload.get("is_auto_generated", False))),
            lines=lines,
        )


def build_strategies() -> list:
    """Strategies in configured order; extractors without a URL are left out."""
    extractor_urls = {
        "primary-extractor": settings.primary_extractor_url,
        "secondary-extractor": settings.secondary_extractor_url,
    }
    strategies = []
    for name in settings.transcript_strategy_names:
        if name == "captions":
            strategies.append(CaptionsStrategy(settings.transcript_language_codes))
        elif name in extractor_urls:
            if extractor_urls[name]:
                strategies.append(HttpExtractorStrategy(name, extractor_urls[name], settings.extractor_token))
        else:
            log.warning("unknown_transcript_strategy", strategy=name)
    return strategies


# ── Helpers ──────────────────────────────────────────────────────────────────


def apply_size_cap(text: str, max_chars: int) -> tuple[str, bool]:
    """Truncate so the stored text, marker included, stays within ``max_chars``."""
    if len(text) <= max_chars:
        return text, False
    suffix = f"\n\n{TRIM_MARKER}"
    keep = max(0, max_chars - len(suffix))
    return text[:keep].rstrip() + suffix, True


def format_lines(text: str, lines: Sequence[str] = ()) -> list[str]:
    """Display lines for a transcript: provider segments, else non-empty text lines."""
    out = [line.strip() for line in lines if line and line.strip()]
    if out:
        return out
    return [line.strip() for line in text.splitlines() if line.strip()]


def store_transcript(db: Session, video: Video, result: TranscriptResult) -> Video:
    """Idempotent upsert of an acquired transcript onto the video."""
    video.transcript = result.transcript
    video.formatted_transcript = format_lines(result.transcript, result.lines)
    video.language = result.language
    video.is_auto_generated = result.is_auto_generated
    video.transcript_source = result.strategy
    video.transcript_status = "ready"
    video.transcript_error = None
    db.commit()
    db.refresh(video)
    return video


# ── Public API ───────────────────────────────────────────────────────────────


def fetch_transcript(video_id: str, strategies: Optional[Sequence] = None) -> TranscriptResult:
    """Run the strategy list for a YouTube id; size-capped result or TranscriptUnavailable."""
    if strategies is None:
        strategies = build_strategies()
    timeout = settings.transcript_strategy_timeout_seconds

    calls = [(s.name, partial(s.fetch, video_id, timeout)) for s in strategies]
    try:
        name, result = run_in_order(
            calls,
            timeout=timeout,
            accept=lambda r: bool(r and r.transcript and r.transcript.strip()),
        )
    except StrategiesExhausted as exc:
        log.warning("transcript_unavailable", video_id=video_id, errors=exc.errors)
        raise TranscriptUnavailable(exc.errors) from exc

    result.strategy = name
    text, trimmed = apply_size_cap(result.transcript.strip(), settings.transcript_max_chars)
    if trimmed:
        log.warning(
            "transcript_trimmed",
            video_id=video_id,
            original_chars=len(result.transcript),
            max_chars=settings.transcript_max_chars,
        )
        # Segment lines would run past the cut; rebuild them from the capped text.
        result.lines = []
    result.transcript = text
    result.trimmed = trimmed
    return result


def acquire_transcript(
    db: Session,
    video: Video,
    strategies: Optional[Sequence] = None,
) -> TranscriptResult:
    """Fetch and persist the transcript of a saved video.

    On failure the video is marked ``failed`` with the aggregated message and
    :class:`TranscriptUnavailable` propagates; calling again re-runs every
    strategy from the top.
    """
    log.info("transcript_acquire_start", video_id=str(video.id), youtube_id=video.youtube_id)
    try:
        result = fetch_transcript(video.youtube_id, strategies)
    except TranscriptUnavailable as exc:
        video.transcript_status = "failed"
        video.transcript_error = exc.message[:2000]
        db.commit()
        raise

    store_transcript(db, video, result)
    log.info(
        "transcript_acquired",
        video_id=str(video.id),
        strategy=result.strategy,
        chars=len(result.transcript),
        trimmed=result.trimmed,
    )
    return result
