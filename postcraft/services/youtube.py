"""YouTube service: video ids, metadata via yt-dlp, captions via youtube-transcript-api."""

from __future__ import annotations

import json
import re
import subprocess
from dataclasses import dataclass, field

import structlog
from youtube_transcript_api import NoTranscriptFound, YouTubeTranscriptApi

from postcraft.config import settings

log = structlog.get_logger()

_VIDEO_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{11}$")

# ── Helpers ──────────────────────────────────────────────────────────────────


def extract_video_id(url: str) -> str:
    """Extract video ID from various YouTube URL formats (or a bare id)."""
    url = url.strip()
    if _VIDEO_ID_RE.match(url):
        return url
    patterns = [
        r"(?:v=|/v/|youtu\.be/)([a-zA-Z0-9_-]{11})",
        r"(?:embed/)([a-zA-Z0-9_-]{11})",
        r"(?:shorts/)([a-zA-Z0-9_-]{11})",
    ]
    for p in patterns:
        m = re.search(p, url)
        if m:
            return m.group(1)
    raise ValueError(f"Cannot extract video ID from: {url}")


def format_duration(seconds: int) -> str:
    """12:05 / 1:02:03 style label."""
    seconds = max(0, int(seconds or 0))
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    if h:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m}:{s:02d}"


# ── Data classes ─────────────────────────────────────────────────────────────


@dataclass
class VideoMeta:
    video_id: str
    title: str = ""
    channel: str = ""
    duration: int = 0
    url: str = ""

    @property
    def duration_label(self) -> str:
        return format_duration(self.duration) if self.duration else ""


@dataclass
class CaptionResult:
    text: str
    segments: list[dict] = field(default_factory=list)
    language: str = "unknown"
    is_generated: bool = False


# ── Public API ───────────────────────────────────────────────────────────────


def get_metadata(url: str) -> VideoMeta:
    """Fetch video metadata using yt-dlp (no download). Never raises."""
    video_id = extract_video_id(url)
    cmd = ["yt-dlp"]
    if settings.yt_dlp_player_client:
        cmd.extend(["--extractor-args", f"youtube:player_client={settings.yt_dlp_player_client}"])
    cmd += ["--dump-json", "--no-download", "--no-warnings", url]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=30)
        if result.returncode != 0:
            log.warning("yt_dlp_metadata_failed", stderr=result.stderr[:500])
            return VideoMeta(video_id=video_id, url=url)

        info = json.loads(result.stdout)
        return VideoMeta(
            video_id=video_id,
            title=info.get("title", ""),
            channel=info.get("channel", info.get("uploader", "")),
            duration=int(info.get("duration") or 0),
            url=url,
        )
    except Exception as exc:
        log.warning("metadata_error", error=str(exc))
        return VideoMeta(video_id=video_id, url=url)


def get_captions(video_id: str, languages: list[str] | None = None) -> CaptionResult:
    """Fetch a caption track via youtube-transcript-api.

    Priority: manual track (matching language) → auto-generated → any track.
    Library errors (captions disabled, video unavailable, blocked IP)
    propagate to the caller.
    """
    lang_codes = list(languages or []) or ["en"]
    transcript_list = YouTubeTranscriptApi().list(video_id)

    transcript = None
    try:
        transcript = transcript_list.find_manually_created_transcript(lang_codes)
    except NoTranscriptFound:
        pass

    if transcript is None:
        try:
            transcript = transcript_list.find_generated_transcript(lang_codes)
        except NoTranscriptFound:
            pass

    # Last resort: any available transcript
    if transcript is None:
        transcript = next(iter(transcript_list), None)
    if transcript is None:
        raise LookupError(f"No caption tracks for video {video_id}")

    fetched = transcript.fetch()
    segments = []
    for snippet in fetched:
        text = (snippet.text or "").strip()
        if not text:
            continue
        segments.append({
            "start": round(snippet.start, 2),
            "duration": round(snippet.duration, 2),
            "text": text,
        })

    return CaptionResult(
        text=" ".join(seg["text"] for seg in segments),
        segments=segments,
        language=transcript.language_code,
        is_generated=bool(transcript.is_generated),
    )
