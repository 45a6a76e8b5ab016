"""Slide / post text cleaning for model output.

``clean_text`` is pure and idempotent: every line is rewritten until it stops
changing, and a line is dropped only when its final form is a separator or a
metadata label, so a second pass finds nothing left to do.
"""

from __future__ import annotations

import re
from typing import Optional

MIN_SLIDE_CHARS = 10
MAX_POST_CHARS = 3000

_HEADER_RE = re.compile(r"^#{1,6}(?:\s+|$)")
_BOLD_RE = re.compile(r"(\*\*|__)(?=\S)(.+?)(?<=\S)\1")
_ITALIC_STAR_RE = re.compile(r"(?<![\w*])\*(?=\S)(.+?)(?<=\S)\*(?![\w*])")
_ITALIC_UNDERSCORE_RE = re.compile(r"(?<![\w_])_(?=\S)(.+?)(?<=\S)_(?![\w_])")
_NUMBERING_RE = re.compile(
    r"^(?:(?:slide|part|section)\s*\d+\s*(?:[:.)\-–—]\s*|\s+|$)|\d+[.)]\s+)",
    re.IGNORECASE,
)
_SEPARATOR_RE = re.compile(r"^(?:-{3,}|_{3,})$")
_META_RE = re.compile(
    r"^(?:title|description|summary|hashtags?|carousel[ _-]?notes?|call[ _-]?to[ _-]?action|cta"
    r"|visual[ _-]?elements?|tone|brand[ _-]?colou?rs?)\s*(?::|$)",
    re.IGNORECASE,
)
_BLANK_RUN_RE = re.compile(r"\n{3,}")
_PARAGRAPH_RE = re.compile(r"\n[ \t]*\n")
_LEFTOVER_RE = re.compile(r"^[\W\d_]*(?:(?:slide|part|section|end)[\W\d_]*)?$", re.IGNORECASE)


def _normalize_newlines(text: str) -> str:
    return (text or "").replace("\r\n", "\n").replace("\r", "\n")


def _strip_markup(line: str) -> str:
    line = _HEADER_RE.sub("", line)
    line = _BOLD_RE.sub(r"\2", line)
    line = _ITALIC_STAR_RE.sub(r"\1", line)
    line = _ITALIC_UNDERSCORE_RE.sub(r"\1", line)
    line = _NUMBERING_RE.sub("", line)
    return line.strip()


def _clean_line(line: str) -> Optional[str]:
    """Fixpoint of the markup rules for one line, or None when it is dropped."""
    current = line.strip()
    while True:
        if _SEPARATOR_RE.match(current) or _META_RE.match(current):
            return None
        updated = _strip_markup(current)
        if updated == current:
            return current
        current = updated


def clean_text(text: str) -> str:
    """Strip headers, emphasis, metadata labels, numbering and separators."""
    lines = []
    for line in _normalize_newlines(text).split("\n"):
        cleaned = _clean_line(line)
        if cleaned is not None:
            lines.append(cleaned)
    joined = "\n".join(lines).strip()
    return _BLANK_RUN_RE.sub("\n\n", joined)


def split_slides(text: str) -> list[str]:
    """Carousel slides: one cleaned paragraph each, in generated order.

    The minimum length is measured on the paragraph as generated, before its
    numbering prefix is removed.
    """
    slides = []
    for paragraph in _PARAGRAPH_RE.split(_normalize_newlines(text)):
        if len(paragraph.strip()) < MIN_SLIDE_CHARS:
            continue
        cleaned = clean_text(paragraph)
        if not cleaned or _LEFTOVER_RE.match(cleaned):
            continue
        slides.append(cleaned)
    return slides


def limit_length(text: str, max_chars: int = MAX_POST_CHARS) -> str:
    """Cut at the last whitespace before ``max_chars``."""
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    space = cut.rfind(" ")
    if space > max_chars // 2:
        cut = cut[:space]
    return cut.rstrip()
