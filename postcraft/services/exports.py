"""Download formats for generated content: Markdown, DOCX, PDF."""

import io
import textwrap

from docx import Document
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from postcraft.db.models import GeneratedContent


def _render_sections(content: GeneratedContent) -> list[tuple[str, list[str]]]:
    source_lines = [f"Content ID: {content.id}", f"Type: {content.content_type}"]
    if content.created_at:
        source_lines.append(f"Created: {content.created_at.isoformat()}")

    if content.content_type == "carousel":
        slides = list(content.slides or []) or ["—"]
        return [
            ("Source", source_lines),
            *((f"Slide {i + 1}", [slide]) for i, slide in enumerate(slides)),
        ]
    return [("Source", source_lines), ("Post", [content.body or "—"])]


def content_to_markdown(content: GeneratedContent) -> str:
    lines = [f"# {content.title or 'Generated content'}", ""]
    for title, items in _render_sections(content):
        lines.append(f"## {title}")
        if title == "Source":
            for item in items:
                lines.append(f"- {item}")
        else:
            lines.extend(items)
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def content_to_docx_bytes(content: GeneratedContent) -> bytes:
    doc = Document()
    doc.add_heading(content.title or "Generated content", level=1)
    for title, items in _render_sections(content):
        doc.add_heading(title, level=2)
        for item in items:
            if title == "Source":
                doc.add_paragraph(item, style="List Bullet")
            else:
                for paragraph in item.split("\n\n"):
                    doc.add_paragraph(paragraph)
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


def content_to_pdf_bytes(content: GeneratedContent) -> bytes:
    """Text posts flow across pages; a carousel gets one page per slide."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    width, height = A4
    x = 40
    y = height - 40

    def write_line(text: str, bold: bool = False, size: int = 10):
        nonlocal y
        if y < 50:
            c.showPage()
            y = height - 40
        c.setFont("Helvetica-Bold" if bold else "Helvetica", size)
        c.drawString(x, y, text[:140])
        y -= size + 4

    def write_block(text: str, width_chars: int = 100, size: int = 10):
        for paragraph in text.splitlines() or [""]:
            for chunk in textwrap.wrap(paragraph, width=width_chars) or [""]:
                write_line(chunk, size=size)

    write_line(content.title or "Generated content", bold=True, size=14)
    write_line("")
    for title, items in _render_sections(content):
        if title.startswith("Slide"):
            c.showPage()
            y = height - 80
            write_line(title, bold=True, size=12)
            write_line("")
            write_block(items[0], width_chars=60, size=16)
            continue
        write_line(title, bold=True)
        for item in items:
            write_block(item)
        write_line("")

    c.save()
    return buf.getvalue()
