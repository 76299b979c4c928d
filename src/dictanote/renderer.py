"""Markdown and ZIP rendering of notes."""

from __future__ import annotations

import io
import logging
import zipfile
from typing import List, Optional

from .models import Note, SourceType

logger = logging.getLogger(__name__)


def _yaml_quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f"\"{escaped}\""


def _clean_text(value: str) -> str:
    return " ".join(value.split())


def _format_duration(seconds: int) -> str:
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes}:{secs:02d}"


def render_note_header(note: Note) -> str:
    lines: List[str] = []
    lines.append("---")
    lines.append("schema: 1")
    lines.append(f"id: {_yaml_quote(note.id)}")
    lines.append(f"title: {_yaml_quote(_clean_text(note.title))}")
    lines.append(f"source: {_yaml_quote(note.source_type.value)}")
    lines.append(f"created_at: {_yaml_quote(note.created_at)}")
    lines.append(f"updated_at: {_yaml_quote(note.updated_at)}")
    if note.source_type == SourceType.AUDIO:
        if note.audio_ref:
            lines.append(f"audio: {_yaml_quote(note.audio_ref)}")
        if note.audio_mime_type:
            lines.append(f"audio_mime_type: {_yaml_quote(note.audio_mime_type)}")
        lines.append(f"duration_seconds: {note.recording_duration_seconds}")
    else:
        if note.document_ref:
            lines.append(f"document: {_yaml_quote(note.document_ref)}")
        lines.append(f"page_count: {note.page_count}")
    lines.append("---")
    lines.append("")
    return "\n".join(lines)


def render_note_markdown(note: Note, include_raw: bool = True) -> str:
    lines: List[str] = [render_note_header(note)]
    lines.append(f"# {_clean_text(note.title) or 'Untitled Note'}")
    lines.append("")
    if note.source_type == SourceType.AUDIO and note.recording_duration_seconds:
        lines.append(f"- Duration: {_format_duration(note.recording_duration_seconds)}")
        lines.append("")
    elif note.source_type == SourceType.PDF and note.page_count:
        lines.append(f"- Pages: {note.page_count}")
        lines.append("")
    if note.summary:
        lines.append("## Summary")
        lines.append("")
        lines.append(note.summary.strip())
        lines.append("")
    if note.detailed_note:
        lines.append("## Detailed Note")
        lines.append("")
        lines.append(note.detailed_note.strip())
        lines.append("")
    if include_raw and note.raw_transcription:
        heading = "Transcript" if note.source_type == SourceType.AUDIO else "Extracted Text"
        lines.append(f"## {heading}")
        lines.append("")
        lines.append(note.raw_transcription.strip())
        lines.append("")
    return "\n".join(lines)


def build_export_zip(
    note: Note, audio: Optional[bytes] = None, audio_name: Optional[str] = None
) -> bytes:
    """Bundle the note's texts, plus the audio when it could be read."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as bundle:
        bundle.writestr("transcription.txt", note.raw_transcription)
        bundle.writestr("summary.txt", note.summary)
        bundle.writestr("detailed-note.md", note.detailed_note)
        if audio:
            bundle.writestr(audio_name or "audio", audio)
        elif note.audio_ref:
            logger.warning("Audio for note %s not included in export", note.id)
    return buffer.getvalue()
