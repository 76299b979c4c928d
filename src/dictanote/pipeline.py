"""
Post-capture processing: upload, transcription and note generation.

Every run is tracked by a PipelineRun that always ends in a terminal state.
Stages run sequentially except summary and detailed note, which are
generated concurrently once the title is known. Cancellation is
cooperative: the flag is checked before each stage and before each write,
so results that arrive after a cancel are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Optional, Sequence, Tuple

from .audio_utils import extension_for
from .documents import PdfExtractor
from .errors import (
    Busy,
    DictanoteError,
    DocumentError,
    EmptyInput,
    GenerationError,
    StorageError,
    TranscriptionError,
)
from .models import AudioBuffer, Note, PipelineRun, RunState, SourceType
from .prompts import get_prompt, get_text
from .repository import NoteRepository
from .storage import BlobStore, timestamp_slug

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 60

AUDIO_STEPS = ("upload", "transcribe", "title", "summary", "detailed_note")
DOCUMENT_STEPS = ("extract", "title", "summary")
REGENERATE_STEPS = ("title", "summary", "detailed_note")
EXPAND_STEPS = ("detailed_note",)

_QUOTES = "\"'`“”‘’«»"

ProgressCallback = Callable[[int, str], None]


class _RunCancelled(Exception):
    pass


def step_labels(steps: Sequence[str], language: str = "en") -> list:
    return [get_text(f"label_{step}", language) for step in steps]


def regenerate_steps(note: Note) -> Tuple[str, ...]:
    if note.source_type == SourceType.AUDIO:
        return REGENERATE_STEPS
    return REGENERATE_STEPS[:2]


def clean_title(raw: str, max_chars: int = TITLE_MAX_CHARS) -> str:
    """First non-empty line, unquoted, without markdown emphasis or a final period."""
    line = next((part.strip() for part in (raw or "").splitlines() if part.strip()), "")
    line = line.lstrip("#").strip().strip("*_").strip()
    line = line.strip(_QUOTES).strip()
    line = line.rstrip(".").strip()
    if len(line) > max_chars:
        line = line[:max_chars].rstrip()
    return line


def fallback_title(created_at: Optional[str], language: str = "en") -> str:
    try:
        day = datetime.fromisoformat(created_at or "").strftime("%Y-%m-%d")
    except ValueError:
        day = timestamp_slug()
    return f"{get_text('untitled', language)} {day}"


class ProcessingPipeline:
    def __init__(
        self,
        transcriber: Any,
        generator: Any,
        audio_store: BlobStore,
        repository: NoteRepository,
        document_store: Optional[BlobStore] = None,
        extractor: Optional[PdfExtractor] = None,
        language: str = "en",
        timeout_seconds: Optional[float] = 120.0,
    ) -> None:
        self.transcriber = transcriber
        self.generator = generator
        self.audio_store = audio_store
        self.document_store = document_store or audio_store
        self.repository = repository
        self.extractor = extractor or PdfExtractor()
        self.language = language
        self.timeout_seconds = timeout_seconds
        self._active: Optional[PipelineRun] = None

    @property
    def active_run(self) -> Optional[PipelineRun]:
        return self._active

    @property
    def busy(self) -> bool:
        return self._active is not None and not self._active.terminal

    def cancel(self) -> bool:
        if self._active is None:
            return False
        requested = self._active.cancel()
        if requested:
            logger.info("Cancel requested for run %s", self._active.run_id)
        return requested

    # -- public operations -------------------------------------------------

    async def process_audio(
        self,
        buffer: AudioBuffer,
        owner_id: str,
        title_hint: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PipelineRun:
        run = self._begin(AUDIO_STEPS, "audio")

        async def body() -> None:
            if not buffer.data:
                raise EmptyInput("No audio captured.")
            run.note = await self._io(
                self.repository.create,
                {
                    "owner_id": owner_id,
                    "title": title_hint or "",
                    "source_type": SourceType.AUDIO,
                    "audio_mime_type": buffer.mime_type,
                    "recording_duration_seconds": int(buffer.duration_seconds),
                },
            )

            self._enter(run, RunState.UPLOADING, 0, "step_upload", on_progress)
            try:
                ref = await self._io(
                    self.audio_store.put,
                    buffer.data,
                    owner_id,
                    run.note.id,
                    extension_for(buffer.mime_type),
                )
            except StorageError as exc:
                run.record("upload", error=_describe(exc))
                raise
            run.record("upload", value=ref)
            await self._save(run, {"audio_ref": ref})

            self._enter(run, RunState.TRANSCRIBING, 1, "step_transcribe", on_progress)
            try:
                transcript = await self._ai(
                    self.transcriber.transcribe, buffer.data, buffer.mime_type
                )
            except (TranscriptionError, asyncio.TimeoutError) as exc:
                run.record("transcribe", error=_describe(exc))
                raise TranscriptionError(_describe(exc)) from exc
            transcript = (transcript or "").strip()
            run.record("transcribe", value=transcript)
            self._checkpoint(run)

            if not transcript:
                self._enter(run, RunState.TITLING, 2, "step_title", on_progress)
                title, _ = await self.generate_title("", run.note.created_at, title_hint)
                run.record("title", value=title)
                await self._save(run, {"title": title})
                raise EmptyInput("Transcription returned no text.")

            await self._save(run, {"raw_transcription": transcript})
            await self._generate_fields(
                run, transcript, on_progress, first_index=2, hint=title_hint
            )

        return await self._execute(run, body)

    async def process_document(
        self,
        data: bytes,
        owner_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PipelineRun:
        run = self._begin(DOCUMENT_STEPS, "pdf")

        async def body() -> None:
            self._enter(run, RunState.EXTRACTING, 0, "step_extract", on_progress)
            try:
                document = await self._io(self.extractor.extract, data)
            except DocumentError as exc:
                run.record("extract", error=_describe(exc))
                raise
            text = document.text.strip()
            run.record("extract", value=text)
            self._checkpoint(run)

            run.note = await self._io(
                self.repository.create,
                {
                    "owner_id": owner_id,
                    "source_type": SourceType.PDF,
                    "raw_transcription": text,
                    "page_count": document.page_count,
                    "detailed_note": (
                        get_text("document_placeholder", self.language) if text else ""
                    ),
                },
            )
            ref = await self._io(
                self.document_store.put, data, owner_id, run.note.id, "pdf"
            )
            await self._save(run, {"document_ref": ref})

            self._enter(run, RunState.TITLING, 1, "step_title", on_progress)
            if not text:
                title, _ = await self.generate_title("", run.note.created_at)
                run.record("title", value=title)
                await self._save(run, {"title": title})
                raise EmptyInput("The document contains no extractable text.")

            title, error = await self.generate_title(text, run.note.created_at)
            run.record("title", value=title, error=error)
            await self._save(run, {"title": title})

            self._enter(run, RunState.POST_PROCESSING, 2, "step_summary", on_progress)
            summary = await self._generate_text("summary", text, "summary_failed", run)
            await self._save(run, {"summary": summary})

        return await self._execute(run, body)

    async def regenerate(
        self, note: Note, on_progress: Optional[ProgressCallback] = None
    ) -> PipelineRun:
        """Rebuild title, summary and (for recordings) the detailed note from raw text."""
        text = note.raw_transcription.strip()
        if not text:
            raise EmptyInput("This note has no raw text to regenerate from.")
        steps = regenerate_steps(note)
        include_detail = "detailed_note" in steps
        run = self._begin(steps, "regenerate")
        run.note = note

        async def body() -> None:
            await self._generate_fields(
                run, text, on_progress, first_index=0, include_detail=include_detail
            )

        return await self._execute(run, body)

    async def note_from_summary(
        self, note: Note, on_progress: Optional[ProgressCallback] = None
    ) -> PipelineRun:
        """Expand an edited summary into a new detailed note."""
        summary = note.summary.strip()
        if not summary:
            raise EmptyInput("This note has no summary to expand.")
        run = self._begin(EXPAND_STEPS, "expand")
        run.note = note

        async def body() -> None:
            self._enter(run, RunState.POST_PROCESSING, 0, "step_detailed_note", on_progress)
            try:
                detail = await self._ai(
                    self.generator.generate,
                    get_prompt("note_from_summary", self.language, summary),
                )
            except (GenerationError, asyncio.TimeoutError) as exc:
                run.record("detailed_note", error=_describe(exc))
                raise GenerationError(_describe(exc)) from exc
            run.record("detailed_note", value=detail)
            await self._save(run, {"detailed_note": detail})

        return await self._execute(run, body)

    async def generate_title(
        self, text: str, created_at: Optional[str] = None, hint: Optional[str] = None
    ) -> Tuple[str, Optional[str]]:
        """Return ``(title, error)``; on any failure the title is the fallback."""
        fallback = hint or fallback_title(created_at, self.language)
        if not (text or "").strip():
            return fallback, None
        try:
            raw = await self._ai(
                self.generator.generate, get_prompt("title", self.language, text)
            )
        except (GenerationError, asyncio.TimeoutError) as exc:
            logger.warning("Title generation failed: %s", _describe(exc))
            return fallback, _describe(exc)
        title = clean_title(raw)
        if not title:
            return fallback, "Empty title returned."
        return title, None

    # -- stages --------------------------------------------------------------

    async def _generate_fields(
        self,
        run: PipelineRun,
        text: str,
        on_progress: Optional[ProgressCallback],
        first_index: int,
        include_detail: bool = True,
        hint: Optional[str] = None,
    ) -> None:
        self._enter(run, RunState.TITLING, first_index, "step_title", on_progress)
        title, error = await self.generate_title(text, run.note.created_at, hint)
        run.record("title", value=title, error=error)
        await self._save(run, {"title": title})

        self._enter(run, RunState.POST_PROCESSING, first_index + 1, "step_summary", on_progress)
        summary = self._generate_text("summary", text, "summary_failed", run)
        if not include_detail:
            jobs = [summary]
        else:
            # The detailed note is only shown as active once the summary is done.
            async def summary_then_advance() -> str:
                value = await summary
                if not run.cancel_requested:
                    run.current_step_index = first_index + 2
                    self._report(first_index + 2, "step_detailed_note", on_progress)
                return value

            jobs = [summary_then_advance()]
            jobs.append(
                self._generate_text("detailed_note", text, "detailed_note_failed", run)
            )
        results = await asyncio.gather(*jobs)

        updates = {"summary": results[0]}
        if include_detail:
            updates["detailed_note"] = results[1]
        await self._save(run, updates)

    async def _generate_text(
        self, kind: str, text: str, failure_key: str, run: PipelineRun
    ) -> str:
        try:
            value = await self._ai(
                self.generator.generate, get_prompt(kind, self.language, text)
            )
        except (GenerationError, asyncio.TimeoutError) as exc:
            logger.warning("%s generation failed: %s", kind, _describe(exc))
            run.record(kind, error=_describe(exc))
            return get_text(failure_key, self.language)
        run.record(kind, value=value)
        return value

    # -- plumbing ------------------------------------------------------------

    def _begin(self, steps: Sequence[str], kind: str) -> PipelineRun:
        if self.busy:
            raise Busy(f"Run {self._active.run_id} is still in progress.")
        run = PipelineRun(steps=list(steps), kind=kind)
        self._active = run
        logger.info("Run %s started (%s)", run.run_id, kind)
        return run

    async def _execute(self, run: PipelineRun, body: Callable) -> PipelineRun:
        try:
            await body()
            self._checkpoint(run)
            run.state = RunState.SUCCEEDED
        except _RunCancelled:
            run.state = RunState.CANCELLED
        except EmptyInput as exc:
            run.state = RunState.EMPTY
            run.error = str(exc)
        except DictanoteError as exc:
            logger.error("Run %s failed: %s", run.run_id, exc)
            run.state = RunState.FAILED
            run.error = str(exc)
        except asyncio.CancelledError:
            run.state = RunState.CANCELLED
            raise
        except Exception as exc:
            logger.exception("Run %s failed unexpectedly", run.run_id)
            run.state = RunState.FAILED
            run.error = str(exc) or exc.__class__.__name__
        finally:
            if self._active is run:
                self._active = None
        logger.info("Run %s finished: %s", run.run_id, run.state.value)
        return run

    def _checkpoint(self, run: PipelineRun) -> None:
        if run.cancel_requested:
            raise _RunCancelled()

    def _enter(
        self,
        run: PipelineRun,
        state: RunState,
        index: int,
        message_key: str,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        self._checkpoint(run)
        run.state = state
        run.current_step_index = index
        self._report(index, message_key, on_progress)

    def _report(
        self, index: int, message_key: str, on_progress: Optional[ProgressCallback]
    ) -> None:
        if on_progress is not None:
            on_progress(index, get_text(message_key, self.language))

    async def _save(self, run: PipelineRun, updates: dict) -> None:
        self._checkpoint(run)
        run.note = await self._io(self.repository.update, run.note.id, updates)

    async def _io(self, func: Callable, *args) -> Any:
        return await asyncio.to_thread(func, *args)

    async def _ai(self, func: Callable, *args) -> Any:
        return await asyncio.wait_for(
            asyncio.to_thread(func, *args), timeout=self.timeout_seconds
        )


def _describe(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "Request timed out."
    return str(exc)
