"""Application context and the command surface used by the CLI."""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime
from functools import partial
from typing import Any, Callable, List, Optional

from .audio_utils import extension_for, guess_mime_type, play_tone, probe_duration_seconds
from .config import Config, save_config
from .documents import PdfExtractor
from .errors import Busy, DictanoteError, GenerationError, StorageError
from .generator import GeminiGenerator
from .guard import DurationGuard
from .models import NOTE_TEXT_FIELDS, AudioBuffer, Note, PipelineRun, RunStatus, StopReason
from .pipeline import (
    AUDIO_STEPS,
    DOCUMENT_STEPS,
    EXPAND_STEPS,
    ProcessingPipeline,
    regenerate_steps,
    step_labels,
)
from .progress import Phase, ProgressReporter
from .prompts import get_text
from .recorder import AudioCaptureSession
from .renderer import build_export_zip, render_note_markdown
from .repository import NoteRepository
from .storage import BlobStore, build_export_basename, ensure_structure
from .transcriber import build_transcriber
from .waveform import WaveformMonitor

logger = logging.getLogger(__name__)


class AppContext:
    """Services for one user session, wired from a Config."""

    def __init__(
        self,
        config: Config,
        config_path: Optional[str] = None,
        transcriber: Any = None,
        generator: Any = None,
        capture: Optional[AudioCaptureSession] = None,
        notifier: Optional[Callable[[], None]] = None,
    ) -> None:
        self.config = config
        self.config_path = config_path
        self.user_id = config.user_id
        self.language = config.language
        self.paths = ensure_structure(config.base_dir)

        self.audio_store = BlobStore(self.paths["audio"])
        self.document_store = BlobStore(self.paths["documents"])
        self.repository = NoteRepository(self.paths["notes"])
        self.transcriber = transcriber or build_transcriber(config)
        self.generator = generator or GeminiGenerator(
            config.ai.resolved_api_key(), model=config.ai.model
        )
        self.pipeline = ProcessingPipeline(
            self.transcriber,
            self.generator,
            self.audio_store,
            self.repository,
            document_store=self.document_store,
            extractor=PdfExtractor(),
            language=config.language,
            timeout_seconds=config.ai.request_timeout_seconds,
        )
        self.reporter = ProgressReporter(
            [],
            dismiss_after=config.progress.success_dismiss_seconds,
            cancel_label=get_text("cancel", config.language),
            close_label=get_text("close", config.language),
        )
        self.capture = capture or AudioCaptureSession()
        if notifier is None and config.recording.notify_on_limit:
            notifier = partial(play_tone, config.audio.sample_rate_hz)
        self.guard = DurationGuard(
            config.recording.max_duration_minutes,
            tick_interval_ms=config.recording.tick_interval_ms,
            notifier=notifier,
        )

    def close(self) -> None:
        self.guard.disarm()
        if self.capture.is_capturing:
            self.capture.stop(StopReason.ERROR)
        self.pipeline.cancel()
        self.reporter.close()


class Dictanote:
    """One method per user action. Only one capture or run is active at a time."""

    def __init__(self, context: AppContext) -> None:
        self.context = context
        self.monitor: Optional[WaveformMonitor] = None
        self.last_run: Optional[PipelineRun] = None
        self.status = self._text("status_ready")

    def _text(self, key: str, **values) -> str:
        return get_text(key, self.context.language, **values)

    @property
    def busy(self) -> bool:
        return self.context.capture.is_capturing or self.context.pipeline.busy

    # -- recording -----------------------------------------------------------

    async def start_recording(
        self, on_tick: Optional[Callable[[int], None]] = None
    ) -> WaveformMonitor:
        if self.busy:
            raise Busy("Cannot start recording while another job is active.")
        ctx = self.context
        ctx.capture.start(ctx.config.audio, ctx.guard.max_duration_ms)
        monitor = WaveformMonitor(
            lambda: ctx.capture.is_capturing,
            bins=ctx.config.waveform.bins,
            refresh_hz=ctx.config.waveform.refresh_hz,
        )
        ctx.capture.add_block_listener(monitor.feed)
        self.monitor = monitor
        ctx.guard.arm(self._on_limit, on_tick)
        self.status = self._text("status_recording")
        return monitor

    async def stop_recording(self) -> Optional[PipelineRun]:
        if not self.context.capture.is_capturing:
            return None
        self.context.guard.disarm()
        buffer = self._finish_capture(StopReason.USER)
        if buffer is None:
            return None
        return await self._process_buffer(buffer, "success_recording")

    async def _on_limit(self) -> None:
        if not self.context.capture.is_capturing:
            # A user stop already finalized this capture.
            return
        minutes = self.context.guard.minutes
        buffer = self._finish_capture(StopReason.FORCED)
        self.status = self._text("status_limit", minutes=minutes)
        if buffer is not None:
            await self._process_buffer(buffer, "success_recording")

    def _finish_capture(self, reason: StopReason) -> Optional[AudioBuffer]:
        capture = self.context.capture
        try:
            return capture.stop(reason)
        finally:
            if self.monitor is not None:
                capture.remove_block_listener(self.monitor.feed)
                self.monitor = None

    async def _process_buffer(
        self,
        buffer: AudioBuffer,
        success_key: str,
        title_hint: Optional[str] = None,
    ) -> PipelineRun:
        ctx = self.context
        forced = buffer.forced
        run = await self._run_with_progress(
            AUDIO_STEPS,
            lambda progress: ctx.pipeline.process_audio(
                buffer, ctx.user_id, title_hint=title_hint, on_progress=progress
            ),
            success_key,
            "failure_recording",
        )
        if forced:
            self.status = self._text("status_limit", minutes=ctx.guard.minutes)
        return run

    async def wait_forced_stop(self) -> None:
        await self.context.guard.wait_forced()

    def set_duration(self, minutes: object) -> int:
        ctx = self.context
        value = ctx.guard.set_minutes(minutes)
        ctx.config.recording.max_duration_minutes = value
        if ctx.config_path:
            save_config(ctx.config_path, ctx.config)
        return value

    # -- uploads ---------------------------------------------------------------

    async def upload_audio(self, path: str) -> PipelineRun:
        if self.busy:
            raise Busy("Cannot upload while another job is active.")
        mime_type = guess_mime_type(path)
        if not mime_type.startswith("audio/"):
            raise DictanoteError(
                f"Not an audio file: {path}",
                guidance="Choose a WAV, FLAC, OGG, MP3, M4A or WebM file.",
            )
        data = _read_file(path)
        buffer = AudioBuffer(
            data=data,
            mime_type=mime_type,
            duration_seconds=probe_duration_seconds(data),
        )
        title_hint = os.path.splitext(os.path.basename(path))[0]
        return await self._process_buffer(buffer, "success_upload", title_hint=title_hint)

    async def upload_pdf(self, path: str) -> PipelineRun:
        if self.busy:
            raise Busy("Cannot upload while another job is active.")
        if not path.lower().endswith(".pdf"):
            raise DictanoteError(
                f"Not a PDF file: {path}", guidance="Only PDF documents are supported."
            )
        ctx = self.context
        data = _read_file(path)
        return await self._run_with_progress(
            DOCUMENT_STEPS,
            lambda progress: ctx.pipeline.process_document(
                data, ctx.user_id, on_progress=progress
            ),
            "success_document",
            "failure_document",
        )

    def cancel_run(self) -> bool:
        reporter = self.context.reporter
        if reporter.phase == Phase.RUNNING and reporter.visible:
            return reporter.cancel()
        return self.context.pipeline.cancel()

    # -- note actions ----------------------------------------------------------

    async def regenerate_from_raw(self, note_id: str) -> PipelineRun:
        note = self.require_note(note_id)
        ctx = self.context
        return await self._run_with_progress(
            regenerate_steps(note),
            lambda progress: ctx.pipeline.regenerate(note, on_progress=progress),
            "success_recording",
            "failure_recording",
        )

    async def refresh_note_from_summary(self, note_id: str) -> Note:
        note = self.require_note(note_id)
        ctx = self.context
        run = await self._run_with_progress(
            EXPAND_STEPS,
            lambda progress: ctx.pipeline.note_from_summary(note, on_progress=progress),
            "success_recording",
            "failure_recording",
        )
        if run.status == RunStatus.FAILED:
            raise GenerationError(run.error or "Detailed note generation failed.")
        return run.note or note

    def edit_note(self, note_id: str, field_name: str, value: str) -> Note:
        if field_name not in NOTE_TEXT_FIELDS:
            raise ValueError(f"Field cannot be edited: {field_name}")
        self.require_note(note_id)
        active = self.context.pipeline.active_run
        if active is not None and not active.terminal and active.note_id == note_id:
            raise Busy("This note is being processed.")
        if field_name == "title" and not (value or "").strip():
            value = self._text("untitled_note")
        return self.context.repository.update(note_id, {field_name: value})

    def delete_note(self, note_id: str) -> bool:
        ctx = self.context
        note = self.require_note(note_id)
        active = ctx.pipeline.active_run
        if active is not None and not active.terminal and active.note_id == note_id:
            raise Busy("This note is being processed.")
        for store, ref in (
            (ctx.audio_store, note.audio_ref),
            (ctx.document_store, note.document_ref),
        ):
            if not ref:
                continue
            try:
                store.delete(ref)
            except StorageError as exc:
                logger.warning("Could not delete blob %s: %s", ref, exc)
        return ctx.repository.delete(note_id)

    def list_notes(self) -> List[Note]:
        return self.context.repository.list_for_user(self.context.user_id)

    def get_note(self, note_id: str) -> Optional[Note]:
        note = self.context.repository.get(note_id)
        if note is None or note.owner_id != self.context.user_id:
            return None
        return note

    def audio_url(self, note_id: str) -> Optional[str]:
        note = self.require_note(note_id)
        if not note.audio_ref:
            return None
        return self.context.audio_store.get(note.audio_ref)

    def export_note(
        self, note_id: str, as_zip: bool = False, out_dir: Optional[str] = None
    ) -> str:
        ctx = self.context
        note = self.require_note(note_id)
        target_dir = out_dir or ctx.paths["exports"]
        os.makedirs(target_dir, exist_ok=True)
        try:
            created = datetime.fromisoformat(note.created_at)
        except ValueError:
            created = None
        basename = build_export_basename(note.title, created)

        if not as_zip:
            path = os.path.join(target_dir, f"{basename}.md")
            with open(path, "w", encoding="utf-8") as handle:
                handle.write(render_note_markdown(note))
            logger.info("Exported note %s to %s", note.id, path)
            return path

        audio = None
        audio_name = None
        if note.audio_ref:
            try:
                audio = ctx.audio_store.read(note.audio_ref)
                audio_name = f"audio.{extension_for(note.audio_mime_type or '')}"
            except StorageError as exc:
                logger.warning("Skipping audio in export of %s: %s", note.id, exc)
        path = os.path.join(target_dir, f"{basename}.zip")
        with open(path, "wb") as handle:
            handle.write(build_export_zip(note, audio, audio_name))
        logger.info("Exported note %s to %s", note.id, path)
        return path

    # -- helpers ---------------------------------------------------------------

    def require_note(self, note_id: str) -> Note:
        note = self.get_note(note_id)
        if note is None:
            raise StorageError(f"Note {note_id} not found.")
        return note

    async def _run_with_progress(
        self,
        steps,
        start: Callable[[Callable[[int, str], None]], Any],
        success_key: str,
        failure_key: str,
    ) -> PipelineRun:
        if self.context.pipeline.busy:
            raise Busy("Another run is still in progress.")
        reporter = self.context.reporter
        reporter.show(
            on_cancel=self.context.pipeline.cancel,
            labels=step_labels(steps, self.context.language),
        )
        self.status = self._text("status_processing")
        try:
            run = await start(reporter.set_step)
        except BaseException:
            reporter.hide()
            self.status = self._text("status_ready")
            raise
        self.last_run = run
        self._report_outcome(run, success_key, failure_key)
        self.status = self._text("status_ready")
        return run

    def _report_outcome(self, run: PipelineRun, success_key: str, failure_key: str) -> None:
        reporter = self.context.reporter
        if run.status == RunStatus.SUCCEEDED:
            reporter.set_step(len(reporter.labels))
            reporter.set_success(self._text(success_key))
        elif run.status == RunStatus.EMPTY:
            reporter.set_error(self._text("nothing_to_process"))
        elif run.status == RunStatus.CANCELLED:
            reporter.hide()
            logger.info("Run %s cancelled", run.run_id)
        else:
            reporter.set_error(self._text(failure_key))


def _read_file(path: str) -> bytes:
    try:
        with open(path, "rb") as handle:
            return handle.read()
    except OSError as exc:
        raise StorageError(f"Could not read {path}: {exc}") from exc


async def run_recording(
    app: Dictanote,
    stop_requested: asyncio.Event,
    on_tick: Optional[Callable[[int], None]] = None,
) -> Optional[PipelineRun]:
    """Record until ``stop_requested`` is set or the duration limit is hit."""
    await app.start_recording(on_tick)
    guard = app.context.guard
    while app.context.capture.is_capturing and not stop_requested.is_set():
        try:
            await asyncio.wait_for(stop_requested.wait(), timeout=0.1)
        except asyncio.TimeoutError:
            continue
    if guard.forced:
        await app.wait_forced_stop()
        return app.last_run
    return await app.stop_recording()
