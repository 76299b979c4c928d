import asyncio
import re
import time

import pytest

from conftest import FakeExtractor, FakeGenerator, FakeTranscriber
from dictanote.errors import Busy, EmptyInput, StorageError
from dictanote.models import AudioBuffer, RunState, RunStatus, SourceType
from dictanote.pipeline import ProcessingPipeline, clean_title, fallback_title
from dictanote.repository import NoteRepository
from dictanote.storage import BlobStore

FALLBACK = re.compile(r"^Untitled \d{4}-\d{2}-\d{2}$")
WAV_BYTES = b"RIFF" + b"\x00" * 64


class BrokenStore(BlobStore):
    def put(self, data, owner_id, note_id, extension):
        raise StorageError("disk full")


def _pipeline(tmp_path, transcriber=None, generator=None, extractor=None, **kwargs):
    kwargs.setdefault("document_store", BlobStore(str(tmp_path / "documents")))
    kwargs.setdefault("audio_store", BlobStore(str(tmp_path / "audio")))
    return ProcessingPipeline(
        transcriber or FakeTranscriber(),
        generator or FakeGenerator(),
        repository=NoteRepository(str(tmp_path / "notes")),
        extractor=extractor or FakeExtractor(),
        **kwargs,
    )


def _buffer(data=WAV_BYTES):
    return AudioBuffer(data=data, mime_type="audio/wav", duration_seconds=12)


@pytest.mark.asyncio
async def test_audio_run_fills_every_field(tmp_path):
    pipeline = _pipeline(tmp_path)
    events = []

    run = await pipeline.process_audio(
        _buffer(), "alice", on_progress=lambda i, msg: events.append(i)
    )

    assert run.status == RunStatus.SUCCEEDED
    note = pipeline.repository.get(run.note_id)
    assert note.title == "Team Sync"
    assert note.raw_transcription == "hello world"
    assert note.summary == "summary text"
    assert note.detailed_note == "detailed_note text"
    assert note.audio_ref == f"alice/{note.id}.wav"
    assert note.recording_duration_seconds == 12
    assert pipeline.audio_store.read(note.audio_ref) == WAV_BYTES
    assert events == [0, 1, 2, 3, 4]
    assert not pipeline.busy


@pytest.mark.asyncio
async def test_transcription_failure_keeps_note_without_generated_fields(tmp_path):
    generator = FakeGenerator()
    pipeline = _pipeline(
        tmp_path, transcriber=FakeTranscriber(error="model crashed"), generator=generator
    )

    run = await pipeline.process_audio(_buffer(), "alice")

    assert run.status == RunStatus.FAILED
    assert "model crashed" in run.error
    assert not run.partial_results["transcribe"].ok
    note = pipeline.repository.get(run.note_id)
    assert note.audio_ref
    assert note.summary == ""
    assert note.detailed_note == ""
    assert generator.calls == []


@pytest.mark.asyncio
async def test_summary_failure_degrades_to_message(tmp_path):
    pipeline = _pipeline(tmp_path, generator=FakeGenerator(fail={"summary"}))

    run = await pipeline.process_audio(_buffer(), "alice")

    assert run.status == RunStatus.SUCCEEDED
    note = pipeline.repository.get(run.note_id)
    assert note.title == "Team Sync"
    assert note.summary == "Summary generation failed."
    assert note.detailed_note == "detailed_note text"
    assert not run.partial_results["summary"].ok
    assert run.partial_results["detailed_note"].ok


@pytest.mark.asyncio
async def test_detailed_note_failure_degrades_to_message(tmp_path):
    pipeline = _pipeline(tmp_path, generator=FakeGenerator(fail={"detailed_note"}))

    run = await pipeline.process_audio(_buffer(), "alice")

    note = pipeline.repository.get(run.note_id)
    assert note.summary == "summary text"
    assert note.detailed_note == "Detailed note generation failed."


@pytest.mark.asyncio
async def test_title_failure_uses_dated_fallback(tmp_path):
    pipeline = _pipeline(tmp_path, generator=FakeGenerator(fail={"title"}))

    run = await pipeline.process_audio(_buffer(), "alice")

    assert run.status == RunStatus.SUCCEEDED
    assert FALLBACK.match(run.note.title)
    assert run.note.summary == "summary text"


@pytest.mark.asyncio
async def test_title_failure_prefers_upload_name(tmp_path):
    pipeline = _pipeline(tmp_path, generator=FakeGenerator(fail={"title"}))
    run = await pipeline.process_audio(_buffer(), "alice", title_hint="standup")
    assert run.note.title == "standup"


@pytest.mark.asyncio
async def test_empty_buffer_creates_nothing(tmp_path):
    transcriber = FakeTranscriber()
    pipeline = _pipeline(tmp_path, transcriber=transcriber)

    run = await pipeline.process_audio(_buffer(b""), "alice")

    assert run.status == RunStatus.EMPTY
    assert run.note is None
    assert pipeline.repository.list_for_user("alice") == []
    assert transcriber.calls == 0


@pytest.mark.asyncio
async def test_empty_transcript_gets_fallback_title_only(tmp_path):
    generator = FakeGenerator()
    pipeline = _pipeline(
        tmp_path, transcriber=FakeTranscriber(text="   "), generator=generator
    )

    run = await pipeline.process_audio(_buffer(), "alice")

    assert run.status == RunStatus.EMPTY
    note = pipeline.repository.get(run.note_id)
    assert FALLBACK.match(note.title)
    assert note.summary == ""
    assert generator.calls == []


@pytest.mark.asyncio
async def test_storage_failure_aborts_before_transcription(tmp_path):
    transcriber = FakeTranscriber()
    pipeline = _pipeline(
        tmp_path,
        transcriber=transcriber,
        audio_store=BrokenStore(str(tmp_path / "audio")),
    )

    run = await pipeline.process_audio(_buffer(), "alice")

    assert run.status == RunStatus.FAILED
    assert "disk full" in run.error
    assert transcriber.calls == 0
    note = pipeline.repository.get(run.note_id)
    assert note.audio_ref is None
    assert run.partial_results["upload"].error == "disk full"


@pytest.mark.asyncio
async def test_cancel_during_transcription_drops_the_result(tmp_path):
    generator = FakeGenerator()
    pipeline = _pipeline(tmp_path, generator=generator)

    def on_progress(index, _message):
        if index == 1:
            pipeline.cancel()

    run = await pipeline.process_audio(_buffer(), "alice", on_progress=on_progress)

    assert run.status == RunStatus.CANCELLED
    assert run.state == RunState.CANCELLED
    note = pipeline.repository.get(run.note_id)
    assert note.raw_transcription == ""
    assert generator.calls == []
    assert not pipeline.busy


@pytest.mark.asyncio
async def test_summary_and_detailed_note_run_concurrently(tmp_path):
    generator = FakeGenerator(delays={"summary": 0.3, "detailed_note": 0.3})
    pipeline = _pipeline(tmp_path, generator=generator)
    started = {}

    def on_progress(index, _message):
        started.setdefault(index, time.monotonic())

    run = await pipeline.process_audio(_buffer(), "alice", on_progress=on_progress)
    took = time.monotonic() - started[3]

    assert run.status == RunStatus.SUCCEEDED
    assert took < 0.5
    note = pipeline.repository.get(run.note_id)
    assert note.summary == "summary text"
    assert note.detailed_note == "detailed_note text"


@pytest.mark.asyncio
async def test_detailed_note_step_waits_for_summary(tmp_path):
    generator = FakeGenerator(delays={"summary": 0.1})
    pipeline = _pipeline(tmp_path, generator=generator)
    seen = []

    def on_progress(index, _message):
        if index == 4:
            seen.append(pipeline.active_run.partial_results.get("summary"))

    run = await pipeline.process_audio(_buffer(), "alice", on_progress=on_progress)

    assert run.status == RunStatus.SUCCEEDED
    assert len(seen) == 1
    assert seen[0].value == "summary text"


@pytest.mark.asyncio
async def test_cancel_during_post_processing_discards_results(tmp_path):
    generator = FakeGenerator(delays={"detailed_note": 0.2})
    pipeline = _pipeline(tmp_path, generator=generator)

    def on_progress(index, _message):
        if index == 4:
            pipeline.cancel()

    run = await pipeline.process_audio(_buffer(), "alice", on_progress=on_progress)

    assert run.status == RunStatus.CANCELLED
    assert "detailed_note" in generator.calls
    note = pipeline.repository.get(run.note_id)
    assert note.title == "Team Sync"
    assert note.summary == ""
    assert note.detailed_note == ""
    assert not pipeline.busy


@pytest.mark.asyncio
async def test_second_run_is_rejected_while_busy(tmp_path):
    pipeline = _pipeline(tmp_path, transcriber=FakeTranscriber(delay=0.2))

    first = asyncio.create_task(pipeline.process_audio(_buffer(), "alice"))
    await asyncio.sleep(0.05)
    assert pipeline.busy
    with pytest.raises(Busy):
        await pipeline.process_audio(_buffer(), "alice")

    run = await first
    assert run.status == RunStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_slow_transcription_times_out(tmp_path):
    pipeline = _pipeline(
        tmp_path, transcriber=FakeTranscriber(delay=0.3), timeout_seconds=0.05
    )

    run = await pipeline.process_audio(_buffer(), "alice")

    assert run.status == RunStatus.FAILED
    assert run.error == "Request timed out."


@pytest.mark.asyncio
async def test_document_run_uses_placeholder_detail(tmp_path):
    generator = FakeGenerator()
    pipeline = _pipeline(tmp_path, generator=generator)
    events = []

    run = await pipeline.process_document(
        b"%PDF-1.4", "alice", on_progress=lambda i, msg: events.append(i)
    )

    assert run.status == RunStatus.SUCCEEDED
    note = pipeline.repository.get(run.note_id)
    assert note.source_type == SourceType.PDF
    assert note.title == "Team Sync"
    assert note.summary == "summary text"
    assert note.detailed_note.startswith("No detailed note is generated")
    assert note.page_count == 2
    assert note.document_ref == f"alice/{note.id}.pdf"
    assert generator.calls == ["title", "summary"]
    assert events == [0, 1, 2]


@pytest.mark.asyncio
async def test_empty_document_skips_generation(tmp_path):
    generator = FakeGenerator()
    pipeline = _pipeline(
        tmp_path, generator=generator, extractor=FakeExtractor(text="  ", page_count=1)
    )

    run = await pipeline.process_document(b"%PDF-1.4", "alice")

    assert run.status == RunStatus.EMPTY
    note = pipeline.repository.get(run.note_id)
    assert FALLBACK.match(note.title)
    assert note.summary == ""
    assert note.detailed_note == ""
    assert generator.calls == []


@pytest.mark.asyncio
async def test_unreadable_document_fails_without_note(tmp_path):
    pipeline = _pipeline(tmp_path, extractor=FakeExtractor(error="broken xref"))

    run = await pipeline.process_document(b"junk", "alice")

    assert run.status == RunStatus.FAILED
    assert run.note is None
    assert pipeline.repository.list_for_user("alice") == []


@pytest.mark.asyncio
async def test_regenerate_rewrites_generated_fields(tmp_path):
    pipeline = _pipeline(tmp_path)
    note = pipeline.repository.create(
        {"owner_id": "alice", "title": "Old", "raw_transcription": "some words"}
    )

    run = await pipeline.regenerate(note)

    assert run.status == RunStatus.SUCCEEDED
    stored = pipeline.repository.get(note.id)
    assert stored.title == "Team Sync"
    assert stored.summary == "summary text"
    assert stored.detailed_note == "detailed_note text"


@pytest.mark.asyncio
async def test_regenerate_without_raw_text(tmp_path):
    pipeline = _pipeline(tmp_path)
    note = pipeline.repository.create({"owner_id": "alice"})
    with pytest.raises(EmptyInput):
        await pipeline.regenerate(note)
    assert not pipeline.busy


@pytest.mark.asyncio
async def test_note_from_summary(tmp_path):
    pipeline = _pipeline(tmp_path)
    note = pipeline.repository.create({"owner_id": "alice", "summary": "- point"})

    run = await pipeline.note_from_summary(note)

    assert run.status == RunStatus.SUCCEEDED
    assert pipeline.repository.get(note.id).detailed_note == "note_from_summary text"


@pytest.mark.asyncio
async def test_note_from_summary_failure_writes_nothing(tmp_path):
    pipeline = _pipeline(tmp_path, generator=FakeGenerator(fail={"note_from_summary"}))
    note = pipeline.repository.create(
        {"owner_id": "alice", "summary": "- point", "detailed_note": "keep me"}
    )

    run = await pipeline.note_from_summary(note)

    assert run.status == RunStatus.FAILED
    assert pipeline.repository.get(note.id).detailed_note == "keep me"


@pytest.mark.asyncio
async def test_generate_title_short_circuits_on_empty_text(tmp_path):
    generator = FakeGenerator()
    pipeline = _pipeline(tmp_path, generator=generator)

    title, error = await pipeline.generate_title("  ", "2026-03-04T09:30:00")

    assert title == "Untitled 2026-03-04"
    assert error is None
    assert generator.calls == []


@pytest.mark.parametrize(
    "raw, expected",
    [
        ('"Weekly Sync."', "Weekly Sync"),
        ("# Roadmap review\nSecond line", "Roadmap review"),
        ("**Budget plan**", "Budget plan"),
        ("«Réunion d'équipe»", "Réunion d'équipe"),
        ("", ""),
    ],
)
def test_clean_title(raw, expected):
    assert clean_title(raw) == expected


def test_clean_title_truncates():
    assert len(clean_title("x" * 90)) == 60


def test_fallback_title_is_localized():
    assert fallback_title("2026-03-04T09:30:00", "fr") == "Sans titre 2026-03-04"
