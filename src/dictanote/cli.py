"""CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import threading
from typing import Optional

from .app import AppContext, Dictanote, run_recording
from .config import load_or_default
from .errors import DictanoteError
from .guard import format_elapsed
from .logging_utils import setup_logging
from .models import PipelineRun, RunStatus
from .progress import Phase, ProgressReporter
from .recorder import list_input_devices
from .waveform import WaveformMonitor, layout_bars

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "dictanote_config.yml"
_LEVELS = " ▁▂▃▄▅▆▇█"
_WAVE_COLUMNS = 48


def render_wave(frame, columns: int = _WAVE_COLUMNS) -> str:
    top = len(_LEVELS) - 1
    bars = layout_bars(frame, columns, top / 0.8, spacing=0.0)
    chars = [_LEVELS[min(top, int(round(height)))] for _x, _y, _w, height in bars]
    return "".join(chars)[:columns]


def _print_progress(reporter: ProgressReporter) -> None:
    if not reporter.visible:
        return
    total = len(reporter.labels)
    if reporter.phase == Phase.RUNNING and reporter.message:
        step = min(reporter.current_step + 1, total)
        print(f"[{step}/{total}] {reporter.message}")
    elif reporter.phase in (Phase.SUCCESS, Phase.ERROR):
        print(reporter.message)


def _print_run(run: Optional[PipelineRun]) -> None:
    if run is None:
        return
    if run.note is not None:
        print(f"Note: {run.note.id} {run.note.title}")
    if run.status == RunStatus.FAILED and run.error:
        print(f"Details: {run.error}")


def _watch_enter(loop: asyncio.AbstractEventLoop, event: asyncio.Event) -> None:
    def wait() -> None:
        try:
            sys.stdin.readline()
        except (OSError, ValueError):
            return
        loop.call_soon_threadsafe(event.set)

    threading.Thread(target=wait, daemon=True).start()


async def _draw_wave(app: Dictanote, monitor: WaveformMonitor) -> None:
    async for frame in monitor.frames():
        elapsed = format_elapsed(app.context.guard.elapsed_ms())
        sys.stdout.write(f"\r{elapsed} {render_wave(frame)}")
        sys.stdout.flush()
    sys.stdout.write("\n")


async def _record(app: Dictanote, show_wave: bool) -> Optional[PipelineRun]:
    stop = asyncio.Event()
    _watch_enter(asyncio.get_running_loop(), stop)
    drawer = None

    def on_tick(_elapsed_ms: int) -> None:
        nonlocal drawer
        if drawer is None and show_wave and app.monitor is not None:
            drawer = asyncio.get_running_loop().create_task(_draw_wave(app, app.monitor))

    minutes = app.context.guard.minutes
    print(f"Recording (limit {minutes} min). Press Enter to stop.")
    try:
        run = await run_recording(app, stop, on_tick=on_tick)
    finally:
        if drawer is not None:
            await drawer
    print(app.status)
    return run


def _make_app(args) -> Dictanote:
    config = load_or_default(args.config)
    if args.base_dir:
        config.base_dir = args.base_dir
    log_dir = os.path.join(config.base_dir or os.getcwd(), "logs")
    _, log_path = setup_logging(
        log_dir,
        level=logging.DEBUG if args.verbose else logging.INFO,
        console=bool(args.verbose),
    )
    logger.debug("Logging to %s", log_path)
    context = AppContext(config, config_path=args.config)
    context.reporter.subscribe(_print_progress)
    return Dictanote(context)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dictanote")
    parser.add_argument("--config", default=DEFAULT_CONFIG, help="Config file.")
    parser.add_argument("--base-dir", help="Override the data directory.")
    parser.add_argument("--verbose", action="store_true", help="Log to the console.")
    sub = parser.add_subparsers(dest="command")

    devices_cmd = sub.add_parser("devices", help="List input devices.")
    devices_cmd.add_argument("--match", help="Filter device names by substring.")

    record_cmd = sub.add_parser("record", help="Record, transcribe and write a note.")
    record_cmd.add_argument(
        "--minutes", type=int, help="Maximum duration for this recording."
    )
    record_cmd.add_argument("--device", help="Preferred device name substring.")
    record_cmd.add_argument(
        "--no-wave", action="store_true", help="Do not draw the live waveform."
    )

    upload_cmd = sub.add_parser("upload", help="Process an audio file.")
    upload_cmd.add_argument("audio_path", help="Path to audio file.")

    pdf_cmd = sub.add_parser("pdf", help="Process a PDF document.")
    pdf_cmd.add_argument("pdf_path", help="Path to PDF file.")

    sub.add_parser("list", help="List notes.")

    show_cmd = sub.add_parser("show", help="Print a note as Markdown.")
    show_cmd.add_argument("note_id")

    regenerate_cmd = sub.add_parser("regenerate", help="Rebuild a note from raw text.")
    regenerate_cmd.add_argument("note_id")

    expand_cmd = sub.add_parser("expand", help="Detailed note from the summary.")
    expand_cmd.add_argument("note_id")

    edit_cmd = sub.add_parser("edit", help="Edit one text field of a note.")
    edit_cmd.add_argument("note_id")
    edit_cmd.add_argument(
        "--field",
        required=True,
        choices=["title", "raw_transcription", "summary", "detailed_note"],
    )
    edit_cmd.add_argument("--value", required=True)

    delete_cmd = sub.add_parser("delete", help="Delete a note and its files.")
    delete_cmd.add_argument("note_id")

    export_cmd = sub.add_parser("export", help="Export a note.")
    export_cmd.add_argument("note_id")
    export_cmd.add_argument("--zip", action="store_true", help="Export a ZIP bundle.")
    export_cmd.add_argument("--out", help="Output directory.")

    duration_cmd = sub.add_parser("duration", help="Set the maximum recording length.")
    duration_cmd.add_argument("minutes", type=int, help="1-120 minutes.")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    try:
        return _dispatch(args)
    except DictanoteError as exc:
        print(f"Error: {exc}")
        if exc.guidance:
            print(exc.guidance)
        return 1
    except KeyboardInterrupt:
        print("Interrupted.")
        return 130


def _dispatch(args) -> int:
    if args.command == "devices":
        devices = list_input_devices()
        if args.match:
            devices = [
                d for d in devices if args.match.lower() in d.get("name", "").lower()
            ]
        for device in devices:
            name = device.get("name", "Unknown")
            index = device.get("index", "?")
            channels = device.get("max_input_channels", 0)
            print(f"[{index}] {name} (inputs: {channels})")
        return 0

    app = _make_app(args)
    try:
        return _run_command(app, args)
    finally:
        app.context.close()


def _run_command(app: Dictanote, args) -> int:
    ctx = app.context

    if args.command == "record":
        if args.device:
            ctx.config.audio.device_name = args.device
        if args.minutes is not None:
            ctx.guard.set_minutes(args.minutes)
        run = asyncio.run(_record(app, show_wave=not args.no_wave))
        _print_run(run)
        return 0 if run is not None and run.status == RunStatus.SUCCEEDED else 1

    if args.command == "upload":
        run = asyncio.run(app.upload_audio(args.audio_path))
        _print_run(run)
        return 0 if run.status == RunStatus.SUCCEEDED else 1

    if args.command == "pdf":
        run = asyncio.run(app.upload_pdf(args.pdf_path))
        _print_run(run)
        return 0 if run.status == RunStatus.SUCCEEDED else 1

    if args.command == "list":
        notes = app.list_notes()
        for note in notes:
            print(f"{note.id}  {note.created_at}  [{note.source_type.value}]  {note.title}")
        if not notes:
            print("No notes yet.")
        return 0

    if args.command == "show":
        from .renderer import render_note_markdown

        note = app.require_note(args.note_id)
        print(render_note_markdown(note))
        url = app.audio_url(note.id) if note.audio_ref else None
        if url:
            print(f"Audio: {url}")
        return 0

    if args.command == "regenerate":
        run = asyncio.run(app.regenerate_from_raw(args.note_id))
        _print_run(run)
        return 0 if run.status == RunStatus.SUCCEEDED else 1

    if args.command == "expand":
        note = asyncio.run(app.refresh_note_from_summary(args.note_id))
        print(note.detailed_note)
        return 0

    if args.command == "edit":
        note = app.edit_note(args.note_id, args.field, args.value)
        print(f"Updated {args.field} of {note.id}")
        return 0

    if args.command == "delete":
        deleted = app.delete_note(args.note_id)
        print("Deleted." if deleted else "Nothing to delete.")
        return 0

    if args.command == "export":
        path = app.export_note(args.note_id, as_zip=args.zip, out_dir=args.out)
        print(f"Wrote {path}")
        return 0

    if args.command == "duration":
        minutes = app.set_duration(args.minutes)
        print(f"Maximum recording duration: {minutes} min")
        return 0

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
