"""Data models for Dictanote."""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


def now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


class SourceType(str, Enum):
    AUDIO = "audio"
    PDF = "pdf"


class StopReason(str, Enum):
    USER = "user"
    FORCED = "forced"
    ERROR = "error"


NOTE_TEXT_FIELDS = ("title", "raw_transcription", "summary", "detailed_note")


@dataclass
class Note:
    id: str
    owner_id: str = ""
    title: str = ""
    raw_transcription: str = ""
    summary: str = ""
    detailed_note: str = ""
    source_type: SourceType = SourceType.AUDIO
    audio_ref: Optional[str] = None
    audio_mime_type: Optional[str] = None
    document_ref: Optional[str] = None
    page_count: int = 0
    recording_duration_seconds: int = 0
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Note.id is required.")
        # Text fields are never None so renderers can treat them uniformly.
        for name in NOTE_TEXT_FIELDS:
            if getattr(self, name) is None:
                setattr(self, name, "")
        self.source_type = SourceType(self.source_type)

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["source_type"] = self.source_type.value
        return payload

    @classmethod
    def from_dict(cls, payload: dict) -> "Note":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in payload.items() if k in known})

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]


@dataclass
class AudioBuffer:
    """One finalized capture or uploaded file, ready for the pipeline."""

    data: bytes
    mime_type: str
    duration_seconds: int = 0
    stop_reason: StopReason = StopReason.USER

    def __len__(self) -> int:
        return len(self.data)

    @property
    def forced(self) -> bool:
        return self.stop_reason == StopReason.FORCED


@dataclass
class RecordingSession:
    """Raw capture state. Chunks arrive from the audio thread."""

    mime_type: str
    sample_rate_hz: int
    channels: int
    max_duration_ms: int
    started_at: float = field(default_factory=time.monotonic)
    chunks: List[bytes] = field(default_factory=list)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    def append(self, chunk: bytes) -> bool:
        if not chunk:
            return False
        with self._lock:
            self.chunks.append(bytes(chunk))
        return True

    def finalize(self) -> bytes:
        with self._lock:
            return b"".join(self.chunks)

    @property
    def byte_count(self) -> int:
        with self._lock:
            return sum(len(c) for c in self.chunks)

    def elapsed_ms(self, now: Optional[float] = None) -> int:
        current = time.monotonic() if now is None else now
        return int((current - self.started_at) * 1000)


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EMPTY = "empty"


class RunState(str, Enum):
    CREATED = "created"
    UPLOADING = "uploading"
    EXTRACTING = "extracting"
    TRANSCRIBING = "transcribing"
    TITLING = "titling"
    POST_PROCESSING = "post_processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EMPTY = "empty"


TERMINAL_STATES = {
    RunState.SUCCEEDED: RunStatus.SUCCEEDED,
    RunState.FAILED: RunStatus.FAILED,
    RunState.CANCELLED: RunStatus.CANCELLED,
    RunState.EMPTY: RunStatus.EMPTY,
}


@dataclass
class StepResult:
    value: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class PipelineRun:
    steps: List[str]
    kind: str = "audio"
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    note: Optional[Note] = None
    current_step_index: int = 0
    state: RunState = RunState.CREATED
    partial_results: Dict[str, StepResult] = field(default_factory=dict)
    error: Optional[str] = None
    cancel_requested: bool = False

    @property
    def status(self) -> RunStatus:
        return TERMINAL_STATES.get(self.state, RunStatus.RUNNING)

    @property
    def note_id(self) -> Optional[str]:
        return self.note.id if self.note is not None else None

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def record(
        self, step: str, value: Optional[str] = None, error: Optional[str] = None
    ) -> None:
        self.partial_results[step] = StepResult(value=value, error=error)

    def cancel(self) -> bool:
        if self.terminal:
            return False
        self.cancel_requested = True
        return True
