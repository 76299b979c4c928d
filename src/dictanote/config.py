"""Configuration handling."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional
import yaml

logger = logging.getLogger(__name__)

MIN_DURATION_MINUTES = 1
MAX_DURATION_MINUTES = 120
DEFAULT_DURATION_MINUTES = 30

DEFAULT_MIME_PREFERENCES = ["audio/ogg;codecs=opus", "audio/flac", "audio/wav"]


@dataclass
class AudioConfig:
    sample_rate_hz: int = 48000
    channels: int = 1
    device_name: Optional[str] = None
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True
    mime_preferences: List[str] = field(
        default_factory=lambda: list(DEFAULT_MIME_PREFERENCES)
    )
    allow_remote_capture: bool = False


@dataclass
class RecordingConfig:
    max_duration_minutes: int = DEFAULT_DURATION_MINUTES
    tick_interval_ms: int = 10
    notify_on_limit: bool = True


@dataclass
class WaveformConfig:
    bins: int = 128
    refresh_hz: int = 60


@dataclass
class TranscriptionConfig:
    backend: str = "whisper"
    whisper_model: str = "small"
    device: Optional[str] = None
    compute_type: Optional[str] = None


@dataclass
class AIConfig:
    api_key: Optional[str] = None
    model: str = "gemini-2.5-flash"
    request_timeout_seconds: float = 120.0

    def resolved_api_key(self) -> Optional[str]:
        return (
            self.api_key
            or os.environ.get("GEMINI_API_KEY")
            or os.environ.get("GOOGLE_API_KEY")
        )


@dataclass
class ProgressConfig:
    success_dismiss_seconds: float = 2.0


@dataclass
class Config:
    base_dir: str = ""
    user_id: str = "local"
    language: str = "en"
    audio: AudioConfig = field(default_factory=AudioConfig)
    recording: RecordingConfig = field(default_factory=RecordingConfig)
    waveform: WaveformConfig = field(default_factory=WaveformConfig)
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    progress: ProgressConfig = field(default_factory=ProgressConfig)


def valid_duration(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    return MIN_DURATION_MINUTES <= value <= MAX_DURATION_MINUTES


def _recording_from(data: dict) -> RecordingConfig:
    recording = RecordingConfig(**data)
    if not valid_duration(recording.max_duration_minutes):
        logger.warning(
            "Ignoring invalid max_duration_minutes=%r; using %s",
            recording.max_duration_minutes,
            DEFAULT_DURATION_MINUTES,
        )
        recording.max_duration_minutes = DEFAULT_DURATION_MINUTES
    return recording


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    return Config(
        base_dir=data.get("base_dir", ""),
        user_id=data.get("user_id") or "local",
        language=data.get("language", "en"),
        audio=AudioConfig(**data.get("audio", {})),
        recording=_recording_from(data.get("recording", {})),
        waveform=WaveformConfig(**data.get("waveform", {})),
        transcription=TranscriptionConfig(**data.get("transcription", {})),
        ai=AIConfig(**data.get("ai", {})),
        progress=ProgressConfig(**data.get("progress", {})),
    )


def load_or_default(path: Optional[str]) -> Config:
    if path and os.path.exists(path):
        return load_config(path)
    return Config()


def save_config(path: str, config: Config) -> None:
    data = {
        "base_dir": config.base_dir,
        "user_id": config.user_id,
        "language": config.language,
        "audio": {
            "sample_rate_hz": config.audio.sample_rate_hz,
            "channels": config.audio.channels,
            "device_name": config.audio.device_name,
            "echo_cancellation": config.audio.echo_cancellation,
            "noise_suppression": config.audio.noise_suppression,
            "auto_gain_control": config.audio.auto_gain_control,
            "mime_preferences": list(config.audio.mime_preferences),
            "allow_remote_capture": config.audio.allow_remote_capture,
        },
        "recording": {
            "max_duration_minutes": config.recording.max_duration_minutes,
            "tick_interval_ms": config.recording.tick_interval_ms,
            "notify_on_limit": config.recording.notify_on_limit,
        },
        "waveform": {
            "bins": config.waveform.bins,
            "refresh_hz": config.waveform.refresh_hz,
        },
        "transcription": {
            "backend": config.transcription.backend,
            "whisper_model": config.transcription.whisper_model,
            "device": config.transcription.device,
            "compute_type": config.transcription.compute_type,
        },
        "ai": {
            "api_key": config.ai.api_key,
            "model": config.ai.model,
            "request_timeout_seconds": config.ai.request_timeout_seconds,
        },
        "progress": {
            "success_dismiss_seconds": config.progress.success_dismiss_seconds,
        },
    }
    with open(path, "w", encoding="utf-8") as handle:
        yaml.safe_dump(data, handle, sort_keys=False)
