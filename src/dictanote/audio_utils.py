"""Audio helpers."""

from __future__ import annotations

import io
import logging
import mimetypes
import os
import wave
from typing import Callable, Iterable, Optional

import numpy as np
import soundfile as sf

from .errors import UnsupportedPlatform

logger = logging.getLogger(__name__)

OGG_OPUS = "audio/ogg;codecs=opus"
FLAC = "audio/flac"
WAV = "audio/wav"

OPUS_SAMPLE_RATES = (8000, 12000, 16000, 24000, 48000)

_SOUNDFILE_FORMATS = {
    OGG_OPUS: ("OGG", "OPUS"),
    FLAC: ("FLAC", "PCM_16"),
}

_EXTENSIONS = {
    OGG_OPUS: "ogg",
    "audio/ogg": "ogg",
    FLAC: "flac",
    WAV: "wav",
    "audio/x-wav": "wav",
    "audio/webm": "webm",
    "audio/mp4": "m4a",
    "audio/mpeg": "mp3",
}

_UPLOAD_TYPES = {
    ".ogg": "audio/ogg",
    ".opus": "audio/ogg",
    ".flac": FLAC,
    ".wav": WAV,
    ".webm": "audio/webm",
    ".m4a": "audio/mp4",
    ".mp4": "audio/mp4",
    ".mp3": "audio/mpeg",
}


def mime_supported(mime_type: str, sample_rate_hz: int) -> bool:
    if mime_type == WAV:
        return True
    entry = _SOUNDFILE_FORMATS.get(mime_type)
    if entry is None:
        return False
    if mime_type == OGG_OPUS and sample_rate_hz not in OPUS_SAMPLE_RATES:
        return False
    fmt, subtype = entry
    return subtype in sf.available_subtypes(fmt)


def negotiate_mime_type(
    preferences: Iterable[str],
    sample_rate_hz: int,
    supported: Callable[[str, int], bool] = mime_supported,
) -> str:
    tried = []
    for mime_type in preferences:
        tried.append(mime_type)
        if supported(mime_type, sample_rate_hz):
            return mime_type
    raise UnsupportedPlatform(f"No supported audio encoding among {tried}.")


def encode_pcm(pcm: bytes, mime_type: str, sample_rate_hz: int, channels: int) -> bytes:
    """Wrap 16-bit interleaved PCM into the container named by mime_type."""
    out = io.BytesIO()
    if mime_type == WAV:
        with wave.open(out, "wb") as handle:
            handle.setnchannels(channels)
            handle.setsampwidth(2)
            handle.setframerate(sample_rate_hz)
            handle.writeframes(pcm)
        return out.getvalue()

    entry = _SOUNDFILE_FORMATS.get(mime_type)
    if entry is None:
        raise ValueError(f"Cannot encode {mime_type}.")
    fmt, subtype = entry
    frames = np.frombuffer(pcm, dtype=np.int16).reshape(-1, channels)
    sf.write(out, frames, sample_rate_hz, format=fmt, subtype=subtype)
    return out.getvalue()


def probe_duration_seconds(data: bytes) -> int:
    try:
        info = sf.info(io.BytesIO(data))
    except (RuntimeError, TypeError, ValueError) as exc:
        logger.debug("Could not read audio header: %s", exc)
        return 0
    return int(info.duration)


def extension_for(mime_type: str) -> str:
    return _EXTENSIONS.get(mime_type, _EXTENSIONS.get(mime_type.split(";")[0], "bin"))


def guess_mime_type(path: str) -> str:
    ext = os.path.splitext(path)[1].lower()
    if ext in _UPLOAD_TYPES:
        return _UPLOAD_TYPES[ext]
    guessed, _ = mimetypes.guess_type(path)
    return guessed or "application/octet-stream"


def synth_tone(
    frequency_hz: float = 880.0,
    duration_s: float = 0.2,
    sample_rate_hz: int = 48000,
    volume: float = 0.3,
) -> np.ndarray:
    count = int(duration_s * sample_rate_hz)
    t = np.arange(count, dtype=np.float32) / sample_rate_hz
    tone = volume * np.sin(2 * np.pi * frequency_hz * t)
    fade = min(count // 2, int(0.01 * sample_rate_hz))
    if fade:
        ramp = np.linspace(0.0, 1.0, fade, dtype=np.float32)
        tone[:fade] *= ramp
        tone[-fade:] *= ramp[::-1]
    return tone.astype(np.float32)


def play_tone(sample_rate_hz: int = 48000, device: Optional[int] = None) -> None:
    try:
        import sounddevice as sd
    except Exception as exc:  # pragma: no cover - environment-dependent
        raise UnsupportedPlatform("sounddevice is required for playback.") from exc

    sd.play(synth_tone(sample_rate_hz=sample_rate_hz), sample_rate_hz, device=device)
