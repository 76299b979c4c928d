"""Microphone capture."""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, List, Mapping, Optional

from .audio_utils import encode_pcm, negotiate_mime_type
from .config import AudioConfig
from .errors import (
    Busy,
    DeviceUnavailable,
    InsecureContext,
    PermissionDenied,
    UnsupportedPlatform,
)
from .models import AudioBuffer, RecordingSession, StopReason

logger = logging.getLogger(__name__)

_PERMISSION_MARKERS = ("permission", "denied", "not permitted", "unauthori")


def classify_stream_error(exc: Exception) -> Exception:
    text = str(exc).lower()
    if any(marker in text for marker in _PERMISSION_MARKERS):
        return PermissionDenied(str(exc))
    return DeviceUnavailable(str(exc))


class SoundDeviceBackend:
    """PortAudio access through sounddevice."""

    def __init__(self) -> None:
        try:
            import sounddevice as sd
        except Exception as exc:  # pragma: no cover - environment-dependent
            raise UnsupportedPlatform("sounddevice is required for recording.") from exc
        self._sd = sd

    def input_devices(self) -> List[Dict[str, Any]]:
        devices = self._sd.query_devices()
        return [dict(d) for d in devices if d.get("max_input_channels", 0) > 0]

    def default_input_index(self) -> Optional[int]:
        try:
            index = self._sd.default.device[0]
        except (TypeError, IndexError):
            return None
        return index if isinstance(index, int) and index >= 0 else None

    def open_input_stream(
        self,
        device: Optional[int],
        sample_rate_hz: int,
        channels: int,
        callback: Callable,
    ):
        stream = None
        try:
            stream = self._sd.InputStream(
                samplerate=sample_rate_hz,
                channels=channels,
                dtype="int16",
                device=device,
                callback=callback,
            )
            stream.start()
        except self._sd.PortAudioError as exc:
            if stream is not None:
                stream.close(ignore_errors=True)
            raise classify_stream_error(exc) from exc
        return stream


def list_input_devices(backend: Optional[SoundDeviceBackend] = None) -> List[Dict[str, Any]]:
    return (backend or SoundDeviceBackend()).input_devices()


def select_preferred_device(
    candidates: List[Dict[str, Any]],
    prefer_name: Optional[str] = None,
    default_index: Optional[int] = None,
) -> Dict[str, Any]:
    if not candidates:
        raise DeviceUnavailable("No input devices found.")
    if prefer_name:
        preferred = [
            d for d in candidates if prefer_name.lower() in d.get("name", "").lower()
        ]
        if preferred:
            return preferred[0]
        logger.warning("Input device %r not found; using default", prefer_name)

    if default_index is not None:
        for device in candidates:
            if device.get("index") == default_index:
                return device

    return candidates[0]


def ensure_secure_context(
    allow_remote: bool, environ: Optional[Mapping[str, str]] = None
) -> None:
    env = os.environ if environ is None else environ
    if allow_remote:
        return
    if env.get("SSH_CONNECTION") or env.get("SSH_TTY"):
        raise InsecureContext("Capture requested from a remote shell.")


class AudioCaptureSession:
    """Sole owner of the microphone stream.

    ``start`` opens the device and begins buffering 16-bit PCM blocks into a
    :class:`RecordingSession`; ``stop`` releases the device on every path and
    returns the encoded buffer. Block listeners (the waveform monitor) see
    every raw block on the audio thread.
    """

    def __init__(
        self,
        backend_factory: Callable[[], Any] = SoundDeviceBackend,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._backend_factory = backend_factory
        self._backend = None
        self._environ = environ
        self._stream = None
        self._session: Optional[RecordingSession] = None
        self._listeners: List[Callable[[Any], None]] = []
        self.device_name: Optional[str] = None

    @property
    def is_capturing(self) -> bool:
        return self._session is not None

    @property
    def session(self) -> Optional[RecordingSession]:
        return self._session

    def add_block_listener(self, listener: Callable[[Any], None]) -> None:
        self._listeners.append(listener)

    def remove_block_listener(self, listener: Callable[[Any], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def start(self, audio: AudioConfig, max_duration_ms: int) -> RecordingSession:
        if self._session is not None:
            raise Busy("A capture session is already active.")
        ensure_secure_context(audio.allow_remote_capture, self._environ)
        if self._backend is None:
            self._backend = self._backend_factory()
        backend = self._backend

        device = select_preferred_device(
            backend.input_devices(),
            prefer_name=audio.device_name,
            default_index=backend.default_input_index(),
        )
        max_in = int(device.get("max_input_channels", 0) or 0)
        channels = min(audio.channels, max_in) if max_in else audio.channels
        if channels != audio.channels:
            logger.info("Adjusting channels to %s (max %s)", channels, max_in)
        self._log_constraints(audio)

        mime_type = negotiate_mime_type(audio.mime_preferences, audio.sample_rate_hz)
        session = RecordingSession(
            mime_type=mime_type,
            sample_rate_hz=audio.sample_rate_hz,
            channels=channels,
            max_duration_ms=max_duration_ms,
        )
        self._session = session
        try:
            self._stream = backend.open_input_stream(
                device.get("index"),
                audio.sample_rate_hz,
                channels,
                self._on_audio,
            )
        except BaseException:
            self._session = None
            raise
        self.device_name = device.get("name")
        logger.info(
            "Capture started on %s (%s Hz, %s ch, %s)",
            self.device_name,
            audio.sample_rate_hz,
            channels,
            mime_type,
        )
        return session

    def stop(self, reason: StopReason = StopReason.USER) -> Optional[AudioBuffer]:
        session, stream = self._session, self._stream
        if session is None:
            return None
        self._session = None
        self._stream = None
        try:
            self._release(stream)
        finally:
            logger.info(
                "Capture stopped (%s) after %s ms, %s bytes",
                reason.value,
                session.elapsed_ms(),
                session.byte_count,
            )
        pcm = session.finalize()
        data = b""
        if pcm:
            data = encode_pcm(
                pcm, session.mime_type, session.sample_rate_hz, session.channels
            )
        return AudioBuffer(
            data=data,
            mime_type=session.mime_type,
            duration_seconds=session.elapsed_ms() // 1000,
            stop_reason=reason,
        )

    def _release(self, stream) -> None:
        if stream is None:
            return
        try:
            stream.stop()
        except Exception as exc:
            logger.warning("Stream stop failed, closing anyway: %s", exc)
        finally:
            stream.close()

    def _on_audio(self, indata, _frames, _time, status) -> None:
        if status:
            logger.debug("Capture status: %s", status)
        session = self._session
        if session is None:
            return
        session.append(indata.tobytes())
        for listener in list(self._listeners):
            try:
                listener(indata)
            except Exception:
                logger.exception("Block listener failed")

    @staticmethod
    def _log_constraints(audio: AudioConfig) -> None:
        requested = [
            name
            for name, enabled in (
                ("echo_cancellation", audio.echo_cancellation),
                ("noise_suppression", audio.noise_suppression),
                ("auto_gain_control", audio.auto_gain_control),
            )
            if enabled
        ]
        if requested:
            logger.debug(
                "Host API applies its own input processing; requested %s",
                ", ".join(requested),
            )
