"""Error taxonomy."""

from __future__ import annotations

from typing import Optional


class DictanoteError(Exception):
    """Base class for every error the application reports."""

    guidance: Optional[str] = None

    def __init__(self, message: str = "", guidance: Optional[str] = None) -> None:
        super().__init__(message or self.__class__.__name__)
        if guidance is not None:
            self.guidance = guidance


class CaptureError(DictanoteError):
    pass


class UnsupportedPlatform(CaptureError):
    guidance = (
        "Audio capture is not available here. Install PortAudio and the "
        "sounddevice package, then try again."
    )


class DeviceUnavailable(CaptureError):
    guidance = "No microphone was found. Connect an input device and try again."


class PermissionDenied(CaptureError):
    guidance = (
        "Microphone access was blocked. Allow this terminal to use the "
        "microphone in your system privacy settings, then try again."
    )


class InsecureContext(CaptureError):
    guidance = (
        "Recording from a remote shell would capture the remote machine's "
        "microphone. Run dictanote locally or set audio.allow_remote_capture."
    )


class StorageError(DictanoteError):
    pass


class DocumentError(DictanoteError):
    pass


class TranscriptionError(DictanoteError):
    pass


class GenerationError(DictanoteError):
    pass


class GuardBusy(DictanoteError):
    guidance = "The maximum duration cannot be changed while recording."


class InvalidDuration(DictanoteError, ValueError):
    guidance = "Enter a duration between 1 and 120 minutes."


class EmptyInput(DictanoteError):
    guidance = "Nothing to process: no audio was captured or no text was found."


class Busy(DictanoteError):
    guidance = "A recording or processing run is already in progress."

