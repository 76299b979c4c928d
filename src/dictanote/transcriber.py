"""Transcription backends."""

from __future__ import annotations

import io
import logging
from typing import Any, Optional

from .config import Config
from .errors import TranscriptionError
from .generator import make_client
from .prompts import get_prompt

logger = logging.getLogger(__name__)


class WhisperTranscriber:
    """Local transcription with Faster-Whisper; the model loads on first use."""

    def __init__(
        self,
        model_name: str = "small",
        language: Optional[str] = None,
        device: Optional[str] = None,
        compute_type: Optional[str] = None,
    ) -> None:
        self.model_name = model_name
        self.language = language
        self.device = device
        self.compute_type = compute_type
        self._model = None

    def _load(self) -> Any:
        if self._model is not None:
            return self._model
        try:
            from faster_whisper import WhisperModel
        except Exception as exc:  # pragma: no cover - optional dependency
            raise TranscriptionError("faster-whisper is required for transcription.") from exc

        kwargs = {}
        if self.device:
            kwargs["device"] = self.device
        if self.compute_type:
            kwargs["compute_type"] = self.compute_type
        logger.info("Loading Whisper model %s", self.model_name)
        self._model = WhisperModel(self.model_name, **kwargs)
        return self._model

    def transcribe(self, data: bytes, mime_type: str) -> str:
        model = self._load()
        try:
            segments, _info = model.transcribe(io.BytesIO(data), language=self.language)
            texts = [seg.text.strip() for seg in segments]
        except Exception as exc:
            raise TranscriptionError(f"Whisper could not transcribe {mime_type}: {exc}") from exc
        return " ".join(text for text in texts if text)


class GeminiTranscriber:
    """Sends the audio inline to Gemini with a transcription instruction."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gemini-2.5-flash",
        language: str = "en",
        client: Any = None,
    ) -> None:
        self.model = model
        self.language = language
        self._api_key = api_key
        self._client = client

    def transcribe(self, data: bytes, mime_type: str) -> str:
        try:
            from google.genai import types
        except Exception as exc:  # pragma: no cover - optional dependency
            raise TranscriptionError("google-genai is required for transcription.") from exc
        try:
            if self._client is None:
                self._client = make_client(self._api_key)
            response = self._client.models.generate_content(
                model=self.model,
                contents=[
                    types.Part.from_bytes(data=data, mime_type=mime_type.split(";")[0]),
                    get_prompt("transcribe", self.language),
                ],
            )
        except Exception as exc:
            raise TranscriptionError(f"Gemini transcription failed: {exc}") from exc
        return (getattr(response, "text", None) or "").strip()


def build_transcriber(config: Config):
    backend = config.transcription.backend.lower()
    if backend == "gemini":
        return GeminiTranscriber(
            config.ai.resolved_api_key(), model=config.ai.model, language=config.language
        )
    if backend != "whisper":
        raise ValueError(f"Unknown transcription backend: {config.transcription.backend}")
    return WhisperTranscriber(
        model_name=config.transcription.whisper_model,
        language=config.language,
        device=config.transcription.device,
        compute_type=config.transcription.compute_type,
    )
