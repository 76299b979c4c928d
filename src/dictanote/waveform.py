"""Live input spectrum for the recording waveform."""

from __future__ import annotations

import asyncio
import math
import threading
from dataclasses import dataclass
from typing import AsyncIterator, Callable, List, Tuple

import numpy as np

MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0
BAR_SCALE = 2.5
BAR_FILL = 0.8


@dataclass(frozen=True)
class BarGeometry:
    count: int
    width: float
    spacing: float


def bar_geometry(surface_width: float, sample_count: int, spacing: float = 1.0) -> BarGeometry:
    if surface_width <= 0 or sample_count <= 0:
        return BarGeometry(count=0, width=0.0, spacing=spacing)
    width = surface_width / sample_count * BAR_SCALE
    count = min(sample_count, math.ceil(surface_width / (width + spacing)))
    return BarGeometry(count=count, width=width, spacing=spacing)


def layout_bars(
    frame,
    surface_width: float,
    surface_height: float,
    spacing: float = 1.0,
) -> List[Tuple[float, float, float, float]]:
    """Return ``(x, y, width, height)`` rectangles for one frame."""
    geometry = bar_geometry(surface_width, len(frame), spacing)
    bars = []
    x = 0.0
    for value in list(frame)[: geometry.count]:
        height = float(value) / 255.0 * surface_height * BAR_FILL
        bars.append((x, surface_height - height, geometry.width, height))
        x += geometry.width + geometry.spacing
    return bars


class WaveformMonitor:
    """Frequency analyser fed with raw capture blocks.

    ``feed`` runs on the audio thread. ``frames`` hands out a single async
    stream of 0-255 magnitude frames, one per refresh tick, that ends on its
    own once ``is_capturing`` turns false.
    """

    def __init__(
        self,
        is_capturing: Callable[[], bool],
        bins: int = 128,
        refresh_hz: int = 60,
        smoothing: float = 0.8,
    ) -> None:
        self._is_capturing = is_capturing
        self.bins = bins
        self.fft_size = bins * 2
        self.refresh_hz = refresh_hz
        self.smoothing = smoothing
        self._window = np.blackman(self.fft_size).astype(np.float32)
        self._buffer = np.zeros(self.fft_size, dtype=np.float32)
        self._previous = np.zeros(bins, dtype=np.float32)
        self._lock = threading.Lock()
        self._consumed = False

    def feed(self, block) -> None:
        data = np.asarray(block)
        if data.size == 0:
            return
        mono = data.mean(axis=1) if data.ndim == 2 else data
        normalized = mono.astype(np.float32) / 32768.0
        with self._lock:
            merged = np.concatenate([self._buffer, normalized])
            self._buffer = merged[-self.fft_size :]

    def sample(self) -> np.ndarray:
        with self._lock:
            samples = self._buffer.copy()
        spectrum = np.abs(np.fft.rfft(samples * self._window))[: self.bins]
        spectrum = spectrum / self.fft_size
        smoothed = self.smoothing * self._previous + (1.0 - self.smoothing) * spectrum
        self._previous = smoothed.astype(np.float32)
        with np.errstate(divide="ignore"):
            decibels = 20.0 * np.log10(smoothed)
        scaled = (decibels - MIN_DECIBELS) / (MAX_DECIBELS - MIN_DECIBELS) * 255.0
        scaled = np.nan_to_num(scaled, nan=0.0, neginf=0.0, posinf=255.0)
        return np.clip(scaled, 0, 255).astype(np.uint8)

    def frames(self) -> AsyncIterator[np.ndarray]:
        if self._consumed:
            raise RuntimeError("Waveform frames can only be consumed once.")
        self._consumed = True
        return self._stream()

    async def _stream(self) -> AsyncIterator[np.ndarray]:
        interval = 1.0 / self.refresh_hz
        while self._is_capturing():
            yield self.sample()
            await asyncio.sleep(interval)
