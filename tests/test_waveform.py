import asyncio

import numpy as np
import pytest

from dictanote.waveform import WaveformMonitor, bar_geometry, layout_bars


def test_bar_geometry_matches_surface():
    geometry = bar_geometry(256, 128, spacing=1.0)
    assert geometry.width == pytest.approx(5.0)
    assert geometry.count == 43


def test_bar_geometry_empty_surface():
    assert bar_geometry(0, 128).count == 0
    assert bar_geometry(100, 0).count == 0


def test_layout_bars_scales_heights():
    bars = layout_bars([255, 0, 128], surface_width=30, surface_height=100, spacing=0)
    x, y, width, height = bars[0]
    assert x == 0
    assert height == pytest.approx(80.0)
    assert y == pytest.approx(20.0)
    assert bars[1][3] == 0


def test_silence_gives_zero_frame():
    monitor = WaveformMonitor(lambda: True, bins=64)
    monitor.feed(np.zeros((256, 1), dtype=np.int16))
    frame = monitor.sample()
    assert frame.shape == (64,)
    assert frame.dtype == np.uint8
    assert int(frame.max()) == 0


def test_tone_raises_its_bin():
    monitor = WaveformMonitor(lambda: True, bins=128, smoothing=0.0)
    t = np.arange(256)
    tone = (np.sin(2 * np.pi * 32 * t / 256) * 1500).astype(np.int16)
    monitor.feed(tone.reshape(-1, 1))
    frame = monitor.sample()
    assert int(np.argmax(frame)) == 32
    assert frame[32] > frame[10]


@pytest.mark.asyncio
async def test_frames_stop_when_capture_stops():
    capturing = {"on": True}
    monitor = WaveformMonitor(lambda: capturing["on"], refresh_hz=200)
    received = []

    async def consume():
        async for frame in monitor.frames():
            received.append(frame)

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.05)
    capturing["on"] = False
    await asyncio.wait_for(task, timeout=1)

    assert received
    assert all(len(frame) == 128 for frame in received)


@pytest.mark.asyncio
async def test_frames_can_only_be_consumed_once():
    monitor = WaveformMonitor(lambda: False)
    frames = [frame async for frame in monitor.frames()]
    assert frames == []
    with pytest.raises(RuntimeError):
        monitor.frames()
