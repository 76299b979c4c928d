import argparse
import os
import sys
import time

import numpy as np

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from dictanote.config import AudioConfig
from dictanote.errors import CaptureError
from dictanote.recorder import AudioCaptureSession, list_input_devices
from dictanote.waveform import WaveformMonitor


def _describe_device(info: dict) -> None:
    print(f"Input device: {info.get('name', '')}")
    print(f"Index: {info.get('index', '')}")
    print(f"Host API: {info.get('hostapi', '')}")
    print(f"Max input channels: {info.get('max_input_channels', 0)}")
    print(f"Default sample rate: {info.get('default_samplerate', '')}")


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--device", help="Device name substring.")
    parser.add_argument("--seconds", type=float, default=6.0, help="Test duration.")
    parser.add_argument("--rate", type=int, default=48000, help="Sample rate.")
    parser.add_argument("--channels", type=int, default=1, help="Channels.")
    args = parser.parse_args()

    capture = AudioCaptureSession()
    monitor = WaveformMonitor(lambda: capture.is_capturing)
    capture.add_block_listener(monitor.feed)
    audio = AudioConfig(
        sample_rate_hz=args.rate, channels=args.channels, device_name=args.device
    )
    try:
        session = capture.start(audio, max_duration_ms=int(args.seconds * 1000))
    except CaptureError as exc:
        print(f"Capture failed: {exc}")
        if exc.guidance:
            print(exc.guidance)
        return 1

    for info in list_input_devices():
        if info.get("name") == capture.device_name:
            _describe_device(info)
    print(f"Container: {session.mime_type}")
    print("Streaming... press Ctrl+C to stop early.")

    end = time.time() + args.seconds
    try:
        while time.time() < end:
            frame = monitor.sample()
            if session.byte_count:
                peak = int(np.max(frame))
                print(f"Bytes {session.byte_count} | Peak bin {peak}/255")
            else:
                print("No samples yet...")
            time.sleep(0.5)
    finally:
        buffer = capture.stop()

    if buffer is not None:
        print(f"Encoded {len(buffer)} bytes, {buffer.duration_seconds}s")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
