import time

import numpy as np

from dictanote.documents import ExtractedDocument
from dictanote.errors import DocumentError, GenerationError, TranscriptionError

_MARKERS = {
    "title": "descriptive title",
    "summary": "structured summary",
    "detailed_note": "Turn this transcript",
    "note_from_summary": "Expand this summary",
}


class FakeTranscriber:
    def __init__(self, text="hello world", error=None, delay=0.0):
        self.text = text
        self.error = error
        self.delay = delay
        self.calls = 0

    def transcribe(self, data, mime_type):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise TranscriptionError(self.error)
        return self.text


class FakeGenerator:
    def __init__(self, fail=(), title='"Team Sync."', delays=None):
        self.fail = set(fail)
        self.title = title
        self.delays = delays or {}
        self.calls = []

    def generate(self, prompt):
        kind = next(k for k, marker in _MARKERS.items() if marker in prompt)
        self.calls.append(kind)
        if self.delays.get(kind):
            time.sleep(self.delays[kind])
        if kind in self.fail:
            raise GenerationError(f"{kind} failed")
        if kind == "title":
            return self.title
        return f"{kind} text"


class FakeExtractor:
    def __init__(self, text="Quarterly report text", page_count=2, error=None):
        self.text = text
        self.page_count = page_count
        self.error = error

    def extract(self, data):
        if self.error:
            raise DocumentError(self.error)
        return ExtractedDocument(text=self.text, page_count=self.page_count)


class FakeStream:
    def __init__(self, fail_stop=False):
        self.fail_stop = fail_stop
        self.stopped = False
        self.closed = False

    def stop(self):
        if self.fail_stop:
            raise RuntimeError("device vanished")
        self.stopped = True

    def close(self):
        self.closed = True


class FakeBackend:
    def __init__(self, devices=None, error=None, fail_stop=False):
        if devices is None:
            devices = [{"name": "Built-in Mic", "index": 0, "max_input_channels": 2}]
        self.devices = devices
        self.error = error
        self.fail_stop = fail_stop
        self.streams = []
        self.callback = None
        self.opened_with = None

    def input_devices(self):
        return list(self.devices)

    def default_input_index(self):
        return 0

    def open_input_stream(self, device, sample_rate_hz, channels, callback):
        if self.error is not None:
            raise self.error
        self.opened_with = (device, sample_rate_hz, channels)
        self.callback = callback
        stream = FakeStream(fail_stop=self.fail_stop)
        self.streams.append(stream)
        return stream

    def push(self, frames=480, value=1000):
        block = np.full((frames, 1), value, dtype=np.int16)
        self.callback(block, frames, None, None)
