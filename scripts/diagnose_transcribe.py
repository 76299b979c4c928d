import argparse
import os
import sys
import time

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from dictanote.audio_utils import guess_mime_type
from dictanote.config import Config
from dictanote.errors import DictanoteError
from dictanote.transcriber import build_transcriber


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("audio_path", help="Path to audio file to transcribe.")
    parser.add_argument(
        "--backend", choices=["whisper", "gemini"], default="whisper", help="Backend."
    )
    parser.add_argument("--model", default="small", help="Whisper model name.")
    parser.add_argument("--language", default="en", help="Language code (e.g., en).")
    parser.add_argument("--device", help="Device preference (cpu/cuda).")
    parser.add_argument("--compute-type", help="Compute type (int8/float16).")
    args = parser.parse_args()

    config = Config(language=args.language)
    config.transcription.backend = args.backend
    config.transcription.whisper_model = args.model
    config.transcription.device = args.device
    config.transcription.compute_type = args.compute_type
    transcriber = build_transcriber(config)

    with open(args.audio_path, "rb") as handle:
        data = handle.read()

    started = time.time()
    try:
        text = transcriber.transcribe(data, guess_mime_type(args.audio_path))
    except DictanoteError as exc:
        print(f"Transcription failed: {exc}")
        return 1
    elapsed = time.time() - started
    print(text)
    print(f"Characters: {len(text)}")
    print(f"Elapsed: {elapsed:.2f}s")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
