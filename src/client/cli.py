"""Command-line client: stream a transcription and print entries as they arrive.

Entry point
-----------
Run as a module::

    python -m src.client.cli meeting.mp4 \\
        --api-url http://localhost:8000 \\
        --start-time 0 --max-retries 5

Use ``--help`` for full argument documentation.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import httpx

from src.client.reassembly import RetryLimitExceeded, transcribe_with_resume
from src.config import settings
from src.transcription.models import TranscriptEntry
from src.transcription.timeutils import format_time


def format_entry(entry: TranscriptEntry) -> str:
    return f"[{entry.timestamp}] {entry.speaker}: {entry.text}"


def _print_entries(entries: list[TranscriptEntry]) -> None:
    for entry in entries:
        print(format_entry(entry), flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Transcribe a long audio/video file through the chunked transcription API.",
    )
    parser.add_argument("file", type=Path, help="Audio or video file to transcribe.")
    parser.add_argument(
        "--api-url",
        default=settings.api_url,
        help=f"Base URL of the API (default: {settings.api_url}).",
    )
    parser.add_argument(
        "--start-time",
        type=int,
        default=0,
        help="Offset in seconds to start from, e.g. to resume an earlier run.",
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=settings.client_max_retries,
        help="Consecutive resume attempts before giving up.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to stderr.")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(message)s",
        stream=sys.stderr,
    )

    if not args.file.is_file():
        print(f"File not found: {args.file}", file=sys.stderr)
        return 2

    try:
        assembler = transcribe_with_resume(
            args.file,
            start_time=args.start_time,
            api_url=args.api_url,
            max_retries=args.max_retries,
            on_entries=_print_entries,
        )
    except RetryLimitExceeded as exc:
        resume = exc.assembler.resume_from or 0
        print(f"{exc}. Re-run with --start-time {int(resume)} to continue.", file=sys.stderr)
        return 1
    except httpx.HTTPStatusError as exc:
        print(f"Server rejected the request ({exc.response.status_code}): {exc.response.text}", file=sys.stderr)
        return 1

    print(
        f"Done: {len(assembler.entries)} entries, last at {assembler.high_water_timestamp or format_time(0)}",
        file=sys.stderr,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
