"""Command-line interface for asr_ingest.

WHY: Operators need to follow transcription jobs from a terminal, save
their speaker-attributed transcripts, re-run reconstruction on a saved
status payload when a transcript looks wrong, and start the HTTP API.

HOW: argparse with three subcommands:
  poll         — poll one or more job ids until each finishes, writing
                 the selected formats per job as it completes
  reconstruct  — run reconstruction on a saved status payload (JSON file)
                 and print or save the result
  serve        — start the FastAPI app with uvicorn
Async work runs via asyncio.run(). Status messages go to stderr; file
content printed by reconstruct goes to stdout.

RULES:
- Status output goes to stderr (not stdout)
- --formats: comma-separated formatter keys (default: all registered)
- Output naming: {job_id}{suffix}, numeric suffix for conflicts
- Exit code 1 when any polled job fails or times out, 130 on Ctrl-C
- --verbose enables DEBUG logging, otherwise WARNING
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import re
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from asr_ingest.api.client import AsrStatusClient
from asr_ingest.api.models import StatusResult
from asr_ingest.config import LOCALE, MAX_POLL_ATTEMPTS, POLL_INTERVAL_S
from asr_ingest.core.ir import ReconstructedSegment
from asr_ingest.core.reconstruct import reconstruct_status
from asr_ingest.formatters import FORMATTERS
from asr_ingest.formatters.base import FormatterOutput
from asr_ingest.server.jobs import JobPoller

_UNSAFE_FILENAME_CHARS = re.compile(r"[^\w.-]")


def _status(msg: str) -> None:
    """Print a status message to stderr (stdout stays pipeable)."""
    print(msg, file=sys.stderr, flush=True)


def _parse_formats(value: Optional[str]) -> List[str]:
    """Split --formats into registered formatter keys.

    Raises:
        ValueError: If a key is not registered.
    """
    if not value:
        return list(FORMATTERS.keys())
    keys = [f.strip() for f in value.split(",") if f.strip()]
    for key in keys:
        if key not in FORMATTERS:
            raise ValueError("Unknown format '{}'. Available formats: {}".format(
                key, ", ".join(sorted(FORMATTERS.keys())),
            ))
    return keys


def _resolve_output_path(stem: str, suffix: str, output_dir: Path) -> Path:
    """Resolve the output file path, adding a numeric suffix on conflict.

    RULES:
    - First attempt: {stem}{suffix} (e.g. mtg_01H9-transcript.txt)
    - Conflict: counter inserted before the extension
      (e.g. mtg_01H9-transcript-2.txt), starting at 2
    """
    base_path = output_dir / "{}{}".format(stem, suffix)
    if not base_path.exists():
        return base_path

    dot_idx = suffix.rfind(".")
    if dot_idx > 0:
        suffix_name, suffix_ext = suffix[:dot_idx], suffix[dot_idx:]
    else:
        suffix_name, suffix_ext = suffix, ""

    counter = 2
    while True:
        candidate = output_dir / "{}{}-{}{}".format(stem, suffix_name, counter, suffix_ext)
        if not candidate.exists():
            return candidate
        counter += 1


def _render(
    format_keys: Sequence[str],
    segments: Sequence[ReconstructedSegment],
    transcript: str,
) -> List[FormatterOutput]:
    outputs: List[FormatterOutput] = []
    for key in format_keys:
        outputs.extend(FORMATTERS[key]().format(segments, transcript))
    return outputs


def _save_outputs(
    outputs: Sequence[FormatterOutput],
    job_id: str,
    output_dir: Path,
) -> List[Path]:
    """Write formatter outputs as {job_id}{suffix} files; return their paths."""
    stem = _UNSAFE_FILENAME_CHARS.sub("_", job_id) or "transcript"
    saved: List[Path] = []
    for output in outputs:
        path = _resolve_output_path(stem, output.suffix, output_dir)
        path.write_text(output.content, encoding="utf-8")
        saved.append(path)
    return saved


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


async def _run_poll(args: argparse.Namespace) -> int:
    """Poll every job id until it finishes; write outputs as jobs complete."""
    format_keys = _parse_formats(args.formats)
    output_dir = Path(args.output_dir).resolve() if args.output_dir else Path.cwd()
    if not output_dir.is_dir():
        raise ValueError("Output directory does not exist: {}".format(output_dir))

    failures: Dict[str, str] = {}

    def on_complete(job_id, transcript, matches, best_match, timelines,
                    learning, name_map) -> None:
        segments = poller.get_state(job_id).segments
        _status("Job {} done: {} segment(s), {} speaker(s)".format(
            job_id, len(segments), len({s.speaker for s in segments}),
        ))
        if best_match is not None and best_match.sample_owner_email:
            _status("  Best voice match: {} ({}%)".format(
                best_match.sample_owner_email, best_match.confidence_percent,
            ))
        outputs = _render(format_keys, segments, transcript)
        for path in _save_outputs(outputs, job_id, output_dir):
            _status("  Saved: {}".format(path.name))

    def on_error(job_id: str, message: str) -> None:
        failures[job_id] = message
        _status("Job {} failed: {}".format(job_id, message))

    async with AsrStatusClient() as client:
        poller = JobPoller(
            client,
            meeting_source=client,
            on_complete=on_complete,
            on_error=on_error,
            poll_interval_s=args.interval,
            max_attempts=args.max_attempts,
            locale=args.locale,
        )
        started = poller.register(args.job_ids)
        _status("Polling {} job(s)...".format(len(started)))
        try:
            await poller.wait_all()
        finally:
            await poller.aclose()

    if failures:
        _status("{} of {} job(s) failed".format(len(failures), len(started)))
        return 1
    return 0


def _run_reconstruct(args: argparse.Namespace) -> int:
    """Reconstruct a saved status payload and print or save the result."""
    format_keys = _parse_formats(args.formats or "json_segments")
    payload_path = Path(args.payload)
    if not payload_path.is_file():
        raise ValueError("File not found: {}".format(payload_path))

    with payload_path.open(encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ValueError("Malformed status payload: expected a JSON object, got {}".format(
            type(data).__name__,
        ))
    try:
        result = StatusResult.from_dict(data)
    except (KeyError, TypeError) as exc:
        raise ValueError("Malformed status payload: {}".format(exc)) from exc

    outcome = reconstruct_status(result, locale=args.locale)
    _status("Strategy: {} ({} segment(s))".format(outcome.strategy, len(outcome.segments)))
    if outcome.consistency is not None and not outcome.consistency.consistent:
        _status("  Warning: segments deviate from transcript (chars {:.2f}, words {:.2f})".format(
            outcome.consistency.char_ratio, outcome.consistency.word_ratio,
        ))

    outputs = _render(format_keys, outcome.segments, result.transcript)
    if args.output_dir:
        output_dir = Path(args.output_dir).resolve()
        if not output_dir.is_dir():
            raise ValueError("Output directory does not exist: {}".format(output_dir))
        for path in _save_outputs(outputs, payload_path.stem, output_dir):
            _status("  Saved: {}".format(path.name))
    else:
        for output in outputs:
            sys.stdout.write(output.content)
    return 0


def _run_serve(args: argparse.Namespace) -> int:
    from asr_ingest.server.app import run_api

    run_api(host=args.host, port=args.port)
    return 0


# ---------------------------------------------------------------------------
# Parser and entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI.

    WHY: Separating parser construction from main() makes the CLI
    testable — tests can inspect the parser without polling anything.
    """
    formats_help = "Comma-separated output formats. Available: {}.".format(
        ", ".join(sorted(FORMATTERS.keys()))
    )

    parser = argparse.ArgumentParser(
        prog="asr_ingest",
        description="Poll transcription jobs and reconstruct speaker-attributed transcripts.",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging.",
    )
    parser.add_argument(
        "--locale",
        default=LOCALE,
        help="Locale for generated speaker names and messages (default: %(default)s).",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    poll = sub.add_parser("poll", help="Poll jobs until they finish and save transcripts.")
    poll.add_argument("job_ids", nargs="+", metavar="JOB_ID", help="Job (meeting) ids.")
    poll.add_argument("--formats", default=None, help=formats_help + " Default: all.")
    poll.add_argument(
        "--output-dir",
        default=None,
        help="Directory to save output files (default: current directory).",
    )
    poll.add_argument(
        "--interval",
        type=float,
        default=POLL_INTERVAL_S,
        help="Seconds between status queries (default: %(default)s).",
    )
    poll.add_argument(
        "--max-attempts",
        type=int,
        default=MAX_POLL_ATTEMPTS,
        help="Status queries before a job times out (default: %(default)s).",
    )

    rec = sub.add_parser("reconstruct", help="Reconstruct a saved status payload.")
    rec.add_argument("payload", metavar="PAYLOAD.json", help="Saved status payload.")
    rec.add_argument("--formats", default=None, help=formats_help + " Default: json_segments.")
    rec.add_argument(
        "--output-dir",
        default=None,
        help="Save files here instead of printing to stdout.",
    )

    serve = sub.add_parser("serve", help="Start the HTTP API.")
    serve.add_argument("--host", default="0.0.0.0", help="Bind address (default: %(default)s).")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: %(default)s).")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for ``python -m asr_ingest`` and the asr-ingest script.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        if args.command == "poll":
            code = asyncio.run(_run_poll(args))
        elif args.command == "reconstruct":
            code = _run_reconstruct(args)
        else:
            code = _run_serve(args)
    except KeyboardInterrupt:
        _status("\nCancelled by user.")
        sys.exit(130)
    except ValueError as e:
        # Config and input errors (missing API key, bad format key, bad payload)
        print("Error: {}".format(e), file=sys.stderr)
        sys.exit(1)

    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
