"""Plain text transcript formatter with speaker-labeled paragraphs.

WHY: Reviewers need a simple, readable transcript: who spoke, roughly
when, and what they said.

HOW: One paragraph per reconstructed turn, headed "[mm:ss] Name:" with
the turn text on the next line. Without segments (no diarization data)
the plain transcript is written as-is.

RULES:
- Header format: "[mm:ss] Name:" ("[h:mm:ss]" past one hour)
- Double newline between paragraphs, single trailing newline
- Output suffix: "-transcript.txt"
- Media type: "text/plain"
"""

from __future__ import annotations

from typing import List, Sequence

from asr_ingest.core.ir import ReconstructedSegment
from asr_ingest.formatters.base import BaseFormatter, FormatterOutput


def format_timestamp(seconds: float) -> str:
    """Format seconds as mm:ss, or h:mm:ss from one hour on."""
    total = int(max(0.0, seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return "{}:{:02d}:{:02d}".format(hours, minutes, secs)
    return "{:02d}:{:02d}".format(minutes, secs)


class PlainTextFormatter(BaseFormatter):
    """Formatter that produces speaker-labeled plain text paragraphs."""

    @property
    def name(self) -> str:
        return "Plain Text"

    def format(
        self,
        segments: Sequence[ReconstructedSegment],
        transcript: str,
    ) -> List[FormatterOutput]:
        if segments:
            paragraphs = [
                "[{ts}] {name}:\n{text}".format(
                    ts=format_timestamp(seg.start),
                    name=seg.speaker_name,
                    text=seg.text,
                )
                for seg in segments
            ]
            content = "\n\n".join(paragraphs)
        else:
            content = transcript.strip()

        if content:
            content += "\n"

        return [
            FormatterOutput(
                suffix="-transcript.txt",
                content=content,
                media_type="text/plain",
            )
        ]
