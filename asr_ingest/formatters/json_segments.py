"""JSON formatter: reconstructed segments plus a speaker legend.

WHY: Downstream tools (subtitle editors, search indexing, analytics)
want structured turns with timing, not prose.

HOW: Serializes each segment with ReconstructedSegment.to_dict() and
adds a "speakers" map of label → display name in order of first
appearance, plus the plain transcript for reference.

RULES:
- Top-level keys: "transcript", "segments", "speakers"
- Segment keys: speaker, speakerName, start, end, text
- ensure_ascii=False so Swedish names survive unescaped
- Output suffix: "-segments.json"
"""

from __future__ import annotations

import json
from typing import Dict, List, Sequence

from asr_ingest.core.ir import ReconstructedSegment
from asr_ingest.formatters.base import BaseFormatter, FormatterOutput


class JsonSegmentsFormatter(BaseFormatter):
    """Formatter that produces a JSON document of speaker turns."""

    @property
    def name(self) -> str:
        return "JSON Segments"

    def format(
        self,
        segments: Sequence[ReconstructedSegment],
        transcript: str,
    ) -> List[FormatterOutput]:
        speakers: Dict[str, str] = {}
        for seg in segments:
            speakers.setdefault(seg.speaker, seg.speaker_name)

        document = {
            "transcript": transcript,
            "segments": [seg.to_dict() for seg in segments],
            "speakers": speakers,
        }
        return [
            FormatterOutput(
                suffix="-segments.json",
                content=json.dumps(document, ensure_ascii=False, indent=2) + "\n",
                media_type="application/json",
            )
        ]
