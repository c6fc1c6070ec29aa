"""Shared test fixtures for the asr_ingest test suite.

WHY: Several test modules need the same sample diarization data and the
same scripted stand-ins for the backend. Centralizing them here avoids
duplication and keeps every module on one authoritative sample.

HOW: Plain fixtures return tokens, timelines and a raw status payload.
ScriptedStatusSource, PayloadStatusSource and StaticMeetingSource implement
the two async reads the poller makes, without HTTP.

RULES:
- Sample tokens/timelines mirror a two-speaker exchange (A asks, B replies)
- Scripted sources count calls so tests can assert "no further queries"
- No fixture touches the network
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Union

import pytest

from asr_ingest.api.models import MeetingRecord, StatusResult
from asr_ingest.core.ir import SpeakerTimeline, TimeRange, Token


# ---------------------------------------------------------------------------
# Scripted backend stand-ins
# ---------------------------------------------------------------------------


class ScriptedStatusSource:
    """Returns scripted status results in order, repeating the last one.

    Entries may be StatusResult objects or exceptions (raised instead).
    """

    def __init__(self, script: Sequence[Union[StatusResult, BaseException]]) -> None:
        self._script = list(script)
        self.calls: List[str] = []

    async def get_status(self, job_id: str) -> StatusResult:
        index = min(len(self.calls), len(self._script) - 1)
        self.calls.append(job_id)
        entry = self._script[index]
        if isinstance(entry, BaseException):
            raise entry
        return entry


class PayloadStatusSource:
    """Parses scripted raw payloads the way the HTTP client does.

    Each call parses the next dict with StatusResult.from_dict, repeating
    the last one, so parse errors surface from get_status exactly as they
    do in production.
    """

    def __init__(self, payloads: Sequence[Any]) -> None:
        self._payloads = list(payloads)
        self.calls: List[str] = []

    async def get_status(self, job_id: str) -> StatusResult:
        index = min(len(self.calls), len(self._payloads) - 1)
        self.calls.append(job_id)
        return StatusResult.from_dict(self._payloads[index])


class StaticMeetingSource:
    """Returns the same meeting record (or None) on every read."""

    def __init__(self, record: Optional[MeetingRecord]) -> None:
        self._record = record
        self.calls = 0

    async def get_meeting(self, meeting_id: str) -> Optional[MeetingRecord]:
        self.calls += 1
        return self._record


def processing(progress: Optional[float] = None, stage: Optional[str] = None) -> StatusResult:
    return StatusResult(status="processing", progress=progress, stage=stage)


# ---------------------------------------------------------------------------
# Sample diarization data
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_tokens() -> List[Token]:
    """'hi there' by A, then 'bye' by B."""
    return [
        Token("hi", 0.0, 0.3),
        Token("there", 0.3, 0.6),
        Token("bye", 1.0, 1.3),
    ]


@pytest.fixture
def sample_timelines() -> List[SpeakerTimeline]:
    return [
        SpeakerTimeline(label="A", segments=[TimeRange(0.0, 0.6)]),
        SpeakerTimeline(label="B", segments=[TimeRange(0.9, 1.4)]),
    ]


@pytest.fixture
def completed_payload() -> Dict[str, Any]:
    """Raw completed status payload using the newer field names."""
    return {
        "status": "completed",
        "transcript": "Hello everyone. Thanks, good to be here.",
        "words": [
            {"word": "Hello", "start": 0.0, "end": 0.4},
            {"word": "everyone.", "start": 0.45, "end": 1.0},
            {"word": "Thanks,", "start": 1.6, "end": 1.9},
            {"word": "good", "start": 2.0, "end": 2.2},
            {"word": "to", "start": 2.2, "end": 2.3},
            {"word": "be", "start": 2.3, "end": 2.4},
            {"word": "here.", "start": 2.4, "end": 2.8},
        ],
        "lyraSpeakers": [
            {"label": "speaker_0", "segments": [{"start": 0.0, "end": 1.1}]},
            {"label": "speaker_1", "segments": [{"start": 1.5, "end": 3.0}]},
        ],
        "lyraSpeakerNames": {"speaker_0": "Anna Berg"},
        "lyraMatches": [
            {"sampleOwnerEmail": "anna@example.com", "confidencePercent": 91, "speakerLabel": "speaker_0"},
        ],
        "lyraMatch": {"sampleOwnerEmail": "anna@example.com", "confidencePercent": 91},
        "lyraLearning": [{"label": "speaker_0", "email": "anna@example.com"}],
    }
