"""Time-to-speaker lookup against diarized speaker ranges.

WHY: Word-level attribution needs to know which speaker was talking at
the moment a token starts. Diarization and recognition are produced by
different models, so their boundaries rarely line up exactly; a small
tolerance absorbs that jitter.

HOW: Linear scan over speakers and their ranges in the order given,
returning the first label whose widened range contains the time.

RULES:
- Range test is inclusive: start - tolerance <= time <= end + tolerance
- First match wins (speaker order, then range order)
- No match returns UNKNOWN_SPEAKER
- O(speakers x ranges) per call; fine for hundreds of speaker turns
"""

from __future__ import annotations

from typing import Sequence

from asr_ingest.config import INTERVAL_TOLERANCE_S, UNKNOWN_SPEAKER
from asr_ingest.core.ir import SpeakerTimeline

# Absorbs float error in (start - tolerance) so boundary times match exactly.
_FLOAT_SLACK = 1e-9


def find_label_at(
    time: float,
    timelines: Sequence[SpeakerTimeline],
    tolerance: float = INTERVAL_TOLERANCE_S,
) -> str:
    """Return the label of the first speaker whose range covers time.

    Args:
        time: Point in seconds (usually a token's start).
        timelines: Speaker timelines in backend order.
        tolerance: Slack added on both sides of every range.

    Returns:
        The matching speaker label, or UNKNOWN_SPEAKER.
    """
    for timeline in timelines:
        for rng in timeline.segments:
            lower = rng.start - tolerance - _FLOAT_SLACK
            upper = rng.end + tolerance + _FLOAT_SLACK
            if lower <= time <= upper:
                return timeline.label
    return UNKNOWN_SPEAKER
