"""Folding of adjacent same-speaker entries into coarser turns.

WHY: Every strategy can leave two neighbouring entries attributed to the
same speaker (a token with no covering range between two of a speaker's
words, a dropped empty range, diarization splitting one turn in two).
Readers expect one block per speaker turn.

HOW: Two single-pass folds over already time-ordered input:
  merge_consecutive  — text segments; adjacent same-speaker segments are
                       always folded, whatever the gap between them
  merge_time_ranges  — bare (speaker, start, end) ranges; same-speaker
                       neighbours are folded only when the gap is below
                       max_gap

RULES:
- Input is never mutated; folded entries are copies
- After merge_consecutive no two adjacent segments share a speaker
- merge_time_ranges keeps the earliest start and the latest end
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List, Tuple

from asr_ingest.core.ir import ReconstructedSegment

SpeakerRange = Tuple[str, float, float]


def merge_consecutive(segments: Iterable[ReconstructedSegment]) -> List[ReconstructedSegment]:
    """Fold adjacent segments that share a speaker label.

    The merged segment keeps the first segment's start and display name,
    takes the last segment's end, and joins texts with a single space.
    """
    merged: List[ReconstructedSegment] = []
    for seg in segments:
        if merged and merged[-1].speaker == seg.speaker:
            last = merged[-1]
            last.text = " ".join(part for part in (last.text, seg.text) if part)
            last.end = max(last.end, seg.end)
        else:
            merged.append(replace(seg))
    return merged


def merge_time_ranges(
    ranges: Iterable[SpeakerRange],
    max_gap: float,
) -> List[SpeakerRange]:
    """Fold same-speaker neighbours separated by less than max_gap seconds.

    Args:
        ranges: (speaker, start, end) tuples sorted by start.
        max_gap: Gap threshold in seconds; a gap equal to it is not folded.

    Returns:
        New list of (speaker, start, end) tuples.
    """
    merged: List[List] = []
    for speaker, start, end in ranges:
        if merged:
            last = merged[-1]
            if last[0] == speaker and start - last[2] < max_gap:
                last[2] = max(last[2], end)
                continue
        merged.append([speaker, start, end])
    return [(speaker, start, end) for speaker, start, end in merged]
