"""Sanity check of reconstructed segments against the canonical transcript.

WHY: Reconstruction redistributes text across speakers using timing data
that can be partial or skewed. The canonical transcript is the one string
guaranteed to represent what was said, so comparing against it catches
reconstructions that silently dropped or duplicated text.

HOW: Both sides are normalized (speaker-label prefixes stripped,
lowercased, punctuation removed, whitespace collapsed), then compared by
character-length ratio and word-count ratio.

RULES:
- Both ratios must fall inside [min_ratio, max_ratio] (default 0.6–1.4)
- Advisory only: a mismatch is reported, never raised
- Empty canonical text is consistent only with empty reconstructed text
"""

from __future__ import annotations

import re
from typing import Iterable

from asr_ingest.config import VALIDATION_MAX_RATIO, VALIDATION_MIN_RATIO
from asr_ingest.core.ir import ConsistencyReport, ReconstructedSegment

# "[00:12] Speaker 1:", "Talare A:", "SPEAKER_00:", "speaker-2 :"
_SPEAKER_PREFIX_RE = re.compile(
    r"(?:\[\d{1,2}:\d{2}(?::\d{2})?\]\s*)?\b(?:speaker|talare)[ _-]?(?:\d{1,3}|[A-Za-z])\s*:",
    re.IGNORECASE,
)
_PUNCTUATION_RE = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE_RE = re.compile(r"\s+")


def strip_speaker_prefixes(text: str) -> str:
    """Remove literal speaker-label prefixes embedded in transcript text."""
    return _WHITESPACE_RE.sub(" ", _SPEAKER_PREFIX_RE.sub(" ", text)).strip()


def normalize_text(text: str) -> str:
    """Normalize text for comparison: no prefixes, lowercase, no punctuation."""
    stripped = strip_speaker_prefixes(text or "").lower()
    stripped = _PUNCTUATION_RE.sub(" ", stripped)
    return _WHITESPACE_RE.sub(" ", stripped).strip()


def _ratio(numerator: int, denominator: int) -> float:
    if denominator == 0:
        return 0.0
    return numerator / denominator


def compare(
    segments: Iterable[ReconstructedSegment],
    canonical_text: str,
    min_ratio: float = VALIDATION_MIN_RATIO,
    max_ratio: float = VALIDATION_MAX_RATIO,
) -> ConsistencyReport:
    """Compare reconstructed text with the canonical transcript.

    Args:
        segments: Reconstructed segments in order.
        canonical_text: The job's plain-text transcript.
        min_ratio: Lower bound for both ratios.
        max_ratio: Upper bound for both ratios.

    Returns:
        ConsistencyReport with both ratios and the verdict.
    """
    reconstructed = normalize_text(" ".join(seg.text for seg in segments))
    canonical = normalize_text(canonical_text)

    if not canonical:
        return ConsistencyReport(char_ratio=0.0, word_ratio=0.0, consistent=not reconstructed)

    char_ratio = _ratio(len(reconstructed), len(canonical))
    word_ratio = _ratio(
        len(reconstructed.split()) if reconstructed else 0,
        len(canonical.split()),
    )
    consistent = (
        min_ratio <= char_ratio <= max_ratio
        and min_ratio <= word_ratio <= max_ratio
    )
    return ConsistencyReport(char_ratio=char_ratio, word_ratio=word_ratio, consistent=consistent)


def is_consistent(
    segments: Iterable[ReconstructedSegment],
    canonical_text: str,
    min_ratio: float = VALIDATION_MIN_RATIO,
    max_ratio: float = VALIDATION_MAX_RATIO,
) -> bool:
    """True when reconstructed text is close enough to the canonical text."""
    return compare(segments, canonical_text, min_ratio, max_ratio).consistent
