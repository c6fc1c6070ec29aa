"""Speaker-attributed transcript reconstruction from partial diarization data.

WHY: A finished job may return word tokens with timing, per-speaker time
ranges, inline speaker tags, or only a plain transcript — in any
combination. Callers need one ordered list of per-speaker turns that is
stable, labelled, and never silently drops or duplicates text.

HOW: Three strategies, tried in order of precision:
  word_level    — tokens + timelines: each token is attributed by looking
                  its start time up in the speaker ranges
  token_tags    — tokens with inline speaker ids, no timelines: tokens are
                  grouped by their own tag
  proportional  — timelines + canonical text, no tokens: canonical words
                  are spread over the speaker ranges in proportion to
                  each range's duration
Consecutive same-speaker output is folded by the merger, display names
are resolved per run, and the validator compares the result with the
canonical text (advisory, logged).

RULES:
- No usable input → empty list, never an exception
- Pure: identical inputs give identical output
- Word-level and token-tag text is token texts joined by single spaces
- Proportional coverage is exact: the last range absorbs the remainder
- One merge gap (MERGE_GAP_S) applies to the proportional range fold;
  text-level merging ignores gaps
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Callable, List, Mapping, Optional, Sequence

from asr_ingest.config import MERGE_GAP_S, UNKNOWN_SPEAKER
from asr_ingest.core.intervals import find_label_at
from asr_ingest.core.ir import (
    ProvidedSegment,
    ReconstructedSegment,
    ReconstructionResult,
    SpeakerTimeline,
    Token,
)
from asr_ingest.core.merger import merge_consecutive, merge_time_ranges
from asr_ingest.core.speakers import SpeakerNamer
from asr_ingest.core.validator import compare, strip_speaker_prefixes

if TYPE_CHECKING:
    from asr_ingest.api.models import StatusResult

logger = logging.getLogger(__name__)

STRATEGY_WORD_LEVEL = "word_level"
STRATEGY_TOKEN_TAGS = "token_tags"
STRATEGY_PROPORTIONAL = "proportional"
STRATEGY_PROVIDED = "provided_segments"
STRATEGY_NONE = "none"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _effective_name_map(
    timelines: Sequence[SpeakerTimeline],
    name_map: Optional[Mapping[str, str]],
) -> dict:
    """Timeline display names as defaults, overridden by the explicit map."""
    names = {tl.label: tl.display_name for tl in timelines if tl.display_name}
    names.update(name_map or {})
    return names


def _group_tokens(
    tokens: Sequence[Token],
    label_for: Callable[[Token], str],
    namer: SpeakerNamer,
) -> List[ReconstructedSegment]:
    """Group time-ordered tokens into turns, flushing on speaker change."""
    segments: List[ReconstructedSegment] = []
    current_label: Optional[str] = None
    current_tokens: List[Token] = []

    def _flush_current() -> None:
        """Emit the accumulated turn, if any."""
        nonlocal current_tokens
        if current_tokens:
            start = current_tokens[0].start
            segments.append(ReconstructedSegment(
                speaker=current_label,
                speaker_name=namer.name_for(current_label),
                start=start,
                end=max(start, current_tokens[-1].end),
                text=" ".join(t.text for t in current_tokens),
            ))
            current_tokens = []

    for token in sorted(tokens, key=lambda t: t.start):
        if not token.text.strip():
            continue
        label = label_for(token)
        if current_tokens and label != current_label:
            _flush_current()
        current_label = label
        current_tokens.append(Token(token.text.strip(), token.start, token.end, token.speaker_id))

    _flush_current()
    return merge_consecutive(segments)


def reconstruct_word_level(
    tokens: Sequence[Token],
    timelines: Sequence[SpeakerTimeline],
    name_map: Mapping[str, str],
    locale: Optional[str] = None,
) -> List[ReconstructedSegment]:
    """Attribute each token to the speaker whose range covers its start."""
    namer = SpeakerNamer(name_map, [tl.label for tl in timelines], locale)
    return _group_tokens(tokens, lambda t: find_label_at(t.start, timelines), namer)


def reconstruct_token_tags(
    tokens: Sequence[Token],
    name_map: Mapping[str, str],
    locale: Optional[str] = None,
) -> List[ReconstructedSegment]:
    """Group tokens by their inline speaker ids (missing ids → "unknown")."""
    ordered_labels = []
    for token in sorted(tokens, key=lambda t: t.start):
        label = token.speaker_id or UNKNOWN_SPEAKER
        if label not in ordered_labels:
            ordered_labels.append(label)
    namer = SpeakerNamer(name_map, ordered_labels, locale)
    return _group_tokens(tokens, lambda t: t.speaker_id or UNKNOWN_SPEAKER, namer)


def reconstruct_proportional(
    timelines: Sequence[SpeakerTimeline],
    name_map: Mapping[str, str],
    canonical_text: str,
    locale: Optional[str] = None,
    merge_gap_s: float = MERGE_GAP_S,
) -> List[ReconstructedSegment]:
    """Spread canonical words over speaker ranges by duration.

    WHY: Without any token timing, speaker ranges are the only hint of who
    said what. Longer turns get proportionally more of the text.

    HOW: Flatten all ranges, sort by start, fold same-speaker neighbours
    closer than merge_gap_s. Each folded range gets
    max(1, round(duration / total * N)) words in order; the last range
    takes everything that is left. Ranges that end up with no words are
    dropped and neighbours re-folded.

    RULES:
    - Output word count equals the prefix-stripped canonical word count
    - Zero total duration → words split evenly across ranges
    """
    flat = sorted(
        ((tl.label, rng.start, rng.end) for tl in timelines for rng in tl.segments),
        key=lambda entry: entry[1],
    )
    ranges = merge_time_ranges(flat, merge_gap_s)
    words = strip_speaker_prefixes(canonical_text).split()
    if not ranges or not words:
        return []

    total_words = len(words)
    total_duration = sum(max(0.0, end - start) for _, start, end in ranges)
    namer = SpeakerNamer(name_map, [tl.label for tl in timelines], locale)

    segments: List[ReconstructedSegment] = []
    word_index = 0
    last_index = len(ranges) - 1

    for i, (label, start, end) in enumerate(ranges):
        if i == last_index:
            chunk = words[word_index:]
        else:
            if total_duration > 0:
                share = (max(0.0, end - start) / total_duration) * total_words
            else:
                share = total_words / len(ranges)
            count = max(1, _round_half_up(share))
            chunk = words[word_index:word_index + count]
            word_index = min(total_words, word_index + count)

        if not chunk:
            continue
        segments.append(ReconstructedSegment(
            speaker=label,
            speaker_name=namer.name_for(label),
            start=start,
            end=max(start, end),
            text=" ".join(chunk),
        ))

    return merge_consecutive(segments)


def _from_provided(
    provided: Sequence[ProvidedSegment],
    name_map: Mapping[str, str],
    locale: Optional[str] = None,
) -> List[ReconstructedSegment]:
    """Convert legacy pre-segmented entries, resolving names and folding turns."""
    ordered = sorted((p for p in provided if p.text.strip()), key=lambda p: p.start)
    namer = SpeakerNamer(name_map, [p.speaker for p in ordered], locale)
    return merge_consecutive(
        ReconstructedSegment(
            speaker=p.speaker,
            speaker_name=namer.name_for(p.speaker),
            start=p.start,
            end=max(p.start, p.end),
            text=p.text.strip(),
        )
        for p in ordered
    )


def _with_consistency(
    segments: List[ReconstructedSegment],
    strategy: str,
    canonical_text: Optional[str],
) -> ReconstructionResult:
    """Attach the validator verdict; log (never raise) on mismatch."""
    if not segments or not (canonical_text and canonical_text.strip()):
        return ReconstructionResult(segments=segments, strategy=strategy)

    report = compare(segments, canonical_text)
    if not report.consistent:
        logger.warning(
            "Reconstructed transcript deviates from canonical text "
            "(strategy=%s, char_ratio=%.2f, word_ratio=%.2f)",
            strategy, report.char_ratio, report.word_ratio,
        )
    return ReconstructionResult(segments=segments, strategy=strategy, consistency=report)


def reconstruct_detailed(
    tokens: Optional[Sequence[Token]],
    timelines: Optional[Sequence[SpeakerTimeline]],
    name_map: Optional[Mapping[str, str]],
    canonical_text: Optional[str] = None,
    locale: Optional[str] = None,
    merge_gap_s: float = MERGE_GAP_S,
) -> ReconstructionResult:
    """Pick the best strategy for the data present and run it.

    Args:
        tokens: Word tokens with timing (may be None/empty).
        timelines: Speaker timelines (may be None/empty).
        name_map: Label → display name (may be None/empty).
        canonical_text: The job's plain-text transcript.
        locale: Locale for generated speaker names.
        merge_gap_s: Gap tolerance for the proportional range fold.

    Returns:
        ReconstructionResult with segments, strategy name, and validator
        report. Strategy "none" with no segments when nothing applies.
    """
    tokens = list(tokens or [])
    timelines = list(timelines or [])
    names = _effective_name_map(timelines, name_map)

    if tokens and timelines:
        segments = reconstruct_word_level(tokens, timelines, names, locale)
        return _with_consistency(segments, STRATEGY_WORD_LEVEL, canonical_text)

    if tokens and any(t.speaker_id for t in tokens):
        segments = reconstruct_token_tags(tokens, names, locale)
        return _with_consistency(segments, STRATEGY_TOKEN_TAGS, canonical_text)

    if not tokens and timelines and canonical_text and canonical_text.strip():
        segments = reconstruct_proportional(timelines, names, canonical_text, locale, merge_gap_s)
        return _with_consistency(segments, STRATEGY_PROPORTIONAL, canonical_text)

    return ReconstructionResult(segments=[], strategy=STRATEGY_NONE)


def reconstruct(
    tokens: Optional[Sequence[Token]],
    timelines: Optional[Sequence[SpeakerTimeline]],
    name_map: Optional[Mapping[str, str]],
    canonical_text: Optional[str] = None,
    locale: Optional[str] = None,
    merge_gap_s: float = MERGE_GAP_S,
) -> List[ReconstructedSegment]:
    """Reconstruct ordered, speaker-attributed segments.

    See reconstruct_detailed for the selection policy. An empty list means
    "no attributable transcript"; callers fall back to the plain text.
    """
    return reconstruct_detailed(
        tokens, timelines, name_map, canonical_text, locale, merge_gap_s,
    ).segments


def reconstruct_status(
    result: StatusResult,
    locale: Optional[str] = None,
    merge_gap_s: float = MERGE_GAP_S,
) -> ReconstructionResult:
    """Reconstruct from a normalized status payload.

    Runs the strategy policy on the payload's tokens, timelines, names and
    transcript. When that yields nothing and the backend also returned
    legacy pre-segmented entries, those are converted instead.
    """
    outcome = reconstruct_detailed(
        result.tokens,
        result.speaker_timelines,
        result.speaker_name_map,
        result.transcript,
        locale,
        merge_gap_s,
    )
    if outcome.segments or not result.provided_segments:
        return outcome

    names = _effective_name_map(result.speaker_timelines, result.speaker_name_map)
    segments = _from_provided(result.provided_segments, names, locale)
    return _with_consistency(segments, STRATEGY_PROVIDED, result.transcript)
