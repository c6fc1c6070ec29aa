"""Intermediate representation dataclasses for reconstructed transcripts.

WHY: The backend returns diarization and timing data in varying
completeness — word tokens with or without speaker tags, per-speaker
time ranges, or nothing but a plain transcript. The reconstruction
strategies, the validator, the poller, and the formatters all need one
well-typed vocabulary for these pieces, decoupled from the raw payload.

HOW: Small dataclasses form the vocabulary:
  Token                — one recognized word with its time span
  TimeRange            — one (start, end) interval in seconds
  SpeakerTimeline      — one speaker's diarized ranges plus metadata
  ProvidedSegment      — a legacy pre-segmented entry from the backend
  ReconstructedSegment — one contiguous turn by one speaker (output unit)
  ConsistencyReport    — validator verdict for a reconstruction
  ReconstructionResult — segments plus the strategy that produced them

RULES:
- All times are float seconds
- Token and TimeRange are immutable (produced entirely by the backend)
- ReconstructedSegment.end >= start; output lists are sorted by start
- Consecutive output segments never share the same speaker
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class Token:
    """A single recognized word with its time span.

    RULES:
    - text: the word as recognized, without surrounding whitespace
    - start/end: float seconds
    - speaker_id: inline diarization tag, None when the backend sent none
    """

    text: str
    start: float
    end: float
    speaker_id: Optional[str] = None


@dataclass(frozen=True)
class TimeRange:
    """A closed time interval in seconds."""

    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass
class SpeakerTimeline:
    """One speaker's diarized time ranges.

    WHY: Diarization reports, per speaker, the intervals during which that
    speaker was judged to be talking. Word-level attribution looks tokens
    up against these ranges; the proportional fallback distributes text
    across them.

    RULES:
    - label: stable diarization identifier ("speaker_0", "A"), not
      necessarily human-readable
    - segments: ranges in backend order, disjoint-ish
    - display_name, duration_s, best_match_email, similarity: optional
      metadata from voice-sample identification
    """

    label: str
    segments: list[TimeRange] = field(default_factory=list)
    display_name: Optional[str] = None
    duration_s: Optional[float] = None
    best_match_email: Optional[str] = None
    similarity: Optional[float] = None


@dataclass(frozen=True)
class ProvidedSegment:
    """A pre-segmented transcript entry some backends return instead of tokens."""

    speaker: str
    start: float
    end: float
    text: str


@dataclass
class ReconstructedSegment:
    """One contiguous turn by one speaker.

    RULES:
    - speaker: diarization label (or "unknown")
    - speaker_name: non-empty display name, always resolved
    - start/end: seconds, end >= start
    - text: words joined by single spaces
    """

    speaker: str
    speaker_name: str
    start: float
    end: float
    text: str

    def to_dict(self) -> dict:
        """Return the external shape used by callers and the HTTP API."""
        return {
            "speaker": self.speaker,
            "speakerName": self.speaker_name,
            "start": self.start,
            "end": self.end,
            "text": self.text,
        }


@dataclass(frozen=True)
class ConsistencyReport:
    """Validator verdict comparing reconstructed text to the canonical text.

    RULES:
    - char_ratio / word_ratio: reconstructed over canonical, after
      normalization; 0.0 when the canonical side is empty
    - consistent: both ratios inside the configured bounds
    """

    char_ratio: float
    word_ratio: float
    consistent: bool


@dataclass
class ReconstructionResult:
    """Segments plus how they were produced.

    RULES:
    - strategy: "word_level", "token_tags", "proportional",
      "provided_segments", or "none"
    - consistency: None when no canonical text was available to compare
    """

    segments: list[ReconstructedSegment]
    strategy: str
    consistency: Optional[ConsistencyReport] = None
