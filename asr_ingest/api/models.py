"""Status-query and meeting-record payload dataclasses.

WHY: The backend's status payload is loosely typed and has carried two
naming schemes for the same concepts over time (newer "lyra*" fields,
legacy "sis*"/"speakerNames" fields). Letting raw dicts leak into the
poller and reconstructor would spread that versioning problem everywhere.

HOW: Each dataclass maps one backend JSON object. StatusResult.from_dict
is the single normalization step: it prefers the newer field name and
falls back to the legacy one field-by-field, parses tokens, timelines,
matches and legacy segments into typed objects, and tolerates absent or
null fields. Nothing past this module sees a raw payload.

RULES:
- status is lowercased; missing status raises KeyError
- Newer field wins when both are present (even if the newer one is empty)
- Tokens accept "word" or "text", and "speakerId" or "speaker"
- Tokens without usable timing are dropped
- Times are float seconds
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from asr_ingest.core.ir import ProvidedSegment, SpeakerTimeline, TimeRange, Token

COMPLETED_STATUSES = frozenset({"completed", "done"})
FAILED_STATUSES = frozenset({"error", "failed"})


def _pick(data: dict, newer: str, legacy: str, default: Any = None) -> Any:
    """Return data[newer] if present and not None, else data[legacy]."""
    value = data.get(newer)
    if value is None:
        value = data.get(legacy)
    return default if value is None else value


def _opt_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def _opt_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def parse_token(data: dict) -> Optional[Token]:
    """Parse one word token; None when it has no text or no timing."""
    text = data.get("word") or data.get("text") or ""
    start = data.get("start")
    end = data.get("end")
    if not str(text).strip() or start is None or end is None:
        return None
    return Token(
        text=str(text).strip(),
        start=float(start),
        end=float(end),
        speaker_id=_opt_str(data.get("speakerId") or data.get("speaker")),
    )


def parse_timeline(data: dict) -> SpeakerTimeline:
    """Parse one speaker timeline entry."""
    return SpeakerTimeline(
        label=str(data["label"]),
        segments=[
            TimeRange(start=float(seg["start"]), end=float(seg["end"]))
            for seg in data.get("segments") or []
        ],
        display_name=_opt_str(data.get("speakerName") or data.get("displayName")),
        duration_s=_opt_float(data.get("durationSeconds")),
        best_match_email=_opt_str(data.get("bestMatchEmail")),
        similarity=_opt_float(data.get("similarity")),
    )


def parse_provided_segment(data: dict) -> ProvidedSegment:
    """Parse one legacy pre-segmented transcript entry."""
    return ProvidedSegment(
        speaker=str(data.get("speakerId") or data.get("speaker") or "unknown"),
        start=float(data.get("start") or 0.0),
        end=float(data.get("end") or 0.0),
        text=str(data.get("text") or ""),
    )


@dataclass
class SpeakerMatch:
    """A voice-sample identification result.

    RULES:
    - sample_owner_email: owner of the matching voice sample
    - confidence_percent: 0–100
    - speaker_label / matched_words: present when the backend knows them
    """

    sample_owner_email: Optional[str] = None
    confidence_percent: Optional[float] = None
    speaker_label: Optional[str] = None
    matched_words: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> SpeakerMatch:
        matched = data.get("matchedWords")
        return cls(
            sample_owner_email=_opt_str(data.get("sampleOwnerEmail")),
            confidence_percent=_opt_float(data.get("confidencePercent")),
            speaker_label=_opt_str(data.get("speakerLabel")),
            matched_words=int(matched) if matched is not None else None,
        )


@dataclass
class StatusResult:
    """Normalized result of one status query.

    WHY: The poller decides transitions on status, transcript, stage and
    progress; the reconstructor consumes tokens, timelines and names; the
    completion callback forwards matches and learning entries. One typed
    object carries all of it.

    HOW: Built by from_dict from the raw JSON payload.

    RULES:
    - status: "queued", "processing", "completed", "done", "error", "failed"
      (unknown values are kept and treated as in-progress)
    - transcript: "" when absent
    - every list/dict field defaults to empty, never None
    """

    status: str
    transcript: str = ""
    tokens: list[Token] = field(default_factory=list)
    speaker_timelines: list[SpeakerTimeline] = field(default_factory=list)
    speaker_name_map: dict[str, str] = field(default_factory=dict)
    speaker_matches: list[SpeakerMatch] = field(default_factory=list)
    best_match: Optional[SpeakerMatch] = None
    learning_entries: list[dict] = field(default_factory=list)
    provided_segments: list[ProvidedSegment] = field(default_factory=list)
    stage: Optional[str] = None
    progress: Optional[float] = None
    error: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.status in COMPLETED_STATUSES

    @property
    def is_failed(self) -> bool:
        return self.status in FAILED_STATUSES

    @classmethod
    def from_dict(cls, data: dict) -> StatusResult:
        """Parse and normalize a raw status payload.

        RULES:
        - Raises KeyError when "status" is missing
        - Raises TypeError/ValueError on structurally broken entries,
          including fields of the wrong JSON type (a list where an object
          belongs, a string where a token belongs)
        """
        if not isinstance(data, dict):
            raise TypeError(
                "status payload must be an object, got {}".format(type(data).__name__)
            )
        try:
            return cls._from_mapping(data)
        except AttributeError as exc:
            raise TypeError("wrong field type in status payload: {}".format(exc)) from exc

    @classmethod
    def _from_mapping(cls, data: dict) -> StatusResult:
        tokens = [parse_token(t) for t in _pick(data, "words", "tokens", [])]
        best = _pick(data, "lyraMatch", "sisMatch")
        names = _pick(data, "lyraSpeakerNames", "speakerNames", {})

        return cls(
            status=str(data["status"]).lower(),
            transcript=str(_pick(data, "transcript", "text", "")),
            tokens=[t for t in tokens if t is not None],
            speaker_timelines=[
                parse_timeline(s) for s in _pick(data, "lyraSpeakers", "sisSpeakers", [])
            ],
            speaker_name_map={str(k): str(v) for k, v in names.items() if v},
            speaker_matches=[
                SpeakerMatch.from_dict(m) for m in _pick(data, "lyraMatches", "sisMatches", [])
            ],
            best_match=SpeakerMatch.from_dict(best) if best else None,
            learning_entries=list(_pick(data, "lyraLearning", "sisLearning", [])),
            provided_segments=[
                parse_provided_segment(s) for s in data.get("transcriptSegments") or []
            ],
            stage=_opt_str(data.get("stage")),
            progress=_opt_float(data.get("progress")),
            error=_opt_str(data.get("error")),
        )


@dataclass
class MeetingRecord:
    """Stored meeting record, read only to detect an already-finished job."""

    id: str
    transcript: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> MeetingRecord:
        return cls(
            id=str(data.get("id", "")),
            transcript=str(data.get("transcript") or ""),
        )
