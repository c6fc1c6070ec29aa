"""Speaker display-name resolution.

WHY: Diarization labels are machine identifiers ("speaker_0", "A",
"SPEAKER_01"). Out-of-band identification may supply real names, but
its keys do not always use the transcript's format: the name map can say
"speaker_1" (1-based) for the transcript's "speaker_0", or "Speaker 1",
or "speaker-1". Every segment must still get a non-empty display name.

HOW: Name-map lookup tries the raw label, its normalized backend key,
and an offset-adjusted key, then a fuzzy pass over normalized map keys.
The offset is only non-zero when no named key matches a transcript label.
Generic placeholder names in the map ("Speaker 2", "unknown") are
ignored so they never shadow the fallback rules. Without a real name the
label itself decides: numeric index → "Speaker n+1", single letter →
"Speaker X", anything else → positional index among unique labels.

RULES:
- Name map always wins when it holds a non-generic name
- Transcript ids like speaker_0 are 0-based; display labels
  ("Speaker 1", "talare_1") are 1-based
- The speaker word is localized ("Speaker" / "Talare")
"""

from __future__ import annotations

import re
from typing import Iterable, Mapping, Optional

from asr_ingest.config import locale_string

_GENERIC_NAME_RE = re.compile(r"^(talare|speaker)[_\s-]?\d*$", re.IGNORECASE)
_LABEL_INDEX_RE = re.compile(r"(?:speaker_?|talare_?)(\d+)", re.IGNORECASE)
_SINGLE_LETTER_RE = re.compile(r"^[A-Za-z]$")


def is_generic_speaker_name(name: object) -> bool:
    """True for empty, placeholder, or "unknown" style names."""
    lower = str(name if name is not None else "").strip().lower()
    if not lower:
        return True
    return bool(_GENERIC_NAME_RE.match(lower)) or lower in ("unknown", "okänd")


def normalize_backend_key(raw: object) -> str:
    """Normalize a label into backend key form: speaker_0, speaker_1, ...

    Only the formatting changes; no index offset is applied.
    """
    s = str(raw if raw is not None else "").strip()
    if not s:
        return ""
    if re.match(r"^speaker[_-]\d+$", s, re.IGNORECASE):
        return s.lower().replace("-", "_")
    match = re.search(r"(?:speaker|talare)[_\s-]?(\d+)", s, re.IGNORECASE)
    if match:
        return "speaker_{}".format(match.group(1))
    match = re.search(r"(\d+)", s)
    if match:
        return "speaker_{}".format(match.group(1))
    return re.sub(r"\s+", "_", s.lower())


def parse_transcript_speaker_index(raw: object) -> Optional[int]:
    """Parse a 0-based speaker index from a transcript-side label.

    - speaker_0 / speaker-0 → 0
    - Speaker 1 / Talare 1 / talare_1 → 0 (display labels are 1-based)
    """
    s = str(raw if raw is not None else "").strip().lower()
    if not s:
        return None
    m = re.match(r"^speaker[_-](\d+)$", s)
    if m:
        return int(m.group(1))
    m = re.match(r"^(?:talare|speaker)[\s-]+(\d+)$", s)
    if m:
        return max(0, int(m.group(1)) - 1)
    m = re.match(r"^talare[_-]?(\d+)$", s)
    if m:
        return max(0, int(m.group(1)) - 1)
    return None


def compute_speaker_index_offset(
    transcript_labels: Iterable[object],
    name_map: Mapping[str, object],
) -> int:
    """Offset between transcript ids and name-map keys.

    Example: transcript has speaker_0 but the name map starts at
    speaker_1 → offset 1. Only keys with non-generic names count.

    RULES:
    - 0 when any named key already matches a transcript label (after
      normalization); the map then shares the transcript's index base,
      and a partial map must not shift names onto other speakers
    """
    labels = list(transcript_labels)
    transcript_indices = [
        idx for idx in (parse_transcript_speaker_index(lbl) for lbl in labels)
        if idx is not None
    ]
    if not transcript_indices:
        return 0

    label_keys = {normalize_backend_key(lbl) for lbl in labels}
    backend_indices = []
    for key, value in name_map.items():
        if is_generic_speaker_name(value):
            continue
        normalized = normalize_backend_key(key)
        if normalized in label_keys:
            return 0
        m = re.match(r"^speaker_(\d+)$", normalized)
        if m:
            backend_indices.append(int(m.group(1)))
    if not backend_indices:
        return 0

    return min(backend_indices) - min(transcript_indices)


def _offset_key(label: str, offset: int) -> str:
    idx = parse_transcript_speaker_index(label)
    if idx is None:
        return normalize_backend_key(label)
    return "speaker_{}".format(max(0, idx + offset))


def lookup_speaker_name(
    name_map: Mapping[str, str],
    label: str,
    offset: int = 0,
) -> Optional[str]:
    """Find a real (non-generic) name for label in name_map, or None."""
    if not label or not name_map:
        return None

    candidates = [label, normalize_backend_key(label), _offset_key(label, offset)]
    for key in candidates:
        value = name_map.get(key)
        if value and not is_generic_speaker_name(value):
            return value

    # Fuzzy: compare normalized keys (different separators/casing)
    targets = {normalize_backend_key(label), normalize_backend_key(_offset_key(label, offset))}
    for key, value in name_map.items():
        if not value or is_generic_speaker_name(value):
            continue
        if normalize_backend_key(key) in targets:
            return value

    return None


def get_speaker_display_name(
    label: str,
    name_map: Mapping[str, str],
    positional_index: int,
    locale: Optional[str] = None,
    offset: int = 0,
) -> str:
    """Resolve a non-empty display name for a speaker label.

    Args:
        label: Diarization label.
        name_map: Label → display name map (may be empty).
        positional_index: 0-based first-seen order of label among unique labels.
        locale: Locale for the generic speaker word.
        offset: Index offset from compute_speaker_index_offset.

    Returns:
        The mapped name, or a generated "Speaker N" / "Speaker X" name.
    """
    named = lookup_speaker_name(name_map, label, offset)
    if named:
        return named

    word = locale_string("speaker", locale)
    num_match = _LABEL_INDEX_RE.search(label)
    if num_match:
        return "{} {}".format(word, int(num_match.group(1)) + 1)

    if _SINGLE_LETTER_RE.match(label):
        return "{} {}".format(word, label.upper())

    return "{} {}".format(word, positional_index + 1)


class SpeakerNamer:
    """Resolves display names for one reconstruction run.

    WHY: Positional fallback names depend on first-seen order among the
    unique labels of a transcript, and the index offset depends on the
    whole label set. Both are per-run state.

    HOW: Seeded with the timeline labels in backend order; labels seen
    later (e.g. "unknown", or token tags) are appended on first use.

    RULES:
    - The same label always gets the same name within a run
    """

    def __init__(
        self,
        name_map: Mapping[str, str],
        known_labels: Iterable[str] = (),
        locale: Optional[str] = None,
    ) -> None:
        self._name_map = dict(name_map or {})
        self._locale = locale
        self._order: list[str] = []
        for label in known_labels:
            if label not in self._order:
                self._order.append(label)
        self._offset = compute_speaker_index_offset(self._order, self._name_map)

    def name_for(self, label: str) -> str:
        if label not in self._order:
            self._order.append(label)
        return get_speaker_display_name(
            label,
            self._name_map,
            self._order.index(label),
            locale=self._locale,
            offset=self._offset,
        )
