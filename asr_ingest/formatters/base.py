"""Abstract base formatter and output container.

WHY: A finished job can be saved in more than one shape (a readable
transcript for people, a JSON document for tools). This base class
enforces a consistent interface so the CLI can write any format
generically.

HOW: BaseFormatter is an ABC with two requirements — a ``name`` property
and a ``format()`` method. FormatterOutput is a plain dataclass that
bundles a file suffix with its content and MIME type.

RULES:
- Subclasses MUST implement ``name`` (human-readable) and ``format()``
- ``format()`` returns a list; every current formatter returns one item
- ``suffix`` starts with a hyphen, e.g. ``"-transcript.json"``
- The caller is responsible for prepending the job id
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Sequence

from asr_ingest.core.ir import ReconstructedSegment


@dataclass
class FormatterOutput:
    """One output file produced by a formatter.

    Attributes:
        suffix: File suffix appended to the job id,
                e.g. ``"-transcript.txt"`` → ``"mtg_01H9-transcript.txt"``.
        content: The file content.
        media_type: MIME type for the content, e.g. ``"application/json"``.
    """

    suffix: str
    content: str
    media_type: str


class BaseFormatter(ABC):
    """Abstract base for all output formatters.

    To add a new output format:
    1. Create a new file in formatters/
    2. Subclass BaseFormatter
    3. Implement format() and name
    4. Register in FORMATTERS dict in formatters/__init__.py
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable format name, e.g. 'Plain Text'."""

    @abstractmethod
    def format(
        self,
        segments: Sequence[ReconstructedSegment],
        transcript: str,
    ) -> List[FormatterOutput]:
        """Render one finished job.

        Args:
            segments: Reconstructed speaker turns (may be empty when the
                      job had no diarization data).
            transcript: The job's plain-text transcript.

        Returns:
            List of FormatterOutput objects.
        """
