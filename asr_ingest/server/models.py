"""Pydantic request/response models for the poll-control HTTP API.

WHY: The FastAPI endpoints need typed schemas for request validation,
response serialization, and automatic OpenAPI documentation. Pydantic
models enforce field types at runtime and generate JSON Schema that
appears in the /docs UI.

HOW: Each endpoint pair (request + response) has its own model. The
internal PollState/ReconstructedSegment dataclasses are converted here
by small from_* helpers so the endpoints stay one-liners.

RULES:
- All models use Field(description=...) for OpenAPI documentation
- status values match PollStatus exactly (single source of truth in server.jobs)
- Response models never expose internal handles or tasks
- Segment fields use the same camelCase keys as ReconstructedSegment.to_dict()
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from asr_ingest.core.ir import ReconstructedSegment
from asr_ingest.server.jobs import PollState


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterJobsRequest(BaseModel):
    """Job ids the caller wants tracked.

    RULES:
    - Ids already being polled are skipped
    - restart=True re-polls ids whose previous run ended done/failed
    """

    job_ids: List[str] = Field(
        min_length=1,
        description="Job (meeting) identifiers to poll.",
    )
    restart: bool = Field(
        default=False,
        description="Re-poll jobs that already finished (retry after failure).",
    )

    model_config = {"json_schema_extra": {
        "examples": [{"job_ids": ["mtg_01H9", "mtg_01HA"], "restart": False}]
    }}


class ReconstructRequest(BaseModel):
    """A raw status payload, exactly as the backend returns it.

    WHY: Lets callers (and operators debugging a bad transcript) run the
    reconstruction on a saved payload without polling anything.
    """

    payload: Dict[str, Any] = Field(description="Raw status-query JSON object.")
    locale: Optional[str] = Field(
        default=None,
        description="Locale for generated speaker names ('en' or 'sv').",
    )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SegmentModel(BaseModel):
    """One reconstructed speaker turn."""

    speaker: str = Field(description="Backend speaker label.")
    speakerName: str = Field(description="Resolved display name.")
    start: float = Field(description="Turn start in seconds.")
    end: float = Field(description="Turn end in seconds.")
    text: str = Field(description="Turn text.")

    @classmethod
    def from_segment(cls, segment: ReconstructedSegment) -> SegmentModel:
        return cls(**segment.to_dict())


class RegisterJobsResponse(BaseModel):
    """Outcome of a registration request."""

    registered: List[str] = Field(description="Ids for which polling started.")
    skipped: List[str] = Field(description="Ids already polling or already finished.")


class PollStateResponse(BaseModel):
    """Current state of one polled job.

    RULES:
    - transcript/segments are only present when status is 'done'
    - error is only present when status is 'failed'
    - polling is False once the job finished or was stopped
    """

    job_id: str = Field(description="Job identifier.")
    status: str = Field(description="idle, uploading, processing, done or failed.")
    stage: Optional[str] = Field(default=None, description="Human-readable substate.")
    progress: int = Field(description="Progress estimate, 0-100.")
    attempt_count: int = Field(description="Status queries issued so far.")
    polling: bool = Field(description="Whether a polling task is still active.")
    transcript: Optional[str] = Field(default=None, description="Plain transcript when done.")
    segments: Optional[List[SegmentModel]] = Field(
        default=None,
        description="Speaker-attributed turns when done.",
    )
    strategy: Optional[str] = Field(
        default=None,
        description="Reconstruction strategy that produced the segments.",
    )
    consistent: Optional[bool] = Field(
        default=None,
        description="Whether segments matched the transcript length (None when not compared).",
    )
    error: Optional[str] = Field(default=None, description="Error message when failed.")

    @classmethod
    def from_state(cls, job_id: str, state: PollState, polling: bool) -> PollStateResponse:
        done = state.status.value == "done"
        return cls(
            job_id=job_id,
            status=state.status.value,
            stage=state.stage,
            progress=state.progress,
            attempt_count=state.attempt_count,
            polling=polling,
            transcript=state.transcript if done else None,
            segments=[SegmentModel.from_segment(s) for s in state.segments] if done else None,
            strategy=state.strategy,
            consistent=state.consistent,
            error=state.error,
        )

    model_config = {"json_schema_extra": {
        "examples": [
            {
                "job_id": "mtg_01H9",
                "status": "processing",
                "stage": "transcribing",
                "progress": 34,
                "attempt_count": 7,
                "polling": True,
                "transcript": None,
                "segments": None,
                "strategy": None,
                "consistent": None,
                "error": None,
            }
        ]
    }}


class PollStateListResponse(BaseModel):
    """All known job states."""

    jobs: List[PollStateResponse] = Field(description="One entry per known job.")


class ReconstructResponse(BaseModel):
    """Result of a stateless reconstruction."""

    strategy: str = Field(description="Strategy used (word_level, token_tags, ...).")
    consistent: Optional[bool] = Field(
        default=None,
        description="Validator verdict (None when nothing was compared).",
    )
    segments: List[SegmentModel] = Field(description="Speaker-attributed turns.")


class ErrorResponse(BaseModel):
    """Standard error response body.

    RULES:
    - detail is always a human-readable error message
    """

    detail: str = Field(description="Human-readable error description.")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service health status.", json_schema_extra={"example": "ok"})
    version: str = Field(description="API version string.", json_schema_extra={"example": "0.1.0"})
    jobs_polling: int = Field(description="Number of jobs currently being polled.")
