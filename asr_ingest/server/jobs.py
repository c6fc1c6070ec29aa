"""Per-job polling state machines with cooperative cancellation.

WHY: A transcription job runs on the backend for seconds to tens of
minutes and can stall, fail, or finish without the status endpoint
noticing. Callers track many jobs at once and need, for each one,
progressive feedback while it runs and exactly one completion or error
notification when it ends — and nothing at all after they stop tracking
it.

HOW: Three components work together:
  PollStatus — enum of visible job states
  PollState  — dataclass holding one job's status, progress and result
  JobPoller  — registry of one asyncio task per job id, each owning a
               _PollHandle (its state plus a cancellation flag)
Each task queries status once per iteration, sleeps a fixed interval
between attempts, reconstructs the transcript on completion, and calls
the completion or error callback exactly once.

RULES:
- One task per job id; a task writes only its own handle's state
- Status queries for one job are strictly sequential
- Transient query errors are retried after the normal interval; any
  other error fails the job
- A terminal state (done/failed) is never left
- attempt_count never exceeds max_attempts; exhausting it fails the job
  with the timeout message
- The cancellation flag is checked before every iteration and after
  every await; a cancelled job emits no callbacks and its state freezes
- get_state()/states() return deep copies (read-only snapshots)
"""

from __future__ import annotations

import asyncio
import copy
import enum
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol

import httpx

from asr_ingest.api.client import StatusAPIError
from asr_ingest.api.models import MeetingRecord, StatusResult
from asr_ingest.config import (
    BACKSTOP_MIN_CHARS,
    INITIAL_PROGRESS,
    MAX_PENDING_PROGRESS,
    MAX_POLL_ATTEMPTS,
    MERGE_GAP_S,
    POLL_INTERVAL_S,
    locale_string,
)
from asr_ingest.core.ir import ReconstructedSegment, ReconstructionResult
from asr_ingest.core.reconstruct import reconstruct_detailed, reconstruct_status

logger = logging.getLogger(__name__)

# Errors that count as a failed attempt, not a failed job
TRANSIENT_ERRORS = (httpx.HTTPError, StatusAPIError, KeyError, ValueError, TypeError)


class PollStatus(str, enum.Enum):
    """Visible states of a polled job.

    RULES:
    - idle/uploading are reserved for callers that track jobs before
      registering them; the poller starts jobs in processing
    - done and failed are terminal
    """

    IDLE = "idle"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({PollStatus.DONE, PollStatus.FAILED})


@dataclass
class PollState:
    """Readable state of one polled job.

    RULES:
    - progress: 0–100; capped at 90 until terminal, 100 when done
    - stage: human-readable substate ("uploading", "transcribing", ...)
    - transcript/segments: set only when done
    - error: set only when failed
    - strategy/consistent: how the segments were reconstructed and the
      validator verdict (None when nothing was compared)
    """

    status: PollStatus = PollStatus.IDLE
    stage: Optional[str] = None
    progress: int = 0
    transcript: Optional[str] = None
    segments: List[ReconstructedSegment] = field(default_factory=list)
    error: Optional[str] = None
    attempt_count: int = 0
    strategy: Optional[str] = None
    consistent: Optional[bool] = None
    updated_at: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class StatusSource(Protocol):
    async def get_status(self, job_id: str) -> StatusResult: ...


class MeetingSource(Protocol):
    async def get_meeting(self, meeting_id: str) -> Optional[MeetingRecord]: ...


CompleteCallback = Callable[..., Any]
"""(job_id, transcript, speaker_matches, best_match, speaker_timelines,
learning_entries, speaker_name_map) -> None | Awaitable[None]

The reconstructed segments are on get_state(job_id).segments, which is
already final when the callback runs."""

ErrorCallback = Callable[[str, str], Any]
"""(job_id, error_message) -> None | Awaitable[None]"""


@dataclass
class _PollHandle:
    """One registration of one job: its state, task and cancellation flag."""

    job_id: str
    state: PollState
    task: Optional[asyncio.Task] = None
    cancelled: bool = False
    finished: bool = False

    @property
    def active(self) -> bool:
        return not self.cancelled and not self.finished


class JobPoller:
    """Registry of per-job polling tasks.

    WHY: Many slow, I/O-bound jobs must be watched at once without
    blocking each other, and each must reach exactly one outcome.

    HOW: register() starts one asyncio task per new job id. The task loops
    over status queries with a fixed sleep, updating its handle's
    PollState, until the job completes, fails, times out, or is stopped.

    RULES:
    - Must be used from inside a running event loop
    - register() ignores ids already being polled, and ids already in a
      terminal state unless restart=True
    - stop() freezes the job's state; discard() forgets it
    - aclose() stops everything and cancels tasks still sleeping
    """

    def __init__(
        self,
        status_source: StatusSource,
        meeting_source: Optional[MeetingSource] = None,
        on_complete: Optional[CompleteCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        poll_interval_s: float = POLL_INTERVAL_S,
        max_attempts: int = MAX_POLL_ATTEMPTS,
        locale: Optional[str] = None,
        merge_gap_s: float = MERGE_GAP_S,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._status_source = status_source
        self._meeting_source = meeting_source
        self._on_complete = on_complete
        self._on_error = on_error
        self._poll_interval_s = poll_interval_s
        self.max_attempts = max_attempts
        self._locale = locale
        self._merge_gap_s = merge_gap_s
        self._handles: Dict[str, _PollHandle] = {}

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    def register(self, job_ids: Iterable[str], restart: bool = False) -> List[str]:
        """Start polling every id in job_ids that is not already tracked.

        Args:
            job_ids: Job ids to track.
            restart: Re-poll ids whose previous run ended done/failed.

        Returns:
            The ids for which a new polling task was started.
        """
        loop = asyncio.get_running_loop()
        started: List[str] = []
        for job_id in job_ids:
            existing = self._handles.get(job_id)
            if existing is not None:
                if existing.active:
                    continue
                if existing.state.is_terminal and not restart:
                    continue

            handle = _PollHandle(
                job_id=job_id,
                state=PollState(
                    status=PollStatus.PROCESSING,
                    stage="uploading",
                    progress=INITIAL_PROGRESS,
                ),
            )
            self._handles[job_id] = handle
            handle.task = loop.create_task(self._run(handle), name="poll-{}".format(job_id))
            started.append(job_id)
            logger.info("Started polling job %s", job_id)
        return started

    def stop(self, job_id: str) -> bool:
        """Stop polling one job. Returns False if the id was never registered."""
        handle = self._handles.get(job_id)
        if handle is None:
            return False
        if handle.active:
            handle.cancelled = True
            logger.info("Stopped polling job %s", job_id)
        return True

    def stop_all(self) -> None:
        """Stop polling every job."""
        for job_id in list(self._handles):
            self.stop(job_id)

    def discard(self, job_id: str) -> bool:
        """Stop polling one job and forget its state."""
        self.stop(job_id)
        return self._handles.pop(job_id, None) is not None

    def is_polling(self, job_id: str) -> bool:
        handle = self._handles.get(job_id)
        return handle is not None and handle.active

    def get_state(self, job_id: str) -> Optional[PollState]:
        """Return a snapshot of one job's state, or None if unknown."""
        handle = self._handles.get(job_id)
        if handle is None:
            return None
        return copy.deepcopy(handle.state)

    def states(self) -> Dict[str, PollState]:
        """Return snapshots of every known job's state."""
        return {job_id: copy.deepcopy(h.state) for job_id, h in self._handles.items()}

    async def wait(self, job_id: str) -> Optional[PollState]:
        """Wait for one job's task to finish and return its final state."""
        handle = self._handles.get(job_id)
        if handle is None:
            return None
        if handle.task is not None:
            await asyncio.gather(handle.task, return_exceptions=True)
        return copy.deepcopy(handle.state)

    async def wait_all(self) -> Dict[str, PollState]:
        """Wait for every job's task to finish."""
        tasks = [h.task for h in self._handles.values() if h.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return self.states()

    async def aclose(self) -> None:
        """Stop all jobs and cancel tasks that are still sleeping or querying."""
        self.stop_all()
        tasks = [h.task for h in self._handles.values() if h.task is not None and not h.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Polling loop
    # ------------------------------------------------------------------

    async def _run(self, handle: _PollHandle) -> None:
        """Poll one job until it reaches an outcome or is stopped.

        Anything other than a transient query error fails the job, so a
        job that is not stopped always ends done or failed.
        """
        try:
            await self._poll(handle)
        except Exception:
            logger.exception("Polling job %s crashed", handle.job_id)
            await self._fail(handle, locale_string("failed", self._locale))
        finally:
            handle.finished = True

    async def _poll(self, handle: _PollHandle) -> None:
        state = handle.state
        while handle.active and state.attempt_count < self.max_attempts:
            state.attempt_count += 1

            try:
                result = await self._status_source.get_status(handle.job_id)
            except TRANSIENT_ERRORS as exc:
                logger.info(
                    "Polling error for job %s (attempt %d), continuing: %s",
                    handle.job_id, state.attempt_count, exc,
                )
            else:
                if not handle.active:
                    return

                if result.is_completed and result.transcript.strip():
                    await self._complete_from_status(handle, result)
                    return

                if result.is_failed:
                    await self._fail(
                        handle, result.error or locale_string("failed", self._locale),
                    )
                    return

                self._update_progress(state, result)

                if await self._meeting_has_transcript(handle):
                    return

            if state.attempt_count >= self.max_attempts or not handle.active:
                break
            await asyncio.sleep(self._poll_interval_s)

        if handle.active and state.attempt_count >= self.max_attempts:
            logger.warning(
                "Job %s timed out after %d attempts", handle.job_id, state.attempt_count,
            )
            await self._fail(handle, locale_string("timeout", self._locale))

    def _update_progress(self, state: PollState, result: StatusResult) -> None:
        """Advance the in-progress estimate; never moves backwards."""
        estimate = 20 + state.attempt_count * 2
        candidate = int(result.progress) if result.progress else estimate
        state.progress = min(MAX_PENDING_PROGRESS, max(state.progress, candidate))
        if result.stage:
            state.stage = result.stage
        else:
            state.stage = "queued" if result.status == "queued" else "transcribing"
        state.updated_at = time.time()

    async def _meeting_has_transcript(self, handle: _PollHandle) -> bool:
        """Backstop: finish the job if the stored meeting already has text.

        Returns True when the job was completed this way.
        """
        if self._meeting_source is None:
            return False
        try:
            meeting = await self._meeting_source.get_meeting(handle.job_id)
        except TRANSIENT_ERRORS as exc:
            logger.info("Meeting read failed for job %s, continuing: %s", handle.job_id, exc)
            return False

        if not handle.active or meeting is None:
            return False
        if len(meeting.transcript.strip()) <= BACKSTOP_MIN_CHARS:
            return False

        logger.info("Job %s complete via stored meeting transcript", handle.job_id)
        outcome = reconstruct_detailed(
            None, None, None, meeting.transcript, self._locale, self._merge_gap_s,
        )
        await self._finish(handle, meeting.transcript, outcome, None)
        return True

    async def _complete_from_status(self, handle: _PollHandle, result: StatusResult) -> None:
        logger.info(
            "Job %s complete via status (%d tokens, %d speakers)",
            handle.job_id, len(result.tokens), len(result.speaker_timelines),
        )
        if result.best_match is not None:
            logger.info(
                "Job %s best speaker match: %s (%s%%)",
                handle.job_id,
                result.best_match.sample_owner_email,
                result.best_match.confidence_percent,
            )
        outcome = reconstruct_status(result, self._locale, self._merge_gap_s)
        await self._finish(handle, result.transcript, outcome, result)

    async def _finish(
        self,
        handle: _PollHandle,
        transcript: str,
        outcome: ReconstructionResult,
        result: Optional[StatusResult],
    ) -> None:
        """Move to done and fire the completion callback (unless stopped)."""
        if not handle.active or handle.state.is_terminal:
            return

        state = handle.state
        state.status = PollStatus.DONE
        state.stage = "done"
        state.progress = 100
        state.transcript = transcript
        state.segments = list(outcome.segments)
        state.strategy = outcome.strategy
        state.consistent = outcome.consistency.consistent if outcome.consistency else None
        state.error = None
        state.updated_at = time.time()
        handle.finished = True

        await self._invoke(
            self._on_complete,
            handle.job_id,
            transcript,
            list(result.speaker_matches) if result else [],
            result.best_match if result else None,
            list(result.speaker_timelines) if result else [],
            list(result.learning_entries) if result else [],
            dict(result.speaker_name_map) if result else {},
        )

    async def _fail(self, handle: _PollHandle, message: str) -> None:
        """Move to failed and fire the error callback (unless stopped)."""
        if not handle.active or handle.state.is_terminal:
            return

        state = handle.state
        state.status = PollStatus.FAILED
        state.transcript = None
        state.error = message
        state.updated_at = time.time()
        handle.finished = True
        logger.info("Job %s failed: %s", handle.job_id, message)

        await self._invoke(self._on_error, handle.job_id, message)

    @staticmethod
    async def _invoke(callback: Optional[Callable[..., Any]], *args: Any) -> None:
        """Call a sync or async callback; log (don't propagate) its errors."""
        if callback is None:
            return
        try:
            outcome = callback(*args)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Callback %r raised for job %s", callback, args[0])


__all__ = [
    "JobPoller",
    "PollState",
    "PollStatus",
    "TERMINAL_STATUSES",
    "TRANSIENT_ERRORS",
]
