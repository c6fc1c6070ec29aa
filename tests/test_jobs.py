"""Unit tests for the per-job poller.

WHY: The poller is where time, I/O and cancellation meet. A job that
polls forever, fires its callback twice, or writes state after being
stopped would surface as a stuck spinner or a transcript appearing in a
view the user already left. These tests pin down every transition.

HOW: Tests are organized by class, one per concern:
  - TestRegistration: register/stop/discard bookkeeping
  - TestCompletion: done transition, callback arguments, backstop
  - TestFailure: explicit failure and timeout
  - TestProgress: monotonic, capped progress and stage
  - TestTransientErrors: retried query and payload parse errors
  - TestUnexpectedErrors: any other error fails the job
  - TestCancellation: stop while a query is in flight, aclose
  - TestCallbacks: async callbacks and callback errors
Each test drives the poller with asyncio.run() and scripted sources.

RULES:
- Each test builds its own poller (no shared mutable state)
- poll_interval_s=0 so loops run without wall-clock waits
- locale="en" so message assertions don't depend on ASR_LOCALE
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from conftest import PayloadStatusSource, ScriptedStatusSource, StaticMeetingSource, processing

from asr_ingest.api.client import StatusAPIError
from asr_ingest.api.models import MeetingRecord, StatusResult
from asr_ingest.core.ir import SpeakerTimeline, TimeRange, Token
from asr_ingest.server.jobs import JobPoller, PollState, PollStatus


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_poller(source, **kwargs) -> JobPoller:
    """Create a JobPoller with fast defaults and optional overrides."""
    kwargs.setdefault("poll_interval_s", 0)
    kwargs.setdefault("max_attempts", 10)
    kwargs.setdefault("locale", "en")
    return JobPoller(source, **kwargs)


def _completed(transcript: str = "hi there bye") -> StatusResult:
    return StatusResult(
        status="completed",
        transcript=transcript,
        tokens=[Token("hi", 0.0, 0.3), Token("there", 0.3, 0.6), Token("bye", 1.0, 1.3)],
        speaker_timelines=[
            SpeakerTimeline("A", [TimeRange(0.0, 0.6)]),
            SpeakerTimeline("B", [TimeRange(0.9, 1.4)]),
        ],
        speaker_name_map={"A": "Anna"},
    )


def _poll_one(poller: JobPoller, job_id: str = "job-1") -> PollState:
    """Register one job and wait for its task to end."""

    async def scenario():
        poller.register([job_id])
        return await poller.wait(job_id)

    return asyncio.run(scenario())


class _BlockingSource:
    """Status source whose queries wait until released."""

    def __init__(self, result: StatusResult) -> None:
        self.result = result
        self.calls = 0
        self.started = None
        self.release = None

    def bind(self) -> None:
        # Events must be created on the running loop
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def get_status(self, job_id: str) -> StatusResult:
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return self.result


# ---------------------------------------------------------------------------
# TestRegistration
# ---------------------------------------------------------------------------


class TestRegistration:
    """register() starts one task per new id and initializes its state."""

    def test_initial_state_is_processing_uploading(self):
        source = _BlockingSource(processing())
        poller = _make_poller(source)

        async def scenario():
            source.bind()
            poller.register(["job-1"])
            state = poller.get_state("job-1")
            await poller.aclose()
            return state

        state = asyncio.run(scenario())
        assert state.status == PollStatus.PROCESSING
        assert state.stage == "uploading"
        assert state.progress == 10

    def test_duplicate_registration_is_ignored(self):
        source = _BlockingSource(processing())
        poller = _make_poller(source)

        async def scenario():
            source.bind()
            first = poller.register(["job-1", "job-2"])
            second = poller.register(["job-1", "job-3"])
            await poller.aclose()
            return first, second

        first, second = asyncio.run(scenario())
        assert first == ["job-1", "job-2"]
        assert second == ["job-3"]

    def test_finished_job_not_restarted_without_flag(self):
        source = ScriptedStatusSource([_completed()])
        poller = _make_poller(source)

        async def scenario():
            poller.register(["job-1"])
            await poller.wait("job-1")
            skipped = poller.register(["job-1"])
            restarted = poller.register(["job-1"], restart=True)
            await poller.wait("job-1")
            return skipped, restarted

        skipped, restarted = asyncio.run(scenario())
        assert skipped == []
        assert restarted == ["job-1"]
        assert len(source.calls) == 2

    def test_stop_unknown_job_returns_false(self):
        poller = _make_poller(ScriptedStatusSource([processing()]))
        assert poller.stop("nope") is False
        assert poller.get_state("nope") is None
        assert poller.is_polling("nope") is False

    def test_discard_forgets_state(self):
        poller = _make_poller(ScriptedStatusSource([_completed()]))
        _poll_one(poller)
        assert poller.discard("job-1") is True
        assert poller.get_state("job-1") is None
        assert poller.states() == {}

    def test_get_state_returns_snapshot(self):
        poller = _make_poller(ScriptedStatusSource([_completed()]))
        _poll_one(poller)
        snapshot = poller.get_state("job-1")
        snapshot.status = PollStatus.FAILED
        snapshot.segments.clear()
        fresh = poller.get_state("job-1")
        assert fresh.status == PollStatus.DONE
        assert fresh.segments

    def test_rejects_non_positive_max_attempts(self):
        with pytest.raises(ValueError):
            JobPoller(ScriptedStatusSource([processing()]), max_attempts=0)


# ---------------------------------------------------------------------------
# TestCompletion
# ---------------------------------------------------------------------------


class TestCompletion:
    """A completed status with a transcript moves the job to done."""

    def test_done_state_holds_reconstruction(self):
        source = ScriptedStatusSource([processing(), processing(), _completed()])
        poller = _make_poller(source)
        state = _poll_one(poller)

        assert state.status == PollStatus.DONE
        assert state.progress == 100
        assert state.transcript == "hi there bye"
        assert state.strategy == "word_level"
        assert state.consistent is True
        assert [s.text for s in state.segments] == ["hi there", "bye"]
        assert [s.speaker_name for s in state.segments] == ["Anna", "Speaker B"]
        assert state.attempt_count == 3
        assert poller.is_polling("job-1") is False

    def test_completion_callback_arguments(self):
        on_complete = MagicMock()
        result = _completed()
        poller = _make_poller(ScriptedStatusSource([result]), on_complete=on_complete)
        _poll_one(poller)

        on_complete.assert_called_once()
        args = on_complete.call_args.args
        assert len(args) == 7
        assert args[0] == "job-1"
        assert args[1] == "hi there bye"
        assert args[6] == {"A": "Anna"}

    def test_seven_parameter_callback_sees_final_segments(self):
        received = []

        def on_complete(job_id, transcript, matches, best_match, timelines, learning, name_map):
            received.append(poller.get_state(job_id).segments)

        poller = _make_poller(ScriptedStatusSource([_completed()]), on_complete=on_complete)
        _poll_one(poller)

        assert len(received) == 1
        assert [s.speaker for s in received[0]] == ["A", "B"]


    def test_completed_without_transcript_keeps_polling(self):
        source = ScriptedStatusSource([StatusResult(status="completed", transcript="  ")])
        poller = _make_poller(source, max_attempts=3)
        state = _poll_one(poller)
        assert state.status == PollStatus.FAILED
        assert len(source.calls) == 3

    def test_done_status_alias(self):
        result = _completed()
        result.status = "done"
        state = _poll_one(_make_poller(ScriptedStatusSource([result])))
        assert state.status == PollStatus.DONE

    def test_meeting_backstop_completes_job(self):
        transcript = "This meeting transcript is already stored and is clearly long enough."
        meetings = StaticMeetingSource(MeetingRecord(id="job-1", transcript=transcript))
        on_complete = MagicMock()
        source = ScriptedStatusSource([processing()])
        poller = _make_poller(source, meeting_source=meetings, on_complete=on_complete)
        state = _poll_one(poller)

        assert state.status == PollStatus.DONE
        assert state.transcript == transcript
        assert state.segments == []
        assert state.strategy == "none"
        assert len(source.calls) == 1
        on_complete.assert_called_once()
        assert on_complete.call_args.args[1] == transcript

    def test_short_meeting_transcript_is_not_a_backstop(self):
        meetings = StaticMeetingSource(MeetingRecord(id="job-1", transcript="x" * 50))
        source = ScriptedStatusSource([processing(), _completed()])
        poller = _make_poller(source, meeting_source=meetings)
        state = _poll_one(poller)
        assert state.strategy == "word_level"
        assert meetings.calls == 1


# ---------------------------------------------------------------------------
# TestFailure
# ---------------------------------------------------------------------------


class TestFailure:
    """Explicit failures and timeouts end in failed with one error callback."""

    def test_backend_error_message_is_kept(self):
        on_error = MagicMock()
        source = ScriptedStatusSource([StatusResult(status="failed", error="Audio unreadable")])
        state = _poll_one(_make_poller(source, on_error=on_error))

        assert state.status == PollStatus.FAILED
        assert state.error == "Audio unreadable"
        on_error.assert_called_once_with("job-1", "Audio unreadable")

    def test_default_failure_message(self):
        source = ScriptedStatusSource([StatusResult(status="error")])
        state = _poll_one(_make_poller(source))
        assert state.error == "Transcription failed"

    def test_localized_failure_message(self):
        source = ScriptedStatusSource([StatusResult(status="error")])
        state = _poll_one(_make_poller(source, locale="sv"))
        assert state.error == "Transkribering misslyckades"

    def test_timeout_after_exact_attempt_count(self):
        on_error = MagicMock()
        on_complete = MagicMock()
        source = ScriptedStatusSource([processing()])
        poller = _make_poller(source, max_attempts=7, on_error=on_error, on_complete=on_complete)

        async def scenario():
            poller.register(["job-1"])
            state = await poller.wait("job-1")
            # Give any stray task a chance to query again
            for _ in range(5):
                await asyncio.sleep(0)
            return state

        state = asyncio.run(scenario())
        assert state.status == PollStatus.FAILED
        assert state.error == "Transcription timed out"
        assert state.attempt_count == 7
        assert len(source.calls) == 7
        on_error.assert_called_once_with("job-1", "Transcription timed out")
        on_complete.assert_not_called()

    def test_timeout_distinguished_from_failure(self):
        timed_out = _poll_one(_make_poller(ScriptedStatusSource([processing()]), max_attempts=2))
        failed = _poll_one(_make_poller(ScriptedStatusSource([StatusResult(status="failed")])))
        assert timed_out.error != failed.error


# ---------------------------------------------------------------------------
# TestProgress
# ---------------------------------------------------------------------------


class TestProgress:
    """In-progress estimates only move forward and stay below 100."""

    def test_backend_progress_never_decreases(self):
        source = ScriptedStatusSource([processing(progress=50), processing(progress=30)])
        state = _poll_one(_make_poller(source, max_attempts=2))
        assert state.progress == 50

    def test_progress_capped_until_terminal(self):
        source = ScriptedStatusSource([processing(progress=99)])
        state = _poll_one(_make_poller(source, max_attempts=1))
        assert state.progress == 90

    def test_estimate_grows_with_attempts(self):
        source = ScriptedStatusSource([processing()])
        state = _poll_one(_make_poller(source, max_attempts=5))
        assert state.progress == 20 + 5 * 2

    def test_stage_from_backend_or_default(self):
        staged = _poll_one(_make_poller(
            ScriptedStatusSource([processing(stage="diarizing")]), max_attempts=1,
        ))
        queued = _poll_one(_make_poller(
            ScriptedStatusSource([StatusResult(status="queued")]), max_attempts=1,
        ))
        plain = _poll_one(_make_poller(ScriptedStatusSource([processing()]), max_attempts=1))
        assert staged.stage == "diarizing"
        assert queued.stage == "queued"
        assert plain.stage == "transcribing"


# ---------------------------------------------------------------------------
# TestTransientErrors
# ---------------------------------------------------------------------------


class TestTransientErrors:
    """Query errors count as attempts and are retried."""

    def test_network_error_then_completion(self):
        source = ScriptedStatusSource([
            httpx.ConnectError("connection refused"),
            StatusAPIError(503, "unavailable"),
            KeyError("status"),
            _completed(),
        ])
        state = _poll_one(_make_poller(source))
        assert state.status == PollStatus.DONE
        assert state.attempt_count == 4

    def test_errors_until_timeout(self):
        source = ScriptedStatusSource([httpx.ReadTimeout("slow")])
        state = _poll_one(_make_poller(source, max_attempts=3))
        assert state.status == PollStatus.FAILED
        assert state.error == "Transcription timed out"
        assert len(source.calls) == 3

    def test_malformed_payloads_then_completion(self, completed_payload):
        source = PayloadStatusSource([
            {"status": "processing", "lyraSpeakerNames": []},
            {"status": "processing", "words": ["hi"]},
            {"status": "processing", "lyraMatch": "anna@example.com"},
            completed_payload,
        ])
        on_complete = MagicMock()
        poller = _make_poller(source, on_complete=on_complete)
        state = _poll_one(poller)

        assert state.status == PollStatus.DONE
        assert state.attempt_count == 4
        assert len(source.calls) == 4
        assert [s.speaker_name for s in state.segments] == ["Anna Berg", "Speaker 2"]
        on_complete.assert_called_once()
        assert poller.is_polling("job-1") is False

    def test_malformed_payloads_until_timeout(self):
        on_error = MagicMock()
        source = PayloadStatusSource([{"status": "processing", "lyraSpeakerNames": []}])
        state = _poll_one(_make_poller(source, max_attempts=3, on_error=on_error))

        assert state.status == PollStatus.FAILED
        assert state.error == "Transcription timed out"
        assert len(source.calls) == 3
        on_error.assert_called_once_with("job-1", "Transcription timed out")


class TestUnexpectedErrors:
    """Errors outside the transient set fail the job instead of stranding it."""

    def test_source_crash_fails_job(self):
        on_error = MagicMock()
        source = ScriptedStatusSource([RuntimeError("backend adapter bug"), _completed()])
        poller = _make_poller(source, on_error=on_error)
        state = _poll_one(poller)

        assert state.status == PollStatus.FAILED
        assert state.error == "Transcription failed"
        assert len(source.calls) == 1
        assert poller.is_polling("job-1") is False
        on_error.assert_called_once_with("job-1", "Transcription failed")

    def test_reconstruction_crash_fails_job(self, monkeypatch, caplog):
        def broken(*args, **kwargs):
            raise RuntimeError("reconstruction bug")

        monkeypatch.setattr("asr_ingest.server.jobs.reconstruct_status", broken)
        on_complete = MagicMock()
        on_error = MagicMock()
        poller = _make_poller(
            ScriptedStatusSource([_completed()]), on_complete=on_complete, on_error=on_error,
        )
        with caplog.at_level("ERROR", logger="asr_ingest.server.jobs"):
            state = _poll_one(poller)

        assert state.status == PollStatus.FAILED
        assert "reconstruction bug" in caplog.text
        on_complete.assert_not_called()
        on_error.assert_called_once()



# ---------------------------------------------------------------------------
# TestCancellation
# ---------------------------------------------------------------------------


class TestCancellation:
    """Stopped jobs emit nothing and keep their state."""

    def test_stop_during_in_flight_query(self):
        on_complete = MagicMock()
        on_error = MagicMock()
        source = _BlockingSource(_completed())
        poller = _make_poller(source, on_complete=on_complete, on_error=on_error)

        async def scenario():
            source.bind()
            poller.register(["job-1"])
            await source.started.wait()
            poller.stop("job-1")
            at_cancel = poller.get_state("job-1")
            source.release.set()
            final = await poller.wait("job-1")
            return at_cancel, final

        at_cancel, final = asyncio.run(scenario())
        assert final == at_cancel
        assert final.status == PollStatus.PROCESSING
        assert final.attempt_count == 1
        assert source.calls == 1
        on_complete.assert_not_called()
        on_error.assert_not_called()
        assert poller.is_polling("job-1") is False

    def test_stop_all(self):
        source = _BlockingSource(processing())
        poller = _make_poller(source)

        async def scenario():
            source.bind()
            poller.register(["a", "b"])
            await source.started.wait()
            poller.stop_all()
            polling = [poller.is_polling("a"), poller.is_polling("b")]
            source.release.set()
            await poller.wait_all()
            return polling

        assert asyncio.run(scenario()) == [False, False]

    def test_aclose_cancels_sleeping_tasks(self):
        on_error = MagicMock()
        source = ScriptedStatusSource([processing()])
        poller = _make_poller(source, poll_interval_s=3600, on_error=on_error)

        async def scenario():
            poller.register(["job-1"])
            while not source.calls:
                await asyncio.sleep(0)
            await asyncio.wait_for(poller.aclose(), timeout=5)
            return poller.get_state("job-1")

        state = asyncio.run(scenario())
        assert state.status == PollStatus.PROCESSING
        assert len(source.calls) == 1
        on_error.assert_not_called()

    def test_reregistered_job_gets_fresh_state(self):
        source = _BlockingSource(_completed())
        poller = _make_poller(source)

        async def scenario():
            source.bind()
            poller.register(["job-1"])
            await source.started.wait()
            poller.stop("job-1")
            restarted = poller.register(["job-1"])
            source.release.set()
            await poller.wait_all()
            await poller.wait("job-1")
            return restarted

        restarted = asyncio.run(scenario())
        assert restarted == ["job-1"]
        state = poller.get_state("job-1")
        assert state.status == PollStatus.DONE
        assert state.attempt_count == 1


# ---------------------------------------------------------------------------
# TestCallbacks
# ---------------------------------------------------------------------------


class TestCallbacks:
    """Callbacks may be coroutines; their errors never change the outcome."""

    def test_async_completion_callback_is_awaited(self):
        on_complete = AsyncMock()
        _poll_one(_make_poller(ScriptedStatusSource([_completed()]), on_complete=on_complete))
        on_complete.assert_awaited_once()

    def test_callback_exception_is_logged(self, caplog):
        on_complete = MagicMock(side_effect=RuntimeError("listener broke"))
        poller = _make_poller(ScriptedStatusSource([_completed()]), on_complete=on_complete)
        with caplog.at_level("ERROR", logger="asr_ingest.server.jobs"):
            state = _poll_one(poller)
        assert state.status == PollStatus.DONE
        assert "listener broke" in caplog.text
