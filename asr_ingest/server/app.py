"""FastAPI application exposing the job poller over HTTP.

WHY: Dashboards and automation (curl, n8n, a web client) need to start
and stop tracking transcription jobs and read their progress without
embedding the poller. FastAPI provides automatic OpenAPI documentation,
request validation, and an event loop the poller's tasks can live on.

HOW: create_app() builds the app. Its lifespan opens one AsrStatusClient
and one JobPoller for the process (unless a poller is injected, which
tests do) and closes both on shutdown. Endpoints are thin: they convert
between the pydantic models and the poller's dataclasses.

RULES:
- All endpoints have OpenAPI summaries/descriptions and error schemas
- Error responses use a consistent ErrorResponse schema
- The poller is reached through app.state, never a module global
- Malformed reconstruct payloads return 422, unknown job ids 404
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, Response

from asr_ingest import __version__
from asr_ingest.api.client import AsrStatusClient
from asr_ingest.api.models import StatusResult
from asr_ingest.core.reconstruct import reconstruct_status
from asr_ingest.server.jobs import JobPoller
from asr_ingest.server.models import (
    ErrorResponse,
    HealthResponse,
    PollStateListResponse,
    PollStateResponse,
    ReconstructRequest,
    ReconstructResponse,
    RegisterJobsRequest,
    RegisterJobsResponse,
    SegmentModel,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_poller(request: Request) -> JobPoller:
    return request.app.state.poller


def _state_response(poller: JobPoller, job_id: str) -> PollStateResponse:
    state = poller.get_state(job_id)
    if state is None:
        raise HTTPException(status_code=404, detail="Unknown job '{}'".format(job_id))
    return PollStateResponse.from_state(job_id, state, poller.is_polling(job_id))


def _log_completion(job_id: str, transcript: str, *_extra) -> None:
    logger.info("Job %s done (%d chars)", job_id, len(transcript))


def _log_error(job_id: str, message: str) -> None:
    logger.warning("Job %s failed: %s", job_id, message)


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(poller: Optional[JobPoller] = None) -> FastAPI:
    """Build the FastAPI app.

    Args:
        poller: Pre-built poller (tests). When None, the lifespan creates
            one backed by an AsrStatusClient configured from the environment.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open the backend client and poller on startup, close on shutdown."""
        async with AsyncExitStack() as stack:
            if poller is None:
                client = await stack.enter_async_context(AsrStatusClient())
                app.state.poller = JobPoller(
                    client,
                    meeting_source=client,
                    on_complete=_log_completion,
                    on_error=_log_error,
                )
            else:
                app.state.poller = poller
            try:
                yield
            finally:
                await app.state.poller.aclose()

    app = FastAPI(
        lifespan=lifespan,
        title="ASR Ingest API",
        description=(
            "Track transcription jobs: register job ids, read their progress "
            "and speaker-attributed transcripts, stop tracking them, or run "
            "the transcript reconstruction on a saved status payload."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # -----------------------------------------------------------------------
    # Endpoints: Jobs
    # -----------------------------------------------------------------------

    @app.post(
        "/jobs",
        response_model=RegisterJobsResponse,
        status_code=202,
        tags=["jobs"],
        summary="Start polling jobs",
        description=(
            "Registers job ids with the poller. Ids already being polled, and "
            "ids that already finished (unless restart is true), are skipped."
        ),
    )
    async def register_jobs(body: RegisterJobsRequest, request: Request) -> RegisterJobsResponse:
        poller_ = _get_poller(request)
        registered = poller_.register(body.job_ids, restart=body.restart)
        skipped = [job_id for job_id in body.job_ids if job_id not in registered]
        return RegisterJobsResponse(registered=registered, skipped=skipped)

    @app.get(
        "/jobs",
        response_model=PollStateListResponse,
        tags=["jobs"],
        summary="List job states",
        description="Returns a snapshot of every job the poller knows about.",
    )
    async def list_jobs(request: Request) -> PollStateListResponse:
        poller_ = _get_poller(request)
        return PollStateListResponse(jobs=[
            PollStateResponse.from_state(job_id, state, poller_.is_polling(job_id))
            for job_id, state in poller_.states().items()
        ])

    @app.get(
        "/jobs/{job_id}",
        response_model=PollStateResponse,
        tags=["jobs"],
        summary="Get job state",
        description="Returns status, progress and (when done) the reconstructed transcript.",
        responses={404: {"model": ErrorResponse, "description": "Unknown job id"}},
    )
    async def get_job(job_id: str, request: Request) -> PollStateResponse:
        return _state_response(_get_poller(request), job_id)

    @app.delete(
        "/jobs/{job_id}",
        status_code=204,
        tags=["jobs"],
        summary="Stop polling a job",
        description=(
            "Stops the job's polling task. Its state is kept as it was and no "
            "completion or error callback fires afterwards."
        ),
        responses={404: {"model": ErrorResponse, "description": "Unknown job id"}},
    )
    async def stop_job(job_id: str, request: Request) -> Response:
        if not _get_poller(request).stop(job_id):
            raise HTTPException(status_code=404, detail="Unknown job '{}'".format(job_id))
        return Response(status_code=204)

    @app.delete(
        "/jobs",
        status_code=204,
        tags=["jobs"],
        summary="Stop polling all jobs",
    )
    async def stop_all_jobs(request: Request) -> Response:
        _get_poller(request).stop_all()
        return Response(status_code=204)

    # -----------------------------------------------------------------------
    # Endpoints: Reconstruction
    # -----------------------------------------------------------------------

    @app.post(
        "/reconstruct",
        response_model=ReconstructResponse,
        tags=["reconstruction"],
        summary="Reconstruct a saved status payload",
        description=(
            "Runs speaker-attributed transcript reconstruction on a raw status "
            "payload. Nothing is polled or stored."
        ),
        responses={422: {"model": ErrorResponse, "description": "Malformed payload"}},
    )
    async def reconstruct_payload(body: ReconstructRequest) -> ReconstructResponse:
        try:
            result = StatusResult.from_dict(body.payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise HTTPException(
                status_code=422,
                detail="Malformed status payload: {}".format(exc),
            )
        outcome = reconstruct_status(result, locale=body.locale)
        return ReconstructResponse(
            strategy=outcome.strategy,
            consistent=outcome.consistency.consistent if outcome.consistency else None,
            segments=[SegmentModel.from_segment(s) for s in outcome.segments],
        )

    # -----------------------------------------------------------------------
    # Endpoints: System
    # -----------------------------------------------------------------------

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["system"],
        summary="Health check",
    )
    async def health(request: Request) -> HealthResponse:
        poller_ = _get_poller(request)
        polling = sum(1 for job_id in poller_.states() if poller_.is_polling(job_id))
        return HealthResponse(status="ok", version=__version__, jobs_polling=polling)

    return app


app = create_app()


def run_api(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Entry point for the asr-ingest-api console script."""
    import uvicorn

    uvicorn.run(app, host=host, port=port)
