"""Async HTTP client for the transcription backend's status and meeting reads.

WHY: The poller needs two reads per job: the transcription status (with
the transcript and diarization data once finished) and, as a backstop,
the stored meeting record. This module hides the HTTP details behind one
client class so the poller, CLI and tests don't need to know them.

HOW: Uses httpx.AsyncClient for non-blocking HTTP. AsrStatusClient is an
async context manager — enter it to get an authenticated client, exit to
close the connection pool. Responses are parsed into the typed payloads
from api.models.

RULES:
- Always use the async context manager (async with AsrStatusClient(...) as client:)
- Non-2xx responses raise StatusAPIError (except 404 on meeting reads)
- Network errors propagate as httpx.HTTPError; the poller retries them
- A custom transport can be injected for tests
"""

from __future__ import annotations

from typing import Optional

import httpx

from asr_ingest.api.models import MeetingRecord, StatusResult
from asr_ingest.config import ASR_BASE_URL, load_api_key


class StatusAPIError(Exception):
    """Raised when the backend returns an error response.

    WHY: Callers need a typed exception to distinguish backend HTTP errors
    from network errors or malformed payloads.

    RULES:
    - Always include status_code and message
    - message is the response body text or a summary
    """

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"ASR API error {status_code}: {message}")


class AsrStatusClient:
    """Async client for job-status and meeting-record reads.

    WHY: Provides a typed interface for the two reads the poller makes on
    every attempt. Handles auth and error wrapping.

    HOW: Wraps httpx.AsyncClient with Bearer token auth. Use as an async
    context manager to ensure the connection pool is properly closed.

    RULES:
    - api_key defaults to load_api_key() from .env
    - base_url defaults to ASR_BASE_URL from config
    - transport is for tests (httpx.MockTransport)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = api_key or load_api_key()
        self._base_url = (base_url or ASR_BASE_URL).rstrip("/")
        self._timeout_s = timeout_s
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> AsrStatusClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=httpx.Timeout(self._timeout_s, connect=10.0),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        """Return the active httpx client, raising if not in context manager."""
        if self._client is None:
            raise RuntimeError(
                "AsrStatusClient must be used as an async context manager: "
                "async with AsrStatusClient() as client: ..."
            )
        return self._client

    async def get_status(self, job_id: str) -> StatusResult:
        """Query the transcription status of one job.

        RULES:
        - GET /asr/status?meetingId={job_id}
        - Raises StatusAPIError on non-200 responses
        - Raises KeyError/ValueError/TypeError on malformed payloads

        Args:
            job_id: The job (meeting) identifier.

        Returns:
            The normalized StatusResult.
        """
        client = self._ensure_client()
        resp = await client.get("/asr/status", params={"meetingId": job_id})
        if resp.status_code != 200:
            raise StatusAPIError(resp.status_code, resp.text)
        return StatusResult.from_dict(resp.json())

    async def get_meeting(self, meeting_id: str) -> Optional[MeetingRecord]:
        """Read the stored meeting record, or None if it does not exist.

        RULES:
        - GET /meetings/{meeting_id}
        - 404 returns None
        - Other non-200 responses raise StatusAPIError
        """
        client = self._ensure_client()
        resp = await client.get(f"/meetings/{meeting_id}")
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise StatusAPIError(resp.status_code, resp.text)
        data = resp.json()
        # Some deployments wrap the record: {"meeting": {...}}
        if isinstance(data, dict) and isinstance(data.get("meeting"), dict):
            data = data["meeting"]
        return MeetingRecord.from_dict(data)
