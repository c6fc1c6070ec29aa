"""Backend API package — async HTTP access to job status and meeting records.

WHY: The poller needs status and meeting reads for every job it tracks.
This package encapsulates all backend communication and the one place
where raw payloads are normalized into typed objects.

HOW: Uses httpx.AsyncClient for non-blocking HTTP. AsrStatusClient
provides one method per read. Payloads are parsed into the dataclasses
defined in models.py.

RULES:
- All HTTP calls go through AsrStatusClient (no direct httpx usage elsewhere)
- Authentication is via Bearer token from config
- Field-name versioning is resolved in StatusResult.from_dict only
"""

from asr_ingest.api.client import AsrStatusClient, StatusAPIError
from asr_ingest.api.models import MeetingRecord, SpeakerMatch, StatusResult

__all__ = ["AsrStatusClient", "MeetingRecord", "SpeakerMatch", "StatusAPIError", "StatusResult"]
