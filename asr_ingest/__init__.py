"""ASR Ingest — job polling and speaker-attributed transcript reconstruction.

WHY: Server-side transcription jobs finish asynchronously and return
diarization data of varying completeness. Callers need to wait for a job
without blocking on others, and then get a stable, speaker-labelled
transcript that never silently loses or duplicates text.

HOW: Three layers — ingest (api client + payload normalization), poll
(one asyncio task per job, server.jobs), and reconstruct (core strategies,
merger, name resolution, validator). Formatters and a small HTTP control
surface sit on top.

RULES:
- Raw payloads are normalized once, in api.models
- core is pure: no I/O, no clocks, no global state
- The poller owns all per-job state
"""

__version__ = "0.1.0"
