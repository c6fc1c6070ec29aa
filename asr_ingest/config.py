"""Configuration constants, locale strings, and .env loading.

WHY: Centralizes every tunable value of the poller and the reconstructor
so they are easy to find, update, and override. Poll cadence, attempt
budget, interval tolerance, merge gap, and validation thresholds are
plain data, not buried in logic.

HOW: python-dotenv loads the .env file on import. Constants are defined
as module-level values, each overridable via an environment variable.
LOCALE_STRINGS holds the user-visible words and messages per locale.
load_api_key() provides a clear error when the key is missing.

RULES:
- All defaults can be overridden via environment variables
- Unknown locales fall back to DEFAULT_LOCALE ("en")
- Validation thresholds are heuristics; treat them as tuning knobs
- API key is loaded from .env via python-dotenv, never hardcoded
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

# Load .env from the project root (where the script is run from)
load_dotenv()

# ---------------------------------------------------------------------------
# Locale strings
# ---------------------------------------------------------------------------

DEFAULT_LOCALE = "en"

LOCALE_STRINGS: dict[str, dict[str, str]] = {
    "en": {
        "speaker": "Speaker",
        "failed": "Transcription failed",
        "timeout": "Transcription timed out",
    },
    "sv": {
        "speaker": "Talare",
        "failed": "Transkribering misslyckades",
        "timeout": "Tidsgränsen överskreds",
    },
}


def locale_string(key: str, locale: str | None = None) -> str:
    """Return the localized string for key.

    RULES:
    - locale=None uses the configured LOCALE
    - Unknown locales fall back to DEFAULT_LOCALE
    """
    table = LOCALE_STRINGS.get(locale or LOCALE, LOCALE_STRINGS[DEFAULT_LOCALE])
    return table.get(key, LOCALE_STRINGS[DEFAULT_LOCALE][key])


# ---------------------------------------------------------------------------
# Reconstruction tuning
# ---------------------------------------------------------------------------

INTERVAL_TOLERANCE_S = 0.05
"""Slack around each speaker range when attributing a token by time."""

UNKNOWN_SPEAKER = "unknown"
"""Sentinel label for tokens no speaker range covers."""

MERGE_GAP_S = float(os.getenv("ASR_MERGE_GAP_S", "1.0"))
"""Same-speaker ranges closer than this are folded in the proportional strategy."""

VALIDATION_MIN_RATIO = float(os.getenv("ASR_VALIDATION_MIN_RATIO", "0.6"))
VALIDATION_MAX_RATIO = float(os.getenv("ASR_VALIDATION_MAX_RATIO", "1.4"))

# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------

POLL_INTERVAL_S = float(os.getenv("ASR_POLL_INTERVAL_S", "4.0"))
MAX_POLL_ATTEMPTS = int(os.getenv("ASR_MAX_POLL_ATTEMPTS", "450"))  # ~30 minutes at 4s
BACKSTOP_MIN_CHARS = 50
"""A stored meeting transcript longer than this counts as a finished job."""

INITIAL_PROGRESS = 10
MAX_PENDING_PROGRESS = 90

# ---------------------------------------------------------------------------
# API configuration defaults
# ---------------------------------------------------------------------------

ASR_BASE_URL = os.getenv("ASR_BASE_URL", "https://api.example.com")
LOCALE = os.getenv("ASR_LOCALE", DEFAULT_LOCALE)


def load_api_key() -> str:
    """Load the backend API key from the environment.

    WHY: Status and meeting reads are authenticated. Loading the key from
    the environment (via .env) keeps it out of source code.

    HOW: Reads ASR_API_KEY from os.environ (populated by python-dotenv).

    RULES:
    - Raises ValueError if the key is missing or empty
    - Never returns a default/placeholder value
    """
    key = os.getenv("ASR_API_KEY", "").strip()
    if not key:
        raise ValueError(
            "ASR API key not configured. "
            "Add ASR_API_KEY to the .env file in the app folder."
        )
    return key
