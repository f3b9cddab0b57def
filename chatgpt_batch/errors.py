"""Failure taxonomy for the scrape pipeline.

Each exception carries a machine-readable ``code`` so callers can tell
"log in first" apart from "page layout changed" and "browser problem".
"""

from __future__ import annotations

from typing import Optional

from .constants import TRANSPORT_ERROR_MARKERS


class ScrapeError(Exception):
    """Navigation, timeout or evaluation fault during a scrape."""

    code = "SCRAPE_ERROR"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.reason}


class LoginRequired(ScrapeError):
    """The page shows a login affordance; only a human login can fix it."""

    code = "LOGIN_REQUIRED"

    def __init__(self, reason: str = "Please log in to ChatGPT first using the login flow."):
        super().__init__(f"LOGIN_REQUIRED: {reason}")


class ExtractionFailed(ScrapeError):
    code = "EXTRACTION_FAILED"


class TransportError(ScrapeError):
    """Connection to the browser was reset or hung up."""

    code = "TRANSPORT_ERROR"


class BrowserLaunchFailed(ScrapeError):
    code = "BROWSER_LAUNCH_FAILED"

    def __init__(self, attempts: int, last_error: Optional[BaseException]):
        detail = str(last_error) if last_error else "Unknown error"
        super().__init__(
            f"Failed to launch browser after {attempts} attempts. Last error: {detail}"
        )
        self.last_error = last_error


class SessionResetFailed(Exception):
    """The browser profile directory could not be removed."""


def is_transport_error(exc: BaseException) -> bool:
    """Check whether an exception looks like a dropped browser connection."""
    if isinstance(exc, TransportError):
        return True
    if isinstance(exc, (ConnectionResetError, BrokenPipeError)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in TRANSPORT_ERROR_MARKERS)
