from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Check:
    """Outcome of one smoke step."""

    name: str
    ok: bool
    detail: str = ""


class SmokeError(RuntimeError):
    """Raised when the smoke flow cannot proceed (e.g., health never ready)."""


class UploadError(SmokeError):
    """Raised when an upload the server should accept is refused."""


class FetchError(SmokeError):
    """Raised when an uploaded file cannot be read back."""
