"""
Exception types raised by Prayer Wall services and storage adapters.

A transition whose precondition no longer holds is not an error: services
report it as False / zero changes. Everything here is something the caller
is expected to handle.
"""

from typing import List, Optional


class PrayerWallError(Exception):
    """Base class for all Prayer Wall errors."""


class ValidationError(PrayerWallError):
    """Input rejected: content length, required fields, malformed dates."""


class SensitiveContentWarning(ValidationError):
    """Content looks like it contains personal data and was not confirmed."""

    def __init__(self, detected_types: List[str]):
        self.detected_types = list(detected_types)
        super().__init__(
            f"Content may contain sensitive data ({', '.join(self.detected_types)}). "
            "Confirm to submit anyway."
        )


class RateLimited(PrayerWallError):
    """Too many submissions (or login attempts) from one submitter token."""

    def __init__(self, count: int, window_seconds: int, message: Optional[str] = None):
        self.count = count
        self.window_seconds = window_seconds
        super().__init__(
            message or f"{count} submissions in the last {window_seconds // 60} minutes. Try again later."
        )


class LoginThrottled(RateLimited):
    """Too many login attempts from one client."""


class InvalidCredentials(PrayerWallError):
    """Username or password did not match."""


class LastAdminError(PrayerWallError):
    """Refused to remove the last administrator, or an administrator removing themselves."""


class BackendUnavailable(PrayerWallError):
    """The storage backend could not be reached."""
