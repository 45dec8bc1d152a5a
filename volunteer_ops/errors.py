"""
Error taxonomy for check-in and dashboard operations.

Raw data-service failures are converted into one of these at the call site.
"""


class CheckInError(Exception):
    """Base class for errors surfaced to the operator."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequest(CheckInError):
    """Missing or malformed input. Never retried."""


class NotFound(CheckInError):
    """The requested position (or signup) does not exist."""


class TransientServiceError(CheckInError):
    """The data service kept failing after all retry attempts."""


class SubmissionError(CheckInError):
    """The arrival update failed. The selection stays active for a retry."""


class LocationUnavailable(Exception):
    """Geolocation was denied, unsupported, or timed out. Advisory only."""
