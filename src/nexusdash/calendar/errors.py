"""Error types raised by the calendar core.

Every error carries a ``kind`` string from the calendar error taxonomy.
Callers match on ``kind``; the exception message is for logs only and never
contains token material.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Error kinds (part of the caller contract)
# ---------------------------------------------------------------------------

NOT_CONNECTED = "not-connected"
REAUTHORIZATION_REQUIRED = "reauthorization-required"
INSUFFICIENT_SCOPE = "insufficient-scope"
INVALID_PAYLOAD = "invalid-payload"
INVALID_SUMMARY = "invalid-summary"
INVALID_DATES = "invalid-dates"
INVALID_DATE_ORDER = "invalid-date-order"
EVENT_NOT_FOUND = "event-not-found"
CALENDAR_FETCH_FAILED = "calendar-fetch-failed"
CALENDAR_CREATE_FAILED = "calendar-create-failed"
CALENDAR_UPDATE_FAILED = "calendar-update-failed"
CALENDAR_DELETE_FAILED = "calendar-delete-failed"
CALENDAR_INTERNAL_ERROR = "calendar-internal-error"
MISSING_REFRESH_TOKEN = "missing-refresh-token"
TOKEN_REQUEST_FAILED = "token-request-failed"
INVALID_TOKEN_RESPONSE = "invalid-token-response"


class CalendarError(RuntimeError):
    """Base error for the calendar core."""

    kind: str = CALENDAR_INTERNAL_ERROR

    def __init__(self, message: str | None = None, *, kind: str | None = None) -> None:
        if kind is not None:
            self.kind = kind
        super().__init__(message or self.kind)


class TokenRequestError(CalendarError):
    """Raised when the OAuth token endpoint rejects a grant.

    ``error_code`` is the provider's ``error`` field (e.g. ``invalid_grant``)
    or ``token-request-failed`` when the provider gave none.
    """

    def __init__(self, error_code: str, message: str | None = None) -> None:
        self.error_code = error_code
        super().__init__(message or error_code, kind=error_code)


class TokenResponseError(TokenRequestError):
    """Raised when a successful token response has an unusable shape."""

    def __init__(self, message: str) -> None:
        super().__init__(INVALID_TOKEN_RESPONSE, message)


class MissingRefreshTokenError(CalendarError):
    """Raised when no refresh token can be established for an upsert."""

    kind = MISSING_REFRESH_TOKEN


class DraftValidationError(CalendarError):
    """Raised when a caller-supplied event draft fails validation."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"Event draft rejected: {kind}", kind=kind)
