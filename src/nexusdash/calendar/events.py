"""Google Calendar event shapes: normalization, draft validation, request bodies.

Upstream payloads go through narrow pydantic models; anything that does not
fit is treated as malformed in exactly one place (:func:`normalize_google_event`
returns ``None``).  Caller drafts go through :func:`parse_event_draft`, which
checks fields in a fixed order and stops at the first failure.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from nexusdash.calendar.errors import (
    INVALID_DATE_ORDER,
    INVALID_DATES,
    INVALID_PAYLOAD,
    INVALID_SUMMARY,
    DraftValidationError,
)

UNTITLED_EVENT_SUMMARY = "(No title)"
DEFAULT_EVENT_STATUS = "confirmed"
SUMMARY_MAX_LENGTH = 200

# Google's own reason string for a token that lacks the required scope.
INSUFFICIENT_PERMISSIONS_REASON = "insufficientPermissions"

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_ERROR_MESSAGE_LIMIT = 500


# ---------------------------------------------------------------------------
# Upstream -> internal
# ---------------------------------------------------------------------------


class GoogleEventTime(BaseModel):
    """``start``/``end`` object of a Google event resource."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    day: str | None = Field(default=None, alias="date")
    date_time: str | None = Field(default=None, alias="dateTime")

    def value(self) -> str | None:
        return self.date_time if self.date_time is not None else self.day


class GoogleEventResource(BaseModel):
    """The subset of a Google Calendar event resource this service reads."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str | None = None
    status: str | None = None
    summary: str | None = None
    location: str | None = None
    description: str | None = None
    html_link: str | None = Field(default=None, alias="htmlLink")
    start: GoogleEventTime | None = None
    end: GoogleEventTime | None = None


@dataclass(frozen=True)
class CalendarEvent:
    """Normalized calendar event returned to callers.

    ``start``/``end`` are date-only strings when ``is_all_day``, otherwise the
    instants exactly as Google sent them.  All-day ``end`` stays exclusive.
    """

    id: str
    summary: str
    start: str
    end: str | None
    is_all_day: bool
    location: str | None = None
    description: str | None = None
    html_link: str | None = None
    status: str = DEFAULT_EVENT_STATUS

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "summary": self.summary,
            "start": self.start,
            "end": self.end,
            "isAllDay": self.is_all_day,
            "location": self.location,
            "description": self.description,
            "htmlLink": self.html_link,
            "status": self.status,
        }


def normalize_google_event(payload: Any) -> CalendarEvent | None:
    """Map a Google event resource to a :class:`CalendarEvent`.

    Returns ``None`` when the payload is not an object, fails validation, or
    lacks an ``id`` or a start value.
    """
    if not isinstance(payload, dict):
        return None
    try:
        resource = GoogleEventResource.model_validate(payload)
    except ValidationError:
        return None

    start = resource.start.value() if resource.start is not None else None
    if not resource.id or not start:
        return None

    is_all_day = bool(
        resource.start is not None and resource.start.day and not resource.start.date_time
    )
    summary = (resource.summary or "").strip() or UNTITLED_EVENT_SUMMARY

    return CalendarEvent(
        id=resource.id,
        summary=summary,
        start=start,
        end=resource.end.value() if resource.end is not None else None,
        is_all_day=is_all_day,
        location=resource.location,
        description=resource.description,
        html_link=resource.html_link,
        status=resource.status or DEFAULT_EVENT_STATUS,
    )


# ---------------------------------------------------------------------------
# Drafts (caller -> validated)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EventDraft:
    """A validated create/update payload."""

    summary: str
    start: str
    end: str
    is_all_day: bool
    location: str | None = None
    description: str | None = None


def _trimmed(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def is_date_only(value: str) -> bool:
    return bool(_DATE_ONLY_RE.match(value))


def parse_instant(value: str) -> datetime | None:
    """Parse an ISO-8601 date or date-time into an aware datetime.

    A date-only value is UTC midnight; a naive date-time is read in the host's
    local zone.  Returns ``None`` when *value* is not ISO-8601.
    """
    normalized = value.strip()
    if normalized.endswith(("Z", "z")):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        if is_date_only(normalized):
            return datetime.combine(date.fromisoformat(normalized), datetime.min.time(), UTC)
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.astimezone()
    return parsed


def parse_event_draft(raw: Any) -> EventDraft:
    """Validate a caller-supplied draft.

    Checks run in order and stop at the first failure: payload shape,
    summary, presence of both dates, then their format and order.

    Raises
    ------
    DraftValidationError
        With kind ``invalid-payload``, ``invalid-summary``, ``invalid-dates``
        or ``invalid-date-order``.
    """
    if not isinstance(raw, dict):
        raise DraftValidationError(INVALID_PAYLOAD)

    summary = _trimmed(raw.get("summary"))
    if not 1 <= len(summary) <= SUMMARY_MAX_LENGTH:
        raise DraftValidationError(INVALID_SUMMARY)

    start = _trimmed(raw.get("start"))
    end = _trimmed(raw.get("end"))
    if not start or not end:
        raise DraftValidationError(INVALID_DATES)

    is_all_day = bool(raw.get("isAllDay"))
    if is_all_day:
        if not is_date_only(start) or not is_date_only(end):
            raise DraftValidationError(INVALID_DATES)
        # YYYY-MM-DD sorts lexicographically
        if start > end:
            raise DraftValidationError(INVALID_DATE_ORDER)
    else:
        start_at = parse_instant(start)
        end_at = parse_instant(end)
        if start_at is None or end_at is None or end_at <= start_at:
            raise DraftValidationError(INVALID_DATE_ORDER)

    return EventDraft(
        summary=summary,
        start=start,
        end=end,
        is_all_day=is_all_day,
        location=_trimmed(raw.get("location")) or None,
        description=_trimmed(raw.get("description")) or None,
    )


# ---------------------------------------------------------------------------
# Internal -> upstream
# ---------------------------------------------------------------------------


def to_google_instant(value: str) -> str:
    """Format an instant as UTC ISO-8601 with milliseconds and a ``Z`` suffix."""
    parsed = parse_instant(value)
    if parsed is None:
        raise ValueError(f"Not an ISO-8601 instant: {value!r}")
    return parsed.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def exclusive_end_date(value: str) -> str:
    """Return the day after *value* (``YYYY-MM-DD``)."""
    return (date.fromisoformat(value) + timedelta(days=1)).isoformat()


def build_google_event_request(draft: EventDraft) -> dict[str, Any]:
    """Build the JSON body for an events insert or patch call."""
    body: dict[str, Any] = {"summary": draft.summary}
    if draft.location is not None:
        body["location"] = draft.location
    if draft.description is not None:
        body["description"] = draft.description

    if draft.is_all_day:
        body["start"] = {"date": draft.start}
        body["end"] = {"date": exclusive_end_date(draft.end)}
    else:
        body["start"] = {"dateTime": to_google_instant(draft.start)}
        body["end"] = {"dateTime": to_google_instant(draft.end)}
    return body


# ---------------------------------------------------------------------------
# Upstream error payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GoogleApiError:
    """Fields of a Google API error body; every field is optional."""

    reason: str | None = None
    code: str | int | None = None
    status: str | None = None
    message: str | None = None


def parse_google_error(payload: Any) -> GoogleApiError:
    """Best-effort parse of ``{"error": {"errors": [{"reason"}], ...}}``.

    Never raises; missing or mistyped fields come back as ``None``.
    """
    if not isinstance(payload, dict):
        return GoogleApiError()
    error = payload.get("error")
    if not isinstance(error, dict):
        return GoogleApiError()

    reason = None
    errors = error.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        first_reason = errors[0].get("reason")
        if isinstance(first_reason, str):
            reason = first_reason

    code = error.get("code")
    if isinstance(code, bool) or not isinstance(code, str | int):
        code = None
    status = error.get("status")
    message = error.get("message")
    return GoogleApiError(
        reason=reason,
        code=code,
        status=status if isinstance(status, str) else None,
        message=message if isinstance(message, str) else None,
    )


def summarize_google_api_error(
    *, status_code: int, reason_phrase: str, error: GoogleApiError
) -> dict[str, Any]:
    """Loggable summary of an upstream failure; never returned to callers."""
    summary: dict[str, Any] = {"status": status_code, "status_text": reason_phrase}
    if error.reason is not None:
        summary["reason"] = error.reason
    if error.code is not None:
        summary["error_code"] = error.code
    if error.status is not None:
        summary["error_status"] = error.status
    if error.message is not None:
        summary["error_message"] = error.message[:_ERROR_MESSAGE_LIMIT]
    return summary
