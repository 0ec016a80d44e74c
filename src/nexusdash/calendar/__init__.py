"""Google Calendar credential lifecycle and event proxy."""

from nexusdash.calendar.access import CalendarAccess, CalendarAccessResolver, has_write_scope
from nexusdash.calendar.credential_store import (
    CalendarCredential,
    CalendarCredentialStore,
    TokenUpdate,
    ensure_credentials_schema,
)
from nexusdash.calendar.errors import (
    CalendarError,
    DraftValidationError,
    MissingRefreshTokenError,
    TokenRequestError,
    TokenResponseError,
)
from nexusdash.calendar.events import CalendarEvent, EventDraft
from nexusdash.calendar.oauth import GoogleOAuthClient, TokenResponse
from nexusdash.calendar.results import Fail, Ok
from nexusdash.calendar.service import CalendarEventList, CalendarEventProxy, QueryWindow

__all__ = [
    "CalendarAccess",
    "CalendarAccessResolver",
    "CalendarCredential",
    "CalendarCredentialStore",
    "CalendarError",
    "CalendarEvent",
    "CalendarEventList",
    "CalendarEventProxy",
    "DraftValidationError",
    "EventDraft",
    "Fail",
    "GoogleOAuthClient",
    "MissingRefreshTokenError",
    "Ok",
    "QueryWindow",
    "TokenRequestError",
    "TokenResponse",
    "TokenResponseError",
    "TokenUpdate",
    "ensure_credentials_schema",
    "has_write_scope",
]
