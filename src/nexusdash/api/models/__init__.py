"""Shared Pydantic response models for the nexusdash API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """Structured error payload."""

    code: str
    message: str
    details: dict | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope for unhandled failures."""

    error: ErrorDetail


class CalendarStatusResponse(BaseModel):
    """Connection state of an owner's calendar.  Never carries token material."""

    model_config = ConfigDict(populate_by_name=True)

    connected: bool
    revoked: bool = False
    can_write: bool = Field(default=False, alias="canWrite")
    calendar_id: str | None = Field(default=None, alias="calendarId")
    expires_at: datetime | None = Field(default=None, alias="expiresAt")
