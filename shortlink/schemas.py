"""Pydantic schemas for request/response validation in the shortlink service.

API request and response bodies, plus the two value types that travel
through the click pipeline (ClickDelta into the store, AccessNotification
through the dispatcher).

Schema Hierarchy
=================
::
    LinkCreate (Input)
    ├─ url: str (validated URL)
    ├─ alias: str | None (optional, validated)
    └─ expires_at: datetime | None (optional)

    LinkResponse (Output)
    ├─ short_code, original_url, short_url
    ├─ created_at
    └─ expires_at

    LinkInfo (Output)
    └─ LinkResponse fields + clicks, cached

    LinkAnalytics (Output)
    └─ LinkResponse fields + clicks, recent_clicks[RecentClick]

    ClickDelta (Pipeline)
    ├─ short_code: str
    └─ count: int >= 1

    AccessNotification (Pipeline)
    ├─ short_code: str
    ├─ client_ip: str | None
    └─ occurred_at: datetime

Key Behaviours
===============
- Target URLs are checked with validators.url.
- Aliases must be alphanumeric and 3-20 characters long.
- expires_at input is normalised to UTC; naive values are read as UTC.

Classes:
    LinkCreate:  Input schema for shorten requests.
    LinkResponse:  Output schema for created links.
    LinkInfo:  Output schema for link info.
    LinkAnalytics:  Output schema for link analytics.
    RecentClick:  One entry of the analytics click history.
    DeleteResponse:  Output schema for deletions.
    HealthResponse:  Output schema for health checks.
    ClickDelta:  One aggregated counter increment.
    AccessNotification:  One successful resolution handed to the dispatcher.
"""

import datetime
from dataclasses import dataclass, field

import validators
from pydantic import BaseModel, Field, field_validator

from shortlink.enums import HealthStatus
from shortlink.models import as_utc, utcnow

__all__ = [
    "LinkCreate",
    "LinkResponse",
    "LinkInfo",
    "LinkAnalytics",
    "RecentClick",
    "DeleteResponse",
    "HealthResponse",
    "ClickDelta",
    "AccessNotification",
]


class LinkCreate(BaseModel):
    url: str
    alias: str | None = None
    expires_at: datetime.datetime | None = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not validators.url(v):
            raise ValueError("Invalid URL provided")
        return v

    @field_validator("alias")
    @classmethod
    def validate_alias(cls, v: str | None) -> str | None:
        if v is not None:
            if len(v) < 3 or len(v) > 20:
                raise ValueError("Alias must be between 3 and 20 characters")
            if not v.isalnum():
                raise ValueError("Alias must be alphanumeric")
        return v

    @field_validator("expires_at")
    @classmethod
    def normalize_expires_at(cls, v: datetime.datetime | None) -> datetime.datetime | None:
        return as_utc(v) if v is not None else None


class LinkResponse(BaseModel):
    short_code: str
    original_url: str
    short_url: str
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None


class LinkInfo(LinkResponse):
    clicks: int
    cached: bool


class RecentClick(BaseModel):
    ip_address: str
    clicked_at: datetime.datetime

    model_config = {"from_attributes": True}


class LinkAnalytics(LinkResponse):
    clicks: int
    recent_clicks: list[RecentClick]


class DeleteResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class ClickDelta(BaseModel):
    """Aggregated click increment for one short code, applied in a single batch."""

    short_code: str = Field(..., description="Short code being counted, e.g. 'abc123'")
    count: int = Field(
        ...,
        description="How many accesses were buffered for this short_code since the last flush.",
        ge=1,
    )


@dataclass(frozen=True, slots=True)
class AccessNotification:
    short_code: str
    client_ip: str | None = None
    occurred_at: datetime.datetime = field(default_factory=utcnow)
