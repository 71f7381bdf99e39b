"""Pydantic schemas for request/response validation and stored record payloads.

Schema Hierarchy
=================
::
    URLCreate (Input)
    └─ url: str (validated URL)

    ShortenResult (Output)
    └─ result: str (full short URL)

    BatchShortenItem (Input)          BatchShortenResult (Output)
    ├─ correlation_id: str            ├─ correlation_id: str
    └─ original_url: str              └─ short_url: str

    OwnedURL (Storage result)         UserURLResponse (Output)
    ├─ original_url: str              ├─ short_url: str
    └─ short_code: str                └─ original_url: str

    URLRecordPayload (File backend row)
    ├─ id: int
    ├─ user_id: str
    ├─ url: str
    ├─ short_url: str
    └─ is_deleted: bool

    HealthResponse (Output)
    ├─ status: HealthStatus
    ├─ storage: HealthStatus
    └─ pipeline: HealthStatus

Key Behaviours
===============
- URL validation uses the validators library for RFC compliance.
- URLRecordPayload is the on-disk line format of the file backend and is
  configured for ORM attribute mapping so SQL rows convert the same way.
"""

import validators
from pydantic import BaseModel, Field, field_validator

from shortener.enums import HealthStatus

__all__ = [
    "URLCreate",
    "ShortenResult",
    "BatchShortenItem",
    "BatchShortenResult",
    "OwnedURL",
    "UserURLResponse",
    "URLRecordPayload",
    "HealthResponse",
]


def _check_url(v: str) -> str:
    if not validators.url(v):
        raise ValueError("Invalid URL provided")
    return v


class URLCreate(BaseModel):
    url: str

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _check_url(v)


class ShortenResult(BaseModel):
    result: str


class BatchShortenItem(BaseModel):
    correlation_id: str
    original_url: str

    @field_validator("original_url")
    @classmethod
    def validate_original_url(cls, v: str) -> str:
        return _check_url(v)


class BatchShortenResult(BaseModel):
    correlation_id: str
    short_url: str


class OwnedURL(BaseModel):
    """A live mapping returned by an owner-scoped scan."""

    original_url: str
    short_code: str


class UserURLResponse(BaseModel):
    short_url: str
    original_url: str


class URLRecordPayload(BaseModel):
    """One stored mapping, shared between the file backend and tests."""

    id: int = Field(..., ge=1)
    user_id: str
    url: str
    short_url: str
    is_deleted: bool = False

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: HealthStatus
    storage: HealthStatus
    pipeline: HealthStatus
