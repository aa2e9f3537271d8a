"""Pydantic schemas for request/response validation in the URL shortener.

Schema Hierarchy
=================
::
    ShortenRequest (Input)
    └─ url: str (non-empty, syntactically valid URL)

    ShortenResponse (Output)
    └─ short_url: str (BASE_URL + "/" + key)

    ErrorResponse (Output)
    └─ error: str

    HealthResponse (Output)
    ├─ status: HealthStatus
    ├─ database: HealthStatus
    └─ lock: HealthStatus

Key Behaviours
===============
- URL syntax is checked with the validators library; nothing about the
  target's safety or reachability is checked.
- Validation failures are rendered as 400 ``{"error": ...}`` by the API layer.

Classes:
    ShortenRequest:  Input schema for POST /shorten.
    ShortenResponse:  Output schema for POST /shorten.
    ErrorResponse:  Body of every error response.
    HealthResponse:  Output schema for GET /health.
"""

import validators
from pydantic import BaseModel, Field, field_validator

from shortener.enums import HealthStatus

__all__ = [
    "ShortenRequest",
    "ShortenResponse",
    "ErrorResponse",
    "HealthResponse",
    "build_short_url",
]


class ShortenRequest(BaseModel):
    url: str = Field(..., description="Long URL to shorten, e.g. 'https://example.com/a'")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v:
            raise ValueError("URL cannot be empty")
        if not validators.url(v):
            raise ValueError("Invalid URL provided")
        return v


class ShortenResponse(BaseModel):
    short_url: str


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    lock: HealthStatus


def build_short_url(base_url: str, key: str) -> str:
    return f"{base_url.rstrip('/')}/{key}"
