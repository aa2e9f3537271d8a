"""Shared enums for the URL shortener service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "AllocationState", "Outcome"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class AllocationState(StrEnum):
    """States of one shorten call.

    ``DONE_EXISTING``, ``DONE_NEW`` and ``EXHAUSTED`` are terminal.
    """

    START = "start"
    LOOKUP_EXISTING = "lookup_existing"
    GENERATE = "generate"
    CHECK = "check"
    SAVE = "save"
    DONE_EXISTING = "done_existing"
    DONE_NEW = "done_new"
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        return self in (AllocationState.DONE_EXISTING, AllocationState.DONE_NEW, AllocationState.EXHAUSTED)


class Outcome(StrEnum):
    """Metric label for how a shorten or resolve call ended."""

    EXISTING = "existing"
    CREATED = "created"
    FOUND = "found"
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    EXHAUSTED = "exhausted"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    DEADLINE_EXCEEDED = "deadline_exceeded"
