"""Domain errors shared by the persistence helpers, the feed and the swipe engine.

The HTTP layer in ``main.py`` maps each class to a status code; the swipe
engine catches them and turns them into outcomes instead of letting them
escape a request.
"""
from __future__ import annotations

from typing import Optional


class CheerError(Exception):
    """Base class for errors the application knows how to present."""

    code = "error"
    message = "Something went wrong"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class ConflictError(CheerError):
    """A decision already exists for this (seeker, job) pair."""

    messages = {
        "already_applied": "You've already applied to this job",
        "already_skipped": "You've already passed on this job",
        "profile_exists": "A seeker profile already exists for this account",
    }

    def __init__(self, reason: str, message: Optional[str] = None) -> None:
        self.code = reason
        super().__init__(message or self.messages.get(reason, "Conflicting request"))


class TransientIOError(CheerError):
    code = "transient_io"
    message = "The service is temporarily unavailable, please try again"


class NotFoundError(CheerError):
    code = "not_found"

    def __init__(self, resource: str, identifier: Optional[str] = None) -> None:
        self.resource = resource
        self.identifier = identifier
        detail = f"{resource} not found" if identifier is None else f"{resource} {identifier} not found"
        super().__init__(detail)


class InvalidTransitionError(CheerError):
    code = "invalid_transition"

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Application status cannot move from {current} to {requested}")
