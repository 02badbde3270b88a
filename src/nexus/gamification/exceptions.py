"""Gamification error taxonomy.

Validation errors are rejected before anything is written. Storage errors
may leave nothing or the whole award applied, never half of it; callers treat
them as retryable. Uniqueness conflicts are not errors and never surface here.
"""

from __future__ import annotations


class GamificationError(Exception):
    """Base class for engine errors."""

    retryable: bool = False


class InvalidAwardError(GamificationError):
    """The award request was rejected without touching storage."""


class InvalidEventError(InvalidAwardError):
    """Unknown event type, malformed payload, or a point override on a standard type."""


class UserNotFoundError(InvalidAwardError):
    """The event references a user that does not exist."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class StorageError(GamificationError):
    """The storage layer failed; the award can be retried."""

    retryable = True
