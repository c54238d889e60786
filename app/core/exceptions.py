"""
Typed error taxonomy for the swipe / match / conversation engine.

Every expected condition has its own class so callers (the HTTP layer, the
WebSocket handler, or any in-process consumer) can react to each one
differently. ``retryable`` tells the caller whether re-issuing the same
request may succeed; nothing here is fatal to the process.
"""

from __future__ import annotations
from typing import Optional
from uuid import UUID


class SwipeMatchError(Exception):
    """Base class for all engine errors."""

    code: str = "error"
    status_code: int = 400
    retryable: bool = False

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()

    def to_dict(self) -> dict:
        return {
            "detail": self.message,
            "code": self.code,
            "retryable": self.retryable,
        }


class DuplicateDecision(SwipeMatchError):
    """A decision on this profile already exists."""

    code = "duplicate_decision"
    status_code = 409

    def __init__(self, actor_id: UUID, subject_id: UUID):
        super().__init__(f"User {actor_id} already decided on {subject_id}")
        self.actor_id = actor_id
        self.subject_id = subject_id


class InvalidDecision(SwipeMatchError):
    """The decision is not valid."""

    code = "invalid_decision"
    status_code = 400


class InactiveMatch(SwipeMatchError):
    """This match is no longer active."""

    code = "inactive_match"
    status_code = 410

    def __init__(self, match_id: UUID):
        super().__init__(f"Match {match_id} is no longer active")
        self.match_id = match_id


class MatchNotFound(SwipeMatchError):
    """Match not found."""

    code = "match_not_found"
    status_code = 404

    def __init__(self, match_id: UUID):
        super().__init__(f"Match {match_id} not found")
        self.match_id = match_id


class NotMatchParticipant(SwipeMatchError):
    """Only the two matched users can do this."""

    code = "not_match_participant"
    status_code = 403


class InvalidMessage(SwipeMatchError):
    """The message content is not valid."""

    code = "invalid_message"
    status_code = 400


class NoRewindAvailable(SwipeMatchError):
    """Nothing left to rewind in this session."""

    code = "no_rewind_available"
    status_code = 409


class NotificationNotFound(SwipeMatchError):
    """Notification not found."""

    code = "notification_not_found"
    status_code = 404


class RateLimited(SwipeMatchError):
    """Too many requests."""

    code = "rate_limited"
    status_code = 429
    retryable = True

    def __init__(self, retry_after: int):
        super().__init__(f"Too many requests. Try again in {retry_after} seconds")
        self.retry_after = retry_after


class TransientBackendError(SwipeMatchError):
    """Something went wrong on our side. Please try again."""

    code = "transient_backend_error"
    status_code = 503
    retryable = True


class ConstraintConflict(SwipeMatchError):
    """
    A conditional insert lost a race against an identical insert.

    Raised only inside the engine; the Match Detector absorbs it as the
    idempotent no-op path and it never reaches a user.
    """

    code = "constraint_conflict"
    status_code = 409
