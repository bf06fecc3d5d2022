"""Exception taxonomy shared across the interaction package."""

from __future__ import annotations


class InteractionError(Exception):
    """Base class for all interaction tracker errors."""


class NotReady(InteractionError):
    """Raised when the matcher is used before enrollment has completed."""


class NotFound(InteractionError, KeyError):
    """Raised when an identity lookup does not resolve."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class UnknownIdentity(InteractionError):
    """Raised when an aggregation event references an unknown identity pair."""

    def __init__(self, sender_id: str, receiver_id: str) -> None:
        super().__init__(f"Unknown identity pair sender={sender_id!r} receiver={receiver_id!r}")
        self.sender_id = sender_id
        self.receiver_id = receiver_id


class DetectionFailure(InteractionError):
    """Transient frame source or detector failure for a single tick."""


class EnrollmentError(InteractionError):
    """Enrollment finished with no matchable identity."""
