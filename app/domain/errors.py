"""Errors raised by the subscription engine.

They subclass ValueError so callers that only care about "bad request"
semantics can keep catching ValueError.
"""


class SubscriptionError(ValueError):
    """Base class for engine errors."""


class NotFoundError(SubscriptionError):
    """Referenced subscription or user does not exist."""


class ValidationError(SubscriptionError):
    """Malformed input; nothing was written."""


class ConflictError(SubscriptionError):
    """The record changed since the caller read it, or the operation clashes with current state."""
