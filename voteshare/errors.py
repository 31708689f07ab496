"""
Voteshare -- error kinds.

Every failure the relay can report maps onto one of these classes.  None
of them is fatal to the host process: callers log and drop the offending
unit of work (one vote, one message, one batch).
"""

from __future__ import annotations


class VoteshareError(Exception):
    """Base class for all voteshare errors."""
    pass


class InvalidArgumentError(VoteshareError, ValueError):
    """Raised when a vote cannot be encoded (absent or oversized fields)."""
    pass


class MalformedMessageError(VoteshareError, ValueError):
    """Raised when channel bytes cannot be decoded into a vote."""
    pass


class BrokerError(VoteshareError):
    """Raised when the Redis broker fails during acquire/publish/subscribe."""
    pass


class IllegalStateError(VoteshareError, RuntimeError):
    """Raised when the broker pool is used after it has been shut down."""
    pass
