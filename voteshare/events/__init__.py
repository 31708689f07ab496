"""
Voteshare event types and wire codec.

Usage:
    from voteshare.events import Vote, encode_vote, decode_vote, VOTE_CHANNEL
"""
from __future__ import annotations

from voteshare.events.codec import (
    MAX_FIELD_BYTES,
    VOTE_CHANNEL,
    WIRE_FIELDS,
    decode_vote,
    encode_vote,
)
from voteshare.events.vote import Vote

__all__ = [
    "Vote",
    "VOTE_CHANNEL",
    "WIRE_FIELDS",
    "MAX_FIELD_BYTES",
    "encode_vote",
    "decode_vote",
]
