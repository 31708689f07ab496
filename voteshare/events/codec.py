"""
Voteshare -- binary wire codec for votes on the broker channel.

Wire format (one PUBLISH payload per vote, no header, no version tag):

    [2B len: >H] + [len bytes: service_name UTF-8]
    [2B len: >H] + [len bytes: timestamp    UTF-8]
    [2B len: >H] + [len bytes: username     UTF-8]
    [2B len: >H] + [len bytes: address      UTF-8]

This mirrors Java's ``DataOutput.writeUTF`` used by the plugin servers on
the other end of the channel, and is byte-identical to it except for NUL
and non-BMP characters: Java writes modified UTF-8 there, this codec
writes standard UTF-8.  Bytes after the fourth field are ignored so a
future format can append data without breaking existing decoders.

Usage:
    >>> from voteshare.events.codec import encode_vote, decode_vote
    >>> data = encode_vote(vote)
    >>> assert decode_vote(data) == vote
"""
from __future__ import annotations

import struct

from voteshare.errors import InvalidArgumentError, MalformedMessageError
from voteshare.events.vote import Vote

# Single broker channel shared by producers and consumers.
VOTE_CHANNEL: bytes = "voteshare".encode("utf-8")

# Field order on the wire.  Never reorder.
WIRE_FIELDS: tuple[str, ...] = ("service_name", "timestamp", "username", "address")

_LEN_PREFIX = struct.Struct(">H")
MAX_FIELD_BYTES: int = 0xFFFF


def encode_vote(vote: Vote) -> bytes:
    """Encode a vote into its channel payload.

    Args:
        vote: The vote to encode.  Must not be ``None``.

    Returns:
        The length-prefixed binary payload.

    Raises:
        InvalidArgumentError: If *vote* is absent, not a :class:`Vote`, or
            one of its fields is longer than 65535 UTF-8 bytes or holds a
            lone surrogate.
    """
    if vote is None:
        raise InvalidArgumentError("vote should not be None")
    if not isinstance(vote, Vote):
        raise InvalidArgumentError(
            f"expected a Vote, got {type(vote).__name__}"
        )

    out = bytearray()
    for name in WIRE_FIELDS:
        try:
            raw = getattr(vote, name).encode("utf-8")
        except UnicodeEncodeError as exc:
            raise InvalidArgumentError(
                f"vote field {name!r} is not encodable as UTF-8: {exc}"
            ) from exc
        if len(raw) > MAX_FIELD_BYTES:
            raise InvalidArgumentError(
                f"vote field {name!r} is {len(raw)} bytes, "
                f"limit is {MAX_FIELD_BYTES}"
            )
        out += _LEN_PREFIX.pack(len(raw))
        out += raw
    return bytes(out)


def decode_vote(data: bytes) -> Vote:
    """Decode a channel payload back into a vote.

    Args:
        data: Bytes produced by :func:`encode_vote`.

    Returns:
        The decoded :class:`Vote`.

    Raises:
        MalformedMessageError: If the payload is truncated, a length prefix
            overruns the buffer, or a field is not valid UTF-8.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise MalformedMessageError(
            f"expected bytes payload, got {type(data).__name__}"
        )

    buf = bytes(data)
    pos = 0
    fields: dict[str, str] = {}

    for name in WIRE_FIELDS:
        if pos + _LEN_PREFIX.size > len(buf):
            raise MalformedMessageError(
                f"truncated payload: missing length of {name!r} at offset {pos}"
            )
        (length,) = _LEN_PREFIX.unpack_from(buf, pos)
        pos += _LEN_PREFIX.size

        if pos + length > len(buf):
            raise MalformedMessageError(
                f"truncated payload: {name!r} needs {length} bytes, "
                f"{len(buf) - pos} remaining"
            )
        try:
            fields[name] = buf[pos:pos + length].decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedMessageError(
                f"field {name!r} is not valid UTF-8: {exc}"
            ) from exc
        pos += length

    return Vote(**fields)
