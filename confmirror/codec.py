"""Envelope codec for registry broadcasts.

An envelope is a two-field binary model (sender, JSON arguments) wrapped in
base64 so any transport can carry it as plain text.
"""

import base64
import binascii
import json
import struct
from dataclasses import dataclass, field
from typing import Any

# Encoding applied to the binary frame before it is handed to a transport
MESSAGE_ENCODING = "base64"

_LENGTH = struct.Struct(">I")


class EnvelopeError(ValueError):
    """Raised when a broadcast payload cannot be decoded."""


@dataclass
class Envelope:
    """A change message exchanged between registries."""

    sender: str
    arguments: list[Any] = field(default_factory=list)


def _pack_field(data: bytes) -> bytes:
    return _LENGTH.pack(len(data)) + data


def _unpack_field(frame: bytes, offset: int) -> tuple[bytes, int]:
    if offset + _LENGTH.size > len(frame):
        raise EnvelopeError("Truncated envelope: missing field length")
    (length,) = _LENGTH.unpack_from(frame, offset)
    offset += _LENGTH.size
    end = offset + length
    if end > len(frame):
        raise EnvelopeError(
            f"Truncated envelope: field needs {length} bytes, "
            f"{len(frame) - offset} available"
        )
    return frame[offset:end], end


def encode_envelope(envelope: Envelope) -> bytes:
    """Encode an envelope to base64 bytes.

    Args:
        envelope: Envelope to encode.

    Returns:
        ASCII bytes safe to publish on any transport.

    Raises:
        ValueError: If the arguments are not JSON-serializable.
    """
    try:
        arguments = json.dumps(envelope.arguments, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Envelope arguments are not JSON-serializable: {e}") from e

    frame = _pack_field(envelope.sender.encode("utf-8")) + _pack_field(
        arguments.encode("utf-8")
    )
    return base64.b64encode(frame)


def decode_envelope(payload: bytes | str) -> Envelope:
    """Decode base64 bytes produced by encode_envelope.

    Args:
        payload: Raw transport payload.

    Returns:
        Decoded Envelope.

    Raises:
        EnvelopeError: If the payload is not a well-formed envelope.
    """
    if isinstance(payload, str):
        payload = payload.encode("ascii", errors="replace")

    try:
        frame = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EnvelopeError(f"Invalid {MESSAGE_ENCODING} payload: {e}") from e

    sender_raw, offset = _unpack_field(frame, 0)
    arguments_raw, offset = _unpack_field(frame, offset)
    if offset != len(frame):
        raise EnvelopeError(f"Trailing {len(frame) - offset} bytes after envelope")

    try:
        sender = sender_raw.decode("utf-8")
        arguments = json.loads(arguments_raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise EnvelopeError(f"Invalid envelope field: {e}") from e

    if not isinstance(arguments, list):
        raise EnvelopeError(
            f"Envelope arguments must be a list, got {type(arguments).__name__}"
        )

    return Envelope(sender=sender, arguments=arguments)
