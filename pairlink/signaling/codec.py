"""
Text-safe encoding of signaling payloads.

A token is the payload gzip-compressed, base64-encoded, and wrapped to a
fixed line width so it survives copy/paste through chat windows and e-mail.
There is no version byte and no checksum: corruption shows up as a base64 or
decompression failure.
"""

import base64
import binascii
import gzip
import logging
import zlib

from pairlink.constants import (
    COMPRESSION_LEVEL,
    TOKEN_LINE_WIDTH,
)
from pairlink.exceptions import (
    CodecError,
    SignalingError,
)

from .description import (
    SessionDescription,
)

logger = logging.getLogger("pairlink.signaling.codec")

_WHITESPACE = b" \t\r\n\v\f"


def wrap_lines(text: str, width: int = TOKEN_LINE_WIDTH) -> str:
    """Insert a newline after every ``width`` characters, without a trailing one."""
    if width <= 0:
        raise ValueError("width must be positive")
    return "\n".join(text[i : i + width] for i in range(0, len(text), width))


def unwrap_lines(text: str) -> str:
    return "".join(text.split())


def encode(
    payload: bytes,
    line_width: int = TOKEN_LINE_WIDTH,
    compression_level: int = COMPRESSION_LEVEL,
) -> str:
    """
    Encode ``payload`` into a line-wrapped ASCII token.

    :param payload: Arbitrary bytes, possibly empty.
    :param line_width: Characters per line of the token.
    :param compression_level: gzip compression level.
    :return: The token.
    """
    compressed = gzip.compress(payload, compresslevel=compression_level, mtime=0)
    text = base64.b64encode(compressed).decode("ascii")
    return wrap_lines(text, line_width)


def decode(token: str) -> bytes:
    """
    Decode a token produced by :func:`encode`.

    Line breaks and other whitespace are ignored.

    :param token: The token text.
    :return: The original payload.
    :raises CodecError: If the token is empty, not valid base64, or the
        compressed data is corrupt or truncated.
    """
    try:
        raw = token.encode("ascii")
    except (UnicodeEncodeError, AttributeError) as error:
        raise CodecError("Token contains non-ASCII characters") from error

    raw = raw.translate(None, _WHITESPACE)
    if not raw:
        raise CodecError("Token is empty")

    try:
        compressed = base64.b64decode(raw, validate=True)
    except binascii.Error as error:
        raise CodecError(f"Token is not valid base64: {error}") from error

    try:
        return gzip.decompress(compressed)
    except (OSError, EOFError, zlib.error) as error:
        # gzip.BadGzipFile is an OSError; truncation surfaces as EOFError
        raise CodecError(f"Token data is corrupt: {error}") from error


def encode_description(
    description: SessionDescription,
    line_width: int = TOKEN_LINE_WIDTH,
    compression_level: int = COMPRESSION_LEVEL,
) -> str:
    token = encode(
        description.to_json().encode("utf-8"),
        line_width=line_width,
        compression_level=compression_level,
    )
    logger.debug(
        f"Encoded {description.type} description ({len(description.sdp)} sdp "
        f"chars) into {len(token)} token chars"
    )
    return token


def decode_description(token: str, expected_type: str | None = None) -> SessionDescription:
    """
    Decode a token into a session description.

    :param token: Invite or answer token.
    :param expected_type: If given, the description type that must be present.
    :raises CodecError: If the token itself is malformed.
    :raises SignalingError: If the payload is not a valid description.
    """
    payload = decode(token)
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as error:
        raise SignalingError("Session description is not valid UTF-8") from error

    description = SessionDescription.from_json(text)
    if expected_type is not None and description.type != expected_type:
        raise SignalingError(
            f"Expected an {expected_type} description, got {description.type}"
        )
    return description
