"""
Hand a published payload to the remote party over an open stream.

Only the identifier travels over the stream, terminated by a newline; the
payload itself moves through the content service.
"""

import logging

from pairlink.abc import IContentService
from pairlink.exceptions import (
    ChannelClosedError,
    ContentNotFoundError,
)
from pairlink.io.abc import (
    Reader,
    Writer,
)

logger = logging.getLogger("pairlink.content.exchange")

IDENTIFIER_TERMINATOR = b"\n"
MAX_IDENTIFIER_LENGTH = 4096


async def send_content(
    stream: Writer, service: IContentService, data: bytes, name: str
) -> str:
    identifier = await service.publish(data, name)
    await stream.write(identifier.encode("utf-8") + IDENTIFIER_TERMINATOR)
    logger.debug(f"Sent content identifier for {name!r}")
    return identifier


async def receive_content(stream: Reader, service: IContentService) -> bytes:
    """
    Read one identifier line from ``stream`` and fetch its payload.

    :raises ChannelClosedError: If the stream ends before a full line.
    :raises ContentNotFoundError: If the identifier is malformed or the
        payload cannot be fetched.
    """
    line = bytearray()
    while IDENTIFIER_TERMINATOR not in line:
        if len(line) > MAX_IDENTIFIER_LENGTH:
            raise ContentNotFoundError(
                f"Content identifier exceeds {MAX_IDENTIFIER_LENGTH} bytes"
            )
        chunk = await stream.read(1)
        if not chunk:
            raise ChannelClosedError("Stream ended before a content identifier")
        line += chunk
    try:
        identifier = bytes(line).rstrip(IDENTIFIER_TERMINATOR).decode("utf-8")
    except UnicodeDecodeError as error:
        raise ContentNotFoundError("Content identifier is not valid UTF-8") from error
    return await service.fetch(identifier)
