"""
Bounded waits on a signaling session.

Sessions never time out on their own. These helpers give up on a session
that is too slow and close it, releasing its peer connection.
"""

from collections.abc import (
    Awaitable,
    Callable,
)
import logging
from typing import (
    TYPE_CHECKING,
    TypeVar,
)

import trio

from pairlink.exceptions import SignalingError

if TYPE_CHECKING:
    from pairlink.signaling.session import SignalingSession
    from pairlink.stream.bridge import StreamBridge

logger = logging.getLogger("pairlink.utils.trio_timeout")

T = TypeVar("T")


async def _within(
    session: "SignalingSession",
    wait: Callable[[], Awaitable[T]],
    timeout: float | None,
    what: str,
) -> T:
    if timeout is None:
        return await wait()
    try:
        with trio.fail_after(timeout):
            return await wait()
    except trio.TooSlowError:
        logger.warning(
            f"{session.role.value} session {what} within {timeout}s, closing it"
        )
        with trio.CancelScope(shield=True):
            await session.close()
        raise SignalingError(
            f"{session.role.value} session {what} within {timeout}s"
        ) from None


async def ready_within(session: "SignalingSession", timeout: float | None) -> str:
    """
    Wait for the session's token, closing the session if it takes too long.

    :param timeout: Seconds to wait, or None to wait indefinitely.
    :return: The invite or answer token.
    :raises SignalingError: If the timeout expired.
    """
    return await _within(session, session.wait_ready, timeout, "was not ready")


async def open_within(
    session: "SignalingSession", timeout: float | None
) -> "StreamBridge":
    """
    Wait for the session's data channel, closing the session if it takes too
    long.

    :param timeout: Seconds to wait, or None to wait indefinitely.
    :return: The stream bridge.
    :raises SignalingError: If the timeout expired.
    """
    return await _within(session, session.wait_open, timeout, "did not open")
