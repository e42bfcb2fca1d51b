from collections.abc import Awaitable
import logging
from typing import (
    Any,
    TypeVar,
)

from aiortc import (
    RTCDataChannel,
    RTCPeerConnection,
    RTCSessionDescription,
)
from trio_asyncio import aio_as_trio

from pairlink.exceptions import NegotiationError

logger = logging.getLogger("pairlink.rtc.async_bridge")

T = TypeVar("T")


class RTCAsyncBridge:
    """
    Run aiortc's asyncio coroutines from trio.

    Callers must be inside ``trio_asyncio.open_loop()``; every failure of the
    peer connection is reported as ``NegotiationError``.
    """

    async def _call(self, what: str, awaitable: Awaitable[T]) -> T:
        try:
            result = await aio_as_trio(awaitable)
        except Exception as e:
            logger.error(f"Failed to {what}: {e}")
            raise NegotiationError(f"Failed to {what}: {e}") from e
        logger.debug(f"Successfully completed: {what}")
        return result

    async def create_offer(
        self, peer_connection: RTCPeerConnection
    ) -> RTCSessionDescription:
        return await self._call("create offer", peer_connection.createOffer())

    async def create_answer(
        self, peer_connection: RTCPeerConnection
    ) -> RTCSessionDescription:
        return await self._call("create answer", peer_connection.createAnswer())

    async def set_local_description(
        self, peer_connection: RTCPeerConnection, description: RTCSessionDescription
    ) -> None:
        await self._call(
            "set local description",
            peer_connection.setLocalDescription(description),
        )

    async def set_remote_description(
        self, peer_connection: RTCPeerConnection, description: RTCSessionDescription
    ) -> None:
        await self._call(
            "set remote description",
            peer_connection.setRemoteDescription(description),
        )

    async def close_peer_connection(self, peer_connection: RTCPeerConnection) -> None:
        try:
            await aio_as_trio(peer_connection.close())
            logger.debug("Successfully closed peer connection")
        except RuntimeError as e:
            # Handle closed event loop gracefully
            if "closed" in str(e).lower() or "no running event loop" in str(e).lower():
                logger.debug(
                    "Event loop closed during peer connection cleanup (non-critical)"
                )
                return
            raise

    def send_data(self, data_channel: RTCDataChannel, message: Any) -> None:
        # data_channel.send is synchronous, aiortc queues the message itself
        data_channel.send(message)
        logger.debug(f"Queued {len(message)} character message")


_global_bridge: RTCAsyncBridge | None = None


def get_rtc_bridge() -> RTCAsyncBridge:
    """Get the shared bridge instance"""
    global _global_bridge
    if _global_bridge is None:
        _global_bridge = RTCAsyncBridge()
    return _global_bridge
