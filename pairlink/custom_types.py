from collections.abc import (
    Awaitable,
    Callable,
)
from typing import (
    TYPE_CHECKING,
    Any,
)

if TYPE_CHECKING:
    from pairlink.abc import IDataChannel, IPeerConnection  # noqa: F401
    from pairlink.signaling.description import IceCandidate  # noqa: F401
    from pairlink.stream.bridge import StreamBridge  # noqa: F401

# Payload of a single data channel message, text for base64 framed traffic.
TMessage = str | bytes

IceCandidateHandler = Callable[["IceCandidate | None"], None]
DataChannelHandler = Callable[["IDataChannel"], None]
ConnectionStateHandler = Callable[[str], None]
MessageHandler = Callable[[TMessage], None]
EventHandler = Callable[[], None]

PeerConnectionFactory = Callable[[], "IPeerConnection"]
StreamOpenCallback = Callable[["StreamBridge"], Awaitable[Any] | None]
