"""
aiortc implementation of the peer-connection capability.

Sessions created with :func:`aiortc_factory` must run inside
``trio_asyncio.open_loop()``.
"""

from .async_bridge import (
    RTCAsyncBridge,
    get_rtc_bridge,
)
from .connection import (
    AiortcDataChannel,
    AiortcPeerConnection,
    aiortc_factory,
    rtc_configuration,
)

__all__ = [
    "AiortcDataChannel",
    "AiortcPeerConnection",
    "RTCAsyncBridge",
    "aiortc_factory",
    "get_rtc_bridge",
    "rtc_configuration",
]
