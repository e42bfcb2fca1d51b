"""Manually signaled peer-to-peer connections over copy-pasteable tokens."""

from importlib.metadata import version as __version

from pairlink.config import (
    SessionConfig,
)
from pairlink.exceptions import (
    BasePairlinkError,
    ChannelClosedError,
    CodecError,
    ContentNotFoundError,
    NegotiationError,
    SignalingError,
)
from pairlink.signaling.codec import (
    decode,
    decode_description,
    encode,
    encode_description,
)
from pairlink.signaling.coordinator import (
    ExchangeCoordinator,
)
from pairlink.signaling.description import (
    IceCandidate,
    SessionDescription,
)
from pairlink.signaling.session import (
    SignalingSession,
)
from pairlink.signaling.states import (
    SessionRole,
    SessionState,
)
from pairlink.stream.bridge import (
    StreamBridge,
)
from pairlink.utils.logging import (
    setup_logging,
)

# Initialize logging configuration
setup_logging()

__all__ = [
    "BasePairlinkError",
    "ChannelClosedError",
    "CodecError",
    "ContentNotFoundError",
    "ExchangeCoordinator",
    "IceCandidate",
    "NegotiationError",
    "SessionConfig",
    "SessionDescription",
    "SessionRole",
    "SessionState",
    "SignalingError",
    "SignalingSession",
    "StreamBridge",
    "decode",
    "decode_description",
    "encode",
    "encode_description",
]

__version__ = __version("pairlink")
