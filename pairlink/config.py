"""
Configuration for signaling sessions and stream bridges.
"""

from dataclasses import (
    dataclass,
    field,
)
from typing import Any

from pairlink.constants import (
    CHANNEL_SENTINEL,
    COMPRESSION_LEVEL,
    DATA_CHANNEL_DRAIN_TIMEOUT,
    DEFAULT_CHANNEL_LABEL,
    DEFAULT_ICE_SERVERS,
    MAX_BUFFERED_AMOUNT,
    TOKEN_LINE_WIDTH,
)


@dataclass
class SessionConfig:
    """Configuration for a SignalingSession and the bridge it opens."""

    # Peer connection settings
    ice_servers: list[dict[str, Any]] = field(
        default_factory=lambda: list(DEFAULT_ICE_SERVERS)
    )
    channel_label: str = DEFAULT_CHANNEL_LABEL

    # Token encoding
    line_width: int = TOKEN_LINE_WIDTH  # Characters per token line.
    compression_level: int = COMPRESSION_LEVEL

    # Stream bridge settings
    discard_sentinel: bool = True  # Drop messages starting with `sentinel`.
    sentinel: str = CHANNEL_SENTINEL
    drain_timeout: float = DATA_CHANNEL_DRAIN_TIMEOUT
    high_water_mark: int = MAX_BUFFERED_AMOUNT  # Advisory congestion threshold.

    def __post_init__(self) -> None:
        if self.line_width <= 0:
            raise ValueError("line_width must be positive")
        if not 0 <= self.compression_level <= 9:
            raise ValueError("compression_level must be between 0 and 9")
        if len(self.sentinel) != 1:
            raise ValueError("sentinel must be a single character")
        if self.drain_timeout < 0:
            raise ValueError("drain_timeout must be non-negative")
