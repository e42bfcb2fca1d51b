"""Utility functions for pairlink."""

from pairlink.utils.logging import (
    setup_logging,
)
from pairlink.utils.trio_timeout import (
    open_within,
    ready_within,
)

__all__ = [
    "open_within",
    "ready_within",
    "setup_logging",
]
