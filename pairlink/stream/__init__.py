from .bridge import (
    StreamBridge,
)

__all__ = ["StreamBridge"]
