from .exchange import (
    receive_content,
    send_content,
)
from .service import (
    ContentSwarm,
    LocalContentService,
    make_magnet_uri,
    parse_magnet_uri,
)

__all__ = [
    "ContentSwarm",
    "LocalContentService",
    "make_magnet_uri",
    "parse_magnet_uri",
    "receive_content",
    "send_content",
]
