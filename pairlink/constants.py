# Default ICE servers for NAT traversal
DEFAULT_ICE_SERVERS = [
    {"urls": "stun:stun.l.google.com:19302"},
    {"urls": "stun:stun.services.mozilla.com:3478"},
]

# Signaling token format
TOKEN_LINE_WIDTH = 80
COMPRESSION_LEVEL = 9

# Data channel configuration
DEFAULT_CHANNEL_LABEL = "pairlink"
# Leading control character some peer-connection implementations put on the
# first data channel message. Never a valid base64 character.
CHANNEL_SENTINEL = "\x02"
MAX_BUFFERED_AMOUNT = 256 * 1024  # 256KB
DATA_CHANNEL_DRAIN_TIMEOUT = 30.0  # seconds
DRAIN_POLL_INTERVAL = 0.05  # seconds

# Session description types
SDP_TYPE_OFFER = "offer"
SDP_TYPE_ANSWER = "answer"

# Data channel states
DATA_CHANNEL_STATES = {
    "connecting": "connecting",
    "open": "open",
    "closing": "closing",
    "closed": "closed",
}
