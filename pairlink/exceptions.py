class BasePairlinkError(Exception):
    pass


class CodecError(BasePairlinkError):
    """Raised when an encoded token is malformed or corrupted."""


class SignalingError(BasePairlinkError):
    """
    Raised when a token decodes cleanly but does not carry a usable session
    description, or when a signaling operation is used in the wrong role or
    state.
    """


class NegotiationError(BasePairlinkError):
    """Raised when the peer-connection capability rejects an offer or answer."""


class ChannelClosedError(BasePairlinkError):
    """Raised when writing to a stream whose data channel has closed."""


class ContentNotFoundError(BasePairlinkError):
    pass
