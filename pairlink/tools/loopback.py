"""
In-process peer-connection capability.

Two ``LoopbackPeerConnection`` objects created from the same
``LoopbackNetwork`` find each other through the session id carried in their
SDP bodies, exactly as real peers find each other through the exchanged
tokens. Messages are delivered synchronously and in order.
"""

import logging
import uuid

import trio

from pairlink.abc import (
    IDataChannel,
    IPeerConnection,
)
from pairlink.constants import (
    CHANNEL_SENTINEL,
    DATA_CHANNEL_STATES,
    SDP_TYPE_ANSWER,
    SDP_TYPE_OFFER,
)
from pairlink.custom_types import (
    ConnectionStateHandler,
    DataChannelHandler,
    EventHandler,
    IceCandidateHandler,
    MessageHandler,
    TMessage,
)
from pairlink.exceptions import (
    ChannelClosedError,
    NegotiationError,
)
from pairlink.signaling.description import (
    IceCandidate,
    SessionDescription,
)

logger = logging.getLogger("pairlink.tools.loopback")

LOOPBACK_CANDIDATE = "candidate:1 1 udp 2130706431 127.0.0.1 9 typ host"


class LoopbackDataChannel(IDataChannel):
    def __init__(self, label: str, network: "LoopbackNetwork"):
        self._label = label
        self._network = network
        self._state = DATA_CHANNEL_STATES["connecting"]
        self._peer: LoopbackDataChannel | None = None
        self._open_handlers: list[EventHandler] = []
        self._message_handlers: list[MessageHandler] = []
        self._close_handlers: list[EventHandler] = []
        self.sent_messages: list[TMessage] = []

    @property
    def label(self) -> str:
        return self._label

    @property
    def ready_state(self) -> str:
        return self._state

    @property
    def buffered_amount(self) -> int:
        return self._network.buffered_amount

    def send(self, message: TMessage) -> None:
        if self._state != DATA_CHANNEL_STATES["open"] or self._peer is None:
            raise ChannelClosedError(f"Channel {self._label!r} is {self._state}")
        self.sent_messages.append(message)
        self._peer._deliver(message)

    def close(self) -> None:
        if self._state == DATA_CHANNEL_STATES["closed"]:
            return
        self._state = DATA_CHANNEL_STATES["closed"]
        peer, self._peer = self._peer, None
        for handler in list(self._close_handlers):
            handler()
        if peer is not None:
            peer.close()

    def on_open(self, handler: EventHandler) -> None:
        self._open_handlers.append(handler)

    def on_message(self, handler: MessageHandler) -> None:
        self._message_handlers.append(handler)

    def on_close(self, handler: EventHandler) -> None:
        self._close_handlers.append(handler)

    def _link(self, peer: "LoopbackDataChannel") -> None:
        self._peer = peer
        peer._peer = self

    def _open(self) -> None:
        if self._state != DATA_CHANNEL_STATES["connecting"]:
            return
        self._state = DATA_CHANNEL_STATES["open"]
        for handler in list(self._open_handlers):
            handler()

    def _deliver(self, message: TMessage) -> None:
        for handler in list(self._message_handlers):
            handler(message)


class LoopbackPeerConnection(IPeerConnection):
    def __init__(self, network: "LoopbackNetwork"):
        self._network = network
        self.session_id = uuid.uuid4().hex
        self._local: SessionDescription | None = None
        self._remote: SessionDescription | None = None
        self._channels: list[LoopbackDataChannel] = []
        self._ice_handler: IceCandidateHandler | None = None
        self._channel_handlers: list[DataChannelHandler] = []
        self._state_handlers: list[ConnectionStateHandler] = []
        self.connection_state = "new"
        self.closed = False

    @property
    def local_description(self) -> SessionDescription | None:
        if self._local is None:
            return None
        sdp = self._local.sdp + f"a={LOOPBACK_CANDIDATE}\r\na=end-of-candidates\r\n"
        return SessionDescription(type=self._local.type, sdp=sdp)

    @property
    def remote_description(self) -> SessionDescription | None:
        return self._remote

    async def create_offer(self) -> SessionDescription:
        await self._operation("create_offer")
        return SessionDescription(type=SDP_TYPE_OFFER, sdp=self._sdp())

    async def create_answer(self) -> SessionDescription:
        await self._operation("create_answer")
        if self._remote is None:
            raise NegotiationError("Cannot create an answer without a remote offer")
        return SessionDescription(type=SDP_TYPE_ANSWER, sdp=self._sdp())

    async def set_local_description(self, description: SessionDescription) -> None:
        await self._operation("set_local_description")
        self._local = description
        handler = self._ice_handler
        if handler is not None:
            handler(IceCandidate(LOOPBACK_CANDIDATE, sdp_mid="0", sdp_mline_index=0))
        # The handler may have been unregistered by the first call
        handler = self._ice_handler
        if handler is not None:
            handler(None)

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self._operation("set_remote_description")
        if self._network.find(_session_id(description.sdp)) is None:
            raise NegotiationError("Remote description refers to an unknown peer")
        self._remote = description
        if description.type == SDP_TYPE_ANSWER:
            self._network.connect(self, self._network.find(_session_id(description.sdp)))

    def create_data_channel(self, label: str) -> LoopbackDataChannel:
        channel = LoopbackDataChannel(label, self._network)
        self._channels.append(channel)
        return channel

    def on_ice_candidate(self, handler: IceCandidateHandler | None) -> None:
        self._ice_handler = handler

    def on_data_channel(self, handler: DataChannelHandler) -> None:
        self._channel_handlers.append(handler)

    def on_connection_state_change(self, handler: ConnectionStateHandler) -> None:
        self._state_handlers.append(handler)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for channel in self._channels:
            channel.close()
        self._network.forget(self)
        self._set_state("closed")

    def fail(self) -> None:
        """Simulate an ICE failure."""
        self._set_state("failed")

    def _set_state(self, state: str) -> None:
        self.connection_state = state
        for handler in list(self._state_handlers):
            handler(state)

    def _sdp(self) -> str:
        return (
            "v=0\r\n"
            f"o=- {self.session_id} 1 IN IP4 127.0.0.1\r\n"
            "s=-\r\n"
            "t=0 0\r\n"
            "m=application 9 UDP/DTLS/SCTP webrtc-datachannel\r\n"
            "a=mid:0\r\n"
        )

    async def _operation(self, name: str) -> None:
        await trio.lowlevel.checkpoint()
        if self.closed:
            raise NegotiationError(f"{name} called on a closed peer connection")
        if name in self._network.failing_operations:
            raise NegotiationError(f"{name} rejected by loopback network")


class LoopbackNetwork:
    """
    Registry of loopback peer connections.

    :param leading_sentinel: Deliver a single control character before the
        first real message on every channel, as some browsers do.
    :param failing_operations: Names of peer-connection operations that
        should fail with ``NegotiationError``.
    """

    def __init__(
        self,
        leading_sentinel: bool = False,
        failing_operations: set[str] | None = None,
    ):
        self.leading_sentinel = leading_sentinel
        self.failing_operations = set(failing_operations or ())
        self.buffered_amount = 0
        self._peers: dict[str, LoopbackPeerConnection] = {}

    def create_peer_connection(self) -> LoopbackPeerConnection:
        peer_connection = LoopbackPeerConnection(self)
        self._peers[peer_connection.session_id] = peer_connection
        return peer_connection

    __call__ = create_peer_connection

    @property
    def peers(self) -> list[LoopbackPeerConnection]:
        return list(self._peers.values())

    def channel_pair(
        self, label: str = "loopback"
    ) -> tuple[LoopbackDataChannel, LoopbackDataChannel]:
        """Two linked channels that are already open, without any signaling."""
        local = LoopbackDataChannel(label, self)
        remote = LoopbackDataChannel(label, self)
        local._link(remote)
        local._open()
        remote._open()
        return local, remote

    def find(self, session_id: str | None) -> LoopbackPeerConnection | None:
        if session_id is None:
            return None
        return self._peers.get(session_id)

    def forget(self, peer_connection: LoopbackPeerConnection) -> None:
        self._peers.pop(peer_connection.session_id, None)

    def connect(
        self,
        offerer: LoopbackPeerConnection,
        answerer: LoopbackPeerConnection | None,
    ) -> None:
        if answerer is None or answerer._local is None:
            raise NegotiationError("Answering peer has no local description")
        logger.debug(
            f"Connecting loopback peers {offerer.session_id} -> {answerer.session_id}"
        )
        offerer._set_state("connected")
        answerer._set_state("connected")
        for channel in offerer._channels:
            remote = LoopbackDataChannel(channel.label, self)
            answerer._channels.append(remote)
            channel._link(remote)
            # The answering side sees the channel already open, like aiortc
            remote._open()
            for handler in list(answerer._channel_handlers):
                handler(remote)
            channel._open()
            if self.leading_sentinel:
                remote._deliver(CHANNEL_SENTINEL)
                channel._deliver(CHANNEL_SENTINEL)


def _session_id(sdp: str) -> str | None:
    for line in sdp.splitlines():
        if line.startswith("o="):
            fields = line[2:].split()
            if len(fields) >= 2:
                return fields[1]
    return None
