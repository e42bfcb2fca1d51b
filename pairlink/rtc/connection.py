"""
``IPeerConnection`` over aiortc.

aiortc gathers every candidate while ``setLocalDescription`` runs and does
not emit per-candidate events. The adapter reports the candidates found in
the local SDP once gathering finished, followed by the terminal ``None``.
"""

import logging
from typing import Any

from aiortc import (
    RTCConfiguration,
    RTCDataChannel,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.exceptions import InvalidStateError

from pairlink.abc import (
    IDataChannel,
    IPeerConnection,
)
from pairlink.config import SessionConfig
from pairlink.constants import DATA_CHANNEL_STATES
from pairlink.custom_types import (
    ConnectionStateHandler,
    DataChannelHandler,
    EventHandler,
    IceCandidateHandler,
    MessageHandler,
    PeerConnectionFactory,
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

from .async_bridge import (
    RTCAsyncBridge,
    get_rtc_bridge,
)

logger = logging.getLogger("pairlink.rtc.connection")


class AiortcDataChannel(IDataChannel):
    def __init__(self, channel: RTCDataChannel, bridge: RTCAsyncBridge | None = None):
        self._channel = channel
        self._bridge = bridge or get_rtc_bridge()

    @property
    def label(self) -> str:
        return self._channel.label

    @property
    def ready_state(self) -> str:
        return self._channel.readyState

    @property
    def buffered_amount(self) -> int:
        return self._channel.bufferedAmount

    def send(self, message: TMessage) -> None:
        if self._channel.readyState != DATA_CHANNEL_STATES["open"]:
            raise ChannelClosedError(
                f"Channel {self.label!r} is {self._channel.readyState}"
            )
        try:
            self._bridge.send_data(self._channel, message)
        except InvalidStateError as e:
            raise ChannelClosedError(f"Channel {self.label!r} closed: {e}") from e

    def close(self) -> None:
        self._channel.close()

    def on_open(self, handler: EventHandler) -> None:
        self._channel.on("open", handler)

    def on_message(self, handler: MessageHandler) -> None:
        self._channel.on("message", handler)

    def on_close(self, handler: EventHandler) -> None:
        self._channel.on("close", handler)


class AiortcPeerConnection(IPeerConnection):
    def __init__(
        self,
        configuration: RTCConfiguration | None = None,
        bridge: RTCAsyncBridge | None = None,
    ):
        self._pc = RTCPeerConnection(configuration)
        self._bridge = bridge or get_rtc_bridge()
        self._ice_handler: IceCandidateHandler | None = None
        self._channel_handlers: list[DataChannelHandler] = []
        self._state_handlers: list[ConnectionStateHandler] = []

        self._pc.on("datachannel", self._handle_data_channel)
        self._pc.on("connectionstatechange", self._handle_connection_state)

    @property
    def raw(self) -> RTCPeerConnection:
        return self._pc

    @property
    def local_description(self) -> SessionDescription | None:
        description = self._pc.localDescription
        if description is None:
            return None
        return SessionDescription(type=description.type, sdp=description.sdp)

    async def create_offer(self) -> SessionDescription:
        offer = await self._bridge.create_offer(self._pc)
        return SessionDescription(type=offer.type, sdp=offer.sdp)

    async def create_answer(self) -> SessionDescription:
        answer = await self._bridge.create_answer(self._pc)
        return SessionDescription(type=answer.type, sdp=answer.sdp)

    async def set_local_description(self, description: SessionDescription) -> None:
        await self._bridge.set_local_description(
            self._pc, RTCSessionDescription(sdp=description.sdp, type=description.type)
        )
        if self._pc.iceGatheringState != "complete":
            raise NegotiationError(
                f"ICE gathering did not complete ({self._pc.iceGatheringState})"
            )
        local = self.local_description
        candidates = IceCandidate.from_sdp(local.sdp) if local is not None else []
        logger.debug(f"Gathered {len(candidates)} ICE candidates")
        for candidate in candidates:
            if self._ice_handler is None:
                return
            self._ice_handler(candidate)
        if self._ice_handler is not None:
            self._ice_handler(None)

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self._bridge.set_remote_description(
            self._pc, RTCSessionDescription(sdp=description.sdp, type=description.type)
        )

    def create_data_channel(self, label: str) -> AiortcDataChannel:
        try:
            channel = self._pc.createDataChannel(label, ordered=True)
        except InvalidStateError as e:
            raise NegotiationError(f"Failed to create data channel: {e}") from e
        return AiortcDataChannel(channel, self._bridge)

    def on_ice_candidate(self, handler: IceCandidateHandler | None) -> None:
        self._ice_handler = handler

    def on_data_channel(self, handler: DataChannelHandler) -> None:
        self._channel_handlers.append(handler)

    def on_connection_state_change(self, handler: ConnectionStateHandler) -> None:
        self._state_handlers.append(handler)

    async def close(self) -> None:
        await self._bridge.close_peer_connection(self._pc)

    def _handle_data_channel(self, channel: RTCDataChannel) -> None:
        wrapped = AiortcDataChannel(channel, self._bridge)
        for handler in list(self._channel_handlers):
            handler(wrapped)

    def _handle_connection_state(self) -> None:
        state = self._pc.connectionState
        for handler in list(self._state_handlers):
            handler(state)


def rtc_configuration(ice_servers: list[dict[str, Any]]) -> RTCConfiguration:
    servers = [
        RTCIceServer(
            urls=server["urls"],
            username=server.get("username"),
            credential=server.get("credential"),
        )
        for server in ice_servers
    ]
    return RTCConfiguration(iceServers=servers)


def aiortc_factory(config: SessionConfig | None = None) -> PeerConnectionFactory:
    """
    Build a peer-connection factory for ``SignalingSession``.

    The sessions using it must run inside ``trio_asyncio.open_loop()``.
    """
    configuration = rtc_configuration((config or SessionConfig()).ice_servers)

    def factory() -> IPeerConnection:
        return AiortcPeerConnection(configuration)

    return factory
