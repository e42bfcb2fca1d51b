"""
Offer/answer state machine around one peer connection.
"""

import logging
import math
from typing import Any

import trio

from pairlink.abc import (
    IDataChannel,
    IPeerConnection,
)
from pairlink.config import SessionConfig
from pairlink.constants import (
    DATA_CHANNEL_STATES,
    SDP_TYPE_ANSWER,
    SDP_TYPE_OFFER,
)
from pairlink.custom_types import (
    PeerConnectionFactory,
    TMessage,
)
from pairlink.exceptions import (
    BasePairlinkError,
    NegotiationError,
    SignalingError,
)
from pairlink.stream.bridge import StreamBridge

from .codec import decode_description
from .description import (
    IceCandidate,
    SessionDescription,
)
from .states import (
    CandidateDiscovered,
    ChannelClosed,
    ChannelOpened,
    CloseRequested,
    Fail,
    GatheringComplete,
    NegotiationFailed,
    NegotiationStarted,
    OpenBridge,
    PublishToken,
    ReleaseConnection,
    SessionEffect,
    SessionEvent,
    SessionRole,
    SessionSnapshot,
    SessionState,
    transition,
)

logger = logging.getLogger("pairlink.signaling.session")


class SignalingSession:
    """
    One side of a manually signaled peer connection.

    The offerer produces an invite token, the answerer is built from that
    invite and produces an answer token. Capability callbacks are queued as
    events and applied one at a time by :meth:`run`, which must be started in
    a nursery::

        session = SignalingSession.offerer(factory)
        async with trio.open_nursery() as nursery:
            await nursery.start(session.run)
            invite = await session.wait_ready()
            ...
            await session.accept_answer(answer)
            bridge = await session.wait_open()
    """

    def __init__(
        self,
        role: SessionRole,
        factory: PeerConnectionFactory,
        config: SessionConfig | None = None,
        remote_description: SessionDescription | None = None,
    ):
        if role is SessionRole.ANSWERER and remote_description is None:
            raise SignalingError("An answerer needs the offerer's description")

        self._factory = factory
        self._config = config or SessionConfig()
        self._remote_description = remote_description
        self._snapshot = SessionSnapshot(role=role)

        self._events_send: trio.MemorySendChannel[SessionEvent]
        self._events_receive: trio.MemoryReceiveChannel[SessionEvent]
        self._events_send, self._events_receive = trio.open_memory_channel(math.inf)

        self._peer_connection: IPeerConnection | None = None
        self._bridge: StreamBridge | None = None
        self._early_messages: list[TMessage] = []
        self._answer_applied = False
        self._released = False
        self._started = False
        self._nursery: trio.Nursery | None = None

        self._ready = trio.Event()
        self._opened = trio.Event()
        self._closed = trio.Event()

    @classmethod
    def offerer(
        cls, factory: PeerConnectionFactory, config: SessionConfig | None = None
    ) -> "SignalingSession":
        return cls(SessionRole.OFFERER, factory, config)

    @classmethod
    def answerer(
        cls,
        factory: PeerConnectionFactory,
        invite: str,
        config: SessionConfig | None = None,
    ) -> "SignalingSession":
        """
        Build the answering side from an invite token.

        :raises CodecError: If the invite is malformed.
        :raises SignalingError: If the invite carries no valid offer.
        """
        description = decode_description(invite, expected_type=SDP_TYPE_OFFER)
        return cls(SessionRole.ANSWERER, factory, config, description)

    @property
    def role(self) -> SessionRole:
        return self._snapshot.role

    @property
    def state(self) -> SessionState:
        return self._snapshot.state

    @property
    def token(self) -> str | None:
        """The invite (offerer) or answer (answerer) once READY was reached."""
        return self._snapshot.token

    @property
    def bridge(self) -> StreamBridge | None:
        return self._bridge

    @property
    def error(self) -> BasePairlinkError | None:
        return self._snapshot.error

    @property
    def candidate_count(self) -> int:
        return self._snapshot.candidates

    @property
    def peer_connection(self) -> IPeerConnection | None:
        return self._peer_connection

    async def run(self, *, task_status: Any = trio.TASK_STATUS_IGNORED) -> None:
        """
        Create the peer connection, start negotiating and process events
        until the session is closed.
        """
        if self._started:
            raise SignalingError("Session was already started")
        self._started = True

        try:
            async with trio.open_nursery() as nursery:
                self._nursery = nursery
                if not self._closed.is_set():
                    self._start_negotiation(nursery)
                task_status.started()
                if not self._closed.is_set():
                    await self._process_events()
                nursery.cancel_scope.cancel()
        finally:
            self._nursery = None
            self._events_send.close()
            if not self._released:
                with trio.CancelScope(shield=True):
                    await self._release()

    async def wait_ready(self) -> str:
        """
        Wait until candidate gathering finished.

        :return: The encoded invite or answer token.
        :raises BasePairlinkError: If the session failed or closed first.
        """
        await self._wait_for(self._ready)
        if self._snapshot.token is not None:
            return self._snapshot.token
        raise self._closed_error("before its token was ready")

    async def wait_open(self) -> StreamBridge:
        """
        Wait until the data channel opened.

        :return: The stream bridge over the channel.
        :raises BasePairlinkError: If the session failed or closed first.
        """
        await self._wait_for(self._opened)
        if self._bridge is not None:
            return self._bridge
        raise self._closed_error("before the data channel opened")

    async def accept_answer(self, answer: str) -> None:
        """
        Apply the answerer's token to an offerer session.

        The token is fully validated before the peer connection is touched.

        :raises CodecError: If the token is malformed.
        :raises SignalingError: If it carries no valid answer, or the session
            is not an offerer waiting for one.
        :raises NegotiationError: If the peer connection rejects the answer.
        """
        if self.role is not SessionRole.OFFERER:
            raise SignalingError("Only the offerer accepts an answer")
        description = decode_description(answer, expected_type=SDP_TYPE_ANSWER)
        if self.state is not SessionState.READY:
            raise SignalingError(
                f"Cannot accept an answer in state {self.state.value}"
            )
        if self._answer_applied:
            raise SignalingError("An answer was already accepted")
        assert self._peer_connection is not None

        self._answer_applied = True
        try:
            await self._peer_connection.set_remote_description(description)
        except Exception as error:
            failure = _as_negotiation_error(error, "Failed to apply the answer")
            self._post(NegotiationFailed(failure))
            if failure is error:
                raise
            raise failure from error
        logger.info("Applied remote answer, waiting for the data channel")

    async def close(self) -> None:
        """
        Close the session and release the peer connection. Idempotent.
        """
        if self._closed.is_set():
            return
        if self._nursery is not None:
            self._post(CloseRequested())
            await self._closed.wait()
            return
        # Never started, or the event loop already finished
        self._snapshot, _ = transition(self._snapshot, CloseRequested(), self._config)
        await self._release()

    # Event processing

    async def _process_events(self) -> None:
        async for event in self._events_receive:
            await self._apply(event)
            if self._snapshot.state is SessionState.CLOSED:
                break

    async def _apply(self, event: SessionEvent) -> None:
        previous = self._snapshot.state
        self._snapshot, effects = transition(self._snapshot, event, self._config)
        if self._snapshot.state is not previous:
            logger.debug(
                f"{self.role.value} session: {previous.value} -> "
                f"{self._snapshot.state.value} on {type(event).__name__}"
            )
        for effect in effects:
            await self._execute(effect)

    async def _execute(self, effect: SessionEffect) -> None:
        if isinstance(effect, PublishToken):
            logger.info(
                f"{self.role.value} token ready ({len(effect.token)} chars, "
                f"{self._snapshot.candidates} candidates)"
            )
            self._ready.set()
        elif isinstance(effect, OpenBridge):
            self._open_bridge(effect.channel)
        elif isinstance(effect, Fail):
            logger.error(f"{self.role.value} session failed: {effect.error}")
        elif isinstance(effect, ReleaseConnection):
            with trio.CancelScope(shield=True):
                await self._release()

    def _post(self, event: SessionEvent) -> None:
        try:
            self._events_send.send_nowait(event)
        except trio.ClosedResourceError:
            logger.debug(f"Dropping {type(event).__name__}, session is closed")

    # Capability wiring

    def _start_negotiation(self, nursery: trio.Nursery) -> None:
        try:
            peer_connection = self._factory()
        except Exception as error:
            self._post(
                NegotiationFailed(
                    _as_negotiation_error(error, "Failed to create peer connection")
                )
            )
            return

        self._peer_connection = peer_connection
        peer_connection.on_ice_candidate(self._handle_ice_candidate)
        peer_connection.on_connection_state_change(self._handle_connection_state)
        if self.role is SessionRole.OFFERER:
            try:
                channel = peer_connection.create_data_channel(
                    self._config.channel_label
                )
            except Exception as error:
                self._post(
                    NegotiationFailed(
                        _as_negotiation_error(error, "Failed to create data channel")
                    )
                )
                return
            self._watch_channel(channel)
        else:
            peer_connection.on_data_channel(self._handle_data_channel)

        nursery.start_soon(self._negotiate, peer_connection)

    async def _negotiate(self, peer_connection: IPeerConnection) -> None:
        self._post(NegotiationStarted())
        try:
            if self.role is SessionRole.OFFERER:
                offer = await peer_connection.create_offer()
                await peer_connection.set_local_description(offer)
            else:
                assert self._remote_description is not None
                await peer_connection.set_remote_description(self._remote_description)
                answer = await peer_connection.create_answer()
                await peer_connection.set_local_description(answer)
        except Exception as error:
            self._post(
                NegotiationFailed(
                    _as_negotiation_error(
                        error, f"Failed to create the {self.role.value} description"
                    )
                )
            )
            return
        logger.debug(f"{self.role.value} local description set, gathering candidates")

    def _handle_ice_candidate(self, candidate: IceCandidate | None) -> None:
        if candidate is not None:
            self._post(CandidateDiscovered(candidate))
            return
        assert self._peer_connection is not None
        self._peer_connection.on_ice_candidate(None)
        self._post(GatheringComplete(self._peer_connection.local_description))

    def _handle_connection_state(self, state: str) -> None:
        logger.debug(f"{self.role.value} connection state: {state}")
        if state == "failed":
            self._post(NegotiationFailed(NegotiationError("Peer connection failed")))

    def _handle_data_channel(self, channel: IDataChannel) -> None:
        logger.debug(f"Incoming data channel {channel.label!r}")
        self._watch_channel(channel)

    def _watch_channel(self, channel: IDataChannel) -> None:
        channel.on_open(lambda: self._post(ChannelOpened(channel)))
        channel.on_close(lambda: self._post(ChannelClosed()))
        channel.on_message(self._buffer_early_message)
        if channel.ready_state == DATA_CHANNEL_STATES["open"]:
            self._post(ChannelOpened(channel))
        elif channel.ready_state == DATA_CHANNEL_STATES["closed"]:
            self._post(ChannelClosed())

    def _buffer_early_message(self, message: TMessage) -> None:
        # Messages can arrive before the queued open event is processed
        if self._bridge is None:
            self._early_messages.append(message)

    def _open_bridge(self, channel: IDataChannel) -> None:
        assert self._nursery is not None
        pending, self._early_messages = self._early_messages, []
        self._bridge = StreamBridge(channel, self._config, pending_messages=pending)
        self._nursery.start_soon(self._bridge.run)
        logger.info(f"{self.role.value} data channel {channel.label!r} open")
        self._opened.set()

    async def _release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            if self._bridge is not None and not self._bridge.is_closed:
                self._bridge.abort()
            if self._peer_connection is not None:
                self._peer_connection.on_ice_candidate(None)
                try:
                    await self._peer_connection.close()
                except Exception as error:
                    logger.warning(f"Error closing peer connection: {error}")
            logger.debug(f"{self.role.value} session released its peer connection")
        finally:
            self._closed.set()

    # Waiting helpers

    async def _wait_for(self, event: trio.Event) -> None:
        if event.is_set() or self._closed.is_set():
            return
        async with trio.open_nursery() as nursery:

            async def wait_and_cancel(target: trio.Event) -> None:
                await target.wait()
                nursery.cancel_scope.cancel()

            nursery.start_soon(wait_and_cancel, event)
            nursery.start_soon(wait_and_cancel, self._closed)

    def _closed_error(self, what: str) -> BasePairlinkError:
        if self._snapshot.error is not None:
            return self._snapshot.error
        return SignalingError(f"{self.role.value} session closed {what}")


def _as_negotiation_error(error: Exception, message: str) -> BasePairlinkError:
    if isinstance(error, BasePairlinkError):
        return error
    return NegotiationError(f"{message}: {error}")
