"""
Sequencing of the two-sided invite/answer handshake.
"""

import inspect
import logging
from types import TracebackType

import trio

from pairlink.config import SessionConfig
from pairlink.constants import SDP_TYPE_ANSWER
from pairlink.custom_types import (
    PeerConnectionFactory,
    StreamOpenCallback,
)
from pairlink.exceptions import (
    BasePairlinkError,
    SignalingError,
)
from pairlink.stream.bridge import StreamBridge
from pairlink.utils.trio_timeout import open_within

from .codec import decode_description
from .session import SignalingSession

logger = logging.getLogger("pairlink.signaling.coordinator")


class ExchangeCoordinator:
    """
    Drive an offerer and an answerer session through the handshake.

    Either side may be used on its own when the two parties run in different
    processes: the invite and answer tokens are plain text and can travel by
    any out-of-band medium. Sessions run in the coordinator's nursery, which
    is either passed in or opened by ``async with``.
    """

    def __init__(
        self,
        factory: PeerConnectionFactory,
        config: SessionConfig | None = None,
        answer_factory: PeerConnectionFactory | None = None,
        nursery: trio.Nursery | None = None,
        on_invite_open: StreamOpenCallback | None = None,
        on_answer_open: StreamOpenCallback | None = None,
    ):
        self._invite_factory = factory
        self._answer_factory = answer_factory or factory
        self._config = config or SessionConfig()
        self._nursery = nursery
        self._nursery_manager: trio.Nursery | None = None
        self._on_invite_open = on_invite_open
        self._on_answer_open = on_answer_open

        self.invite_session: SignalingSession | None = None
        self.answer_session: SignalingSession | None = None

    async def __aenter__(self) -> "ExchangeCoordinator":
        if self._nursery is None:
            self._nursery_manager = trio.open_nursery()
            self._nursery = await self._nursery_manager.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        with trio.CancelScope(shield=True):
            await self.close()
        if self._nursery_manager is not None:
            manager, self._nursery_manager = self._nursery_manager, None
            self._nursery = None
            return await manager.__aexit__(exc_type, exc_val, exc_tb)
        return None

    def _require_nursery(self) -> trio.Nursery:
        if self._nursery is None:
            raise SignalingError(
                "ExchangeCoordinator needs a nursery: pass one or use 'async with'"
            )
        return self._nursery

    async def create_invite(self) -> str:
        """
        Step 1: start the offerer session.

        :return: The invite token to hand to the answering party.
        """
        if self.invite_session is not None:
            raise SignalingError("An invite was already created")
        nursery = self._require_nursery()
        session = SignalingSession.offerer(self._invite_factory, self._config)
        self.invite_session = session
        await nursery.start(session.run)
        if self._on_invite_open is not None:
            nursery.start_soon(self._notify_open, session, self._on_invite_open)
        invite = await session.wait_ready()
        logger.info(f"Created invite ({len(invite)} chars)")
        return invite

    async def answer_invite(self, invite: str) -> str:
        """
        Step 2: start the answerer session from an invite.

        :return: The answer token to hand back to the inviting party.
        :raises CodecError: If the invite is malformed.
        :raises SignalingError: If the invite carries no valid offer.
        """
        if self.answer_session is not None:
            raise SignalingError("An invite was already answered")
        nursery = self._require_nursery()
        session = SignalingSession.answerer(self._answer_factory, invite, self._config)
        self.answer_session = session
        await nursery.start(session.run)
        if self._on_answer_open is not None:
            nursery.start_soon(self._notify_open, session, self._on_answer_open)
        answer = await session.wait_ready()
        logger.info(f"Created answer ({len(answer)} chars)")
        return answer

    async def acknowledge_answer(self, answer: str) -> None:
        """
        Step 3: feed the answer into the offerer session.

        Malformed tokens are rejected before any session state changes.

        :raises CodecError: If the answer is malformed.
        :raises SignalingError: If it carries no valid answer or there is no
            invite session waiting for one.
        """
        decode_description(answer, expected_type=SDP_TYPE_ANSWER)
        if self.invite_session is None:
            raise SignalingError("No invite was created, nothing to acknowledge")
        await self.invite_session.accept_answer(answer)

    async def wait_invite_stream(self, timeout: float | None = None) -> StreamBridge:
        """
        Step 4, inviting side.

        :param timeout: Seconds to wait before the invite session is closed
            and ``SignalingError`` raised. None waits indefinitely.
        """
        if self.invite_session is None:
            raise SignalingError("No invite was created")
        return await open_within(self.invite_session, timeout)

    async def wait_answer_stream(self, timeout: float | None = None) -> StreamBridge:
        if self.answer_session is None:
            raise SignalingError("No invite was answered")
        return await open_within(self.answer_session, timeout)

    async def connect(
        self, timeout: float | None = None
    ) -> tuple[StreamBridge, StreamBridge]:
        """
        Run the whole handshake locally.

        :param timeout: Bound on each side's wait for its data channel.
        :return: The invite side and answer side bridges.
        """
        invite = await self.create_invite()
        answer = await self.answer_invite(invite)
        await self.acknowledge_answer(answer)
        invite_bridge = await self.wait_invite_stream(timeout)
        answer_bridge = await self.wait_answer_stream(timeout)
        return invite_bridge, answer_bridge

    async def close(self) -> None:
        for session in (self.invite_session, self.answer_session):
            if session is not None:
                await session.close()

    async def _notify_open(
        self, session: SignalingSession, callback: StreamOpenCallback
    ) -> None:
        try:
            bridge = await session.wait_open()
        except BasePairlinkError as error:
            # Waiters of wait_*_stream see the same error
            logger.debug(f"{session.role.value} side never opened: {error}")
            return
        result = callback(bridge)
        if inspect.isawaitable(result):
            await result
