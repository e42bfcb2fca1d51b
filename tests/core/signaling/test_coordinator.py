import re

import pytest
import trio

from pairlink.content import (
    ContentSwarm,
    LocalContentService,
    receive_content,
    send_content,
)
from pairlink.exceptions import (
    CodecError,
    SignalingError,
)
from pairlink.signaling.coordinator import ExchangeCoordinator
from pairlink.signaling.states import SessionState
from pairlink.tools.loopback import LoopbackNetwork

TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9+/=]{1,80}(\n[A-Za-z0-9+/=]{1,80})*$")


async def _request_response(invite_bridge, answer_bridge):
    await invite_bridge.write(b"request")
    assert await answer_bridge.read() == b"request"
    await answer_bridge.write(b"response")
    assert await invite_bridge.read() == b"response"


@pytest.mark.trio
async def test_manual_exchange(loopback_network, session_config):
    with trio.fail_after(5):
        async with ExchangeCoordinator(loopback_network, session_config) as coordinator:
            invite = await coordinator.create_invite()
            answer = await coordinator.answer_invite(invite)
            await coordinator.acknowledge_answer(answer)

            invite_bridge = await coordinator.wait_invite_stream()
            answer_bridge = await coordinator.wait_answer_stream()
            await _request_response(invite_bridge, answer_bridge)

    assert coordinator.invite_session.state is SessionState.CLOSED
    assert coordinator.answer_session.state is SessionState.CLOSED
    assert loopback_network.peers == []


@pytest.mark.trio
async def test_tokens_are_wrapped_base64(loopback_network, session_config):
    async with ExchangeCoordinator(loopback_network, session_config) as coordinator:
        invite = await coordinator.create_invite()
        answer = await coordinator.answer_invite(invite)

    for token in (invite, answer):
        assert TOKEN_PATTERN.match(token)
        assert not token.endswith("\n")


@pytest.mark.trio
async def test_exchange_with_leading_sentinel(session_config):
    network = LoopbackNetwork(leading_sentinel=True)
    with trio.fail_after(5):
        async with ExchangeCoordinator(network, session_config) as coordinator:
            invite_bridge, answer_bridge = await coordinator.connect()
            await _request_response(invite_bridge, answer_bridge)


@pytest.mark.trio
async def test_connect_with_external_nursery(loopback_network, session_config):
    async with trio.open_nursery() as nursery:
        coordinator = ExchangeCoordinator(
            loopback_network, session_config, nursery=nursery
        )
        invite_bridge, answer_bridge = await coordinator.connect()
        await _request_response(invite_bridge, answer_bridge)
        await coordinator.close()


@pytest.mark.trio
async def test_separate_factories(session_config):
    network = LoopbackNetwork()
    answering = []

    def answer_factory():
        peer_connection = network.create_peer_connection()
        answering.append(peer_connection)
        return peer_connection

    async with ExchangeCoordinator(
        network, session_config, answer_factory=answer_factory
    ) as coordinator:
        await coordinator.connect()
        assert coordinator.answer_session.peer_connection is answering[0]


@pytest.mark.trio
async def test_open_callbacks(loopback_network, session_config):
    opened = {}

    def on_invite_open(bridge):
        opened["invite"] = bridge

    async def on_answer_open(bridge):
        await trio.lowlevel.checkpoint()
        opened["answer"] = bridge

    async with ExchangeCoordinator(
        loopback_network,
        session_config,
        on_invite_open=on_invite_open,
        on_answer_open=on_answer_open,
    ) as coordinator:
        invite_bridge, answer_bridge = await coordinator.connect()
        with trio.fail_after(5):
            while len(opened) < 2:
                await trio.sleep(0)

    assert opened == {"invite": invite_bridge, "answer": answer_bridge}


@pytest.mark.trio
async def test_callbacks_skipped_when_never_opened(loopback_network, session_config):
    calls = []
    async with ExchangeCoordinator(
        loopback_network, session_config, on_invite_open=calls.append
    ) as coordinator:
        await coordinator.create_invite()
    assert calls == []


@pytest.mark.trio
async def test_malformed_answer_is_rejected_first(loopback_network, session_config):
    async with ExchangeCoordinator(loopback_network, session_config) as coordinator:
        invite = await coordinator.create_invite()
        answer = await coordinator.answer_invite(invite)

        with pytest.raises(CodecError):
            await coordinator.acknowledge_answer(answer[:-10])
        with pytest.raises(SignalingError):
            await coordinator.acknowledge_answer(invite)

        assert coordinator.invite_session.state is SessionState.READY

        await coordinator.acknowledge_answer(answer)
        with trio.fail_after(5):
            await coordinator.wait_invite_stream()


@pytest.mark.trio
async def test_malformed_invite(loopback_network, session_config):
    async with ExchangeCoordinator(loopback_network, session_config) as coordinator:
        with pytest.raises(CodecError):
            await coordinator.answer_invite("")
        assert coordinator.answer_session is None


@pytest.mark.trio
async def test_steps_out_of_order(loopback_network, session_config, description_factory):
    async with ExchangeCoordinator(loopback_network, session_config) as coordinator:
        with pytest.raises(SignalingError):
            await coordinator.wait_invite_stream()
        with pytest.raises(SignalingError):
            await coordinator.wait_answer_stream()

        invite = await coordinator.create_invite()
        with pytest.raises(SignalingError):
            await coordinator.create_invite()

        await coordinator.answer_invite(invite)
        with pytest.raises(SignalingError):
            await coordinator.answer_invite(invite)


@pytest.mark.trio
async def test_acknowledge_without_invite(loopback_network, session_config):
    async with trio.open_nursery() as nursery:
        inviting = ExchangeCoordinator(loopback_network, session_config, nursery=nursery)
        answering = ExchangeCoordinator(loopback_network, session_config, nursery=nursery)
        invite = await inviting.create_invite()
        answer = await answering.answer_invite(invite)

        with pytest.raises(SignalingError):
            await answering.acknowledge_answer(answer)

        await inviting.close()
        await answering.close()


@pytest.mark.trio
async def test_requires_a_nursery(loopback_network):
    coordinator = ExchangeCoordinator(loopback_network)
    with pytest.raises(SignalingError):
        await coordinator.create_invite()
    assert loopback_network.peers == []


@pytest.mark.trio
async def test_content_exchange(loopback_network, session_config):
    swarm = ContentSwarm()
    seeder = LocalContentService(swarm)
    leecher = LocalContentService(swarm)
    payload = b"\x00\x01 some file contents " * 64

    with trio.fail_after(5):
        async with ExchangeCoordinator(loopback_network, session_config) as coordinator:
            invite_bridge, answer_bridge = await coordinator.connect()

            identifier = await send_content(invite_bridge, seeder, payload, "notes.bin")
            assert await receive_content(answer_bridge, leecher) == payload

    assert identifier.startswith("magnet:?xt=urn:sha1:")


@pytest.mark.trio
async def test_connect_with_timeout(loopback_network, session_config):
    async with ExchangeCoordinator(loopback_network, session_config) as coordinator:
        invite_bridge, answer_bridge = await coordinator.connect(timeout=5)
        await _request_response(invite_bridge, answer_bridge)


@pytest.mark.trio
async def test_unanswered_invite_times_out(
    autojump_clock, loopback_network, session_config
):
    async with ExchangeCoordinator(loopback_network, session_config) as coordinator:
        await coordinator.create_invite()

        with pytest.raises(SignalingError, match="did not open"):
            await coordinator.wait_invite_stream(timeout=10)

        assert coordinator.invite_session.state is SessionState.CLOSED
    assert loopback_network.peers == []
