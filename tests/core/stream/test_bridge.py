import base64

import pytest
import trio

from pairlink.exceptions import (
    ChannelClosedError,
    CodecError,
)
from pairlink.stream.bridge import StreamBridge


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.fixture
def bridges(channel_pair, session_config):
    local, remote = channel_pair
    return StreamBridge(local, session_config), StreamBridge(remote, session_config)


async def _read_exactly(bridge, size):
    data = b""
    while len(data) < size:
        chunk = await bridge.read()
        assert chunk, "stream ended early"
        data += chunk
    return data


@pytest.mark.trio
async def test_write_read_in_order(bridges):
    local, remote = bridges
    expected = b"".join(f"{i};".encode() for i in range(50))

    async with trio.open_nursery() as nursery:
        nursery.start_soon(local.run)
        nursery.start_soon(remote.run)

        for i in range(50):
            await local.write(f"{i};".encode())
        assert await _read_exactly(remote, len(expected)) == expected

        nursery.cancel_scope.cancel()


@pytest.mark.trio
async def test_each_write_is_one_base64_message(channel_pair, session_config):
    local_channel, _ = channel_pair
    bridge = StreamBridge(local_channel, session_config)

    await bridge.write(b"hello")
    await bridge.write(b"")
    await bridge.write(b"\xff\x00")
    await bridge.end()

    assert local_channel.sent_messages == [_b64(b"hello"), _b64(b"\xff\x00")]


@pytest.mark.trio
async def test_sentinel_is_discarded(channel_pair, session_config):
    local_channel, remote_channel = channel_pair
    bridge = StreamBridge(local_channel, session_config)

    remote_channel.send("\x02")
    remote_channel.send(_b64(b"payload"))

    assert await bridge.read() == b"payload"


@pytest.mark.trio
async def test_sentinel_kept_when_discarding_disabled(channel_pair, session_config):
    session_config.discard_sentinel = False
    local_channel, remote_channel = channel_pair
    bridge = StreamBridge(local_channel, session_config)

    remote_channel.send("\x02")

    with pytest.raises(CodecError):
        await bridge.read()


@pytest.mark.trio
async def test_malformed_message_surfaces_codec_error(channel_pair, session_config):
    local_channel, remote_channel = channel_pair
    bridge = StreamBridge(local_channel, session_config)

    remote_channel.send("not base64!")
    remote_channel.send(_b64(b"after"))

    with pytest.raises(CodecError):
        await bridge.read()
    assert await bridge.read() == b"after"


@pytest.mark.trio
async def test_empty_messages_are_skipped(channel_pair, session_config):
    local_channel, remote_channel = channel_pair
    bridge = StreamBridge(local_channel, session_config)

    remote_channel.send("")
    remote_channel.send(_b64(b"x"))

    assert await bridge.read() == b"x"


@pytest.mark.trio
async def test_remote_close_after_pending_data(channel_pair, session_config):
    local_channel, remote_channel = channel_pair
    bridge = StreamBridge(local_channel, session_config)

    remote_channel.send(_b64(b"tail"))
    remote_channel.close()

    assert bridge.is_closed
    assert await bridge.read() == b"tail"
    assert await bridge.read() == b""
    assert await bridge.read() == b""
    with pytest.raises(ChannelClosedError):
        await bridge.write(b"late")


@pytest.mark.trio
async def test_messages_after_end_of_stream_are_ignored(channel_pair, session_config):
    local_channel, _ = channel_pair
    bridge = StreamBridge(local_channel, session_config)

    bridge.abort()
    # A misbehaving channel that still delivers after closing
    local_channel._deliver(_b64(b"ghost"))

    assert await bridge.read() == b""


@pytest.mark.trio
async def test_write_after_end(bridges):
    local, remote = bridges

    await local.end()

    assert local.is_write_ended
    with pytest.raises(ChannelClosedError):
        await local.write(b"more")
    assert await remote.read() == b""


@pytest.mark.trio
async def test_end_flushes_queued_writes(bridges):
    local, remote = bridges

    async with trio.open_nursery() as nursery:
        nursery.start_soon(local.run)
        for chunk in (b"a", b"b", b"c"):
            await local.write(chunk)
        await local.end()

    assert [chunk async for chunk in remote] == [b"a", b"b", b"c"]
    assert local.is_closed
    assert remote.is_closed


@pytest.mark.trio
async def test_end_without_pump_flushes_inline(bridges):
    local, remote = bridges

    await local.write(b"inline")
    await local.end()
    await local.end()

    assert await remote.read() == b"inline"
    assert await remote.read() == b""


@pytest.mark.trio
async def test_close_keeps_received_data(bridges):
    local, remote = bridges

    await remote.write(b"unread")
    await remote.end()
    await local.close()

    assert local.is_closed
    assert await local.read() == b"unread"
    assert await local.read() == b""


@pytest.mark.trio
async def test_read_with_size(channel_pair, session_config):
    local_channel, remote_channel = channel_pair
    bridge = StreamBridge(local_channel, session_config)

    remote_channel.send(_b64(b"abcdef"))

    assert await bridge.read(0) == b""
    assert await bridge.read(2) == b"ab"
    assert await bridge.read(3) == b"cde"
    assert await bridge.read() == b"f"


@pytest.mark.trio
async def test_pending_messages_come_first(channel_pair, session_config):
    local_channel, remote_channel = channel_pair
    bridge = StreamBridge(
        local_channel,
        session_config,
        pending_messages=["\x02", _b64(b"early")],
    )

    remote_channel.send(_b64(b"late"))

    assert await bridge.read() == b"early"
    assert await bridge.read() == b"late"


@pytest.mark.trio
async def test_bridge_over_closed_channel(channel_pair, session_config):
    local_channel, _ = channel_pair
    local_channel.close()

    bridge = StreamBridge(local_channel, session_config)

    assert bridge.is_closed
    assert await bridge.read() == b""
    with pytest.raises(ChannelClosedError):
        await bridge.write(b"data")


@pytest.mark.trio
async def test_queued_writes_dropped_on_close(bridges):
    local, remote = bridges

    await local.write(b"never sent")
    local.abort()

    async with trio.open_nursery() as nursery:
        nursery.start_soon(local.run)

    assert local.channel.sent_messages == []
    assert await remote.read() == b""
    with pytest.raises(ChannelClosedError):
        await local.end()


@pytest.mark.trio
async def test_congestion_is_advisory(loopback_network, channel_pair, session_config):
    local_channel, _ = channel_pair
    bridge = StreamBridge(local_channel, session_config)

    assert not bridge.is_congested
    loopback_network.buffered_amount = session_config.high_water_mark + 1

    assert bridge.buffered_amount == session_config.high_water_mark + 1
    assert bridge.is_congested
    await bridge.write(b"still accepted")


@pytest.mark.trio
async def test_drain_timeout_closes_anyway(
    autojump_clock, loopback_network, channel_pair, session_config
):
    session_config.drain_timeout = 0.5
    local_channel, remote_channel = channel_pair
    bridge = StreamBridge(local_channel, session_config)
    loopback_network.buffered_amount = 1024

    start = trio.current_time()
    await bridge.end()

    assert trio.current_time() - start >= 0.5
    assert local_channel.ready_state == "closed"
    assert remote_channel.ready_state == "closed"


@pytest.mark.trio
async def test_end_waits_for_drain(autojump_clock, loopback_network, bridges):
    local, remote = bridges
    loopback_network.buffered_amount = 1024

    async def drain():
        await trio.sleep(0.2)
        loopback_network.buffered_amount = 0

    async with trio.open_nursery() as nursery:
        nursery.start_soon(drain)
        await local.end()

    assert local.is_closed
    assert await remote.read() == b""



@pytest.mark.trio
async def test_remote_close_before_pump_reports_lost_write(
    channel_pair, session_config
):
    local_channel, remote_channel = channel_pair
    bridge = StreamBridge(local_channel, session_config)

    await bridge.write(b"important")
    remote_channel.close()

    async with trio.open_nursery() as nursery:
        nursery.start_soon(bridge.run)

    assert local_channel.sent_messages == []
    with pytest.raises(ChannelClosedError, match="9 written bytes"):
        await bridge.end()
    with pytest.raises(ChannelClosedError, match="9 written bytes"):
        await bridge.write(b"more")
    with pytest.raises(ChannelClosedError):
        await bridge.close()


@pytest.mark.trio
async def test_remote_close_without_pump_reports_lost_write(
    channel_pair, session_config
):
    local_channel, remote_channel = channel_pair
    bridge = StreamBridge(local_channel, session_config)

    await bridge.write(b"queued")
    remote_channel.close()

    with pytest.raises(ChannelClosedError, match="6 written bytes"):
        await bridge.end()
    assert local_channel.sent_messages == []


@pytest.mark.trio
async def test_remote_close_after_delivery_is_clean(bridges):
    local, remote = bridges

    async with trio.open_nursery() as nursery:
        nursery.start_soon(local.run)
        await local.write(b"delivered")
        assert await remote.read() == b"delivered"

        await remote.close()
        await local.end()

    assert local.is_closed
