import pytest

from pairlink.io.abc import (
    HalfCloser,
    ReadWriteCloser,
)
from pairlink.stream.bridge import StreamBridge


class BufferStream(ReadWriteCloser):
    def __init__(self):
        self.buffer = b""
        self.closed = False

    async def read(self, n=None):
        data, self.buffer = self.buffer, b""
        return data

    async def write(self, data):
        self.buffer += data

    async def close(self):
        self.closed = True


@pytest.mark.trio
async def test_read_write_close_is_enough():
    stream = BufferStream()

    await stream.write(b"abc")
    assert await stream.read() == b"abc"
    await stream.close()
    assert stream.closed


def test_bridge_is_a_half_closable_stream():
    assert issubclass(StreamBridge, ReadWriteCloser)
    assert issubclass(StreamBridge, HalfCloser)
    assert not hasattr(ReadWriteCloser, "get_remote_address")
