"""
Byte stream over an ordered, message-oriented data channel.
"""

import base64
import binascii
from collections.abc import Iterable
import logging
import math

import trio

from pairlink.abc import IDataChannel
from pairlink.config import SessionConfig
from pairlink.constants import (
    DATA_CHANNEL_STATES,
    DRAIN_POLL_INTERVAL,
)
from pairlink.custom_types import TMessage
from pairlink.exceptions import (
    ChannelClosedError,
    CodecError,
)
from pairlink.io.abc import (
    HalfCloser,
    ReadWriteCloser,
)

logger = logging.getLogger("pairlink.stream.bridge")


class StreamBridge(ReadWriteCloser, HalfCloser):
    """
    Present a data channel as a duplex byte stream.

    Each ``write`` becomes one base64 text message; each incoming message is
    decoded and handed to readers in arrival order. Readers must not assume
    that chunks line up with the remote peer's writes.

    The outbound queue is drained by :meth:`run`, which must be running in a
    nursery for writes to reach the channel.
    """

    def __init__(
        self,
        channel: IDataChannel,
        config: SessionConfig | None = None,
        pending_messages: Iterable[TMessage] = (),
    ):
        self._channel = channel
        self._config = config or SessionConfig()

        # Writes are accepted unconditionally, so both queues are unbounded
        self._outbound_send: trio.MemorySendChannel[bytes]
        self._outbound_receive: trio.MemoryReceiveChannel[bytes]
        self._outbound_send, self._outbound_receive = trio.open_memory_channel(
            math.inf
        )
        self._inbound_send: trio.MemorySendChannel[bytes | CodecError]
        self._inbound_receive: trio.MemoryReceiveChannel[bytes | CodecError]
        self._inbound_send, self._inbound_receive = trio.open_memory_channel(math.inf)

        self._read_buffer = b""
        self._channel_closed = channel.ready_state in (
            DATA_CHANNEL_STATES["closing"],
            DATA_CHANNEL_STATES["closed"],
        )
        self._write_ended = False
        self._read_ended = False
        self._running = False
        self._flushed = trio.Event()
        # Bytes accepted by write() that never reached the channel
        self._dropped_bytes = 0

        # Messages that arrived before the bridge existed come first
        for message in pending_messages:
            self._handle_message(message)
        self._channel.on_message(self._handle_message)
        self._channel.on_close(self._handle_close)

        if self._channel_closed:
            self._end_inbound()

        logger.debug(
            f"Created stream bridge over channel {channel.label!r} "
            f"(state: {channel.ready_state})"
        )

    @property
    def channel(self) -> IDataChannel:
        return self._channel

    @property
    def is_closed(self) -> bool:
        """True once the underlying channel has closed."""
        return self._channel_closed

    @property
    def is_write_ended(self) -> bool:
        return self._write_ended

    @property
    def buffered_amount(self) -> int:
        return self._channel.buffered_amount

    @property
    def is_congested(self) -> bool:
        """
        Advisory backpressure signal: the channel holds more unsent bytes
        than the configured high-water mark. Writes are still accepted.
        """
        return self._channel.buffered_amount > self._config.high_water_mark

    # Outbound

    async def write(self, data: bytes) -> None:
        """
        Queue ``data`` for sending.

        :raises ChannelClosedError: If the channel closed or :meth:`end`
            was already called.
        """
        if self._channel_closed:
            self._raise_if_dropped()
            raise ChannelClosedError(
                f"Cannot write to channel {self._channel.label!r}: channel closed"
            )
        if self._write_ended:
            raise ChannelClosedError(
                f"Cannot write to channel {self._channel.label!r}: write side ended"
            )
        if not data:
            return

        try:
            self._outbound_send.send_nowait(bytes(data))
        except (trio.BrokenResourceError, trio.ClosedResourceError) as error:
            raise ChannelClosedError(
                f"Cannot write to channel {self._channel.label!r}: bridge stopped"
            ) from error
        if self.is_congested:
            logger.debug(
                f"Channel {self._channel.label!r} congested: "
                f"{self._channel.buffered_amount} bytes buffered"
            )
        await trio.lowlevel.checkpoint()

    async def run(self) -> None:
        """
        Pump queued writes into the channel until the write side ends or the
        channel closes.
        """
        self._running = True
        try:
            async with self._outbound_receive:
                async for data in self._outbound_receive:
                    if self._channel_closed:
                        self._drop(data)
                        continue
                    self._send_chunk(data)
            await self._finish_write_side()
        finally:
            self._running = False
            self._flushed.set()

    async def end(self) -> None:
        """
        Half-close: stop accepting writes and close the channel once every
        queued write has been sent.

        :raises ChannelClosedError: If the channel closed before all written
            data could be sent.
        """
        if self._write_ended:
            await self._flushed.wait()
            self._raise_if_dropped()
            return
        self._write_ended = True
        self._outbound_send.close()
        logger.debug(f"Ending write side of channel {self._channel.label!r}")

        if self._running:
            await self._flushed.wait()
            self._raise_if_dropped()
            return

        # No pump task: flush inline
        while True:
            try:
                data = self._outbound_receive.receive_nowait()
            except (trio.WouldBlock, trio.EndOfChannel, trio.ClosedResourceError):
                break
            if self._channel_closed:
                self._drop(data)
            else:
                self._send_chunk(data)
        await self._finish_write_side()
        self._flushed.set()
        self._raise_if_dropped()

    async def close(self) -> None:
        """
        Close both directions. Data already received stays readable.

        :raises ChannelClosedError: If written data could not be sent.
        """
        try:
            await self.end()
        finally:
            self.abort()

    def abort(self) -> None:
        """
        Close the channel immediately, dropping queued writes. The inbound
        side ends after the data already received.
        """
        if not self._channel_closed:
            self._channel.close()
        self._handle_close()

    def _send_chunk(self, data: bytes) -> None:
        message = base64.b64encode(data).decode("ascii")
        try:
            self._channel.send(message)
        except ChannelClosedError:
            self._handle_close()
            self._drop(data)
            return
        logger.debug(f"Sent {len(data)} bytes on channel {self._channel.label!r}")

    def _drop(self, data: bytes) -> None:
        self._dropped_bytes += len(data)
        logger.warning(
            f"Dropping {len(data)} written bytes, "
            f"channel {self._channel.label!r} closed"
        )

    def _raise_if_dropped(self) -> None:
        if self._dropped_bytes:
            raise ChannelClosedError(
                f"Channel {self._channel.label!r} closed before "
                f"{self._dropped_bytes} written bytes were sent"
            )

    async def _finish_write_side(self) -> None:
        if not self._write_ended or self._channel_closed:
            return
        with trio.move_on_after(self._config.drain_timeout) as scope:
            while (
                self._channel.buffered_amount > 0
                and self._channel.ready_state == DATA_CHANNEL_STATES["open"]
            ):
                await trio.sleep(DRAIN_POLL_INTERVAL)
        if scope.cancelled_caught:
            logger.warning(
                f"Channel {self._channel.label!r} still buffers "
                f"{self._channel.buffered_amount} bytes after "
                f"{self._config.drain_timeout}s, closing anyway"
            )
        if not self._channel_closed:
            logger.debug(f"Closing channel {self._channel.label!r}")
            self._channel.close()

    # Inbound

    async def read(self, n: int | None = None) -> bytes:
        """
        Read the next available bytes.

        :param n: Maximum number of bytes to return; None or -1 for a whole
            received chunk.
        :return: Data, or ``b""`` at end of stream.
        :raises CodecError: If the remote peer sent a message that is not
            valid base64.
        """
        if n == 0:
            return b""

        if not self._read_buffer:
            try:
                item = await self._inbound_receive.receive()
            except (trio.EndOfChannel, trio.ClosedResourceError):
                return b""
            if isinstance(item, CodecError):
                raise item
            self._read_buffer = item

        if n is None or n < 0:
            data, self._read_buffer = self._read_buffer, b""
        else:
            data, self._read_buffer = self._read_buffer[:n], self._read_buffer[n:]
        return data

    def __aiter__(self) -> "StreamBridge":
        return self

    async def __anext__(self) -> bytes:
        data = await self.read()
        if not data:
            raise StopAsyncIteration
        return data

    def _is_sentinel(self, message: TMessage) -> bool:
        if not self._config.discard_sentinel or not message:
            return False
        sentinel = self._config.sentinel
        if isinstance(message, str):
            return message[0] == sentinel
        return message[:1] == sentinel.encode("latin-1")

    def _handle_message(self, message: TMessage) -> None:
        if self._read_ended:
            logger.debug(
                f"Ignoring message on channel {self._channel.label!r} after end"
            )
            return

        if self._is_sentinel(message):
            logger.debug(
                f"Discarding control message on channel {self._channel.label!r}"
            )
            return

        try:
            data = base64.b64decode(message, validate=True)
        except (binascii.Error, ValueError) as error:
            logger.warning(
                f"Malformed message on channel {self._channel.label!r}: {error}"
            )
            self._inbound_send.send_nowait(
                CodecError(f"Received message is not valid base64: {error}")
            )
            return

        if data:
            self._inbound_send.send_nowait(data)
            logger.debug(
                f"Received {len(data)} bytes on channel {self._channel.label!r}"
            )

    def _handle_close(self) -> None:
        if self._channel_closed and self._read_ended:
            return
        if not self._channel_closed:
            logger.debug(f"Channel {self._channel.label!r} closed")
        self._channel_closed = True
        self._end_inbound()
        # Stop the pump; anything still queued can no longer be delivered
        self._outbound_send.close()

    def _end_inbound(self) -> None:
        if self._read_ended:
            return
        self._read_ended = True
        self._inbound_send.close()
