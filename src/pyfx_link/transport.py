"""
Byte-stream transport: bind the frame codec to an asyncio reader/writer pair.

The serial port is opened with pyserial-asyncio, which hands back the same
(StreamReader, StreamWriter) pair as asyncio.open_connection. MemoryLink wires two
FrameStreams back to back for in-process simulation.
"""

import asyncio
import logging
from typing import Protocol

import serial
import serial_asyncio

from .codec import DEFAULT_MAX_LINE_LENGTH, FrameDecoder, describe_frame, encode_message
from .errors import LinkClosedError, TransportError
from .types import Message

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 9600
READ_CHUNK_SIZE = 256


class ByteReader(Protocol):
    """Inbound half of a duplex byte stream (asyncio.StreamReader satisfies it)."""

    async def read(self, n: int = -1) -> bytes:
        ...


class ByteWriter(Protocol):
    """Outbound half of a duplex byte stream (asyncio.StreamWriter satisfies it)."""

    def write(self, data: bytes) -> None:
        ...

    async def drain(self) -> None:
        ...

    def close(self) -> None:
        ...


class FrameStream:
    """
    Message-level view of a duplex byte stream.

    receive() decodes one message at a time from arbitrarily chunked input; decode errors
    are raised for the offending line only, and the stream stays usable for the next one.
    send() encodes, writes and drains, so the frame is handed to the medium on return.
    """

    def __init__(
        self,
        reader: ByteReader,
        writer: ByteWriter,
        max_line_length: int | None = DEFAULT_MAX_LINE_LENGTH,
        name: str = "link",
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._decoder = FrameDecoder(max_line_length)
        self._buffer = bytearray()
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def decoder(self) -> FrameDecoder:
        return self._decoder

    async def receive(self) -> Message:
        """Return the next decoded message, reading more bytes as needed."""
        while True:
            message = self._decoder.decode(self._buffer)
            if message is not None:
                logger.debug("[%s] RX %r", self._name, message)
                return message
            try:
                chunk = await self._reader.read(READ_CHUNK_SIZE)
            except OSError as e:
                raise TransportError(f"[{self._name}] read failed: {e}", cause=e) from e
            if not chunk:
                raise LinkClosedError(f"[{self._name}] link closed by peer")
            self._buffer.extend(chunk)

    async def send(self, message: Message) -> None:
        """Encode and write one message, then flush it to the medium."""
        frame = encode_message(message)
        logger.debug("[%s] TX %s", self._name, describe_frame(frame))
        try:
            self._writer.write(frame)
            await self._writer.drain()
        except OSError as e:
            raise TransportError(f"[{self._name}] write failed: {e}", cause=e) from e

    def reset(self) -> None:
        """Drop buffered input and decoder progress (used after an abandoned transaction)."""
        if self._buffer:
            logger.debug("[%s] discarding %d buffered bytes", self._name, len(self._buffer))
        self._buffer.clear()
        self._decoder.reset()

    async def discard_input(self, quiet: float) -> int:
        """
        Drop buffered input, then keep reading and dropping until nothing arrives for
        `quiet` seconds. Returns the number of bytes dropped.
        """
        dropped = len(self._buffer)
        self.reset()
        while True:
            try:
                chunk = await asyncio.wait_for(self._reader.read(READ_CHUNK_SIZE), timeout=quiet)
            except asyncio.TimeoutError:
                break
            except OSError as e:
                raise TransportError(f"[{self._name}] read failed: {e}", cause=e) from e
            if not chunk:
                break
            dropped += len(chunk)
        if dropped:
            logger.debug("[%s] discarded %d stale bytes", self._name, dropped)
        return dropped

    def close(self) -> None:
        try:
            self._writer.close()
        except OSError as e:
            logger.warning("[%s] error closing link: %s", self._name, e)


async def open_serial_stream(
    port: str,
    baudrate: int = DEFAULT_BAUDRATE,
    rtscts: bool = False,
    max_line_length: int | None = DEFAULT_MAX_LINE_LENGTH,
) -> FrameStream:
    """Open a serial port (8N1) and return a FrameStream over it.

    Raises TransportError if the port cannot be opened.
    """
    try:
        reader, writer = await serial_asyncio.open_serial_connection(
            url=port,
            baudrate=baudrate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            rtscts=rtscts,
        )
    except (serial.SerialException, OSError) as e:
        raise TransportError(f"Failed to open {port}: {e}", cause=e) from e
    logger.info("Opened %s at %d baud", port, baudrate)
    return FrameStream(reader, writer, max_line_length=max_line_length, name=port)


def list_serial_ports() -> list[str]:
    """Return the device names of the serial ports present on this machine."""
    from serial.tools import list_ports

    return [p.device for p in list_ports.comports()]


class _MemoryWriter:
    """Writer half of a MemoryLink endpoint: feeds the peer's reader."""

    def __init__(self, peer: asyncio.StreamReader) -> None:
        self._peer = peer
        self._closed = False
        self.written = bytearray()

    def write(self, data: bytes) -> None:
        if self._closed:
            raise ConnectionResetError("memory link is closed")
        self.written.extend(data)
        self._peer.feed_data(data)

    async def drain(self) -> None:
        if self._closed:
            raise ConnectionResetError("memory link is closed")

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._peer.feed_eof()


class MemoryLink:
    """
    Two connected in-process FrameStreams, `master` and `slave`.

    Bytes written on one side are readable on the other; closing a side signals EOF
    to its peer. Must be created inside a running event loop.

    Example:
        link = MemoryLink()
        client = FxLinkClient(stream=link.master)
        server = FxLinkServer(stream=link.slave)
    """

    def __init__(self, max_line_length: int | None = DEFAULT_MAX_LINE_LENGTH) -> None:
        master_in = asyncio.StreamReader()
        slave_in = asyncio.StreamReader()
        self.master_writer = _MemoryWriter(slave_in)
        self.slave_writer = _MemoryWriter(master_in)
        self.master = FrameStream(master_in, self.master_writer, max_line_length, name="master")
        self.slave = FrameStream(slave_in, self.slave_writer, max_line_length, name="slave")
        self._master_in = master_in
        self._slave_in = slave_in

    def inject_to_master(self, data: bytes) -> None:
        """Feed raw bytes to the master side as if the slave had sent them."""
        self._master_in.feed_data(data)

    def inject_to_slave(self, data: bytes) -> None:
        """Feed raw bytes to the slave side as if the master had sent them."""
        self._slave_in.feed_data(data)

    def close(self) -> None:
        self.master.close()
        self.slave.close()
