"""FxLinkClient: master side of the link; one request/acknowledge exchange per call."""

import asyncio
import logging
from typing import Any, Awaitable, TypeVar

from .codec import DEFAULT_MAX_LINE_LENGTH
from .errors import (
    ProtocolViolationError,
    TransactionBusyError,
    TransactionTimeoutError,
    TransportError,
)
from .normalize import decode_value, encode_value, normalize_device
from .transport import DEFAULT_BAUDRATE, FrameStream, open_serial_stream
from .types import (
    Ack,
    Address,
    Message,
    Nak,
    ReadWords,
    RegisterWidth,
    Request,
    Response,
    TransactionState,
    WriteWords,
)

logger = logging.getLogger(__name__)

DEFAULT_STATION = 0
DEFAULT_PLC = 0xFF
DEFAULT_WAIT_TIME = 0
DEFAULT_TIMEOUT = 3.0
# seconds of silence that end the stale-input flush after a timed-out transaction
STALE_INPUT_QUIET = 0.05

T = TypeVar("T")


class FxLinkClient:
    """
    Master (client) role: writes and reads word devices on one station by device name.

    Each call is a complete transaction; a second call while one is outstanding raises
    TransactionBusyError. Every wait for a reply is bounded by `timeout` seconds
    (None waits forever). After a timeout the next transaction first drops whatever
    input arrives until the line goes quiet, so a late reply is never mistaken for a
    fresh one. Errors are raised to the caller; nothing is retried here.
    """

    def __init__(
        self,
        port: str | None = None,
        baudrate: int = DEFAULT_BAUDRATE,
        station: int = DEFAULT_STATION,
        plc: int = DEFAULT_PLC,
        wait_time: int = DEFAULT_WAIT_TIME,
        timeout: float | None = DEFAULT_TIMEOUT,
        max_line_length: int | None = DEFAULT_MAX_LINE_LENGTH,
        stream: FrameStream | None = None,
    ) -> None:
        if not 0 <= wait_time <= 0xF:
            raise ValueError(f"wait_time must be 0-15, got {wait_time}")
        self._port = port
        self._baudrate = baudrate
        self._address = Address(station, plc)
        self._wait_time = wait_time
        self._timeout = timeout
        self._max_line_length = max_line_length
        self._stream = stream
        self._state = TransactionState.IDLE
        self._stale_input = False

    @property
    def address(self) -> Address:
        return self._address

    @property
    def state(self) -> TransactionState:
        return self._state

    async def _get_stream(self) -> FrameStream:
        if self._stream is None:
            if not self._port:
                raise TransportError("No serial port configured")
            self._stream = await open_serial_stream(
                self._port,
                baudrate=self._baudrate,
                max_line_length=self._max_line_length,
            )
        return self._stream

    async def connect(self) -> None:
        """Open the serial port (no-op when a stream was supplied)."""
        await self._get_stream()

    async def close(self) -> None:
        """Close the link."""
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    async def __aenter__(self) -> "FxLinkClient":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _begin(self, state: TransactionState) -> None:
        if self._state is not TransactionState.IDLE:
            raise TransactionBusyError(self._state)
        self._state = state

    async def _await_reply(self, stream: FrameStream, pending: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(pending, timeout=self._timeout)
        except asyncio.TimeoutError:
            state = self._state
            logger.warning("Timeout after %ss while %s", self._timeout, state.value)
            stream.reset()
            self._stale_input = True
            raise TransactionTimeoutError(self._timeout, state) from None

    async def _open_exchange(self) -> FrameStream:
        stream = await self._get_stream()
        if self._stale_input:
            # a reply to the abandoned transaction may still arrive; it must not
            # be taken as the reply to this one
            await stream.discard_input(STALE_INPUT_QUIET)
            self._stale_input = False
        return stream

    def _request(self, command: ReadWords | WriteWords) -> Request:
        return Request(self._address, command, self._wait_time)

    async def write_words(self, device: str, data: str) -> None:
        """
        Write raw hex `data` (4 characters per word) starting at `device`.
        Returns once the slave acknowledged; any other reply raises ProtocolViolationError.
        """
        head = normalize_device(device)
        request = self._request(WriteWords(head, len(data) // 4, data.upper()))
        self._begin(TransactionState.AWAITING_REPLY)
        try:
            stream = await self._open_exchange()
            await stream.send(request)
            reply = await self._await_reply(stream, stream.receive())
            if not isinstance(reply, Ack):
                logger.warning("Write %s rejected: %r", head, reply)
                raise ProtocolViolationError(reply, "Ack")
            logger.debug("Wrote %s = %s", head, request.command.data)
        finally:
            self._state = TransactionState.IDLE

    async def read_words(self, device: str, count: int) -> str:
        """
        Read `count` words starting at `device` and return the raw hex data.

        A Response is acknowledged with Ack before returning. Any other reply, or a
        Response of the wrong size, is answered with Nak and raises ProtocolViolationError.
        """
        head = normalize_device(device)
        request = self._request(ReadWords(head, count))
        self._begin(TransactionState.AWAITING_RESPONSE)
        try:
            stream = await self._open_exchange()
            await stream.send(request)
            reply: Message = await self._await_reply(stream, stream.receive())
            self._state = TransactionState.AWAITING_CLOSE
            if not isinstance(reply, Response):
                await stream.send(Nak(self._address))
                raise ProtocolViolationError(reply, "Response")
            if len(reply.data) != count * 4:
                await stream.send(Nak(self._address))
                raise ProtocolViolationError(
                    reply,
                    "Response",
                    f"Expected {count * 4} hex characters for {count} words, got {reply.data!r}",
                )
            await stream.send(Ack(self._address))
            logger.debug("Read %s = %s", head, reply.data)
            return reply.data
        finally:
            self._state = TransactionState.IDLE

    async def read(self, device: str, width: RegisterWidth = RegisterWidth.WORD) -> int:
        """Read one signed register value of `width`."""
        data = await self.read_words(device, width.count)
        return decode_value(data, width)

    async def write(self, device: str, value: int, width: RegisterWidth = RegisterWidth.WORD) -> None:
        """Write one signed register value of `width` (raises ValueError when out of range)."""
        await self.write_words(device, encode_value(value, width))

    async def read_i16(self, device: str) -> int:
        return await self.read(device, RegisterWidth.WORD)

    async def read_i32(self, device: str) -> int:
        return await self.read(device, RegisterWidth.DWORD)

    async def write_i16(self, device: str, value: int) -> None:
        await self.write(device, value, RegisterWidth.WORD)

    async def write_i32(self, device: str, value: int) -> None:
        await self.write(device, value, RegisterWidth.DWORD)

    async def read_many(
        self, devices: list[str], width: RegisterWidth = RegisterWidth.WORD
    ) -> dict[str, int]:
        """Read several devices one transaction at a time, in order."""
        out: dict[str, int] = {}
        for device in devices:
            out[device] = await self.read(device, width)
        return out

