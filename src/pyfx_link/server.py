"""FxLinkServer: slave side of the link, answering requests from a RegisterStore."""

import asyncio
import logging
from typing import Any

from .codec import DEFAULT_MAX_LINE_LENGTH
from .errors import FrameDecodeError, LinkClosedError, TransportError
from .store import RegisterStore
from .transport import DEFAULT_BAUDRATE, FrameStream, open_serial_stream
from .types import (
    Ack,
    Message,
    Nak,
    NakWithError,
    ReadWords,
    Request,
    Response,
    TransactionState,
    WriteWords,
)

logger = logging.getLogger(__name__)


class FxLinkServer:
    """
    Slave (server) role: consumes requests one at a time from a single link.

    WriteWords stores the data and replies Ack. ReadWords replies Response with the stored
    (or all-zero) data, then waits for the master's closing Ack/Nak before taking the next
    request. Anything unexpected is logged and discarded; the loop keeps running.
    """

    def __init__(
        self,
        port: str | None = None,
        baudrate: int = DEFAULT_BAUDRATE,
        rtscts: bool = False,
        store: RegisterStore | None = None,
        close_timeout: float | None = None,
        max_line_length: int | None = DEFAULT_MAX_LINE_LENGTH,
        stream: FrameStream | None = None,
    ) -> None:
        self._port = port
        self._baudrate = baudrate
        self._rtscts = rtscts
        self._store = store if store is not None else RegisterStore()
        self._close_timeout = close_timeout
        self._max_line_length = max_line_length
        self._stream = stream
        self._state = TransactionState.IDLE

    @property
    def store(self) -> RegisterStore:
        return self._store

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
                rtscts=self._rtscts,
                max_line_length=self._max_line_length,
            )
        return self._stream

    async def close(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    async def __aenter__(self) -> "FxLinkServer":
        await self._get_stream()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def serve_forever(self) -> None:
        """Handle requests until the link is closed by the peer."""
        stream = await self._get_stream()
        logger.info("Serving on %s", stream.name)
        while True:
            try:
                await self.handle_next()
            except LinkClosedError:
                logger.info("Link %s closed, stopping", stream.name)
                return

    async def handle_next(self) -> Message | None:
        """
        Receive and handle one top-level frame. Returns the handled message, or None if
        the frame could not be decoded. Transport errors propagate.
        """
        stream = await self._get_stream()
        try:
            message = await stream.receive()
        except FrameDecodeError as e:
            logger.warning("Discarding bad frame: %s", e)
            return None

        if isinstance(message, Request):
            await self._handle_request(stream, message)
        else:
            logger.warning("Received unexpected %s: %r", type(message).__name__, message)
        return message

    async def _handle_request(self, stream: FrameStream, request: Request) -> None:
        command = request.command
        if isinstance(command, WriteWords):
            self._state = TransactionState.AWAITING_REPLY
            try:
                self._store.set(command.head_device, command.data)
                await stream.send(Ack(request.address))
            finally:
                self._state = TransactionState.IDLE
        elif isinstance(command, ReadWords):
            data = self._store.get(command.head_device, command.count)
            self._state = TransactionState.AWAITING_CLOSE
            try:
                await stream.send(Response(request.address, data))
                await self._await_close(stream)
            finally:
                self._state = TransactionState.IDLE

    async def _await_close(self, stream: FrameStream) -> None:
        try:
            reply = await asyncio.wait_for(stream.receive(), timeout=self._close_timeout)
        except asyncio.TimeoutError:
            logger.warning("No Ack/Nak from master within %ss, closing transaction", self._close_timeout)
            return
        except FrameDecodeError as e:
            logger.warning("Bad closing frame: %s", e)
            return
        if isinstance(reply, Ack):
            return
        if isinstance(reply, (Nak, NakWithError)):
            logger.warning("Master rejected response: %r", reply)
        else:
            logger.warning("Received unexpected message while awaiting Ack: %r", reply)
