"""Line framing codec: checksum, message encoding and incremental decoding.

Frame layout (one line, terminated by LF; a CR before the LF is tolerated on decode)::

    STX station plc data ETX checksum      Response
    ACK station plc                         Ack
    NAK station plc [error_code]            Nak / NakWithError
    ENQ station plc cmd wait head count [data] checksum   Request

- Every numeric field is fixed-width uppercase hex ASCII (station, plc, count: 2 digits;
  wait: 1 digit).
- cmd is ``WW`` (write words) or ``WR`` (read words); head is a 5-character device name.
- checksum is the 8-bit wraparound sum of every byte between the marker and the checksum
  field, as 2 hex digits. Only STX and ENQ frames carry one.

Encoding always emits uppercase hex. Decoding also accepts lowercase hex digits in numeric
fields, the checksum and data; decoded data is uppercased so it compares equal to what the
model holds.
"""

import logging
import re

from .errors import ChecksumError, FrameDecodeError, FrameTooLongError
from .types import (
    HEAD_DEVICE_LENGTH,
    Ack,
    Address,
    Message,
    Nak,
    NakWithError,
    ReadWords,
    Request,
    Response,
    WriteWords,
)

logger = logging.getLogger(__name__)

STX = 0x02
ETX = 0x03
ENQ = 0x05
ACK = 0x06
NAK = 0x15
CR = 0x0D
LF = 0x0A

CMD_WRITE_WORDS = "WW"
CMD_READ_WORDS = "WR"

DEFAULT_MAX_LINE_LENGTH = 2048

_HEX = re.compile(r"[0-9A-Fa-f]+")

_MARKER_NAMES = {STX: "STX", ACK: "ACK", NAK: "NAK", ENQ: "ENQ"}


def checksum(data: bytes) -> int:
    """Return the unsigned 8-bit wraparound sum of `data`."""
    return sum(data) & 0xFF


# ============================================================================
# Encoding
# ============================================================================


def _address_field(address: Address) -> str:
    return f"{address.station:02X}{address.plc:02X}"


def _request_body(request: Request) -> str:
    command = request.command
    if isinstance(command, WriteWords):
        return (
            f"{_address_field(request.address)}{CMD_WRITE_WORDS}{request.wait_time:X}"
            f"{command.head_device}{command.count:02X}{command.data}"
        )
    return (
        f"{_address_field(request.address)}{CMD_READ_WORDS}{request.wait_time:X}"
        f"{command.head_device}{command.count:02X}"
    )


def encode_message(message: Message) -> bytes:
    """Encode one message into a complete LF-terminated frame.

    The checksum is always computed from the freshly built body. Field invariants are
    enforced when the message is constructed, so a valid message always encodes.
    """
    if isinstance(message, Request):
        body = _request_body(message).encode("ascii")
        return bytes([ENQ]) + body + f"{checksum(body):02X}".encode("ascii") + bytes([LF])
    if isinstance(message, Response):
        body = f"{_address_field(message.address)}{message.data}".encode("ascii") + bytes([ETX])
        return bytes([STX]) + body + f"{checksum(body):02X}".encode("ascii") + bytes([LF])
    if isinstance(message, Ack):
        return bytes([ACK]) + _address_field(message.address).encode("ascii") + bytes([LF])
    if isinstance(message, NakWithError):
        body = f"{_address_field(message.address)}{message.error_code:02X}"
        return bytes([NAK]) + body.encode("ascii") + bytes([LF])
    if isinstance(message, Nak):
        return bytes([NAK]) + _address_field(message.address).encode("ascii") + bytes([LF])
    raise TypeError(f"Cannot encode {message!r}")


# ============================================================================
# Decoding
# ============================================================================


class _FieldReader:
    """Cursor over a frame body; each field is length-checked before it is sliced."""

    def __init__(self, kind: str, text: str, line: bytes) -> None:
        self._kind = kind
        self._text = text
        self._line = line
        self._pos = 0

    def error(self, message: str) -> FrameDecodeError:
        return FrameDecodeError(f"{self._kind} frame: {message}", line=self._line)

    @property
    def remaining(self) -> int:
        return len(self._text) - self._pos

    def text(self, width: int, name: str) -> str:
        if width > self.remaining:
            raise self.error(f"truncated {name} (need {width} characters, have {self.remaining})")
        value = self._text[self._pos : self._pos + width]
        self._pos += width
        return value

    def hex_int(self, width: int, name: str) -> int:
        raw = self.text(width, name)
        if not _HEX.fullmatch(raw):
            raise self.error(f"{name} is not hex: {raw!r}")
        return int(raw, 16)

    def hex_text(self, width: int, name: str) -> str:
        raw = self.text(width, name)
        if raw and not _HEX.fullmatch(raw):
            raise self.error(f"{name} is not hex: {raw!r}")
        return raw.upper()

    def address(self) -> Address:
        station = self.hex_int(2, "station")
        plc = self.hex_int(2, "plc")
        return Address(station, plc)

    def end(self) -> None:
        if self.remaining:
            raise self.error(f"{self.remaining} unexpected trailing characters")


def _split_checksum(kind: str, body: bytes, line: bytes) -> bytes:
    """Verify the trailing checksum of an STX/ENQ body and return the checksummed part."""
    if len(body) < 2:
        raise FrameDecodeError(f"{kind} frame: missing checksum", line=line)
    payload, field = body[:-2], body[-2:]
    expected = checksum(payload)
    text = field.decode("ascii", errors="replace")
    received = int(text, 16) if _HEX.fullmatch(text) else None
    if received is None:
        raise ChecksumError(
            f"{kind} frame: unreadable checksum field {field!r}",
            expected=expected,
            received=None,
            line=line,
        )
    if received != expected:
        raise ChecksumError(
            f"{kind} frame: checksum mismatch (computed {expected:02X}, received {received:02X})",
            expected=expected,
            received=received,
            line=line,
        )
    return payload


def _ascii(kind: str, data: bytes, line: bytes) -> str:
    try:
        return data.decode("ascii")
    except UnicodeDecodeError:
        raise FrameDecodeError(f"{kind} frame: non-text bytes in body", line=line) from None


def _decode_response(body: bytes, line: bytes) -> Response:
    payload = _split_checksum("STX", body, line)
    if len(payload) < 5:
        raise FrameDecodeError("STX frame: truncated header", line=line)
    if payload[-1] != ETX:
        raise FrameDecodeError("STX frame: ETX not found before checksum", line=line)
    fields = _FieldReader("STX", _ascii("STX", payload[:-1], line), line)
    address = fields.address()
    data = fields.hex_text(fields.remaining, "data")
    return Response(address, data)


def _decode_request(body: bytes, line: bytes) -> Request:
    payload = _split_checksum("ENQ", body, line)
    fields = _FieldReader("ENQ", _ascii("ENQ", payload, line), line)
    address = fields.address()
    code = fields.text(2, "command code")
    if code not in (CMD_WRITE_WORDS, CMD_READ_WORDS):
        raise fields.error(f"command {code!r} not implemented")
    wait_time = fields.hex_int(1, "wait time")
    head_device = fields.text(HEAD_DEVICE_LENGTH, "head device")
    count = fields.hex_int(2, "device count")
    if count == 0:
        raise fields.error("device count must not be 0")
    if code == CMD_WRITE_WORDS:
        if fields.remaining != count * 4:
            raise fields.error(f"command {code} data length {fields.remaining} does not match count {count}")
        data = fields.hex_text(count * 4, "data")
    else:
        fields.end()
    try:
        if code == CMD_WRITE_WORDS:
            return Request(address, WriteWords(head_device, count, data), wait_time)
        return Request(address, ReadWords(head_device, count), wait_time)
    except ValueError as e:
        raise fields.error(str(e)) from e


def _decode_ack(body: bytes, line: bytes) -> Ack:
    if len(body) != 4:
        raise FrameDecodeError(f"ACK frame: expected 4 characters, got {len(body)}", line=line)
    fields = _FieldReader("ACK", _ascii("ACK", body, line), line)
    return Ack(fields.address())


def _decode_nak(body: bytes, line: bytes) -> Nak | NakWithError:
    if len(body) not in (4, 6):
        raise FrameDecodeError(f"NAK frame: expected 4 or 6 characters, got {len(body)}", line=line)
    fields = _FieldReader("NAK", _ascii("NAK", body, line), line)
    address = fields.address()
    if fields.remaining:
        return NakWithError(address, fields.hex_int(2, "error code"))
    return Nak(address)


_DECODERS = {
    STX: _decode_response,
    ENQ: _decode_request,
    ACK: _decode_ack,
    NAK: _decode_nak,
}


def decode_frame(line: bytes) -> Message:
    """Decode one complete line (without LF; a trailing CR is stripped) into a message.

    Raises FrameDecodeError (or ChecksumError) for anything that is not a valid frame.
    """
    if line.endswith(b"\r"):
        line = line[:-1]
    if not line:
        raise FrameDecodeError("Empty frame", line=line)
    decoder = _DECODERS.get(line[0])
    if decoder is None:
        raise FrameDecodeError(f"Unrecognized frame marker 0x{line[0]:02X}", line=line)
    return decoder(line[1:], line)


class FrameDecoder:
    """
    Incremental decoder over a growing byte buffer.

    Remembers how far the current partial line has been scanned, so repeated calls never
    rescan the same bytes, and skips a line that outgrew `max_line_length` until the next
    terminator (discard mode). `max_line_length=None` disables the limit.
    """

    def __init__(self, max_line_length: int | None = DEFAULT_MAX_LINE_LENGTH) -> None:
        if max_line_length is not None and max_line_length < 1:
            raise ValueError(f"max_line_length must be >= 1, got {max_line_length}")
        self._max_length = max_line_length
        self._next_index = 0
        self._discarding = False

    @property
    def max_line_length(self) -> int | None:
        return self._max_length

    @property
    def discarding(self) -> bool:
        return self._discarding

    @property
    def scan_offset(self) -> int:
        """How many bytes of the pending partial line were already searched for LF."""
        return self._next_index

    def reset(self) -> None:
        """Forget any scan progress and leave discard mode."""
        self._next_index = 0
        self._discarding = False

    def decode(self, buf: bytearray) -> Message | None:
        """
        Consume at most one line from the front of `buf`.

        Returns the decoded message, or None when more data is needed. Raises
        FrameDecodeError for a bad line (which is removed from `buf`) and
        FrameTooLongError when the line limit is exceeded (discard mode starts).
        """
        while True:
            if self._max_length is None:
                read_to = len(buf)
            else:
                read_to = min(self._max_length + 1, len(buf))
            newline = buf.find(LF, self._next_index, read_to)

            if self._discarding:
                if newline != -1:
                    del buf[: newline + 1]
                    self._discarding = False
                    logger.debug("Resynchronized after oversized line")
                else:
                    del buf[:read_to]
                self._next_index = 0
                if not buf:
                    return None
                continue

            if newline != -1:
                line = bytes(buf[:newline])
                del buf[: newline + 1]
                self._next_index = 0
                return decode_frame(line)

            if self._max_length is not None and len(buf) > self._max_length:
                self._discarding = True
                raise FrameTooLongError(self._max_length)

            self._next_index = read_to
            return None


def describe_frame(frame: bytes) -> str:
    """Render a frame with its control bytes spelled out, e.g. ``<ENQ>00FFWR0D010601<LF>``."""
    names = {**_MARKER_NAMES, ETX: "ETX", CR: "CR", LF: "LF"}
    return "".join(f"<{names[b]}>" if b in names else chr(b) if 0x20 <= b < 0x7F else f"<{b:02X}>" for b in frame)
