"""Tests for FrameDecoder: arbitrary chunking, oversized lines and resynchronization."""

import pytest

from pyfx_link.codec import FrameDecoder, encode_message
from pyfx_link.errors import FrameDecodeError, FrameTooLongError
from pyfx_link.types import (
    Ack,
    Address,
    Nak,
    NakWithError,
    ReadWords,
    Request,
    Response,
    WriteWords,
)

ADDR = Address(5, 0xFF)

MESSAGES = [
    Request(ADDR, WriteWords("D0106", 1, "0065"), 0),
    Ack(ADDR),
    Request(ADDR, ReadWords("D0106", 1), 0),
    Response(ADDR, "0065"),
    Ack(ADDR),
    Nak(ADDR),
    NakWithError(ADDR, 2),
]

STREAM = b"".join(encode_message(m) for m in MESSAGES)


def decode_chunks(decoder: FrameDecoder, chunks: list[bytes]) -> list:
    buf = bytearray()
    out = []
    for chunk in chunks:
        buf.extend(chunk)
        while (message := decoder.decode(buf)) is not None:
            out.append(message)
    return out


def test_whole_stream_in_one_chunk() -> None:
    assert decode_chunks(FrameDecoder(), [STREAM]) == MESSAGES


def test_byte_at_a_time() -> None:
    chunks = [STREAM[i : i + 1] for i in range(len(STREAM))]
    assert decode_chunks(FrameDecoder(), chunks) == MESSAGES


@pytest.mark.parametrize("split", range(1, len(STREAM), 3))
def test_any_split_point(split: int) -> None:
    chunks = [STREAM[:split], STREAM[split:]]
    assert decode_chunks(FrameDecoder(), chunks) == MESSAGES


def test_partial_line_is_kept_in_buffer() -> None:
    decoder = FrameDecoder()
    frame = encode_message(Ack(ADDR))
    buf = bytearray(frame[:-1])
    assert decoder.decode(buf) is None
    assert decoder.decode(buf) is None
    assert bytes(buf) == frame[:-1]
    # the partial line is not searched again from the start
    assert decoder.scan_offset == len(frame) - 1
    buf.extend(b"\n")
    assert decoder.decode(buf) == Ack(ADDR)
    assert not buf
    assert decoder.scan_offset == 0


def test_scan_offset_follows_each_partial_delivery() -> None:
    decoder = FrameDecoder()
    frame = encode_message(Response(ADDR, "0065"))
    buf = bytearray()
    for size in (3, 7, len(frame) - 1):
        buf[:] = frame[:size]
        assert decoder.decode(buf) is None
        assert decoder.scan_offset == size
    buf[:] = frame
    assert decoder.decode(buf) == Response(ADDR, "0065")
    assert decoder.scan_offset == 0


def test_crlf_terminated_lines() -> None:
    buf = bytearray(b"\x0605FF\r\n\x1505FF\r\n")
    decoder = FrameDecoder()
    assert decoder.decode(buf) == Ack(ADDR)
    assert decoder.decode(buf) == Nak(ADDR)


def test_bad_line_is_consumed_and_next_line_decodes() -> None:
    buf = bytearray(b"\x07junk\n" + encode_message(Ack(ADDR)))
    decoder = FrameDecoder()
    with pytest.raises(FrameDecodeError, match="marker"):
        decoder.decode(buf)
    assert decoder.decode(buf) == Ack(ADDR)
    assert not buf


def test_blank_line_is_a_decode_error() -> None:
    buf = bytearray(b"\n" + encode_message(Ack(ADDR)))
    decoder = FrameDecoder()
    with pytest.raises(FrameDecodeError, match="Empty"):
        decoder.decode(buf)
    assert decoder.decode(buf) == Ack(ADDR)


def test_line_at_limit_is_accepted() -> None:
    frame = encode_message(Ack(ADDR))
    decoder = FrameDecoder(max_line_length=len(frame) - 1)
    assert decoder.decode(bytearray(frame)) == Ack(ADDR)


def test_oversized_line_reports_once_then_resyncs() -> None:
    decoder = FrameDecoder(max_line_length=16)
    buf = bytearray(b"X" * 40 + b"\n" + encode_message(Ack(ADDR)))
    with pytest.raises(FrameTooLongError) as exc_info:
        decoder.decode(buf)
    assert exc_info.value.limit == 16
    assert decoder.discarding
    assert decoder.decode(buf) == Ack(ADDR)
    assert not decoder.discarding
    assert decoder.decode(buf) is None
    assert not buf


def test_oversized_line_across_chunks() -> None:
    decoder = FrameDecoder(max_line_length=16)
    buf = bytearray(b"X" * 20)
    with pytest.raises(FrameTooLongError):
        decoder.decode(buf)
    # remaining garbage is dropped without further errors
    assert decoder.decode(buf) is None
    assert not buf
    assert decoder.discarding
    buf.extend(b"XXXX")
    assert decoder.decode(buf) is None
    buf.extend(b"XX\n" + encode_message(Nak(ADDR)))
    assert decoder.decode(buf) == Nak(ADDR)


def test_discarding_with_empty_buffer_returns_none() -> None:
    decoder = FrameDecoder(max_line_length=4)
    buf = bytearray(b"XXXXXX")
    with pytest.raises(FrameTooLongError):
        decoder.decode(buf)
    assert decoder.decode(buf) is None
    assert decoder.decode(buf) is None


def test_reset_leaves_discard_mode() -> None:
    decoder = FrameDecoder(max_line_length=4)
    with pytest.raises(FrameTooLongError):
        decoder.decode(bytearray(b"XXXXXX"))
    decoder.reset()
    assert not decoder.discarding
    assert decoder.decode(bytearray(b"\x0605FF\n")) == Ack(ADDR)


def test_unlimited_line_length() -> None:
    decoder = FrameDecoder(max_line_length=None)
    buf = bytearray(b"X" * 10_000)
    assert decoder.decode(buf) is None
    assert decoder.max_line_length is None


def test_invalid_limit() -> None:
    with pytest.raises(ValueError, match="max_line_length"):
        FrameDecoder(max_line_length=0)
