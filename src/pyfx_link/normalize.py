"""Normalize device names; convert signed register values to and from their hex wire form."""

import re

from .errors import InvalidDeviceError
from .types import HEAD_DEVICE_LENGTH, RegisterWidth

# One-letter device + 1-4 digits (D106, M640) or two-letter device + 1-3 digits (TN5, CN12)
_DEVICE_PATTERN = re.compile(
    r"(?:([DMXYSR])([0-9]{1,4})|(TN|TS|CN|CS)([0-9]{1,3}))",
    re.IGNORECASE,
)


def normalize_device(raw: str) -> str:
    """
    Normalize a device name to the 5-character head device used on the wire.

    - Uppercase the device letters.
    - Zero-pad the number to 4 digits (one-letter devices) or 3 digits (TN, TS, CN, CS).
    - Any other name that is already exactly 5 printable ASCII characters is passed
      through unchanged (e.g. ``W0100``).

    Raises InvalidDeviceError for malformed names.
    """
    s = raw.strip()
    if not s:
        raise InvalidDeviceError(raw, "Device cannot be empty")

    m = _DEVICE_PATTERN.fullmatch(s)
    if not m:
        if len(s) == HEAD_DEVICE_LENGTH and s.isascii() and s.isprintable():
            return s
        raise InvalidDeviceError(raw, f"Malformed device: {raw!r}")

    if m.group(1):
        return f"{m.group(1).upper()}{int(m.group(2)):04d}"
    return f"{m.group(3).upper()}{int(m.group(4)):03d}"


def to_signed(value: int, width: RegisterWidth = RegisterWidth.WORD) -> int:
    """Reinterpret an unsigned register value as two's-complement signed."""
    if value >= 1 << (width.bits - 1):
        return value - (1 << width.bits)
    return value


def from_signed(value: int, width: RegisterWidth = RegisterWidth.WORD) -> int:
    """Convert a signed value to its unsigned two's-complement register value."""
    if value < 0:
        return value + (1 << width.bits)
    return value


def check_range(value: int, width: RegisterWidth) -> None:
    """Raise ValueError unless `value` fits the signed range of `width`."""
    low = -(1 << (width.bits - 1))
    high = (1 << (width.bits - 1)) - 1
    if not low <= value <= high:
        raise ValueError(f"Signed {width.bits}-bit integer out of range: {value}")


def encode_value(value: int, width: RegisterWidth) -> str:
    """Render a signed value as big-endian, zero-padded uppercase hex of the width's size."""
    check_range(value, width)
    return f"{from_signed(value, width):0{width.hex_digits}X}"


def decode_value(data: str, width: RegisterWidth) -> int:
    """Parse register hex data as unsigned, then reinterpret it as signed of `width`."""
    if len(data) != width.hex_digits:
        raise ValueError(f"Expected {width.hex_digits} hex characters for {width.bits}-bit value, got {data!r}")
    return to_signed(int(data, 16), width)


def zero_data(count: int) -> str:
    """Default value of `count` unwritten word devices."""
    return "0" * (count * 4)
