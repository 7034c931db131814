"""Core data model: addresses, commands, the closed set of link messages, widths and states."""

import re
from dataclasses import dataclass
from enum import Enum

HEAD_DEVICE_LENGTH = 5

_UPPER_HEX = re.compile(r"[0-9A-F]*")


def _check_byte(name: str, value: int) -> None:
    if not 0 <= value <= 0xFF:
        raise ValueError(f"{name} must be 0-255, got {value}")


def _check_head_device(head_device: str) -> None:
    if len(head_device) != HEAD_DEVICE_LENGTH or not head_device.isascii():
        raise ValueError(f"head_device must be exactly {HEAD_DEVICE_LENGTH} ASCII characters, got {head_device!r}")
    if not head_device.isprintable():
        raise ValueError(f"head_device must be printable, got {head_device!r}")


def _check_hex(name: str, value: str) -> None:
    if not _UPPER_HEX.fullmatch(value):
        raise ValueError(f"{name} must be uppercase hex, got {value!r}")


class RegisterWidth(Enum):
    """Register widths the client reads and writes: 16-bit word and 32-bit double word."""

    WORD = 16
    DWORD = 32

    @property
    def bits(self) -> int:
        return self.value

    @property
    def count(self) -> int:
        """Number of 16-bit device points the value occupies."""
        return self.value // 16

    @property
    def hex_digits(self) -> int:
        return self.value // 4


class TransactionState(str, Enum):
    """States of a single master/slave exchange."""

    IDLE = "idle"
    AWAITING_REPLY = "awaiting_reply"
    AWAITING_RESPONSE = "awaiting_response"
    AWAITING_CLOSE = "awaiting_close"


@dataclass(frozen=True)
class Address:
    """Station and PLC number identifying the responding device on the link."""

    station: int
    plc: int

    def __post_init__(self) -> None:
        _check_byte("station", self.station)
        _check_byte("plc", self.plc)


@dataclass(frozen=True)
class ReadWords:
    """Batch read of `count` word devices starting at `head_device` (command WR)."""

    head_device: str
    count: int

    def __post_init__(self) -> None:
        _check_head_device(self.head_device)
        if not 1 <= self.count <= 0xFF:
            raise ValueError(f"count must be 1-255, got {self.count}")


@dataclass(frozen=True)
class WriteWords:
    """Batch write of `count` word devices starting at `head_device` (command WW)."""

    head_device: str
    count: int
    data: str

    def __post_init__(self) -> None:
        _check_head_device(self.head_device)
        if not 1 <= self.count <= 0xFF:
            raise ValueError(f"count must be 1-255, got {self.count}")
        _check_hex("data", self.data)
        if len(self.data) != self.count * 4:
            raise ValueError(
                f"data must be {self.count * 4} hex characters for count {self.count}, got {len(self.data)}"
            )


Command = ReadWords | WriteWords


@dataclass(frozen=True)
class Request:
    """ENQ frame: a command addressed to one station, with the peer's response wait code."""

    address: Address
    command: Command
    wait_time: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.command, (ReadWords, WriteWords)):
            raise ValueError(f"Unsupported command: {self.command!r}")
        if not 0 <= self.wait_time <= 0xF:
            raise ValueError(f"wait_time must be 0-15, got {self.wait_time}")


@dataclass(frozen=True)
class Response:
    """STX frame: raw hex data returned by a read."""

    address: Address
    data: str

    def __post_init__(self) -> None:
        _check_hex("data", self.data)


@dataclass(frozen=True)
class Ack:
    """ACK frame: positive acknowledgement."""

    address: Address


@dataclass(frozen=True)
class Nak:
    """NAK frame without an error code."""

    address: Address


@dataclass(frozen=True)
class NakWithError:
    """NAK frame carrying a one-byte diagnostic code."""

    address: Address
    error_code: int

    def __post_init__(self) -> None:
        _check_byte("error_code", self.error_code)


Message = Request | Ack | Nak | NakWithError | Response
