"""Clear exceptions for pyfx-link: malformed frames, link failures and protocol violations."""

from typing import Any


class PyFxLinkError(Exception):
    """Base exception for pyfx-link."""

    pass


class InvalidDeviceError(PyFxLinkError, ValueError):
    """Raised when a device name is malformed (syntax validation failed)."""

    def __init__(self, device: str, message: str | None = None) -> None:
        self.device = device
        self._msg = message or f"Invalid device: {device!r}"
        super().__init__(self._msg)


class FrameDecodeError(PyFxLinkError):
    """Raised when a received line is not a valid frame. The line itself is already discarded."""

    def __init__(self, message: str, *, line: bytes | None = None) -> None:
        self.line = line
        super().__init__(message)


class ChecksumError(FrameDecodeError):
    """Raised when a checksummed frame carries a wrong or unreadable checksum."""

    def __init__(
        self,
        message: str,
        *,
        expected: int,
        received: int | None,
        line: bytes | None = None,
    ) -> None:
        self.expected = expected
        self.received = received
        super().__init__(message, line=line)


class FrameTooLongError(FrameDecodeError):
    """Raised when no line terminator shows up within the line length limit."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"Line length limit of {limit} bytes exceeded")


class TransportError(PyFxLinkError):
    """Raised when the underlying byte stream fails (wraps OSError / serial errors)."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)


class LinkClosedError(TransportError):
    """Raised when the byte stream reaches end of file."""

    pass


class ProtocolViolationError(PyFxLinkError):
    """Raised when the peer replies with the wrong kind of message for the pending transaction."""

    def __init__(self, received: Any, expected: str, message: str | None = None) -> None:
        self.received = received
        self.expected = expected
        self._msg = message or f"Expected {expected} but received {received!r}"
        super().__init__(self._msg)


class TransactionTimeoutError(PyFxLinkError, TimeoutError):
    """Raised when the peer does not reply within the configured timeout."""

    def __init__(self, timeout: float, state: Any) -> None:
        self.timeout = timeout
        self.state = state
        super().__init__(f"No reply within {timeout}s while {state.value}")


class TransactionBusyError(PyFxLinkError):
    """Raised when a transaction is started while another one is still outstanding."""

    def __init__(self, state: Any) -> None:
        self.state = state
        super().__init__(f"Another transaction is in progress ({state.value})")
