"""pyfx-link: word device read/write over a line-framed ENQ/ACK/NAK serial link."""

__version__ = "0.1.0"

from .client import FxLinkClient
from .codec import FrameDecoder, checksum, decode_frame, encode_message
from .errors import (
    ChecksumError,
    FrameDecodeError,
    FrameTooLongError,
    InvalidDeviceError,
    LinkClosedError,
    ProtocolViolationError,
    PyFxLinkError,
    TransactionBusyError,
    TransactionTimeoutError,
    TransportError,
)
from .normalize import normalize_device
from .server import FxLinkServer
from .store import RegisterStore
from .transport import FrameStream, MemoryLink, open_serial_stream
from .types import (
    Ack,
    Address,
    Message,
    Nak,
    NakWithError,
    ReadWords,
    RegisterWidth,
    Request,
    Response,
    TransactionState,
    WriteWords,
)

__all__ = [
    "__version__",
    "FxLinkClient",
    "FxLinkServer",
    "RegisterStore",
    "FrameStream",
    "MemoryLink",
    "open_serial_stream",
    "FrameDecoder",
    "checksum",
    "decode_frame",
    "encode_message",
    "normalize_device",
    "ChecksumError",
    "FrameDecodeError",
    "FrameTooLongError",
    "InvalidDeviceError",
    "LinkClosedError",
    "ProtocolViolationError",
    "PyFxLinkError",
    "TransactionBusyError",
    "TransactionTimeoutError",
    "TransportError",
    "Ack",
    "Address",
    "Message",
    "Nak",
    "NakWithError",
    "ReadWords",
    "RegisterWidth",
    "Request",
    "Response",
    "TransactionState",
    "WriteWords",
]
