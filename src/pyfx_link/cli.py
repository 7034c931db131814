#!/usr/bin/env python3
"""Command-line tool for pyfx-link using Typer."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Optional

import typer
from typing_extensions import Annotated

from . import __version__  # type: ignore
from .client import DEFAULT_PLC, DEFAULT_STATION, DEFAULT_TIMEOUT, DEFAULT_WAIT_TIME, FxLinkClient
from .codec import DEFAULT_MAX_LINE_LENGTH, describe_frame, encode_message
from .errors import InvalidDeviceError, PyFxLinkError
from .normalize import encode_value, normalize_device, to_signed
from .server import FxLinkServer
from .transport import DEFAULT_BAUDRATE, list_serial_ports
from .types import Address, ReadWords, RegisterWidth, Request, WriteWords

app = typer.Typer(
    name="fxlink",
    help="Read and write PLC word devices over an ENQ/ACK/NAK serial link.",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Shared options and helpers
# ============================================================================

PortOption = Annotated[
    Optional[str],
    typer.Option("--port", "-p", help="Serial port (e.g. /dev/ttyUSB0, COM3)", envvar="FXLINK_PORT"),
]
BaudrateOption = Annotated[
    int,
    typer.Option("--baudrate", "-b", help="Serial baud rate", envvar="FXLINK_BAUDRATE"),
]
StationOption = Annotated[
    int,
    typer.Option("--station", "-s", help="Station number (0-255)", envvar="FXLINK_STATION"),
]
PlcOption = Annotated[
    int,
    typer.Option("--plc", help="PLC number (0-255)", envvar="FXLINK_PLC"),
]
WaitTimeOption = Annotated[
    int,
    typer.Option("--wait-time", "-w", help="Response wait code sent to the PLC (0-15)", envvar="FXLINK_WAIT_TIME"),
]
TimeoutOption = Annotated[
    float,
    typer.Option("--timeout", "-t", help="Reply timeout in seconds", envvar="FXLINK_TIMEOUT"),
]
WidthOption = Annotated[
    int,
    typer.Option("--width", help="Register width in bits: 16 (one word) or 32 (two words)"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbose flag."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s" if not verbose else "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def create_client(
    port: Optional[str],
    baudrate: int,
    station: int,
    plc: int,
    wait_time: int,
    timeout: float,
) -> FxLinkClient:
    """Create and return an FxLinkClient instance."""
    if not port:
        typer.echo("Error: --port is required for this command", err=True)
        raise typer.Exit(2)
    try:
        return FxLinkClient(
            port=port,
            baudrate=baudrate,
            station=station,
            plc=plc,
            wait_time=wait_time,
            timeout=timeout,
        )
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)


def parse_width(bits: int) -> RegisterWidth:
    """Map a bit count (16 or 32) to a RegisterWidth."""
    try:
        return RegisterWidth(bits)
    except ValueError:
        raise ValueError(f"Width must be 16 or 32, got {bits}") from None


def parse_int(value: str, width: RegisterWidth = RegisterWidth.WORD) -> int:
    """
    Parse a register value: signed decimal, or 0x hex up to the unsigned maximum
    (hex is reinterpreted as two's complement, so 0xFFFF is -1 for 16 bits).
    """
    v = value.strip()
    if v.lower().startswith("0x"):
        num = int(v, 16)
        if not 0 <= num < (1 << width.bits):
            raise ValueError(f"Unsigned {width.bits}-bit integer out of range: {v}")
        return to_signed(num, width)
    num = int(v)
    low = -(1 << (width.bits - 1))
    high = (1 << (width.bits - 1)) - 1
    if not low <= num <= high:
        raise ValueError(f"Signed {width.bits}-bit integer out of range: {num}")
    return num


def _fail(message: str, code: int, verbose: bool = False) -> typer.Exit:
    typer.echo(f"Error: {message}", err=True)
    if verbose and code == 4:
        import traceback
        traceback.print_exc()
    return typer.Exit(code)


# ============================================================================
# Commands
# ============================================================================

@app.command()
def info(json_output: JsonOption = False) -> None:
    """Show package version and link defaults. Does not open a port."""
    info_data = {
        "version": __version__,
        "baudrate": DEFAULT_BAUDRATE,
        "station": DEFAULT_STATION,
        "plc": DEFAULT_PLC,
        "wait_time": DEFAULT_WAIT_TIME,
        "timeout": DEFAULT_TIMEOUT,
        "max_line_length": DEFAULT_MAX_LINE_LENGTH,
    }
    if json_output:
        typer.echo(json.dumps(info_data, indent=2))
    else:
        typer.echo(f"pyfx-link version: {info_data['version']}")
        typer.echo(f"Baud rate:         {info_data['baudrate']}")
        typer.echo(f"Station / PLC:     {DEFAULT_STATION:02X} / {DEFAULT_PLC:02X}")
        typer.echo(f"Wait time:         {info_data['wait_time']}")
        typer.echo(f"Timeout:           {info_data['timeout']}s")
        typer.echo(f"Max line length:   {info_data['max_line_length']}")


@app.command()
def ports() -> None:
    """List the serial ports present on this machine."""
    found = list_serial_ports()
    if not found:
        typer.echo("No serial ports found.")
        return
    for device in found:
        typer.echo(device)


@app.command()
def encode(
    device: Annotated[str, typer.Argument(help="Head device (e.g. D106, M640)")],
    value: Annotated[Optional[str], typer.Argument(help="Value to write; omit to encode a read")] = None,
    station: StationOption = DEFAULT_STATION,
    plc: PlcOption = DEFAULT_PLC,
    wait_time: WaitTimeOption = DEFAULT_WAIT_TIME,
    width: WidthOption = 16,
    json_output: JsonOption = False,
) -> None:
    """
    Show the request frame a read (or, with VALUE, a write) would send.

    Does not require a port.
    """
    try:
        register_width = parse_width(width)
        head = normalize_device(device)
        if value is None:
            command: ReadWords | WriteWords = ReadWords(head, register_width.count)
        else:
            data = encode_value(parse_int(value, register_width), register_width)
            command = WriteWords(head, register_width.count, data)
        frame = encode_message(Request(Address(station, plc), command, wait_time))
    except ValueError as e:
        raise _fail(str(e), 2)

    if json_output:
        typer.echo(json.dumps({"frame": describe_frame(frame), "hex": frame.hex()}, indent=2))
    else:
        typer.echo(describe_frame(frame))


@app.command()
def read(
    device: Annotated[str, typer.Argument(help="Device to read (e.g. D106, D0106)")],
    port: PortOption = None,
    baudrate: BaudrateOption = DEFAULT_BAUDRATE,
    station: StationOption = DEFAULT_STATION,
    plc: PlcOption = DEFAULT_PLC,
    wait_time: WaitTimeOption = DEFAULT_WAIT_TIME,
    timeout: TimeoutOption = DEFAULT_TIMEOUT,
    width: WidthOption = 16,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Read one signed register value.

    Use --width 32 to read two consecutive words as one 32-bit value.
    """
    setup_logging(verbose)

    try:
        register_width = parse_width(width)
    except ValueError as e:
        raise _fail(str(e), 2)
    client = create_client(port, baudrate, station, plc, wait_time, timeout)

    async def run() -> int:
        async with client:
            return await client.read(device, register_width)

    try:
        value = asyncio.run(run())
    except InvalidDeviceError as e:
        raise _fail(f"Invalid device: {e}", 2)
    except PyFxLinkError as e:
        raise _fail(f"Link error: {e}", 3)
    except Exception as e:
        raise _fail(f"Unexpected error: {e}", 4, verbose)

    if json_output:
        typer.echo(json.dumps({"device": device, "value": value}))
    else:
        typer.echo(str(value))


@app.command()
def write(
    device: Annotated[str, typer.Argument(help="Device to write (e.g. D106, D0106)")],
    value: Annotated[str, typer.Argument(help="Value: signed decimal or 0x hex")],
    port: PortOption = None,
    baudrate: BaudrateOption = DEFAULT_BAUDRATE,
    station: StationOption = DEFAULT_STATION,
    plc: PlcOption = DEFAULT_PLC,
    wait_time: WaitTimeOption = DEFAULT_WAIT_TIME,
    timeout: TimeoutOption = DEFAULT_TIMEOUT,
    width: WidthOption = 16,
    verbose: VerboseOption = False,
) -> None:
    """
    Write one signed register value.

    Negative values are sent as two's complement; pass them after `--` (fxlink write D106 -- -5).
    """
    setup_logging(verbose)

    try:
        register_width = parse_width(width)
        parsed_value = parse_int(value, register_width)
    except ValueError as e:
        raise _fail(f"Invalid value: {e}", 2)
    client = create_client(port, baudrate, station, plc, wait_time, timeout)

    async def run() -> None:
        async with client:
            await client.write(device, parsed_value, register_width)

    try:
        asyncio.run(run())
    except InvalidDeviceError as e:
        raise _fail(f"Invalid device: {e}", 2)
    except PyFxLinkError as e:
        raise _fail(f"Link error: {e}", 3)
    except Exception as e:
        raise _fail(f"Unexpected error: {e}", 4, verbose)

    typer.echo(f"OK: Wrote {device} = {parsed_value}")


@app.command()
def poll(
    devices: Annotated[list[str], typer.Argument(help="Devices to poll (e.g. D106 D107)")],
    port: PortOption = None,
    baudrate: BaudrateOption = DEFAULT_BAUDRATE,
    station: StationOption = DEFAULT_STATION,
    plc: PlcOption = DEFAULT_PLC,
    wait_time: WaitTimeOption = DEFAULT_WAIT_TIME,
    timeout: TimeoutOption = DEFAULT_TIMEOUT,
    width: WidthOption = 16,
    verbose: VerboseOption = False,
    interval: Annotated[float, typer.Option("--interval", "-i", help="Polling interval in seconds")] = 1.0,
    once: Annotated[bool, typer.Option("--once", help="Poll once and exit")] = False,
    format: Annotated[str, typer.Option("--format", "-f", help="Output format: text, json, csv")] = "text",
) -> None:
    """
    Read devices repeatedly, one transaction after another.

    Outputs format:
    - text: timestamp + device=value pairs (default)
    - json: NDJSON with {"timestamp": "...", "values": {...}} per line
    - csv: devices as columns, one row per poll cycle

    Use --once to poll once and exit. Press Ctrl+C to stop.
    """
    setup_logging(verbose)

    if format not in ("text", "json", "csv"):
        raise _fail(f"Invalid format '{format}'. Must be text, json, or csv.", 2)
    if interval <= 0:
        raise _fail(f"Interval must be positive, got {interval}", 2)
    if not devices:
        raise _fail("At least one device is required for poll", 2)
    try:
        register_width = parse_width(width)
    except ValueError as e:
        raise _fail(str(e), 2)

    client = create_client(port, baudrate, station, plc, wait_time, timeout)

    def emit(results: dict[str, int]) -> None:
        timestamp = datetime.now(timezone.utc).isoformat()
        if format == "text":
            pairs = " ".join(f"{d}={results[d]}" for d in devices)
            typer.echo(f"{timestamp} {pairs}")
        elif format == "json":
            typer.echo(json.dumps({"timestamp": timestamp, "values": results}))
        else:
            typer.echo(timestamp + "," + ",".join(str(results[d]) for d in devices))

    async def run() -> None:
        async with client:
            while True:
                emit(await client.read_many(devices, register_width))
                if once:
                    return
                await asyncio.sleep(interval)

    if format == "csv":
        typer.echo("timestamp," + ",".join(devices))

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        typer.echo("\nStopped by user", err=True)
        raise typer.Exit(0)
    except InvalidDeviceError as e:
        raise _fail(f"Invalid device: {e}", 2)
    except PyFxLinkError as e:
        raise _fail(f"Link error: {e}", 3)
    except Exception as e:
        raise _fail(f"Unexpected error: {e}", 4, verbose)


@app.command()
def serve(
    port: PortOption = None,
    baudrate: BaudrateOption = DEFAULT_BAUDRATE,
    rtscts: Annotated[bool, typer.Option("--rtscts", help="Enable RTS/CTS hardware flow control")] = False,
    close_timeout: Annotated[
        Optional[float],
        typer.Option("--close-timeout", help="Seconds to wait for the master's Ack after a read response"),
    ] = None,
    verbose: VerboseOption = False,
) -> None:
    """
    Answer reads and writes as a slave, keeping registers in memory.

    Unwritten devices read as zero. Runs until the port closes or Ctrl+C.
    """
    setup_logging(verbose)
    if not port:
        raise _fail("--port is required for this command", 2)

    server = FxLinkServer(port=port, baudrate=baudrate, rtscts=rtscts, close_timeout=close_timeout)

    async def run() -> None:
        async with server:
            await server.serve_forever()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        typer.echo("\nStopped by user", err=True)
        raise typer.Exit(0)
    except PyFxLinkError as e:
        raise _fail(f"Link error: {e}", 3)
    except Exception as e:
        raise _fail(f"Unexpected error: {e}", 4, verbose)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"pyfx-link {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit"),
    ] = None,
) -> None:
    """fxlink - read and write PLC word devices over an ENQ/ACK/NAK serial link."""
    pass


if __name__ == "__main__":
    app()
