#!/usr/bin/env python3
"""Example: write a counter to D106 on station 5, then read it back, until Ctrl+C."""

import asyncio
import sys

from pyfx_link import FxLinkClient
from pyfx_link.errors import InvalidDeviceError, PyFxLinkError, TransportError


async def run(port: str) -> None:
    value = 0
    async with FxLinkClient(port=port, station=5, plc=0xFF) as plc:
        while True:
            await plc.write_i16("D106", value)
            try:
                print(f"Read: {await plc.read_i16('D106')}")
            except PyFxLinkError as e:
                print(f"Read error: {e}", file=sys.stderr)
            # 16-bit wraparound
            value = ((value + 101 + 0x8000) & 0xFFFF) - 0x8000
            await asyncio.sleep(0.001)


def main() -> None:
    port = sys.argv[1] if len(sys.argv) > 1 else "/dev/ttyUSB0"  # change to your adapter

    try:
        asyncio.run(run(port))
    except KeyboardInterrupt:
        print("\nStopped.")
    except InvalidDeviceError as e:
        print(f"Invalid device: {e}", file=sys.stderr)
        sys.exit(1)
    except TransportError as e:
        print(f"Serial error: {e}", file=sys.stderr)
        sys.exit(1)
    except PyFxLinkError as e:
        print(f"Link error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
