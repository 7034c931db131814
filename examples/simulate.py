#!/usr/bin/env python3
"""Example: run a master and a slave in one process over a MemoryLink and trace the frames."""

import asyncio
import logging

from pyfx_link import FxLinkClient, FxLinkServer, MemoryLink


async def main() -> None:
    link = MemoryLink()
    server = FxLinkServer(stream=link.slave)
    serving = asyncio.create_task(server.serve_forever())

    plc = FxLinkClient(stream=link.master, station=5, plc=0xFF)
    await plc.write_i16("D106", -101)
    await plc.write_i32("M640", 0x2347AB96)
    print(f"D106 = {await plc.read_i16('D106')}")
    print(f"M640 = {await plc.read_i32('M640'):#x}")
    print(f"D200 (never written) = {await plc.read_i16('D200')}")
    print(f"Slave registers: {server.store.snapshot()}")

    await plc.close()
    await serving


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")
    asyncio.run(main())
