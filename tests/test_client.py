"""
Tests for FxLinkClient transactions.

The link is an in-process MemoryLink; each test body is a coroutine run with asyncio.run.
Scripted peers inject raw frames on the master side; full exchanges run against FxLinkServer.
"""

import asyncio

import pytest

from pyfx_link import FxLinkClient, FxLinkServer, MemoryLink, RegisterStore
from pyfx_link.codec import encode_message
from pyfx_link.errors import (
    FrameDecodeError,
    InvalidDeviceError,
    ProtocolViolationError,
    TransactionBusyError,
    TransactionTimeoutError,
    TransportError,
)
from pyfx_link.types import (
    Ack,
    Address,
    Nak,
    NakWithError,
    ReadWords,
    Request,
    Response,
    TransactionState,
    WriteWords,
)

ADDR = Address(0, 0xFF)


async def _against_server(scenario, store: RegisterStore | None = None):
    """Run `scenario(client, server, link)` with a server loop on the slave side."""
    link = MemoryLink()
    server = FxLinkServer(stream=link.slave, store=store)
    task = asyncio.create_task(server.serve_forever())
    client = FxLinkClient(stream=link.master, timeout=1.0)
    try:
        return await scenario(client, server, link)
    finally:
        link.master.close()
        await asyncio.wait_for(task, 1.0)


class TestAgainstServer:
    """Complete exchanges between a client and a server over one link."""

    def test_write_single_word(self) -> None:
        async def scenario(client, server, link):
            await client.write_i16("D106", 101)
            assert server.store.get("D0106") == "0065"
            assert bytes(link.master_writer.written) == encode_message(
                Request(ADDR, WriteWords("D0106", 1, "0065"), 0)
            )
            assert bytes(link.slave_writer.written) == encode_message(Ack(ADDR))
            assert client.state is TransactionState.IDLE

        asyncio.run(_against_server(scenario))

    def test_read_absent_register_is_zero(self) -> None:
        async def scenario(client, server, link):
            assert await client.read_i16("D106") == 0
            assert bytes(link.slave_writer.written) == encode_message(Response(ADDR, "0000"))
            assert bytes(link.master_writer.written) == encode_message(
                Request(ADDR, ReadWords("D0106", 1), 0)
            ) + encode_message(Ack(ADDR))

        asyncio.run(_against_server(scenario))

    def test_write_then_read_negative_value(self) -> None:
        async def scenario(client, server, link):
            await client.write_i16("D106", -101)
            assert server.store.get("D0106") == "FF9B"
            return await client.read_i16("D106")

        assert asyncio.run(_against_server(scenario)) == -101

    def test_wrapped_value(self) -> None:
        async def scenario(client, server, link):
            await client.write_i16("D200", -32669)
            assert server.store.get("D0200") == "8063"
            return await client.read_i16("D200")

        assert asyncio.run(_against_server(scenario)) == -32669

    def test_dword_round_trip(self) -> None:
        async def scenario(client, server, link):
            await client.write_i32("M640", 0x2347AB96)
            await client.write_i32("D10", -2)
            assert server.store.get("M0640") == "2347AB96"
            assert server.store.get("D0010") == "FFFFFFFE"
            return await client.read_i32("M640"), await client.read_i32("D10")

        assert asyncio.run(_against_server(scenario)) == (0x2347AB96, -2)

    def test_absent_dword_read_is_zero(self) -> None:
        async def scenario(client, server, link):
            value = await client.read_i32("D500")
            assert bytes(link.slave_writer.written) == encode_message(Response(ADDR, "00000000"))
            return value

        assert asyncio.run(_against_server(scenario)) == 0

    def test_raw_words(self) -> None:
        async def scenario(client, server, link):
            await client.write_words("D1", "00010002")
            return await client.read_words("D1", 2)

        assert asyncio.run(_against_server(scenario)) == "00010002"

    def test_read_many_in_order(self) -> None:
        store = RegisterStore({"D0001": "0001", "D0002": "FFFF"})

        async def scenario(client, server, link):
            return await client.read_many(["D1", "D2", "D3"])

        result = asyncio.run(_against_server(scenario, store=store))
        assert result == {"D1": 1, "D2": -1, "D3": 0}
        assert list(result) == ["D1", "D2", "D3"]


class TestScriptedPeer:
    """Replies injected by hand, to exercise the failure paths."""

    def test_timeout_returns_to_idle(self) -> None:
        async def run():
            link = MemoryLink()
            client = FxLinkClient(stream=link.master, timeout=0.05)
            with pytest.raises(TransactionTimeoutError) as exc_info:
                await client.read_i16("D106")
            assert exc_info.value.state is TransactionState.AWAITING_RESPONSE
            assert exc_info.value.timeout == 0.05
            assert client.state is TransactionState.IDLE

            # the link is usable for the next transaction
            async def peer():
                await link.slave.receive()  # the abandoned read
                await link.slave.receive()
                await link.slave.send(Ack(ADDR))

            responder = asyncio.create_task(peer())
            await client.write_i16("D106", 1)
            await responder
            assert client.state is TransactionState.IDLE

        asyncio.run(run())

    def test_late_reply_after_timeout_is_not_taken_by_next_read(self) -> None:
        async def run():
            link = MemoryLink()
            client = FxLinkClient(stream=link.master, timeout=0.05)
            with pytest.raises(TransactionTimeoutError):
                await client.read_i16("D1")
            # D1's reply shows up after the master gave up on it
            link.inject_to_master(encode_message(Response(ADDR, "0005")))

            async def peer():
                await link.slave.receive()  # the abandoned D1 read
                request = await link.slave.receive()
                assert request.command.head_device == "D0002"
                await link.slave.send(Response(ADDR, "0007"))

            responder = asyncio.create_task(peer())
            assert await client.read_i16("D2") == 7
            await responder

        asyncio.run(run())

    def test_raw_five_character_device_on_the_wire(self) -> None:
        async def run():
            link = MemoryLink()
            client = FxLinkClient(stream=link.master, timeout=1.0)
            link.inject_to_master(encode_message(Response(ADDR, "0001")))
            assert await client.read_i16("W0100") == 1
            assert bytes(link.master_writer.written).startswith(
                encode_message(Request(ADDR, ReadWords("W0100", 1), 0))
            )

        asyncio.run(run())

    def test_timeout_is_a_timeout_error(self) -> None:
        async def run():
            link = MemoryLink()
            client = FxLinkClient(stream=link.master, timeout=0.01)
            with pytest.raises(TimeoutError):
                await client.write_i16("D106", 1)
            assert client.state is TransactionState.IDLE

        asyncio.run(run())

    def test_write_rejected_with_nak(self) -> None:
        async def run():
            link = MemoryLink()
            client = FxLinkClient(stream=link.master, timeout=1.0)
            link.inject_to_master(encode_message(Nak(ADDR)))
            with pytest.raises(ProtocolViolationError) as exc_info:
                await client.write_i16("D106", 1)
            assert exc_info.value.received == Nak(ADDR)
            assert exc_info.value.expected == "Ack"
            assert client.state is TransactionState.IDLE

        asyncio.run(run())

    def test_write_rejected_with_error_code(self) -> None:
        async def run():
            link = MemoryLink()
            client = FxLinkClient(stream=link.master, timeout=1.0)
            link.inject_to_master(encode_message(NakWithError(ADDR, 6)))
            with pytest.raises(ProtocolViolationError) as exc_info:
                await client.write_i16("D106", 1)
            assert exc_info.value.received.error_code == 6

        asyncio.run(run())

    def test_read_answered_with_ack_sends_nak(self) -> None:
        async def run():
            link = MemoryLink()
            client = FxLinkClient(stream=link.master, timeout=1.0)
            link.inject_to_master(encode_message(Ack(ADDR)))
            with pytest.raises(ProtocolViolationError) as exc_info:
                await client.read_i16("D106")
            assert exc_info.value.expected == "Response"
            assert bytes(link.master_writer.written).endswith(encode_message(Nak(ADDR)))
            assert client.state is TransactionState.IDLE

        asyncio.run(run())

    def test_read_with_wrong_data_length_sends_nak(self) -> None:
        async def run():
            link = MemoryLink()
            client = FxLinkClient(stream=link.master, timeout=1.0)
            link.inject_to_master(encode_message(Response(ADDR, "00000065")))
            with pytest.raises(ProtocolViolationError, match="Expected 4 hex characters"):
                await client.read_i16("D106")
            assert bytes(link.master_writer.written).endswith(encode_message(Nak(ADDR)))

        asyncio.run(run())

    def test_read_with_corrupt_reply_raises_decode_error(self) -> None:
        async def run():
            link = MemoryLink()
            client = FxLinkClient(stream=link.master, timeout=1.0)
            link.inject_to_master(b"\x0200FF0065\x03BB\n")
            with pytest.raises(FrameDecodeError):
                await client.read_i16("D106")
            assert bytes(link.master_writer.written) == encode_message(
                Request(ADDR, ReadWords("D0106", 1), 0)
            )
            assert client.state is TransactionState.IDLE

        asyncio.run(run())

    def test_second_transaction_while_busy(self) -> None:
        async def run():
            link = MemoryLink()
            client = FxLinkClient(stream=link.master, timeout=1.0)
            first = asyncio.create_task(client.read_i16("D106"))
            await asyncio.sleep(0)
            assert client.state is TransactionState.AWAITING_RESPONSE
            with pytest.raises(TransactionBusyError) as exc_info:
                await client.write_i16("D107", 1)
            assert exc_info.value.state is TransactionState.AWAITING_RESPONSE
            link.inject_to_master(encode_message(Response(ADDR, "0001")))
            assert await first == 1
            assert client.state is TransactionState.IDLE

        asyncio.run(run())

    def test_wait_time_and_address_on_the_wire(self) -> None:
        async def run():
            link = MemoryLink()
            client = FxLinkClient(stream=link.master, station=5, plc=0x10, wait_time=3, timeout=1.0)
            assert client.address == Address(5, 0x10)
            link.inject_to_master(encode_message(Ack(Address(5, 0x10))))
            await client.write_i16("D106", 101)
            assert bytes(link.master_writer.written) == encode_message(
                Request(Address(5, 0x10), WriteWords("D0106", 1, "0065"), 3)
            )

        asyncio.run(run())


class TestPreconditions:
    def test_out_of_range_value_sends_nothing(self) -> None:
        async def run():
            link = MemoryLink()
            client = FxLinkClient(stream=link.master)
            with pytest.raises(ValueError, match="out of range"):
                await client.write_i16("D106", 40000)
            assert not link.master_writer.written
            assert client.state is TransactionState.IDLE

        asyncio.run(run())

    def test_raw_data_with_newline_sends_nothing(self) -> None:
        async def run():
            link = MemoryLink()
            client = FxLinkClient(stream=link.master)
            with pytest.raises(ValueError, match="hex"):
                await client.write_words("D1", "006\n")
            assert not link.master_writer.written

        asyncio.run(run())

    def test_invalid_device(self) -> None:
        async def run():
            link = MemoryLink()
            client = FxLinkClient(stream=link.master)
            with pytest.raises(InvalidDeviceError):
                await client.read_i16("Q1")
            assert not link.master_writer.written

        asyncio.run(run())

    def test_no_port_configured(self) -> None:
        async def run():
            client = FxLinkClient()
            with pytest.raises(TransportError, match="No serial port"):
                await client.connect()

        asyncio.run(run())

    def test_invalid_wait_time(self) -> None:
        with pytest.raises(ValueError, match="wait_time"):
            FxLinkClient(wait_time=16)

    def test_invalid_station(self) -> None:
        with pytest.raises(ValueError, match="station"):
            FxLinkClient(station=300)
