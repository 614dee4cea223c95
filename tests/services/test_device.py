"""Tests for the single-connection device link against an in-process fake device."""

import asyncio
from contextlib import asynccontextmanager

import h11
import pytest

from fobsync.services.device import (
    DeviceLink,
    DeviceProtocolError,
    DeviceTransportError,
    split_address,
)


class FakeDevice:
    """A tiny HTTP server that records connections and requests."""

    def __init__(self) -> None:
        self.connections = 0
        self.requests: list[tuple[str, bytes]] = []
        self.status_code = 200
        self.body = b"<table></table>"
        self.delay = 0.0
        self.close_delimited = False

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        conn = h11.Connection(our_role=h11.SERVER)
        target = ""
        chunks: list[bytes] = []
        try:
            while True:
                event = conn.next_event()
                if event is h11.NEED_DATA:
                    conn.receive_data(await reader.read(65536))
                elif isinstance(event, h11.Request):
                    target = event.target.decode()
                    chunks = []
                elif isinstance(event, h11.Data):
                    chunks.append(bytes(event.data))
                elif isinstance(event, h11.EndOfMessage):
                    self.requests.append((target, b"".join(chunks)))
                    if self.delay:
                        await asyncio.sleep(self.delay)
                    if self.close_delimited:
                        writer.write(b"HTTP/1.1 200 OK\r\nConnection: close\r\n\r\n" + self.body)
                        await writer.drain()
                        break
                    writer.write(
                        conn.send(
                            h11.Response(
                                status_code=self.status_code,
                                headers=[("Content-Length", str(len(self.body)))],
                            )
                        )
                        + conn.send(h11.Data(data=self.body))
                        + conn.send(h11.EndOfMessage())
                    )
                    await writer.drain()
                    conn.start_next_cycle()
                else:
                    break
        except (h11.ProtocolError, ConnectionError):
            pass
        finally:
            writer.close()


@asynccontextmanager
async def running(device: FakeDevice):
    server = await asyncio.start_server(device.handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        yield f"127.0.0.1:{port}"
    finally:
        server.close()
        await server.wait_closed()


def test_split_address() -> None:
    assert split_address("10.0.0.5:8080") == ("10.0.0.5", 8080)
    assert split_address("door.local") == ("door.local", 80)


@pytest.mark.asyncio
async def test_requests_reuse_one_connection() -> None:
    device = FakeDevice()
    async with running(device) as address:
        link = DeviceLink(address, timeout=1.0)
        for _ in range(3):
            response = await link.post_form("/ACT_ID_345", {"PC": "19", "PE": "0", "PN": "Next"})
            assert response.body == b"<table></table>"
        await link.close()

    assert device.connections == 1
    assert device.requests == [("/ACT_ID_345", b"PC=19&PE=0&PN=Next")] * 3


@pytest.mark.asyncio
async def test_concurrent_requests_are_serialized() -> None:
    device = FakeDevice()
    async with running(device) as address:
        link = DeviceLink(address, timeout=1.0)
        await asyncio.gather(*(link.post_form(f"/page{i}", {"n": str(i)}) for i in range(4)))
        await link.close()

    assert device.connections == 1
    assert sorted(target for target, _ in device.requests) == ["/page0", "/page1", "/page2", "/page3"]


@pytest.mark.asyncio
async def test_non_ok_status_raises_with_body() -> None:
    device = FakeDevice()
    device.status_code = 500
    device.body = b"busy"
    async with running(device) as address:
        link = DeviceLink(address, timeout=1.0)
        with pytest.raises(DeviceProtocolError) as excinfo:
            await link.post_form("/ACT_ID_21", {"s2": "Users"})
        assert link.connected  # protocol errors keep the connection
        await link.close()

    assert excinfo.value.status_code == 500
    assert excinfo.value.body == "busy"
    assert "500" in str(excinfo.value)


@pytest.mark.asyncio
async def test_close_delimited_response_reconnects_next_time() -> None:
    device = FakeDevice()
    device.close_delimited = True
    device.body = b"<table><tr><td>1</td></tr></table>"
    async with running(device) as address:
        link = DeviceLink(address, timeout=1.0)
        first = await link.post_form("/ACT_ID_21", {"s2": "Users"})
        second = await link.post_form("/ACT_ID_21", {"s2": "Users"})
        await link.close()

    assert first.body == second.body == device.body
    assert device.connections == 2


@pytest.mark.asyncio
async def test_timeout_discards_connection_then_recovers() -> None:
    device = FakeDevice()
    device.delay = 0.5
    async with running(device) as address:
        link = DeviceLink(address, timeout=0.1)
        with pytest.raises(DeviceTransportError):
            await link.post_form("/ACT_ID_345", {"PC": "19"})
        assert not link.connected

        device.delay = 0.0
        response = await link.post_form("/ACT_ID_345", {"PC": "19"})
        await link.close()

    assert response.status_code == 200
    assert device.connections == 2


@pytest.mark.asyncio
async def test_connect_failure_raises_transport_error() -> None:
    server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()

    link = DeviceLink(f"127.0.0.1:{port}", timeout=1.0)
    with pytest.raises(DeviceTransportError):
        await link.post_form("/ACT_ID_21", {"s2": "Users"})
    assert not link.connected


@pytest.mark.asyncio
async def test_cancelled_request_discards_connection() -> None:
    device = FakeDevice()
    device.delay = 0.3
    async with running(device) as address:
        link = DeviceLink(address, timeout=5.0)
        task = asyncio.create_task(link.post_form("/ACT_ID_345", {"PC": "19"}))
        while not device.requests:
            await asyncio.sleep(0.005)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert not link.connected

        device.delay = 0.0
        response = await link.post_form("/ACT_ID_345", {"PC": "39"})
        await link.close()

    assert response.status_code == 200
    assert device.connections == 2
    assert [body for _, body in device.requests] == [b"PC=19", b"PC=39"]
