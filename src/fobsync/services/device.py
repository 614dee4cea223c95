"""Connection-reusing client for the access control device.

The device is a small embedded web server that reboots when it sees too many
new TCP connections and does not reliably signal keep-alive. This module
provides the DeviceLink class, which:

- Keeps exactly one transport connection open and reuses it for every request
- Serializes requests so only one is ever in flight
- Drops the connection on any transport failure so the next call reconnects
- Frames requests and parses responses with h11
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from urllib.parse import urlencode

import h11

from fobsync.core.settings import settings

# Configure logger for this module
logger = logging.getLogger(__name__)

# HTTP status codes
HTTP_OK = 200

DEFAULT_PORT = 80
READ_CHUNK_SIZE = 64 * 1024


class DeviceError(RuntimeError):
    """Base exception raised for access control device failures."""


class DeviceTransportError(DeviceError):
    """Raised when connecting to, writing to, or reading from the device fails.

    The connection has already been discarded when this is raised; the next
    request establishes a new one.
    """


class DeviceProtocolError(DeviceError):
    """Raised when the device answers with something other than the expected page."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass(frozen=True)
class DeviceResponse:
    """A fully read HTTP response from the device."""

    status_code: int
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


def split_address(address: str) -> tuple[str, int]:
    """Split a ``host[:port]`` string, defaulting to port 80."""

    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        return address, DEFAULT_PORT
    return host, int(port)


class DeviceLink:
    """Serialized, single-connection HTTP client for the access control device."""

    def __init__(self, address: str, timeout: float = 5.0) -> None:
        self.address = address
        self.timeout = timeout
        self._host, self._port = split_address(address)
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._writer is not None

    async def send(self, path: str, form: Mapping[str, str]) -> DeviceResponse:
        """POST a form to the device and return the raw response.

        Only one request is in flight at a time. Transport failures discard the
        connection and raise DeviceTransportError; they are not retried here.
        """

        body = urlencode(form).encode("ascii")
        async with self._lock:
            if self._reader is None or self._writer is None:
                self._reader, self._writer = await self._connect()
            reader, writer = self._reader, self._writer

            try:
                response = await asyncio.wait_for(
                    self._exchange(reader, writer, path, body), self.timeout
                )
            except (OSError, TimeoutError, asyncio.IncompleteReadError, h11.ProtocolError) as exc:
                await self._discard()
                raise DeviceTransportError(
                    f"request to {self.address}{path} failed: {exc!r}"
                ) from exc
            except BaseException:
                # Cancelled mid-request; the stream may hold half a response.
                self._abandon()
                raise

            if reader.at_eof():
                # Close-delimited response; the device hung up on us.
                await self._discard()
            return response

    async def post_form(self, path: str, form: Mapping[str, str]) -> DeviceResponse:
        """POST a form and require a 200 response."""

        response = await self.send(path, form)
        if response.status_code != HTTP_OK:
            raise DeviceProtocolError(
                f"unexpected response status: {response.status_code} with body: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        return response

    async def close(self) -> None:
        """Close the underlying connection, if any."""

        async with self._lock:
            await self._discard()

    async def _connect(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        logger.info("establishing new connection to the access control server")
        try:
            return await asyncio.wait_for(
                asyncio.open_connection(self._host, self._port), self.timeout
            )
        except (OSError, TimeoutError) as exc:
            raise DeviceTransportError(f"connecting to {self.address} failed: {exc!r}") from exc

    async def _discard(self) -> None:
        writer = self._writer
        self._reader = self._writer = None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as exc:
            logger.debug("error while closing device connection: %s", exc)

    def _abandon(self) -> None:
        writer = self._writer
        self._reader = self._writer = None
        if writer is not None:
            writer.close()

    async def _exchange(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        path: str,
        body: bytes,
    ) -> DeviceResponse:
        # A fresh state machine per request lets us keep using the socket even
        # when the device answers without keep-alive semantics.
        conn = h11.Connection(our_role=h11.CLIENT)
        request = h11.Request(
            method="POST",
            target=path,
            headers=[
                ("Host", self.address),
                ("Content-Type", "application/x-www-form-urlencoded"),
                ("Content-Length", str(len(body))),
            ],
        )
        writer.write(
            conn.send(request) + conn.send(h11.Data(data=body)) + conn.send(h11.EndOfMessage())
        )
        await writer.drain()

        status_code = 0
        headers: list[tuple[str, str]] = []
        chunks: list[bytes] = []
        while True:
            event = conn.next_event()
            if event is h11.NEED_DATA:
                conn.receive_data(await reader.read(READ_CHUNK_SIZE))
            elif isinstance(event, h11.InformationalResponse):
                continue
            elif isinstance(event, h11.Response):
                status_code = event.status_code
                headers = [(k.decode("latin-1"), v.decode("latin-1")) for k, v in event.headers]
            elif isinstance(event, h11.Data):
                chunks.append(bytes(event.data))
            elif isinstance(event, h11.EndOfMessage):
                return DeviceResponse(status_code=status_code, headers=headers, body=b"".join(chunks))
            else:
                raise ConnectionError(f"device closed the connection mid-response ({event!r})")


class _DeviceLinkSingleton:
    """Singleton wrapper for DeviceLink; the device tolerates only one connection."""

    _instance: DeviceLink | None = None

    @classmethod
    def get_instance(cls) -> DeviceLink:
        """Get or create the singleton DeviceLink instance."""
        if cls._instance is None:
            cls._instance = DeviceLink(
                settings.access_control_host,
                timeout=float(settings.access_control_timeout_seconds),
            )
        return cls._instance


def get_device_link() -> DeviceLink:
    """Return the process-wide device link."""
    return _DeviceLinkSingleton.get_instance()
