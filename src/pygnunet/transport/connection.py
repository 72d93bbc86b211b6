"""
Service connection manager — one IPC channel to one daemon service.

The endpoint comes from the service's configuration section: TCP when
``PORT`` is positive (``HOSTNAME`` defaults to 127.0.0.1), a unix-domain
socket at ``UNIXPATH`` otherwise.

A background reader task owns the receive side. It decodes envelopes into a
bounded inbox and stops reading while the inbox is full, so a slow consumer
pushes back on the daemon instead of buffering without limit. When the peer
goes away the reader queues a ConnectionLost behind whatever it already
decoded; a malformed frame closes the connection and is queued the same way.
"""

import asyncio
import logging
from pathlib import Path
from typing import AsyncGenerator, Optional, Union

from pydantic import BaseModel, ConfigDict

from pygnunet.config import ConfigStore
from pygnunet.errors import ConfigError, ConnectError, ConnectionLost, GNUnetError, MalformedMessage, ProtocolNotFound
from pygnunet.models.envelope import Envelope
from pygnunet.transport.codec import MAX_MESSAGE_SIZE, FrameDecoder, encode_envelope

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_INBOX_SIZE = 64
READ_CHUNK_SIZE = 4096


class ServiceEndpoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    service: str
    host: Optional[str] = None
    port: Optional[int] = None
    path: Optional[Path] = None

    @property
    def is_unix(self) -> bool:
        return self.path is not None

    def __str__(self) -> str:
        if self.path is not None:
            return f"unix:{self.path}"
        return f"{self.host}:{self.port}"


def resolve_endpoint(config: ConfigStore, service: str) -> ServiceEndpoint:
    """Work out where ``service`` listens."""
    if not config.has_section(service):
        raise ProtocolNotFound(service)

    port_value = config.get(service, "PORT")
    port = port_value.as_int() if port_value is not None and port_value.raw.strip() else 0
    if port > 65535:
        raise ConfigError(f"[{service}] PORT {port} is out of range", port_value.source, port_value.line)
    if port > 0:
        host = config.get_with_default(service, "HOSTNAME", DEFAULT_HOST).raw.strip() or DEFAULT_HOST
        return ServiceEndpoint(service=service, host=host, port=port)

    unixpath = config.get(service, "UNIXPATH")
    if unixpath is not None and unixpath.raw.strip():
        return ServiceEndpoint(service=service, path=unixpath.as_path())

    raise ConnectError(f"No usable endpoint configured for service '{service}'", details={"service": service})


class ServiceConnection:
    """An open channel to a service. Carries one logical exchange at a time."""

    def __init__(
        self,
        service: str,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        inbox_size: int = DEFAULT_INBOX_SIZE,
        max_message_size: int = MAX_MESSAGE_SIZE,
    ):
        self._service = service
        self._reader = reader
        self._writer = writer
        self._decoder = FrameDecoder(max_message_size)
        self._inbox: asyncio.Queue[Union[Envelope, GNUnetError]] = asyncio.Queue(maxsize=inbox_size)
        self._error: Optional[GNUnetError] = None
        self._closed = False
        self._reader_task = asyncio.get_running_loop().create_task(self._read_loop())

    @property
    def service(self) -> str:
        return self._service

    @property
    def closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"ServiceConnection({self._service!r}, {state})"

    async def __aenter__(self) -> "ServiceConnection":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _read_loop(self) -> None:
        try:
            while True:
                chunk = await self._reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    raise ConnectionLost(f"{self._service} service closed the connection",
                                         details={"service": self._service, "pending": self._decoder.pending})
                self._decoder.push(chunk)
                while True:
                    envelope = self._decoder.pop()
                    if envelope is None:
                        break
                    logger.debug("%s <- %r", self._service, envelope)
                    await self._inbox.put(envelope)
        except MalformedMessage as e:
            logger.warning("Closing connection to %s: %s", self._service, e)
            self._writer.close()
            await self._inbox.put(e)
        except ConnectionLost as e:
            logger.debug("Connection to %s lost: %s", self._service, e)
            await self._inbox.put(e)
        except OSError as e:
            logger.debug("Read from %s failed: %s", self._service, e)
            await self._inbox.put(ConnectionLost(f"Read from {self._service} failed: {e}",
                                                 details={"service": self._service}))

    async def send(self, envelope: Envelope) -> None:
        if self._closed or self._writer.is_closing():
            raise ConnectionLost(f"Connection to {self._service} is closed", details={"service": self._service})
        data = encode_envelope(envelope)
        logger.debug("%s -> %r", self._service, envelope)
        try:
            self._writer.write(data)
            await self._writer.drain()
        except OSError as e:
            raise ConnectionLost(f"Write to {self._service} failed: {e}", details={"service": self._service}) from e

    async def recv(self) -> Envelope:
        """Next envelope in arrival order.

        Once the connection has failed or been closed, this raises the
        failure, and keeps raising it on every later call.
        """
        if self._error is not None and self._inbox.empty():
            raise self._error
        item = await self._inbox.get()
        if isinstance(item, GNUnetError):
            self._error = item
            raise item
        return item

    async def request(self, envelope: Envelope) -> Envelope:
        """Send one message and return the first reply."""
        await self.send(envelope)
        return await self.recv()

    async def messages(self) -> AsyncGenerator[Envelope, None]:
        """Every envelope until the connection ends (which raises ConnectionLost)."""
        while True:
            yield await self.recv()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._reader_task.cancel()
        await asyncio.wait([self._reader_task])

        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError:
            pass

        self._error = ConnectionLost(f"Connection to {self._service} was closed", details={"service": self._service})
        while not self._inbox.empty():
            self._inbox.get_nowait()
        # Wakes a recv() that is blocked on the empty inbox.
        self._inbox.put_nowait(self._error)
        logger.debug("Closed connection to %s", self._service)


async def connect(
    service: str,
    config: ConfigStore,
    timeout: Optional[float] = None,
    inbox_size: int = DEFAULT_INBOX_SIZE,
) -> ServiceConnection:
    """Open a connection to ``service``. Failures are not retried."""
    endpoint = resolve_endpoint(config, service)
    if endpoint.path is not None:
        opening = asyncio.open_unix_connection(str(endpoint.path))
    else:
        opening = asyncio.open_connection(endpoint.host, endpoint.port)

    try:
        reader, writer = await asyncio.wait_for(opening, timeout)
    except asyncio.TimeoutError:
        raise ConnectError(f"Timed out connecting to {service} at {endpoint} after {timeout}s",
                           details={"service": service, "endpoint": str(endpoint)})
    except OSError as e:
        raise ConnectError(f"Failed to connect to {service} at {endpoint}: {e}",
                           details={"service": service, "endpoint": str(endpoint)}) from e

    logger.info("Connected to %s at %s", service, endpoint)
    return ServiceConnection(service, reader, writer, inbox_size=inbox_size)
