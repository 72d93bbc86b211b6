"""Shared fixtures: a scripted fake daemon listening on loopback TCP."""

import asyncio
from typing import Awaitable, Callable, Optional

import pytest_asyncio

from pygnunet.config import ConfigStore
from pygnunet.models.envelope import Envelope
from pygnunet.transport.codec import FrameDecoder, encode_envelope

Responder = Callable[["FakeService", Envelope, asyncio.StreamWriter], Awaitable[None]]


def write(writer: asyncio.StreamWriter, *envelopes: Envelope) -> None:
    writer.write(b"".join(encode_envelope(e) for e in envelopes))


class FakeService:
    """One service: records every request, hands each to ``responder``."""

    def __init__(self, name: str, responder: Responder):
        self.name = name
        self.responder = responder
        self.requests: list[Envelope] = []
        self.connections = 0
        self.disconnects = 0
        self.disconnected = asyncio.Event()
        self.port: Optional[int] = None
        self._server: Optional[asyncio.AbstractServer] = None

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        decoder = FrameDecoder()
        try:
            while not writer.is_closing():
                data = await reader.read(4096)
                if not data:
                    break
                for envelope in decoder.feed(data):
                    self.requests.append(envelope)
                    await self.responder(self, envelope, writer)
                    if not writer.is_closing():
                        await writer.drain()
        except ConnectionError:
            pass
        finally:
            writer.close()
            self.disconnects += 1
            self.disconnected.set()


class FakeDaemon:
    def __init__(self) -> None:
        self.services: dict[str, FakeService] = {}

    async def serve(self, name: str, responder: Responder) -> FakeService:
        service = FakeService(name, responder)
        await service.start()
        self.services[name] = service
        return service

    @property
    def config(self) -> ConfigStore:
        sections = [
            f"[{name}]\nHOSTNAME = 127.0.0.1\nPORT = {service.port}\n"
            for name, service in self.services.items()
        ]
        return ConfigStore.from_text("\n".join(sections), names=["fake-daemon.conf"])

    async def close(self) -> None:
        for service in self.services.values():
            await service.stop()


@pytest_asyncio.fixture
async def daemon():
    fake = FakeDaemon()
    yield fake
    await fake.close()
