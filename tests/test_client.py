"""AsyncGNUnet facade and the blocking GNUnet wrapper."""

import asyncio
from contextlib import aclosing

import pytest

from conftest import FakeDaemon, write
from pygnunet import AsyncGNUnet, GNUnet
from pygnunet.config import ConfigStore
from pygnunet.errors import ConnectError, ProtocolNotFound
from pygnunet.gns import LookupMessage, LookupResultMessage
from pygnunet.identity import UpdateMessage
from pygnunet.models.envelope import MessageType
from pygnunet.models.record import RecordType, ZoneRecord
from pygnunet.peerinfo import INFO_END, Hello, PeerInfoMessage

PEER = bytes([7]) * 32
ZONE = bytes([9]) * 32
RECORD = ZoneRecord(record_type=RecordType.A, data=b"\x0a\x00\x00\x01")


async def peers(service, envelope, writer):
    write(writer, PeerInfoMessage(peer=PEER).encode(), INFO_END)


async def egos(service, envelope, writer):
    if envelope.msg_type == MessageType.IDENTITY_START:
        write(writer, UpdateMessage(name="me", private_key=bytes([5]) * 32).encode(),
              UpdateMessage(end_of_list=True).encode())


async def records(service, envelope, writer):
    request = LookupMessage.decode(envelope)
    write(writer, LookupResultMessage(request_id=request.request_id, records=[RECORD]).encode())


async def hello(service, envelope, writer):
    write(writer, Hello(peer=PEER).encode())


async def serve_all(daemon: FakeDaemon) -> None:
    await daemon.serve("peerinfo", peers)
    await daemon.serve("identity", egos)
    await daemon.serve("gns", records)
    await daemon.serve("transport", hello)


class TestAsyncGNUnet:
    @pytest.mark.asyncio
    async def test_delegates_to_service_clients(self, daemon):
        await serve_all(daemon)
        client = AsyncGNUnet(config=daemon.config)

        assert [p.peer async for p in client.list_peers()] == [PEER]
        assert (await client.get_peer(PEER)).peer == PEER
        assert [e.name async for e in client.list_egos()] == ["me"]
        assert [r async for r in client.lookup(ZONE, "www")] == [RECORD]
        assert await client.get_self_id() == PEER
        assert (await client.self_hello()).peer == PEER

    @pytest.mark.asyncio
    async def test_closing_watch_stream_disconnects(self, daemon):
        await serve_all(daemon)
        client = AsyncGNUnet(config=daemon.config)

        stream = client.watch_egos()
        event = await stream.__anext__()
        await stream.aclose()

        assert event.ego.name == "me"
        await asyncio.wait_for(daemon.services["identity"].disconnected.wait(), 2.0)

    @pytest.mark.asyncio
    async def test_closing_peer_stream_disconnects(self, daemon):
        await serve_all(daemon)
        client = AsyncGNUnet(config=daemon.config)

        async with aclosing(client.list_peers()) as peers:
            async for _ in peers:
                break

        await asyncio.wait_for(daemon.services["peerinfo"].disconnected.wait(), 2.0)

    @pytest.mark.asyncio
    async def test_unknown_service_section(self):
        client = AsyncGNUnet(config=ConfigStore.from_text("[gns]\nPORT = 1\n"))
        with pytest.raises(ProtocolNotFound):
            await client.get_peer(PEER)

    def test_config_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GNUNET_DATA_DIR", str(tmp_path))
        user = tmp_path / "gnunet.conf"
        user.write_text("[gns]\nPORT = 2099\n")
        client = AsyncGNUnet(config_file=user)
        assert client.config.get("gns", "PORT").as_int() == 2099


class TestGNUnet:
    def test_collects_streams_into_lists(self, monkeypatch):
        loop = asyncio.new_event_loop()
        daemon = FakeDaemon()
        loop.run_until_complete(serve_all(daemon))
        monkeypatch.setattr(asyncio, "new_event_loop", lambda: loop)

        with GNUnet(config=daemon.config) as client:
            assert [p.peer for p in client.list_peers()] == [PEER]
            assert [e.name for e in client.list_egos()] == ["me"]
            assert client.lookup(ZONE, "www", record_type=RecordType.A) == [RECORD]
            assert client.get_self_id() == PEER
            loop.run_until_complete(daemon.close())

        assert loop.is_closed()

    def test_connect_error_surfaces(self):
        with GNUnet(config=ConfigStore.from_text("[peerinfo]\nUNIXPATH = /nonexistent/peerinfo.sock\n")) as client:
            with pytest.raises(ConnectError):
                client.list_peers()
