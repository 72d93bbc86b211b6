"""Identity client against a scripted identity service."""

import asyncio
from contextlib import aclosing

import pytest

from conftest import write
from pygnunet.crypto import ecdsa_public_key
from pygnunet.errors import NotFound
from pygnunet.identity import (
    GetDefaultMessage,
    IdentityClient,
    ResultCodeMessage,
    SetDefaultMessage,
    UpdateMessage,
)
from pygnunet.models.envelope import Envelope, MessageType
from pygnunet.models.identity import EgoEventKind
from pygnunet.transport.codec import MAX_MESSAGE_SIZE

ALICE = bytes([0x11]) * 32
BOB = bytes([0x22]) * 32
CAROL = bytes([0x33]) * 32

END = UpdateMessage(end_of_list=True)


def ego_list(*entries, later=()):
    """Answer START with ``entries``, the end marker, then ``later`` updates."""
    async def respond(service, envelope, writer):
        if envelope.msg_type != MessageType.IDENTITY_START:
            return
        for name, key in entries:
            write(writer, UpdateMessage(name=name, private_key=key).encode())
        write(writer, END.encode())
        for name, key in later:
            await writer.drain()
            await asyncio.sleep(0.01)
            write(writer, UpdateMessage(name=name, private_key=key).encode())
    return respond


def defaults(assignments, egos=()):
    listing = ego_list(*egos)

    async def respond(service, envelope, writer):
        if envelope.msg_type == MessageType.IDENTITY_START:
            await listing(service, envelope, writer)
            return
        subsystem = GetDefaultMessage.decode(envelope).subsystem
        if subsystem in assignments:
            write(writer, SetDefaultMessage(subsystem=subsystem, private_key=assignments[subsystem]).encode())
        else:
            write(writer, ResultCodeMessage(code=1, message="Unknown ego").encode())
    return respond


class TestMessages:
    def test_get_default_layout(self):
        payload = GetDefaultMessage(subsystem="gns-master").encode().payload
        assert payload == b"\x00\x0b\x00\x00gns-master\x00"

    def test_update_layout(self):
        payload = UpdateMessage(name="alice", private_key=ALICE).encode().payload
        assert payload[:4] == b"\x00\x06\x00\x00"
        assert payload[4:36] == ALICE
        assert payload[36:] == b"alice\x00"

    def test_end_marker_without_key(self):
        update = UpdateMessage.decode(Envelope(msg_type=MessageType.IDENTITY_UPDATE, payload=b"\x00\x00\x00\x01"))
        assert update.end_of_list

    @pytest.mark.parametrize("update", [
        UpdateMessage(name="", private_key=ALICE),
        UpdateMessage(name="e" * (MAX_MESSAGE_SIZE - 65), private_key=BOB),
        UpdateMessage(name="carol", private_key=CAROL, end_of_list=True),
        END,
    ], ids=["deleted-ego", "longest-name", "end-with-ego", "bare-end"])
    def test_update_round_trip(self, update):
        assert UpdateMessage.decode(update.encode()) == update

    @pytest.mark.parametrize("subsystem", ["g", "s" * 2000])
    def test_default_messages_round_trip(self, subsystem):
        get = GetDefaultMessage(subsystem=subsystem)
        assert GetDefaultMessage.decode(get.encode()) == get
        set_ = SetDefaultMessage(subsystem=subsystem, private_key=ALICE)
        assert SetDefaultMessage.decode(set_.encode()) == set_

    def test_result_code_without_text(self):
        result = ResultCodeMessage.decode(ResultCodeMessage(code=3).encode())
        assert (result.code, result.message) == (3, None)


class TestListEgos:
    @pytest.mark.asyncio
    async def test_lists_and_caches(self, daemon):
        service = await daemon.serve("identity", ego_list(("alice", ALICE), ("bob", BOB)))
        client = IdentityClient(daemon.config)

        egos = [ego async for ego in client.list_egos()]

        assert [e.name for e in egos] == ["alice", "bob"]
        assert egos[0].public_key == ecdsa_public_key(ALICE)
        assert set(client.egos) == {ecdsa_public_key(ALICE), ecdsa_public_key(BOB)}
        assert "private_key" not in repr(egos[0])
        await asyncio.wait_for(service.disconnected.wait(), 2.0)

    @pytest.mark.asyncio
    async def test_relisting_drops_vanished_egos(self, daemon):
        first = await daemon.serve("identity", ego_list(("alice", ALICE), ("bob", BOB)))
        client = IdentityClient(daemon.config)
        [ego async for ego in client.list_egos()]
        first.responder = ego_list(("bob", BOB))
        [ego async for ego in client.list_egos()]
        assert list(client.egos) == [ecdsa_public_key(BOB)]


class TestWatch:
    @pytest.mark.asyncio
    async def test_initial_burst_then_changes(self, daemon):
        later = [("carol", CAROL), ("robert", BOB), ("", ALICE)]
        await daemon.serve("identity", ego_list(("alice", ALICE), ("bob", BOB), later=later))
        client = IdentityClient(daemon.config)

        events = []
        async with aclosing(client.watch()) as stream:
            async for event in stream:
                events.append(event)
                if len(events) == 5:
                    break

        assert [(e.kind, e.ego.name, e.old_name) for e in events] == [
            (EgoEventKind.EXISTING, "alice", None),
            (EgoEventKind.EXISTING, "bob", None),
            (EgoEventKind.CREATED, "carol", None),
            (EgoEventKind.RENAMED, "robert", "bob"),
            (EgoEventKind.DELETED, "alice", "alice"),
        ]
        assert ecdsa_public_key(ALICE) not in client.egos

    @pytest.mark.asyncio
    async def test_cancellation_closes_connection(self, daemon):
        service = await daemon.serve("identity", ego_list(("alice", ALICE)))
        client = IdentityClient(daemon.config)
        started = asyncio.Event()

        async def consume():
            async for _ in client.watch():
                started.set()

        task = asyncio.ensure_future(consume())
        await asyncio.wait_for(started.wait(), 2.0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.wait_for(service.disconnected.wait(), 2.0)


class TestDefaultEgo:
    @pytest.mark.asyncio
    async def test_found_with_name_from_listing(self, daemon):
        await daemon.serve("identity", defaults({"gns-master": BOB}, egos=[("alice", ALICE), ("bob", BOB)]))
        client = IdentityClient(daemon.config)

        ego = await client.get_default_ego("gns-master")

        assert ego.name == "bob"
        assert ego.public_key == ecdsa_public_key(BOB)
        assert len(ego.id) == 103

    @pytest.mark.asyncio
    async def test_cached_ego_needs_no_refresh(self, daemon):
        service = await daemon.serve("identity", defaults({"fs": ALICE}, egos=[("alice", ALICE)]))
        client = IdentityClient(daemon.config)
        [ego async for ego in client.list_egos()]
        service.requests.clear()

        ego = await client.get_default_ego("fs")

        assert ego.name == "alice"
        assert [r.msg_type for r in service.requests] == [MessageType.IDENTITY_GET_DEFAULT]

    @pytest.mark.asyncio
    async def test_missing_default(self, daemon):
        await daemon.serve("identity", defaults({}))
        client = IdentityClient(daemon.config)
        with pytest.raises(NotFound) as info:
            await client.get_default_ego("gns-master")
        assert info.value.code == "not_found"
        assert "Unknown ego" in str(info.value)
        assert info.value.details["subsystem"] == "gns-master"


def test_name_over_limit_not_encoded():
    with pytest.raises(ValueError):
        UpdateMessage(name="e" * (MAX_MESSAGE_SIZE - 64), private_key=ALICE).encode()
