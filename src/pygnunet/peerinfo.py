"""
Peer directory client — asks the peerinfo service which peers it knows.

Exchange:
    -> PEERINFO_GET (one peer) or PEERINFO_GET_ALL
    <- PEERINFO_INFO, zero or more, each optionally carrying the peer's HELLO
    <- PEERINFO_INFO_END

The local peer's own identity comes from the transport service instead:
    -> TRANSPORT_START
    <- HELLO
"""

import logging
from typing import AsyncGenerator, Optional

from pydantic import BaseModel, ConfigDict

from pygnunet.config import ConfigStore
from pygnunet.crypto import KEY_SIZE
from pygnunet.errors import MalformedMessage
from pygnunet.models.envelope import Envelope, MessageType
from pygnunet.models.peer import PeerAddress, PeerRecord
from pygnunet.transport.codec import PayloadReader, PayloadWriter, decode_envelope, encode_envelope, expect_type
from pygnunet.transport.connection import connect

logger = logging.getLogger(__name__)

SERVICE_NAME = "peerinfo"
TRANSPORT_SERVICE_NAME = "transport"


def _check_peer(peer: bytes) -> bytes:
    if len(peer) != KEY_SIZE:
        raise ValueError(f"peer identity must be {KEY_SIZE} bytes, got {len(peer)}")
    return bytes(peer)


class ListPeersMessage(BaseModel):
    """PEERINFO_GET when ``peer`` is set, PEERINFO_GET_ALL otherwise."""
    model_config = ConfigDict(frozen=True)

    peer: Optional[bytes] = None
    include_friend_only: bool = False

    def encode(self) -> Envelope:
        writer = PayloadWriter().u32(int(self.include_friend_only))
        if self.peer is None:
            return writer.envelope(MessageType.PEERINFO_GET_ALL)
        return writer.raw(_check_peer(self.peer)).envelope(MessageType.PEERINFO_GET)

    @classmethod
    def decode(cls, envelope: Envelope) -> "ListPeersMessage":
        expect_type(envelope, MessageType.PEERINFO_GET, MessageType.PEERINFO_GET_ALL)
        reader = PayloadReader(envelope.payload, envelope.msg_type.name)
        include_friend_only = bool(reader.u32())
        peer = reader.raw(KEY_SIZE) if envelope.msg_type == MessageType.PEERINFO_GET else None
        reader.expect_end()
        return cls(peer=peer, include_friend_only=include_friend_only)


class Hello(BaseModel):
    """A peer's self-description: its identity plus where it can be reached."""
    model_config = ConfigDict(frozen=True)

    peer: bytes
    friend_only: bool = False
    addresses: list[PeerAddress] = []

    def encode(self) -> Envelope:
        writer = PayloadWriter().u32(int(self.friend_only)).raw(_check_peer(self.peer))
        for address in self.addresses:
            writer.cstring(address.transport).u16(len(address.address)).u64(address.expiration).raw(address.address)
        return writer.envelope(MessageType.HELLO)

    @classmethod
    def decode(cls, envelope: Envelope) -> "Hello":
        expect_type(envelope, MessageType.HELLO)
        reader = PayloadReader(envelope.payload, "HELLO")
        friend_only = bool(reader.u32())
        peer = reader.raw(KEY_SIZE)
        addresses = []
        while reader.remaining:
            transport = reader.cstring()
            size = reader.u16()
            expiration = reader.u64()
            addresses.append(PeerAddress(transport=transport, expiration=expiration, address=reader.raw(size)))
        return cls(peer=peer, friend_only=friend_only, addresses=addresses)


class PeerInfoMessage(BaseModel):
    """PEERINFO_INFO: one peer, with its HELLO when the service has one."""
    model_config = ConfigDict(frozen=True)

    peer: bytes
    hello: Optional[Hello] = None

    def encode(self) -> Envelope:
        writer = PayloadWriter().u32(0).raw(_check_peer(self.peer))
        if self.hello is not None:
            writer.raw(encode_envelope(self.hello.encode()))
        return writer.envelope(MessageType.PEERINFO_INFO)

    @classmethod
    def decode(cls, envelope: Envelope) -> "PeerInfoMessage":
        expect_type(envelope, MessageType.PEERINFO_INFO)
        reader = PayloadReader(envelope.payload, "PEERINFO_INFO")
        reserved = reader.u32()
        if reserved:
            logger.warning("PEERINFO_INFO reserved field is %d, expected 0", reserved)
        peer = reader.raw(KEY_SIZE)
        if not reader.remaining:
            return cls(peer=peer)

        nested = reader.rest()
        decoded = decode_envelope(nested)
        if decoded is None:
            raise MalformedMessage(f"PEERINFO_INFO carries a truncated HELLO ({len(nested)} bytes)")
        hello_envelope, consumed = decoded
        if consumed != len(nested):
            raise MalformedMessage(f"PEERINFO_INFO has {len(nested) - consumed} bytes after its HELLO")
        hello = Hello.decode(hello_envelope)
        if hello.peer != peer:
            logger.warning("HELLO for %s attached to PEERINFO_INFO for %s", hello.peer.hex(), peer.hex())
        return cls(peer=peer, hello=hello)

    def to_record(self) -> PeerRecord:
        if self.hello is None:
            return PeerRecord(peer=self.peer)
        return PeerRecord(peer=self.peer, friend_only=self.hello.friend_only, addresses=list(self.hello.addresses))


class TransportStartMessage(BaseModel):
    """TRANSPORT_START: asks the transport service for the local HELLO.

    An all-zero ``myself`` leaves the peer identity for the service to fill in.
    """
    model_config = ConfigDict(frozen=True)

    options: int = 0
    myself: bytes = bytes(KEY_SIZE)

    def encode(self) -> Envelope:
        return PayloadWriter().u32(self.options).raw(_check_peer(self.myself)).envelope(MessageType.TRANSPORT_START)

    @classmethod
    def decode(cls, envelope: Envelope) -> "TransportStartMessage":
        expect_type(envelope, MessageType.TRANSPORT_START)
        reader = PayloadReader(envelope.payload, "TRANSPORT_START")
        options = reader.u32()
        myself = reader.raw(KEY_SIZE)
        reader.expect_end()
        return cls(options=options, myself=myself)


INFO_END = Envelope(msg_type=MessageType.PEERINFO_INFO_END)


class PeerinfoClient:
    def __init__(self, config: ConfigStore, timeout: Optional[float] = None):
        self._config = config
        self._timeout = timeout

    async def list_peers(
        self,
        peer: Optional[bytes] = None,
        include_friend_only: bool = False,
    ) -> AsyncGenerator[PeerRecord, None]:
        """Yield the known peers (or just ``peer``) in the order the service sends them.

        The connection is closed when the end marker arrives, on error, and
        when the consumer stops iterating early.
        """
        request = ListPeersMessage(peer=peer, include_friend_only=include_friend_only).encode()
        conn = await connect(SERVICE_NAME, self._config, self._timeout)
        try:
            await conn.send(request)
            while True:
                envelope = await conn.recv()
                expect_type(envelope, MessageType.PEERINFO_INFO, MessageType.PEERINFO_INFO_END)
                if envelope.msg_type == MessageType.PEERINFO_INFO_END:
                    return
                yield PeerInfoMessage.decode(envelope).to_record()
        finally:
            await conn.close()

    async def get_peer(self, peer: bytes) -> Optional[PeerRecord]:
        """The service's record for ``peer``, or None if it does not know it."""
        records = self.list_peers(peer)
        try:
            async for record in records:
                return record
        finally:
            await records.aclose()
        return None

    async def self_hello(self) -> Hello:
        """The local peer's HELLO, as the transport service announces it."""
        conn = await connect(TRANSPORT_SERVICE_NAME, self._config, self._timeout)
        try:
            return Hello.decode(await conn.request(TransportStartMessage().encode()))
        finally:
            await conn.close()

    async def get_self_id(self) -> bytes:
        hello = await self.self_hello()
        logger.debug("Local peer is %s", hello.peer.hex())
        return hello.peer
