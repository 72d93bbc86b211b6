"""
Peer directory models — what the daemon knows about other peers.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict

from pygnunet.crypto import crockford_encode


class PeerAddress(BaseModel):
    """One transport address out of a peer's HELLO."""
    model_config = ConfigDict(frozen=True)

    transport: str
    expiration: int
    address: bytes

    def __str__(self) -> str:
        return f"{self.transport}:{self.address.hex()}"


class PeerRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    peer: bytes
    friend_only: bool = False
    # None: no HELLO was attached. []: a HELLO without addresses.
    addresses: Optional[list[PeerAddress]] = None

    @property
    def peer_id(self) -> str:
        return crockford_encode(self.peer)

    def __repr__(self) -> str:
        count = "no hello" if self.addresses is None else f"{len(self.addresses)} addresses"
        return f"PeerRecord({self.peer_id}, {count})"
