"""
GNUnet / AsyncGNUnet — main client entry points.
"""

import asyncio
import os
from contextlib import aclosing
from typing import Any, AsyncGenerator, Optional, Union

from pygnunet.config import ConfigStore
from pygnunet.gns import GNSClient, Zone
from pygnunet.identity import IdentityClient
from pygnunet.models.identity import Ego, EgoEvent
from pygnunet.models.peer import PeerRecord
from pygnunet.models.record import LookupOptions, RecordType, ZoneRecord
from pygnunet.peerinfo import Hello, PeerinfoClient


class AsyncGNUnet:
    """Async GNUnet client (primary).

    Holds the configuration and one client per service. Every call opens its
    own connection, so calls may run concurrently. Closing one of the streams
    below closes the connection behind it.
    """

    def __init__(
        self,
        config: Optional[ConfigStore] = None,
        config_file: Optional[Union[str, "os.PathLike[str]"]] = None,
        timeout: Optional[float] = None,
    ):
        if config is None:
            config = ConfigStore.default(config_file)
        self.config = config
        self.peerinfo = PeerinfoClient(config, timeout)
        self.identity = IdentityClient(config, timeout)
        self.gns = GNSClient(config, self.identity, timeout)

    async def list_peers(
        self, peer: Optional[bytes] = None, include_friend_only: bool = False,
    ) -> AsyncGenerator[PeerRecord, None]:
        async with aclosing(self.peerinfo.list_peers(peer, include_friend_only)) as records:
            async for record in records:
                yield record

    async def get_peer(self, peer: bytes) -> Optional[PeerRecord]:
        return await self.peerinfo.get_peer(peer)

    async def self_hello(self) -> Hello:
        return await self.peerinfo.self_hello()

    async def get_self_id(self) -> bytes:
        return await self.peerinfo.get_self_id()

    async def list_egos(self) -> AsyncGenerator[Ego, None]:
        async with aclosing(self.identity.list_egos()) as egos:
            async for ego in egos:
                yield ego

    async def watch_egos(self) -> AsyncGenerator[EgoEvent, None]:
        async with aclosing(self.identity.watch()) as events:
            async for event in events:
                yield event

    async def get_default_ego(self, subsystem: str) -> Ego:
        return await self.identity.get_default_ego(subsystem)

    async def lookup(
        self,
        zone: Zone,
        label: str,
        record_type: Union[RecordType, int] = RecordType.A,
        options: LookupOptions = LookupOptions.DEFAULT,
        shorten_key: Optional[bytes] = None,
    ) -> AsyncGenerator[ZoneRecord, None]:
        async with aclosing(self.gns.lookup(zone, label, record_type, options, shorten_key)) as records:
            async for record in records:
                yield record


class GNUnet:
    """Sync wrapper around AsyncGNUnet. Runs the event loop internally."""

    def __init__(self, **kwargs: Any):
        self._loop = asyncio.new_event_loop()
        self._async = AsyncGNUnet(**kwargs)

    def _run(self, coro: Any) -> Any:
        return self._loop.run_until_complete(coro)

    def _collect(self, stream: AsyncGenerator[Any, None]) -> list[Any]:
        async def _drain() -> list[Any]:
            items = []
            try:
                async for item in stream:
                    items.append(item)
            finally:
                await stream.aclose()
            return items
        return self._run(_drain())

    @property
    def config(self) -> ConfigStore:
        return self._async.config

    def list_peers(self, peer: Optional[bytes] = None, include_friend_only: bool = False) -> list[PeerRecord]:
        return self._collect(self._async.list_peers(peer, include_friend_only))

    def get_peer(self, peer: bytes) -> Optional[PeerRecord]:
        return self._run(self._async.get_peer(peer))

    def get_self_id(self) -> bytes:
        return self._run(self._async.get_self_id())

    def list_egos(self) -> list[Ego]:
        return self._collect(self._async.list_egos())

    def get_default_ego(self, subsystem: str) -> Ego:
        return self._run(self._async.get_default_ego(subsystem))

    def lookup(self, zone: Zone, label: str, **kwargs: Any) -> list[ZoneRecord]:
        return self._collect(self._async.lookup(zone, label, **kwargs))

    def close(self) -> None:
        self._loop.close()

    def __enter__(self) -> "GNUnet":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
