"""
Integration tests for pygnunet — tests against a running GNUnet daemon.

Uses the local GNUnet configuration (``$GNUNET_CONFIG`` or
``~/.config/gnunet.conf`` layered over the installed defaults).

Optional environment variables:
  GNUNET_TEST_SUBSYSTEM  — subsystem with a default ego (default: gns-master)
  GNUNET_TEST_LABEL      — label to resolve in that zone (default: www)

Run: GNUNET_INTEGRATION=1 pytest tests/integration/ -v
"""

import os

import pytest

from pygnunet import AsyncGNUnet, ConnectionLost, NotFound

SKIP = not os.environ.get("GNUNET_INTEGRATION")
SUBSYSTEM = os.environ.get("GNUNET_TEST_SUBSYSTEM", "gns-master")
LABEL = os.environ.get("GNUNET_TEST_LABEL", "www")

pytestmark = pytest.mark.skipif(SKIP, reason="GNUNET_INTEGRATION not set")


def make_client() -> AsyncGNUnet:
    return AsyncGNUnet(timeout=10.0)


class TestPeerDirectory:
    """Peerinfo enumeration against the live service"""

    @pytest.mark.asyncio
    async def test_lists_peers(self):
        client = make_client()
        records = [record async for record in client.list_peers()]
        for record in records:
            assert len(record.peer) == 32
            print(f"  {record!r}")

    @pytest.mark.asyncio
    async def test_self_id_matches_hello(self):
        client = make_client()
        hello = await client.self_hello()
        assert await client.get_self_id() == hello.peer


class TestIdentity:
    """Ego listing and default egos"""

    @pytest.mark.asyncio
    async def test_lists_egos(self):
        client = make_client()
        egos = [ego async for ego in client.list_egos()]
        assert all(len(ego.public_key) == 32 for ego in egos)

    @pytest.mark.asyncio
    async def test_unknown_subsystem_has_no_default(self):
        client = make_client()
        with pytest.raises(NotFound):
            await client.get_default_ego("pygnunet-no-such-subsystem")


class TestNameResolution:
    """GNS lookups in the configured zone"""

    @pytest.mark.asyncio
    async def test_lookup_in_subsystem_zone(self):
        client = make_client()
        try:
            records = [record async for record in client.lookup(SUBSYSTEM, LABEL)]
        except NotFound as e:
            pytest.skip(f"no zone for {SUBSYSTEM}: {e}")
        except ConnectionLost as e:
            # Known to happen with some identity service configurations.
            pytest.skip(f"service dropped the lookup: {e}")
        for record in records:
            print(f"  {record.type_name} {record.value_str()}")
        print(f"  {len(records)} records for {LABEL}")
