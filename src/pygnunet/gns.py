"""
Name resolution client — GNS lookups.

Exchange:
    -> GNS_LOOKUP (request id, zone public key, options, record type, label)
    <- GNS_LOOKUP_RESULT (same id, zero or more records)

A zone may be given as a 32-byte public key or as the name of a subsystem
whose default ego (from the identity service) owns the zone.
"""

import itertools
import logging
from typing import AsyncGenerator, Optional, Union

from pydantic import BaseModel, ConfigDict

from pygnunet.config import ConfigStore
from pygnunet.crypto import KEY_SIZE
from pygnunet.errors import NotFound, UnexpectedMessage, ZoneNotConfigured
from pygnunet.identity import IdentityClient
from pygnunet.models.envelope import Envelope, MessageType
from pygnunet.models.record import LookupOptions, RecordFlags, RecordType, ZoneRecord
from pygnunet.transport.codec import PayloadReader, PayloadWriter, expect_type
from pygnunet.transport.connection import connect

logger = logging.getLogger(__name__)

SERVICE_NAME = "gns"
MASTER_ZONE_SUBSYSTEM = "gns-master"
MAX_NAME_LENGTH = 253

Zone = Union[bytes, str]


class LookupMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_id: int
    zone: bytes
    name: str
    record_type: int = RecordType.A
    options: LookupOptions = LookupOptions.DEFAULT
    shorten_key: Optional[bytes] = None

    def encode(self) -> Envelope:
        if len(self.name.encode("utf-8")) > MAX_NAME_LENGTH:
            raise ValueError(f"name {self.name!r} is longer than {MAX_NAME_LENGTH} bytes")
        if len(self.zone) != KEY_SIZE:
            raise ValueError(f"zone key must be {KEY_SIZE} bytes, got {len(self.zone)}")
        if self.shorten_key is not None and len(self.shorten_key) != KEY_SIZE:
            raise ValueError(f"shorten key must be {KEY_SIZE} bytes, got {len(self.shorten_key)}")
        return (PayloadWriter()
                .u32(self.request_id)
                .raw(self.zone)
                .i16(self.options)
                .i16(int(self.shorten_key is not None))
                .i32(self.record_type)
                .raw(self.shorten_key or bytes(KEY_SIZE))
                .cstring(self.name)
                .envelope(MessageType.GNS_LOOKUP))

    @classmethod
    def decode(cls, envelope: Envelope) -> "LookupMessage":
        expect_type(envelope, MessageType.GNS_LOOKUP)
        reader = PayloadReader(envelope.payload, "GNS_LOOKUP")
        request_id = reader.u32()
        zone = reader.raw(KEY_SIZE)
        options = LookupOptions(reader.i16())
        have_key = reader.i16()
        record_type = reader.i32()
        shorten_key = reader.raw(KEY_SIZE)
        name = reader.cstring()
        reader.expect_end()
        return cls(request_id=request_id, zone=zone, name=name, record_type=record_type,
                   options=options, shorten_key=shorten_key if have_key else None)


class LookupResultMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_id: int
    records: list[ZoneRecord] = []

    def encode(self) -> Envelope:
        writer = PayloadWriter().u32(self.request_id).u32(len(self.records))
        for record in self.records:
            (writer.u64(record.expiration_time)
                   .u32(len(record.data))
                   .u32(record.record_type)
                   .u32(record.flags)
                   .raw(record.data))
        return writer.envelope(MessageType.GNS_LOOKUP_RESULT)

    @classmethod
    def decode(cls, envelope: Envelope) -> "LookupResultMessage":
        expect_type(envelope, MessageType.GNS_LOOKUP_RESULT)
        reader = PayloadReader(envelope.payload, "GNS_LOOKUP_RESULT")
        request_id = reader.u32()
        count = reader.u32()
        records = []
        for _ in range(count):
            expiration_time = reader.u64()
            size = reader.u32()
            record_type = reader.u32()
            flags = RecordFlags(reader.u32())
            records.append(ZoneRecord(record_type=record_type, flags=flags,
                                      expiration_time=expiration_time, data=reader.raw(size)))
        reader.expect_end()
        return cls(request_id=request_id, records=records)


class GNSClient:
    def __init__(
        self,
        config: ConfigStore,
        identity: Optional[IdentityClient] = None,
        timeout: Optional[float] = None,
    ):
        self._config = config
        self._identity = identity or IdentityClient(config, timeout)
        self._timeout = timeout
        self._ids = itertools.count()

    async def _zone_key(self, zone: Zone) -> bytes:
        if isinstance(zone, str):
            try:
                ego = await self._identity.get_default_ego(zone)
            except NotFound as e:
                raise ZoneNotConfigured(zone, details=e.details) from e
            return ego.public_key
        if len(zone) != KEY_SIZE:
            raise ValueError(f"zone key must be {KEY_SIZE} bytes, got {len(zone)}")
        return bytes(zone)

    async def lookup(
        self,
        zone: Zone,
        label: str,
        record_type: Union[RecordType, int] = RecordType.A,
        options: LookupOptions = LookupOptions.DEFAULT,
        shorten_key: Optional[bytes] = None,
    ) -> AsyncGenerator[ZoneRecord, None]:
        """Yield the records the service finds for ``label`` in ``zone``.

        An empty answer is an empty iteration, not an error.
        """
        if len(label.encode("utf-8")) > MAX_NAME_LENGTH:
            raise ValueError(f"name {label!r} is longer than {MAX_NAME_LENGTH} bytes")
        zone_key = await self._zone_key(zone)
        request = LookupMessage(request_id=next(self._ids) & 0xFFFFFFFF, zone=zone_key, name=label,
                                record_type=int(record_type), options=options, shorten_key=shorten_key)

        conn = await connect(SERVICE_NAME, self._config, self._timeout)
        try:
            result = LookupResultMessage.decode(await conn.request(request.encode()))
        finally:
            await conn.close()

        if result.request_id != request.request_id:
            raise UnexpectedMessage(f"Lookup result for request {result.request_id}, expected {request.request_id}",
                                    details={"expected": request.request_id, "got": result.request_id})
        logger.debug("Lookup of %r returned %d records", label, len(result.records))
        for record in result.records:
            yield record

    async def lookup_in_master(
        self,
        label: str,
        record_type: Union[RecordType, int] = RecordType.A,
        options: LookupOptions = LookupOptions.DEFAULT,
    ) -> AsyncGenerator[ZoneRecord, None]:
        """lookup() in the zone of the ``gns-master`` default ego."""
        async for record in self.lookup(MASTER_ZONE_SUBSYSTEM, label, record_type, options):
            yield record
