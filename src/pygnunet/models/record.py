"""
GNS zone records.
"""

import ipaddress
from enum import IntEnum, IntFlag
from typing import Union

from pydantic import BaseModel, ConfigDict


class RecordType(IntEnum):
    ANY = 0

    A = 1
    NS = 2
    CNAME = 5
    SOA = 6
    PTR = 12
    MX = 15
    TXT = 16
    AAAA = 28
    TLSA = 52

    PKEY = 65536
    NICK = 65537
    LEHO = 65538
    VPN = 65539
    GNS2DNS = 65540

    @classmethod
    def parse(cls, text: str) -> "RecordType":
        try:
            return cls[text.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown record type {text!r}")


class RecordFlags(IntFlag):
    NONE = 0
    PRIVATE = 2
    PENDING = 4
    RELATIVE_EXPIRATION = 8
    SHADOW_RECORD = 16


class LookupOptions(IntEnum):
    DEFAULT = 0
    NO_DHT = 1
    LOCAL_MASTER = 2

    LOCAL_ONLY = 1


class ZoneRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    record_type: int
    flags: RecordFlags = RecordFlags.NONE
    # Absolute microseconds, or a duration when RELATIVE_EXPIRATION is set.
    expiration_time: int = 0
    data: bytes = b""

    @property
    def type_name(self) -> Union[str, int]:
        try:
            return RecordType(self.record_type).name
        except ValueError:
            return self.record_type

    @property
    def is_relative_expiration(self) -> bool:
        return bool(self.flags & RecordFlags.RELATIVE_EXPIRATION)

    def value_str(self) -> str:
        """Text form of ``data``: addresses for A and AAAA, the text of TXT, hex otherwise.

        Raises ValueError when an address record has the wrong size.
        """
        if self.record_type == RecordType.A:
            return str(ipaddress.IPv4Address(self.data))
        if self.record_type == RecordType.AAAA:
            return str(ipaddress.IPv6Address(self.data))
        if self.record_type == RecordType.TXT:
            return self.data.decode("utf-8", errors="replace")
        return self.data.hex()

    def __repr__(self) -> str:
        return f"ZoneRecord(type={self.type_name}, flags={int(self.flags)}, size={len(self.data)})"
