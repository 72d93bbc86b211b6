"""
IPC envelope — the outer length + type + payload framing unit.
"""

from enum import IntEnum

from pydantic import BaseModel, ConfigDict

HEADER_SIZE = 4


class MessageType(IntEnum):
    """Message type numbers, as assigned by the daemon."""

    TEST = 1
    DUMMY = 2
    DUMMY2 = 3

    HELLO = 17

    PEERINFO_GET = 330
    PEERINFO_GET_ALL = 331
    PEERINFO_INFO = 332
    PEERINFO_INFO_END = 333
    PEERINFO_NOTIFY = 334

    TRANSPORT_START = 360

    GNS_LOOKUP = 500
    GNS_LOOKUP_RESULT = 501
    GNS_REVERSE_LOOKUP = 503
    GNS_REVERSE_LOOKUP_RESULT = 504

    IDENTITY_START = 624
    IDENTITY_RESULT_CODE = 625
    IDENTITY_UPDATE = 626
    IDENTITY_GET_DEFAULT = 627
    IDENTITY_SET_DEFAULT = 628
    IDENTITY_CREATE = 629
    IDENTITY_RENAME = 630
    IDENTITY_DELETE = 631
    IDENTITY_LOOKUP = 632
    IDENTITY_LOOKUP_BY_SUFFIX = 633


class Envelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    msg_type: MessageType
    payload: bytes = b""

    @property
    def length(self) -> int:
        """Total size on the wire, header included."""
        return HEADER_SIZE + len(self.payload)

    def __repr__(self) -> str:
        return f"Envelope(type={self.msg_type.name}, length={self.length})"
