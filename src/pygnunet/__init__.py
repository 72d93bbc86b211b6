"""
pygnunet — asyncio client for a local GNUnet daemon.

Peer directory, identity and GNS name resolution over the daemon's
length-prefixed IPC protocol, with the daemon's INI configuration.
"""

from pygnunet.client import GNUnet, AsyncGNUnet
from pygnunet.config import ConfigStore, ConfigValue
from pygnunet.errors import (
    GNUnetError,
    ConfigError,
    ConnectError,
    ConnectionLost,
    MalformedMessage,
    UnexpectedMessage,
    NotFound,
    ProtocolNotFound,
    ZoneNotConfigured,
)
from pygnunet.gns import GNSClient
from pygnunet.identity import IdentityClient
from pygnunet.models.envelope import Envelope, MessageType
from pygnunet.models.identity import Ego, EgoEvent, EgoEventKind
from pygnunet.models.peer import PeerAddress, PeerRecord
from pygnunet.models.record import LookupOptions, RecordFlags, RecordType, ZoneRecord
from pygnunet.peerinfo import PeerinfoClient

__version__ = "0.1.0"
__all__ = [
    "GNUnet",
    "AsyncGNUnet",
    "ConfigStore",
    "ConfigValue",
    "GNUnetError",
    "ConfigError",
    "ConnectError",
    "ConnectionLost",
    "MalformedMessage",
    "UnexpectedMessage",
    "NotFound",
    "ProtocolNotFound",
    "ZoneNotConfigured",
    "GNSClient",
    "IdentityClient",
    "PeerinfoClient",
    "Envelope",
    "MessageType",
    "Ego",
    "EgoEvent",
    "EgoEventKind",
    "PeerAddress",
    "PeerRecord",
    "LookupOptions",
    "RecordFlags",
    "RecordType",
    "ZoneRecord",
]
