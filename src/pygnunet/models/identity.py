"""
Identity models — egos and the changes the daemon reports about them.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from pygnunet.crypto import crockford_encode, hash_code


class Ego(BaseModel):
    """A named key pair held by the identity service.

    ``name`` is None for egos the daemon reported without a name, such as a
    default ego looked up before the ego list was seen.
    """
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    private_key: bytes = Field(repr=False)
    public_key: bytes

    @property
    def id(self) -> str:
        """Stable identifier: the hash of the public key, in text form."""
        return crockford_encode(hash_code(self.public_key))

    @property
    def public_key_string(self) -> str:
        return crockford_encode(self.public_key)


class EgoEventKind(str, Enum):
    EXISTING = "existing"
    CREATED = "created"
    RENAMED = "renamed"
    DELETED = "deleted"


class EgoEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: EgoEventKind
    ego: Ego
    old_name: Optional[str] = None
