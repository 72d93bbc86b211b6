"""
Identity client — egos held by the identity service.

Exchanges:
    -> IDENTITY_START
    <- IDENTITY_UPDATE per ego, then one with end_of_list set,
       then further updates for as long as the connection stays open

    -> IDENTITY_GET_DEFAULT (subsystem name)
    <- IDENTITY_SET_DEFAULT (the ego's private key) or IDENTITY_RESULT_CODE

An update with an empty name reports a deleted ego.
"""

import logging
from types import MappingProxyType
from typing import AsyncGenerator, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from pygnunet.config import ConfigStore
from pygnunet.crypto import KEY_SIZE, ecdsa_public_key
from pygnunet.errors import NotFound
from pygnunet.models.envelope import Envelope, MessageType
from pygnunet.models.identity import Ego, EgoEvent, EgoEventKind
from pygnunet.transport.codec import MAX_MESSAGE_SIZE, PayloadReader, PayloadWriter, expect_type
from pygnunet.transport.connection import ServiceConnection, connect

logger = logging.getLogger(__name__)

SERVICE_NAME = "identity"

_NO_KEY = bytes(KEY_SIZE)


def _name_field(name: str) -> int:
    """Encoded size of ``name`` including its terminator; 0 for no name."""
    if not name:
        return 0
    size = len(name.encode("utf-8")) + 1
    if size > MAX_MESSAGE_SIZE - 64:
        raise ValueError(f"name of {size} bytes is too long")
    return size


class UpdateMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    private_key: bytes = _NO_KEY
    end_of_list: bool = False

    def encode(self) -> Envelope:
        writer = PayloadWriter().u16(_name_field(self.name)).u16(int(self.end_of_list)).raw(self.private_key)
        if self.name:
            writer.cstring(self.name)
        return writer.envelope(MessageType.IDENTITY_UPDATE)

    @classmethod
    def decode(cls, envelope: Envelope) -> "UpdateMessage":
        expect_type(envelope, MessageType.IDENTITY_UPDATE)
        reader = PayloadReader(envelope.payload, "IDENTITY_UPDATE")
        name_len = reader.u16()
        end_of_list = bool(reader.u16())
        if end_of_list and not reader.remaining:
            return cls(end_of_list=True)
        private_key = reader.raw(KEY_SIZE)
        name = reader.cstring(name_len)
        reader.expect_end()
        return cls(name=name, private_key=private_key, end_of_list=end_of_list)


class GetDefaultMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    subsystem: str

    def encode(self) -> Envelope:
        if not self.subsystem:
            raise ValueError("subsystem name must not be empty")
        return (PayloadWriter()
                .u16(_name_field(self.subsystem)).u16(0)
                .cstring(self.subsystem)
                .envelope(MessageType.IDENTITY_GET_DEFAULT))

    @classmethod
    def decode(cls, envelope: Envelope) -> "GetDefaultMessage":
        expect_type(envelope, MessageType.IDENTITY_GET_DEFAULT)
        reader = PayloadReader(envelope.payload, "IDENTITY_GET_DEFAULT")
        name_len = reader.u16()
        reader.u16()
        subsystem = reader.cstring(name_len)
        reader.expect_end()
        return cls(subsystem=subsystem)


class SetDefaultMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    subsystem: str
    private_key: bytes

    def encode(self) -> Envelope:
        return (PayloadWriter()
                .u16(_name_field(self.subsystem)).u16(0)
                .raw(self.private_key)
                .cstring(self.subsystem)
                .envelope(MessageType.IDENTITY_SET_DEFAULT))

    @classmethod
    def decode(cls, envelope: Envelope) -> "SetDefaultMessage":
        expect_type(envelope, MessageType.IDENTITY_SET_DEFAULT)
        reader = PayloadReader(envelope.payload, "IDENTITY_SET_DEFAULT")
        name_len = reader.u16()
        reserved = reader.u16()
        if reserved:
            logger.warning("IDENTITY_SET_DEFAULT reserved field is %d, expected 0", reserved)
        private_key = reader.raw(KEY_SIZE)
        subsystem = reader.cstring(name_len)
        reader.expect_end()
        return cls(subsystem=subsystem, private_key=private_key)


class ResultCodeMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: int
    message: Optional[str] = None

    def encode(self) -> Envelope:
        writer = PayloadWriter().u32(self.code)
        if self.message is not None:
            writer.cstring(self.message)
        return writer.envelope(MessageType.IDENTITY_RESULT_CODE)

    @classmethod
    def decode(cls, envelope: Envelope) -> "ResultCodeMessage":
        expect_type(envelope, MessageType.IDENTITY_RESULT_CODE)
        reader = PayloadReader(envelope.payload, "IDENTITY_RESULT_CODE")
        code = reader.u32()
        message = reader.cstring(reader.remaining) if reader.remaining else None
        return cls(code=code, message=message)


START = Envelope(msg_type=MessageType.IDENTITY_START)


class IdentityClient:
    """Egos, the default ego per subsystem, and a cache of what the service reported."""

    def __init__(self, config: ConfigStore, timeout: Optional[float] = None):
        self._config = config
        self._timeout = timeout
        self._egos: dict[bytes, Ego] = {}

    @property
    def egos(self) -> Mapping[bytes, Ego]:
        """Known egos by public key, as of the last listing or watch update."""
        return MappingProxyType(self._egos)

    async def _start(self) -> ServiceConnection:
        conn = await connect(SERVICE_NAME, self._config, self._timeout)
        try:
            await conn.send(START)
        except BaseException:
            await conn.close()
            raise
        return conn

    async def list_egos(self) -> AsyncGenerator[Ego, None]:
        """Yield every ego once; the connection is closed after the end-of-list marker."""
        conn = await self._start()
        seen: set[bytes] = set()
        try:
            while True:
                update = UpdateMessage.decode(await conn.recv())
                if update.end_of_list:
                    break
                ego = Ego(name=update.name, private_key=update.private_key,
                          public_key=ecdsa_public_key(update.private_key))
                self._egos[ego.public_key] = ego
                seen.add(ego.public_key)
                yield ego
        finally:
            await conn.close()

        for stale in set(self._egos) - seen:
            del self._egos[stale]

    async def watch(self) -> AsyncGenerator[EgoEvent, None]:
        """Yield the current egos as EXISTING, then every change until cancelled.

        The connection stays open while the consumer iterates; stopping the
        iteration or cancelling the consuming task closes it.
        """
        conn = await self._start()
        initial = True
        try:
            while True:
                update = UpdateMessage.decode(await conn.recv())
                if update.end_of_list:
                    initial = False
                    continue
                event = self._apply(update, initial)
                if event is not None:
                    yield event
        finally:
            await conn.close()

    def _apply(self, update: UpdateMessage, initial: bool) -> Optional[EgoEvent]:
        public_key = ecdsa_public_key(update.private_key)
        known = self._egos.get(public_key)

        if not update.name:
            self._egos.pop(public_key, None)
            ego = known or Ego(name=None, private_key=update.private_key, public_key=public_key)
            return EgoEvent(kind=EgoEventKind.DELETED, ego=ego, old_name=known.name if known else None)

        ego = Ego(name=update.name, private_key=update.private_key, public_key=public_key)
        self._egos[public_key] = ego
        if initial:
            return EgoEvent(kind=EgoEventKind.EXISTING, ego=ego)
        if known is None:
            return EgoEvent(kind=EgoEventKind.CREATED, ego=ego)
        if known.name != ego.name:
            return EgoEvent(kind=EgoEventKind.RENAMED, ego=ego, old_name=known.name)
        logger.debug("Ignoring repeated update for ego %s", ego.name)
        return None

    async def get_default_ego(self, subsystem: str) -> Ego:
        """The ego the service has assigned to ``subsystem``.

        Raises NotFound when no default is configured for it.
        """
        request = GetDefaultMessage(subsystem=subsystem).encode()
        async with await connect(SERVICE_NAME, self._config, self._timeout) as conn:
            reply = await conn.request(request)

        expect_type(reply, MessageType.IDENTITY_SET_DEFAULT, MessageType.IDENTITY_RESULT_CODE)
        if reply.msg_type == MessageType.IDENTITY_RESULT_CODE:
            result = ResultCodeMessage.decode(reply)
            reason = result.message or f"result code {result.code}"
            raise NotFound(f"No default ego for '{subsystem}': {reason}",
                           details={"subsystem": subsystem, "code": result.code})

        answer = SetDefaultMessage.decode(reply)
        public_key = ecdsa_public_key(answer.private_key)
        if public_key not in self._egos:
            async for _ in self.list_egos():
                pass
        known = self._egos.get(public_key)
        return Ego(name=known.name if known else None, private_key=answer.private_key, public_key=public_key)
