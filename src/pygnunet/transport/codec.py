"""
Envelope construction and parsing.

Wire layout: [u16 total_length][u16 message_type][payload], network byte
order, where total_length counts the 4-byte header. The codec only owns this
outer frame; payload layouts belong to the client modules, which build them
with PayloadWriter and take them apart with PayloadReader.
"""

import struct
from typing import Optional

from pygnunet.errors import MalformedMessage, UnexpectedMessage
from pygnunet.models.envelope import HEADER_SIZE, Envelope, MessageType

MAX_MESSAGE_SIZE = 0xFFFF

_HEADER = struct.Struct("!HH")
_KNOWN_TYPES = frozenset(int(t) for t in MessageType)


def encode_envelope(envelope: Envelope) -> bytes:
    """Serialize one envelope, header included."""
    length = envelope.length
    if length > MAX_MESSAGE_SIZE:
        raise ValueError(f"{envelope.msg_type.name} message of {length} bytes exceeds {MAX_MESSAGE_SIZE}")
    return _HEADER.pack(length, envelope.msg_type) + envelope.payload


def decode_envelope(buffer: bytes, max_size: int = MAX_MESSAGE_SIZE) -> Optional[tuple[Envelope, int]]:
    """Take one envelope off the front of ``buffer``.

    Returns ``(envelope, bytes_consumed)``, or None when the buffer does not
    yet hold a complete envelope (nothing is consumed in that case). Raises
    MalformedMessage as soon as the header is readable and declares a length
    below the header size, above ``max_size``, or an unknown type.
    """
    if len(buffer) < HEADER_SIZE:
        return None
    length, type_tag = _HEADER.unpack_from(buffer)
    if length < HEADER_SIZE:
        raise MalformedMessage(f"Declared message length {length} is shorter than the header",
                               details={"length": length, "type": type_tag})
    if length > max_size:
        raise MalformedMessage(f"Declared message length {length} exceeds maximum {max_size}",
                               details={"length": length, "type": type_tag})
    if type_tag not in _KNOWN_TYPES:
        raise MalformedMessage(f"Unknown message type {type_tag}",
                               details={"length": length, "type": type_tag})
    if len(buffer) < length:
        return None
    envelope = Envelope(msg_type=MessageType(type_tag), payload=bytes(buffer[HEADER_SIZE:length]))
    return envelope, length


class FrameDecoder:
    """Incremental decoder: feed it whatever the socket hands over."""

    def __init__(self, max_size: int = MAX_MESSAGE_SIZE) -> None:
        self._buffer = bytearray()
        self._max_size = max_size

    @property
    def pending(self) -> int:
        """Bytes held back as an incomplete envelope."""
        return len(self._buffer)

    def push(self, data: bytes) -> None:
        self._buffer += data

    def pop(self) -> Optional[Envelope]:
        """Next complete envelope, or None. A malformed header stays buffered."""
        result = decode_envelope(self._buffer, self._max_size)
        if result is None:
            return None
        envelope, consumed = result
        del self._buffer[:consumed]
        return envelope

    def feed(self, data: bytes) -> list[Envelope]:
        self.push(data)
        out: list[Envelope] = []
        while True:
            envelope = self.pop()
            if envelope is None:
                return out
            out.append(envelope)


class PayloadWriter:
    """Builds a payload from network-order fields."""

    def __init__(self) -> None:
        self._parts: list[bytes] = []

    def u16(self, value: int) -> "PayloadWriter":
        self._parts.append(struct.pack("!H", value))
        return self

    def u32(self, value: int) -> "PayloadWriter":
        self._parts.append(struct.pack("!I", value))
        return self

    def u64(self, value: int) -> "PayloadWriter":
        self._parts.append(struct.pack("!Q", value))
        return self

    def i16(self, value: int) -> "PayloadWriter":
        self._parts.append(struct.pack("!h", value))
        return self

    def i32(self, value: int) -> "PayloadWriter":
        self._parts.append(struct.pack("!i", value))
        return self

    def raw(self, data: bytes) -> "PayloadWriter":
        self._parts.append(bytes(data))
        return self

    def cstring(self, text: str) -> "PayloadWriter":
        self._parts.append(text.encode("utf-8") + b"\x00")
        return self

    def build(self) -> bytes:
        return b"".join(self._parts)

    def envelope(self, msg_type: MessageType) -> Envelope:
        return Envelope(msg_type=msg_type, payload=self.build())


class PayloadReader:
    """Reads network-order fields off a payload; any shortfall is MalformedMessage."""

    def __init__(self, payload: bytes, context: str = "message") -> None:
        self._data = memoryview(payload)
        self._pos = 0
        self._context = context

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def _take(self, n: int) -> bytes:
        if n > self.remaining:
            raise MalformedMessage(
                f"{self._context} truncated: needed {n} bytes at offset {self._pos}, have {self.remaining}")
        chunk = self._data[self._pos:self._pos + n].tobytes()
        self._pos += n
        return chunk

    def _unpack(self, fmt: str, size: int) -> int:
        return struct.unpack(fmt, self._take(size))[0]

    def u16(self) -> int:
        return self._unpack("!H", 2)

    def u32(self) -> int:
        return self._unpack("!I", 4)

    def u64(self) -> int:
        return self._unpack("!Q", 8)

    def i16(self) -> int:
        return self._unpack("!h", 2)

    def i32(self) -> int:
        return self._unpack("!i", 4)

    def raw(self, n: int) -> bytes:
        return self._take(n)

    def rest(self) -> bytes:
        return self._take(self.remaining)

    def cstring(self, size: Optional[int] = None) -> str:
        """Read a 0-terminated UTF-8 string.

        With ``size`` the field is exactly that many bytes including the
        terminator; without it the string runs to the next NUL.
        """
        if size is None:
            end = bytes(self._data[self._pos:]).find(b"\x00")
            if end < 0:
                raise MalformedMessage(f"{self._context}: string at offset {self._pos} is not 0-terminated")
            size = end + 1
        if size == 0:
            return ""
        raw = self._take(size)
        if raw[-1] != 0:
            raise MalformedMessage(f"{self._context}: string field of {size} bytes is not 0-terminated")
        try:
            return raw[:-1].decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessage(f"{self._context}: string is not valid UTF-8: {e}")

    def expect_end(self) -> None:
        if self.remaining:
            raise MalformedMessage(f"{self._context}: {self.remaining} unexpected trailing bytes")


def expect_type(envelope: Envelope, *allowed: MessageType) -> None:
    """Raise UnexpectedMessage unless ``envelope`` is one of ``allowed``."""
    if envelope.msg_type not in allowed:
        names = ", ".join(t.name for t in allowed)
        raise UnexpectedMessage(f"Expected {names}, got {envelope.msg_type.name}",
                                details={"type": int(envelope.msg_type)})
