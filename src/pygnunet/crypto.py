"""
Key helpers: public key derivation, hashing and the textual key form.

Keys travel as raw 32-byte strings. Their human-readable form is Crockford
base32 without padding, e.g. ``JK55QA8J1A164MB08VM209KE93M9JBB07M2VB8M3M03FKRFSV0MG``.
"""

import base64
import binascii
import hashlib

from nacl import exceptions as nacl_exceptions
from nacl.bindings import crypto_scalarmult_ed25519_base_noclamp

KEY_SIZE = 32
HASH_SIZE = 64

_RFC4648 = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
_CROCKFORD = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_TO_CROCKFORD = str.maketrans(_RFC4648, _CROCKFORD)
_FROM_CROCKFORD = str.maketrans(_CROCKFORD + "OIL", _RFC4648 + "ABB")


def crockford_encode(data: bytes) -> str:
    return base64.b32encode(data).decode("ascii").rstrip("=").translate(_TO_CROCKFORD)


def crockford_decode(text: str) -> bytes:
    """Inverse of crockford_encode. Accepts lower case and the O/I/L look-alikes."""
    normalized = text.strip().upper()
    if any(ch not in _CROCKFORD + "OIL" for ch in normalized):
        raise ValueError(f"{text!r} is not Crockford base32")
    padded = normalized.translate(_FROM_CROCKFORD)
    padded += "=" * (-len(padded) % 8)
    try:
        return base64.b32decode(padded)
    except binascii.Error as e:
        raise ValueError(f"{text!r} is not Crockford base32: {e}")


def parse_public_key(text: str) -> bytes:
    key = crockford_decode(text)
    if len(key) != KEY_SIZE:
        raise ValueError(f"public key must be {KEY_SIZE} bytes, got {len(key)}")
    return key


def hash_code(data: bytes) -> bytes:
    return hashlib.sha512(data).digest()


def ecdsa_public_key(private_key: bytes) -> bytes:
    """Derive the ECDSA public key of an ego.

    The daemon stores the scalar big-endian; the curve arithmetic wants it
    little-endian.
    """
    if len(private_key) != KEY_SIZE:
        raise ValueError(f"private key must be {KEY_SIZE} bytes, got {len(private_key)}")
    try:
        return crypto_scalarmult_ed25519_base_noclamp(bytes(reversed(private_key)))
    except nacl_exceptions.RuntimeError:
        raise ValueError("private key is not a usable scalar")
