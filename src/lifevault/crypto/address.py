# src/lifevault/crypto/address.py
from __future__ import annotations

"""Account address derivation and hex normalization.

Addresses follow the ledger's single-key Ed25519 scheme:

    address = sha3_256(public_key || 0x00)

rendered as "0x" + 64 lowercase hex characters. The trailing byte is the
authentication-scheme tag; other schemes (multi-ed25519, secp256k1) use a
different tag and therefore land on a different address for the same key.
"""

import hashlib
import re
from typing import Final, Union

from lifevault.runtime.errors import InvalidEncoding

ADDRESS_PREFIX: Final[str] = "0x"
ADDRESS_HEX_LEN: Final[int] = 64
ED25519_SCHEME_TAG: Final[int] = 0x00

NULL_ADDRESS: Final[str] = ADDRESS_PREFIX + "0" * ADDRESS_HEX_LEN

_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")
_ADDRESS_RE = re.compile(r"^0[xX][0-9a-fA-F]{64}$")

BytesLike = Union[bytes, bytearray, memoryview]


def _strip_prefix(value: str) -> str:
    s = value.strip()
    if s[:2] in {"0x", "0X"}:
        return s[2:]
    return s


def normalize_hex(value: str) -> bytes:
    """Decode a hex string with an optional 0x prefix.

    Raises InvalidEncoding on odd length or non-hex characters.
    """
    if not isinstance(value, str):
        raise InvalidEncoding("hex_not_str", {"type": type(value).__name__})
    body = _strip_prefix(value)
    if len(body) % 2 != 0:
        raise InvalidEncoding("hex_odd_length", {"length": len(body)})
    if not _HEX_RE.match(body):
        raise InvalidEncoding("hex_bad_chars")
    return bytes.fromhex(body)


def as_bytes(value: Union[str, BytesLike]) -> bytes:
    """Accept raw bytes or a hex string."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    return normalize_hex(value)


def derive_address(public_key: Union[str, BytesLike], *, scheme_tag: int = ED25519_SCHEME_TAG) -> str:
    pk = as_bytes(public_key)
    digest = hashlib.sha3_256(pk + bytes([int(scheme_tag) & 0xFF])).hexdigest()
    return ADDRESS_PREFIX + digest


def is_address_format(value: str) -> bool:
    """True iff value is the fixed long form: 0x + 64 hex chars."""
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value.strip()))


def normalize_address(value: str) -> str:
    """Canonicalize an address: lowercase, 0x prefix, left-padded to 64 hex.

    Short forms such as "0x1" are accepted; anything longer than 32 bytes or
    not hex raises InvalidEncoding.
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidEncoding("address_missing")
    body = _strip_prefix(value)
    if not body or not _HEX_RE.match(body):
        raise InvalidEncoding("address_bad_chars", {"address": value})
    if len(body) > ADDRESS_HEX_LEN:
        raise InvalidEncoding("address_too_long", {"length": len(body)})
    return ADDRESS_PREFIX + body.lower().rjust(ADDRESS_HEX_LEN, "0")


def addresses_equal(a: str, b: str) -> bool:
    """Case-insensitive comparison of two addresses. Malformed input is unequal."""
    try:
        return normalize_address(a) == normalize_address(b)
    except InvalidEncoding:
        return False
