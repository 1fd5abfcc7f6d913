# src/lifevault/crypto/sig.py
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

from cryptography.exceptions import InvalidSignature as _CryptoInvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from lifevault.crypto.address import BytesLike, as_bytes
from lifevault.runtime.errors import InvalidEncoding

Json = Dict[str, Any]

SIGNATURE_LEN = 64
PUBLIC_KEY_LEN = 32
DOMAIN_TAG = "APTOS"

KeyInput = Union[str, BytesLike]


def _decode_fixed(value: KeyInput, *, length: int, what: str) -> bytes:
    try:
        b = as_bytes(value)
    except InvalidEncoding as e:
        raise InvalidEncoding(f"{what}_{e.reason}", e.details) from e
    if len(b) != length:
        raise InvalidEncoding(f"{what}_bad_length", {"expected": length, "got": len(b)})
    return b


def _message_bytes(message: Union[str, bytes]) -> bytes:
    if isinstance(message, (bytes, bytearray, memoryview)):
        return bytes(message)
    return str(message).encode("utf-8")


def verify_detached(message: Union[str, bytes], signature: KeyInput, public_key: KeyInput) -> bool:
    """Verify a detached Ed25519 signature.

    Raises InvalidEncoding when the signature is not 64 bytes or the public key
    not 32 bytes. A cryptographic mismatch returns False.
    """
    sig_b = _decode_fixed(signature, length=SIGNATURE_LEN, what="signature")
    pk_b = _decode_fixed(public_key, length=PUBLIC_KEY_LEN, what="public_key")
    try:
        key = Ed25519PublicKey.from_public_bytes(pk_b)
        key.verify(sig_b, _message_bytes(message))
        return True
    except (_CryptoInvalidSignature, ValueError):
        return False


def validate_structure(signature: KeyInput, public_key: KeyInput) -> bool:
    """Length-only pre-check. Never a substitute for verify_detached."""
    try:
        _decode_fixed(signature, length=SIGNATURE_LEN, what="signature")
        _decode_fixed(public_key, length=PUBLIC_KEY_LEN, what="public_key")
    except InvalidEncoding:
        return False
    return True


# ---------------------------------------------------------------------------
# Challenge message encodings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MessageFormat:
    """One canonical byte encoding of a (message, nonce) challenge.

    `encode` returns None when the format does not apply to the given context
    (for example a chain-qualified template with no chain fields).
    """

    name: str
    encode: Callable[[str, str, Mapping[str, Any]], Optional[bytes]]


# Optional header fields of the chain-qualified template, in wallet order.
_CHAIN_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("address", "address"),
    ("application", "application"),
    ("chain_id", "chainId"),
)


def _encode_chain_qualified(message: str, nonce: str, ctx: Mapping[str, Any]) -> Optional[bytes]:
    lines = [DOMAIN_TAG]
    for key, label in _CHAIN_FIELDS:
        v = ctx.get(key)
        if v is None or str(v) == "":
            continue
        lines.append(f"{label}: {v}")
    if len(lines) == 1:
        return None
    lines.append(f"message: {message}")
    lines.append(f"nonce: {nonce}")
    return "\n".join(lines).encode("utf-8")


def _encode_domain_prefixed(message: str, nonce: str, ctx: Mapping[str, Any]) -> Optional[bytes]:
    return f"{DOMAIN_TAG}\nmessage: {message}\nnonce: {nonce}".encode("utf-8")


def _encode_message_nonce(message: str, nonce: str, ctx: Mapping[str, Any]) -> Optional[bytes]:
    return f"{message}{nonce}".encode("utf-8")


def _encode_raw(message: str, nonce: str, ctx: Mapping[str, Any]) -> Optional[bytes]:
    return message.encode("utf-8")


CHAIN_QUALIFIED = MessageFormat("chain_qualified", _encode_chain_qualified)
DOMAIN_PREFIXED = MessageFormat("domain_prefixed", _encode_domain_prefixed)
MESSAGE_NONCE = MessageFormat("message_nonce", _encode_message_nonce)
RAW = MessageFormat("raw", _encode_raw)

# Richest first. New wallet formats are added by extending this tuple.
DEFAULT_FORMATS: Tuple[MessageFormat, ...] = (CHAIN_QUALIFIED, DOMAIN_PREFIXED, MESSAGE_NONCE, RAW)


def match_candidate(
    raw_message: str,
    nonce: str,
    signature: KeyInput,
    public_key: KeyInput,
    formats: Sequence[MessageFormat] = DEFAULT_FORMATS,
    context: Optional[Mapping[str, Any]] = None,
) -> Optional[MessageFormat]:
    """Return the first format whose encoding verifies, or None.

    Every candidate is a full Ed25519 verification. Malformed signature or key
    encodings raise InvalidEncoding before any candidate is tried.
    """
    sig_b = _decode_fixed(signature, length=SIGNATURE_LEN, what="signature")
    pk_b = _decode_fixed(public_key, length=PUBLIC_KEY_LEN, what="public_key")
    ctx: Mapping[str, Any] = context or {}
    msg = str(raw_message)
    n = str(nonce)
    for fmt in formats:
        encoded = fmt.encode(msg, n, ctx)
        if encoded is None:
            continue
        if verify_detached(encoded, sig_b, pk_b):
            return fmt
    return None


def verify_with_candidates(
    raw_message: str,
    nonce: str,
    signature: KeyInput,
    public_key: KeyInput,
    formats: Sequence[MessageFormat] = DEFAULT_FORMATS,
    context: Optional[Mapping[str, Any]] = None,
) -> bool:
    return match_candidate(raw_message, nonce, signature, public_key, formats, context) is not None


# ---------------------------------------------------------------------------
# Signing (service-held keys and tests)
# ---------------------------------------------------------------------------


def private_key_from_seed(seed: KeyInput) -> Ed25519PrivateKey:
    """Load an Ed25519 key from a 32-byte seed (64-byte expanded keys are truncated)."""
    b = as_bytes(seed)
    if len(b) == 64:
        b = b[:32]
    if len(b) != 32:
        raise InvalidEncoding("private_key_bad_length", {"got": len(b)})
    return Ed25519PrivateKey.from_private_bytes(b)


def sign_ed25519(*, message: Union[str, bytes], privkey: KeyInput) -> str:
    """Sign message with an Ed25519 seed; returns 0x-prefixed hex."""
    key = private_key_from_seed(privkey)
    return "0x" + key.sign(_message_bytes(message)).hex()


def canonical_json_bytes(obj: Json) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
