from __future__ import annotations

import hashlib
from typing import Any, Dict, Optional, Tuple

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from lifevault.auth.challenge import AuthChallenge
from lifevault.crypto.account import Account, account_from_private_key
from lifevault.crypto.sig import DEFAULT_FORMATS, MessageFormat

Json = Dict[str, Any]


def _sha256(b: bytes) -> bytes:
    return hashlib.sha256(b).digest()


def deterministic_seed(label: str) -> bytes:
    return _sha256(("lifevault-test-ed25519:" + (label or "")).encode("utf-8"))


def deterministic_ed25519_keypair(*, label: str) -> Tuple[str, Ed25519PrivateKey]:
    """Deterministically derive an Ed25519 keypair from a stable label.

    TEST ONLY.

    Returns:
      (pubkey_hex, private_key)
    """
    sk = Ed25519PrivateKey.from_private_bytes(deterministic_seed(label))
    pk_hex = sk.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()
    return pk_hex, sk


def deterministic_account(*, label: str) -> Account:
    return account_from_private_key(deterministic_seed(label))


def wallet_sign(
    account: Account,
    *,
    message: str,
    nonce: str,
    fmt: MessageFormat,
    context: Optional[Json] = None,
) -> str:
    """Sign (message, nonce) the way a wallet using `fmt` would. Returns hex."""
    encoded = fmt.encode(message, nonce, context or {"address": account.address})
    if encoded is None:
        raise ValueError(f"format {fmt.name} does not apply to this context")
    return "0x" + account.sign(encoded).hex()


def sign_challenge(account: Account, challenge: AuthChallenge, *, fmt: Optional[MessageFormat] = None) -> str:
    """Sign a challenge with the richest format that applies (or `fmt`)."""
    ctx = challenge.context()
    for candidate in ([fmt] if fmt is not None else list(DEFAULT_FORMATS)):
        encoded = candidate.encode(challenge.message, challenge.nonce, ctx)
        if encoded is not None:
            return "0x" + account.sign(encoded).hex()
    raise ValueError("no message format applies to this challenge")


def wallet_login_body(account: Account, challenge: AuthChallenge, *, fmt: Optional[MessageFormat] = None) -> Json:
    return {
        "address": account.address,
        "public_key": account.public_key_hex,
        "signature": sign_challenge(account, challenge, fmt=fmt),
        "nonce": challenge.nonce,
    }
