from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, NoEncryption, PrivateFormat, PublicFormat

from lifevault.crypto.address import BytesLike, as_bytes, derive_address
from lifevault.crypto.sig import private_key_from_seed


@dataclass(frozen=True)
class Account:
    """Ledger account. `private_key` is only present for service-managed signers."""

    address: str
    public_key: bytes
    private_key: Optional[Ed25519PrivateKey] = field(default=None, repr=False, compare=False)

    @property
    def public_key_hex(self) -> str:
        return "0x" + self.public_key.hex()

    @property
    def can_sign(self) -> bool:
        return self.private_key is not None

    def sign(self, message: bytes) -> bytes:
        if self.private_key is None:
            raise PermissionError("account_has_no_private_key")
        return self.private_key.sign(bytes(message))

    def private_key_hex(self) -> str:
        """Export the 32-byte seed. Callers are responsible for never logging it."""
        if self.private_key is None:
            raise PermissionError("account_has_no_private_key")
        raw = self.private_key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
        return "0x" + raw.hex()


def _from_private(sk: Ed25519PrivateKey) -> Account:
    pk = sk.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return Account(address=derive_address(pk), public_key=pk, private_key=sk)


def generate_account() -> Account:
    return _from_private(Ed25519PrivateKey.generate())


def account_from_private_key(seed: Union[str, BytesLike]) -> Account:
    return _from_private(private_key_from_seed(seed))


def account_from_public_key(public_key: Union[str, BytesLike]) -> Account:
    pk = as_bytes(public_key)
    return Account(address=derive_address(pk), public_key=pk)
