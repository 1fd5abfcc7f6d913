from __future__ import annotations

import pytest

from lifevault.crypto.account import account_from_private_key, account_from_public_key, generate_account
from lifevault.crypto.address import derive_address, is_address_format
from lifevault.crypto.sig import verify_detached
from lifevault.runtime.errors import InvalidEncoding
from lifevault.testing.sigtools import deterministic_seed


def test_generate_account_signs_and_derives_address() -> None:
    a = generate_account()

    assert a.can_sign is True
    assert is_address_format(a.address)
    assert a.address == derive_address(a.public_key)

    sig = a.sign(b"payload")
    assert verify_detached(b"payload", sig, a.public_key) is True


def test_private_key_hex_reloads_same_account() -> None:
    seed = deterministic_seed("reload")
    a = account_from_private_key(seed)
    b = account_from_private_key(a.private_key_hex())
    c = account_from_private_key(seed.hex())

    assert a.address == b.address == c.address
    assert a.public_key_hex == b.public_key_hex
    assert a.private_key_hex() == "0x" + seed.hex()


def test_private_key_bad_length() -> None:
    with pytest.raises(InvalidEncoding):
        account_from_private_key("0x" + "11" * 16)


def test_public_only_account_cannot_sign() -> None:
    a = account_from_private_key(deterministic_seed("pub"))
    p = account_from_public_key(a.public_key_hex)

    assert p.address == a.address
    assert p.can_sign is False
    with pytest.raises(PermissionError):
        p.sign(b"x")
    with pytest.raises(PermissionError):
        p.private_key_hex()
