from __future__ import annotations

import pytest

from lifevault.crypto.sig import (
    CHAIN_QUALIFIED,
    DEFAULT_FORMATS,
    DOMAIN_PREFIXED,
    MESSAGE_NONCE,
    RAW,
    MessageFormat,
    match_candidate,
    sign_ed25519,
    validate_structure,
    verify_detached,
    verify_with_candidates,
)
from lifevault.runtime.errors import InvalidEncoding
from lifevault.testing.sigtools import deterministic_account, deterministic_seed, wallet_sign


def _flip_bit(sig_hex: str, bit: int) -> str:
    b = bytearray(bytes.fromhex(sig_hex[2:]))
    b[bit // 8] ^= 1 << (bit % 8)
    return "0x" + b.hex()


def test_verify_detached_roundtrip_and_mismatch() -> None:
    k = deterministic_account(label="k")
    sig = "0x" + k.sign(b"hello").hex()

    assert verify_detached("hello", sig, k.public_key_hex) is True
    assert verify_detached(b"hello", bytes.fromhex(sig[2:]), k.public_key) is True
    assert verify_detached("hello!", sig, k.public_key_hex) is False

    other = deterministic_account(label="other")
    assert verify_detached("hello", sig, other.public_key_hex) is False


def test_verify_detached_rejects_bad_lengths() -> None:
    k = deterministic_account(label="k")
    sig = "0x" + k.sign(b"hello").hex()

    with pytest.raises(InvalidEncoding) as e:
        verify_detached("hello", sig[:-2], k.public_key_hex)
    assert e.value.reason == "signature_bad_length"

    with pytest.raises(InvalidEncoding) as e2:
        verify_detached("hello", sig, k.public_key_hex + "00")
    assert e2.value.reason == "public_key_bad_length"

    with pytest.raises(InvalidEncoding):
        verify_detached("hello", "0xzz", k.public_key_hex)


def test_sign_ed25519_matches_account_key() -> None:
    k = deterministic_account(label="k")
    sig = sign_ed25519(message="payload", privkey=deterministic_seed("k"))
    assert verify_detached("payload", sig, k.public_key) is True


@pytest.mark.parametrize("fmt", [CHAIN_QUALIFIED, DOMAIN_PREFIXED, MESSAGE_NONCE, RAW])
def test_each_documented_format_is_accepted(fmt: MessageFormat) -> None:
    k = deterministic_account(label="wallet")
    ctx = {"address": k.address, "application": "https://lifevault.example", "chain_id": 2}
    sig = wallet_sign(k, message="login", nonce="n1", fmt=fmt, context=ctx)

    assert verify_with_candidates("login", "n1", sig, k.public_key_hex, DEFAULT_FORMATS, ctx) is True
    matched = match_candidate("login", "n1", sig, k.public_key_hex, DEFAULT_FORMATS, ctx)
    assert matched is not None and matched.name == fmt.name


def test_undocumented_format_is_rejected() -> None:
    k = deterministic_account(label="wallet")
    # nonce-first concatenation is not a supported wallet encoding
    sig = "0x" + k.sign(b"n1login").hex()
    assert verify_with_candidates("login", "n1", sig, k.public_key_hex) is False

    sig2 = "0x" + k.sign(b"login\nn1").hex()
    assert verify_with_candidates("login", "n1", sig2, k.public_key_hex) is False


def test_single_bit_flip_is_rejected() -> None:
    k = deterministic_account(label="wallet")
    sig = wallet_sign(k, message="login", nonce="n1", fmt=DOMAIN_PREFIXED)
    assert verify_with_candidates("login", "n1", sig, k.public_key_hex) is True

    for bit in (0, 7, 100, 255, 511):
        assert verify_with_candidates("login", "n1", _flip_bit(sig, bit), k.public_key_hex) is False


def test_domain_prefixed_encoding_is_exact() -> None:
    assert DOMAIN_PREFIXED.encode("login", "n1", {}) == b"APTOS\nmessage: login\nnonce: n1"
    assert MESSAGE_NONCE.encode("login", "n1", {}) == b"loginn1"
    assert RAW.encode("login", "n1", {}) == b"login"


def test_chain_qualified_emits_only_present_fields() -> None:
    assert CHAIN_QUALIFIED.encode("m", "n", {}) is None
    assert CHAIN_QUALIFIED.encode("m", "n", {"chain_id": 1}) == b"APTOS\nchainId: 1\nmessage: m\nnonce: n"
    full = CHAIN_QUALIFIED.encode("m", "n", {"address": "0xab", "application": "app", "chain_id": 1})
    assert full == b"APTOS\naddress: 0xab\napplication: app\nchainId: 1\nmessage: m\nnonce: n"


def test_format_list_is_extensible() -> None:
    k = deterministic_account(label="wallet")
    nonce_first = MessageFormat("nonce_message", lambda m, n, ctx: f"{n}{m}".encode("utf-8"))
    sig = "0x" + k.sign(b"n1login").hex()

    formats = DEFAULT_FORMATS + (nonce_first,)
    matched = match_candidate("login", "n1", sig, k.public_key_hex, formats)
    assert matched is nonce_first


def test_validate_structure_is_length_only() -> None:
    k = deterministic_account(label="wallet")
    junk_sig = "0x" + "11" * 64
    assert validate_structure(junk_sig, k.public_key_hex) is True
    assert validate_structure("0x" + "11" * 63, k.public_key_hex) is False
    assert validate_structure(junk_sig, "0x" + "22" * 31) is False
    assert validate_structure("not hex", k.public_key_hex) is False
