# src/lifevault/util/ipfs_cid.py
from __future__ import annotations

"""Content-identifier validation.

A content hash anchored on the ledger is normally an IPFS CID:
  - CIDv0 (base58btc) starts with "Qm" and is 46 chars long.
  - CIDv1 (base32 lowercase) starts with "b" and uses a-z2-7.

Hex digests (sha256 of the payload, 0x-prefixed or not) are also accepted
for records that were hashed locally rather than pinned.

This is not a multiformats parser; it rejects obviously bad input only.
"""

import re
from dataclasses import dataclass


_CIDV0_RE = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")  # base58btc (no 0,O,I,l)
_CIDV1_BASE32_RE = re.compile(r"^b[a-z2-7]{10,}$")
_HEX_DIGEST_RE = re.compile(r"^(0x)?[0-9a-f]{64}$")


@dataclass(frozen=True)
class CidValidation:
    ok: bool
    reason: str
    cid: str
    kind: str = ""


def normalize_cid(cid: str) -> str:
    return (cid or "").strip()


def validate_ipfs_cid(cid: str, *, max_len: int = 128) -> CidValidation:
    c = normalize_cid(cid)
    if not c:
        return CidValidation(False, "missing_cid", "")
    if len(c) > int(max_len):
        return CidValidation(False, "cid_too_long", c)

    if _CIDV0_RE.match(c):
        return CidValidation(True, "ok", c, "cidv0")
    if _CIDV1_BASE32_RE.match(c):
        return CidValidation(True, "ok", c, "cidv1")
    return CidValidation(False, "invalid_cid_format", c)


def validate_content_hash(value: str) -> CidValidation:
    """Accept an IPFS CID or a lowercase sha256 hex digest."""
    v = validate_ipfs_cid(value)
    if v.ok:
        return v
    c = normalize_cid(value).lower()
    if _HEX_DIGEST_RE.match(c):
        return CidValidation(True, "ok", c, "sha256")
    return v
