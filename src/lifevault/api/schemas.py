from __future__ import annotations

"""Pydantic request schemas for the public API.

These exist only for HTTP input validation; hex/address semantics are checked
by the crypto layer so that errors carry the same codes everywhere.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ChallengeRequest(BaseModel):
    address: str = Field(..., description="Wallet address, 0x-prefixed hex")
    statement: Optional[str] = Field(default=None, max_length=512, description="Optional human-readable message")

    model_config = {"extra": "allow"}


class WalletLoginRequest(BaseModel):
    address: str = Field(..., description="Claimed wallet address")
    public_key: str = Field(..., description="Ed25519 public key, hex")
    signature: str = Field(..., description="Ed25519 signature, hex")
    nonce: str = Field(..., description="Nonce from POST /v1/auth/challenge")

    model_config = {"extra": "allow"}


class ContentRequest(BaseModel):
    content_hash: Optional[str] = Field(default=None, description="Existing CID or sha256 hex digest")
    file_data: Optional[str] = Field(default=None, description="Base64 file contents to pin")
    file_name: Optional[str] = Field(default=None, description="File name used when pinning")
    store_on_chain: bool = Field(default=True, description="Anchor the content hash on the ledger")

    model_config = {"extra": "allow"}
