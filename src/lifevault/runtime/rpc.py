# src/lifevault/runtime/rpc.py
from __future__ import annotations

"""Ledger RPC boundary.

The anchoring pipeline talks to the ledger program only through this surface:

    build(sender, function, args, sequence_number) -> UnsignedTransaction
    sign(account, tx)                              -> Authenticator
    submit(tx, authenticator)                      -> PendingTransaction
    wait_for_confirmation(pending, timeout_s)      -> TransactionInfo
    view(function, args)                           -> list of decoded values
    owned_records(address)                         -> record ids held by address

Concrete transports:
  - transport_memory.InMemoryLedgerRpc (in-process ledger program)
  - rest_client.AptosRestRpc (fullnode REST API)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from lifevault.crypto.account import Account

Json = Dict[str, Any]

# Fixed function surface of the ledger program.
FN_CREATE = "create"
FN_GET = "get"
FN_TRANSFER = "transfer"
FN_VERIFY_OWNERSHIP = "verifyOwnership"
FN_COUNT = "count"

FUNCTION_IDS: Tuple[str, ...] = (FN_CREATE, FN_GET, FN_TRANSFER, FN_VERIFY_OWNERSHIP, FN_COUNT)
ENTRY_FUNCTIONS = frozenset({FN_CREATE, FN_TRANSFER})
VIEW_FUNCTIONS = frozenset({FN_GET, FN_VERIFY_OWNERSHIP, FN_COUNT})


class RpcError(Exception):
    """Transport or ledger rejection. `reason` is safe to surface to callers."""

    def __init__(self, reason: str, *, status: int = 0, details: Optional[Json] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.status = int(status)
        self.details = details or {}


class RpcTimeout(RpcError):
    """Stopped waiting for finality. The transaction is not retracted."""


@dataclass(frozen=True)
class ProgramLocation:
    module_address: str
    module_name: str

    def qualified(self, function: str) -> str:
        return f"{self.module_address}::{self.module_name}::{function}"


@dataclass(frozen=True)
class UnsignedTransaction:
    sender: str
    function: str
    args: Tuple[Any, ...]
    sequence_number: int
    max_gas_amount: int = 2_000
    gas_unit_price: int = 100
    expiration_timestamp_secs: int = 0
    chain_id: int = 0
    # Transport-specific encoded body (e.g. the REST JSON payload).
    raw: Json = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class Authenticator:
    public_key: bytes
    signature: bytes

    def to_json(self) -> Json:
        return {
            "type": "ed25519_signature",
            "public_key": "0x" + self.public_key.hex(),
            "signature": "0x" + self.signature.hex(),
        }


@dataclass(frozen=True)
class PendingTransaction:
    tx_hash: str
    sender: str
    sequence_number: int


@dataclass(frozen=True)
class TransactionInfo:
    tx_hash: str
    success: bool
    vm_status: str
    version: Optional[int] = None
    gas_used: Optional[int] = None
    sender: Optional[str] = None
    timestamp: Optional[int] = None
    events: List[Json] = field(default_factory=list)

    def to_json(self) -> Json:
        return {
            "hash": self.tx_hash,
            "success": bool(self.success),
            "vm_status": self.vm_status,
            "version": self.version,
            "gas_used": self.gas_used,
            "sender": self.sender,
            "timestamp": self.timestamp,
        }


class LedgerRpc(Protocol):
    program: ProgramLocation

    def account_sequence_number(self, address: str) -> int: ...

    def build(
        self,
        sender: str,
        function: str,
        args: Sequence[Any],
        *,
        sequence_number: int,
        max_gas_amount: int = ...,
        gas_unit_price: int = ...,
        expiration_s: int = ...,
    ) -> UnsignedTransaction: ...

    def sign(self, account: Account, tx: UnsignedTransaction) -> Authenticator: ...

    def submit(self, tx: UnsignedTransaction, authenticator: Authenticator) -> PendingTransaction: ...

    def wait_for_confirmation(self, pending: PendingTransaction, timeout_s: float) -> TransactionInfo: ...

    def view(self, function: str, args: Sequence[Any]) -> List[Any]: ...

    def get_transaction(self, tx_hash: str) -> Optional[TransactionInfo]: ...

    def owned_records(self, address: str) -> List[int]: ...
