from __future__ import annotations

import hashlib
import threading
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from lifevault.crypto.account import Account
from lifevault.crypto.address import addresses_equal, derive_address, normalize_address
from lifevault.crypto.sig import canonical_json_bytes, verify_detached
from lifevault.ledger.state import ProvenanceLedger
from lifevault.runtime.errors import InvalidEncoding, LedgerError
from lifevault.runtime.rpc import (
    ENTRY_FUNCTIONS,
    FN_COUNT,
    FN_CREATE,
    FN_GET,
    FN_TRANSFER,
    FN_VERIFY_OWNERSHIP,
    Authenticator,
    PendingTransaction,
    ProgramLocation,
    RpcError,
    RpcTimeout,
    TransactionInfo,
    UnsignedTransaction,
)

Json = Dict[str, Any]

DEFAULT_PROGRAM = ProgramLocation(module_address="0x1", module_name="memory_vault")


class InMemoryLedgerRpc:
    """
    In-process ledger program bound to a ProvenanceLedger.

    - Does not open sockets
    - Enforces signatures, sender auth keys and strict sequence numbers
    - Commits queued transactions when a caller waits for confirmation
      (unless hold_confirmations is set, which simulates a slow ledger)

    The ledger's own lock is only taken while a transaction executes, never
    while a caller waits.
    """

    def __init__(
        self,
        ledger: ProvenanceLedger,
        *,
        program: ProgramLocation = DEFAULT_PROGRAM,
        chain_id: int = 4,
        poll_interval_s: float = 0.01,
    ) -> None:
        self.ledger = ledger
        self.program = program
        self.chain_id = int(chain_id)
        self.poll_interval_s = float(poll_interval_s)
        self.hold_confirmations = False

        self._cond = threading.Condition()
        self._seq: Dict[str, int] = {}
        self._pending: List[Tuple[PendingTransaction, UnsignedTransaction]] = []
        self._txs: Dict[str, TransactionInfo] = {}
        self._version = 0
        self._fail_next_submit: Optional[str] = None

        # Counters for tests / harness.
        self.submit_calls = 0
        self.view_calls = 0

    # ---- helpers for tests / harness ----

    def fail_next_submit(self, reason: str) -> None:
        with self._cond:
            self._fail_next_submit = str(reason)

    def release(self) -> None:
        """Commit everything queued and wake waiters."""
        with self._cond:
            self._commit_pending_locked()
            self._cond.notify_all()

    def pending_count(self) -> int:
        with self._cond:
            return len(self._pending)

    # ---- LedgerRpc surface ----

    def account_sequence_number(self, address: str) -> int:
        with self._cond:
            return int(self._seq.get(normalize_address(address), 0))

    def build(
        self,
        sender: str,
        function: str,
        args: Sequence[Any],
        *,
        sequence_number: int,
        max_gas_amount: int = 2_000,
        gas_unit_price: int = 100,
        expiration_s: int = 600,
    ) -> UnsignedTransaction:
        if function not in ENTRY_FUNCTIONS:
            raise RpcError("unknown_entry_function", details={"function": function})
        return UnsignedTransaction(
            sender=normalize_address(sender),
            function=function,
            args=tuple(args),
            sequence_number=int(sequence_number),
            max_gas_amount=int(max_gas_amount),
            gas_unit_price=int(gas_unit_price),
            expiration_timestamp_secs=int(time.time()) + int(expiration_s),
            chain_id=self.chain_id,
        )

    def _signing_message(self, tx: UnsignedTransaction) -> bytes:
        return canonical_json_bytes(
            {
                "sender": tx.sender,
                "function": self.program.qualified(tx.function),
                "args": [str(a) for a in tx.args],
                "sequence_number": tx.sequence_number,
                "max_gas_amount": tx.max_gas_amount,
                "gas_unit_price": tx.gas_unit_price,
                "expiration_timestamp_secs": tx.expiration_timestamp_secs,
                "chain_id": tx.chain_id,
            }
        )

    def sign(self, account: Account, tx: UnsignedTransaction) -> Authenticator:
        return Authenticator(public_key=account.public_key, signature=account.sign(self._signing_message(tx)))

    def submit(self, tx: UnsignedTransaction, authenticator: Authenticator) -> PendingTransaction:
        msg = self._signing_message(tx)
        try:
            sig_ok = verify_detached(msg, authenticator.signature, authenticator.public_key)
        except InvalidEncoding as e:
            raise RpcError("INVALID_SIGNATURE", status=400, details={"reason": e.reason}) from e
        if not sig_ok:
            raise RpcError("INVALID_SIGNATURE", status=400)
        if not addresses_equal(derive_address(authenticator.public_key), tx.sender):
            raise RpcError("INVALID_AUTH_KEY", status=400)
        if tx.chain_id != self.chain_id:
            raise RpcError("BAD_CHAIN_ID", status=400)
        if tx.expiration_timestamp_secs and tx.expiration_timestamp_secs < int(time.time()):
            raise RpcError("TRANSACTION_EXPIRED", status=400)

        with self._cond:
            self.submit_calls += 1
            if self._fail_next_submit is not None:
                reason, self._fail_next_submit = self._fail_next_submit, None
                raise RpcError(reason, status=503)

            committed = int(self._seq.get(tx.sender, 0))
            queued = sum(1 for p, _ in self._pending if p.sender == tx.sender)
            expected = committed + queued
            if tx.sequence_number < expected:
                raise RpcError(
                    "SEQUENCE_NUMBER_TOO_OLD",
                    status=400,
                    details={"expected": expected, "got": tx.sequence_number},
                )
            if tx.sequence_number > expected:
                raise RpcError(
                    "SEQUENCE_NUMBER_TOO_NEW",
                    status=400,
                    details={"expected": expected, "got": tx.sequence_number},
                )

            tx_hash = "0x" + hashlib.sha3_256(msg + authenticator.signature).hexdigest()
            pending = PendingTransaction(tx_hash=tx_hash, sender=tx.sender, sequence_number=tx.sequence_number)
            self._pending.append((pending, tx))
            return pending

    def wait_for_confirmation(self, pending: PendingTransaction, timeout_s: float) -> TransactionInfo:
        deadline = time.monotonic() + max(0.0, float(timeout_s))
        with self._cond:
            if not self.hold_confirmations:
                self._commit_pending_locked()
            while True:
                info = self._txs.get(pending.tx_hash)
                if info is not None:
                    return info
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise RpcTimeout("confirmation_timeout", details={"hash": pending.tx_hash})
                self._cond.wait(timeout=min(remaining, self.poll_interval_s))

    def view(self, function: str, args: Sequence[Any]) -> List[Any]:
        self.view_calls += 1
        try:
            if function == FN_GET:
                rec = self.ledger.get(int(args[0]))
                return [rec.content_hash, rec.owner, rec.created_at]
            if function == FN_VERIFY_OWNERSHIP:
                return [self.ledger.verify_ownership(int(args[0]), str(args[1]))]
            if function == FN_COUNT:
                return [self.ledger.count()]
        except LedgerError as e:
            raise RpcError(f"view_abort:{e.code}:{e.reason}", status=400) from e
        except (IndexError, TypeError, ValueError) as e:
            raise RpcError("view_bad_arguments", status=400, details={"function": function}) from e
        raise RpcError("unknown_view_function", status=400, details={"function": function})

    def owned_records(self, address: str) -> List[int]:
        return self.ledger.list_by_owner(address)

    def get_transaction(self, tx_hash: str) -> Optional[TransactionInfo]:
        with self._cond:
            return self._txs.get(str(tx_hash))

    # ---- execution ----

    def _commit_pending_locked(self) -> None:
        while self._pending:
            pending, tx = self._pending.pop(0)
            self._txs[pending.tx_hash] = self._execute(pending, tx)
            # Aborted transactions still consume their sequence number.
            self._seq[tx.sender] = tx.sequence_number + 1
        self._cond.notify_all()

    def _execute(self, pending: PendingTransaction, tx: UnsignedTransaction) -> TransactionInfo:
        self._version += 1
        events: List[Json] = []
        try:
            if tx.function == FN_CREATE:
                rid = self.ledger.create(tx.sender, str(tx.args[0]))
                rec = self.ledger.get(rid)
                events.append(
                    {
                        "type": self.program.qualified("RecordStored"),
                        "data": {
                            "id": str(rid),
                            "owner": rec.owner,
                            "content_hash": rec.content_hash,
                            "timestamp": str(rec.created_at),
                        },
                    }
                )
            elif tx.function == FN_TRANSFER:
                rid = int(tx.args[0])
                self.ledger.transfer(tx.sender, rid, str(tx.args[1]))
                events.append(
                    {
                        "type": self.program.qualified("RecordTransferred"),
                        "data": {"id": str(rid), "from": tx.sender, "to": normalize_address(str(tx.args[1]))},
                    }
                )
            success, vm_status = True, "Executed successfully"
        except LedgerError as e:
            success, vm_status = False, f"Move abort: {e.code}:{e.reason}"
        except (IndexError, TypeError, ValueError) as e:
            success, vm_status = False, f"Move abort: bad_arguments:{e}"

        return TransactionInfo(
            tx_hash=pending.tx_hash,
            success=success,
            vm_status=vm_status,
            version=self._version,
            gas_used=6 if success else 3,
            sender=tx.sender,
            timestamp=int(time.time() * 1_000_000),
            events=events,
        )
