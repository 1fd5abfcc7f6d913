# src/lifevault/anchor/pipeline.py
from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from lifevault.anchor.receipt import AnchorReceipt, AnchorStage
from lifevault.crypto.account import Account
from lifevault.crypto.address import normalize_address
from lifevault.ledger.types import ContentRecord
from lifevault.runtime.errors import DEGRADED, AnchorFailed, InvalidEncoding, InvalidInput, NotFound
from lifevault.runtime.rpc import (
    FN_COUNT,
    FN_CREATE,
    FN_GET,
    FN_TRANSFER,
    FN_VERIFY_OWNERSHIP,
    LedgerRpc,
    PendingTransaction,
    RpcError,
    RpcTimeout,
    TransactionInfo,
)
from lifevault.util.structured_log import log_event

Json = Dict[str, Any]

_log = logging.getLogger("lifevault.anchor")


@dataclass
class _SignerSlot:
    lock: threading.Lock = field(default_factory=threading.Lock)
    next_seq: Optional[int] = None


class SequenceTracker:
    """Per-signer submission slots.

    The ledger only advances an account's sequence number on commit, so while
    a transaction is in flight the next number must come from here. A slot is
    forgotten (resynced from the ledger) after any failure that may have left
    the two out of step.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._slots: Dict[str, _SignerSlot] = {}

    def slot(self, address: str) -> _SignerSlot:
        with self._lock:
            s = self._slots.get(address)
            if s is None:
                s = _SignerSlot()
                self._slots[address] = s
            return s


@dataclass(frozen=True)
class TxOptions:
    max_gas_amount: int = 2_000
    gas_unit_price: int = 100
    expiration_s: int = 600


def _record_id_from_events(events: Sequence[Json]) -> Optional[int]:
    for ev in events:
        t = str(ev.get("type") or "")
        if t.endswith("::RecordStored") or t.endswith("::MemoryStored"):
            data = ev.get("data")
            if isinstance(data, dict):
                for k in ("id", "memory_id", "record_id"):
                    try:
                        return int(data[k])
                    except (KeyError, TypeError, ValueError):
                        continue
    return None


class AnchorPipeline:
    """Turns a content hash into a confirmed ledger record.

    Per request: START -> BUILT -> SIGNED -> SUBMITTED -> CONFIRMED, or
    AnchorFailed carrying the last stage reached. With no ledger program
    configured, store() returns a mock receipt without touching any transport.

    Build/sign/submit are serialized per signer; waiting for finality is not.
    There is no implicit retry.
    """

    def __init__(
        self,
        rpc: Optional[LedgerRpc] = None,
        signer: Optional[Account] = None,
        *,
        confirm_timeout_s: float = 30.0,
        tx_options: Optional[TxOptions] = None,
        sequences: Optional[SequenceTracker] = None,
    ) -> None:
        self.rpc = rpc
        self.signer = signer
        self.confirm_timeout_s = float(confirm_timeout_s)
        self.tx_options = tx_options or TxOptions()
        self._sequences = sequences or SequenceTracker()

    @property
    def program_configured(self) -> bool:
        if self.rpc is None:
            return False
        program = getattr(self.rpc, "program", None)
        return bool(program is not None and str(getattr(program, "module_address", "") or "").strip())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def store(self, content_hash: str, owner: Optional[str] = None) -> AnchorReceipt:
        """Anchor content_hash under the master account.

        `owner` is the beneficiary the off-chain metadata attributes the
        record to; on chain the record is owned by the sender until an
        explicit transfer().
        """
        h = str(content_hash or "").strip()
        if not h:
            raise InvalidInput("empty_content_hash")
        beneficiary: Optional[str] = None
        if owner is not None and str(owner).strip():
            try:
                beneficiary = normalize_address(owner)
            except InvalidEncoding as e:
                raise InvalidInput("bad_owner", {"reason": e.reason}) from e

        if not self.program_configured:
            tx_hash = f"mock-{uuid.uuid4().hex}"
            log_event(
                _log,
                "anchor_degraded",
                level=logging.WARNING,
                condition=DEGRADED,
                reason="ledger_program_not_configured",
                content_hash=h,
                tx_hash=tx_hash,
            )
            return AnchorReceipt(
                tx_hash=tx_hash,
                confirmed=True,
                mock=True,
                stage=AnchorStage.DEGRADED,
                content_hash=h,
                beneficiary=beneficiary,
            )

        pending, info = self._round_trip(FN_CREATE, [h], content_hash=h)
        receipt = AnchorReceipt(
            tx_hash=pending.tx_hash,
            confirmed=True,
            mock=False,
            stage=AnchorStage.CONFIRMED,
            content_hash=h,
            version=info.version,
            gas_used=info.gas_used,
            vm_status=info.vm_status,
            sender=pending.sender,
            beneficiary=beneficiary,
            record_id=_record_id_from_events(info.events),
        )
        log_event(
            _log,
            "anchor_confirmed",
            tx_hash=receipt.tx_hash,
            version=receipt.version,
            record_id=receipt.record_id,
            content_hash=h,
        )
        return receipt

    def transfer(self, record_id: int, new_owner: str) -> AnchorReceipt:
        """Transfer a master-owned record to new_owner on chain."""
        try:
            rid = int(record_id)
            target = normalize_address(new_owner)
        except (TypeError, ValueError, InvalidEncoding) as e:
            raise InvalidInput("bad_transfer_arguments") from e
        if not self.program_configured:
            raise AnchorFailed("ledger_program_not_configured", stage=AnchorStage.START.value)

        pending, info = self._round_trip(FN_TRANSFER, [rid, target], record_id=rid)
        log_event(_log, "anchor_confirmed", tx_hash=pending.tx_hash, version=info.version, record_id=rid)
        return AnchorReceipt(
            tx_hash=pending.tx_hash,
            confirmed=True,
            mock=False,
            stage=AnchorStage.CONFIRMED,
            version=info.version,
            gas_used=info.gas_used,
            vm_status=info.vm_status,
            sender=pending.sender,
            beneficiary=target,
            record_id=rid,
        )

    def _fail(self, reason: str, *, stage: AnchorStage, tx_hash: Optional[str] = None, **fields: Any) -> AnchorFailed:
        log_event(
            _log,
            "anchor_failed",
            level=logging.WARNING,
            reason=reason,
            stage=stage.value,
            tx_hash=tx_hash,
            **fields,
        )
        return AnchorFailed(reason, stage=stage.value, tx_hash=tx_hash, details=fields or None)

    def _round_trip(self, function: str, args: List[Any], **log_fields: Any) -> Tuple[PendingTransaction, TransactionInfo]:
        assert self.rpc is not None
        rpc = self.rpc
        signer = self.signer
        if signer is None or not signer.can_sign:
            raise self._fail("master_account_unavailable", stage=AnchorStage.START, **log_fields)

        slot = self._sequences.slot(signer.address)
        stage = AnchorStage.START
        with slot.lock:
            try:
                chain_seq = rpc.account_sequence_number(signer.address)
                seq = chain_seq if slot.next_seq is None else max(chain_seq, slot.next_seq)
                opts = self.tx_options
                tx = rpc.build(
                    signer.address,
                    function,
                    args,
                    sequence_number=seq,
                    max_gas_amount=opts.max_gas_amount,
                    gas_unit_price=opts.gas_unit_price,
                    expiration_s=opts.expiration_s,
                )
                stage = AnchorStage.BUILT
                auth = rpc.sign(signer, tx)
                stage = AnchorStage.SIGNED
                pending = rpc.submit(tx, auth)
                stage = AnchorStage.SUBMITTED
            except RpcError as e:
                slot.next_seq = None
                raise self._fail(e.reason, stage=stage, status=e.status, **log_fields) from e
            slot.next_seq = seq + 1

        log_event(_log, "anchor_submitted", tx_hash=pending.tx_hash, sequence_number=seq, function=function)

        try:
            info = rpc.wait_for_confirmation(pending, self.confirm_timeout_s)
        except RpcTimeout as e:
            # Still queued on the ledger: keep the local sequence number.
            raise self._fail(e.reason, stage=stage, tx_hash=pending.tx_hash, **log_fields) from e
        except RpcError as e:
            with slot.lock:
                slot.next_seq = None
            raise self._fail(e.reason, stage=stage, tx_hash=pending.tx_hash, **log_fields) from e

        if not info.success:
            raise self._fail(
                f"vm_status:{info.vm_status}",
                stage=stage,
                tx_hash=pending.tx_hash,
                **log_fields,
            )
        return pending, info

    # ------------------------------------------------------------------
    # Reads (view functions)
    # ------------------------------------------------------------------

    def get_record(self, record_id: int) -> ContentRecord:
        rid = int(record_id)
        if not self.program_configured:
            raise NotFound("ledger_program_not_configured", {"id": rid})
        assert self.rpc is not None
        try:
            out = self.rpc.view(FN_GET, [rid])
        except RpcError as e:
            if "not_found" in e.reason.lower():
                raise NotFound("record_not_found", {"id": rid}) from e
            raise
        if len(out) < 3:
            raise RpcError("bad_view_response", details={"function": FN_GET})
        return ContentRecord(
            id=rid,
            content_hash=str(out[0]),
            owner=normalize_address(str(out[1])),
            created_at=int(out[2]),
            exists=True,
        )

    def verify_ownership(self, record_id: int, address: str) -> bool:
        if not self.program_configured:
            return False
        assert self.rpc is not None
        try:
            out = self.rpc.view(FN_VERIFY_OWNERSHIP, [int(record_id), normalize_address(address)])
        except (RpcError, InvalidEncoding, TypeError, ValueError):
            return False
        return bool(out and out[0] is True)

    def list_by_owner(self, address: str) -> List[int]:
        """Record ids currently owned by address; empty for malformed addresses."""
        try:
            owner = normalize_address(address)
        except InvalidEncoding:
            return []
        if not self.program_configured:
            return []
        assert self.rpc is not None
        return self.rpc.owned_records(owner)

    def count(self) -> int:
        if not self.program_configured:
            return 0
        assert self.rpc is not None
        out = self.rpc.view(FN_COUNT, [])
        return int(out[0]) if out else 0

    def get_transaction(self, tx_hash: str) -> Optional[TransactionInfo]:
        if self.rpc is None or str(tx_hash).startswith("mock-"):
            return None
        return self.rpc.get_transaction(tx_hash)
