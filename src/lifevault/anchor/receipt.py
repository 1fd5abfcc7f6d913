from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

Json = Dict[str, Any]


class AnchorStage(str, Enum):
    START = "start"
    BUILT = "built"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class AnchorReceipt:
    """Outcome of one anchoring (or transfer) round trip.

    mock=True means no ledger was contacted; `confirmed` is then True only in
    the sense that the degraded path completed, and callers must surface
    `degraded` to end users rather than treat it as an on-chain proof.
    """

    tx_hash: str
    confirmed: bool
    mock: bool
    stage: AnchorStage
    content_hash: Optional[str] = None
    version: Optional[int] = None
    gas_used: Optional[int] = None
    vm_status: Optional[str] = None
    sender: Optional[str] = None
    beneficiary: Optional[str] = None
    record_id: Optional[int] = None

    @property
    def degraded(self) -> bool:
        return bool(self.mock)

    def to_json(self) -> Json:
        return {
            "tx_hash": self.tx_hash,
            "confirmed": bool(self.confirmed),
            "mock": bool(self.mock),
            "degraded": self.degraded,
            "stage": self.stage.value,
            "content_hash": self.content_hash,
            "version": self.version,
            "gas_used": self.gas_used,
            "vm_status": self.vm_status,
            "sender": self.sender,
            "beneficiary": self.beneficiary,
            "record_id": self.record_id,
        }
