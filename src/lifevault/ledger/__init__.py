# src/lifevault/ledger/__init__.py
"""
LifeVault: provenance ledger package

  - types: ContentRecord and the RecordStored / RecordTransferred events
  - events: ordered, append-only event stream with subscriber delivery
  - state: ProvenanceLedger, the lock-guarded {counter, records, owner_index}

The ledger program exposed to transports is the fixed function surface
create / get / transfer / verifyOwnership / count.
"""

from __future__ import annotations

__all__ = [
    "types",
    "events",
    "state",
]
