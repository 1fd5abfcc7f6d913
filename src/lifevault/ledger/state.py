# src/lifevault/ledger/state.py
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from lifevault.crypto.address import NULL_ADDRESS, normalize_address
from lifevault.ledger.events import EventLog
from lifevault.ledger.types import ContentRecord, RecordStored, RecordTransferred
from lifevault.runtime.errors import InvalidEncoding, InvalidInput, NotAuthorized, NotFound
from lifevault.runtime.single_writer import SingleWriterLock
from lifevault.util.structured_log import log_event

Json = Dict[str, Any]

_log = logging.getLogger("lifevault.ledger")


def _now_s() -> int:
    return int(time.time())


def _require_address(value: Any, *, field: str) -> str:
    try:
        return normalize_address(value)
    except InvalidEncoding as e:
        raise InvalidInput(f"bad_{field}", {"reason": e.reason}) from e


def _require_id(value: Any) -> int:
    if isinstance(value, bool):
        raise InvalidInput("bad_record_id", {"id": value})
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise InvalidInput("bad_record_id", {"id": value}) from e


class ProvenanceLedger:
    """Authoritative store of content records and ownership.

    State is the triple {counter, records, owner_index}, guarded by a single
    reader/writer lock:
      - create/transfer take the write side
      - get/list_by_owner/verify_ownership/count/snapshot take the read side

    Invariants (checked by check_invariants()):
      - id in owner_index[addr]  <=>  records[id].owner == addr and records[id].exists
      - ids are 1..counter with no gaps and are never reused
    """

    def __init__(self, *, clock: Optional[Callable[[], int]] = None, events: Optional[EventLog] = None) -> None:
        self._lock = SingleWriterLock()
        self._clock = clock or _now_s
        self._counter = 0
        self._records: Dict[int, ContentRecord] = {}
        self._owner_index: Dict[str, List[int]] = {}
        self.events = events or EventLog()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, caller: str, content_hash: str) -> int:
        h = str(content_hash or "").strip()
        if not h:
            raise InvalidInput("empty_content_hash")
        owner = _require_address(caller, field="caller")

        with self._lock.write():
            self._counter += 1
            rid = self._counter
            ts = int(self._clock())
            self._records[rid] = ContentRecord(id=rid, content_hash=h, owner=owner, created_at=ts, exists=True)
            self._owner_index.setdefault(owner, []).append(rid)
            self.events.append(RecordStored(id=rid, owner=owner, content_hash=h, timestamp=ts))

        log_event(_log, "record_stored", id=rid, owner=owner, content_hash=h)
        self.events.flush()
        return rid

    def transfer(self, caller: str, record_id: int, new_owner: str) -> None:
        rid = _require_id(record_id)
        sender = _require_address(caller, field="caller")
        target = _require_address(new_owner, field="new_owner")

        with self._lock.write():
            rec = self._records.get(rid)
            if rec is None or not rec.exists:
                raise NotFound("record_not_found", {"id": rid})
            if rec.owner != sender:
                raise NotAuthorized("not_owner", {"id": rid})
            if target == NULL_ADDRESS:
                raise InvalidInput("null_new_owner", {"id": rid})
            if target == sender:
                raise InvalidInput("self_transfer", {"id": rid})

            # Validation is complete; the three steps below cannot fail.
            bucket = self._owner_index.get(sender, [])
            pos = bucket.index(rid)
            bucket[pos] = bucket[-1]
            bucket.pop()
            if not bucket:
                self._owner_index.pop(sender, None)

            self._records[rid] = ContentRecord(
                id=rec.id,
                content_hash=rec.content_hash,
                owner=target,
                created_at=rec.created_at,
                exists=rec.exists,
            )
            self._owner_index.setdefault(target, []).append(rid)
            self.events.append(RecordTransferred(id=rid, from_owner=sender, to_owner=target))

        log_event(_log, "record_transferred", id=rid, from_owner=sender, to_owner=target)
        self.events.flush()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, record_id: int) -> ContentRecord:
        rid = _require_id(record_id)
        with self._lock.read():
            rec = self._records.get(rid)
        if rec is None or not rec.exists:
            raise NotFound("record_not_found", {"id": rid})
        return rec

    def list_by_owner(self, address: str) -> List[int]:
        try:
            owner = normalize_address(address)
        except InvalidEncoding:
            return []
        with self._lock.read():
            return list(self._owner_index.get(owner, ()))

    def verify_ownership(self, record_id: int, address: str) -> bool:
        try:
            rid = int(record_id)
            owner = normalize_address(address)
        except (TypeError, ValueError, InvalidEncoding):
            return False
        with self._lock.read():
            rec = self._records.get(rid)
            return bool(rec is not None and rec.exists and rec.owner == owner)

    def count(self) -> int:
        with self._lock.read():
            return int(self._counter)

    def snapshot(self) -> Json:
        """Consistent copy of the whole state, for audits and tests."""
        with self._lock.read():
            return {
                "counter": int(self._counter),
                "records": {rid: rec.to_json() for rid, rec in self._records.items()},
                "owner_index": {k: list(v) for k, v in self._owner_index.items()},
            }

    def check_invariants(self) -> List[str]:
        """Return a list of violated invariants (empty when healthy)."""
        problems: List[str] = []
        with self._lock.read():
            if sorted(self._records) != list(range(1, self._counter + 1)):
                problems.append("ids_not_dense")
            seen: Dict[int, str] = {}
            for owner, ids in self._owner_index.items():
                for rid in ids:
                    if rid in seen:
                        problems.append(f"id_in_two_buckets:{rid}")
                    seen[rid] = owner
                    rec = self._records.get(rid)
                    if rec is None or not rec.exists or rec.owner != owner:
                        problems.append(f"bucket_mismatch:{rid}")
            for rid, rec in self._records.items():
                if rec.exists and seen.get(rid) != rec.owner:
                    problems.append(f"missing_from_bucket:{rid}")
        return problems
