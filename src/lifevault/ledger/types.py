from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Union

Json = Dict[str, Any]


@dataclass(frozen=True, slots=True)
class ContentRecord:
    """A content hash anchored under an owner address.

    Instances are immutable snapshots; the ledger replaces a record when its
    owner or presence flag changes.
    """

    id: int
    content_hash: str
    owner: str
    created_at: int
    exists: bool = True

    def to_json(self) -> Json:
        return {
            "id": int(self.id),
            "content_hash": self.content_hash,
            "owner": self.owner,
            "created_at": int(self.created_at),
            "exists": bool(self.exists),
        }


@dataclass(frozen=True, slots=True)
class RecordStored:
    id: int
    owner: str
    content_hash: str
    timestamp: int

    kind = "RecordStored"

    def to_json(self) -> Json:
        return {
            "type": self.kind,
            "id": int(self.id),
            "owner": self.owner,
            "content_hash": self.content_hash,
            "timestamp": int(self.timestamp),
        }


@dataclass(frozen=True, slots=True)
class RecordTransferred:
    id: int
    from_owner: str
    to_owner: str

    kind = "RecordTransferred"

    def to_json(self) -> Json:
        return {
            "type": self.kind,
            "id": int(self.id),
            "from": self.from_owner,
            "to": self.to_owner,
        }


LedgerEvent = Union[RecordStored, RecordTransferred]
