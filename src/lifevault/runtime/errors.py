from __future__ import annotations

from dataclasses import dataclass
from typing import Any

# Flagged condition, not an exception: a mock anchor was produced because no
# ledger program is configured. Callers must surface it to end users.
DEGRADED = "degraded"


@dataclass(eq=False)
class LedgerError(Exception):
    """Canonical error type for provenance, anchoring and wallet-auth failures."""

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class InvalidInput(LedgerError):
    """Malformed arguments. Local, never retried."""

    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("invalid_input", reason, details)


class InvalidEncoding(LedgerError):
    """Bad hex or wrong byte length."""

    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("invalid_encoding", reason, details)


class NotFound(LedgerError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("not_found", reason, details)


class NotAuthorized(LedgerError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("not_authorized", reason, details)


class InvalidSignature(LedgerError):
    """All verification tiers failed. A new challenge is required to retry."""

    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("invalid_signature", reason, details)


class AnchorFailed(LedgerError):
    """Submission or confirmation error from the ledger transport.

    `stage` is the pipeline stage that failed; `tx_hash` is set once the
    transaction left the process, in which case it may still land on chain.
    """

    def __init__(
        self,
        reason: str,
        *,
        stage: str,
        tx_hash: str | None = None,
        details: Any | None = None,
    ) -> None:
        super().__init__("anchor_failed", reason, details)
        self.stage = stage
        self.tx_hash = tx_hash
