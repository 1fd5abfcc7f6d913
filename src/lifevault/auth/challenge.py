from __future__ import annotations

import secrets
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from lifevault.crypto.address import normalize_address
from lifevault.crypto.sig import DEFAULT_FORMATS, MessageFormat
from lifevault.runtime.errors import InvalidEncoding, InvalidInput

Json = Dict[str, Any]

DEFAULT_STATEMENT = "Sign this message to prove you control this account on LifeVault."


@dataclass(frozen=True)
class AuthChallenge:
    message: str
    nonce: str
    address: str
    issued_at: float
    expires_at: float
    application: Optional[str] = None
    chain_id: Optional[int] = None

    def context(self) -> Json:
        """Fields available to chain-qualified message templates."""
        return {"address": self.address, "application": self.application, "chain_id": self.chain_id}

    def expected_formats(self, formats: Sequence[MessageFormat] = DEFAULT_FORMATS) -> List[Tuple[str, bytes]]:
        """Ordered (format name, exact bytes to sign) pairs for this challenge."""
        out: List[Tuple[str, bytes]] = []
        ctx = self.context()
        for fmt in formats:
            b = fmt.encode(self.message, self.nonce, ctx)
            if b is not None:
                out.append((fmt.name, b))
        return out

    def to_json(self) -> Json:
        return {
            "message": self.message,
            "nonce": self.nonce,
            "address": self.address,
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
            "application": self.application,
            "chain_id": self.chain_id,
            "formats": [{"name": name, "text": b.decode("utf-8")} for name, b in self.expected_formats()],
        }


class ChallengeStore:
    """Single-use login challenges.

    A challenge is bound to exactly one verification attempt: consume()
    removes it whether or not the signature later verifies, so a retry needs
    a fresh nonce and a captured signature cannot be replayed.
    """

    def __init__(
        self,
        *,
        ttl_s: int = 300,
        application: Optional[str] = None,
        chain_id: Optional[int] = None,
        max_pending: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_s = int(ttl_s)
        self.application = application
        self.chain_id = chain_id
        self.max_pending = int(max_pending)
        self._clock = clock
        self._lock = threading.Lock()
        self._pending: Dict[str, AuthChallenge] = {}

    def _prune_locked(self, now: float) -> None:
        stale = [n for n, c in self._pending.items() if c.expires_at <= now]
        for n in stale:
            self._pending.pop(n, None)
        # Size cap: drop oldest.
        if len(self._pending) >= self.max_pending:
            ordered = sorted(self._pending.values(), key=lambda c: c.issued_at)
            for c in ordered[: len(self._pending) - self.max_pending + 1]:
                self._pending.pop(c.nonce, None)

    def issue(self, address: str, *, statement: Optional[str] = None) -> AuthChallenge:
        try:
            addr = normalize_address(address)
        except InvalidEncoding as e:
            raise InvalidInput("bad_address", {"reason": e.reason}) from e
        now = float(self._clock())
        ch = AuthChallenge(
            message=(statement or DEFAULT_STATEMENT),
            nonce=secrets.token_hex(16),
            address=addr,
            issued_at=now,
            expires_at=now + self.ttl_s,
            application=self.application,
            chain_id=self.chain_id,
        )
        with self._lock:
            self._prune_locked(now)
            self._pending[ch.nonce] = ch
        return ch

    def consume(self, nonce: str) -> AuthChallenge:
        n = str(nonce or "").strip()
        with self._lock:
            ch = self._pending.pop(n, None)
        if ch is None:
            raise InvalidInput("unknown_or_used_nonce")
        if ch.expires_at <= float(self._clock()):
            raise InvalidInput("challenge_expired")
        return ch

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)
