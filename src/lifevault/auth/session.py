from __future__ import annotations

import secrets
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from lifevault.runtime.errors import NotAuthorized

Json = Dict[str, Any]


@dataclass(frozen=True)
class Session:
    token: str
    address: str
    issued_at: float
    expires_at: float
    reduced_assurance: bool = False

    def to_json(self) -> Json:
        # The token is returned once, at issue time, by the HTTP layer.
        return {
            "address": self.address,
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
            "reduced_assurance": bool(self.reduced_assurance),
        }


class SessionIssuer:
    """Opaque bearer tokens scoped to one wallet address (in-process)."""

    def __init__(self, *, ttl_s: int = 86_400, clock: Callable[[], float] = time.time) -> None:
        self.ttl_s = int(ttl_s)
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}

    def _prune_locked(self, now: float) -> None:
        stale = [t for t, s in self._sessions.items() if s.expires_at <= now]
        for t in stale:
            self._sessions.pop(t, None)

    def issue(self, address: str, *, reduced_assurance: bool = False) -> Session:
        now = float(self._clock())
        s = Session(
            token=secrets.token_urlsafe(32),
            address=str(address),
            issued_at=now,
            expires_at=now + self.ttl_s,
            reduced_assurance=bool(reduced_assurance),
        )
        with self._lock:
            self._prune_locked(now)
            self._sessions[s.token] = s
        return s

    def resolve(self, token: Optional[str]) -> Session:
        t = str(token or "").strip()
        if not t:
            raise NotAuthorized("missing_session")
        with self._lock:
            s = self._sessions.get(t)
            if s is not None and s.expires_at <= float(self._clock()):
                self._sessions.pop(t, None)
                s = None
        if s is None:
            raise NotAuthorized("invalid_or_expired_session")
        return s

    def revoke(self, token: str) -> bool:
        with self._lock:
            return self._sessions.pop(str(token or "").strip(), None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
