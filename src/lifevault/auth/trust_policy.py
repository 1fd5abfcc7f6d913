# src/lifevault/auth/trust_policy.py
from __future__ import annotations

"""Wallet-login decision.

One attempt walks START -> ADDRESS_CHECKED -> SIGNATURE_CHECKED and ends in
ACCEPTED or REJECTED:

  1. The address derived from the public key is compared to the claimed
     address. A mismatch is logged; it only rejects under strict matching,
     because some wallets report a rotated or multi-key account address.
  2. Each message format is tried in order with a full Ed25519 check.
  3. If none verifies, the reduced-assurance tier may still accept a
     structurally valid (signature, key) pair for a well-formed address, but
     only when explicitly enabled. Such sessions are marked.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence

from lifevault.auth.challenge import AuthChallenge
from lifevault.crypto.address import derive_address, is_address_format, normalize_address
from lifevault.crypto.sig import DEFAULT_FORMATS, MessageFormat, match_candidate, validate_structure
from lifevault.runtime.errors import InvalidEncoding, InvalidSignature, LedgerError
from lifevault.util.structured_log import log_event

Json = Dict[str, Any]

_log = logging.getLogger("lifevault.auth")


class AuthState(str, Enum):
    START = "start"
    ADDRESS_CHECKED = "address_checked"
    SIGNATURE_CHECKED = "signature_checked"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class AuthOutcome:
    state: AuthState
    address: Optional[str] = None
    derived_address: Optional[str] = None
    address_match: bool = False
    reduced_assurance: bool = False
    matched_format: Optional[str] = None
    error: Optional[LedgerError] = None

    @property
    def accepted(self) -> bool:
        return self.state == AuthState.ACCEPTED

    def to_json(self) -> Json:
        out: Json = {
            "state": self.state.value,
            "address": self.address,
            "derived_address": self.derived_address,
            "address_match": bool(self.address_match),
            "reduced_assurance": bool(self.reduced_assurance),
            "matched_format": self.matched_format,
        }
        if self.error is not None:
            out["error"] = {"code": self.error.code, "reason": self.error.reason}
        return out


class TrustPolicy:
    def __init__(
        self,
        *,
        formats: Sequence[MessageFormat] = DEFAULT_FORMATS,
        allow_reduced_assurance: bool = False,
        strict_address_match: bool = False,
    ) -> None:
        self.formats = tuple(formats)
        self.allow_reduced_assurance = bool(allow_reduced_assurance)
        self.strict_address_match = bool(strict_address_match)

    def _reject(self, err: LedgerError, **fields: Any) -> AuthOutcome:
        log_event(_log, "auth_rejected", level=logging.WARNING, code=err.code, reason=err.reason, address=fields.get("address"))
        return AuthOutcome(state=AuthState.REJECTED, error=err, **fields)

    def evaluate(
        self,
        *,
        address: str,
        public_key: Any,
        signature: Any,
        message: str,
        nonce: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> AuthOutcome:
        """Run one login attempt. Never raises; the outcome carries the error."""
        claimed_raw = str(address or "")

        # START -> ADDRESS_CHECKED
        try:
            claimed = normalize_address(claimed_raw)
            derived = derive_address(public_key)
        except InvalidEncoding as e:
            return self._reject(e, address=claimed_raw or None)
        match = claimed == derived
        if not match:
            log_event(
                _log,
                "auth_address_mismatch",
                level=logging.WARNING,
                claimed=claimed,
                derived=derived,
                strict=self.strict_address_match,
            )
            if self.strict_address_match:
                return self._reject(
                    InvalidSignature("address_mismatch", {"claimed": claimed, "derived": derived}),
                    address=claimed,
                    derived_address=derived,
                )

        # ADDRESS_CHECKED -> SIGNATURE_CHECKED
        ctx: Dict[str, Any] = {"address": claimed}
        if context:
            ctx.update({k: v for k, v in context.items() if v is not None})
        bad_length: Optional[str] = None
        try:
            fmt = match_candidate(message, nonce, signature, public_key, self.formats, ctx)
        except InvalidEncoding as e:
            if not e.reason.endswith("_bad_length"):
                return self._reject(e, address=claimed, derived_address=derived, address_match=match)
            # Well-formed hex of the wrong size is a failed signature, not bad input.
            fmt, bad_length = None, e.reason

        if fmt is not None:
            log_event(_log, "auth_accepted", address=claimed, format=fmt.name, reduced_assurance=False)
            return AuthOutcome(
                state=AuthState.ACCEPTED,
                address=claimed,
                derived_address=derived,
                address_match=match,
                matched_format=fmt.name,
            )

        # Reduced-assurance tier.
        if (
            self.allow_reduced_assurance
            and validate_structure(signature, public_key)
            and is_address_format(claimed_raw)
        ):
            log_event(
                _log,
                "auth_accepted",
                level=logging.WARNING,
                address=claimed,
                format=None,
                reduced_assurance=True,
            )
            return AuthOutcome(
                state=AuthState.ACCEPTED,
                address=claimed,
                derived_address=derived,
                address_match=match,
                reduced_assurance=True,
            )

        details: Json = {"tried": [f.name for f in self.formats]}
        if bad_length is not None:
            details["encoding"] = bad_length
        return self._reject(
            InvalidSignature("no_format_verified", details),
            address=claimed,
            derived_address=derived,
            address_match=match,
        )

    def evaluate_challenge(self, challenge: AuthChallenge, *, address: str, public_key: Any, signature: Any) -> AuthOutcome:
        return self.evaluate(
            address=address,
            public_key=public_key,
            signature=signature,
            message=challenge.message,
            nonce=challenge.nonce,
            context=challenge.context(),
        )

    def authenticate(self, **kw: Any) -> AuthOutcome:
        """Like evaluate(), but raises the rejection error."""
        outcome = self.evaluate(**kw)
        if not outcome.accepted:
            assert outcome.error is not None
            raise outcome.error
        return outcome
