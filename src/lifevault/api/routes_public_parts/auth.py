from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from lifevault.api.routes_public_parts.common import Json, _services
from lifevault.api.schemas import ChallengeRequest, WalletLoginRequest
from lifevault.api.security import bearer_token, require_session
from lifevault.auth.session import Session
from lifevault.crypto.address import addresses_equal
from lifevault.runtime.errors import InvalidInput

router = APIRouter()


@router.post("/auth/challenge")
def auth_challenge(body: ChallengeRequest, request: Request) -> Json:
    svc = _services(request)
    ch = svc.challenges.issue(body.address, statement=body.statement)
    return {"ok": True, "challenge": ch.to_json()}


@router.post("/auth/wallet")
def auth_wallet(body: WalletLoginRequest, request: Request) -> Json:
    """Exchange a signed challenge for a session.

    The challenge is consumed before verification, so a failed attempt needs
    a new challenge.
    """
    svc = _services(request)
    ch = svc.challenges.consume(body.nonce)
    if not addresses_equal(ch.address, body.address):
        raise InvalidInput("challenge_address_mismatch", {"challenge": ch.address})

    outcome = svc.trust.evaluate_challenge(
        ch,
        address=body.address,
        public_key=body.public_key,
        signature=body.signature,
    )
    if not outcome.accepted:
        assert outcome.error is not None
        raise outcome.error

    assert outcome.address is not None
    session = svc.sessions.issue(outcome.address, reduced_assurance=outcome.reduced_assurance)
    return {
        "ok": True,
        "token": session.token,
        "session": session.to_json(),
        "auth": outcome.to_json(),
    }


@router.get("/auth/me")
def auth_me(session: Session = Depends(require_session)) -> Json:
    return {"ok": True, "session": session.to_json()}


@router.post("/auth/logout")
def auth_logout(request: Request, session: Session = Depends(require_session)) -> Json:
    revoked = _services(request).sessions.revoke(bearer_token(request))
    return {"ok": True, "revoked": revoked}
