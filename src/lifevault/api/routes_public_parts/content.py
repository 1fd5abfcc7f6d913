from __future__ import annotations

import base64
import binascii
import hashlib

from fastapi import APIRouter, Depends, Request

from lifevault.api.content_store import ContentStoreError
from lifevault.api.errors import ApiError
from lifevault.api.routes_public_parts.common import Json, _services
from lifevault.api.schemas import ContentRequest
from lifevault.api.security import require_session
from lifevault.auth.session import Session
from lifevault.util.ipfs_cid import validate_content_hash

router = APIRouter()


def _decode_file(data: str) -> bytes:
    try:
        return base64.b64decode(data.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, ValueError):
        raise ApiError.bad_request("bad_file_data", "file_data must be base64", {})


@router.post("/content")
def create_content(body: ContentRequest, request: Request, session: Session = Depends(require_session)) -> Json:
    """Pin (optionally) and anchor a content hash for the session's wallet.

    Exactly one of content_hash or file_data must be given.
    """
    svc = _services(request)
    has_hash = bool((body.content_hash or "").strip())
    has_file = bool(body.file_data)
    if has_hash == has_file:
        raise ApiError.bad_request("bad_request", "provide exactly one of content_hash or file_data", {})

    pin: Json | None = None
    if has_file:
        raw = _decode_file(str(body.file_data))
        if not raw:
            raise ApiError.bad_request("bad_file_data", "file_data is empty", {})
        store = getattr(request.app.state, "content_store", None)
        if store is None:
            # No pinning service: anchor the local sha256 digest.
            content_hash = hashlib.sha256(raw).hexdigest()
        else:
            try:
                res = store.pin_bytes(body.file_name or "upload", raw)
            except ContentStoreError as e:
                raise ApiError.bad_gateway("content_store_failed", e.reason, {})
            content_hash = res.cid
            pin = res.to_json()
    else:
        v = validate_content_hash(str(body.content_hash))
        if not v.ok:
            raise ApiError.bad_request("bad_content_hash", v.reason, {"content_hash": v.cid})
        content_hash = v.cid

    anchor: Json | None = None
    if body.store_on_chain:
        receipt = svc.pipeline.store(content_hash, owner=session.address)
        anchor = receipt.to_json()

    return {
        "ok": True,
        "content_hash": content_hash,
        "owner": session.address,
        "pin": pin,
        "anchor": anchor,
        "degraded": bool(anchor and anchor["degraded"]),
    }
