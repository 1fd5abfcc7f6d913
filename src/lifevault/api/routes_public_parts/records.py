from __future__ import annotations

from fastapi import APIRouter, Request

from lifevault.api.errors import ApiError
from lifevault.api.routes_public_parts.common import Json, _record_id, _services
from lifevault.crypto.address import normalize_address
from lifevault.runtime.errors import InvalidEncoding
from lifevault.runtime.rpc import RpcError

router = APIRouter()


@router.get("/records/count")
def records_count(request: Request) -> Json:
    svc = _services(request)
    try:
        n = svc.pipeline.count()
    except RpcError as e:
        raise ApiError.bad_gateway("ledger_unavailable", e.reason, {})
    return {"ok": True, "count": n, "degraded": not svc.pipeline.program_configured}


@router.get("/records/owner/{address}")
def records_by_owner(address: str, request: Request) -> Json:
    try:
        addr = normalize_address(address)
    except InvalidEncoding as e:
        raise ApiError.bad_request("bad_address", e.reason, {})
    svc = _services(request)
    try:
        ids = svc.pipeline.list_by_owner(addr)
    except RpcError as e:
        raise ApiError.bad_gateway("ledger_unavailable", e.reason, {})
    return {"ok": True, "address": addr, "records": ids, "degraded": not svc.pipeline.program_configured}


@router.get("/records/{record_id}")
def record_get(record_id: str, request: Request) -> Json:
    rid = _record_id(record_id)
    try:
        rec = _services(request).pipeline.get_record(rid)
    except RpcError as e:
        raise ApiError.bad_gateway("ledger_unavailable", e.reason, {})
    return {"ok": True, "record": rec.to_json()}


@router.get("/records/{record_id}/owner/{address}")
def record_owner(record_id: str, address: str, request: Request) -> Json:
    rid = _record_id(record_id)
    try:
        addr = normalize_address(address)
    except InvalidEncoding as e:
        raise ApiError.bad_request("bad_address", e.reason, {})
    owned = _services(request).pipeline.verify_ownership(rid, addr)
    return {"ok": True, "id": rid, "address": addr, "owner": owned}


@router.get("/tx/{tx_hash}")
def tx_status(tx_hash: str, request: Request) -> Json:
    h = (tx_hash or "").strip()
    if h.startswith("mock-"):
        return {"ok": True, "tx": {"hash": h, "mock": True, "degraded": True}}
    try:
        info = _services(request).pipeline.get_transaction(h)
    except RpcError as e:
        raise ApiError.bad_gateway("ledger_unavailable", e.reason, {})
    if info is None:
        raise ApiError.not_found("tx_not_found", "transaction not found or still pending", {"hash": h})
    return {"ok": True, "tx": info.to_json()}
