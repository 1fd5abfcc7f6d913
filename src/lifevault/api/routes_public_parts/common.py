from __future__ import annotations

from typing import Any, Dict

from fastapi import Request

from lifevault.api.errors import ApiError
from lifevault.runtime.boot import Services

Json = Dict[str, Any]


def _services(request: Request) -> Services:
    svc = getattr(request.app.state, "services", None)
    if svc is None:
        raise ApiError.internal("not_ready", "services not attached to app.state", {})
    return svc


def _record_id(v: Any) -> int:
    try:
        rid = int(str(v).strip())
    except (TypeError, ValueError):
        raise ApiError.bad_request("bad_record_id", "record id must be an integer", {"id": v})
    if rid <= 0:
        raise ApiError.bad_request("bad_record_id", "record id must be positive", {"id": rid})
    return rid
