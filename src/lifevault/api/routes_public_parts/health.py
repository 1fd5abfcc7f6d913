from __future__ import annotations

import time

from fastapi import APIRouter, Request

from lifevault.api.routes_public_parts.common import Json, _services

router = APIRouter()


@router.get("/health")
def health(request: Request) -> Json:
    svc = _services(request)
    cfg = svc.cfg
    configured = svc.pipeline.program_configured
    return {
        "ok": True,
        "ts_ms": int(time.time() * 1000),
        "mode": cfg.mode,
        "network": cfg.network,
        "anchoring": "live" if configured else "mock",
        "degraded": not configured,
        "module": f"{cfg.module_address}::{cfg.module_name}" if configured else None,
    }
