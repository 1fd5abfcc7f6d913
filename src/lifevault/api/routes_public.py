# src/lifevault/api/routes_public.py
from __future__ import annotations

from fastapi import APIRouter

from lifevault.api.routes_public_parts.auth import router as auth_router
from lifevault.api.routes_public_parts.content import router as content_router
from lifevault.api.routes_public_parts.health import router as health_router
from lifevault.api.routes_public_parts.records import router as records_router

public_router = APIRouter()

# Versioned API surface
public_router.include_router(health_router, prefix="/v1", tags=["health"])
public_router.include_router(auth_router, prefix="/v1", tags=["auth"])
public_router.include_router(content_router, prefix="/v1", tags=["content"])
public_router.include_router(records_router, prefix="/v1", tags=["records"])
