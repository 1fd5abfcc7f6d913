from __future__ import annotations

import os
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lifevault.api.content_store import IpfsContentStore
from lifevault.api.errors import ApiError, api_error_handler, ledger_error_handler
from lifevault.api.routes_public import public_router
from lifevault.api.security import RequestSizeLimitMiddleware
from lifevault.api.structured_logging import RequestLogMiddleware
from lifevault.runtime.boot import Services
from lifevault.runtime.boot import build_services as _build_services
from lifevault.runtime.chain_config import load_ledger_config
from lifevault.runtime.errors import LedgerError
from lifevault.util.structured_log import configure_structured_logging


def build_services() -> Services:
    """Build the runtime services for the API.

    This wrapper exists so tests can monkeypatch `lifevault.api.app.build_services`
    without reaching into runtime modules.
    """
    return _build_services(load_ledger_config())


def _parse_cors_origins(mode: str) -> List[str]:
    """Parse CORS origins with production-safe defaults.

    Policy:
      - If LIFEVAULT_CORS_ORIGINS is unset/empty -> CORS disabled (fail-closed)
      - Wildcard "*" is rejected in prod mode
    """
    raw = os.environ.get("LIFEVAULT_CORS_ORIGINS", "").strip()
    if not raw:
        return []

    origins = [o.strip() for o in raw.split(",") if o.strip()]
    if "*" in origins:
        if mode == "prod":
            raise RuntimeError(
                "Unsafe CORS configuration: wildcard '*' not allowed in production. "
                "Set explicit origins in LIFEVAULT_CORS_ORIGINS."
            )
        return ["*"]
    return origins


def _content_store_from_env() -> Optional[IpfsContentStore]:
    if not (os.environ.get("LIFEVAULT_IPFS_API_BASE") or "").strip():
        return None
    return IpfsContentStore.from_env()


def create_app(
    *,
    services: Optional[Services] = None,
    content_store: Optional[IpfsContentStore] = None,
    boot_runtime: bool = True,
) -> FastAPI:
    """Create the FastAPI application.

    services:
      - given: attached as-is (tests, embedding)
      - None and boot_runtime=True: built from LedgerConfig via build_services()
      - None and boot_runtime=False: routes answer 500 not_ready
    """
    configure_structured_logging()

    if services is None and boot_runtime:
        services = build_services()
    mode = services.cfg.mode if services is not None else os.environ.get("LIFEVAULT_MODE", "prod").strip().lower()

    # Disable docs in production.
    if mode == "prod":
        app = FastAPI(title="LifeVault Provenance API", docs_url=None, redoc_url=None, openapi_url=None)
    else:
        app = FastAPI(title="LifeVault Provenance API")

    app.state.services = services
    app.state.content_store = content_store if content_store is not None else _content_store_from_env()

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(LedgerError, ledger_error_handler)

    # --- Middleware ---
    # Request size limiter should be early to fail fast.
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(RequestLogMiddleware)

    cors_origins = _parse_cors_origins(mode)
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type"],
        )

    # --- Routers ---
    app.include_router(public_router)

    return app
