from __future__ import annotations

import os
from typing import Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from lifevault.api.errors import ApiError
from lifevault.auth.session import Session
from lifevault.runtime.errors import NotAuthorized


def _truthy(v: str | None) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return int(default)
    try:
        return int(str(raw).strip())
    except Exception:
        return int(default)


def bearer_token(request: Request) -> str:
    raw = (request.headers.get("authorization") or "").strip()
    scheme, _, token = raw.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return ""
    return token.strip()


def require_session(request: Request) -> Session:
    """Gate wallet-private API access behind a bearer session token.

    Client provides:
      - Authorization: "Bearer <token>" as returned by POST /v1/auth/wallet
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise ApiError.internal("not_ready", "services not attached to app.state", {})
    token = bearer_token(request)
    if not token:
        raise ApiError.unauthorized("session_missing", "Bearer session token required")
    try:
        session = services.sessions.resolve(token)
    except NotAuthorized as e:
        raise ApiError.unauthorized("session_invalid", e.reason) from e
    # Read back by RequestLogMiddleware.
    request.state.session = session
    return session


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Fail-fast request size limiter.

    - Enforces Content-Length when present.
    - Also caps buffered body size by reading body once when needed.

    Configure:
      LIFEVAULT_MAX_REQUEST_BYTES (default: 10_000_000; uploads are base64 JSON)
      LIFEVAULT_SIZE_LIMIT_DISABLE=1 to disable (not recommended unless handled at edge)
    """

    def __init__(
        self,
        app,
        *,
        max_bytes: Optional[int] = None,
        exempt_prefixes: Tuple[str, ...] = ("/docs", "/openapi.json", "/v1/health"),
    ):
        super().__init__(app)
        self._enabled = not _truthy(os.environ.get("LIFEVAULT_SIZE_LIMIT_DISABLE"))
        if max_bytes is not None:
            self._max_bytes = int(max_bytes)
        else:
            self._max_bytes = _env_int("LIFEVAULT_MAX_REQUEST_BYTES", 10_000_000)
        self._exempt_prefixes = exempt_prefixes

    def _too_large(self) -> JSONResponse:
        return JSONResponse(
            status_code=413,
            content={
                "ok": False,
                "error": {"code": "payload_too_large", "message": "Request body too large"},
            },
        )

    async def dispatch(self, request: Request, call_next):
        if not self._enabled:
            return await call_next(request)

        path = request.url.path or ""
        for ex in self._exempt_prefixes:
            if path.startswith(ex):
                return await call_next(request)

        cl = request.headers.get("content-length")
        if cl:
            try:
                if int(cl) > self._max_bytes:
                    return self._too_large()
            except ValueError:
                # Malformed header; fall back to the buffered body cap.
                pass

        # Chunked uploads carry no Content-Length.
        if (request.method or "").upper() in {"POST", "PUT", "PATCH"}:
            try:
                body = await request.body()
            except Exception:
                return JSONResponse(
                    status_code=400,
                    content={"ok": False, "error": {"code": "bad_request", "message": "Unable to read request body"}},
                )
            if body and len(body) > self._max_bytes:
                return self._too_large()

        return await call_next(request)
