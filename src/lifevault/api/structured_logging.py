# src/lifevault/api/structured_logging.py
from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from lifevault.util.structured_log import log_event


class RequestLogMiddleware(BaseHTTPMiddleware):
    """One `http_request` event per request on the lifevault.http logger.

    Requests that passed the session gate also carry the wallet address and
    the session's reduced-assurance flag, so low-assurance activity can be
    audited. Tokens and other headers are never logged.

    LIFEVAULT_LOG_REQUESTS=0 disables it.
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        raw = (os.environ.get("LIFEVAULT_LOG_REQUESTS") or "1").strip().lower()
        self._enabled = raw not in {"0", "false", "no", "n", "off"}
        self._logger = logging.getLogger("lifevault.http")

    async def dispatch(self, request: Request, call_next):
        if not self._enabled:
            return await call_next(request)

        started = time.monotonic()
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id
        status, err = 500, None
        try:
            response = await call_next(request)
            status = int(response.status_code)
            response.headers.setdefault("x-request-id", request_id)
            return response
        except Exception as e:
            err = type(e).__name__
            raise
        finally:
            session = getattr(request.state, "session", None)
            wallet: Optional[str] = session.address if session is not None else None
            log_event(
                self._logger,
                "http_request",
                request_id=request_id,
                method=request.method,
                path=str(request.url.path or ""),
                status=status,
                duration_ms=int((time.monotonic() - started) * 1000),
                wallet=wallet,
                reduced_assurance=bool(session.reduced_assurance) if session is not None else None,
                error=err,
            )
