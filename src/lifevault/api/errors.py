from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from lifevault.runtime.errors import LedgerError

# LedgerError.code -> HTTP status
LEDGER_STATUS: Dict[str, int] = {
    "invalid_input": 400,
    "invalid_encoding": 400,
    "not_found": 404,
    "not_authorized": 403,
    "invalid_signature": 401,
    "anchor_failed": 502,
}


@dataclass(frozen=True, slots=True)
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def unauthorized(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(401, code, message, details or {})

    @staticmethod
    def forbidden(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(403, code, message, details or {})

    @staticmethod
    def not_found(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(404, code, message, details or {})

    @staticmethod
    def bad_gateway(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(502, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})

    @staticmethod
    def from_ledger(e: LedgerError) -> "ApiError":
        details: Dict[str, Any] = {"reason": e.reason}
        if isinstance(e.details, dict):
            details.update(e.details)
        stage = getattr(e, "stage", None)
        if stage is not None:
            details["stage"] = stage
            details["tx_hash"] = getattr(e, "tx_hash", None)
        return ApiError(LEDGER_STATUS.get(e.code, 500), e.code, e.reason, details)


def _render(err: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=err.status_code,
        content={"ok": False, "error": {"code": err.code, "message": err.message, "details": err.details}},
    )


async def api_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, ApiError)
    return _render(exc)


async def ledger_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, LedgerError)
    return _render(ApiError.from_ledger(exc))
