from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from assetstore.errors import (
    AggregatePinError,
    AssetIOError,
    AssetStoreError,
    BackendError,
    ConfigError,
    ContentNotFoundError,
    InitializationError,
    InvalidCidError,
    NodeError,
    StoreClosedError,
)


@dataclass
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def not_found(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(404, code, message, details or {})

    @staticmethod
    def too_large(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(413, code, message, details or {})

    @staticmethod
    def bad_gateway(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(502, code, message, details or {})

    @staticmethod
    def unavailable(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(503, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content={"ok": False, "error": {"code": self.code, "message": self.message, "details": self.details}},
        )


def api_error_from(exc: AssetStoreError) -> ApiError:
    """Map a store error onto the HTTP error it should surface as."""
    if isinstance(exc, InvalidCidError):
        return ApiError.bad_request("invalid_cid", exc.reason, {"cid": exc.cid})
    if isinstance(exc, ContentNotFoundError):
        return ApiError.not_found("not_found", exc.reason, {"cid": exc.cid})
    if isinstance(exc, AssetIOError):
        return ApiError.bad_request("asset_io_error", exc.reason, {"path": exc.path})
    if isinstance(exc, AggregatePinError):
        return ApiError.bad_gateway("pin_failed", str(exc), exc.report.to_dict())
    if isinstance(exc, BackendError):
        return ApiError.bad_gateway("backend_error", exc.message, {"service": exc.service, "op": exc.op, "cid": exc.cid})
    if isinstance(exc, (InitializationError, StoreClosedError, NodeError)):
        return ApiError.unavailable("store_unavailable", str(exc))
    if isinstance(exc, ConfigError):
        return ApiError.internal("config_error", str(exc))
    return ApiError.internal("store_error", str(exc))


async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return exc.to_response()


async def handle_store_error(request: Request, exc: AssetStoreError) -> JSONResponse:
    return api_error_from(exc).to_response()
