from __future__ import annotations

import logging
import os
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from assetstore.log import log_event

log = logging.getLogger("assetstore.http")

REQUEST_ID_HEADER = "x-request-id"


def note_asset(request: Request, *, cid: str, size: int = -1) -> None:
    """Attach the asset a route handled so the request log can name it."""
    request.state.asset_cid = cid
    if size >= 0:
        request.state.asset_bytes = size


class RequestLogMiddleware(BaseHTTPMiddleware):
    """One `asset_request` event per call, carrying the asset CID and size a
    route recorded with note_asset(). ASSETSTORE_LOG_REQUESTS=0 turns it off.
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        self.enabled = (os.environ.get("ASSETSTORE_LOG_REQUESTS") or "1").strip().lower() not in {"0", "false", "off"}

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.monotonic()

        response = await call_next(request)
        response.headers.setdefault(REQUEST_ID_HEADER, request_id)

        if self.enabled:
            status = response.status_code
            log_event(
                log,
                "asset_request",
                level=logging.WARNING if status >= 500 else logging.INFO,
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                status=status,
                cid=getattr(request.state, "asset_cid", None),
                bytes=getattr(request.state, "asset_bytes", None),
                duration_ms=int((time.monotonic() - started) * 1000),
            )
        return response
