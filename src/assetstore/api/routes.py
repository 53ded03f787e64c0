from __future__ import annotations

import base64
import os
import re
from typing import Any, Dict, Optional

from fastapi import APIRouter, File, Request, Response, UploadFile

from assetstore.api.errors import ApiError
from assetstore.api.middleware import note_asset
from assetstore.metrics import format_prometheus, metrics_enabled
from assetstore.store import AssetStore

Json = Dict[str, Any]

router = APIRouter()

_ENCODINGS = {"base64", "utf-8", "utf8", "text"}


def _env_int(name: str, default: int) -> int:
    try:
        v = os.getenv(name)
        if v is None:
            return int(default)
        return int(v)
    except ValueError:
        return int(default)


def _sanitize_filename(name: str) -> str:
    name = (name or "").strip()
    if not name:
        return "upload"
    name = re.sub(r"[^a-zA-Z0-9._-]+", "_", name)
    return name[:128] or "upload"


def _store(request: Request) -> AssetStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise ApiError.unavailable("not_ready", "asset store not attached to app.state")
    return store


@router.get("/health")
def v1_health(request: Request) -> Json:
    store = getattr(request.app.state, "store", None)
    state = store.state.value if store is not None else "detached"
    return {"ok": store is not None, "state": state}


@router.get("/services")
def v1_services(request: Request) -> Json:
    store = _store(request)
    store.ensure_initialized()
    return {"ok": True, "services": list(store.services), "configured": list(store.config.service_names)}


@router.post("/assets")
def v1_assets_upload(request: Request, file: UploadFile = File(...)) -> Json:
    """Add an uploaded file to IPFS and pin it on every registered service.

    Returns:
      { ok, cid, uri, name, size, services }
    """
    store = _store(request)
    max_bytes = _env_int("ASSETSTORE_MAX_UPLOAD_BYTES", 10 * 1024 * 1024)

    name = _sanitize_filename(file.filename or "upload")
    # Empty files are valid assets: zero bytes still have a CID.
    data = file.file.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise ApiError.too_large("file_too_large", f"max {max_bytes} bytes")

    cid = store.add_asset(name, data)
    note_asset(request, cid=cid, size=len(data))
    return {
        "ok": True,
        "cid": cid,
        "uri": store.asset_uri(cid),
        "name": name,
        "size": len(data),
        "services": list(store.services),
    }


@router.get("/assets/{ref:path}")
def v1_assets_get(request: Request, ref: str, encoding: Optional[str] = None):
    """Fetch an asset by CID or ipfs:// URI.

    encoding=base64 or encoding=utf-8 returns JSON instead of raw bytes.
    """
    store = _store(request)
    enc = (encoding or "").strip().lower()
    if enc and enc not in _ENCODINGS:
        raise ApiError.bad_request("bad_encoding", f"unsupported encoding: {encoding}")

    data = store.get(ref)
    note_asset(request, cid=ref, size=len(data))
    if enc == "base64":
        return {"ok": True, "ref": ref, "base64": base64.b64encode(data).decode("ascii")}
    if enc:
        try:
            return {"ok": True, "ref": ref, "text": data.decode("utf-8")}
        except UnicodeDecodeError:
            raise ApiError.bad_request("not_utf8", "asset is not valid UTF-8 text") from None
    return Response(content=data, media_type="application/octet-stream")


@router.post("/pins/{cid}")
def v1_pins_add(request: Request, cid: str) -> Json:
    store = _store(request)
    note_asset(request, cid=cid)
    report = store.pin(cid)
    return {"ok": report.ok, **report.to_dict()}


@router.get("/pins/{cid}")
def v1_pins_status(request: Request, cid: str, service: Optional[str] = None) -> Json:
    store = _store(request)
    if service:
        return {"ok": True, "cid": cid, "service": service, "pinned": store.is_pinned(cid, service)}
    store.ensure_initialized()
    return {"ok": True, "cid": cid, "services": {svc: store.is_pinned(cid, svc) for svc in store.services}}


@router.get("/metrics")
def v1_metrics() -> Response:
    """Prometheus-style metrics.

    Disabled by default. Enable with:
      ASSETSTORE_METRICS_ENABLED=1
    """
    if not metrics_enabled():
        return Response(status_code=404, content="not_found\n", media_type="text/plain")
    return Response(content=format_prometheus(), media_type="text/plain")
