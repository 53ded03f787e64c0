from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI

from assetstore.api.errors import ApiError, handle_api_error, handle_store_error
from assetstore.api.middleware import RequestLogMiddleware
from assetstore.api.routes import router as assets_router
from assetstore.config import load_store_config
from assetstore.errors import AssetStoreError
from assetstore.store import AssetStore


def build_store() -> AssetStore:
    """Build the AssetStore served by the API from ASSETSTORE_* env vars.

    This wrapper exists so tests can monkeypatch `assetstore.api.app.build_store`.
    """
    return AssetStore(load_store_config())


def create_app(store: Optional[AssetStore] = None, *, boot_store: bool = True) -> FastAPI:
    """Create the FastAPI application.

    store:
      - given: served as-is; the caller keeps ownership and closes it
      - None + boot_store=True: built via build_store(), closed on shutdown
      - None + boot_store=False: no store attached (routes answer 503)

    The store initializes lazily, so a Kubo daemon that is not up yet does not
    prevent the app from starting; /v1/health reports the lifecycle state.
    """
    mode = os.environ.get("ASSETSTORE_MODE", "prod").strip().lower()
    owns_store = store is None and boot_store

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        yield
        st = getattr(app.state, "store", None)
        if owns_store and st is not None:
            st.close()

    if mode == "prod":
        app = FastAPI(title="Asset Store API", docs_url=None, redoc_url=None, openapi_url=None, lifespan=_lifespan)
    else:
        app = FastAPI(title="Asset Store API", lifespan=_lifespan)

    app.state.store = store if store is not None else (build_store() if boot_store else None)

    app.add_middleware(RequestLogMiddleware)
    app.add_exception_handler(ApiError, handle_api_error)
    app.add_exception_handler(AssetStoreError, handle_store_error)

    v1 = APIRouter()
    v1.include_router(assets_router, prefix="/v1", tags=["assets"])
    app.include_router(v1)

    return app
