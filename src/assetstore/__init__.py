"""
assetstore: durable asset storage on IPFS

  - store: AssetStore (add_asset / pin / get*) and make_asset_store()
  - pinning: PinCoordinator, fan-out of pins to remote pinning services
  - lifecycle: one-shot, thread-safe initialization guard
  - node: ContentNode protocol + KuboNode (Kubo HTTP RPC client)
  - node_memory: InMemoryNode for tests and local harnesses
  - credentials / config / cid: service registration, env config, CID + URI helpers
  - api: optional FastAPI surface over one store
"""

from __future__ import annotations

from assetstore.config import AssetStoreConfig, PinningServiceConfig, load_store_config
from assetstore.credentials import CallableCredential, CredentialProvider, EnvCredential, StaticCredential
from assetstore.errors import (
    AggregatePinError,
    AssetIOError,
    AssetStoreError,
    BackendError,
    BackendTimeoutError,
    ConfigError,
    ContentNotFoundError,
    InitializationError,
    InvalidCidError,
    NodeError,
    StoreClosedError,
)
from assetstore.pinning import PinOutcome, PinReport
from assetstore.store import AssetStore, make_asset_store

__all__ = [
    "AssetStore",
    "make_asset_store",
    "AssetStoreConfig",
    "PinningServiceConfig",
    "load_store_config",
    "CredentialProvider",
    "StaticCredential",
    "CallableCredential",
    "EnvCredential",
    "PinOutcome",
    "PinReport",
    "AssetStoreError",
    "AggregatePinError",
    "AssetIOError",
    "BackendError",
    "BackendTimeoutError",
    "ConfigError",
    "ContentNotFoundError",
    "InitializationError",
    "InvalidCidError",
    "NodeError",
    "StoreClosedError",
]
