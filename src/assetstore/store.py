"""Asset storage on IPFS with remote-pinning durability.

AssetStore adds assets to a content node and pins the resulting CIDs to every
configured remote pinning service before handing the CID back, so a returned
CID is one that outlives the local node.

Use make_asset_store() to get an initialized instance. A plain AssetStore
initializes itself lazily on first use.
"""

from __future__ import annotations

import base64
import logging
from pathlib import Path
from typing import Optional, Tuple, Union

from assetstore.cid import asset_uri, parse_asset_ref, require_cid
from assetstore.config import AssetStoreConfig
from assetstore.errors import AssetIOError
from assetstore.lifecycle import LifecycleGuard, LifecycleState
from assetstore.log import log_event
from assetstore.metrics import inc_counter
from assetstore.node import ContentNode, KuboNode
from assetstore.pinning import PinCoordinator, PinReport

log = logging.getLogger("assetstore.store")

AssetContent = Union[bytes, bytearray, memoryview, str]


def _read_asset_file(path: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except FileNotFoundError as e:
        raise AssetIOError(path=path, reason="not_found") from e
    except IsADirectoryError as e:
        raise AssetIOError(path=path, reason="is_a_directory") from e
    except OSError as e:
        raise AssetIOError(path=path, reason=e.strerror or str(e)) from e


def _as_bytes(content: AssetContent) -> bytes:
    if isinstance(content, str):
        return content.encode("utf-8")
    return bytes(content)


class AssetStore:
    def __init__(self, config: Optional[AssetStoreConfig] = None, *, node: Optional[ContentNode] = None) -> None:
        self.config = config or AssetStoreConfig()
        self.node: ContentNode = node or KuboNode(
            self.config.ipfs_api_url,
            timeout_s=self.config.ipfs_timeout_s,
            cat_timeout_s=self.config.cat_timeout_s,
        )
        self.pins = PinCoordinator(
            self.node,
            pin_timeout_s=self.config.pin_timeout_s,
            max_workers=self.config.max_workers,
            failure_policy=self.config.pin_failure_policy,
            skip_failed_services=self.config.skip_failed_services,
        )
        self._guard = LifecycleGuard("asset_store")

    # ----------------------------
    # Lifecycle
    # ----------------------------

    def _initialize(self) -> None:
        self.node.start()
        registered = self.pins.register_all(self.config.pinning_services)
        if self.config.pinning_services and len(registered) < len(self.config.pinning_services):
            log_event(
                log,
                "store_degraded",
                level=logging.WARNING,
                configured=list(self.config.service_names),
                registered=list(registered),
            )

    def ensure_initialized(self) -> None:
        self._guard.ensure(self._initialize)

    @property
    def state(self) -> LifecycleState:
        return self._guard.state

    @property
    def services(self) -> Tuple[str, ...]:
        return self.pins.services

    def close(self) -> None:
        def _finalize() -> None:
            self.node.stop()

        if self._guard.close(_finalize):
            self.pins.close()
            log_event(log, "store_closed")

    def __enter__(self) -> "AssetStore":
        self.ensure_initialized()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ----------------------------
    # Writes
    # ----------------------------

    def add_asset(self, name: str, content: Optional[AssetContent] = None) -> str:
        """Add an asset to IPFS and pin it on every registered service.

        If `content` is None the bytes are read from the local file `name`;
        otherwise `content` is stored and `name` only labels it.

        Returns the CID once every service has confirmed the pin (or raises
        AggregatePinError under the "raise" failure policy).
        """
        self.ensure_initialized()

        if content is None:
            log_event(log, "asset_read", path=name)
            data = _read_asset_file(name)
        else:
            data = _as_bytes(content)

        cid = self.node.add(Path(name).name or "asset", data)
        inc_counter("assets_added")
        log_event(log, "asset_added", cid=cid, name=Path(name).name, size=len(data))

        self.pin(cid)
        return cid

    def pin(self, cid: str) -> PinReport:
        self.ensure_initialized()
        return self.pins.pin(require_cid(cid))

    # ----------------------------
    # Reads
    # ----------------------------

    def is_pinned(self, cid: str, service: str) -> bool:
        self.ensure_initialized()
        return self.pins.is_pinned(require_cid(cid), service)

    def get(self, cid_or_uri: str) -> bytes:
        self.ensure_initialized()
        ref = parse_asset_ref(cid_or_uri, scheme=self.config.uri_scheme)
        return b"".join(self.node.cat(ref))

    def get_string(self, cid_or_uri: str) -> str:
        return self.get(cid_or_uri).decode("utf-8")

    def get_base64_string(self, cid_or_uri: str) -> str:
        return base64.b64encode(self.get(cid_or_uri)).decode("ascii")

    def asset_uri(self, cid: str) -> str:
        return asset_uri(cid, scheme=self.config.uri_scheme)


def make_asset_store(config: Optional[AssetStoreConfig] = None, *, node: Optional[ContentNode] = None) -> AssetStore:
    """Build an AssetStore and initialize it before returning.

    Prefer this to constructing an instance directly: node or registration
    problems surface here rather than on the first add_asset().
    """
    store = AssetStore(config, node=node)
    store.ensure_initialized()
    return store
