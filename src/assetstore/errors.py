from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from assetstore.pinning import PinReport


class AssetStoreError(Exception):
    """Base class for every error raised by the asset store."""


class ConfigError(AssetStoreError, ValueError):
    pass


class InitializationError(AssetStoreError):
    """Node startup or backend registration failed. The store is unusable afterwards."""


class StoreClosedError(AssetStoreError):
    pass


@dataclass
class AssetIOError(AssetStoreError):
    path: str
    reason: str

    def __str__(self) -> str:  # pragma: no cover
        return f"asset_io_error:{self.path}:{self.reason}"


@dataclass
class InvalidCidError(AssetStoreError, ValueError):
    cid: str
    reason: str

    def __str__(self) -> str:  # pragma: no cover
        return f"invalid_cid:{self.reason}:{self.cid!r}"


@dataclass
class ContentNotFoundError(AssetStoreError):
    cid: str
    reason: str = "not_found"

    def __str__(self) -> str:  # pragma: no cover
        return f"content_not_found:{self.cid}:{self.reason}"


@dataclass
class NodeError(AssetStoreError):
    """The content node rejected a call or could not be reached."""

    path: str
    message: str
    status: int = 0

    def __str__(self) -> str:  # pragma: no cover
        if self.status:
            return f"node_error:{self.path}:http_{self.status}:{self.message}"
        return f"node_error:{self.path}:{self.message}"


@dataclass
class BackendError(AssetStoreError):
    """A single pinning service failed to register, list or pin."""

    service: str
    op: str
    message: str
    cid: Optional[str] = None

    def __str__(self) -> str:  # pragma: no cover
        if self.cid:
            return f"backend_error:{self.service}:{self.op}:{self.cid}:{self.message}"
        return f"backend_error:{self.service}:{self.op}:{self.message}"


@dataclass
class BackendTimeoutError(BackendError):
    timeout_s: float = 0.0


@dataclass
class AggregatePinError(AssetStoreError):
    """One or more backends failed during a fan-out pin."""

    cid: str
    report: "PinReport"

    @property
    def failures(self) -> list:
        return self.report.failed

    def __str__(self) -> str:  # pragma: no cover
        names = ",".join(o.service for o in self.report.failed)
        return f"pin_failed:{self.cid}:{len(self.report.failed)}/{len(self.report.outcomes)}:{names}"
