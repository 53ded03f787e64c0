from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urlparse, urlunparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from assetstore.cid import DEFAULT_SCHEME
from assetstore.credentials import CredentialLike, CredentialProvider, EnvCredential, as_credential_provider
from assetstore.errors import ConfigError


PIN_FAILURE_POLICIES = {"raise", "log"}


def _truthy(v: str | None) -> bool:
    if v is None:
        return False
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_bool(name: str, default: bool) -> bool:
    v = os.environ.get(name)
    if v is None:
        return bool(default)
    return _truthy(v)


def _env_int(name: str, default: int) -> int:
    v = (os.environ.get(name) or "").strip()
    if not v:
        return int(default)
    try:
        return int(v)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {v!r}") from None


def _env_float(name: str, default: float) -> float:
    v = (os.environ.get(name) or "").strip()
    if not v:
        return float(default)
    try:
        return float(v)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {v!r}") from None


def normalize_endpoint(url: str, *, allow_insecure_localhost_urls: bool) -> str:
    """
    Normalize and validate a pinning-service or node endpoint.

    Rules:
      - Must be https://... OR (if allow_insecure_localhost_urls) http://localhost/... or http://127.0.0.1/...
      - Keeps port and path (pinning APIs live under a path, e.g. /psa)
      - Strips trailing slashes
      - Rejects query/fragment
    """
    if not isinstance(url, str) or not url.strip():
        raise ConfigError("endpoint must be a non-empty string")

    parsed = urlparse(url.strip())

    if parsed.query or parsed.fragment:
        raise ConfigError("endpoint must not include query or fragment")

    scheme = (parsed.scheme or "").lower()
    host = (parsed.hostname or "").lower()

    if not host:
        raise ConfigError("endpoint must include a hostname")

    if scheme == "https":
        pass
    elif scheme == "http" and allow_insecure_localhost_urls and host in {"localhost", "127.0.0.1"}:
        pass
    else:
        raise ConfigError(f"endpoint must be https (or http localhost in dev): {url!r}")

    return urlunparse((scheme, parsed.netloc, parsed.path or "", "", "", "")).rstrip("/")


@dataclass(frozen=True)
class PinningServiceConfig:
    name: str
    endpoint: str
    credential: CredentialProvider

    @classmethod
    def create(
        cls,
        name: str,
        endpoint: str,
        credential: CredentialLike,
        *,
        allow_insecure_localhost: bool = False,
    ) -> "PinningServiceConfig":
        n = (name or "").strip()
        if not n:
            raise ConfigError("pinning service name must be non-empty")
        return cls(
            name=n,
            endpoint=normalize_endpoint(endpoint, allow_insecure_localhost_urls=allow_insecure_localhost),
            credential=as_credential_provider(credential),
        )


@dataclass(frozen=True)
class AssetStoreConfig:
    pinning_services: Tuple[PinningServiceConfig, ...] = ()

    # Kubo RPC API
    ipfs_api_url: str = "http://127.0.0.1:5001"
    ipfs_timeout_s: float = 30.0
    cat_timeout_s: float = 60.0

    # Fan-out
    pin_timeout_s: float = 120.0
    max_workers: int = 8
    pin_failure_policy: str = "raise"
    skip_failed_services: bool = False

    uri_scheme: str = DEFAULT_SCHEME

    def __post_init__(self) -> None:
        services = tuple(self.pinning_services)
        object.__setattr__(self, "pinning_services", services)

        names: List[str] = []
        for svc in services:
            if svc.name in names:
                raise ConfigError(f"duplicate pinning service name: {svc.name}")
            names.append(svc.name)

        if self.pin_failure_policy not in PIN_FAILURE_POLICIES:
            raise ConfigError(f"pin_failure_policy must be one of {sorted(PIN_FAILURE_POLICIES)}")
        if int(self.max_workers) < 1:
            raise ConfigError("max_workers must be >= 1")
        for name in ("ipfs_timeout_s", "cat_timeout_s", "pin_timeout_s"):
            if float(getattr(self, name)) <= 0:
                raise ConfigError(f"{name} must be > 0")
        if not self.uri_scheme or "://" in self.uri_scheme:
            raise ConfigError("uri_scheme must be a bare scheme name, e.g. 'ipfs'")

    @property
    def service_names(self) -> Tuple[str, ...]:
        return tuple(s.name for s in self.pinning_services)


class PinningServiceSpec(BaseModel):
    """One entry of ASSETSTORE_PINNING_SERVICES."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    endpoint: str = Field(..., min_length=1)
    access_token: Optional[str] = Field(default=None, description="Literal token")
    access_token_env: Optional[str] = Field(default=None, description="Env var holding the token")

    @model_validator(mode="after")
    def _one_token_source(self) -> "PinningServiceSpec":
        if bool(self.access_token) == bool(self.access_token_env):
            raise ValueError("exactly one of access_token / access_token_env is required")
        return self

    def to_config(self, *, allow_insecure_localhost: bool) -> PinningServiceConfig:
        credential: CredentialLike
        if self.access_token_env:
            credential = EnvCredential(self.access_token_env)
        else:
            credential = str(self.access_token)
        return PinningServiceConfig.create(
            self.name,
            self.endpoint,
            credential,
            allow_insecure_localhost=allow_insecure_localhost,
        )


def parse_pinning_services(raw: str, *, allow_insecure_localhost: bool = False) -> Tuple[PinningServiceConfig, ...]:
    """Parse the JSON array form used by ASSETSTORE_PINNING_SERVICES.

    Expected shape:
      [{"name": "pinata", "endpoint": "https://api.pinata.cloud/psa", "access_token_env": "PINATA_JWT"}, ...]
    """
    s = (raw or "").strip()
    if not s:
        return ()
    try:
        data = json.loads(s)
    except json.JSONDecodeError as e:
        raise ConfigError(f"ASSETSTORE_PINNING_SERVICES is not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise ConfigError("ASSETSTORE_PINNING_SERVICES must be a JSON array")

    out: List[PinningServiceConfig] = []
    for i, item in enumerate(data):
        try:
            spec = PinningServiceSpec.model_validate(item)
        except ValidationError as e:
            raise ConfigError(f"ASSETSTORE_PINNING_SERVICES[{i}]: {e}") from e
        out.append(spec.to_config(allow_insecure_localhost=allow_insecure_localhost))
    return tuple(out)


def load_store_config(extra_services: Iterable[PinningServiceConfig] = ()) -> AssetStoreConfig:
    allow_insecure = _env_bool("ASSETSTORE_ALLOW_INSECURE_LOCALHOST", False)
    services = parse_pinning_services(
        os.environ.get("ASSETSTORE_PINNING_SERVICES", ""),
        allow_insecure_localhost=allow_insecure,
    )
    api_url = (os.environ.get("ASSETSTORE_IPFS_API_URL") or "http://127.0.0.1:5001").strip().rstrip("/")
    return AssetStoreConfig(
        pinning_services=services + tuple(extra_services),
        ipfs_api_url=api_url,
        ipfs_timeout_s=_env_float("ASSETSTORE_IPFS_TIMEOUT_S", 30.0),
        cat_timeout_s=_env_float("ASSETSTORE_CAT_TIMEOUT_S", 60.0),
        pin_timeout_s=_env_float("ASSETSTORE_PIN_TIMEOUT_S", 120.0),
        max_workers=_env_int("ASSETSTORE_MAX_WORKERS", 8),
        pin_failure_policy=(os.environ.get("ASSETSTORE_PIN_FAILURE_POLICY") or "raise").strip().lower(),
        skip_failed_services=_env_bool("ASSETSTORE_SKIP_FAILED_SERVICES", False),
        uri_scheme=(os.environ.get("ASSETSTORE_URI_SCHEME") or DEFAULT_SCHEME).strip().lower(),
    )
