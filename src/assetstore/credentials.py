from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Callable, Protocol, Union, runtime_checkable

from assetstore.errors import ConfigError


@runtime_checkable
class CredentialProvider(Protocol):
    """Anything that can hand back a pinning-service access token on demand."""

    def resolve(self) -> str:
        ...


@dataclass(frozen=True)
class StaticCredential:
    secret: str = field(repr=False)

    def resolve(self) -> str:
        return self.secret


@dataclass(frozen=True)
class CallableCredential:
    """Wraps a zero-argument callable, evaluated at registration time.

    Lets callers hand in short-lived or rotating tokens.
    """

    factory: Callable[[], str]

    def resolve(self) -> str:
        v = self.factory()
        if not isinstance(v, str) or not v.strip():
            raise ConfigError("credential factory returned an empty token")
        return v


@dataclass(frozen=True)
class EnvCredential:
    """Reads the token from an environment variable when resolved."""

    var: str

    def resolve(self) -> str:
        v = os.environ.get(self.var)
        if v is None or not v.strip():
            raise ConfigError(f"credential env var {self.var} is not set")
        return v.strip()


CredentialLike = Union[str, Callable[[], str], CredentialProvider]


def as_credential_provider(value: CredentialLike) -> CredentialProvider:
    if isinstance(value, CredentialProvider):
        return value
    if isinstance(value, str):
        if not value.strip():
            raise ConfigError("access token must be a non-empty string")
        return StaticCredential(value)
    if callable(value):
        return CallableCredential(value)
    raise ConfigError(f"unsupported credential type: {type(value).__name__}")
