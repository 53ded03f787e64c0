from __future__ import annotations

import json

import pytest

from assetstore.config import AssetStoreConfig, PinningServiceConfig, load_store_config, normalize_endpoint, parse_pinning_services
from assetstore.credentials import (
    CallableCredential,
    EnvCredential,
    StaticCredential,
    as_credential_provider,
)
from assetstore.errors import ConfigError


def test_literal_and_callable_credentials_share_one_interface() -> None:
    calls = []

    def _token() -> str:
        calls.append(1)
        return f"tok-{len(calls)}"

    lit = as_credential_provider("secret")
    fn = as_credential_provider(_token)

    assert isinstance(lit, StaticCredential)
    assert isinstance(fn, CallableCredential)
    assert lit.resolve() == "secret"

    # Callable credentials are evaluated lazily, on every resolve.
    assert calls == []
    assert fn.resolve() == "tok-1"
    assert fn.resolve() == "tok-2"


def test_static_credential_repr_hides_secret() -> None:
    assert "hunter2" not in repr(StaticCredential("hunter2"))


def test_credential_rejects_empty_values() -> None:
    with pytest.raises(ConfigError):
        as_credential_provider("  ")
    with pytest.raises(ConfigError):
        CallableCredential(lambda: "").resolve()
    with pytest.raises(ConfigError):
        as_credential_provider(42)  # type: ignore[arg-type]


def test_env_credential_reads_at_resolve_time(monkeypatch: pytest.MonkeyPatch) -> None:
    cred = EnvCredential("PIN_TOKEN_TEST")
    monkeypatch.delenv("PIN_TOKEN_TEST", raising=False)
    with pytest.raises(ConfigError):
        cred.resolve()
    monkeypatch.setenv("PIN_TOKEN_TEST", " abc ")
    assert cred.resolve() == "abc"


def test_normalize_endpoint() -> None:
    assert normalize_endpoint("https://api.pinata.cloud/psa/", allow_insecure_localhost_urls=False) == "https://api.pinata.cloud/psa"
    assert normalize_endpoint("http://127.0.0.1:9097", allow_insecure_localhost_urls=True) == "http://127.0.0.1:9097"

    with pytest.raises(ConfigError):
        normalize_endpoint("http://pins.example.com", allow_insecure_localhost_urls=True)
    with pytest.raises(ConfigError):
        normalize_endpoint("http://localhost:9097", allow_insecure_localhost_urls=False)
    with pytest.raises(ConfigError):
        normalize_endpoint("https://pins.example.com/?x=1", allow_insecure_localhost_urls=False)
    with pytest.raises(ConfigError):
        normalize_endpoint("", allow_insecure_localhost_urls=False)


def test_service_names_must_be_unique() -> None:
    a = PinningServiceConfig.create("pinata", "https://api.pinata.cloud/psa", "k1")
    b = PinningServiceConfig.create("pinata", "https://other.example.com/psa", "k2")
    with pytest.raises(ConfigError):
        AssetStoreConfig(pinning_services=(a, b))


def test_config_rejects_bad_policy_and_timeouts() -> None:
    with pytest.raises(ConfigError):
        AssetStoreConfig(pin_failure_policy="ignore")
    with pytest.raises(ConfigError):
        AssetStoreConfig(pin_timeout_s=0)
    with pytest.raises(ConfigError):
        AssetStoreConfig(max_workers=0)
    with pytest.raises(ConfigError):
        AssetStoreConfig(uri_scheme="ipfs://")


def test_parse_pinning_services_json() -> None:
    raw = json.dumps(
        [
            {"name": "pinata", "endpoint": "https://api.pinata.cloud/psa", "access_token": "jwt"},
            {"name": "filebase", "endpoint": "https://api.filebase.io/v1/ipfs", "access_token_env": "FILEBASE_TOKEN"},
        ]
    )
    services = parse_pinning_services(raw)
    assert [s.name for s in services] == ["pinata", "filebase"]
    assert isinstance(services[0].credential, StaticCredential)
    assert isinstance(services[1].credential, EnvCredential)
    assert services[1].credential.var == "FILEBASE_TOKEN"


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        json.dumps({"name": "x"}),
        json.dumps([{"name": "x", "endpoint": "https://x.example.com"}]),
        json.dumps([{"name": "x", "endpoint": "https://x.example.com", "access_token": "a", "access_token_env": "B"}]),
        json.dumps([{"name": "x", "endpoint": "https://x.example.com", "access_token": "a", "extra": 1}]),
    ],
)
def test_parse_pinning_services_rejects_bad_shapes(raw: str) -> None:
    with pytest.raises(ConfigError):
        parse_pinning_services(raw)


def test_load_store_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ASSETSTORE_IPFS_API_URL", "http://10.0.0.5:5001/")
    monkeypatch.setenv("ASSETSTORE_PIN_TIMEOUT_S", "5.5")
    monkeypatch.setenv("ASSETSTORE_MAX_WORKERS", "3")
    monkeypatch.setenv("ASSETSTORE_PIN_FAILURE_POLICY", "LOG")
    monkeypatch.setenv("ASSETSTORE_SKIP_FAILED_SERVICES", "yes")
    monkeypatch.setenv("ASSETSTORE_ALLOW_INSECURE_LOCALHOST", "1")
    monkeypatch.setenv(
        "ASSETSTORE_PINNING_SERVICES",
        json.dumps([{"name": "local", "endpoint": "http://localhost:9097", "access_token": "t"}]),
    )

    cfg = load_store_config()
    assert cfg.ipfs_api_url == "http://10.0.0.5:5001"
    assert cfg.pin_timeout_s == 5.5
    assert cfg.max_workers == 3
    assert cfg.pin_failure_policy == "log"
    assert cfg.skip_failed_services is True
    assert cfg.service_names == ("local",)


def test_load_store_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for k in [
        "ASSETSTORE_IPFS_API_URL",
        "ASSETSTORE_PINNING_SERVICES",
        "ASSETSTORE_PIN_TIMEOUT_S",
        "ASSETSTORE_MAX_WORKERS",
        "ASSETSTORE_PIN_FAILURE_POLICY",
        "ASSETSTORE_SKIP_FAILED_SERVICES",
    ]:
        monkeypatch.delenv(k, raising=False)

    cfg = load_store_config()
    assert cfg.ipfs_api_url == "http://127.0.0.1:5001"
    assert cfg.pinning_services == ()
    assert cfg.pin_failure_policy == "raise"
    assert cfg.skip_failed_services is False


def test_load_store_config_rejects_non_numeric(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ASSETSTORE_MAX_WORKERS", "many")
    with pytest.raises(ConfigError):
        load_store_config()
