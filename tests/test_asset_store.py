from __future__ import annotations

import base64
import threading
from pathlib import Path
from typing import Optional, Tuple

import pytest

from assetstore.config import AssetStoreConfig, PinningServiceConfig
from assetstore.errors import (
    AggregatePinError,
    AssetIOError,
    ContentNotFoundError,
    InitializationError,
    InvalidCidError,
    NodeError,
    StoreClosedError,
)
from assetstore.lifecycle import LifecycleState
from assetstore.node_memory import InMemoryNode, raw_cid_v1
from assetstore.store import AssetStore, make_asset_store

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + bytes(range(256)) * 8


def _mk_store(*services: str, node: Optional[InMemoryNode] = None, **cfg) -> Tuple[AssetStore, InMemoryNode]:
    node = node or InMemoryNode()
    config = AssetStoreConfig(
        pinning_services=tuple(
            PinningServiceConfig.create(n, f"https://{n.lower()}.pins.example/psa", f"key-{n}") for n in services
        ),
        **cfg,
    )
    return AssetStore(config, node=node), node


def test_store_is_lazy_until_first_use() -> None:
    store, node = _mk_store("A")
    assert store.state is LifecycleState.UNINITIALIZED
    assert node.start_calls == 0

    store.get_string(store.add_asset("hello.txt", "hi"))
    assert store.state is LifecycleState.READY
    assert node.start_calls == 1
    store.close()


def test_make_asset_store_initializes_eagerly() -> None:
    store = make_asset_store(node=InMemoryNode())
    try:
        assert store.state is LifecycleState.READY
        assert store.services == ()
    finally:
        store.close()


def test_same_bytes_same_cid() -> None:
    store, _ = _mk_store()
    with store:
        c1 = store.add_asset("a.bin", PNG_BYTES)
        c2 = store.add_asset("b.bin", PNG_BYTES)
        c3 = store.add_asset("c.bin", PNG_BYTES + b"!")
    assert c1 == c2
    assert c1 != c3


def test_round_trip_and_views() -> None:
    store, _ = _mk_store()
    with store:
        cid = store.add_asset("cat.png", PNG_BYTES)
        assert store.get(cid) == PNG_BYTES
        assert store.get_base64_string(cid) == base64.b64encode(PNG_BYTES).decode("ascii")

        text_cid = store.add_asset("note.txt", "héllo wörld")
        assert store.get_string(text_cid) == "héllo wörld"


def test_uri_and_bare_cid_resolve_to_same_content() -> None:
    store, _ = _mk_store()
    with store:
        cid = store.add_asset("cat.png", PNG_BYTES)
        uri = store.asset_uri(cid)
        assert uri == f"ipfs://{cid}"
        assert store.get(uri) == store.get(cid) == PNG_BYTES


def test_add_asset_reads_file_when_content_missing(tmp_path: Path) -> None:
    p = tmp_path / "cat.png"
    p.write_bytes(PNG_BYTES)

    store, _ = _mk_store()
    with store:
        cid = store.add_asset(str(p))
        assert cid == raw_cid_v1(PNG_BYTES)
        assert store.get(cid) == PNG_BYTES


def test_add_asset_missing_file(tmp_path: Path) -> None:
    store, node = _mk_store()
    with store:
        with pytest.raises(AssetIOError) as e:
            store.add_asset(str(tmp_path / "missing.png"))
        assert e.value.reason == "not_found"
        assert node.add_calls == 0

        with pytest.raises(AssetIOError):
            store.add_asset(str(tmp_path))


def test_get_unknown_and_malformed() -> None:
    store, _ = _mk_store()
    with store:
        with pytest.raises(ContentNotFoundError):
            store.get(raw_cid_v1(b"never stored"))
        with pytest.raises(InvalidCidError):
            store.get("ipfs://definitely-not-a-cid")


def test_add_asset_pins_everywhere_before_returning() -> None:
    store, node = _mk_store("A", "B")
    with store:
        cid = store.add_asset("cat.png", PNG_BYTES)

        assert store.is_pinned(cid, "A") is True
        assert store.is_pinned(cid, "B") is True

        store.pin(cid)
        assert node.service("A").add_calls == 1
        assert node.service("B").add_calls == 1


def test_add_asset_surfaces_partial_pin_failure() -> None:
    store, node = _mk_store("A", "B")
    with store:
        store.ensure_initialized()
        node.service("B").fail_ops.add("add")

        with pytest.raises(AggregatePinError) as e:
            store.add_asset("cat.png", PNG_BYTES)

        cid = e.value.cid
        # Content is on the node and the healthy service even though the call failed.
        assert node.has_content(cid)
        assert store.is_pinned(cid, "A") is True
        assert store.is_pinned(cid, "B") is False


def test_add_asset_with_log_policy_returns_cid() -> None:
    store, node = _mk_store("A", "B", pin_failure_policy="log")
    with store:
        store.ensure_initialized()
        node.service("B").fail_ops.add("add")
        cid = store.add_asset("cat.png", PNG_BYTES)
        assert store.is_pinned(cid, "A") is True


def test_node_start_failure_poisons_store() -> None:
    node = InMemoryNode()
    node.fail_start = NodeError("/api/v0/id", "connection refused")
    store, _ = _mk_store("A", node=node)

    with pytest.raises(InitializationError):
        store.add_asset("cat.png", PNG_BYTES)
    with pytest.raises(InitializationError):
        store.get(raw_cid_v1(PNG_BYTES))
    with pytest.raises(InitializationError):
        store.pin(raw_cid_v1(PNG_BYTES))

    assert node.start_calls == 1
    assert store.state is LifecycleState.FAILED
    store.close()


def test_registration_failure_is_fatal_by_default() -> None:
    node = InMemoryNode()
    node.reject_services.add("B")
    store, _ = _mk_store("A", "B", node=node)

    with pytest.raises(InitializationError) as e:
        store.add_asset("cat.png", PNG_BYTES)
    assert "B" in str(e.value.__cause__)
    store.close()


def test_registration_failure_can_degrade() -> None:
    node = InMemoryNode()
    node.reject_services.add("B")
    store, _ = _mk_store("A", "B", "C", node=node, skip_failed_services=True)

    with store:
        cid = store.add_asset("cat.png", PNG_BYTES)
        assert store.services == ("A", "C")
        assert store.is_pinned(cid, "A") is True
        assert store.is_pinned(cid, "C") is True


def test_concurrent_first_calls_initialize_once() -> None:
    node = InMemoryNode()
    node.start_delay_s = 0.05
    store, _ = _mk_store("A", "B", node=node)

    barrier = threading.Barrier(6)
    cids = []
    errors = []

    def _add(i: int) -> None:
        barrier.wait()
        try:
            cids.append(store.add_asset(f"{i}.bin", b"payload"))
        except Exception as e:  # pragma: no cover
            errors.append(e)

    threads = [threading.Thread(target=_add, args=(i,)) for i in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    assert errors == []
    assert node.start_calls == 1
    assert store.services == ("A", "B")
    assert len(set(cids)) == 1
    store.close()


def test_closed_store_rejects_calls() -> None:
    store, node = _mk_store()
    cid = store.add_asset("x.bin", b"x")
    store.close()
    assert node.started is False
    with pytest.raises(StoreClosedError):
        store.get(cid)


def test_two_backend_scenario() -> None:
    store, node = _mk_store("A", "B")
    with store:
        x = store.add_asset("cat.png", PNG_BYTES)

        assert store.is_pinned(x, "A") is True
        assert store.is_pinned(x, "B") is True

        before = {n: node.service(n).add_calls for n in ["A", "B"]}
        store.pin(x)
        after = {n: node.service(n).add_calls for n in ["A", "B"]}
        assert before == after == {"A": 1, "B": 1}


def test_get_passes_sub_path_to_node() -> None:
    store, node = _mk_store()
    with store:
        cid = store.add_asset("cat.png", PNG_BYTES)

        # A raw blob has no links, so a sub-path into it resolves to nothing.
        with pytest.raises(ContentNotFoundError):
            store.get(f"ipfs://{cid}/thumbs/small.png")
        assert node.cat_paths[-1] == f"{cid}/thumbs/small.png"

        assert store.get(f"ipfs://{cid}/") == PNG_BYTES
        assert node.cat_paths[-1] == cid

        with pytest.raises(InvalidCidError):
            store.get("ipfs://not-a-cid/thumbs/small.png")


def test_empty_asset_round_trips() -> None:
    store, _ = _mk_store("A")
    with store:
        cid = store.add_asset("empty.bin", b"")
        assert cid == raw_cid_v1(b"")
        assert store.get(cid) == b""
        assert store.is_pinned(cid, "A") is True


def test_close_stops_pinning() -> None:
    store, _ = _mk_store("A")
    cid = store.add_asset("a.bin", b"a")
    store.close()
    with pytest.raises(StoreClosedError):
        store.pin(cid)
    with pytest.raises(StoreClosedError):
        store.pins.pin(cid)
