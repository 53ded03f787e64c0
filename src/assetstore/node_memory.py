from __future__ import annotations

import base64
import hashlib
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set

from assetstore.errors import ContentNotFoundError, NodeError
from assetstore.node import PinRecord


def raw_cid_v1(data: bytes) -> str:
    """CIDv1, raw codec, sha2-256, base32 multibase ("bafkrei...")."""
    digest = hashlib.sha256(data).digest()
    raw = bytes([0x01, 0x55, 0x12, 0x20]) + digest
    return "b" + base64.b32encode(raw).decode("ascii").lower().rstrip("=")


@dataclass
class RemoteService:
    name: str
    endpoint: str
    key: str
    pins: Set[str] = field(default_factory=set)

    ls_calls: int = 0
    add_calls: int = 0
    add_timeouts: List[Optional[float]] = field(default_factory=list)

    # Failure injection
    fail_ops: Set[str] = field(default_factory=set)  # {"list", "add"}
    gate: Optional[threading.Event] = None
    gate_timeout_s: float = 10.0


class InMemoryNode:
    """
    Minimal in-process content node used for unit tests.

    - Does not open sockets
    - Derives real CIDv1 strings from content
    - Simulates remote pinning services, with call counters and
      failure/latency injection, behind the same surface KuboNode exposes:
        start(), stop(), add(), cat(), remote_services(), add_remote_service(),
        remove_remote_service(), remote_pin_ls(), remote_pin_add()
    """

    def __init__(self, *, chunk_size: int = 1024) -> None:
        self._lock = threading.Lock()
        self._blobs: Dict[str, bytes] = {}
        self._services: Dict[str, RemoteService] = {}
        self.chunk_size = int(chunk_size)
        self.started = False
        self.start_calls = 0
        self.add_calls = 0
        self.cat_paths: List[str] = []

        self.fail_start: Optional[Exception] = None
        self.reject_services: Set[str] = set()
        self.start_delay_s = 0.0

    def start(self) -> None:
        self.start_calls += 1
        if self.start_delay_s:
            threading.Event().wait(self.start_delay_s)
        if self.fail_start is not None:
            raise self.fail_start
        self.started = True

    def stop(self) -> None:
        self.started = False

    def _require_started(self) -> None:
        if not self.started:
            raise NodeError("memory", "node_not_started")

    def add(self, name: str, data: bytes) -> str:
        self._require_started()
        cid = raw_cid_v1(bytes(data))
        with self._lock:
            self.add_calls += 1
            self._blobs[cid] = bytes(data)
        return cid

    def cat(self, path: str) -> Iterator[bytes]:
        self._require_started()
        cid, _, sub = path.partition("/")
        with self._lock:
            self.cat_paths.append(path)
            data = self._blobs.get(cid)
        if data is None:
            raise ContentNotFoundError(cid=cid)
        if sub:
            # Raw blobs have no links to follow.
            raise ContentNotFoundError(cid=path, reason=f"no link named {sub!r}")
        for i in range(0, len(data), self.chunk_size):
            yield data[i : i + self.chunk_size]

    # ---- remote pinning ----

    def remote_services(self) -> List[str]:
        with self._lock:
            return list(self._services.keys())

    def add_remote_service(self, name: str, endpoint: str, key: str) -> None:
        self._require_started()
        if name in self.reject_services:
            raise NodeError("memory", f"service_rejected:{name}", 400)
        with self._lock:
            if name in self._services:
                raise NodeError("memory", f"service already present: {name}", 500)
            self._services[name] = RemoteService(name=name, endpoint=endpoint, key=key)

    def remove_remote_service(self, name: str) -> None:
        with self._lock:
            self._services.pop(name, None)

    def _svc(self, service: str) -> RemoteService:
        with self._lock:
            svc = self._services.get(service)
        if svc is None:
            raise NodeError("memory", f"unknown service: {service}", 500)
        return svc

    def remote_pin_ls(self, cid: str, service: str) -> Iterator[PinRecord]:
        svc = self._svc(service)
        with self._lock:
            svc.ls_calls += 1
            fail = "list" in svc.fail_ops
            pinned = cid in svc.pins
        if fail:
            raise NodeError("memory", f"list_failed:{service}", 502)
        if pinned:
            yield PinRecord(cid=cid, status="pinned")

    def remote_pin_add(
        self, cid: str, service: str, *, background: bool = False, name: str = "", timeout_s: Optional[float] = None
    ) -> PinRecord:
        svc = self._svc(service)
        with self._lock:
            svc.add_calls += 1
            svc.add_timeouts.append(timeout_s)
            fail = "add" in svc.fail_ops
            gate = svc.gate
        if gate is not None:
            gate.wait(svc.gate_timeout_s)
        if fail:
            raise NodeError("memory", f"pin_failed:{service}", 502)
        with self._lock:
            svc.pins.add(cid)
        return PinRecord(cid=cid, status="pinned", name=name)

    # ---- helpers for tests / harness ----

    def service(self, name: str) -> RemoteService:
        return self._svc(name)

    def has_content(self, cid: str) -> bool:
        with self._lock:
            return cid in self._blobs
