from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from assetstore.config import PIN_FAILURE_POLICIES, PinningServiceConfig
from assetstore.errors import AggregatePinError, BackendError, BackendTimeoutError, ConfigError, StoreClosedError
from assetstore.log import log_event
from assetstore.metrics import inc_counter, set_gauge
from assetstore.node import ContentNode

log = logging.getLogger("assetstore.pinning")

Json = Dict[str, Any]

STATUS_ALREADY_PINNED = "already_pinned"
STATUS_PINNED = "pinned"
STATUS_FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PinOutcome:
    service: str
    cid: str
    status: str
    error: Optional[BackendError] = None

    @property
    def ok(self) -> bool:
        return self.status != STATUS_FAILED

    def to_dict(self) -> Json:
        out: Json = {"service": self.service, "cid": self.cid, "status": self.status}
        if self.error is not None:
            out["error"] = {"op": self.error.op, "message": self.error.message}
        return out


@dataclass(frozen=True)
class PinReport:
    """Per-backend outcomes of one fan-out pin."""

    cid: str
    outcomes: Tuple[PinOutcome, ...] = ()

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def failed(self) -> List[PinOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def pinned_services(self) -> List[str]:
        return [o.service for o in self.outcomes if o.ok]

    def outcome(self, service: str) -> Optional[PinOutcome]:
        for o in self.outcomes:
            if o.service == service:
                return o
        return None

    def to_dict(self) -> Json:
        return {
            "cid": self.cid,
            "ok": self.ok,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class PinCoordinator:
    """Keeps a CID pinned on every registered remote pinning service.

    Guarantees:
      - pin() contacts every registered service, concurrently, and returns
        only after each one has settled or hit pin_timeout_s.
      - A service that already lists the CID as pinned gets no pin request.
      - Concurrent pin() calls for the same (cid, service) share a single
        outstanding check-then-pin.
      - Per-service failures are collected into a PinReport; with the "raise"
        policy any failure surfaces as AggregatePinError after all settle.

    Each service gets its own worker pool of max_workers threads, so calls
    stuck on one service never occupy the workers of another.

    No local pin ledger is kept: each check asks the service.
    """

    def __init__(
        self,
        node: ContentNode,
        *,
        pin_timeout_s: float = 120.0,
        max_workers: int = 8,
        failure_policy: str = "raise",
        skip_failed_services: bool = False,
    ) -> None:
        if failure_policy not in PIN_FAILURE_POLICIES:
            raise ConfigError(f"failure_policy must be one of {sorted(PIN_FAILURE_POLICIES)}")
        self.node = node
        self.pin_timeout_s = float(pin_timeout_s)
        self.max_workers = int(max_workers)
        self.failure_policy = failure_policy
        self.skip_failed_services = bool(skip_failed_services)

        self._services: List[str] = []
        self._pools: Dict[str, ThreadPoolExecutor] = {}
        self._inflight: Dict[Tuple[str, str], Future] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def services(self) -> Tuple[str, ...]:
        return tuple(self._services)

    # ----------------------------
    # Registration
    # ----------------------------

    def register_service(self, cfg: PinningServiceConfig) -> None:
        """Register one pinning service with the node.

        The credential is resolved here, so callable credentials are evaluated
        once per registration. A service the node already knows under the same
        name is replaced, which rotates its key.
        """
        if self._closed:
            raise StoreClosedError("pin coordinator is closed")
        if cfg.name in self._services:
            raise ConfigError(f"pinning service already registered: {cfg.name}")

        try:
            key = cfg.credential.resolve()
            if cfg.name in self.node.remote_services():
                self.node.remove_remote_service(cfg.name)
            self.node.add_remote_service(cfg.name, cfg.endpoint, key)
        except Exception as e:
            raise BackendError(service=cfg.name, op="register", message=str(e)) from e

        with self._lock:
            self._pools[cfg.name] = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix=f"assetstore-pin-{cfg.name}",
            )
            self._services.append(cfg.name)
        set_gauge("pinning_services_registered", len(self._services))
        log_event(log, "service_registered", service=cfg.name, endpoint=cfg.endpoint)

    def register_all(self, configs: Iterable[PinningServiceConfig]) -> Tuple[str, ...]:
        for cfg in configs:
            try:
                self.register_service(cfg)
            except BackendError as e:
                if not self.skip_failed_services:
                    raise
                log_event(
                    log,
                    "service_skipped",
                    level=logging.WARNING,
                    service=cfg.name,
                    error=e.message,
                )
        return self.services

    # ----------------------------
    # Queries
    # ----------------------------

    def is_pinned(self, cid: str, service: str) -> bool:
        try:
            for _ in self.node.remote_pin_ls(cid, service):
                return True
            return False
        except Exception as e:
            raise BackendError(service=service, op="list", message=str(e), cid=cid) from e

    # ----------------------------
    # Fan-out
    # ----------------------------

    def _pin_if_unpinned(self, cid: str, service: str) -> PinOutcome:
        try:
            if self.is_pinned(cid, service):
                inc_counter("pins_already_present", service=service)
                log_event(log, "pin_already_present", cid=cid, service=service)
                return PinOutcome(service=service, cid=cid, status=STATUS_ALREADY_PINNED)

            inc_counter("pin_requests_sent", service=service)
            try:
                self.node.remote_pin_add(cid, service, background=False, timeout_s=self.pin_timeout_s)
            except Exception as e:
                raise BackendError(service=service, op="pin", message=str(e), cid=cid) from e
        except BackendError as e:
            log_event(log, "pin_backend_failed", level=logging.WARNING, cid=cid, service=service, op=e.op, error=e.message)
            return PinOutcome(service=service, cid=cid, status=STATUS_FAILED, error=e)

        log_event(log, "pin_confirmed", cid=cid, service=service)
        return PinOutcome(service=service, cid=cid, status=STATUS_PINNED)

    def _forget(self, key: Tuple[str, str], fut: Future) -> None:
        with self._lock:
            if self._inflight.get(key) is fut:
                del self._inflight[key]

    def _submit(self, cid: str, service: str) -> Future:
        key = (cid, service)
        with self._lock:
            if self._closed:
                raise StoreClosedError("pin coordinator is closed")
            fut = self._inflight.get(key)
            if fut is not None:
                inc_counter("pins_coalesced", service=service)
                return fut
            fut = self._pools[service].submit(self._pin_if_unpinned, cid, service)
            self._inflight[key] = fut
        fut.add_done_callback(lambda f, key=key: self._forget(key, f))
        return fut

    def _failed(self, cid: str, service: str, err: BackendError) -> PinOutcome:
        return PinOutcome(service=service, cid=cid, status=STATUS_FAILED, error=err)

    def pin(self, cid: str) -> PinReport:
        services = self.services
        if not services:
            log_event(log, "pin_skipped_no_services", level=logging.WARNING, cid=cid)
            return PinReport(cid=cid)

        pending = [(svc, self._submit(cid, svc)) for svc in services]

        # All requests run in parallel, so one shared deadline bounds each.
        deadline = time.monotonic() + self.pin_timeout_s
        outcomes: List[PinOutcome] = []
        for svc, fut in pending:
            try:
                outcomes.append(fut.result(timeout=max(0.0, deadline - time.monotonic())))
            except FutureTimeout:
                err = BackendTimeoutError(
                    service=svc,
                    op="pin",
                    message=f"timed out after {self.pin_timeout_s}s",
                    cid=cid,
                    timeout_s=self.pin_timeout_s,
                )
                inc_counter("pin_timeouts", service=svc)
                log_event(log, "pin_backend_timeout", level=logging.WARNING, cid=cid, service=svc, timeout_s=self.pin_timeout_s)
                outcomes.append(self._failed(cid, svc, err))
            except CancelledError:
                # close() dropped the queued request before it ran.
                err = BackendError(service=svc, op="pin", message="cancelled: pin coordinator closed", cid=cid)
                log_event(log, "pin_cancelled", level=logging.WARNING, cid=cid, service=svc)
                outcomes.append(self._failed(cid, svc, err))

        report = PinReport(cid=cid, outcomes=tuple(outcomes))
        if report.ok:
            log_event(log, "pinned", cid=cid, services=report.pinned_services)
            return report

        for o in report.failed:
            inc_counter("pin_failures", service=o.service)
        log_event(
            log,
            "pin_incomplete",
            level=logging.ERROR,
            cid=cid,
            pinned=report.pinned_services,
            failed=[o.service for o in report.failed],
            policy=self.failure_policy,
        )
        if self.failure_policy == "raise":
            raise AggregatePinError(cid=cid, report=report)
        return report

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            pools = list(self._pools.values())
        for pool in pools:
            pool.shutdown(wait=False, cancel_futures=True)
