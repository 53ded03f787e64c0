from __future__ import annotations

import enum
import logging
import threading
from typing import Callable, Optional

from assetstore.errors import InitializationError, StoreClosedError
from assetstore.log import log_event

log = logging.getLogger("assetstore.lifecycle")


class LifecycleState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


class LifecycleGuard:
    """One-shot initializer shared by every public store operation.

    UNINITIALIZED -> INITIALIZING -> READY | FAILED, and CLOSED after close().

    The initializer runs at most once. Callers arriving while it runs block on
    the lock and then observe the final state. A failure is sticky: later
    callers get an InitializationError chained to the original cause.
    """

    def __init__(self, name: str = "store") -> None:
        self.name = name
        self._lock = threading.Lock()
        self._state = LifecycleState.UNINITIALIZED
        self._cause: Optional[BaseException] = None

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def cause(self) -> Optional[BaseException]:
        return self._cause

    def _check_terminal(self) -> bool:
        if self._state is LifecycleState.READY:
            return True
        if self._state is LifecycleState.CLOSED:
            raise StoreClosedError(f"{self.name} is closed")
        if self._state is LifecycleState.FAILED:
            raise InitializationError(f"{self.name} failed to initialize: {self._cause}") from self._cause
        return False

    def ensure(self, initializer: Callable[[], None]) -> None:
        # Lock-free fast path once READY; state only moves forward.
        if self._state is LifecycleState.READY:
            return

        with self._lock:
            if self._check_terminal():
                return

            self._state = LifecycleState.INITIALIZING
            log_event(log, "init_started", target=self.name)
            try:
                initializer()
            except Exception as e:
                self._state = LifecycleState.FAILED
                self._cause = e
                log_event(log, "init_failed", level=logging.ERROR, target=self.name, error=str(e), error_type=type(e).__name__)
                if isinstance(e, InitializationError):
                    raise
                raise InitializationError(f"{self.name} failed to initialize: {e}") from e

            self._state = LifecycleState.READY
            log_event(log, "init_ready", target=self.name)

    def close(self, finalizer: Optional[Callable[[], None]] = None) -> bool:
        """Move to CLOSED. Runs `finalizer` only if initialization had succeeded.

        Returns False when already closed.
        """
        with self._lock:
            if self._state is LifecycleState.CLOSED:
                return False
            was_ready = self._state is LifecycleState.READY
            self._state = LifecycleState.CLOSED
        if was_ready and finalizer is not None:
            finalizer()
        return True
