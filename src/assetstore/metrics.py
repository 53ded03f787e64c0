from __future__ import annotations

import os
import threading
from typing import Dict, List, Optional, Tuple

# (metric name, pinning service or "" for store-wide series)
Series = Tuple[str, str]

_lock = threading.Lock()
_counters: Dict[Series, int] = {}
_gauges: Dict[Series, int] = {}


def metrics_enabled() -> bool:
    v = (os.environ.get("ASSETSTORE_METRICS_ENABLED") or "").strip().lower()
    return v in {"1", "true", "yes", "y", "on"}


def inc_counter(name: str, value: int = 1, *, service: Optional[str] = None) -> None:
    with _lock:
        key = (name, service or "")
        _counters[key] = _counters.get(key, 0) + int(value)


def set_gauge(name: str, value: int, *, service: Optional[str] = None) -> None:
    with _lock:
        _gauges[(name, service or "")] = int(value)


def counter(name: str, service: Optional[str] = None) -> int:
    """Current value for one service, or the total across services when none is given."""
    with _lock:
        if service is not None:
            return _counters.get((name, service), 0)
        return sum(v for (n, _), v in _counters.items() if n == name)


def reset() -> None:
    with _lock:
        _counters.clear()
        _gauges.clear()


def _series_lines(kind: str, prefix: str, values: Dict[Series, int]) -> List[str]:
    lines: List[str] = []
    for name in sorted({n for n, _ in values}):
        lines.append(f"# TYPE {prefix}{name} {kind}")
        for (n, svc), v in sorted(values.items()):
            if n != name:
                continue
            label = f'{{service="{svc}"}}' if svc else ""
            lines.append(f"{prefix}{name}{label} {v}")
    return lines


def format_prometheus(prefix: str = "assetstore_") -> str:
    """Prometheus exposition text; per-service series carry a `service` label."""
    with _lock:
        counters = dict(_counters)
        gauges = dict(_gauges)
    lines = _series_lines("counter", prefix, counters) + _series_lines("gauge", prefix, gauges)
    return "\n".join(lines) + "\n"
