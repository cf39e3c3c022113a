from __future__ import annotations

import threading
from collections import defaultdict
from typing import Dict


_lock = threading.Lock()
_counters: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
_latency_sum: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
_latency_count: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))


def increment(metric: str, label: str, value: int = 1) -> None:
    with _lock:
        _counters[metric][label] += value


def observe_latency(metric: str, label: str, duration_seconds: float) -> None:
    with _lock:
        _latency_sum[metric][label] += duration_seconds
        _latency_count[metric][label] += 1


def snapshot() -> Dict[str, Dict[str, Dict[str, float]]]:
    """Counters plus per-label latency ``count`` / ``sum`` / ``avg`` in seconds."""
    with _lock:
        counters_copy = {metric: dict(labels) for metric, labels in _counters.items()}
        timers_copy = {
            metric: {
                label: {
                    "count": _latency_count[metric][label],
                    "sum": round(total, 6),
                    "avg": round(total / max(_latency_count[metric][label], 1), 6),
                }
                for label, total in labels.items()
            }
            for metric, labels in _latency_sum.items()
        }
    return {"counters": counters_copy, "timers": timers_copy}

