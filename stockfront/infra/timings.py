from __future__ import annotations
import statistics
import time
from collections import defaultdict
from typing import DefaultDict, Dict, List

# kind -> durations in seconds. Written from the event loop thread only.
_SAMPLES: DefaultDict[str, List[float]] = defaultdict(list)


def now_ts() -> float:
    return time.perf_counter()


def record_timing(kind: str, seconds: float) -> None:
    _SAMPLES[kind].append(float(seconds))


class timeit:
    """Record how long the block took under `kind`.

        async with timeit("gateway.status"):
            await gateway.query_status(...)

    A block left by an exception is recorded under `<kind>.error` instead,
    so slow failures do not hide inside the success numbers.
    """
    __slots__ = ("_kind", "_t0")

    def __init__(self, kind: str):
        self._kind = kind
        self._t0 = 0.0

    async def __aenter__(self):
        self._t0 = now_ts()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        kind = self._kind if exc_type is None else f"{self._kind}.error"
        record_timing(kind, now_ts() - self._t0)


def _summary(values: List[float]) -> Dict[str, float]:
    return {
        "n": len(values),
        "mean": statistics.fmean(values),
        "std": statistics.stdev(values) if len(values) > 1 else 0.0,
        "max": max(values),
    }


def snapshot() -> Dict[str, Dict[str, float]]:
    """Per-kind aggregates, computed on read: n, mean, std, max (seconds)."""
    return {kind: _summary(vals) for kind, vals in _SAMPLES.items() if vals}


def reset() -> None:
    _SAMPLES.clear()
