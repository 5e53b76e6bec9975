"""Thread-safe in-memory application metrics collector."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

_RELEASE_SOURCES = ("configured", "remote", "cache", "failure")
_RXNORM_OUTCOMES = ("ok", "empty", "failure")


@dataclass
class MetricsCollector:
    """Collects counters and latency samples for observability.

    Thread-safe via a single ``threading.Lock``; coverage scans run in
    worker threads and report from there.  The latency list is bounded at
    ``_MAX_LATENCY_SAMPLES``; when exceeded it is halved by keeping only
    the most-recent entries.
    """

    _MAX_LATENCY_SAMPLES: int = field(default=10_000, repr=False)

    # HTTP
    total_requests: int = field(default=0, init=False)
    status_codes: dict[int, int] = field(default_factory=dict, init=False)

    # Formulary
    searches: int = field(default=0, init=False)
    short_circuits: int = field(default=0, init=False)
    rows_scanned: int = field(default=0, init=False)
    dataset_hits: int = field(default=0, init=False)
    dataset_misses: int = field(default=0, init=False)
    dataset_reload_failures: int = field(default=0, init=False)
    release_sources: dict[str, int] = field(
        default_factory=lambda: dict.fromkeys(_RELEASE_SOURCES, 0), init=False
    )
    rxnorm: dict[str, int] = field(
        default_factory=lambda: dict.fromkeys(_RXNORM_OUTCOMES, 0), init=False
    )

    _latencies: list[float] = field(default_factory=list, init=False, repr=False)

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _start_time: float = field(default_factory=time.monotonic, init=False, repr=False)

    # -- Counter helpers ---------------------------------------------------

    def inc_request(self, status_code: int) -> None:
        with self._lock:
            self.total_requests += 1
            self.status_codes[status_code] = self.status_codes.get(status_code, 0) + 1

    def inc_search(self, rows_scanned: int = 0, short_circuit: bool = False) -> None:
        with self._lock:
            self.searches += 1
            self.rows_scanned += rows_scanned
            if short_circuit:
                self.short_circuits += 1

    def inc_dataset_hit(self) -> None:
        with self._lock:
            self.dataset_hits += 1

    def inc_dataset_miss(self) -> None:
        with self._lock:
            self.dataset_misses += 1

    def inc_dataset_reload_failure(self) -> None:
        with self._lock:
            self.dataset_reload_failures += 1

    def inc_release_source(self, source: str) -> None:
        with self._lock:
            key = source if source in self.release_sources else "failure"
            self.release_sources[key] += 1

    def inc_rxnorm(self, outcome: str) -> None:
        with self._lock:
            key = outcome if outcome in self.rxnorm else "failure"
            self.rxnorm[key] += 1

    # -- Latency -----------------------------------------------------------

    def record_latency(self, ms: float) -> None:
        with self._lock:
            self._latencies.append(ms)
            if len(self._latencies) > self._MAX_LATENCY_SAMPLES:
                half = self._MAX_LATENCY_SAMPLES // 2
                self._latencies = self._latencies[-half:]

    def get_latency_percentiles(self) -> dict[str, float]:
        with self._lock:
            return self._percentiles_unlocked()

    def _percentiles_unlocked(self) -> dict[str, float]:
        """Compute p50/p90/p95/p99; caller must hold ``_lock``."""
        if not self._latencies:
            return {"p50": 0.0, "p90": 0.0, "p95": 0.0, "p99": 0.0}
        s = sorted(self._latencies)
        n = len(s)
        return {
            "p50": round(s[int(n * 0.50)], 2),
            "p90": round(s[int(min(n * 0.90, n - 1))], 2),
            "p95": round(s[int(min(n * 0.95, n - 1))], 2),
            "p99": round(s[int(min(n * 0.99, n - 1))], 2),
        }

    # -- Snapshot / reset --------------------------------------------------

    def uptime_seconds(self) -> float:
        return round(time.monotonic() - self._start_time, 2)

    def dataset_hit_rate(self) -> float:
        with self._lock:
            total = self.dataset_hits + self.dataset_misses
            return round(self.dataset_hits / total, 4) if total else 0.0

    def snapshot(self) -> dict:
        with self._lock:
            total = self.dataset_hits + self.dataset_misses
            hit_rate = round(self.dataset_hits / total, 4) if total else 0.0
            return {
                "uptime_seconds": round(time.monotonic() - self._start_time, 2),
                "total_requests": self.total_requests,
                "status_codes": dict(self.status_codes),
                "searches": {
                    "total": self.searches,
                    "short_circuits": self.short_circuits,
                    "rows_scanned": self.rows_scanned,
                },
                "dataset_cache": {
                    "hits": self.dataset_hits,
                    "misses": self.dataset_misses,
                    "reload_failures": self.dataset_reload_failures,
                    "hit_rate": hit_rate,
                },
                "release_sources": dict(self.release_sources),
                "rxnorm": dict(self.rxnorm),
                "latency_ms": self._percentiles_unlocked(),
            }

    def reset(self) -> None:
        with self._lock:
            self.total_requests = 0
            self.status_codes.clear()
            self.searches = 0
            self.short_circuits = 0
            self.rows_scanned = 0
            self.dataset_hits = 0
            self.dataset_misses = 0
            self.dataset_reload_failures = 0
            self.release_sources = dict.fromkeys(_RELEASE_SOURCES, 0)
            self.rxnorm = dict.fromkeys(_RXNORM_OUTCOMES, 0)
            self._latencies.clear()
            self._start_time = time.monotonic()


# Module-level singleton
metrics = MetricsCollector()
