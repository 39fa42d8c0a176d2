"""
Upstream health for the geocoders and regional data feeds.

Every outbound request made during an analysis reports its outcome through
record_call() (via rural_trace.record_api).  A per-service rolling window
of those outcomes yields a passive status.  The two keyless endpoints the
pipeline depends on first (Nominatim and the FCC Area API) are also probed
on a timer by a daemon thread; where a probe result exists it wins over
the passive window.

/healthz reads get_status().  One HealthMonitor per process.
"""

import logging
import os
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional, Tuple

import requests

logger = logging.getLogger(__name__)

HEALTH_CHECK_INTERVAL = int(os.environ.get("HEALTH_CHECK_INTERVAL", "300"))

_PROBE_TIMEOUT = 10
_PASSIVE_WINDOW_SIZE = 50

# success-rate floor for each status, checked in order
_STATUS_FLOORS: Tuple[Tuple[float, str], ...] = (
    (0.95, "healthy"),
    (0.70, "degraded"),
    (0.0, "down"),
)

MONITORED_SERVICES = (
    "mapbox",
    "nominatim",
    "fcc_area",
    "census_geocoder",
    "census_acs",
    "fcc_broadband",
)

# service -> (url, params)
_ACTIVE_PROBES: Dict[str, Tuple[str, Dict[str, Any]]] = {
    "nominatim": (
        "https://nominatim.openstreetmap.org/status",
        {"format": "json"},
    ),
    "fcc_area": (
        "https://geo.fcc.gov/api/census/area",
        {"lat": 40.7128, "lon": -74.0060, "format": "json"},
    ),
}


def _iso(ts: Optional[float] = None) -> str:
    if ts is None:
        return datetime.now(timezone.utc).isoformat()
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def status_for_rate(success_rate: float) -> str:
    for floor, status in _STATUS_FLOORS:
        if success_rate >= floor:
            return status
    return "down"


@dataclass
class HealthCheckResult:
    service: str
    status: str          # healthy | degraded | down | unknown
    latency_ms: int
    last_checked: str
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "status": self.status,
            "latency_ms": self.latency_ms,
            "last_checked": self.last_checked,
        }
        if self.error:
            out["error"] = self.error
        out.update(self.details)
        return out


@dataclass
class CallOutcome:
    timestamp: float
    success: bool
    latency_ms: int
    error: Optional[str] = None


class HealthMonitor:
    """Passive call windows plus periodic active probes, thread-safe."""

    def __init__(self, user_agent: str = "RuralityIndex/1.0") -> None:
        self._user_agent = user_agent
        self._lock = threading.Lock()
        self._passive: Dict[str, Deque[CallOutcome]] = {
            name: deque(maxlen=_PASSIVE_WINDOW_SIZE) for name in MONITORED_SERVICES
        }
        self._active_results: Dict[str, HealthCheckResult] = {}
        self._prev_status: Dict[str, str] = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # -- passive ------------------------------------------------------------

    def record_call(self, service: str, success: bool, latency_ms: int,
                    error: Optional[str] = None) -> None:
        outcome = CallOutcome(time.time(), success, latency_ms, error)
        with self._lock:
            window = self._passive.setdefault(
                service, deque(maxlen=_PASSIVE_WINDOW_SIZE))
            window.append(outcome)

    def _compute_passive_status(self, service: str) -> HealthCheckResult:
        with self._lock:
            outcomes = list(self._passive.get(service, ()))

        if not outcomes:
            return HealthCheckResult(
                service, "unknown", 0, _iso(),
                details={"mode": "passive", "sample_size": 0},
            )

        n = len(outcomes)
        successes = [o for o in outcomes if o.success]
        failures = [o for o in outcomes if not o.success and o.error]
        rate = len(successes) / n
        return HealthCheckResult(
            service=service,
            status=status_for_rate(rate),
            latency_ms=int(sum(o.latency_ms for o in outcomes) / n),
            last_checked=_iso(outcomes[-1].timestamp),
            error=failures[-1].error if failures else None,
            details={"mode": "passive", "success_rate": round(rate, 3), "sample_size": n},
        )

    # -- active -------------------------------------------------------------

    def _probe(self, service: str, url: str, params: Dict[str, Any]) -> HealthCheckResult:
        t0 = time.time()
        status, error = "healthy", None
        try:
            resp = requests.get(
                url, params=params, timeout=_PROBE_TIMEOUT,
                headers={"User-Agent": self._user_agent},
            )
            if resp.status_code != 200:
                status, error = "degraded", f"HTTP {resp.status_code}"
        except requests.Timeout:
            status, error = "down", "timeout"
        except requests.RequestException as e:
            status, error = "down", str(e)
        return HealthCheckResult(
            service, status, int((time.time() - t0) * 1000), _iso(),
            error=error, details={"mode": "active"},
        )

    def run_active_checks(self) -> None:
        for service, (url, params) in _ACTIVE_PROBES.items():
            result = self._probe(service, url, params)
            with self._lock:
                prev = self._prev_status.get(service)
                self._active_results[service] = result
                self._prev_status[service] = result.status
            if prev is not None and prev != result.status:
                logger.warning("[health] %s changed %s -> %s (error=%s)",
                               service, prev, result.status, result.error)
            else:
                logger.info("[health] %s: %s (%dms)",
                            service, result.status, result.latency_ms)

    # -- combined -----------------------------------------------------------

    def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            services = list(self._passive)
            active = dict(self._active_results)
        return {
            svc: (active.get(svc) or self._compute_passive_status(svc)).to_dict()
            for svc in services
        }

    # -- background thread --------------------------------------------------

    def _run(self) -> None:
        logger.info("[health] monitor started, probing every %ds", HEALTH_CHECK_INTERVAL)
        while not self._stop_event.is_set():
            try:
                self.run_active_checks()
            except Exception:
                logger.exception("[health] active probe pass failed")
            self._stop_event.wait(HEALTH_CHECK_INTERVAL)
        logger.info("[health] monitor stopped")

    def start(self) -> None:
        """Idempotent."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="health-monitor", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()


_monitor = HealthMonitor()


def record_call(service: str, success: bool, latency_ms: int,
                error: Optional[str] = None) -> None:
    _monitor.record_call(service, success, latency_ms, error)


def get_status() -> Dict[str, Dict[str, Any]]:
    return _monitor.get_all_status()


def start_monitor() -> None:
    _monitor.start()


def stop_monitor() -> None:
    _monitor.stop()
