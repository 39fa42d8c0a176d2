"""
Request-scoped tracing for rurality analyses.

A thread-local TraceContext records:
  - Per-stage timing (geocode, region, metrics, scoring, history)
  - Per-outbound-call timing (service, endpoint, elapsed_ms, status)
  - Metric sources that fell back to defaults, and why
  - End-of-request summary (total elapsed, call count, outcome)

Usage:
    from rural_trace import TraceContext, get_trace, set_trace, clear_trace

    ctx = TraceContext(trace_id=request_id)
    set_trace(ctx)
    ...
    ctx.log_summary()
    clear_trace()

Worker threads do not inherit thread-locals; the metric orchestrator hands
the parent context to each worker with set_trace().
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Records
# =============================================================================

@dataclass
class APICallRecord:
    """One outbound HTTP call."""
    service: str          # "nominatim" | "mapbox" | "fcc_area" | "census_acs" | ...
    endpoint: str
    elapsed_ms: int
    status_code: int
    provider_status: str = ""
    stage: str = ""


@dataclass
class StageRecord:
    """One pipeline stage."""
    stage_name: str
    elapsed_ms: int = 0
    api_calls_made: int = 0
    error_class: str = ""
    error_message: str = ""


@dataclass
class FallbackRecord:
    """A metric source whose default was substituted."""
    source: str
    reason: str


# =============================================================================
# Trace context
# =============================================================================

@dataclass
class TraceContext:
    """Accumulates timing data for a single analysis."""
    trace_id: str
    request_start: float = field(default_factory=time.time)
    stages: List[StageRecord] = field(default_factory=list)
    api_calls: List[APICallRecord] = field(default_factory=list)
    fallbacks: List[FallbackRecord] = field(default_factory=list)
    model_version: str = ""
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _stage_local: threading.local = field(
        default_factory=threading.local, repr=False,
    )

    # ------------------------------------------------------------------
    # Stage lifecycle
    # ------------------------------------------------------------------

    @property
    def current_stage(self) -> str:
        # Per-thread: parallel metric workers each run their own stage.
        return getattr(self._stage_local, "name", "")

    def start_stage(self, name: str):
        self._stage_local.name = name

    def end_stage(self):
        self._stage_local.name = ""

    def record_stage(
        self,
        stage_name: str,
        start_ts: float,
        end_ts: float,
        error_class: str = "",
        error_message: str = "",
    ):
        with self._lock:
            api_in_stage = sum(1 for c in self.api_calls if c.stage == stage_name)
            rec = StageRecord(
                stage_name=stage_name,
                elapsed_ms=int((end_ts - start_ts) * 1000),
                api_calls_made=api_in_stage,
                error_class=error_class,
                error_message=error_message,
            )
            self.stages.append(rec)

        err_info = f" err={error_class}: {error_message}" if error_class else ""
        logger.info(
            "  [stage] trace=%s %s %s %dms api_calls=%d%s",
            self.trace_id,
            stage_name,
            "ERR" if error_class else "OK",
            rec.elapsed_ms,
            api_in_stage,
            err_info,
        )

    # ------------------------------------------------------------------
    # Call / fallback recording
    # ------------------------------------------------------------------

    def record_api_call(
        self,
        service: str,
        endpoint: str,
        elapsed_ms: int,
        status_code: int,
        provider_status: str = "",
    ):
        rec = APICallRecord(
            service=service,
            endpoint=endpoint,
            elapsed_ms=int(elapsed_ms),
            status_code=status_code,
            provider_status=provider_status,
            stage=self.current_stage,
        )
        with self._lock:
            self.api_calls.append(rec)
        logger.info(
            "  [api] trace=%s stage=%s svc=%s ep=%s ms=%d http=%d provider=%s",
            self.trace_id,
            rec.stage or "-",
            service,
            endpoint,
            rec.elapsed_ms,
            status_code,
            provider_status,
        )

    def record_fallback(self, source: str, reason: str):
        with self._lock:
            self.fallbacks.append(FallbackRecord(source=source, reason=reason))

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def summary_dict(self) -> Dict[str, Any]:
        """Summary suitable for logging and JSON responses."""
        total_elapsed = int((time.time() - self.request_start) * 1000)
        with self._lock:
            stages = list(self.stages)
            call_count = len(self.api_calls)
            fallbacks = [f.source for f in self.fallbacks]

        errored = [s for s in stages if s.error_class]
        if errored and len(errored) == len(stages):
            outcome = "error"
        elif not stages:
            outcome = "empty"
        elif errored or fallbacks:
            outcome = "partial"
        else:
            outcome = "success"

        result = {
            "trace_id": self.trace_id,
            "total_elapsed_ms": total_elapsed,
            "total_api_calls": call_count,
            "stages_completed": len(stages) - len(errored),
            "stages_errored": len(errored),
            "fallback_sources": fallbacks,
            "final_outcome": outcome,
        }
        if self.model_version:
            result["model_version"] = self.model_version
        return result

    def log_summary(self):
        """Emit a single structured summary log line."""
        s = self.summary_dict()
        logger.info(
            "[trace-summary] trace=%s total_ms=%d api_calls=%d "
            "completed=%d errored=%d fallbacks=%s outcome=%s",
            s["trace_id"],
            s["total_elapsed_ms"],
            s["total_api_calls"],
            s["stages_completed"],
            s["stages_errored"],
            ",".join(s["fallback_sources"]) or "-",
            s["final_outcome"],
        )

    def full_trace_dict(self) -> Dict[str, Any]:
        """Complete trace data for debug output."""
        summary = self.summary_dict()
        with self._lock:
            summary["stages"] = [
                {
                    "stage": s.stage_name,
                    "elapsed_ms": s.elapsed_ms,
                    "api_calls": s.api_calls_made,
                    "error": (
                        f"{s.error_class}: {s.error_message}"
                        if s.error_class else None
                    ),
                }
                for s in self.stages
            ]
            summary["api_calls"] = [
                {
                    "service": c.service,
                    "endpoint": c.endpoint,
                    "elapsed_ms": c.elapsed_ms,
                    "status_code": c.status_code,
                    "provider_status": c.provider_status,
                    "stage": c.stage,
                }
                for c in self.api_calls
            ]
            summary["fallbacks"] = [
                {"source": f.source, "reason": f.reason} for f in self.fallbacks
            ]
        return summary


# =============================================================================
# Thread-local storage
# =============================================================================

_trace_local = threading.local()


def get_trace() -> Optional[TraceContext]:
    """Get the current thread's trace context, or None."""
    return getattr(_trace_local, "ctx", None)


def set_trace(ctx: Optional[TraceContext]):
    """Set the trace context for the current thread."""
    _trace_local.ctx = ctx


def clear_trace():
    """Clear the current trace context."""
    _trace_local.ctx = None


def record_api(service: str, endpoint: str, t0: float,
               status_code: int, ok: bool, note: str = "") -> None:
    """Record an outbound call to the current trace and the health monitor."""
    elapsed_ms = (time.time() - t0) * 1000
    trace = get_trace()
    if trace:
        trace.record_api_call(
            service=service,
            endpoint=endpoint,
            elapsed_ms=int(elapsed_ms),
            status_code=status_code,
            provider_status="OK" if ok else (note or "ERROR"),
        )
    try:
        from health_monitor import record_call
        record_call(service, ok, int(elapsed_ms), note or None)
    except Exception:
        logger.debug("health monitor unavailable", exc_info=True)
