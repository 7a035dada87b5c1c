"""
Observability - Logging, Metrics, Health

Provides:
- Structured JSON logging with request and actor IDs
- Request/response logging middleware
- Metrics for transitions, escalations and lock conflicts
- Health checks over the store and the event log

Configuration:
- DISPUTE_ENGINE_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- DISPUTE_ENGINE_LOG_FORMAT: json, text (default: json in production)
- DISPUTE_ENGINE_PRODUCTION: Enable production mode

Usage:
    from dispute_engine.observability import get_logger

    logger = get_logger(__name__)
    logger.info("Compliance rejected", compliance_id=str(cid), consequence="suspension")
"""

import json
import logging
import os
import sys
import time
import uuid
from collections import Counter
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

request_id_var: ContextVar[str] = ContextVar("request_id", default="")
actor_id_var: ContextVar[str] = ContextVar("actor_id", default="")


# ============================================================
# CONFIGURATION
# ============================================================

def is_production() -> bool:
    return os.environ.get("DISPUTE_ENGINE_PRODUCTION", "").lower() in ("1", "true", "yes")


def _get_log_level() -> int:
    level_str = os.environ.get("DISPUTE_ENGINE_LOG_LEVEL", "INFO").upper()
    levels = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    return levels.get(level_str, logging.INFO)


def _use_json_logging() -> bool:
    format_str = os.environ.get("DISPUTE_ENGINE_LOG_FORMAT", "").lower()
    if format_str == "json":
        return True
    if format_str == "text":
        return False
    return is_production()


# ============================================================
# STRUCTURED LOGGING
# ============================================================

_RESERVED_RECORD_FIELDS = frozenset({
    "name", "msg", "args", "created", "levelname", "levelno",
    "pathname", "filename", "module", "lineno", "funcName",
    "exc_info", "exc_text", "stack_info", "message", "msecs",
    "relativeCreated", "thread", "threadName", "processName",
    "process", "taskName",
})


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter.

    Output format:
    {
        "timestamp": "2025-01-15T10:30:00.000000+00:00",
        "level": "INFO",
        "logger": "dispute_engine.core.engine",
        "message": "Compliance rejected",
        "request_id": "abc12345",
        "actor_id": "user-42",
        "compliance_id": "...",
        ...extra fields...
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        actor_id = actor_id_var.get()
        if actor_id:
            log_data["actor_id"] = actor_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_RECORD_FIELDS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        prefix = ""
        request_id = request_id_var.get()
        if request_id:
            prefix = f"[{request_id[:8]}] "

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        msg = f"{timestamp} {record.levelname:8} {prefix}{record.name}: {record.getMessage()}"

        extras = {
            k: v for k, v in record.__dict__.items()
            if k not in _RESERVED_RECORD_FIELDS and not k.startswith("_")
        }
        if extras:
            msg += " " + " ".join(f"{k}={v}" for k, v in sorted(extras.items()))

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that turns keyword arguments into structured fields.

    Usage:
        logger = get_logger(__name__)
        logger.info("Claim created", claim_id=str(claim.id), hiring_id=claim.hiring_id)
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get("extra", {})
        for key in list(kwargs.keys()):
            if key not in ("exc_info", "stack_info", "stacklevel", "extra"):
                extra[key] = kwargs.pop(key)
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    """Structured logger for the given name (typically __name__)."""
    return ContextLogger(logging.getLogger(name), {})


def setup_logging() -> None:
    """
    Configure the root logger.

    Call this once at application startup.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(_get_log_level())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(_get_log_level())
    handler.setFormatter(StructuredFormatter() if _use_json_logging() else TextFormatter())
    root_logger.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ============================================================
# REQUEST CONTEXT MIDDLEWARE
# ============================================================

class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Sets up request context for logging.

    - Generates (or propagates X-Request-ID) a request ID
    - Records the acting user from X-Actor-Id
    - Logs request/response with timing and feeds request metrics
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request_id_var.set(request_id)
        actor_id_var.set(request.headers.get("X-Actor-Id", ""))

        logger = get_logger("dispute_engine.request")
        start_time = time.perf_counter()

        logger.debug(
            f"{request.method} {request.url.path}",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000
            log_level = logging.INFO if response.status_code < 400 else logging.WARNING
            logger.log(
                log_level,
                f"{request.method} {request.url.path} -> {response.status_code}",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )
            get_metrics().record_request(duration_ms, success=response.status_code < 500)

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.exception(
                f"{request.method} {request.url.path} -> 500",
                method=request.method,
                path=request.url.path,
                status_code=500,
                duration_ms=round(duration_ms, 2),
                error=str(e),
            )
            get_metrics().record_request(duration_ms, success=False)
            raise

        finally:
            request_id_var.set("")
            actor_id_var.set("")


# ============================================================
# METRICS
# ============================================================

@dataclass
class MetricsCollector:
    """
    Simple in-memory metrics collector.

    For production, replace with Prometheus, StatsD, or similar.
    """

    # Counters
    events_appended: int = 0
    transitions: Counter = field(default_factory=Counter)
    action_failures: Counter = field(default_factory=Counter)
    compliance_rejections: int = 0
    suspensions: int = 0
    bans: int = 0
    concurrent_conflicts: int = 0
    collaborator_failures: int = 0
    requests_total: int = 0
    requests_failed: int = 0

    # Histograms (simplified as lists)
    commit_latencies_ms: list = field(default_factory=list)
    request_latencies_ms: list = field(default_factory=list)

    MAX_SAMPLES = 1000

    def record_commit(self, latency_ms: float, event_types: list[str]) -> None:
        """Record one committed write and the events it appended."""
        self.events_appended += len(event_types)
        for event_type in event_types:
            self.transitions[event_type] += 1
        self.commit_latencies_ms.append(latency_ms)
        if len(self.commit_latencies_ms) > self.MAX_SAMPLES:
            self.commit_latencies_ms = self.commit_latencies_ms[-self.MAX_SAMPLES:]

    def record_failure(self, kind: str) -> None:
        self.action_failures[kind] += 1
        if kind == "concurrent_modification":
            self.concurrent_conflicts += 1

    def record_request(self, latency_ms: float, success: bool) -> None:
        self.requests_total += 1
        if not success:
            self.requests_failed += 1
        self.request_latencies_ms.append(latency_ms)
        if len(self.request_latencies_ms) > self.MAX_SAMPLES:
            self.request_latencies_ms = self.request_latencies_ms[-self.MAX_SAMPLES:]

    def get_summary(self) -> Dict[str, Any]:
        def percentile(data: list, p: float) -> Optional[float]:
            if not data:
                return None
            sorted_data = sorted(data)
            idx = int(len(sorted_data) * p)
            return sorted_data[min(idx, len(sorted_data) - 1)]

        return {
            "events_appended": self.events_appended,
            "transitions": dict(self.transitions),
            "action_failures": dict(self.action_failures),
            "compliance_rejections": self.compliance_rejections,
            "suspensions": self.suspensions,
            "bans": self.bans,
            "concurrent_conflicts": self.concurrent_conflicts,
            "collaborator_failures": self.collaborator_failures,
            "requests_total": self.requests_total,
            "requests_failed": self.requests_failed,
            "commit_latency_p50_ms": percentile(self.commit_latencies_ms, 0.5),
            "commit_latency_p95_ms": percentile(self.commit_latencies_ms, 0.95),
            "request_latency_p50_ms": percentile(self.request_latencies_ms, 0.5),
            "request_latency_p95_ms": percentile(self.request_latencies_ms, 0.95),
        }


_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return _metrics


# ============================================================
# HEALTH CHECKS
# ============================================================

@dataclass
class HealthStatus:
    """Health check result."""
    healthy: bool
    checks: Dict[str, Dict[str, Any]]
    duration_ms: float


def check_health(engine=None, verify_chain: bool = False) -> HealthStatus:
    """
    Run health checks.

    Args:
        engine: DisputeEngine instance
        verify_chain: Also re-verify the whole event log (expensive)
    """
    start = time.perf_counter()
    checks: Dict[str, Dict[str, Any]] = {"liveness": {"status": "healthy"}}
    all_healthy = True

    if engine is not None:
        try:
            head = engine.store.get_head()
            checks["store"] = {
                "status": "healthy",
                "driver": type(engine.store).__name__,
                "event_count": head.next_sequence,
                "last_hash": head.last_event_hash[:16] + "..." if head.last_event_hash else None,
            }
        except Exception as e:
            checks["store"] = {"status": "unhealthy", "error": str(e)}
            all_healthy = False

        if verify_chain and all_healthy:
            valid = engine.verify_event_log()
            checks["event_log"] = {
                "status": "healthy" if valid else "unhealthy",
                "valid": valid,
            }
            all_healthy = all_healthy and valid

    duration_ms = (time.perf_counter() - start) * 1000
    return HealthStatus(healthy=all_healthy, checks=checks, duration_ms=round(duration_ms, 2))
