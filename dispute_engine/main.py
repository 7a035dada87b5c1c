"""
Dispute Engine - Claim & Compliance Resolution

Main application entry point.

The engine decides who may do what to a claim and its compliances, and
what happens when a compliance is rejected or left overdue. Identity,
files and notifications belong to the surrounding platform.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api import router
from .core import DisputeEngine, EngineError
from .observability import (
    setup_logging,
    get_logger,
    RequestContextMiddleware,
    check_health,
    get_metrics,
)

# Setup logging at import time
setup_logging()
logger = get_logger(__name__)

VERSION = "0.1.0"

# Error kind -> HTTP status
ERROR_STATUS = {
    "validation_error": 422,
    "unauthorized": 403,
    "not_found": 404,
    "invalid_state_transition": 409,
    "terminal_state_violation": 409,
    "concurrent_modification": 409,
}


def error_status(kind: str) -> int:
    return ERROR_STATUS.get(kind, 500)


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    status_code = error_status(exc.kind)
    if status_code >= 500:
        logger.error("Engine failure", path=request.url.path, error=exc.kind, detail=str(exc))
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.kind, "detail": str(exc)},
    )


def create_app(engine: Optional[DisputeEngine] = None) -> FastAPI:
    """
    Build the application.

    Without an engine, one is wired from the environment at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "engine", None) is None:
            app.state.engine = DisputeEngine.from_env()
        engine = app.state.engine

        # Verify the event log on startup
        if engine.store.get_event_count() > 0:
            if engine.verify_event_log():
                logger.info("Event log verified OK", event_count=engine.store.get_event_count())
            else:
                logger.error("Event log verification FAILED!")

        logger.info(
            "Application startup complete",
            event_count=engine.store.get_event_count(),
            store_type=type(engine.store).__name__,
        )

        yield

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Dispute Engine",
        description="""
## Claim & Compliance Resolution

Claims between the client and the provider of a hiring, and the
compliances a moderator imposes to settle them.

### Claim Lifecycle

```
open → in_review ⇄ requires_staff_response → resolved
                                            → rejected
open → cancelled
```

### Compliances

Imposed at resolution. The responsible party submits evidence, the
counterpart may peer review it, a moderator approves or rejects it.
Rejections and missed deadlines escalate: warning, suspension, ban.

### Identity

Every request carries `X-Actor-Id` and `X-Actor-Role` (client, provider,
moderator, admin), set by the gateway.

### Event Log

Every change is recorded as a hash-chained, Ed25519-signed event.
        """,
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.engine = engine

    # Add request context middleware for logging
    app.add_middleware(RequestContextMiddleware)
    app.add_exception_handler(EngineError, engine_error_handler)
    app.include_router(router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health():
        """
        Basic health check endpoint.

        Returns 200 if the service is running.
        For detailed health, use /health/detailed
        """
        return {"status": "healthy", "service": "dispute-engine"}

    @app.get("/health/detailed", tags=["System"])
    def health_detailed(request: Request, verify: bool = False):
        """
        Detailed health check.

        Checks:
        - Service liveness
        - Store connectivity and event log head
        - Event log integrity (with ?verify=true)

        Returns 200 if healthy, 503 if unhealthy.
        """
        health_status = check_health(engine=request.app.state.engine, verify_chain=verify)
        return JSONResponse(
            status_code=200 if health_status.healthy else 503,
            content={
                "status": "healthy" if health_status.healthy else "unhealthy",
                "checks": health_status.checks,
                "duration_ms": health_status.duration_ms,
            },
        )

    @app.get("/metrics", tags=["System"])
    async def metrics():
        """
        Get application metrics.

        Returns counters and latency percentiles.
        """
        return get_metrics().get_summary()

    return app


app = create_app()
