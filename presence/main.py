"""
Proof of Presence - badge claim issuance service.

Features:
- Event registration on the ledger with shareable claim links
- Geofenced, signature-verified badge claims minted exactly once
- Structured logging with correlation IDs
- Prometheus metrics
- Health checks (liveness and readiness)
"""
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from . import __version__
from .config import get_settings
from .logging import setup_logging, get_logger
from .api.router import router
from .api.errors import register_exception_handlers
from .container import build_container
from .middleware import (
    CorrelationIdMiddleware,
    ErrorHandlerMiddleware,
    MetricsMiddleware,
    RequestValidationMiddleware,
)
from .metrics import Metrics
from .health import HealthChecker

# Initialize configuration
settings = get_settings()

# Setup logging
setup_logging(json_output=settings.LOG_JSON, service_name="presence")
logger = get_logger()

# Initialize metrics
metrics = Metrics(service_name="presence", version=__version__)

# Initialize health checker
health_checker = HealthChecker(service_name="presence", version=__version__)

# Create FastAPI app
app = FastAPI(
    title="Proof of Presence",
    version=__version__,
    description="Location-verified attendance badges minted on a public ledger",
)
app.state.container = build_container(settings, metrics=metrics)

# Added last runs first: correlation ID wraps everything, errors are caught innermost
app.add_middleware(ErrorHandlerMiddleware)
app.add_middleware(RequestValidationMiddleware, max_size=settings.MAX_REQUEST_SIZE)
app.add_middleware(MetricsMiddleware, metrics=metrics)
app.add_middleware(CorrelationIdMiddleware)

register_exception_handlers(app)

# Include API routes
app.include_router(router)

# Mount Prometheus metrics endpoint
metrics_app = make_asgi_app(registry=metrics.registry)
app.mount("/metrics", metrics_app)


@app.get("/health")
async def health():
    """
    Liveness probe - basic health check.

    Returns 200 if service is running.
    """
    logger.debug("health_check_liveness")
    return health_checker.liveness()


@app.get("/health/ready")
async def health_ready():
    """
    Readiness probe - comprehensive health check.

    Checks:
    - Claim store connectivity
    - Ledger RPC connectivity
    - Disk space availability
    - Memory availability

    Returns:
        200: Service is ready to handle traffic
        503: Service is not ready
    """
    logger.debug("health_check_readiness")
    result = await health_checker.readiness(app.state.container)
    status_code = 200 if result["status"] == "ready" else 503
    return JSONResponse(content=result, status_code=status_code)


@app.on_event("startup")
async def startup_event():
    logger.info(
        "service_starting",
        version=__version__,
        env=settings.ENV,
        store=settings.STORE_ADAPTER,
        ledger=settings.LEDGER_ADAPTER,
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Stop ledger watchers and close backend connections."""
    logger.info("service_stopping")
    await app.state.container.close()
    metrics.app_up.labels(service="presence", version=__version__).set(0)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "presence.main:app",
        host="0.0.0.0",
        port=settings.SERVICE_PORT,
        reload=settings.ENV == "dev",
    )
