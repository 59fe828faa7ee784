from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Routers
from .routers.valuation import router as valuation_router
from .routers.sessions import router as sessions_router
from .routers.inventory import router as inventory_router
from .routers.finance import router as finance_router

# Core modules
from .core.config import settings
from .core.errors import (
    InvalidInput, PersistenceFailure, SessionAccessDenied, SessionNotFound, UpstreamTimeout,
)
from .core.logging import configure_logging, CorrelationIdMiddleware
from .core.metrics import PromMiddleware, metrics_endpoint

def register_error_handlers(app: FastAPI) -> None:
    """Map engine errors to HTTP statuses; bodies carry a stable `error` code."""

    @app.exception_handler(InvalidInput)
    async def invalid_input(request: Request, exc: InvalidInput):
        return JSONResponse(status_code=422, content={"error": "invalid_input", "field": exc.field, "reason": exc.reason})

    @app.exception_handler(UpstreamTimeout)
    async def upstream_timeout(request: Request, exc: UpstreamTimeout):
        return JSONResponse(status_code=504, content={"error": "upstream_timeout", "component": exc.component})

    @app.exception_handler(SessionNotFound)
    async def session_not_found(request: Request, exc: SessionNotFound):
        return JSONResponse(status_code=404, content={"error": "session_not_found", "detail": str(exc)})

    @app.exception_handler(SessionAccessDenied)
    async def session_access_denied(request: Request, exc: SessionAccessDenied):
        return JSONResponse(status_code=403, content={"error": "forbidden", "detail": str(exc)})

    @app.exception_handler(PersistenceFailure)
    async def persistence_failure(request: Request, exc: PersistenceFailure):
        return JSONResponse(status_code=503, content={"error": "persistence_unavailable"})

def create_app() -> FastAPI:
    """
    App factory so tests and ASGI servers can instantiate cleanly.
    """
    configure_logging()  # Set up JSON logs + correlation-id filter

    app = FastAPI(
        title="Comparable Property Valuation API",
        version="2.0.0",
        description="Comparable selection, similarity scoring, valuation bands, market context and saved CMA sessions.",
    )

    # CORS: allow your static site to call the API.
    allow_origins = [o.strip() for o in settings.ALLOW_ORIGINS.split(",")] if settings.ALLOW_ORIGINS else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["ETag","X-Request-Id"],
    )

    # Observability middlewares
    app.add_middleware(CorrelationIdMiddleware)  # Adds/propagates X-Request-Id
    if settings.PROMETHEUS_ENABLED:
        app.add_middleware(PromMiddleware)       # Records req/latency metrics

    register_error_handlers(app)

    # Meta routes
    @app.get("/v1/health", tags=["meta"])
    def health():
        return {"status": "ok"}

    @app.get("/v1/ping", tags=["meta"])
    def ping():
        return {"pong": True}

    if settings.PROMETHEUS_ENABLED:
        # Standard Prometheus scrape endpoint
        app.add_route("/v1/metrics", metrics_endpoint, methods=["GET"])

    # Business routes
    app.include_router(valuation_router, prefix="/v1", tags=["valuation"])
    app.include_router(sessions_router, prefix="/v1", tags=["cma"])
    app.include_router(inventory_router, prefix="/v1", tags=["inventory"])
    app.include_router(finance_router, prefix="/v1", tags=["finance"])

    return app

app = create_app()
