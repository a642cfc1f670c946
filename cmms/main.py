import os

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import settings
from .db import Base, engine
from .logging import setup_logging, RequestIdMiddleware
from .models.models import AppendOnlyViolation
from .routes.assets import router as assets_router
from .routes.calendar import router as calendar_router
from .routes.dashboard import router as dashboard_router
from .routes.extra_jobs import router as extra_jobs_router
from .routes.labor import router as labor_router
from .routes.people import router as people_router
from .routes.reports import router as reports_router
from .routes.work_orders import router as work_orders_router
from .services.errors import WorkTrackingError

log = structlog.get_logger(__name__)


async def work_tracking_error_handler(request: Request, exc: WorkTrackingError):
    log.info(
        "request.domain_error",
        path=request.url.path,
        error=type(exc).__name__,
        status_code=exc.status_code,
        detail=exc.detail,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def append_only_violation_handler(request: Request, exc: AppendOnlyViolation):
    log.error("request.append_only_violation", path=request.url.path, detail=str(exc))
    return JSONResponse(status_code=500, content={"detail": "event log is append-only"})


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Domain errors
    app.add_exception_handler(WorkTrackingError, work_tracking_error_handler)
    app.add_exception_handler(AppendOnlyViolation, append_only_violation_handler)

    # Routers
    app.include_router(work_orders_router, prefix="/api")
    app.include_router(labor_router, prefix="/api")
    app.include_router(extra_jobs_router, prefix="/api")
    app.include_router(reports_router, prefix="/api")
    app.include_router(dashboard_router, prefix="/api")
    app.include_router(assets_router, prefix="/api")
    app.include_router(people_router, prefix="/api")
    app.include_router(calendar_router, prefix="/api")

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"status": "ok", "environment": settings.environment}

    @app.on_event("startup")
    def _startup():
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            log.info("startup.tables_ready", tables=len(Base.metadata.tables))

    return app


app = create_app()
