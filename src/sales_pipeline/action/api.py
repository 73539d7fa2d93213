"""FastAPI application exposing the pipeline, targets, and dashboard routes."""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.settings import settings
from sales_pipeline.db.connection import engine
from sales_pipeline.db.models import Base
from sales_pipeline.errors import ConfigurationError, ConflictError, InvalidArgument, NotFound

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Sales Pipeline API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Include modular routers
# ---------------------------------------------------------------------------
from sales_pipeline.action.routers.dashboard import router as dashboard_router  # noqa: E402
from sales_pipeline.action.routers.pipeline import router as pipeline_router  # noqa: E402
from sales_pipeline.action.routers.stages import router as stages_router  # noqa: E402
from sales_pipeline.action.routers.targets import router as targets_router  # noqa: E402

app.include_router(stages_router)
app.include_router(pipeline_router)
app.include_router(targets_router)
app.include_router(dashboard_router)


@app.on_event("startup")
async def _ensure_tables():
    """Create missing tables.  Column changes go through migrations, not here."""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ensured")
    except Exception:
        logger.exception("Failed to ensure database schema")


@app.on_event("shutdown")
async def _dispose_engine():
    await engine.dispose()


# ---------------------------------------------------------------------------
# Domain error kinds to HTTP status codes
# ---------------------------------------------------------------------------


@app.exception_handler(InvalidArgument)
async def _invalid_argument(request: Request, exc: InvalidArgument):
    return JSONResponse(status_code=400, content={"detail": str(exc), "error": "invalid_argument"})


@app.exception_handler(NotFound)
async def _not_found(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc), "error": "not_found"})


@app.exception_handler(ConflictError)
async def _conflict(request: Request, exc: ConflictError):
    return JSONResponse(status_code=409, content={"detail": str(exc), "error": "conflict"})


@app.exception_handler(ConfigurationError)
async def _configuration_error(request: Request, exc: ConfigurationError):
    logger.error("Configuration error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": str(exc), "error": "configuration_error"})


@app.exception_handler(Exception)
async def _global_error_handler(request: Request, exc: Exception):
    """Catch-all: every unhandled error returns JSON, not raw HTML."""
    logger.exception("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"detail": f"Server error: {exc}", "error": str(exc), "status": "failed"},
    )


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "version": app.version}
