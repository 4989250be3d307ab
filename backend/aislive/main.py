import asyncio
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from aislive.api.rate_limit import limiter
from aislive.api.routes import router
from aislive.config import settings
from aislive.database import get_db
from aislive.exceptions import BoundingBoxError, MissingAPIKeyError
from aislive.schemas.health import HealthResponse

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Check credentials, prepare the schema, start ingestion and housekeeping."""
    from aislive.database import init_db
    from aislive.modules.aisstream_client import AISStreamSupervisor
    from aislive.modules.ingest import IngestionPipeline
    from aislive.modules.maintenance import run_maintenance_loop

    app.state.supervisor = None
    app.state.pipeline = None

    # Fail fast, before touching the database or the feed
    if settings.INGESTION_ENABLED and not settings.AISSTREAM_API_KEY:
        logger.critical("FATAL: AISSTREAM_API_KEY not set. Cannot start the ingestion service.")
        raise MissingAPIKeyError("AISSTREAM_API_KEY not set. Cannot start the ingestion service.")

    if settings.INIT_DB_ON_STARTUP:
        init_db()
        logger.info("Database initialization complete.")

    maintenance_task = None
    if settings.INGESTION_ENABLED:
        pipeline = IngestionPipeline()
        supervisor = AISStreamSupervisor(settings.AISSTREAM_API_KEY, pipeline)
        supervisor.start()
        app.state.pipeline = pipeline
        app.state.supervisor = supervisor
        logger.info("AIS ingestion service initiated.")
    if settings.MAINTENANCE_ENABLED:
        maintenance_task = asyncio.create_task(run_maintenance_loop(), name="vessel-maintenance")

    try:
        yield
    finally:
        if app.state.supervisor is not None:
            await app.state.supervisor.stop()
        if maintenance_task is not None:
            maintenance_task.cancel()
            await asyncio.wait([maintenance_task])


app = FastAPI(
    title="AISLive",
    description="Live vessel positions from aisstream.io, served by bounding box.",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS origins from settings (comma-separated env var)
cors_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(router, prefix="/api")


# ── Structured error handlers ─────────────────────────────────────────────────

@app.exception_handler(BoundingBoxError)
async def bbox_error_handler(request: Request, exc: BoundingBoxError):
    return JSONResponse(status_code=400, content={"error": "Invalid bounding box", "detail": str(exc)})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    detail = [
        {"param": ".".join(str(p) for p in err.get("loc", ())[1:]), "msg": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Invalid request", "detail": detail})


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error", "detail": "Database error."})


@app.exception_handler(Exception)
async def general_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s %s:\n%s", request.method, request.url.path, traceback.format_exc())
    return JSONResponse(status_code=500, content={"error": "Internal server error", "detail": "An unexpected error occurred."})


@app.get("/health", response_model=HealthResponse, responses={503: {"description": "Database connection failed"}})
def health(db: Session = Depends(get_db)):
    """Store liveness: 200 with the database clock, 503 when it is unreachable."""
    try:
        db_time = db.execute(text("SELECT now()")).scalar()
    except SQLAlchemyError as exc:
        logger.error("Health check failed: %s", exc)
        return JSONResponse(status_code=503, content={"status": "error", "error": "Database connection failed"})
    return HealthResponse(status="ok", db_time=db_time)
