import logging
import os
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Import all models to ensure they're registered with SQLAlchemy Base
# This is needed for relationships between models in different files
from . import (
    models,  # noqa: F401
    models_stock,  # noqa: F401
    models_visit,  # noqa: F401
)
from .database import Base, engine
from .domain.analytics.router import router as analytics_router
from .domain.contracts.router import router as contracts_router
from .domain.scheduling.router import router as scheduling_router
from .domain.visits.router import router as visits_router
from .exceptions import AccessDenied, MaintenanceError
from .routes.status_automation import router as status_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

CORRELATION_HEADER = "X-Correlation-Id"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")
            raise

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Maintenance Engine API", version="1.0.0", lifespan=lifespan)


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or str(uuid.uuid4())


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    request.state.correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
    response = await call_next(request)
    response.headers[CORRELATION_HEADER] = request.state.correlation_id
    return response


@app.exception_handler(MaintenanceError)
async def maintenance_error_handler(request: Request, exc: MaintenanceError):
    """Business-rule failures: specific message, field and rule code"""
    if isinstance(exc, AccessDenied):
        logger.warning(f"🚫 SECURITY: {request.method} {request.url.path} denied: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.code}): {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.to_dict()},
        headers={CORRELATION_HEADER: _correlation_id(request)},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={"detail": {"code": "validation_error", "errors": jsonable_errors(exc)}},
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    """Anything unexpected: log with the correlation id, tell the caller to retry"""
    correlation_id = _correlation_id(request)
    logger.error(
        f"❌ {request.method} {request.url.path} failed [{correlation_id}]: {exc}", exc_info=exc
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": {
                "code": "internal_error",
                "message": "Something went wrong, please try again",
                "correlation_id": correlation_id,
            }
        },
        headers={CORRELATION_HEADER: correlation_id},
    )


# CORS Configuration
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
    expose_headers=[CORRELATION_HEADER],
)

# Routes
app.include_router(contracts_router)
app.include_router(visits_router)
app.include_router(scheduling_router)
app.include_router(analytics_router)
app.include_router(status_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}
