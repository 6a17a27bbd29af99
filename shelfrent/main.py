import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .database import Base, engine
from .domain.availability import router as availability_router
from .domain.bookings import router as bookings_router
from .domain.contracts import router as contracts_router
from .domain.revenue import router as revenue_router
from .errors import ShelfrentError, UnitConflict
from .queue import close_queue_pool
from .routes.trial_automation import router as trial_automation_router
from .routes.trial_automation import vendors_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


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

    yield
    logger.info("Application shutting down...")
    await close_queue_pool()


app = FastAPI(title="Shelfrent API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(ShelfrentError)
async def shelfrent_exception_handler(request: Request, exc: ShelfrentError):
    """Translate domain errors into JSON responses"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} - {type(exc).__name__}: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} - {type(exc).__name__}: {exc.message}")

    content = {"detail": exc.message, "error": type(exc).__name__}
    if isinstance(exc, UnitConflict):
        content["conflicts"] = exc.conflicts
    elif exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(exc.errors())})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    try:
        response = await call_next(request)
        return response
    except Exception as e:
        logger.error(f"{request.method} {request.url.path} - Error: {str(e)}")
        raise


# CORS Configuration
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:5173,http://localhost:3000",
).split(",")

logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(availability_router)
app.include_router(bookings_router)
app.include_router(contracts_router)
app.include_router(revenue_router)
app.include_router(trial_automation_router)
app.include_router(vendors_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
