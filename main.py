"""Main FastAPI application"""
import os
import logging
import logging.config
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import httpx
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from routes import router as api_router
from services.expense_store import InMemoryExpenseStore, MongoExpenseStore
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

# Load environment variables from .env (searches current dir and parents)
load_dotenv()

# --- Unified Logging Configuration with Rich ---
LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(name)s - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "default": {
            "class": "rich.logging.RichHandler",
            "formatter": "default",
            "level": "DEBUG",
            "rich_tracebacks": True,
            "show_time": True,
            "show_path": False,
            "log_time_format": "%Y-%m-%d %H:%M:%S",
            "markup": False,
        },
    },
    "loggers": {
        "uvicorn": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "uvicorn.error": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "uvicorn.access": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "": {
            "handlers": ["default"],
            "level": os.getenv("LOG_LEVEL", "INFO").upper(),
            "propagate": False,
        },
    },
}

logging.config.dictConfig(LOGGING_CONFIG)

logger = logging.getLogger(__name__)

EXPENSE_STORE = os.getenv("EXPENSE_STORE", "mongo").lower()
MONGODB_URI = os.getenv("MONGODB_URI")
DB_NAME = os.getenv("DB_NAME", "expenses_db")
MAX_BODY_SIZE = int(os.getenv("MAX_BODY_SIZE", str(64 * 1024)))
DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT", "120/minute")
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,POST,PUT,DELETE,OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type,Authorization",
}

if EXPENSE_STORE == "mongo" and not MONGODB_URI:
    logger.error("MONGODB_URI environment variable not set! Database connection will fail.")

# Application state holding the store, database client and HTTP client
app_state = {}

limiter = Limiter(key_func=get_remote_address, default_limits=[DEFAULT_RATE_LIMIT], enabled=RATE_LIMIT_ENABLED)


# --- Middleware for Request Body Size Limit ---
class LimitBodySizeMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.method in ("POST", "PUT"):
            content_length_header = request.headers.get("content-length")
            if content_length_header:
                try:
                    content_length = int(content_length_header)
                except ValueError:
                    logger.warning("Request rejected: Invalid Content-Length header.")
                    return JSONResponse({"message": "Invalid Content-Length header."}, status_code=400)
                if content_length > MAX_BODY_SIZE:
                    logger.warning(f"Request rejected: body size {content_length} exceeds limit {MAX_BODY_SIZE}.")
                    return JSONResponse({"message": f"Request body exceeds {MAX_BODY_SIZE} bytes."}, status_code=413)
        return await call_next(request)


async def connect_mongo_store():
    logger.info("Connecting to MongoDB...")
    try:
        app_state["db_client"] = AsyncIOMotorClient(MONGODB_URI, tz_aware=True)
        db = app_state["db_client"][DB_NAME]
        await app_state["db_client"].admin.command("ping")
        logger.info(f"MongoDB ping successful. Using database: {DB_NAME}")
        store = MongoExpenseStore(db.get_collection("expenses"), db.get_collection("counters"))
        await store.ensure_indexes()
        app_state["expense_store"] = store
    except Exception as e:
        logger.error(f"Failed to connect to MongoDB: {e}")
        app_state["expense_store"] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    if EXPENSE_STORE == "memory":
        logger.warning("Using the in-memory expense store. Data is lost on restart.")
        app_state["expense_store"] = InMemoryExpenseStore()
    else:
        await connect_mongo_store()
    app_state["http_client"] = httpx.AsyncClient()

    yield

    await app_state["http_client"].aclose()
    if app_state.get("db_client"):
        logger.info("Closing MongoDB connection...")
        app_state["db_client"].close()
        logger.info("MongoDB connection closed.")
    app_state.clear()


app = FastAPI(
    title="Expense Tracker API",
    description="API for recording, searching and summarizing personal expenses.",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"message": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Reports the first offending field as {message, field} with status 400."""
    errors = exc.errors()
    if not errors:
        return JSONResponse({"message": "Invalid request."}, status_code=400)
    first = errors[0]
    message = str(first.get("msg", "Invalid request.")).removeprefix("Value error, ")
    path = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "header")]
    content = {"message": message}
    if path:
        content["field"] = ".".join(path)
    logger.warning(f"Validation failed on {request.method} {request.url.path}: {content}")
    return JSONResponse(content, status_code=400)


# --- Middleware (last added runs first) ---
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)
app.add_middleware(LimitBodySizeMiddleware)

app.include_router(api_router, prefix="/api", tags=["api"])


@app.middleware("http")
async def add_app_state_to_request(request: Request, call_next):
    """Adds the expense store and HTTP client to the request state."""
    request.state.expense_store = app_state.get("expense_store")
    request.state.http_client = app_state.get("http_client")
    return await call_next(request)


@app.middleware("http")
async def short_circuit_options(request: Request, call_next):
    """Answers every OPTIONS request with 200, CORS headers and no body."""
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=CORS_HEADERS)
    return await call_next(request)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
    )
