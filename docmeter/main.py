"""
FastAPI application entry point.
Sets up the API with lifespan events, error mapping and metrics.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from docmeter.api.router import api_router
from docmeter.config import settings
from docmeter.errors import ApiError, RateLimitExceededError
from docmeter.middleware.metrics_middleware import MetricsMiddleware
from docmeter.utils.logging import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup/shutdown events.
    - Startup: configure logging and create tables for the SQL store
    """
    configure_logging('docmeter-api', settings.log_level)

    if settings.store_backend.lower() == "sql":
        from docmeter.database import init_db
        await init_db()

    yield


app = FastAPI(
    title="docmeter API",
    description="Metered document generation API",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Metrics middleware (must be after CORS to track all requests)
app.add_middleware(MetricsMiddleware)

app.include_router(api_router, prefix="/api")


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    """Render domain errors as {"error": {code, message, details}}."""
    headers = None
    if isinstance(exc, RateLimitExceededError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "docmeter API",
        "version": "0.1.0",
        "environment": settings.environment
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )
