"""
Storefront checkout service
Cart, checkout initiation, payment webhook reconciliation and order admin
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError
import subprocess
import os

from storefront.core import ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger
from storefront.core_settings import get_settings
from storefront.application.errors import ReconciliationSkipped, StorefrontError
from storefront.api.carts import router as carts_router
from storefront.api.checkout import router as checkout_router
from storefront.api.orders import router as orders_router
from storefront.api.products import router as products_router
from storefront.api.webhooks import router as webhooks_router
from storefront.infrastructure.db import get_engine, init_models

settings = get_settings()

# Service configuration
SERVICE_NAME = "storefront-service"
SERVICE_VERSION = settings.SERVICE_VERSION
SERVICE_DESCRIPTION = "Storefront checkout and order reconciliation service"

# Setup structured logging
setup_logging(
    service_name=SERVICE_NAME,
    level=settings.LOG_LEVEL
)

logger = get_logger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    logger.info(f"Starting {SERVICE_NAME} version {SERVICE_VERSION}")

    if settings.RUN_MIGRATIONS:
        logger.info("Running database migrations")
        try:
            result = subprocess.run(
                ["alembic", "upgrade", "head"],
                cwd=os.path.join(os.path.dirname(__file__), ".."),
                capture_output=True,
                text=True,
                check=False
            )
        except OSError as e:
            logger.error(f"Migration error: {e}")
        else:
            if result.returncode != 0:
                logger.warning(f"Migration output: {result.stderr}")
            else:
                logger.info("Database migrations completed")

    try:
        init_models()
        logger.info("Database models initialized")
    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize database models: {e}")
        raise

    if not settings.stripe_configured:
        logger.warning("STRIPE_SECRET_KEY is missing or a placeholder; checkout will fail")

    logger.info(f"{SERVICE_NAME} started successfully")

    yield

    # Shutdown
    logger.info(f"Shutting down {SERVICE_NAME}")

# Create FastAPI application
app = FastAPI(
    title=SERVICE_NAME,
    description=SERVICE_DESCRIPTION,
    version=SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.SHOP_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add request logging middleware
app.add_middleware(RequestLoggingMiddleware)

@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    if isinstance(exc, ReconciliationSkipped):
        # Acknowledged so the processor stops re-delivering
        return JSONResponse(status_code=200, content={"received": True, "outcome": "skipped", "reason": exc.reason})
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")
    else:
        logger.warning(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Database error"})

# Initialize health checks
health_service = ServiceHealth(SERVICE_NAME, SERVICE_VERSION, get_engine, get_settings)
health_router = health_service.create_health_router()
app.include_router(health_router)

# Include business logic routes
app.include_router(products_router)
app.include_router(carts_router)
app.include_router(checkout_router)
app.include_router(webhooks_router)
app.include_router(orders_router)

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "running",
        "docs": "/api/docs"
    }

@app.get("/info")
async def info():
    """Service information endpoint"""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "description": SERVICE_DESCRIPTION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "endpoints": {
            "health": "/health",
            "ready": "/health/ready",
            "live": "/health/live",
            "metrics": "/metrics",
            "docs": "/api/docs",
            "webhook": "/webhooks/stripe"
        }
    }
