"""
FastAPI application entry point.
Configures routes, middleware, and lifecycle events.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import FulfillmentConfig, settings
from app.database import close_db
from app.logging_config import configure_logging
from app.redis import RedisClient
import logging

# Import routers - MUST BE AT TOP LEVEL
from app.api.webhooks.razorpay import router as razorpay_router
from app.api.payments import router as payments_router
from app.api.admin.fulfillment import router as fulfillment_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifecycle manager."""
    # Startup
    configure_logging()
    logging.info(f"Starting up {settings.app_name} ({settings.app_env})...")

    if not app.state.fulfillment_config.shipment_creation_enabled:
        logging.warning("Shiprocket disabled: paid orders will need manual fulfillment")

    # Initialize Redis
    try:
        RedisClient.get_client()
    except Exception as e:
        logging.warning(f"Failed to initialize Redis: {e}")

    yield

    # Shutdown
    await RedisClient.close()
    await close_db()
    logging.info("Shutting down...")


app = FastAPI(
    title="Zeynora Payments",
    description="Razorpay payment confirmation and order fulfillment",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)

# Built once; routes receive it through get_fulfillment_config
app.state.fulfillment_config = FulfillmentConfig.from_settings(settings)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request body", "details": jsonable_encoder(exc.errors())},
    )


# Global Exception Handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logging.error(f"Global exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "details": str(exc)},
    )


# CORS middleware
origins = [settings.site_url]
if settings.is_development:
    origins.append("*")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "env": settings.app_env,
    }


# Register payment routes
app.include_router(
    razorpay_router,
    prefix="/api/payments",
    tags=["webhooks"],
)
app.include_router(
    payments_router,
    prefix="/api/payments",
    tags=["payments"],
)

# Register admin routes
app.include_router(
    fulfillment_router,
    prefix="/admin",
    tags=["admin"],
)
