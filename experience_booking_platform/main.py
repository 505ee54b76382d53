"""FastAPI application setup and configuration."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from experience_booking_platform.config import settings
from experience_booking_platform.api import api_router
from experience_booking_platform.database import init_database, close_database
from experience_booking_platform.middleware import (
    ErrorHandlerMiddleware,
    LoggingMiddleware,
    request_validation_handler,
)
from experience_booking_platform.utils.logging_config import setup_logging

# Set up logging
setup_logging(
    log_level="DEBUG" if settings.debug else settings.log_level,
    log_file="logs/experience_booking.log" if settings.environment == "production" else None,
    enable_json_logging=settings.enable_json_logging or settings.environment == "production",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting Experience Booking Platform")
    await init_database()
    yield
    logger.info("Shutting down Experience Booking Platform")
    await close_database()


app = FastAPI(
    title="Experience Booking Platform API",
    description="""
    ## Experience Booking Platform

    Businesses publish experiences made of events and time-slotted sessions;
    guests book tickets and optional add-ons against each session's capacity.

    ### Authentication

    Every endpoint acts for one business. Send a bearer token whose
    `business_id` claim names it: `Authorization: Bearer <token>`.

    ### Capacity

    A session's capacity comes from the session, else its event, else its
    experience. Bookings never push a session past that ceiling, even under
    concurrent load; a request that loses a race twice gets `409` with a
    `Retry-After` header.

    ### Errors

    ```json
    {
      "error": {
        "error_code": "CAPACITY_EXCEEDED",
        "message": "Insufficient capacity: only 2 spots available",
        "details": {"spots_available": 2}
      },
      "error_id": "...",
      "timestamp": "..."
    }
    ```
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "bookings", "description": "Create, change and list bookings"},
        {"name": "guests", "description": "Guest records and their bookings"},
        {"name": "catalog", "description": "Experiences, events, sessions and add-ons"},
        {"name": "health", "description": "Service health"},
    ],
    lifespan=lifespan,
)

# Outermost middleware is added last

app.add_middleware(
    ErrorHandlerMiddleware,
    debug=settings.debug
)

app.add_middleware(
    LoggingMiddleware,
    log_requests=settings.enable_request_logging,
    log_responses=settings.enable_request_logging,
)

if settings.debug:
    cors_origins = ["*"]
    cors_allow_credentials = False  # Cannot use credentials with wildcard origins
else:
    cors_origins = settings.cors_origins
    cors_allow_credentials = settings.cors_allow_credentials

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
    expose_headers=settings.cors_expose_headers
)

app.add_exception_handler(RequestValidationError, request_validation_handler)

# Include API routes
app.include_router(api_router)


@app.get("/", tags=["health"])
async def root():
    """Basic information about the API."""
    return {
        "message": "Experience Booking Platform API",
        "version": "1.0.0",
        "docs_url": "/docs",
        "status": "operational"
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Basic health check for uptime monitoring."""
    return {"status": "healthy", "service": "experience-booking-platform"}
