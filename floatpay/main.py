"""
FloatPay — FastAPI application entry point.

Configures logging, the app, middleware, error rendering, and registers
all API routers.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from floatpay.config import settings
from floatpay.core.errors import FloatPayError
from floatpay.api import dev, payment

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    from floatpay.database import engine
    from floatpay.redis_client import redis

    logger.info(
        "%s starting (env=%s, store=%s, audit=%s)",
        settings.APP_NAME, settings.APP_ENV, settings.QUOTE_STORE_BACKEND, settings.AUDIT_LOG_BACKEND,
    )

    yield

    # Shutdown: close connections
    await engine.dispose()
    await redis.aclose()


app = FastAPI(
    title=settings.APP_NAME,
    description="Crypto-to-fiat float settlement: risk-priced quotes and instant PIX payouts.",
    version="0.1.0",
    lifespan=lifespan,
)

# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error rendering ---


@app.exception_handler(FloatPayError)
async def floatpay_error_handler(request: Request, exc: FloatPayError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "code": exc.code},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg')}" if field else str(first.get("msg", "Invalid request"))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": message, "code": "validation_error"},
    )


# --- Routers ---
app.include_router(payment.router, prefix="/payment", tags=["Payment"])
app.include_router(dev.router, prefix="/dev", tags=["Development"])


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers and monitoring."""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": "0.1.0",
    }
