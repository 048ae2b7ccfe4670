from fastapi import FastAPI, Request
from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
import os
from dotenv import load_dotenv

# Load environment variables before settings are read
load_dotenv()

# Import core components
from app.core.logging_config import setup_logging
from app.core.settings import settings
from app.middleware.logging import LoggingMiddleware

# Import configuration
from app.config import init_firebase

# Register every mapper before the first query
from app import models as _models  # noqa: F401

# Import route modules
from app.routes import fastspring, tenants, health, scheduled_tasks, metrics
from app.exceptions import (
    AppException,
    PaymentRequiredException, WebhookSignatureError,
    BillingConfigurationError, FastSpringAPIError,
)

# Set up logging first
logger = setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup logic
    logger.info("=" * 50)
    logger.info("Modulyn CRM billing API starting up")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"CORS origins: {settings.cors_origins}")
    logger.info(f"SQL Debug: {'enabled' if settings.sql_debug else 'disabled'}")
    webhook_status = "configured" if settings.fastspring_private_key else "NOT configured (webhooks will return 500)"
    logger.info(f"FastSpring webhook key: {webhook_status}")
    logger.info(f"Billing handler timeout: {settings.billing_handler_timeout_seconds}s, "
                f"max attempts: {settings.billing_max_attempts}")
    logger.info("=" * 50)
    yield
    # Shutdown logic
    logger.info("Modulyn CRM billing API shutting down gracefully")

app = FastAPI(
    title="Modulyn CRM API",
    description="Multi-tenant CRM: tenant subscription lifecycle and trial gating",
    version="1.0.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

# Add middleware in correct order (last added = first executed)
app.add_middleware(LoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_origins != ["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

# Tests override get_current_user, so token verification is never reached there
if settings.environment != "test" and init_firebase():
    logger.info("Firebase token verification enabled")

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(fastspring.router)
app.include_router(tenants.router)
app.include_router(scheduled_tasks.router)
app.include_router(metrics.router)


def _correlation_id(request: Request) -> str:
    return getattr(request.state, 'correlation_id', 'unknown')

# Exception handlers
@app.exception_handler(WebhookSignatureError)
async def webhook_signature_exception_handler(request: Request, exc: WebhookSignatureError):
    logger.warning(f"[{_correlation_id(request)}] Rejected FastSpring webhook: {exc.detail}")
    return PlainTextResponse("INVALID SIGNATURE", status_code=401)

@app.exception_handler(BillingConfigurationError)
async def billing_configuration_exception_handler(request: Request, exc: BillingConfigurationError):
    logger.error(f"[{_correlation_id(request)}] Billing configuration error: {exc.detail}")
    return PlainTextResponse("ERROR", status_code=500)

@app.exception_handler(PaymentRequiredException)
async def payment_required_exception_handler(request: Request, exc: PaymentRequiredException):
    logger.info(f"[{_correlation_id(request)}] Trial gate blocked {request.url.path}")
    return JSONResponse(
        status_code=402,
        content={"status": "error", "message": exc.detail, "upgradeUrl": exc.upgrade_url}
    )

@app.exception_handler(FastSpringAPIError)
async def fastspring_api_exception_handler(request: Request, exc: FastSpringAPIError):
    correlation_id = _correlation_id(request)
    logger.error(f"[{correlation_id}] FastSpring API error on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=502,
        content={"status": "error", "message": exc.detail, "correlation_id": correlation_id}
    )

@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    # 401/403/400/404 share one body shape; subclasses with their own handler above win by MRO
    correlation_id = _correlation_id(request)
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(f"[{correlation_id}] {type(exc).__name__} ({exc.status_code}) on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "correlation_id": correlation_id}
    )

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    correlation_id = _correlation_id(request)
    logger.error(f"[{correlation_id}] Unhandled exception on {request.url.path}: {str(exc)}", exc_info=True)

    content = {"detail": "Internal server error", "correlation_id": correlation_id}
    if settings.is_development:
        content.update(error=str(exc), type=type(exc).__name__)
    return JSONResponse(status_code=500, content=content)


@app.get("/", tags=["Root"])
async def root():
    """Service banner with the billing entry points."""
    return {
        "message": "Modulyn CRM API",
        "version": app.version,
        "environment": settings.environment,
        "status": "running",
        "webhook_url": "/api/fastspring/webhook",
        "health_check": "/health/detailed",
        "docs_url": app.docs_url,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        log_level=settings.log_level.lower(),
    )
