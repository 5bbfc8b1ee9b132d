"""Application configuration and router setup."""

from contextlib import asynccontextmanager
from typing import Optional

import fastapi
from fastapi import Request
from fastapi.middleware import cors
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse

from components.core import config, init_db
from components.core.exceptions import (
    AdvanceServiceError,
    ConfigurationError,
    EligibilityError,
    NotFoundError,
    PaymentInitiationError,
    ValidationError,
)
from components.core.logging import get_logger, setup_logging
from components.core.providers import get_locks, get_notifier, get_payment_network
from components.scheduler.jobs import create_scheduler
from restapi.endpoints import advance, health_check, payment

settings = config.get_settings()
logger = get_logger(__name__)

ERROR_STATUS_CODES = (
    (ValidationError, 400),
    (EligibilityError, 400),
    (NotFoundError, 404),
    (ConfigurationError, 500),
    (PaymentInitiationError, 502),
)


async def service_error_handler(request: Request, exc: AdvanceServiceError) -> JSONResponse:
    """Render service errors in the same shape as HTTPException."""
    status_code = 500
    for error_type, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            status_code = code
            break
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def create_app(scheduler_enabled: Optional[bool] = None) -> fastapi.FastAPI:
    """Create and configure the FastAPI application."""
    if scheduler_enabled is None:
        scheduler_enabled = settings.SCHEDULER_ENABLED

    @asynccontextmanager
    async def lifespan(app: fastapi.FastAPI):
        setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
        scheduler = None
        if scheduler_enabled:
            scheduler = create_scheduler(
                init_db.db_manager, get_payment_network(), get_locks(), get_notifier()
            )
            scheduler.start()
            logger.info("Background scheduler started")
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown(wait=False)
            await get_notifier().drain()
            await get_notifier().sender.aclose()
            await get_payment_network().aclose()
            await init_db.db_manager.dispose()

    app = fastapi.FastAPI(
        title=settings.SERVICE_NAME,
        description="Salary advances with M-PESA disbursement and repayment reconciliation",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Initialize database
    init_db.init_db(app)

    # Add CORS middleware
    app.add_middleware(
        cors.CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AdvanceServiceError, service_error_handler)

    # Include routers
    app.include_router(health_check.router)
    app.include_router(advance.router)
    app.include_router(payment.router)

    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema
        openapi_schema = get_openapi(
            title=settings.SERVICE_NAME,
            version="1.0.0",
            description="Salary advances with M-PESA disbursement and repayment reconciliation",
            routes=app.routes,
        )
        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi

    return app
