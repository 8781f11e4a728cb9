import asyncio
import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from onboarding.config import settings
from onboarding.core.exceptions import (
    ConfigurationError,
    ProvisioningCancelledError,
    ProvisioningFailedError,
    ProvisioningTimeoutError,
    TemplateValidationError,
)
from onboarding.core.middleware import install_middleware
from onboarding.modules.provisioning import routes as provisioning_routes
from onboarding.modules.rbac import routes as rbac_routes
from onboarding.modules.reconciliation import routes as reconciliation_routes

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    redirect_slashes=False,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(TemplateValidationError)
async def validation_error_handler(request: Request, exc: TemplateValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc), "errors": exc.errors})


@app.exception_handler(ProvisioningFailedError)
async def provisioning_failed_handler(request: Request, exc: ProvisioningFailedError):
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "stackStatus": exc.stack_status},
    )


@app.exception_handler(ProvisioningCancelledError)
async def provisioning_cancelled_handler(request: Request, exc: ProvisioningCancelledError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ProvisioningTimeoutError)
async def provisioning_timeout_handler(request: Request, exc: ProvisioningTimeoutError):
    return JSONResponse(status_code=504, content={"detail": str(exc)})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Configuration error: %s", exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception: %s", exc)
    if settings.is_production:
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    return JSONResponse(status_code=500, content={"detail": str(exc)})


install_middleware(app, settings)

# Include module routes
app.include_router(provisioning_routes.router, prefix="/api/v1")
app.include_router(rbac_routes.router, prefix="/api/v1")
app.include_router(reconciliation_routes.router, prefix="/api/v1")


@app.on_event("startup")
async def startup_event():
    logger.info("Application startup")

    if settings.reconciliation_enabled:
        from onboarding.core.dependencies import (
            get_entity_store,
            get_metrics,
            get_reconciliation_sweep,
            get_secrets_service,
        )
        from onboarding.modules.reconciliation.scheduler import reconciliation_scheduler_loop

        sweep = get_reconciliation_sweep(get_entity_store(), get_metrics(), get_secrets_service())
        app.state.reconciliation_task = asyncio.create_task(
            reconciliation_scheduler_loop(sweep, settings.reconciliation_interval_seconds)
        )
        logger.info(
            f"Reconciliation scheduler started (dry_run={settings.reconciliation_dry_run}, "
            f"every {settings.reconciliation_interval_seconds}s)"
        )
    else:
        logger.info("Reconciliation scheduler disabled, set RECONCILIATION_ENABLED=true to activate")


@app.on_event("shutdown")
async def shutdown_event():
    task = getattr(app.state, "reconciliation_task", None)
    if task is not None:
        task.cancel()
        logger.info("Reconciliation scheduler stopped")
    logger.info("Application shutdown")


@app.get("/")
async def root():
    return {"message": f"Welcome to {settings.app_name}", "status": "healthy"}


@app.get("/health")
@limiter.exempt
async def health():
    return {"status": "healthy"}


@app.get("/ready")
@limiter.exempt
async def ready():
    return {
        "status": "ready",
        "controlPlaneTable": settings.control_plane_table_name,
        "notifications": settings.notifications_enabled,
        "reconciliation": settings.reconciliation_enabled,
    }
