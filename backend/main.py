"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api import admin, connections, reference, webhooks
from config import settings
from database import get_session_local
from integrations.provider_registry import ProviderRegistry, get_provider_registry
from logging_config import setup_logging
from services.job_lock import JobLockService
from services.refresh_service import JOB_NAME as ACCOUNT_REFRESH_JOB
from services.refresh_service import RefreshService
from services.reference_data_service import JOB_NAME as REFERENCE_CACHE_JOB
from services.reference_data_service import ReferenceDataService
from services.scheduler import JobScheduler
from services.webhook_service import WebhookService
from services.webhook_signature import WebhookSignatureVerifier

setup_logging()
logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT_SECONDS = 10.0


def build_services(app: FastAPI, registry: ProviderRegistry) -> None:
    """Create the long-lived services and attach them to ``app.state``."""
    session_factory = get_session_local()
    locks = JobLockService(session_factory, ttl_seconds=settings.JOB_LOCK_TTL_SECONDS)

    app.state.webhook_service = WebhookService(
        verifiers={
            "SnapTrade": WebhookSignatureVerifier(
                settings.SNAPTRADE_WEBHOOK_SECRET,
                allow_unsigned=settings.is_development,
            ),
        }
    )
    app.state.refresh_service = RefreshService(
        session_factory,
        provider_registry=registry,
        lock_service=locks,
        inter_user_delay=settings.REFRESH_INTER_USER_DELAY_SECONDS,
    )
    app.state.reference_service = ReferenceDataService(
        settings.reference_symbols,
        provider_registry=registry,
        ttl_hours=settings.REFERENCE_CACHE_TTL_HOURS,
        delay_seconds=settings.REFERENCE_CACHE_DELAY_SECONDS,
        lock_service=locks,
    )


def build_scheduler(app: FastAPI) -> JobScheduler:
    """Register the recurring jobs on a new scheduler."""
    scheduler = JobScheduler(timezone=settings.SCHEDULER_TIMEZONE)
    refresh_service: RefreshService = app.state.refresh_service
    reference_service: ReferenceDataService = app.state.reference_service

    scheduler.add_job(
        ACCOUNT_REFRESH_JOB,
        settings.ACCOUNT_REFRESH_SCHEDULE,
        refresh_service.run_scheduled,
        enabled=settings.ACCOUNT_REFRESH_ENABLED,
        on_cancel=refresh_service.cancel,
    )
    scheduler.add_job(
        REFERENCE_CACHE_JOB,
        settings.REFERENCE_CACHE_SCHEDULE,
        reference_service.run_scheduled,
        enabled=settings.REFERENCE_CACHE_ENABLED,
    )
    return scheduler


def shutdown_services(app: FastAPI, timeout: float = SHUTDOWN_TIMEOUT_SECONDS) -> None:
    """Stop the scheduler and any manually triggered refresh batch."""
    app.state.scheduler.stop(timeout=timeout)
    refresh_service: RefreshService = app.state.refresh_service
    if refresh_service.cancel():
        logger.info("Waiting for manual account refresh to stop")
    refresh_service.wait(timeout)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services, start the scheduler on boot, stop it on shutdown."""
    build_services(app, get_provider_registry())
    app.state.scheduler = build_scheduler(app)
    if settings.SCHEDULER_ENABLED:
        app.state.scheduler.start()
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")
    try:
        yield
    finally:
        shutdown_services(app)


app = FastAPI(
    title="linksync",
    description="Brokerage connection lifecycle and account sync service",
    version="0.1.0",
    lifespan=lifespan,
)

# Include API routers
app.include_router(admin.router)
app.include_router(connections.router)
app.include_router(reference.router)
app.include_router(webhooks.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
