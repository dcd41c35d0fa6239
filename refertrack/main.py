"""
ReferTrack - homeowner referral tracking for home-improvement contractors.

Run with: uvicorn refertrack.main:create_app --factory
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from refertrack.config import Settings, get_settings
from refertrack.api.errors import referral_error_handler
from refertrack.api.health import APP_VERSION
from refertrack.api.router import api_router
from refertrack.database import dispose_engine
from refertrack.errors import ReferralError
from refertrack.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("refertrack")

WORKER_SHUTDOWN_GRACE_SECONDS = 10.0


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's X-Correlation-ID or mint one, and echo it back."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


def _warn_on_missing_config(settings: Settings) -> None:
    if not settings.jwt_secret:
        logger.warning("JWT_SECRET not set - tokens are signed with APP_SECRET_KEY")
    if not settings.tremendous_api_key:
        logger.warning("TREMENDOUS_API_KEY not set - gift card and payment rewards will fail")


def _init_sentry(settings: Settings) -> None:
    try:
        import sentry_sdk
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            traces_sample_rate=0.1,
            environment=settings.app_env,
        )
        logger.info("Sentry initialized")
    except Exception as e:
        logger.warning("Sentry initialization failed: %s", str(e))


async def _stop_workers(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    if not tasks:
        return
    _, pending = await asyncio.wait(tasks, timeout=WORKER_SHUTDOWN_GRACE_SECONDS)
    if pending:
        logger.warning("%d workers still running after shutdown grace period", len(pending))
        await asyncio.gather(*pending, return_exceptions=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("ReferTrack starting up (env=%s)", settings.app_env)
    _warn_on_missing_config(settings)
    if settings.sentry_dsn:
        _init_sentry(settings)

    worker_tasks: list[asyncio.Task] = []
    if settings.lifecycle_worker_enabled:
        from refertrack.workers.referral_lifecycle import run_referral_lifecycle
        worker_tasks.append(asyncio.create_task(run_referral_lifecycle()))
        logger.info("Referral lifecycle worker started")
    else:
        logger.info("Referral lifecycle worker disabled (LIFECYCLE_WORKER_ENABLED=false)")

    yield

    logger.info("ReferTrack shutting down - stopping %d workers", len(worker_tasks))
    await _stop_workers(worker_tasks)
    await dispose_engine()
    logger.info("ReferTrack shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="ReferTrack",
        description="Homeowner referral tracking for home-improvement contractors",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    # Contractor dashboard origins
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173", settings.app_base_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID"],
        expose_headers=["X-Correlation-ID", "Content-Disposition"],
    )
    # Added last so it wraps CORS and tags every response
    application.add_middleware(CorrelationIdMiddleware)

    application.add_exception_handler(ReferralError, referral_error_handler)
    application.include_router(api_router)

    return application
