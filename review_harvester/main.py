from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from review_harvester.api.router import api_router
from review_harvester.core.config import get_settings
from review_harvester.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from review_harvester.jobs.errors import NoActiveJob
from review_harvester.jobs.orchestrator import get_orchestrator
from review_harvester.services.repository import get_repository

logger = logging.getLogger(__name__)

_QUIET_PATHS = frozenset({"/", "/healthz"})


async def _drain_running_job() -> None:
    """Ask a running job to stop and wait until it is recorded as stopped."""
    orchestrator = get_orchestrator()
    try:
        await orchestrator.stop()
    except NoActiveJob:
        return
    logger.info("shutdown: waiting for the running job to reach a safe point")
    await orchestrator.wait()


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        yield
    finally:
        await _drain_running_job()
        shutdown_telemetry(app.state.telemetry)
        await get_repository().close()
        get_orchestrator.cache_clear()
        get_repository.cache_clear()


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging()
    application = FastAPI(title=settings.app_name, lifespan=lifespan)
    application.state.telemetry = setup_telemetry(settings, application)

    @application.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        started_at = time.perf_counter()
        response = await call_next(request)
        if request.url.path not in _QUIET_PATHS:
            logger.info(
                "http request method=%s path=%s status=%s duration_ms=%.2f",
                request.method,
                request.url.path,
                response.status_code,
                (time.perf_counter() - started_at) * 1000.0,
            )
        return response

    application.include_router(api_router)
    return application


app = create_app()
