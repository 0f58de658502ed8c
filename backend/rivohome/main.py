# backend/rivohome/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import FastAPI, Response

from .core.config import is_running_tests, settings
from .core.request_context import attach_request_id_filter
from .middleware.rate_limiter_asgi import RateLimitMiddlewareASGI
from .monitoring.prometheus_metrics import CONTENT_TYPE_LATEST, get_metrics
from .ratelimit.dependency import install_rate_limit_handler
from .ratelimit.limiter import get_rate_limiter
from .ratelimit.redis_backend import close_rate_limit_redis_client

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
)
attach_request_id_filter()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Select the counter store on startup and release Redis on shutdown."""
    limiter = get_rate_limiter()
    logger.info(
        "RivoHome API starting up (rate limiting %s, store=%s)",
        "enabled" if settings.rate_limit_enabled else "disabled",
        limiter.store.name,
    )
    if settings.is_testing or is_running_tests():
        logger.info("Running under pytest (test mode active)")
    yield
    await limiter.close()
    await close_rate_limit_redis_client()
    logger.info("RivoHome API shut down")


def create_app() -> FastAPI:
    app = FastAPI(title="RivoHome API", lifespan=app_lifespan)
    install_rate_limit_handler(app)
    app.add_middleware(RateLimitMiddlewareASGI)

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
