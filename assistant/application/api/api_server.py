from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from application.api.container import ServiceContainer, build_container
from application.api.route import artifacts, chat, cron
from infrastructure.config.settings import Settings, get_settings
from infrastructure.observability.logging import metrics, setup_logging

logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None,
    **container_kwargs
) -> FastAPI:
    """Build the HTTP application.

    ``container_kwargs`` are forwarded to ``build_container`` (store,
    embeddings, runtime, distiller) when no container is given.
    """

    settings = settings or (services.settings if services else get_settings())
    services = services or build_container(settings, **container_kwargs)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, settings.log_format, settings.service_name)
        logger.info("Memory gate starting", scheduler_enabled=settings.enable_scheduler)

        if settings.enable_scheduler:
            services.scheduler.start()

        yield

        logger.info("Memory gate shutting down", pending_refreshes=services.refresher.pending)
        await services.scheduler.stop()
        await services.refresher.drain()

    app = FastAPI(title="Memory Gate", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-User-ID"],
    )

    app.include_router(chat.router)
    app.include_router(artifacts.router)
    app.include_router(cron.router)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "service": settings.service_name,
            "runtime_configured": services.runtime is not None,
            "metrics": metrics.get_metrics_summary(),
        }

    return app
