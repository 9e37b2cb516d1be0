from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vm_monitor.api import health, stream
from vm_monitor.config import Settings, get_settings
from vm_monitor.logging_setup import configure_logging
from vm_monitor.services.broadcaster import Broadcaster, SubscriptionManager
from vm_monitor.services.metric_source import PsutilMetricSource
from vm_monitor.services.scheduler import Scheduler

log = structlog.get_logger()


@dataclass
class Runtime:
    """The collaborating pipeline objects of one application instance."""

    settings: Settings
    source: Any
    subscriptions: SubscriptionManager
    broadcaster: Broadcaster
    scheduler: Scheduler


def build_runtime(settings: Settings, source: Optional[Any] = None) -> Runtime:
    source = source if source is not None else PsutilMetricSource()
    subscriptions = SubscriptionManager()
    broadcaster = Broadcaster(subscriptions)
    scheduler = Scheduler(source, broadcaster, interval_ms=settings.update_interval_ms)
    return Runtime(
        settings=settings,
        source=source,
        subscriptions=subscriptions,
        broadcaster=broadcaster,
        scheduler=scheduler,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = app.state.runtime.scheduler
    scheduler.start()
    try:
        yield
    finally:
        await scheduler.stop()


def create_app(settings: Optional[Settings] = None, source: Optional[Any] = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(title="VM Monitor", lifespan=lifespan)
    app.state.runtime = build_runtime(settings, source)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
    )

    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(stream.router, tags=["stream"])
    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app on 0.0.0.0:PORT."""
    configure_logging()
    settings = get_settings()
    log.info("server_starting", port=settings.port, update_interval_ms=settings.update_interval_ms)
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
