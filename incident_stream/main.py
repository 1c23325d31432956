import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from incident_stream.api.routes import health, stats
from incident_stream.core.config import settings
from incident_stream.core.exceptions import ConfigurationError
from incident_stream.core.logging import get_logger
from incident_stream.schemas.incident import IncidentRecord
from incident_stream.services.stream import IncidentStream, PipelineRegistry, build_pipeline, consume

log = get_logger("app")

# Background consumer handle
_consumer_task: Optional[asyncio.Task] = None


def log_incident(record: IncidentRecord) -> None:
    meta = record.metadata
    log.info(
        f"Incident {meta.incident_id} [{meta.severity}/{meta.status}] {meta.incident_name} "
        f"alerts={len(record.data)} updated={meta.last_update_time}"
    )


async def run_consumer(stream: IncidentStream) -> None:
    """Background task that keeps demand open and logs every incident."""
    log.info(f"Consumer for {stream.pipeline_id} started (demand: {settings.STREAM_DEMAND})")
    try:
        counts = await consume(stream, log_incident, demand=settings.STREAM_DEMAND)
        log.info(f"Consumer for {stream.pipeline_id} finished: {counts}")
    except asyncio.CancelledError:
        log.info(f"Consumer for {stream.pipeline_id} cancelled")
        raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _consumer_task

    log.info(f"Starting application in {settings.ENV.upper()} mode")
    pipelines = PipelineRegistry()
    app.state.pipelines = pipelines

    if settings.STREAM_ENABLED:
        try:
            stream = build_pipeline(settings.pipeline_options(), registry=pipelines)
        except ConfigurationError:
            log.exception("Refusing to start: incident stream configuration is invalid")
            raise
        _consumer_task = asyncio.create_task(run_consumer(stream))
    else:
        log.info("Incident stream is disabled (STREAM_ENABLED=false)")

    yield

    # Shutdown
    log.info("Shutting down pipelines...")
    for stream in pipelines.all():
        await stream.aclose()

    if _consumer_task:
        _consumer_task.cancel()
        try:
            await _consumer_task
        except asyncio.CancelledError:
            pass
        _consumer_task = None

    log.info("Application shutdown complete")


app = FastAPI(
    title="Incident Stream",
    description="Demand-driven stream of Microsoft 365 Defender incidents",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.docs_enabled else None,
    redoc_url="/redoc" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.docs_enabled else None,
)


app.include_router(health.router)
app.include_router(stats.router)
