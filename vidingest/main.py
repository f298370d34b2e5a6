# FastAPI application entrypoint - builds the pipeline, mounts routers, manages scheduler lifecycle

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
import logging

from vidingest.api import ping, system, videos
from vidingest.core.config import Settings, settings as default_settings
from vidingest.core.pipeline import build_pipeline

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        pipeline = build_pipeline(settings)

        if not pipeline.tools.healthy:
            missing = [name for name, tool in pipeline.tools.tools.items() if not tool.available]
            if settings.require_tools_on_startup:
                raise RuntimeError(f"Required tools unavailable: {', '.join(missing)}")
            logger.warning(f"Tools unavailable ({', '.join(missing)}); uploads are refused until they are reachable")

        pipeline.scheduler.recover()
        pipeline.scheduler.start()
        app.state.pipeline = pipeline
        try:
            yield
        finally:
            pipeline.scheduler.stop(wait=True)

    app = FastAPI(
        title="vidingest",
        description="Video ingestion and HLS transcoding pipeline",
        lifespan=lifespan,
    )

    app.include_router(ping.router, prefix="/api", tags=["health"])
    app.include_router(system.router, tags=["health"])
    app.include_router(videos.router, prefix="/api/v1/videos", tags=["videos"])

    @app.get("/")
    def read_root():
        return {"system": "vidingest", "status": "online", "version": "1.0.0"}

    return app


configure_logging(default_settings.log_level)
app = create_app()
