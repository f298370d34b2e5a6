# Pipeline wiring - builds storage, inspector, transcoder, job store and scheduler from settings

import logging
from dataclasses import dataclass

from fastapi import Request

from vidingest.core.config import Settings
from vidingest.core.database import create_tables, make_engine, make_session_factory
from vidingest.services.format_inspector import FormatInspector
from vidingest.services.job_store import InMemoryJobStore, JobStore, SqlJobStore
from vidingest.services.retention_service import RetentionSweeper
from vidingest.services.scheduler import IngestionScheduler
from vidingest.services.storage_service import StorageLayout
from vidingest.services.transcode_service import ToolHealth, TranscodeService

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    settings: Settings
    layout: StorageLayout
    store: JobStore
    inspector: FormatInspector
    transcoder: TranscodeService
    scheduler: IngestionScheduler
    sweeper: RetentionSweeper
    tools: ToolHealth

    def refresh_tools(self) -> ToolHealth:
        self.tools = self.transcoder.check_tools()
        return self.tools

    @property
    def accepting(self) -> bool:
        return self.tools.healthy and self.scheduler.running


def build_job_store(settings: Settings) -> JobStore:
    if settings.job_store_backend == "database":
        engine = make_engine(settings.database_url)
        create_tables(engine)
        logger.info("Using database job store")
        return SqlJobStore(make_session_factory(engine))
    return InMemoryJobStore()


def build_pipeline(settings: Settings) -> Pipeline:
    """Create every pipeline component; nothing is started yet"""
    layout = StorageLayout(
        root=settings.video_storage_path,
        public_base_url=settings.public_base_url,
        manifest_name=settings.manifest_name,
        segment_index_width=settings.segment_index_width,
    )
    layout.ensure_root()

    inspector = FormatInspector(
        ffprobe_path=settings.ffprobe_path,
        timeout=settings.probe_timeout_seconds,
        target_codec=settings.target_codec,
        max_width=settings.max_remux_width,
        max_height=settings.max_remux_height,
    )
    transcoder = TranscodeService(
        layout=layout,
        ffmpeg_path=settings.ffmpeg_path,
        ffprobe_path=settings.ffprobe_path,
        segment_time=settings.hls_segment_time,
        enable_hardware_acceleration=settings.enable_hardware_acceleration,
        hardware_encoder=settings.hardware_encoder,
        software_encoder=settings.software_encoder,
        preset=settings.preset,
        crf=settings.crf,
        keyframe_interval=settings.keyframe_interval,
        audio_codec=settings.audio_codec,
        audio_bitrate=settings.audio_bitrate,
    )
    store = build_job_store(settings)
    scheduler = IngestionScheduler(
        store=store,
        layout=layout,
        inspector=inspector,
        transcoder=transcoder,
        max_parallel=settings.max_parallel_processes,
        poll_interval=settings.queue_poll_interval,
    )

    return Pipeline(
        settings=settings,
        layout=layout,
        store=store,
        inspector=inspector,
        transcoder=transcoder,
        scheduler=scheduler,
        sweeper=RetentionSweeper(layout),
        tools=transcoder.check_tools(),
    )


def get_pipeline(request: Request) -> Pipeline:
    """
    Dependency returning the running pipeline.
    Use in FastAPI route dependencies: `pipeline: Pipeline = Depends(get_pipeline)`
    """
    return request.app.state.pipeline
