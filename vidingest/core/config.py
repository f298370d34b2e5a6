# Application settings and environment variable loading (Pydantic BaseSettings)

from pydantic import Field
from pydantic_settings import BaseSettings
from typing import List, Literal


class Settings(BaseSettings):
    """Pipeline settings with environment variable support"""

    # Storage Settings
    video_storage_path: str = Field(default="videos")
    public_base_url: str = Field(default="http://localhost:8000/videos")
    manifest_name: str = Field(default="master.m3u8")
    segment_index_width: int = Field(default=5, ge=3, le=9)
    max_upload_size: int = Field(default=500 * 1024 * 1024)  # 500MB
    allowed_extensions: List[str] = Field(default=[".mp4", ".mov", ".avi", ".mkv", ".webm"])

    # FFmpeg Settings
    ffmpeg_path: str = Field(default="ffmpeg")
    ffprobe_path: str = Field(default="ffprobe")
    probe_timeout_seconds: float = Field(default=30.0, gt=0)
    target_codec: str = Field(default="h264")
    max_remux_width: int = Field(default=1920)
    max_remux_height: int = Field(default=1080)
    enable_hardware_acceleration: bool = Field(default=False)
    hardware_encoder: str = Field(default="h264_nvenc")
    software_encoder: str = Field(default="libx264")
    preset: str = Field(default="ultrafast")
    crf: int = Field(default=28)
    keyframe_interval: int = Field(default=60)  # frames
    audio_codec: str = Field(default="aac")
    audio_bitrate: str = Field(default="128k")
    hls_segment_time: int = Field(default=6)  # seconds

    # Scheduler Settings
    max_parallel_processes: int = Field(default=2, ge=1)
    queue_poll_interval: float = Field(default=1.0, gt=0)

    # Job Store Settings
    job_store_backend: Literal["memory", "database"] = Field(default="memory")
    database_url: str = Field(default="sqlite:///./vidingest.db")

    # Maintenance / Health
    retention_days: int = Field(default=7, ge=0)
    require_tools_on_startup: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
