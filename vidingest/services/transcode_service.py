# Transcoding service - FFmpeg HLS packaging (remux or re-encode), tool health checks

import subprocess
import time
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from vidingest.services.format_inspector import Strategy
from vidingest.services.storage_service import StorageLayout

logger = logging.getLogger(__name__)

# Keep only the end of FFmpeg's stderr; the failure reason is in the last lines
ERROR_TAIL_CHARS = 4000


@dataclass
class TranscodeResult:
    success: bool
    strategy: Strategy
    manifest_path: Path
    returncode: Optional[int] = None
    error: Optional[str] = None
    segment_count: int = 0
    elapsed_seconds: float = 0.0


@dataclass
class ToolStatus:
    name: str
    path: str
    available: bool
    version: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ToolHealth:
    tools: Dict[str, ToolStatus] = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return all(tool.available for tool in self.tools.values())

    def to_dict(self) -> dict:
        return {
            name: {
                "path": tool.path,
                "available": tool.available,
                "version": tool.version,
                "error": tool.error,
            }
            for name, tool in self.tools.items()
        }


def check_tool(name: str, path: str, timeout: float = 5) -> ToolStatus:
    """Run `<tool> -version` and report whether it is executable"""
    try:
        result = subprocess.run(
            [path, "-version"], capture_output=True, text=True, errors="replace", timeout=timeout
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        return ToolStatus(name=name, path=path, available=False, error=str(e))

    if result.returncode != 0:
        return ToolStatus(
            name=name,
            path=path,
            available=False,
            error=f"exit code {result.returncode}",
        )

    first_line = result.stdout.strip().splitlines()[0] if result.stdout.strip() else None
    return ToolStatus(name=name, path=path, available=True, version=first_line)


def _tail(text: str, limit: int = ERROR_TAIL_CHARS) -> str:
    text = (text or "").strip()
    return text if len(text) <= limit else "..." + text[-limit:]


class TranscodeService:
    """Service for HLS packaging operations using FFmpeg"""

    def __init__(
        self,
        layout: StorageLayout,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        segment_time: int = 6,
        enable_hardware_acceleration: bool = False,
        hardware_encoder: str = "h264_nvenc",
        software_encoder: str = "libx264",
        preset: str = "ultrafast",
        crf: int = 28,
        keyframe_interval: int = 60,
        audio_codec: str = "aac",
        audio_bitrate: str = "128k",
    ):
        self.layout = layout
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.segment_time = segment_time
        self.enable_hardware_acceleration = enable_hardware_acceleration
        self.hardware_encoder = hardware_encoder
        self.software_encoder = software_encoder
        self.preset = preset
        self.crf = crf
        self.keyframe_interval = keyframe_interval
        self.audio_codec = audio_codec
        self.audio_bitrate = audio_bitrate

    def check_tools(self) -> ToolHealth:
        return ToolHealth(tools={
            "ffmpeg": check_tool("ffmpeg", self.ffmpeg_path),
            "ffprobe": check_tool("ffprobe", self.ffprobe_path),
        })

    def _hls_args(self, output_dir: Path) -> List[str]:
        return [
            "-f", "hls",
            "-hls_time", str(self.segment_time),
            "-hls_list_size", "0",          # keep every segment in the playlist
            "-hls_playlist_type", "vod",    # playlist is final, segments are never rewritten
            "-hls_segment_filename", self.layout.segment_pattern(output_dir),
            str(Path(output_dir) / self.layout.manifest_name),
        ]

    def _video_encoder_args(self) -> List[str]:
        if self.enable_hardware_acceleration:
            codec_args = ["-c:v", self.hardware_encoder, "-preset", self.preset, "-cq", str(self.crf)]
        else:
            codec_args = ["-c:v", self.software_encoder, "-preset", self.preset, "-crf", str(self.crf)]

        # Keyframe on every segment boundary so each segment is independently seekable
        keyframe_args = [
            "-g", str(self.keyframe_interval),
            "-keyint_min", str(self.keyframe_interval),
            "-sc_threshold", "0",
            "-force_key_frames", f"expr:gte(t,n_forced*{self.segment_time})",
        ]
        return codec_args + keyframe_args

    def build_command(self, source_path: str, output_dir: Path, strategy: Strategy) -> List[str]:
        """
        Build the FFmpeg argument list for one of the two profiles

        Args:
            source_path: Staged input file
            output_dir: Job directory receiving manifest and segments
            strategy: Strategy.REMUX or Strategy.REENCODE

        Returns:
            List[str]: Full command including the executable
        """
        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-nostdin",
            "-y",  # Overwrite output
            "-i", str(source_path),
        ]

        if strategy == Strategy.REMUX:
            cmd += ["-c", "copy"]
        else:
            cmd += self._video_encoder_args()
            cmd += ["-c:a", self.audio_codec, "-b:a", self.audio_bitrate]

        return cmd + self._hls_args(output_dir)

    def run(self, source_path: str, output_dir: Path, strategy: Strategy) -> TranscodeResult:
        """
        Package a source into HLS under output_dir

        Success requires exit code zero AND the manifest present on disk.
        No timeout and no retry are applied here.

        Returns:
            TranscodeResult
        """
        output_dir = Path(output_dir)
        manifest_path = output_dir / self.layout.manifest_name
        cmd = self.build_command(source_path, output_dir, strategy)

        logger.info(f"Starting {strategy.value}: {source_path} -> {manifest_path}")
        logger.debug(f"FFmpeg command: {' '.join(cmd)}")
        started = time.monotonic()

        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except OSError as e:
            logger.error(f"Failed to start FFmpeg for {source_path}: {e}")
            return TranscodeResult(
                success=False,
                strategy=strategy,
                manifest_path=manifest_path,
                error=f"Failed to start FFmpeg: {e}",
            )

        # communicate() drains stdout and stderr together while waiting
        _, stderr = process.communicate()
        elapsed = time.monotonic() - started

        if process.returncode != 0:
            message = f"FFmpeg {strategy.value} failed with code {process.returncode}: {_tail(stderr)}"
            logger.error(message)
            return TranscodeResult(
                success=False,
                strategy=strategy,
                manifest_path=manifest_path,
                returncode=process.returncode,
                error=message,
                elapsed_seconds=elapsed,
            )

        if not manifest_path.is_file():
            message = f"FFmpeg {strategy.value} exited 0 but produced no manifest at {manifest_path}"
            logger.error(message)
            return TranscodeResult(
                success=False,
                strategy=strategy,
                manifest_path=manifest_path,
                returncode=process.returncode,
                error=message,
                elapsed_seconds=elapsed,
            )

        segment_count = len(self.layout.segments_in(output_dir))
        logger.info(f"{strategy.value} completed in {elapsed:.1f}s with {segment_count} segments")

        return TranscodeResult(
            success=True,
            strategy=strategy,
            manifest_path=manifest_path,
            returncode=process.returncode,
            segment_count=segment_count,
            elapsed_seconds=elapsed,
        )
