# Storage layout - per-job directories, staging paths, manifest and segment naming, public URLs

import os
import re
import uuid
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from vidingest.core.errors import InvalidJobId, StorageError

logger = logging.getLogger(__name__)

JOB_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,127}$")
STAGING_PREFIX = "temp_"
SEGMENT_PREFIX = "segment_"
SEGMENT_EXTENSION = ".ts"


def directory_created_at(path: Path) -> float:
    """
    Creation timestamp of a directory.

    Uses the birth time where the platform records one, otherwise the inode
    change time.
    """
    stat = path.stat()
    return getattr(stat, "st_birthtime", None) or stat.st_ctime


class StorageLayout:
    """Maps job identifiers to directories and canonical file names"""

    def __init__(
        self,
        root: str,
        public_base_url: str,
        manifest_name: str = "master.m3u8",
        segment_index_width: int = 5,
    ):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")
        self.manifest_name = manifest_name
        self.segment_index_width = segment_index_width

    @staticmethod
    def validate_job_id(job_id: Optional[str]) -> str:
        """
        Check that a job id is usable as a directory name

        Raises:
            InvalidJobId: if empty, too long, or contains path characters
        """
        if not job_id or not JOB_ID_PATTERN.match(job_id):
            raise InvalidJobId(
                f"Invalid job id {job_id!r}: use 1-128 letters, digits, '_' or '-'"
            )
        return job_id

    def ensure_root(self) -> Path:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create storage root '{self.root}': {e}") from e
        return self.root

    def job_dir(self, job_id: str) -> Path:
        return self.root / self.validate_job_id(job_id)

    def ensure_job_dir(self, job_id: str) -> Path:
        """
        Create the job directory if absent (idempotent)

        Raises:
            StorageError: if the directory cannot be created
        """
        path = self.job_dir(job_id)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create job directory '{path}': {e}") from e
        return path

    def staging_path(self, job_id: str, filename: str) -> Path:
        """Unique path inside the job directory for a raw upload"""
        safe_name = re.sub(r"[^A-Za-z0-9._-]", "_", os.path.basename(filename or "upload"))
        return self.job_dir(job_id) / f"{STAGING_PREFIX}{uuid.uuid4().hex[:12]}_{safe_name}"

    def manifest_path(self, job_id: str) -> Path:
        return self.job_dir(job_id) / self.manifest_name

    def manifest_url(self, job_id: str) -> str:
        return f"{self.public_base_url}/{self.validate_job_id(job_id)}/{self.manifest_name}"

    def segment_filename(self, index: int) -> str:
        return f"{SEGMENT_PREFIX}{index:0{self.segment_index_width}d}{SEGMENT_EXTENSION}"

    def segment_pattern(self, output_dir: Path) -> str:
        """printf-style segment pattern understood by the HLS muxer"""
        return str(Path(output_dir) / f"{SEGMENT_PREFIX}%0{self.segment_index_width}d{SEGMENT_EXTENSION}")

    def list_job_dirs(self) -> List[Path]:
        if not self.root.is_dir():
            return []
        return sorted(
            entry for entry in self.root.iterdir()
            if entry.is_dir() and not entry.name.startswith(".")
        )

    def segments_in(self, directory: Path) -> List[Path]:
        """Segment files in playback order"""
        directory = Path(directory)
        if not directory.is_dir():
            return []
        return sorted(
            p for p in directory.iterdir()
            if p.name.startswith(SEGMENT_PREFIX) and p.name.endswith(SEGMENT_EXTENSION)
        )

    def list_segments(self, job_id: str) -> List[Path]:
        return self.segments_in(self.job_dir(job_id))

    def remove_outputs(self, job_id: str) -> int:
        """
        Delete the manifest and any segments left by a failed run

        Returns:
            int: number of files removed
        """
        removed = 0
        for path in [self.manifest_path(job_id), *self.list_segments(job_id)]:
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Failed to remove partial output {path}: {e}")
        return removed

    def describe(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Summary of a job directory's contents, or None if it does not exist"""
        job_dir = self.job_dir(job_id)
        if not job_dir.is_dir():
            return None

        files = [p for p in job_dir.iterdir() if p.is_file()]
        total_size = sum(p.stat().st_size for p in files)
        stat = job_dir.stat()

        return {
            "total_files": len(files),
            "segments": len(self.list_segments(job_id)),
            "total_size_bytes": total_size,
            "total_size_mb": round(total_size / (1024 * 1024), 2),
            "has_manifest": self.manifest_path(job_id).is_file(),
            "created_at": datetime.fromtimestamp(directory_created_at(job_dir), tz=timezone.utc),
            "last_modified": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        }
